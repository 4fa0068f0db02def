"""
Log store configuration.

Configuration can come from a YAML file (``log_store:`` section), from the
environment (``.env`` is honored), or from a plain dict. ``${VAR}``
references in string values are expanded from the environment.
"""

import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Mapping, Optional
import structlog
import yaml
from dotenv import load_dotenv

from logstore.utils.time_utils import DEFAULT_TZ_NAME

logger = structlog.get_logger(__name__)

VALID_TYPES = ("sqlite", "mysql")

# Original option names (milliseconds for timeouts) -> field names
_CAMEL_KEYS = {
    "connectionLimit": "connection_limit",
    "connectTimeout": "connect_timeout",
    "queryTimeout": "query_timeout",
    "cacheDir": "cache_dir",
    "migrateOnClose": "migrate_on_close",
}
_MILLISECOND_KEYS = {"connectTimeout", "queryTimeout"}

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: Any) -> Any:
    """Expand environment variables in config values."""
    if isinstance(value, str) and "${" in value:
        def replace_env(match):
            env_var = match.group(1)
            return os.environ.get(env_var, match.group(0))
        return _ENV_PATTERN.sub(replace_env, value)
    return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass
class LogStoreConfig:
    """
    Settings for a log store.
    
    ``type`` selects the backend: "sqlite", "mysql", or None to try MySQL
    and fall back to SQLite. Timeouts are in seconds.
    """
    type: Optional[str] = None
    host: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    port: int = 3306
    connection_limit: int = 5
    connect_timeout: float = 60.0
    query_timeout: Optional[float] = None
    cache_dir: str = ".cache"
    timezone: str = DEFAULT_TZ_NAME
    migrate_on_close: bool = True
    
    def __post_init__(self):
        if self.type is not None and self.type not in VALID_TYPES:
            raise ValueError(
                f"unknown log store type {self.type!r}; expected one of {VALID_TYPES}"
            )
        self.port = int(self.port)
        self.connection_limit = int(self.connection_limit)
        self.connect_timeout = float(self.connect_timeout)
        if self.query_timeout is not None:
            self.query_timeout = float(self.query_timeout)
        self.migrate_on_close = _as_bool(self.migrate_on_close)
    
    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "LogStoreConfig":
        """
        Build from a mapping.
        
        Accepts snake_case field names and the camelCase option names
        (``connectionLimit``, ``connectTimeout`` in milliseconds).
        Unknown keys are ignored with a warning.
        """
        if not d:
            return cls()
        
        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        
        for key, raw in d.items():
            value = _expand_env_vars(raw)
            if key in _CAMEL_KEYS:
                if key in _MILLISECOND_KEYS and value is not None:
                    value = float(value) / 1000.0
                kwargs[_CAMEL_KEYS[key]] = value
            elif key in known:
                kwargs[key] = value
            else:
                logger.warning("config_key_ignored", key=key)
        
        # Empty strings and unexpanded ${VAR} references mean "not configured"
        for key in ("type", "host", "user", "password", "database"):
            value = kwargs.get(key)
            if value == "" or (isinstance(value, str) and _ENV_PATTERN.fullmatch(value)):
                kwargs[key] = None
        
        return cls(**kwargs)
    
    def masked(self) -> dict[str, Any]:
        """Dict view with credentials replaced, safe to log."""
        d = asdict(self)
        for key in ("user", "password"):
            if d.get(key):
                d[key] = "***"
        return d
    
    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).resolve()
    
    @property
    def migrations_dir(self) -> Path:
        return self.cache_path / "migrations"
    
    @property
    def backup_dir(self) -> Path:
        return self.cache_path / "database" / "backup"
    
    @property
    def schema_marker_dir(self) -> Path:
        return self.cache_path / "database" / "schema"


def load_config(path: str = "config/settings.yaml") -> LogStoreConfig:
    """Load configuration from the ``log_store`` section of a YAML file."""
    config_path = Path(path)
    
    if not config_path.exists():
        logger.warning("config_not_found_using_defaults", path=path)
        return LogStoreConfig()
    
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    
    section = raw.get("log_store", raw)
    config = LogStoreConfig.from_dict(section)
    
    logger.info("config_loaded", path=path)
    return config


def config_from_env(dotenv_path: Optional[str] = None) -> LogStoreConfig:
    """
    Build configuration from environment variables (after loading ``.env``).
    
    Recognized: LOG_DB_TYPE, MYSQL_HOST, MYSQL_USER, MYSQL_PASS, MYSQL_DBNAME,
    MYSQL_PORT, MYSQL_CONNECTION_LIMIT, LOG_CACHE_DIR, LOG_TIMEZONE.
    """
    load_dotenv(dotenv_path)
    
    env_map = {
        "type": "LOG_DB_TYPE",
        "host": "MYSQL_HOST",
        "user": "MYSQL_USER",
        "password": "MYSQL_PASS",
        "database": "MYSQL_DBNAME",
        "port": "MYSQL_PORT",
        "connection_limit": "MYSQL_CONNECTION_LIMIT",
        "cache_dir": "LOG_CACHE_DIR",
        "timezone": "LOG_TIMEZONE",
    }
    
    values = {
        key: os.environ[var]
        for key, var in env_map.items()
        if os.environ.get(var)
    }
    return LogStoreConfig.from_dict(values)
