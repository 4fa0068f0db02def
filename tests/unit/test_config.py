"""
Tests for log store configuration loading.
"""

import pytest
import yaml

from logstore.config import LogStoreConfig, config_from_env, load_config


class TestLogStoreConfig:
    """Tests for LogStoreConfig."""
    
    def test_defaults(self):
        config = LogStoreConfig()
        
        assert config.type is None
        assert config.port == 3306
        assert config.connection_limit == 5
        assert config.connect_timeout == 60.0
        assert config.migrate_on_close is True
    
    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError, match="postgres"):
            LogStoreConfig(type="postgres")
    
    def test_from_dict_camel_case_milliseconds(self):
        config = LogStoreConfig.from_dict({
            "host": "db.internal",
            "connectionLimit": 10,
            "connectTimeout": 5000,
            "queryTimeout": 250,
        })
        
        assert config.host == "db.internal"
        assert config.connection_limit == 10
        assert config.connect_timeout == 5.0
        assert config.query_timeout == 0.25
    
    def test_from_dict_expands_env(self, monkeypatch):
        monkeypatch.setenv("TEST_LOG_HOST", "mysql.example")
        
        config = LogStoreConfig.from_dict({"host": "${TEST_LOG_HOST}"})
        
        assert config.host == "mysql.example"
    
    def test_from_dict_empty_strings_unset(self):
        config = LogStoreConfig.from_dict({"type": "", "host": ""})
        
        assert config.type is None
        assert config.host is None
    
    def test_from_dict_ignores_unknown_keys(self):
        config = LogStoreConfig.from_dict({"flavor": "vanilla", "port": "3307"})
        
        assert config.port == 3307
    
    def test_masked_hides_credentials(self):
        config = LogStoreConfig(user="root", password="hunter2", host="h")
        
        masked = config.masked()
        
        assert masked["user"] == "***"
        assert masked["password"] == "***"
        assert masked["host"] == "h"
    
    def test_cache_paths(self, temp_dir):
        config = LogStoreConfig(cache_dir=str(temp_dir))
        
        assert config.migrations_dir == temp_dir.resolve() / "migrations"
        assert config.backup_dir == temp_dir.resolve() / "database" / "backup"
        assert config.schema_marker_dir == temp_dir.resolve() / "database" / "schema"


class TestLoadConfig:
    """Tests for YAML and environment loading."""
    
    def test_missing_file_gives_defaults(self, temp_dir):
        config = load_config(str(temp_dir / "nope.yaml"))
        
        assert config == LogStoreConfig()
    
    def test_yaml_section(self, temp_dir, monkeypatch):
        monkeypatch.setenv("TEST_LOG_PASS", "s3cret")
        path = temp_dir / "settings.yaml"
        path.write_text(yaml.safe_dump({
            "log_store": {
                "type": "mysql",
                "host": "db",
                "password": "${TEST_LOG_PASS}",
                "connectTimeout": 2000,
            }
        }))
        
        config = load_config(str(path))
        
        assert config.type == "mysql"
        assert config.password == "s3cret"
        assert config.connect_timeout == 2.0
    
    def test_from_env(self, monkeypatch, temp_dir):
        monkeypatch.setenv("LOG_DB_TYPE", "sqlite")
        monkeypatch.setenv("MYSQL_HOST", "envhost")
        monkeypatch.setenv("MYSQL_PORT", "3310")
        
        config = config_from_env(str(temp_dir / "missing.env"))
        
        assert config.type == "sqlite"
        assert config.host == "envhost"
        assert config.port == 3310
    
    def test_unset_env_reference_means_unconfigured(self, temp_dir, monkeypatch):
        monkeypatch.delenv("TEST_LOG_UNSET_HOST", raising=False)
        path = temp_dir / "settings.yaml"
        path.write_text("log_store:\n  host: ${TEST_LOG_UNSET_HOST}\n")
        
        config = load_config(str(path))
        
        assert config.host is None
