"""
Reference-preserving JSON codec for log payloads.

Plain ``json`` cannot serialize object graphs that contain cycles, and it
silently duplicates shared sub-objects. This codec writes every container
once; later occurrences of the same container are written as
``{"$ref": [<path segments>]}`` pointing at the first occurrence. Loading
re-links those references, so cycles and shared identity survive a round
trip through the TEXT column.

Dict keys that begin with ``$`` are escaped with an extra ``$`` so user data
can never be mistaken for a reference marker.
"""

import json
from typing import Any, Optional

REF_KEY = "$ref"


def _escape(key: str) -> str:
    return "$" + key if key.startswith("$") else key


def _unescape(key: str) -> str:
    return key[1:] if key.startswith("$") else key


def _encode(value: Any, path: tuple, seen: dict[int, tuple]) -> Any:
    if not isinstance(value, (dict, list, tuple)):
        return value
    
    ref = seen.get(id(value))
    if ref is not None:
        return {REF_KEY: list(ref)}
    seen[id(value)] = path
    
    if isinstance(value, dict):
        return {
            _escape(str(k)): _encode(v, path + (str(k),), seen)
            for k, v in value.items()
        }
    return [_encode(v, path + (i,), seen) for i, v in enumerate(value)]


def _is_ref(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and len(value) == 1
        and isinstance(value.get(REF_KEY), list)
    )


def _decode(value: Any, pending: list) -> Any:
    if isinstance(value, dict):
        out: dict = {}
        for k, v in value.items():
            key = _unescape(k)
            if _is_ref(v):
                out[key] = None
                pending.append((out, key, v[REF_KEY]))
            else:
                out[key] = _decode(v, pending)
        return out
    
    if isinstance(value, list):
        items: list = []
        for i, v in enumerate(value):
            if _is_ref(v):
                items.append(None)
                pending.append((items, i, v[REF_KEY]))
            else:
                items.append(_decode(v, pending))
        return items
    
    return value


def _resolve(root: Any, path: list) -> Any:
    target = root
    for segment in path:
        target = target[segment]
    return target


def dumps(value: Any) -> str:
    """Serialize ``value`` to JSON text, preserving shared and circular references."""
    return json.dumps(_encode(value, (), {}), ensure_ascii=False, default=str)


def loads(text: Optional[str]) -> Any:
    """Inverse of :func:`dumps`. ``None`` (a NULL column) loads as ``None``."""
    if text is None:
        return None
    
    pending: list = []
    root = _decode(json.loads(text), pending)
    
    # First occurrences are always real containers, so paths resolve in order
    for container, key, path in pending:
        container[key] = _resolve(root, path)
    
    return root


__all__ = ["dumps", "loads"]
