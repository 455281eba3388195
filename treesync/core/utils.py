"""
Common utilities.
"""

from collections.abc import Iterable, Mapping
from typing import Any

__all__ = [
    "MARKER_KEY",
    "VALUE_KEY",
    "SERVER_TIMESTAMP",
    "normalize_path",
    "join_path",
    "is_wrapped",
]

MARKER_KEY = "@"
"""
Reserved key holding a node's modified marker in persisted and remote data.
"""

VALUE_KEY = "_"
"""
Reserved key holding the value of a primitive node which carries a marker.
"""

SERVER_TIMESTAMP = "__serverTimestamp"
"""
Sentinel asking the backend to substitute its own commit time.
"""

type Path = tuple[str, ...]


def normalize_path(path: str | Iterable[str] | None) -> Path:
    """
    Accept `"a/b/c"`, `("a", "b", "c")` or `None` (root) and return a tuple.
    """
    if path is None:
        return ()
    if isinstance(path, str):
        return tuple(seg for seg in path.split("/") if seg)
    return tuple(path)


def join_path(base: str, segments: Iterable[str]) -> str:
    """
    Join a backend base path like `/users/abc/s/` with relative segments.
    """
    segments = list(segments)
    root = base.rstrip("/")

    if not segments:
        return root or "/"

    return f"{root}/{'/'.join(segments)}"


def is_wrapped(value: Any) -> bool:
    """
    Whether value is a primitive wrapped together with its marker, i.e.
    `{"@": marker, "_": value}`.
    """
    return (
        isinstance(value, Mapping)
        and VALUE_KEY in value
        and set(value.keys()) <= {MARKER_KEY, VALUE_KEY}
    )
