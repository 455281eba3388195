"""
Best-known view of the remote-shaped data under the sync path.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from .utils import SERVER_TIMESTAMP, Path

__all__ = [
    "RemoteMirror",
]

_MISSING = object()


class RemoteMirror:
    """
    Remote-shaped cache, created on first load and updated on every
    acknowledged write and every remote change notification.
    """

    _data: Any = None
    _loaded: bool = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def reset(self, data: Any):
        self._data = copy.deepcopy(data)
        self._loaded = True

    def get(self, path: Path, default: Any = None) -> Any:
        node = self._data

        for key in path:
            if not isinstance(node, Mapping) or key not in node:
                return default
            node = node[key]

        return node

    def contains(self, path: Path) -> bool:
        return self.get(path, _MISSING) is not _MISSING

    def apply(self, path: Path, value: Any):
        """
        Set value at path; `None` deletes it.
        """
        value = copy.deepcopy(value)

        if not path:
            self._data = value
            return

        if not isinstance(self._data, dict):
            self._data = {}

        node = self._data
        for key in path[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]

        if value is None:
            node.pop(path[-1], None)
        else:
            node[path[-1]] = value

    def apply_batch(self, entries: Mapping[Path, Any], timestamp: Any):
        """
        Apply an acknowledged batch, substituting the backend-resolved
        timestamp for the sentinel.
        """
        for path, value in entries.items():
            self.apply(path, _resolve_sentinel(value, timestamp))


def _resolve_sentinel(value: Any, timestamp: Any) -> Any:
    if value == SERVER_TIMESTAMP and timestamp is not None:
        return timestamp

    if isinstance(value, Mapping):
        return {k: _resolve_sentinel(v, timestamp) for k, v in value.items()}

    return value
