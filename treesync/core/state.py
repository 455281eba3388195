"""
Interface to the reactive state container, and an in-memory implementation.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .utils import Path, normalize_path

__all__ = [
    "BaseStateContainer",
    "StateTree",
    "Change",
]

type PathLike = str | Iterable[str] | None


@dataclass(frozen=True)
class Change:
    """
    Notification of a value having been set.
    """

    path: Path
    value: Any
    previous: Any


class BaseStateContainer(ABC):
    """
    Reactive container holding the state tree. The engine only mutates it
    through {obj}`set`, so every write goes through change notification.
    """

    @abstractmethod
    def get(self, path: PathLike = None) -> Any:
        """
        Get value at path, or `None` if it doesn't exist.
        """
        ...

    @abstractmethod
    def set(self, path: PathLike, value: Any):
        """
        Set value at path; `None` deletes it.
        """
        ...

    @abstractmethod
    def on_change(
        self, path: PathLike, callback: Callable[[Change], None]
    ) -> Callable[[], None]:
        """
        Register a callback for changes at, above or beneath `path`. Returns a
        function which unregisters it.
        """
        ...

    @abstractmethod
    def get_modified(self, path: PathLike) -> Any:
        """
        Get modified marker of node at path, or `None`.
        """
        ...

    @abstractmethod
    def set_modified(self, path: PathLike, marker: Any):
        """
        Set modified marker of node at path; `None` clears it.
        """
        ...


class StateTree(BaseStateContainer):
    """
    In-memory state tree with path-scoped change notification and
    out-of-band modified markers.

    Values are copied on the way in and out, so callers never share
    structure with the tree. Setting a value equal to the current one is a
    no-op and doesn't notify.
    """

    _data: dict[str, Any]
    _modified: dict[Path, Any]
    _listeners: list[tuple[Path, Callable[[Change], None]]]

    def __init__(self, initial: Mapping[str, Any] | None = None):
        self._data = copy.deepcopy(dict(initial or {}))
        self._modified = {}
        self._listeners = []

    def __repr__(self):
        return f"StateTree({self._data!r})"

    def get(self, path: PathLike = None) -> Any:
        node: Any = self._data

        for key in normalize_path(path):
            if not isinstance(node, Mapping) or key not in node:
                return None
            node = node[key]

        return copy.deepcopy(node)

    def set(self, path: PathLike, value: Any):
        path = normalize_path(path)
        value = copy.deepcopy(value)
        previous = self.get(path)

        if previous == value:
            return

        if not path:
            if value is not None and not isinstance(value, Mapping):
                raise TypeError(
                    f"Root must be a mapping, got {type(value).__name__}"
                )
            self._data = dict(value or {})
        else:
            parent = self._data
            for key in path[:-1]:
                if not isinstance(parent.get(key), dict):
                    parent[key] = {}
                parent = parent[key]

            if value is None:
                parent.pop(path[-1], None)
            else:
                parent[path[-1]] = value

        # markers beneath a replaced subtree no longer apply
        for marker_path in [
            p
            for p in self._modified
            if len(p) > len(path) and p[: len(path)] == path
        ]:
            del self._modified[marker_path]

        self._notify(Change(path, copy.deepcopy(value), previous))

    def on_change(
        self, path: PathLike, callback: Callable[[Change], None]
    ) -> Callable[[], None]:
        entry = (normalize_path(path), callback)
        self._listeners.append(entry)

        def unsubscribe():
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def get_modified(self, path: PathLike) -> Any:
        return self._modified.get(normalize_path(path))

    def set_modified(self, path: PathLike, marker: Any):
        path = normalize_path(path)

        if marker is None:
            self._modified.pop(path, None)
        else:
            self._modified[path] = marker

    def _notify(self, change: Change):
        for path, callback in list(self._listeners):
            depth = min(len(path), len(change.path))
            if path[:depth] == change.path[:depth]:
                callback(change)
