"""
In-memory remote backend emulating a hierarchical realtime database.
"""

from __future__ import annotations

import copy
import time
from collections.abc import Mapping
from typing import Any, Callable

from ..exceptions import RemoteUnavailableError, RemoteWriteError
from ..utils import SERVER_TIMESTAMP, Path, normalize_path
from .base import BaseRemoteBackend, DeltaCallback, WriteAck

__all__ = [
    "MemoryRemoteBackend",
]


class MemoryRemoteBackend(BaseRemoteBackend):
    """
    Remote backend holding its data in memory. Subscribers are notified
    synchronously, before the write returns, as a realtime database echoes
    local writes to its own listeners.

    Other writers are emulated with {obj}`modify`; failures with
    {obj}`offline` and {obj}`fail_next_writes`.
    """

    offline: bool = False
    """Raise {obj}`RemoteUnavailableError` for every operation"""

    fail_next_writes: int = 0
    """Number of upcoming batch writes to reject"""

    batches: list[dict[str, Any]]
    """Log of every accepted batch as received"""

    _data: Any
    _uid: str | None = None
    _clock: Callable[[], int]
    _subscribers: list[tuple[Path, DeltaCallback]]

    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        *,
        clock: Callable[[], int] | None = None,
    ):
        super().__init__()

        self._data = copy.deepcopy(dict(data)) if data else None
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._subscribers = []
        self.batches = []

    @property
    def uid(self) -> str | None:
        return self._uid

    def sign_in(self, uid: str = "anonymous"):
        self._uid = uid
        self.authenticated.set()

    def initialize(self, data: Mapping[str, Any] | None):
        """
        Replace all data without notifying subscribers.
        """
        self._data = copy.deepcopy(dict(data)) if data else None

    def get(self, path: str = "") -> Any:
        """
        Get a copy of the value at path.
        """
        node = self._data

        for key in normalize_path(path):
            if not isinstance(node, Mapping) or key not in node:
                return None
            node = node[key]

        return copy.deepcopy(node)

    def modify(self, path: str, value: Any):
        """
        Emulate another writer updating path: a mapping value is merged into
        the existing node, anything else replaces it.
        """
        path_ = normalize_path(path)
        value = _resolve(value, self._clock())

        if isinstance(value, Mapping) and isinstance(self.get(path), Mapping):
            for key, child in value.items():
                self._set(path_ + (key,), child)
        else:
            self._set(path_, value)

        self._notify([path_])

    async def load_snapshot(self, path: str) -> Any:
        self._check_online()
        return self.get(path)

    def subscribe(self, path: str, on_delta: DeltaCallback) -> Callable[[], None]:
        entry = (normalize_path(path), on_delta)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    async def write_batch(self, writes: dict[str, Any]) -> WriteAck:
        self._check_online()

        if self.fail_next_writes > 0:
            self.fail_next_writes -= 1
            raise RemoteWriteError("Write rejected")

        self.batches.append(copy.deepcopy(writes))

        timestamp = self._clock()
        paths = [normalize_path(path) for path in writes]

        for path, value in zip(paths, writes.values()):
            self._set(path, _resolve(value, timestamp))

        self._notify(paths)

        return WriteAck(timestamp=timestamp)

    def _check_online(self):
        if self.offline:
            raise RemoteUnavailableError("Backend is offline")

    def _set(self, path: Path, value: Any):
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

    def _notify(self, paths: list[Path]):
        for sub_path, callback in list(self._subscribers):
            for path in paths:
                if path[: len(sub_path)] == sub_path:
                    relative = path[len(sub_path) :]
                    callback("/".join(relative), self.get("/".join(path)))
                elif sub_path[: len(path)] == path:
                    callback("", self.get("/".join(sub_path)))


def _resolve(value: Any, timestamp: int) -> Any:
    if value == SERVER_TIMESTAMP:
        return timestamp

    if isinstance(value, Mapping):
        return {k: _resolve(v, timestamp) for k, v in value.items()}

    return value
