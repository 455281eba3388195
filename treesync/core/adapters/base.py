from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from ..signal import Latch

__all__ = [
    "BaseLocalStore",
    "BaseRemoteBackend",
    "WriteAck",
    "DeltaCallback",
]

type DeltaCallback = Callable[[str, Any], None]
"""
Invoked with the changed path relative to the subscribed path (`""` for the
subscribed node itself) and the node's full new value.
"""


class BaseLocalStore(ABC):
    """
    Implements interface to local durable key/value storage of serialized
    snapshots, e.g. a directory of files. Operations may be synchronous or
    return an awaitable.
    """

    @abstractmethod
    def read(self, key: str) -> str | None | Awaitable[str | None]:
        """
        Read record, or None if it doesn't exist.
        """
        ...

    @abstractmethod
    def write(self, key: str, raw: str) -> None | Awaitable[None]:
        """
        Write record, replacing any existing one.
        """
        ...


@dataclass(frozen=True)
class WriteAck:
    """
    Acknowledgement of a batch write.
    """

    timestamp: Any
    """Value substituted by the backend for the timestamp sentinel"""


class BaseRemoteBackend(ABC):
    """
    Implements interface to a hierarchical remote database supporting
    multi-path writes, snapshot reads and change subscriptions.
    """

    authenticated: Latch
    """Set once the backend has an authenticated session"""

    def __init__(self):
        self.authenticated = Latch()

    @property
    @abstractmethod
    def uid(self) -> str | None:
        """
        Identity of the authenticated user, or None.
        """
        ...

    @abstractmethod
    async def load_snapshot(self, path: str) -> Any:
        """
        Load value at path, or None if it doesn't exist.

        :raises RemoteUnavailableError: If the backend can't be reached
        """
        ...

    @abstractmethod
    def subscribe(self, path: str, on_delta: DeltaCallback) -> Callable[[], None]:
        """
        Subscribe to changes at and beneath path. Returns a function which
        unsubscribes.
        """
        ...

    @abstractmethod
    async def write_batch(self, writes: dict[str, Any]) -> WriteAck:
        """
        Atomically apply a flat mapping of absolute path to value; a value of
        None deletes.

        :raises RemoteWriteError: If the write was rejected
        :raises RemoteUnavailableError: If the backend can't be reached
        """
        ...
