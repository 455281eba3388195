"""
Engine persisting a state tree locally and synchronizing it with a remote
backend.

Local mutations are written to the local snapshot immediately and queued as
pending writes; after the debounce delay the pending writes are flattened into
one multi-path remote write. Remote snapshots and pushed changes are merged
back per tracked unit by last-write-wins.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum, auto
from logging import Logger
from typing import Any, Callable, Coroutine, Self

from rich.markup import escape

from .adapters.base import BaseLocalStore, BaseRemoteBackend
from .batcher import Batch, construct_batch
from .exceptions import RemoteUnavailableError, RemoteWriteError
from .merge import RemoteMerger
from .mirror import RemoteMirror
from .options import PersistConfig, PersistOptions
from .pending import PendingTree
from .registry import PersistenceRegistry
from .signal import DebounceTimer, Latch
from .snapshot import LocalSnapshotCodec
from .spec.tracking import TrackingSpec, unit_path_for, units_in
from .spec.transform import TransformSpec, to_local_shape
from .state import BaseStateContainer, Change
from .utils import MARKER_KEY, SERVER_TIMESTAMP, Path, normalize_path

__all__ = [
    "TreePersistence",
    "PersistState",
    "SaveStatus",
    "persist",
]


class SaveStatus(Enum):
    """
    State of the remote save cycle.
    """

    IDLE = auto()
    """Nothing pending"""

    DIRTY = auto()
    """Local writes pending, flush scheduled"""

    FLUSHING = auto()
    """Remote write in flight"""

    def __str__(self) -> str:
        color_map = {
            SaveStatus.IDLE: "cyan",
            SaveStatus.DIRTY: "bright_yellow",
            SaveStatus.FLUSHING: "bright_green",
        }

        start = escape("[")
        end = escape("]")
        return f"{start}[{color_map[self]}]{self.name}[/{color_map[self]}]{end}"


@dataclass
class PersistState:
    """
    Readiness of a persisted tree. Each latch is set exactly once per
    session and can be awaited any number of times.
    """

    loaded_local: Latch = field(default_factory=Latch)
    """Local snapshot applied (or found not to exist)"""

    loaded_remote: Latch = field(default_factory=Latch)
    """Initial remote snapshot merged"""


class TreePersistence:
    """
    Persists one state container according to {obj}`PersistOptions`.

    Create with {obj}`persist`, or construct and call {obj}`start`.
    """

    container: BaseStateContainer
    options: PersistOptions
    config: PersistConfig
    registry: PersistenceRegistry
    state: PersistState

    local_store: BaseLocalStore | None = None
    """Shared local store, if a local key is configured"""

    remote: BaseRemoteBackend | None = None
    """Shared remote backend, if remote sync is configured"""

    sync_path: str | None = None
    """Backend path of this tree, known once authenticated"""

    _logger: Logger
    _codec: LocalSnapshotCodec | None = None
    _pending: PendingTree
    _in_flight: PendingTree | None = None
    _mirror: RemoteMirror
    _merger: RemoteMerger
    _timer: DebounceTimer
    _flush_lock: asyncio.Lock
    _tasks: set[asyncio.Task]
    _saves: set[asyncio.Task]

    # set while applying remote data, so it isn't queued back as local writes
    _applying: bool = False

    _closed: bool = False
    _unsubscribe_local: Callable[[], None] | None = None
    _unsubscribe_remote: Callable[[], None] | None = None

    def __init__(
        self,
        container: BaseStateContainer,
        options: PersistOptions,
        *,
        config: PersistConfig | None = None,
        registry: PersistenceRegistry | None = None,
        logger: Logger | None = None,
    ):
        self.container = container
        self.options = options
        self.config = config or PersistConfig()
        self.registry = registry or PersistenceRegistry()
        self.state = PersistState()

        self._logger = logger or logging.getLogger("treesync")
        self._pending = PendingTree()
        self._mirror = RemoteMirror()
        self._tasks = set()
        self._saves = set()
        self._flush_lock = asyncio.Lock()

        if options.local is not None:
            self.local_store = self.registry.get(self.config.local_persistence)
            self._codec = LocalSnapshotCodec(self.local_store, options.local)

        if options.remote is not None:
            if self.config.remote_persistence is None:
                raise ValueError(
                    "Remote sync configured without a remote persistence class"
                )
            self.remote = self.registry.get(self.config.remote_persistence)

        self._merger = RemoteMerger(
            container,
            self.tracking,
            is_pending=self._is_pending,
            logger=self._logger,
        )
        self._timer = DebounceTimer(self.save_timeout, self._on_timer)

    def __repr__(self):
        return (
            f"TreePersistence(local={self.options.local}, "
            f"sync_path={self.sync_path}, status={self.status.name})"
        )

    @property
    def tracking(self) -> TrackingSpec | None:
        return self.options.remote.tracking if self.options.remote else None

    @property
    def transform(self) -> TransformSpec | None:
        return self.options.remote.transform if self.options.remote else None

    @property
    def save_timeout(self) -> float:
        remote = self.options.remote
        if remote is not None and remote.save_timeout is not None:
            return remote.save_timeout
        return self.config.save_timeout

    @property
    def retry_interval(self) -> float:
        remote = self.options.remote
        if remote is not None and remote.retry_interval is not None:
            return remote.retry_interval
        return self.config.retry_interval

    @property
    def status(self) -> SaveStatus:
        if self._in_flight is not None:
            return SaveStatus.FLUSHING
        if not self._pending.is_empty:
            return SaveStatus.DIRTY
        return SaveStatus.IDLE

    @property
    def is_dirty(self) -> bool:
        return self.status is not SaveStatus.IDLE

    @property
    def pending(self) -> PendingTree:
        """
        Local writes not yet sent to the remote backend.
        """
        return self._pending

    @property
    def mirror(self) -> RemoteMirror:
        return self._mirror

    def start(self) -> Self:
        """
        Load local snapshot synchronously, start listening for local changes
        and schedule the remote load. Must be called with a running event
        loop if remote sync is configured.

        :raises LocalStoreError: If the local snapshot can't be read
        """
        markers = self._codec.load(self.container) if self._codec else None
        self._attach(markers)
        return self

    async def start_async(self) -> Self:
        """
        Like {obj}`start`, for local stores with asynchronous reads.
        """
        markers = (
            await self._codec.load_async(self.container) if self._codec else None
        )
        self._attach(markers)
        return self

    def construct_batch(self) -> Batch:
        """
        Get the batch the next flush would write.
        """
        return construct_batch(
            self._pending, self.tracking, self.transform, logger=self._logger
        )

    async def flush(self) -> bool:
        """
        Write pending local changes to the remote backend. Returns whether
        nothing is left pending; on failure the writes are retained and
        retried after {obj}`retry_interval`.
        """
        if self.remote is None:
            return True

        if not self.state.loaded_remote:
            # flushed once initial load completes
            return self._pending.is_empty

        async with self._flush_lock:
            if self._pending.is_empty:
                return True

            self._timer.cancel()

            in_flight, self._pending = self._pending, PendingTree()
            self._in_flight = in_flight

            batch = self._drop_unchanged(
                construct_batch(
                    in_flight, self.tracking, self.transform, logger=self._logger
                )
            )

            try:
                if batch:
                    assert self.sync_path is not None
                    self._logger.debug(
                        f"Writing {len(batch.entries)} paths to '{self.sync_path}'"
                    )
                    ack = await self.remote.write_batch(
                        batch.writes(self.sync_path)
                    )
            except (RemoteWriteError, RemoteUnavailableError) as e:
                self._restore(in_flight)

                self._logger.warning(
                    f"Remote write to '{self.sync_path}' failed, retrying in {self.retry_interval}s: {e}"
                )
                self._timer.trigger(self.retry_interval)
                return False
            except BaseException:
                self._restore(in_flight)
                raise

            self._in_flight = None

            if batch:
                self._mirror.apply_batch(batch.entries, ack.timestamp)
                self._stamp_units(batch.units, ack.timestamp)

            if not self._pending.is_empty:
                self._timer.trigger()

            if batch:
                self._save_local()

            return self._pending.is_empty

    async def wait_saved(self) -> bool:
        """
        Wait for the initial remote load, then flush until nothing is
        pending. Returns `False` if a flush failed.
        """
        if self.remote is None:
            return True

        await self.state.loaded_remote.wait()

        while self.is_dirty:
            if not await self.flush():
                return False

        return True

    async def close(self, *, flush: bool = True):
        """
        Stop synchronizing, optionally flushing pending writes first.
        """
        if flush and self.state.loaded_remote:
            await self.flush()

        self._closed = True
        self._timer.cancel()

        for unsubscribe in (self._unsubscribe_local, self._unsubscribe_remote):
            if unsubscribe is not None:
                unsubscribe()

        self._unsubscribe_local = self._unsubscribe_remote = None

        # local snapshot writes already started are completed
        await asyncio.gather(*self._saves, return_exceptions=True)

        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)

    def _attach(self, markers: dict[Path, Any] | None):
        if markers and self.remote is not None:
            # unacknowledged writes from a previous session
            for path, marker in markers.items():
                if marker == SERVER_TIMESTAMP:
                    self._pending.insert(path, self.container.get(path))

        self._unsubscribe_local = self.container.on_change(
            (), self._on_local_change
        )
        self.state.loaded_local.set()

        if self.remote is not None:
            self._spawn(self._load_remote())

    def _on_local_change(self, change: Change):
        if self._applying or self._closed:
            return

        path = change.path

        if self.tracking is not None:
            self._stamp_pending(path, change.value)

        if self.remote is not None:
            self._pending.insert(path, change.value)
            self._timer.trigger()

        self._save_local()

    def _stamp_pending(self, path: Path, value: Any):
        """
        Mark tracked units affected by a local write as awaiting a
        backend-resolved timestamp.
        """
        assert self.tracking is not None

        unit = unit_path_for(path, self.tracking)

        if unit is not None:
            self.container.set_modified(unit, SERVER_TIMESTAMP)
            return

        for unit in units_in(value, self.tracking.resolve(path), path):
            self.container.set_modified(unit, SERVER_TIMESTAMP)

    def _stamp_units(self, units: list[Path], timestamp: Any):
        for unit in units:
            if (
                self.container.get_modified(unit) == SERVER_TIMESTAMP
                and not self._pending.overlaps(unit)
            ):
                self.container.set_modified(unit, timestamp)

    def _drop_unchanged(self, batch: Batch) -> Batch:
        """
        Drop plain writes of values the remote backend already holds.
        """
        if not self._mirror.is_loaded:
            return batch

        for path, value in list(batch.entries.items()):
            if MARKER_KEY in path or _has_marker(value):
                continue

            if value is None:
                unchanged = not self._mirror.contains(path)
            else:
                unchanged = self._mirror.get(path) == value

            if unchanged:
                self._logger.debug(f"Skipping unchanged '{'/'.join(path)}'")
                del batch.entries[path]

        return batch

    def _restore(self, in_flight: PendingTree):
        """
        Return writes of a failed flush to the pending trie.
        """
        # newer writes take precedence over restored ones
        in_flight.update(self._pending)
        self._pending = in_flight
        self._in_flight = None

    def _is_pending(self, path: Path) -> bool:
        return self._pending.overlaps(path) or (
            self._in_flight is not None and self._in_flight.overlaps(path)
        )

    def _save_local(self):
        if self._codec is None:
            return

        result = self._codec.save(self.container)

        if inspect.isawaitable(result):
            task = self._spawn(result)
            self._saves.add(task)
            task.add_done_callback(self._saves.discard)

    async def _load_remote(self):
        remote = self.remote
        remote_options = self.options.remote
        assert remote is not None and remote_options is not None

        if remote_options.require_auth and not remote.authenticated:
            self._logger.debug("Waiting for authentication before remote load")
            await remote.authenticated.wait()

        self.sync_path = remote_options.resolve_sync_path(remote.uid)

        while True:
            try:
                snapshot = await remote.load_snapshot(self.sync_path)
                break
            except RemoteUnavailableError as e:
                self._logger.error(
                    f"Failed to load '{self.sync_path}', retrying in {self.retry_interval}s: {e}"
                )
                await asyncio.sleep(self.retry_interval)

        if self._closed:
            return

        self._logger.debug(f"Loaded remote snapshot of '{self.sync_path}'")

        self._mirror.reset(snapshot)

        if snapshot is not None:
            self._apply_remote((), snapshot)

        self._unsubscribe_remote = remote.subscribe(
            self.sync_path, self._on_remote_delta
        )
        self.state.loaded_remote.set()

        if not self._pending.is_empty:
            self._timer.trigger()

        self._save_local()

    def _on_remote_delta(self, path: str, value: Any):
        if self._closed:
            return

        remote_path = normalize_path(path)

        self._mirror.apply(remote_path, value)
        self._apply_remote(remote_path, value)
        self._save_local()

    def _apply_remote(self, remote_path: Path, value: Any):
        """
        Merge remote-shaped value at path relative to the sync path.
        """
        transform = self.transform

        if transform is not None:
            inverse = transform.inverse()
            local_path = inverse.remote_path(remote_path)
            value = to_local_shape(
                value, transform.resolve(local_path), logger=self._logger
            )
        else:
            local_path = remote_path

        self._applying = True
        try:
            self._merger.merge(local_path, value)
        finally:
            self._applying = False

    def _on_timer(self):
        self._spawn(self.flush())

    def _spawn(self, awaitable: Any) -> asyncio.Task:
        coro: Coroutine = (
            awaitable if inspect.iscoroutine(awaitable) else _await(awaitable)
        )

        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

        return task

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)

        if task.cancelled():
            return

        if (e := task.exception()) is not None:
            self._logger.error(
                f"Background task failed for '{self.options.local or self.sync_path}': {e!r}"
            )


def persist(
    container: BaseStateContainer,
    options: PersistOptions | Mapping[str, Any],
    *,
    config: PersistConfig | None = None,
    registry: PersistenceRegistry | None = None,
    logger: Logger | None = None,
) -> TreePersistence:
    """
    Persist container according to options and start synchronizing.

    ```
    tree = StateTree({"settings": {"theme": "dark"}})
    persistence = persist(
        tree,
        {
            "local": "settings",
            "remote": {
                "sync_path": "/users/{uid}/s/",
                "query_by_modified": {"settings": True},
            },
        },
        config=PersistConfig(remote_persistence=FirebaseRestBackend),
        registry=PersistenceRegistry(backend),
    )
    await persistence.state.loaded_remote.wait()
    ```
    """
    if not isinstance(options, PersistOptions):
        options = PersistOptions.model_validate(options)

    return TreePersistence(
        container, options, config=config, registry=registry, logger=logger
    ).start()


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _has_marker(value: Any) -> bool:
    if value == SERVER_TIMESTAMP:
        return True

    if isinstance(value, Mapping):
        return MARKER_KEY in value or any(_has_marker(v) for v in value.values())

    return False
