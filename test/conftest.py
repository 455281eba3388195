import itertools
import logging
from typing import Any, Callable, Generator

from pytest import fixture

from treesync import (
    BaseLocalStore,
    MemoryLocalStore,
    MemoryRemoteBackend,
    PersistConfig,
    PersistenceRegistry,
    PersistOptions,
    StateTree,
    TreePersistence,
)

logging.basicConfig(level=logging.WARNING)

UID = "testuid"
SYNC_PATH = "/test/{uid}/s/"
BASE_PATH = f"/test/{UID}/s/"

SAVE_TIMEOUT = 0.01
RETRY_INTERVAL = 0.01


@fixture
def local_store() -> MemoryLocalStore:
    return MemoryLocalStore()


@fixture
def backend() -> MemoryRemoteBackend:
    """
    Signed-in backend whose clock starts at 1000 and ticks once per write.
    """
    clock = itertools.count(1000)

    backend = MemoryRemoteBackend(clock=lambda: next(clock))
    backend.sign_in(UID)

    return backend


@fixture
def registry(
    local_store: MemoryLocalStore, backend: MemoryRemoteBackend
) -> PersistenceRegistry:
    return PersistenceRegistry(local_store, backend)


@fixture
def config() -> PersistConfig:
    return PersistConfig(
        local_persistence=MemoryLocalStore,
        remote_persistence=MemoryRemoteBackend,
        save_timeout=SAVE_TIMEOUT,
        retry_interval=RETRY_INTERVAL,
    )


@fixture
def start_persist(
    config: PersistConfig, registry: PersistenceRegistry
) -> Callable[..., TreePersistence]:
    """
    Get function to persist a tree with the test config and registry.
    """

    def start(tree: StateTree, **options: Any) -> TreePersistence:
        return TreePersistence(
            tree,
            PersistOptions.model_validate(options),
            config=config,
            registry=registry,
        ).start()

    return start


def remote_options(**kwargs: Any) -> dict[str, Any]:
    """
    Get remote options syncing to the test path.
    """
    return {"sync_path": SYNC_PATH, **kwargs}


def initialize_remote(backend: MemoryRemoteBackend, obj: dict[str, Any]):
    backend.initialize({"test": {UID: {"s": obj}}})


def modify_remote(backend: MemoryRemoteBackend, path: str, obj: Any):
    backend.modify(f"{BASE_PATH}{path}", obj)


class AsyncLocalStore(BaseLocalStore):
    """
    Store with asynchronous operations, as backed by e.g. IndexedDB.
    """

    records: dict[str, str]

    def __init__(self):
        self.records = {}

    async def read(self, key: str) -> str | None:
        return self.records.get(key)

    async def write(self, key: str, raw: str):
        self.records[key] = raw


class FailingLocalStore(MemoryLocalStore):
    """
    Memory store whose writes fail while `fail` is set.
    """

    fail: bool = False

    def write(self, key: str, raw: str):
        if self.fail:
            raise OSError("disk full")
        super().write(key, raw)


@fixture
def failing_store(registry: PersistenceRegistry) -> FailingLocalStore:
    """
    Register a failing store in place of the shared memory store.
    """
    store = FailingLocalStore()
    registry.register(store, MemoryLocalStore)
    return store


class LogHandler(logging.Handler):
    """
    Handler to create a list of logs for testcases to access for verification.
    """

    test_logs: list[str]

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.test_logs = []

    def emit(self, record: logging.LogRecord):
        self.test_logs.append(record.getMessage())

    @property
    def text(self) -> str:
        return "\n".join(self.test_logs)


@fixture
def logs() -> Generator[LogHandler, None, None]:
    """
    Collect messages of the engine's logger.
    """
    logger = logging.getLogger("treesync")
    level = logger.level

    handler = LogHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)

    yield handler

    logger.removeHandler(handler)
    logger.setLevel(level)
