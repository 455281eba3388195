import json

from pytest import mark, raises

from treesync import *

from conftest import AsyncLocalStore


def test_encode():
    tree = StateTree({"test": {"test2": "hi"}})
    assert encode_snapshot(tree) == '{"test":{"test2":"hi"}}'


def test_encode_markers():
    tree = StateTree({"test": {"test2": "hi", "test3": {"a": 1}}})
    tree.set_modified(("test", "test2"), 1000)
    tree.set_modified(("test", "test3"), SERVER_TIMESTAMP)

    assert json.loads(encode_snapshot(tree)) == {
        "test": {
            "test2": {"@": 1000, "_": "hi"},
            "test3": {"@": SERVER_TIMESTAMP, "a": 1},
        }
    }


def test_decode():
    tree, markers = decode_snapshot(
        '{"test":{"test2":{"@":1000,"_":"hi"},"test3":{"@":1001,"a":1}},'
        '"gone":{"@":1002}}'
    )

    assert tree == {"test": {"test2": "hi", "test3": {"a": 1}}, "gone": None}
    assert markers == {
        ("test", "test2"): 1000,
        ("test", "test3"): 1001,
        ("gone",): 1002,
    }


@mark.parametrize("raw", ["{not json", "[1, 2]", '"text"'])
def test_decode_corrupt(raw):
    with raises(LocalStoreError):
        decode_snapshot(raw, key="k")


def test_save_load(local_store: MemoryLocalStore):
    codec = LocalSnapshotCodec(local_store, "jestlocal")

    tree = StateTree({"test": {"test2": "hi"}})
    codec.save(tree)

    assert local_store.records == {"jestlocal": '{"test":{"test2":"hi"}}'}

    loaded = StateTree()
    assert codec.load(loaded) == {}
    assert loaded.get() == {"test": {"test2": "hi"}}


def test_load_markers(local_store: MemoryLocalStore):
    local_store.write(
        "k", '{"test":{"test2":{"@":1000,"_":"hi"}},"other":1}'
    )

    tree = StateTree({"existing": True})
    markers = LocalSnapshotCodec(local_store, "k").load(tree)

    assert markers == {("test", "test2"): 1000}
    assert tree.get() == {
        "existing": True,
        "test": {"test2": "hi"},
        "other": 1,
    }
    assert tree.get_modified(("test", "test2")) == 1000


def test_load_missing(local_store: MemoryLocalStore):
    tree = StateTree({"a": 1})

    assert LocalSnapshotCodec(local_store, "missing").load(tree) is None
    assert tree.get() == {"a": 1}


def test_load_corrupt(local_store: MemoryLocalStore):
    local_store.write("k", "{oops")

    with raises(LocalStoreError, match="'k'"):
        LocalSnapshotCodec(local_store, "k").load(StateTree())


def test_sync_load_async_store():
    with raises(LocalStoreError, match="load_async"):
        LocalSnapshotCodec(AsyncLocalStore(), "k").load(StateTree())


@mark.asyncio
async def test_async_store():
    store = AsyncLocalStore()
    codec = LocalSnapshotCodec(store, "k")

    tree = StateTree({"a": {"b": 1}})
    tree.set_modified(("a",), 1000)

    await codec.save(tree)
    assert json.loads(store.records["k"]) == {"a": {"@": 1000, "b": 1}}

    loaded = StateTree()
    assert await codec.load_async(loaded) == {("a",): 1000}
    assert loaded.get() == {"a": {"b": 1}}


def test_lift_markers():
    value, markers = lift_markers({"@": 1, "b": {"_": 2, "@": 3}}, ("a",))

    assert value == {"b": 2}
    assert markers == {("a",): 1, ("a", "b"): 3}

    assert lift_markers("plain") == ("plain", {})
