from pytest import mark, raises

from treesync import *

from conftest import LogHandler

SPEC = {
    "title": "t",
    "settings": {"_": "s", "__obj": {"theme": "th", "font": {"_": "f"}}},
    "clients": {"_": "c", "__dict": {"name": "n", "profile": {"__obj": {"age": "a"}}}},
    "tags": {"__dict": {"label": "l"}},
}

LOCAL = {
    "title": "hello",
    "settings": {"theme": "dark", "font": "mono", "extra": 1},
    "clients": {
        "id1": {"name": "alice", "profile": {"age": 30}, "other": True},
        "id2": {"name": "bob"},
    },
    "tags": {"x": {"label": "X"}},
    "untouched": {"nested": {"value": 1}},
}

REMOTE = {
    "t": "hello",
    "s": {"th": "dark", "f": "mono", "extra": 1},
    "c": {
        "id1": {"n": "alice", "profile": {"a": 30}, "other": True},
        "id2": {"n": "bob"},
    },
    "tags": {"x": {"l": "X"}},
    "untouched": {"nested": {"value": 1}},
}


def test_to_remote():
    spec = parse_transform_spec(SPEC)
    assert to_remote_shape(LOCAL, spec) == REMOTE


def test_to_local():
    spec = parse_transform_spec(SPEC)
    assert to_local_shape(REMOTE, spec) == LOCAL


@mark.parametrize(
    "value",
    [
        LOCAL,
        {},
        {"title": "only"},
        {"clients": {}},
        {"settings": {"theme": {"nested": "leaf renamed verbatim"}}},
    ],
)
def test_round_trip(value):
    spec = parse_transform_spec(SPEC)
    assert to_local_shape(to_remote_shape(value, spec), spec) == value


def test_markers_pass_through():
    spec = parse_transform_spec(SPEC)

    local = {
        "settings": {"@": 1000, "theme": "dark"},
        "title": {"@": 1001, "_": "hello"},
    }

    assert to_remote_shape(local, spec) == {
        "s": {"@": 1000, "th": "dark"},
        "t": {"@": 1001, "_": "hello"},
    }


def test_remote_path():
    spec = parse_transform_spec(SPEC)
    assert spec is not None

    assert spec.remote_path(("settings", "theme")) == ("s", "th")
    assert spec.remote_path(("clients", "id1", "name")) == ("c", "id1", "n")
    assert spec.remote_path(("clients", "id1", "profile", "age")) == (
        "c",
        "id1",
        "profile",
        "a",
    )
    assert spec.remote_path(("untouched", "nested")) == ("untouched", "nested")

    inverse = spec.inverse()
    assert inverse.remote_path(("c", "id1", "n")) == ("clients", "id1", "name")


def test_subtree():
    """
    Transform a value located beneath the root using its resolved spec node.
    """
    spec = parse_transform_spec(SPEC)
    assert spec is not None

    node = spec.resolve(("clients", "id1"))

    assert to_remote_shape({"name": "carol"}, node) == {"n": "carol"}
    assert to_local_shape({"n": "carol"}, node) == {"name": "carol"}


def test_mismatch(logs: LogHandler):
    spec = parse_transform_spec(SPEC)

    remote = to_remote_shape({"clients": "not a dict"}, spec)

    assert remote == {"c": "not a dict"}
    assert "Expected mapping at 'clients'" in logs.text


@mark.parametrize(
    "raw",
    [
        "not a mapping",
        {"a": 1},
        {"a": {"__obj": {}, "__dict": {}}},
        {"a": {"unknown": "x"}},
        {"a": "x", "b": "x"},
        {"a": {"__dict": {"_": "renamed", "__obj": {}}}},
        {"a": {"__obj": "x"}},
    ],
)
def test_invalid(raw):
    with raises(SpecError):
        parse_transform_spec(raw)


def test_none():
    assert parse_transform_spec(None) is None
    assert to_remote_shape({"a": 1}, None) == {"a": 1}
