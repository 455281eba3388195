"""
Serialization of the full local-shaped tree to and from the local durable
store, with modified markers inlined under the reserved key.
"""

from __future__ import annotations

import inspect
import json
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .exceptions import LocalStoreError
from .utils import MARKER_KEY, VALUE_KEY, Path, is_wrapped

if TYPE_CHECKING:
    from .adapters.base import BaseLocalStore
    from .state import BaseStateContainer

__all__ = [
    "LocalSnapshotCodec",
    "encode_snapshot",
    "decode_snapshot",
    "lift_markers",
]


class LocalSnapshotCodec:
    """
    Persists a container's tree as one record under a key of the local store.
    """

    store: BaseLocalStore
    key: str

    def __init__(self, store: BaseLocalStore, key: str):
        self.store = store
        self.key = key

    def save(self, container: BaseStateContainer) -> Any:
        """
        Write snapshot of container. Returns an awaitable if the store's
        write is asynchronous.

        :raises LocalStoreError: If the store fails
        """
        raw = encode_snapshot(container)

        try:
            return self.store.write(self.key, raw)
        except OSError as e:
            raise LocalStoreError(self.key, str(e)) from e

    def read(self) -> str | None:
        """
        Read raw snapshot synchronously.

        :raises LocalStoreError: If the store fails or is asynchronous
        """
        try:
            raw = self.store.read(self.key)
        except OSError as e:
            raise LocalStoreError(self.key, str(e)) from e

        if inspect.isawaitable(raw):
            if inspect.iscoroutine(raw):
                raw.close()
            raise LocalStoreError(
                self.key, "store is asynchronous, use load_async()"
            )

        return raw

    def load(self, container: BaseStateContainer) -> dict[Path, Any] | None:
        """
        Load snapshot into container, lifting inline markers. Returns the
        markers found, or `None` if there is no snapshot.
        """
        return apply_snapshot(container, self.key, self.read())

    async def load_async(
        self, container: BaseStateContainer
    ) -> dict[Path, Any] | None:
        try:
            raw = self.store.read(self.key)
            if inspect.isawaitable(raw):
                raw = await raw
        except OSError as e:
            raise LocalStoreError(self.key, str(e)) from e

        return apply_snapshot(container, self.key, raw)


def apply_snapshot(
    container: BaseStateContainer, key: str, raw: str | None
) -> dict[Path, Any] | None:
    if raw is None:
        return None

    tree, markers = decode_snapshot(raw, key=key)

    for child_key, value in tree.items():
        container.set((child_key,), value)

    for path, marker in markers.items():
        container.set_modified(path, marker)

    return markers


def encode_snapshot(container: BaseStateContainer) -> str:
    """
    Serialize container's tree with its modified markers inlined.
    """
    tree = _inline_markers(container, container.get(()), ())
    return json.dumps(tree, separators=(",", ":"), ensure_ascii=False)


def decode_snapshot(
    raw: str, *, key: str = ""
) -> tuple[dict[str, Any], dict[Path, Any]]:
    """
    Deserialize a snapshot, returning the plain tree and a mapping of path to
    marker.

    :raises LocalStoreError: If the snapshot isn't a JSON object
    """
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise LocalStoreError(key, f"corrupt snapshot: {e}") from e

    if not isinstance(data, dict):
        raise LocalStoreError(key, "snapshot is not an object")

    tree, markers = lift_markers(data)
    return (tree or {}, markers)


def lift_markers(value: Any, path: Path = ()) -> tuple[Any, dict[Path, Any]]:
    """
    Strip reserved marker keys from `value`, returning the plain value and a
    mapping of path to marker. Unconditional: doesn't consult any spec.
    """
    markers: dict[Path, Any] = {}

    def lift(node: Any, node_path: Path) -> Any:
        if not isinstance(node, Mapping):
            return node

        if MARKER_KEY in node:
            markers[node_path] = node[MARKER_KEY]

        if is_wrapped(node):
            return node[VALUE_KEY]

        result = {
            k: lift(v, node_path + (k,))
            for k, v in node.items()
            if k != MARKER_KEY
        }

        # marker of a deleted node
        if not result and MARKER_KEY in node:
            return None

        return result

    return (lift(value, path), markers)


def _inline_markers(
    container: BaseStateContainer, value: Any, path: Path
) -> Any:
    marker = container.get_modified(path)

    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        if marker is not None:
            result[MARKER_KEY] = marker
        for k, v in value.items():
            result[k] = _inline_markers(container, v, path + (k,))
        return result

    if marker is not None:
        return {MARKER_KEY: marker, VALUE_KEY: value}

    return value
