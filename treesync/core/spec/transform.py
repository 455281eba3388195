"""
Bidirectional renaming of tree nodes between local and remote shape.

A transform spec mirrors the shape of the tree:

```
{
    "settings": {"_": "s", "__obj": {"theme": "t"}},
    "clients": {"_": "c", "__dict": {"profile": "p"}},
    "title": "ttl",
}
```

- `"ttl"`: leaf rename, value copied verbatim
- `"__obj"`: fixed named children, each renamed and transformed recursively;
  children not mentioned pass through unchanged
- `"__dict"`: data-determined children keep their keys; the inner spec is
  applied to each child's value
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from logging import Logger
from typing import Any, Iterable

from ..exceptions import SpecError, TransformMismatchError
from ..utils import VALUE_KEY, Path, is_wrapped
from .walker import BaseSpecNode, NodeKind, WalkMode, WalkStep, walk

__all__ = [
    "TransformSpec",
    "parse_transform_spec",
    "to_remote_shape",
    "to_local_shape",
]

_SPEC_KEYS = {"_", "__obj", "__dict"}


@dataclass
class TransformSpec(BaseSpecNode):
    """
    Parsed transform spec node.
    """

    name: str | None = None
    """Name of this node on the other side, or `None` to keep its key"""

    named: dict[str, TransformSpec] | None = None
    """Object mode: specs of fixed named children"""

    inner: TransformSpec | None = None
    """Dictionary mode: spec applied to every child's value"""

    @property
    def kind(self) -> NodeKind:
        if self.named is not None:
            return NodeKind.NAMED_CHILDREN
        if self.inner is not None:
            return NodeKind.DYNAMIC_CHILDREN
        return NodeKind.LEAF

    def child(self, key: str) -> TransformSpec | None:
        if self.named is not None:
            return self.named.get(key)
        return self.inner

    def remote_key(self, key: str) -> str:
        """
        Get the key of the given child on the other side.
        """
        child = self.child(key)
        return child.name if child is not None and child.name else key

    def remote_path(self, path: Iterable[str]) -> Path:
        """
        Map a path through this spec, renaming each segment.
        """
        node: TransformSpec | None = self
        result: list[str] = []

        for key in path:
            if node is None:
                result.append(key)
            else:
                result.append(node.remote_key(key))
                node = node.child(key)

        return tuple(result)

    def inverse(self, name: str | None = None) -> TransformSpec:
        """
        Get the spec mapping the other way, from remote shape to local.
        """
        named: dict[str, TransformSpec] | None = None

        if self.named is not None:
            named = {}
            for key, child in self.named.items():
                named[child.name or key] = child.inverse(
                    key if child.name else None
                )

        return TransformSpec(
            name=name,
            named=named,
            inner=self.inner.inverse() if self.inner is not None else None,
        )


def parse_transform_spec(raw: Mapping[str, Any] | None) -> TransformSpec | None:
    """
    Parse a declarative transform spec. The root is always in object mode.

    :raises SpecError: If the declaration is malformed
    """
    if raw is None:
        return None

    if not isinstance(raw, Mapping):
        raise SpecError(
            f"Transform spec must be a mapping, got {type(raw).__name__}"
        )

    return TransformSpec(named=_parse_named(raw, ()))


def to_remote_shape(
    value: Any,
    spec: TransformSpec | None,
    *,
    logger: Logger | None = None,
) -> Any:
    """
    Transform a local-shaped value to remote shape.

    :param value: Value to transform
    :param spec: Spec node describing `value` itself
    :param logger: Logger for shape mismatches
    """
    if spec is None:
        return value

    return walk(value, spec, _ShapeVisitor(logger))


def to_local_shape(
    value: Any,
    spec: TransformSpec | None,
    *,
    logger: Logger | None = None,
) -> Any:
    """
    Transform a remote-shaped value to local shape; inverse of
    {obj}`to_remote_shape` for the same spec.
    """
    if spec is None:
        return value

    return to_remote_shape(value, spec.inverse(), logger=logger)


class _ShapeVisitor:
    def __init__(self, logger: Logger | None):
        self._logger = logger or logging.getLogger("treesync")

    def __call__(self, step: WalkStep) -> Any:
        value = step.value

        if is_wrapped(value):
            # primitive carrying a marker: transform what it wraps
            wrapped = dict(value)
            wrapped[VALUE_KEY] = walk(
                value[VALUE_KEY], step.spec, self, step.path
            )
            return wrapped

        if step.mode is not WalkMode.NODE or value is None:
            return value

        try:
            children = step.descend()
        except TransformMismatchError as e:
            self._logger.warning(f"Passing through mismatched data: {e}")
            return value

        assert step.spec is not None
        spec: TransformSpec = step.spec  # type: ignore[assignment]

        return {spec.remote_key(key): child for key, child in children.items()}


def _parse_named(
    raw: Mapping[str, Any], path: Path
) -> dict[str, TransformSpec]:
    named: dict[str, TransformSpec] = {}
    remote_keys: dict[str, str] = {}

    for key, value in raw.items():
        child = _parse_node(value, path + (key,))
        remote = child.name or key

        if remote in remote_keys:
            raise SpecError(
                f"Fields '{remote_keys[remote]}' and '{key}' at "
                f"'{'/'.join(path)}' both map to '{remote}'"
            )

        remote_keys[remote] = key
        named[key] = child

    return named


def _parse_node(raw: Any, path: Path) -> TransformSpec:
    if isinstance(raw, str):
        return TransformSpec(name=raw)

    if not isinstance(raw, Mapping):
        raise SpecError(
            f"Invalid transform at '{'/'.join(path)}': {raw!r}"
        )

    unknown = set(raw.keys()) - _SPEC_KEYS
    if unknown:
        raise SpecError(
            f"Unknown transform keys at '{'/'.join(path)}': {sorted(unknown)}"
        )

    if "__obj" in raw and "__dict" in raw:
        raise SpecError(
            f"Transform at '{'/'.join(path)}' can't be both __obj and __dict"
        )

    name = raw.get("_")
    if name is not None and not isinstance(name, str):
        raise SpecError(f"Invalid rename at '{'/'.join(path)}': {name!r}")

    named: dict[str, TransformSpec] | None = None
    inner: TransformSpec | None = None

    if "__obj" in raw:
        if not isinstance(raw["__obj"], Mapping):
            raise SpecError(f"__obj at '{'/'.join(path)}' must be a mapping")
        named = _parse_named(raw["__obj"], path)

    if "__dict" in raw:
        inner = _parse_inner(raw["__dict"], path + ("*",))

    return TransformSpec(name=name, named=named, inner=inner)


def _parse_inner(raw: Any, path: Path) -> TransformSpec:
    if not isinstance(raw, Mapping):
        raise SpecError(f"__dict at '{'/'.join(path[:-1])}' must be a mapping")

    if raw.keys() & {"__obj", "__dict"}:
        # full node spec
        node = _parse_node(raw, path)
        if node.name is not None:
            raise SpecError(
                f"Dictionary children at '{'/'.join(path[:-1])}' can't be renamed"
            )
        return node

    # shorthand for {"__obj": raw}
    return TransformSpec(named=_parse_named(raw, path))
