"""
Pending-write trie accumulating local mutations not yet flushed to the
remote backend.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generator

from .utils import Path

__all__ = [
    "Replacement",
    "PendingTree",
]


@dataclass
class Replacement:
    """
    Captured value superseding the entire subtree at its path.
    """

    value: Any


class PendingTree:
    """
    Trie of pending writes. Interior nodes are plain dicts; leaves are
    {obj}`Replacement` objects.

    - A write at a path with pending entries beneath it supersedes them
    - A write beneath an existing replacement is folded into its captured
    value
    """

    root: dict[str, Any] | Replacement

    def __init__(self):
        self.root = {}

    def __repr__(self):
        return f"PendingTree({self.root!r})"

    def __bool__(self) -> bool:
        return not self.is_empty

    @property
    def is_empty(self) -> bool:
        return isinstance(self.root, dict) and not self.root

    def insert(self, path: Path, value: Any):
        """
        Record a write of `value` at `path`.
        """
        value = copy.deepcopy(value)

        if not path:
            self.root = Replacement(value)
            return

        node = self.root

        for i, key in enumerate(path[:-1]):
            if isinstance(node, Replacement):
                node.value = _fold(node.value, path[i:], value)
                return

            child = node.get(key)
            if child is None:
                child = node[key] = {}
            node = child

        if isinstance(node, Replacement):
            node.value = _fold(node.value, path[-1:], value)
            return

        # supersedes any finer entries beneath
        node[path[-1]] = Replacement(value)

    def overlaps(self, path: Path) -> bool:
        """
        Whether a pending write covers `path`, an ancestor of it or anything
        beneath it.
        """
        node: Any = self.root

        for key in path:
            if isinstance(node, Replacement):
                return True
            if key not in node:
                return False
            node = node[key]

        return isinstance(node, Replacement) or bool(node)

    def iter_replacements(
        self, node: Any = None, path: Path = ()
    ) -> Generator[tuple[Path, Any], None, None]:
        """
        Yield `(path, value)` of every pending replacement.
        """
        node = self.root if node is None else node

        if isinstance(node, Replacement):
            yield (path, node.value)
            return

        for key, child in node.items():
            yield from self.iter_replacements(child, path + (key,))

    def update(self, newer: PendingTree):
        """
        Layer writes from a newer trie on top of this one.
        """
        for path, value in newer.iter_replacements():
            self.insert(path, value)


def _fold(captured: Any, path: Path, value: Any) -> Any:
    """
    Set `value` at `path` within a captured value, returning the result.
    """
    if not path:
        return value

    result = dict(captured) if isinstance(captured, Mapping) else {}
    child = _fold(result.get(path[0]), path[1:], value)

    if child is None:
        result.pop(path[0], None)
    else:
        result[path[0]] = child

    return result
