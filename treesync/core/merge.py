"""
Merges remote data into the local container with per-unit last-write-wins.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from logging import Logger
from typing import TYPE_CHECKING, Any, Callable

from .snapshot import lift_markers
from .spec.tracking import (
    TrackingSpec,
    extract_incoming,
    is_tracked_unit,
    unit_path_for,
)
from .spec.walker import BaseSpecNode, WalkMode, WalkStep, walk
from .utils import MARKER_KEY, SERVER_TIMESTAMP, Path

if TYPE_CHECKING:
    from .state import BaseStateContainer

__all__ = [
    "RemoteMerger",
    "remote_wins",
]


def remote_wins(local_marker: Any, remote_marker: Any) -> bool:
    """
    Decide whether a remote unit replaces the local one.

    - No local marker: remote wins
    - Local marker is the pending sentinel: local holds a newer write not yet
    acknowledged, local wins
    - Otherwise remote wins iff its marker is at least as new
    """
    if local_marker is None:
        return True

    if local_marker == SERVER_TIMESTAMP:
        return False

    if remote_marker is None or remote_marker == SERVER_TIMESTAMP:
        return False

    try:
        return bool(remote_marker >= local_marker)
    except TypeError:
        return False


class RemoteMerger:
    """
    Applies local-shaped remote data to a container.
    """

    container: BaseStateContainer
    tracking: TrackingSpec | None

    _is_pending: Callable[[Path], bool]
    _logger: Logger

    def __init__(
        self,
        container: BaseStateContainer,
        tracking: TrackingSpec | None,
        *,
        is_pending: Callable[[Path], bool] | None = None,
        logger: Logger | None = None,
    ):
        self.container = container
        self.tracking = tracking
        self._is_pending = is_pending or (lambda path: False)
        self._logger = logger or logging.getLogger("treesync")

    def merge(self, path: Path, value: Any):
        """
        Merge remote value at path. Tracked units under `path` are resolved
        independently by their markers; untracked data is overwritten unless
        a local write to it is still pending.
        """
        if path and path[-1] == MARKER_KEY:
            self._merge_marker(path[:-1], value)
            return

        unit = unit_path_for(path, self.tracking)

        if unit is not None and unit != path:
            self._merge_within_unit(unit, path, value)
            return

        spec: BaseSpecNode | None = (
            self.tracking.resolve(path) if self.tracking is not None else None
        )
        walk(value, spec, self._visit, path)

    def _visit(self, step: WalkStep):
        if step.mode is WalkMode.TERMINAL:
            self._merge_unit(step.path, step.value, step.spec)
        elif step.key == MARKER_KEY:
            self._merge_marker(step.path[:-1], step.value)
        elif isinstance(step.value, Mapping) and (
            not step.path or self._is_pending(step.path)
        ):
            step.descend()
        elif step.mode is WalkMode.NODE and isinstance(step.value, Mapping):
            step.descend()
        else:
            self._overwrite(step.path, step.value)

    def _merge_unit(self, path: Path, value: Any, spec: BaseSpecNode | None):
        marker, value = extract_incoming(value, spec)
        local_marker = self.container.get_modified(path)

        if not remote_wins(local_marker, marker):
            self._logger.debug(
                f"Keeping local '{'/'.join(path)}': local={local_marker}, remote={marker}"
            )
            return

        clean, nested = lift_markers(value, path)

        self.container.set(path, clean)
        self.container.set_modified(path, marker)

        for nested_path, nested_marker in nested.items():
            if nested_path != path:
                self.container.set_modified(nested_path, nested_marker)

    def _merge_within_unit(self, unit: Path, path: Path, value: Any):
        if self.container.get_modified(unit) == SERVER_TIMESTAMP:
            self._logger.debug(
                f"Skipping remote change at '{'/'.join(path)}': unit has pending local write"
            )
            return

        self._apply(path, value)

    def _merge_marker(self, path: Path, marker: Any):
        if is_tracked_unit(path, self.tracking):
            if remote_wins(self.container.get_modified(path), marker):
                self.container.set_modified(path, marker)
        elif not self._is_pending(path):
            self.container.set_modified(path, marker)

    def _overwrite(self, path: Path, value: Any):
        if self._is_pending(path):
            self._logger.debug(
                f"Skipping remote change at '{'/'.join(path)}': local write pending"
            )
            return

        self._apply(path, value)

    def _apply(self, path: Path, value: Any):
        clean, markers = lift_markers(value, path)

        self.container.set(path, clean)

        for marker_path, marker in markers.items():
            self.container.set_modified(marker_path, marker)
