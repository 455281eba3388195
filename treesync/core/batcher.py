"""
Flattens the pending-write trie into a minimal set of remote path/value
writes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import Logger
from typing import Any

from .pending import PendingTree, Replacement
from .spec.tracking import (
    TrackingSpec,
    annotate_outgoing,
    annotate_units,
    marker_path_for,
    units_in,
)
from .spec.transform import TransformSpec, to_remote_shape
from .spec.walker import WalkMode, WalkStep, walk
from .utils import SERVER_TIMESTAMP, Path, join_path

__all__ = [
    "Batch",
    "construct_batch",
]


@dataclass
class Batch:
    """
    Writes gathered from a pending-write trie.
    """

    entries: dict[Path, Any] = field(default_factory=dict)
    """Mapping of remote path (relative to sync path) to value"""

    units: list[Path] = field(default_factory=list)
    """Local paths of tracked units written by this batch"""

    def __bool__(self) -> bool:
        return bool(self.entries)

    def writes(self, base_path: str) -> dict[str, Any]:
        """
        Get flat mapping of fully-qualified remote path to value, suitable
        for one multi-path write.
        """
        return {
            join_path(base_path, path): value
            for path, value in self.entries.items()
        }


def construct_batch(
    pending: PendingTree,
    tracking: TrackingSpec | None,
    transform: TransformSpec | None,
    *,
    logger: Logger | None = None,
) -> Batch:
    """
    Walk the pending trie with the tracking spec, emitting one write per
    changed leaf or tracked unit so that concurrent remote writes to
    unrelated siblings are never clobbered.
    """
    batch = Batch()

    if pending.is_empty:
        return batch

    builder = _BatchBuilder(batch, tracking, transform, logger)
    walk(pending.root, tracking, builder)

    return batch


class _BatchBuilder:
    def __init__(
        self,
        batch: Batch,
        tracking: TrackingSpec | None,
        transform: TransformSpec | None,
        logger: Logger | None,
    ):
        self._batch = batch
        self._tracking = tracking
        self._transform = transform
        self._logger = logger

    def __call__(self, step: WalkStep):
        value = step.value

        if step.mode is WalkMode.TERMINAL:
            self._batch.units.append(step.path)

            if isinstance(value, Replacement):
                # whole unit: marker and value stored together
                self._emit(
                    step.path,
                    annotate_outgoing(self._shape(step.path, value.value)),
                )
            else:
                # finer writes within unit: marker written alongside them
                self._batch.entries[
                    self._remote_path(marker_path_for(step.path))
                ] = SERVER_TIMESTAMP
                self._emit_leaves(step.path, value)

        elif isinstance(value, Replacement):
            spec: TrackingSpec | None = step.spec  # type: ignore[assignment]
            annotated = annotate_units(value.value, spec, path=step.path)
            self._batch.units.extend(units_in(value.value, spec, step.path))
            self._emit(step.path, self._shape(step.path, annotated))

        elif step.mode is WalkMode.UNTRACKED:
            self._emit_leaves(step.path, value)

        else:
            step.descend()

    def _emit_leaves(self, path: Path, node: dict[str, Any]):
        for key, child in node.items():
            if isinstance(child, Replacement):
                self._emit(path + (key,), self._shape(path + (key,), child.value))
            else:
                self._emit_leaves(path + (key,), child)

    def _emit(self, path: Path, value: Any):
        self._batch.entries[self._remote_path(path)] = value

    def _shape(self, path: Path, value: Any) -> Any:
        if self._transform is None:
            return value

        return to_remote_shape(
            value, self._transform.resolve(path), logger=self._logger
        )

    def _remote_path(self, path: Path) -> Path:
        if self._transform is None:
            return path

        return self._transform.remote_path(path)
