"""
This module implements the persistence engine: pending-write batching, field
transforms, modified-marker tracking and last-write-wins merging.
"""

from pyrollup import rollup

from . import (
    adapters,
    batcher,
    engine,
    exceptions,
    merge,
    mirror,
    options,
    pending,
    registry,
    signal,
    snapshot,
    spec,
    state,
    utils,
)
from .adapters import *  # noqa
from .batcher import *  # noqa
from .engine import *  # noqa
from .exceptions import *  # noqa
from .merge import *  # noqa
from .mirror import *  # noqa
from .options import *  # noqa
from .pending import *  # noqa
from .registry import *  # noqa
from .signal import *  # noqa
from .snapshot import *  # noqa
from .spec import *  # noqa
from .state import *  # noqa
from .utils import *  # noqa

__all__ = rollup(
    engine,
    state,
    options,
    registry,
    adapters,
    pending,
    batcher,
    merge,
    mirror,
    snapshot,
    spec,
    signal,
    exceptions,
    utils,
)

__canonical_children__ = [
    "engine",
    "state",
    "options",
    "registry",
    "adapters",
    "pending",
    "batcher",
    "merge",
    "mirror",
    "snapshot",
    "spec",
    "signal",
    "exceptions",
    "utils",
]
