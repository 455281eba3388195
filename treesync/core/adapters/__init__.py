"""
Interfaces to the local durable store and the remote backend, with reference
implementations of each.
"""

from pyrollup import rollup

from . import base, firebase, local, memory
from .base import *  # noqa
from .firebase import *  # noqa
from .local import *  # noqa
from .memory import *  # noqa

__all__ = rollup(
    base,
    local,
    memory,
    firebase,
)

__canonical_syms__ = __all__
