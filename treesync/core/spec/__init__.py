"""
Declarative specs walked in lockstep with the state tree: field transforms
and modified-marker tracking.
"""

from pyrollup import rollup

from . import tracking, transform, walker
from .tracking import *  # noqa
from .transform import *  # noqa
from .walker import *  # noqa

__all__ = rollup(
    walker,
    transform,
    tracking,
)

__canonical_syms__ = __all__
