"""
Explicit registry of shared persistence adapter instances.
"""

from __future__ import annotations

from typing import TypeVar

from .adapters.base import BaseLocalStore, BaseRemoteBackend

__all__ = [
    "PersistenceRegistry",
]

type Adapter = BaseLocalStore | BaseRemoteBackend

AdapterT = TypeVar("AdapterT", BaseLocalStore, BaseRemoteBackend)


class PersistenceRegistry:
    """
    Maps adapter class to the single instance shared by every tree persisted
    with it. Instances are created on first use unless registered upfront,
    e.g. to pass constructor arguments or a test double.
    """

    _instances: dict[type, Adapter]

    def __init__(self, *instances: Adapter):
        self._instances = {}

        for instance in instances:
            self.register(instance)

    def __contains__(self, cls: type) -> bool:
        return cls in self._instances

    def __repr__(self):
        names = ", ".join(cls.__name__ for cls in self._instances)
        return f"PersistenceRegistry({names})"

    def register(self, instance: Adapter, cls: type | None = None):
        """
        Register instance for its own class, or for `cls` if given.
        """
        cls = cls or type(instance)
        assert isinstance(instance, cls)
        self._instances[cls] = instance

    def get(self, cls: type[AdapterT]) -> AdapterT:
        """
        Get the shared instance of `cls`, creating it if needed.
        """
        instance = self._instances.get(cls)

        if instance is None:
            instance = cls()
            self._instances[cls] = instance

        assert isinstance(instance, cls)
        return instance
