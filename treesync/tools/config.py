"""
Interface to configuration as persisted in .yaml file.
"""
from __future__ import annotations

from logging import Logger
from pathlib import Path
from typing import Any, Self

from pydantic import (
    BaseModel,
    Field,
    field_serializer,
    field_validator,
    model_validator,
)

from ..core import (
    FileLocalStore,
    FirebaseRestBackend,
    PersistConfig,
    PersistenceRegistry,
    PersistOptions,
)
from .yaml_model import BaseYamlModel

__all__ = [
    "Config",
    "RemoteConfig",
]


class Config(BaseYamlModel):
    """
    Encapsulates configuration for use in tools.
    """

    local_dir: Path = Path(".treesync")
    """
    Folder holding local snapshots, one `<key>.json` per tree.
    """

    remote: RemoteConfig | None = None
    """
    Remote backend connection, required for remote commands.
    """

    save_timeout: float = Field(default=0.5, ge=0)
    retry_interval: float = Field(default=5.0, ge=0)

    trees: dict[str, PersistOptions] = Field(default_factory=dict)
    """
    Mapping of tree names to persistence options.
    """

    @field_validator("local_dir", mode="before")
    def validate_local_dir(cls, value: Any) -> Any:
        return Path(value) if isinstance(value, str) else value

    @field_serializer("local_dir")
    def serialize_local_dir(self, value: Path) -> str:
        return str(value)

    @model_validator(mode="after")
    def validate_trees(self) -> Self:
        # remote trees need a backend to sync with
        for name, options in self.trees.items():
            if options.remote is not None and self.remote is None:
                raise ValueError(
                    f"tree '{name}' has remote options but no remote is configured"
                )
        return self

    def create_persist_config(self) -> PersistConfig:
        return PersistConfig(
            local_persistence=FileLocalStore,
            remote_persistence=FirebaseRestBackend if self.remote else None,
            save_timeout=self.save_timeout,
            retry_interval=self.retry_interval,
        )

    def create_registry(self, *, logger: Logger) -> PersistenceRegistry:
        """
        Get registry holding this config's local store and remote backend.
        """
        registry = PersistenceRegistry(FileLocalStore(self.local_dir))

        if self.remote is not None:
            registry.register(self.remote.create_backend(logger=logger))

        return registry


class RemoteConfig(BaseModel):
    """
    Encapsulates info for a Realtime Database.
    """

    url: str
    auth_token: str | None = None
    uid: str | None = None
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("url")
    def validate_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"url must be http(s): '{value}'")
        return value.rstrip("/")

    def create_backend(self, *, logger: Logger) -> FirebaseRestBackend:
        """
        Get backend from this remote's fields.
        """
        return FirebaseRestBackend(
            self.url,
            auth_token=self.auth_token,
            uid=self.uid,
            timeout=self.timeout,
            logger=logger,
        )
