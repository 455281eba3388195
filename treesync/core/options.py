"""
Options of a persisted tree and engine-wide defaults.
"""

from __future__ import annotations

from functools import cached_property
from typing import Any, Callable, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from .adapters.base import BaseLocalStore, BaseRemoteBackend
from .adapters.local import FileLocalStore
from .spec.tracking import TrackingSpec, parse_tracking_spec
from .spec.transform import TransformSpec, parse_transform_spec

__all__ = [
    "PersistOptions",
    "RemoteOptions",
    "PersistConfig",
]


class RemoteOptions(BaseModel):
    """
    How a tree is synchronized with the remote backend.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    sync_path: str | Callable[[str | None], str]
    """
    Backend path the tree is stored at: a format string which may reference
    the authenticated user as `{uid}`, e.g. `/users/{uid}/s/`, or a callable
    receiving the user id.
    """

    require_auth: bool = False
    """Wait for an authenticated session before any remote operation"""

    query_by_modified: Any = None
    """
    Tracking spec selecting the nodes which carry modified markers, e.g.
    `{"clients": {"*": True}}`.
    """

    field_transforms: dict[str, Any] | None = None
    """
    Transform spec renaming local fields to remote ones, e.g.
    `{"name": "n", "items": {"_": "i", "__dict": {"title": "t"}}}`.
    """

    save_timeout: float | None = Field(default=None, ge=0)
    """Debounce delay in seconds; defaults to {obj}`PersistConfig.save_timeout`"""

    retry_interval: float | None = Field(default=None, ge=0)
    """Delay before retrying a failed remote operation"""

    @field_validator("sync_path")
    def validate_sync_path(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip("/"):
            raise ValueError("sync_path must not be the backend root")
        return value

    @field_validator("query_by_modified")
    def validate_query_by_modified(cls, value: Any) -> Any:
        # parsed again by tracking property
        parse_tracking_spec(value)
        return value

    @field_validator("field_transforms")
    def validate_field_transforms(cls, value: Any) -> Any:
        parse_transform_spec(value)
        return value

    @cached_property
    def tracking(self) -> TrackingSpec | None:
        return parse_tracking_spec(self.query_by_modified)

    @cached_property
    def transform(self) -> TransformSpec | None:
        return parse_transform_spec(self.field_transforms)

    def resolve_sync_path(self, uid: str | None) -> str:
        """
        Get the backend path for the given user.
        """
        if callable(self.sync_path):
            return self.sync_path(uid)

        return self.sync_path.format(uid=uid)


class PersistOptions(BaseModel):
    """
    Persistence of one tree: a local snapshot key, remote sync, or both.
    """

    local: str | None = None
    """Key of the local snapshot record"""

    remote: RemoteOptions | None = None

    @model_validator(mode="after")
    def validate_target(self) -> Self:
        if self.local is None and self.remote is None:
            raise ValueError("at least one of local or remote must be given")
        return self


class PersistConfig(BaseModel):
    """
    Engine-wide defaults shared by all persisted trees.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    local_persistence: type[BaseLocalStore] = FileLocalStore
    """Local store class, instantiated once through the registry"""

    remote_persistence: type[BaseRemoteBackend] | None = None
    """Remote backend class, instantiated once through the registry"""

    save_timeout: float = Field(default=0.5, ge=0)
    """Default debounce delay in seconds"""

    retry_interval: float = Field(default=5.0, ge=0)
    """Default delay before retrying a failed remote operation"""
