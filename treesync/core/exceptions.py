__all__ = [
    "SpecError",
    "TransformMismatchError",
    "RemoteWriteError",
    "RemoteUnavailableError",
    "LocalStoreError",
]


class SpecError(ValueError):
    """
    Raised when a field transform or modified-tracking declaration is
    malformed.
    """


class TransformMismatchError(Exception):
    """
    Raised internally when data doesn't have the shape its spec declares,
    e.g. dictionary mode applied to a primitive. Never fatal: callers log it
    and pass the data through unchanged.
    """

    path: tuple[str, ...]

    def __init__(self, path: tuple[str, ...], value: object):
        self.path = path
        super().__init__(
            f"Expected mapping at '{'/'.join(path)}', got {type(value).__name__}"
        )


class RemoteWriteError(Exception):
    """
    Raised by a remote backend when a batch write was rejected or failed in
    transit. Pending writes are retained and retried.
    """


class RemoteUnavailableError(Exception):
    """
    Raised by a remote backend when it can't be reached or the session isn't
    authenticated. Remote operations are deferred, never dropped.
    """


class LocalStoreError(Exception):
    """
    Raised when the local durable store fails to read or write a snapshot.
    Surfaced to the caller since it threatens durability.
    """

    key: str

    def __init__(self, key: str, reason: str):
        self.key = key
        super().__init__(f"Local store failure for key '{key}': {reason}")
