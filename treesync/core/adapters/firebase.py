"""
Remote backend for the Firebase Realtime Database REST API.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections.abc import Mapping
from logging import Logger
from typing import Any, Callable

import requests

from ..exceptions import RemoteUnavailableError, RemoteWriteError
from ..utils import SERVER_TIMESTAMP, normalize_path
from .base import BaseRemoteBackend, DeltaCallback, WriteAck

__all__ = [
    "FirebaseRestBackend",
]

SERVER_VALUE = {".sv": "timestamp"}
"""
Server value which the database replaces with its commit time.
"""


class FirebaseRestBackend(BaseRemoteBackend):
    """
    Accesses a Realtime Database over HTTP: snapshots with `GET`, batches as
    one multi-location `PATCH` and changes through the server-sent events
    stream, which is consumed on a daemon thread.

    The database is considered authenticated once a user id is known, either
    from the constructor or from {obj}`sign_in`.
    """

    url: str
    """Database URL, e.g. `https://my-db.firebaseio.com`"""

    auth_token: str | None
    """ID token or database secret passed as `auth` query parameter"""

    timeout: float
    """Timeout of non-streaming requests in seconds"""

    _uid: str | None = None
    _logger: Logger

    def __init__(
        self,
        url: str,
        *,
        auth_token: str | None = None,
        uid: str | None = None,
        timeout: float = 10.0,
        logger: Logger | None = None,
    ):
        super().__init__()

        self.url = url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = timeout
        self._logger = logger or logging.getLogger("treesync")

        if uid is not None:
            self.sign_in(uid, auth_token)

    @property
    def uid(self) -> str | None:
        return self._uid

    def sign_in(self, uid: str, auth_token: str | None = None):
        if auth_token is not None:
            self.auth_token = auth_token
        self._uid = uid
        self.authenticated.set()

    async def load_snapshot(self, path: str) -> Any:
        return await asyncio.to_thread(self._get, path)

    async def write_batch(self, writes: dict[str, Any]) -> WriteAck:
        return await asyncio.to_thread(self._patch, writes)

    def subscribe(self, path: str, on_delta: DeltaCallback) -> Callable[[], None]:
        loop = asyncio.get_running_loop()
        stop = threading.Event()

        thread = threading.Thread(
            target=self._stream,
            args=(path, on_delta, loop, stop),
            name=f"treesync-sse:{path}",
            daemon=True,
        )
        thread.start()

        def unsubscribe():
            stop.set()

        return unsubscribe

    def _url_for(self, path: str) -> str:
        segments = "/".join(normalize_path(path))
        return f"{self.url}/{segments}.json" if segments else f"{self.url}/.json"

    @property
    def _params(self) -> dict[str, str]:
        return {"auth": self.auth_token} if self.auth_token else {}

    def _get(self, path: str) -> Any:
        try:
            response = requests.get(
                self._url_for(path), params=self._params, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"GET {path} failed: {e}") from e

        if response.status_code != 200:
            raise RemoteUnavailableError(
                f"GET {path} response: {response.status_code} {response.text}"
            )

        return response.json()

    def _patch(self, writes: dict[str, Any]) -> WriteAck:
        body = {
            "/".join(normalize_path(path)): _to_server_values(value)
            for path, value in writes.items()
        }

        self._logger.debug(f"PATCH {len(body)} paths to {self.url}")

        try:
            response = requests.patch(
                self._url_for(""),
                params=self._params,
                data=json.dumps(body),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise RemoteUnavailableError(f"PATCH failed: {e}") from e

        if response.status_code != 200:
            raise RemoteWriteError(
                f"PATCH response: {response.status_code} {response.text}"
            )

        timestamp = _find_timestamp(writes, response.json())
        if timestamp is None:
            # response didn't echo a server value
            timestamp = int(time.time() * 1000)

        return WriteAck(timestamp=timestamp)

    def _stream(
        self,
        path: str,
        on_delta: DeltaCallback,
        loop: asyncio.AbstractEventLoop,
        stop: threading.Event,
    ):
        try:
            with requests.get(
                self._url_for(path),
                params=self._params,
                headers={"Accept": "text/event-stream"},
                stream=True,
                timeout=(self.timeout, None),
            ) as response:
                event: str | None = None

                for line in response.iter_lines(decode_unicode=True):
                    if stop.is_set():
                        break

                    if line.startswith("event:"):
                        event = line[len("event:") :].strip()
                    elif line.startswith("data:") and event in ("put", "patch"):
                        payload = json.loads(line[len("data:") :].strip())
                        for rel, value in _deltas(event, payload):
                            loop.call_soon_threadsafe(on_delta, rel, value)
                    elif event in ("cancel", "auth_revoked"):
                        self._logger.error(
                            f"Subscription to '{path}' ended by server: {event}"
                        )
                        break

        except requests.RequestException as e:
            self._logger.error(f"Subscription to '{path}' failed: {e}")


def _deltas(event: str, payload: Mapping[str, Any]) -> list[tuple[str, Any]]:
    """
    Convert a stream event to `(relative path, new value)` deltas.
    """
    base = normalize_path(payload.get("path"))
    data = payload.get("data")

    if event == "put":
        return [("/".join(base), data)]

    assert isinstance(data, Mapping)
    return [
        ("/".join(base + normalize_path(key)), value)
        for key, value in data.items()
    ]


def _to_server_values(value: Any) -> Any:
    if value == SERVER_TIMESTAMP:
        return SERVER_VALUE

    if isinstance(value, Mapping):
        return {k: _to_server_values(v) for k, v in value.items()}

    return value


def _find_timestamp(sent: Any, received: Any) -> Any:
    """
    Find the commit time the server substituted for the first sentinel.
    """
    if sent == SERVER_TIMESTAMP:
        return received if isinstance(received, (int, float)) else None

    if isinstance(sent, Mapping) and isinstance(received, Mapping):
        for key, value in sent.items():
            lookup = "/".join(normalize_path(key))
            if lookup in received:
                found = _find_timestamp(value, received[lookup])
                if found is not None:
                    return found

    return None
