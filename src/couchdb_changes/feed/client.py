"""HTTP client for the CouchDB continuous ``_changes`` feed."""

from __future__ import annotations

import logging
import ssl
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, Optional
from urllib.parse import quote

import httpx

from .errors import DatabaseNotFound, FeedRequestError
from .sequence import Position, normalize_position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeedClientSettings:
    """Connection settings for one CouchDB database feed."""

    db: str
    host: str = "localhost"
    port: int = 5984
    secure: bool = False
    ca_file: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    heartbeat_ms: int = 1000
    timeout_ms: Optional[int] = None
    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float = 60.0

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    @property
    def path(self) -> str:
        return f"/{quote(self.db, safe='')}/_changes"

    def has_credentials(self) -> bool:
        return self.username is not None and self.password is not None


class FeedClient:
    """Opens the streaming ``_changes`` request and hands back raw bytes."""

    def __init__(
        self,
        settings: FeedClientSettings,
        *,
        http_client: Optional[httpx.Client] = None,
    ) -> None:
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(
                settings.read_timeout_seconds,
                connect=settings.connect_timeout_seconds,
            ),
            verify=_build_verify(settings),
        )

    @property
    def settings(self) -> FeedClientSettings:
        return self._settings

    def build_params(self, resume_from: Optional[Position]) -> Dict[str, str]:
        params = {
            "feed": "continuous",
            "include_docs": "true",
            "since": normalize_position(resume_from),
        }
        # timeout and heartbeat are mutually exclusive on the wire
        if self._settings.timeout_ms is not None:
            params["timeout"] = str(self._settings.timeout_ms)
        else:
            params["heartbeat"] = str(self._settings.heartbeat_ms)
        return params

    def build_url(self) -> httpx.URL:
        settings = self._settings
        parts: Dict[str, object] = {
            "scheme": settings.scheme,
            "host": settings.host,
            "port": settings.port,
            "path": settings.path,
        }
        if settings.has_credentials():
            parts["username"] = settings.username
            parts["password"] = settings.password
        return httpx.URL(**parts)

    def describe(self) -> str:
        """Return the feed location without credentials, for logging."""
        settings = self._settings
        return f"{settings.scheme}://{settings.host}:{settings.port}{settings.path}"

    @contextmanager
    def open(self, resume_from: Optional[Position]) -> Iterator[Iterator[bytes]]:
        """Issue the streaming GET and yield an iterator over raw body chunks."""
        params = self.build_params(resume_from)
        logger.debug(
            "opening changes feed %s since=%s", self.describe(), params["since"]
        )
        with self._client.stream("GET", self.build_url(), params=params) as response:
            _raise_for_status(response, self._settings.db)
            yield response.iter_bytes()

    def close(self) -> None:
        if self._owns_client:
            self._client.close()


def _build_verify(settings: FeedClientSettings) -> ssl.SSLContext | bool:
    if settings.secure and settings.ca_file:
        return ssl.create_default_context(cafile=settings.ca_file)
    return True


def _raise_for_status(response: httpx.Response, database: str) -> None:
    if response.is_success:
        return
    status = response.status_code
    if status == 404:
        response.read()
        raise DatabaseNotFound(database)
    detail: Optional[str] = None
    try:
        body = response.read()
        detail = body.decode("utf-8", errors="replace").strip()[:200] or None
    except httpx.HTTPError:  # body is only used for the error message
        detail = None
    raise FeedRequestError(status, detail)


__all__ = ["FeedClient", "FeedClientSettings"]
