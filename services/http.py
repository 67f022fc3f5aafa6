"""HTTP transport used by the catalog client and the downloader."""
from __future__ import annotations

import urllib.error
import urllib.request
from typing import Mapping, Protocol

from nvidia_updater.constants import IMMUTABLE_CONFIG


class HttpResponse(Protocol):
    status: int
    headers: Mapping[str, str]

    def read(self, amt: int = -1) -> bytes:  # pragma: no cover - protocol
        ...

    def close(self) -> None:  # pragma: no cover - protocol
        ...


class HttpTransport(Protocol):
    def get(self, url: str) -> HttpResponse:  # pragma: no cover - protocol
        ...


class _ErrorResponse:
    """Body-less stand-in for a 4xx/5xx reply so callers can inspect the status."""

    def __init__(self, error: urllib.error.HTTPError) -> None:
        self.status = error.code
        self.headers = error.headers or {}
        self._error = error

    def read(self, amt: int = -1) -> bytes:
        return b""

    def close(self) -> None:
        self._error.close()


class UrllibTransport:
    def __init__(self, *, user_agent: str | None = None, timeout: float | None = None) -> None:
        self._user_agent = user_agent or IMMUTABLE_CONFIG.http.user_agent
        self._timeout = timeout if timeout is not None else IMMUTABLE_CONFIG.http.timeout

    def get(self, url: str) -> HttpResponse:
        request = urllib.request.Request(url, headers={"User-Agent": self._user_agent})
        try:
            return urllib.request.urlopen(request, timeout=self._timeout)
        except urllib.error.HTTPError as exc:
            return _ErrorResponse(exc)


def is_success(status: int | None) -> bool:
    return status is not None and 200 <= status < 300


def content_length(response: HttpResponse) -> int | None:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        value = int(str(raw).strip())
    except ValueError:
        return None
    return value if value >= 0 else None
