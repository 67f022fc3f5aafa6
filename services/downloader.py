"""Streaming file download with a size-based cache check."""
from __future__ import annotations

import logging
from contextlib import closing
from pathlib import Path

from nvidia_updater.constants import IMMUTABLE_CONFIG
from services.errors import DownloadError, PipelineCancelled
from services.http import HttpResponse, HttpTransport, UrllibTransport, content_length, is_success
from services.progress import CancellationToken, ProgressReporter, StageName

logger = logging.getLogger(__name__)


class Downloader:
    def __init__(self, *, transport: HttpTransport | None = None, chunk_size: int | None = None) -> None:
        self._transport = transport or UrllibTransport()
        self._chunk_size = chunk_size or IMMUTABLE_CONFIG.http.chunk_size

    def download(
        self,
        url: str,
        destination: Path,
        reporter: ProgressReporter | None = None,
        cancel: CancellationToken | None = None,
    ) -> Path:
        """Fetch ``url`` into ``destination``.

        An existing file whose size equals the remote Content-Length is reused
        without reading the body. Otherwise the body is streamed to a sibling
        ``.download`` file that is renamed into place once complete.
        """
        reporter = reporter or ProgressReporter(StageName.DOWNLOAD)
        destination = Path(destination)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"Cannot create {destination.parent}: {exc}") from exc
        temp_path = destination.with_name(destination.name + ".download")

        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            response = self._transport.get(url)
        except OSError as exc:
            raise DownloadError(f"Download failed for {url}: {exc}") from exc

        with closing(response):
            if not is_success(response.status):
                raise DownloadError(f"Download failed for {url}: HTTP {response.status}")
            total = content_length(response)
            if total is not None and destination.is_file() and destination.stat().st_size == total:
                logger.info("Using cached %s (%d bytes)", destination.name, total)
                reporter.complete("cached")
                return destination
            try:
                self._stream(response, temp_path, total, reporter, cancel)
                temp_path.replace(destination)
            except PipelineCancelled:
                _discard(temp_path)
                raise
            except DownloadError:
                _discard(temp_path)
                raise
            except OSError as exc:
                _discard(temp_path)
                raise DownloadError(f"Download failed for {url}: {exc}") from exc

        logger.info("Downloaded %s", destination)
        reporter.complete()
        return destination

    def _stream(
        self,
        response: HttpResponse,
        temp_path: Path,
        total: int | None,
        reporter: ProgressReporter,
        cancel: CancellationToken | None,
    ) -> None:
        received = 0
        with temp_path.open("wb") as handle:
            while True:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                chunk = response.read(self._chunk_size)
                if not chunk:
                    break
                handle.write(chunk)
                received += len(chunk)
                if total:
                    reporter.report(received * 100 // total)
        if total is not None and received != total:
            raise DownloadError(f"Transfer ended after {received} of {total} bytes")


def _discard(path: Path) -> None:
    if path.exists():
        path.unlink()
