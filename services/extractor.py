"""Selective extraction of the driver package with 7-Zip's standalone tool."""
from __future__ import annotations

import logging
import queue
import re
import threading
from pathlib import Path
from typing import IO

from nvidia_updater.constants import IMMUTABLE_CONFIG, ExtractorSetting
from nvidia_updater.paths import get_application_directory
from services.downloader import Downloader
from services.errors import DownloadError, ExtractionError, PipelineCancelled
from services.process import PopenLauncher, ProcessHandle, ProcessLauncher
from services.progress import CancellationToken, ProgressReporter

logger = logging.getLogger(__name__)

PERCENT_PATTERN = re.compile(r"(\d{1,3})%")
SEGMENT_SEPARATORS = re.compile(r"[\r\n\b]+")


def parse_percentages(text: str) -> list[int]:
    return [int(match) for match in PERCENT_PATTERN.findall(text)]


class Extractor:
    def __init__(
        self,
        *,
        downloader: Downloader | None = None,
        launcher: ProcessLauncher | None = None,
        tool_dir: Path | None = None,
        settings: ExtractorSetting | None = None,
        tolerate_failure: bool = True,
        poll_interval: float = 0.2,
    ) -> None:
        self._downloader = downloader or Downloader()
        self._launcher = launcher or PopenLauncher()
        self._tool_dir = Path(tool_dir) if tool_dir else get_application_directory()
        self._settings = settings or IMMUTABLE_CONFIG.extractor
        self._tolerate_failure = tolerate_failure
        self._poll_interval = poll_interval

    @property
    def tool_path(self) -> Path:
        return self._tool_dir / self._settings.tool_name

    def ensure_tool(self, cancel: CancellationToken | None = None) -> Path:
        if self.tool_path.is_file():
            return self.tool_path
        logger.info("Downloading %s", self._settings.tool_name)
        return self._downloader.download(self._settings.tool_download_url, self.tool_path, None, cancel)

    def build_command(self, tool: Path, archive: Path, destination: Path) -> list[str]:
        return [
            str(tool),
            "x",
            f"-o{destination}",
            "-y",
            "-bsp1",
            str(archive),
            "--",
            *self._settings.members,
        ]

    def extract(
        self,
        archive: Path,
        destination: Path,
        reporter: ProgressReporter,
        cancel: CancellationToken | None = None,
    ) -> bool:
        """Extract the allow-listed members; returns False when extraction was skipped."""
        try:
            tool = self.ensure_tool(cancel)
            process = self._launcher.launch(self.build_command(tool, archive, destination), hidden=True, capture_output=True)
        except (DownloadError, OSError) as exc:
            return self._handle_failure(exc, reporter)

        try:
            self._pump_output(process, reporter, cancel)
            exit_code = process.wait()
        except PipelineCancelled:
            process.kill()
            process.wait()
            raise
        if exit_code not in self._settings.success_codes:
            return self._handle_failure(ExtractionError(f"{self._settings.tool_name} exited with code {exit_code}"), reporter)

        reporter.complete()
        return True

    def _pump_output(self, process: ProcessHandle, reporter: ProgressReporter, cancel: CancellationToken | None) -> None:
        stream = process.stdout
        if stream is None:
            return
        chunks: queue.Queue[bytes] = queue.Queue()
        reader = threading.Thread(target=_read_chunks, args=(stream, chunks), name="extractor-output", daemon=True)
        reader.start()
        pending = ""
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                chunk = chunks.get(timeout=self._poll_interval)
            except queue.Empty:
                continue
            if not chunk:
                break
            pending += chunk.decode("utf-8", errors="replace")
            segments = SEGMENT_SEPARATORS.split(pending)
            pending = segments.pop()
            for segment in segments:
                for value in parse_percentages(segment):
                    reporter.report(value)
        for value in parse_percentages(pending):
            reporter.report(value)

    def _handle_failure(self, exc: Exception, reporter: ProgressReporter) -> bool:
        if not self._tolerate_failure:
            if isinstance(exc, ExtractionError):
                raise exc
            raise ExtractionError(f"Extraction failed: {exc}") from exc
        logger.warning("Extraction skipped, continuing with the full installer: %s", exc)
        reporter.complete("skipped")
        return False


def _read_chunks(stream: IO[bytes], chunks: "queue.Queue[bytes]") -> None:
    """Copy tool output into ``chunks``; an empty chunk marks the end of the stream."""
    read = getattr(stream, "read1", stream.read)
    try:
        while True:
            chunk = read(256)
            if not chunk:
                break
            chunks.put(chunk)
    except (OSError, ValueError) as exc:
        logger.debug("Extractor output closed: %s", exc)
    finally:
        chunks.put(b"")
