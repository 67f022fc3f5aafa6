"""Download, extract, configure, install and clean up a resolved driver."""
from __future__ import annotations

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from nvidia_updater.constants import IMMUTABLE_CONFIG
from services.downloader import Downloader
from services.errors import CleanupError, DownloadError
from services.extractor import Extractor
from services.installer import DriverInstaller, configure_setup
from services.progress import CancellationToken, ProgressEvent, ProgressReporter, ProgressSink, StageName
from services.resolver import UpdateDecision

logger = logging.getLogger(__name__)


@dataclass
class StageProgress:
    stage: StageName
    value: int = 0
    completed: bool = False
    skipped: bool = False
    detail: str = ""


@dataclass
class PipelineState:
    stages: list[StageProgress]
    warnings: list[str] = field(default_factory=list)
    installer_path: Path | None = None
    installer_exit_code: int | None = None

    @classmethod
    def for_config(cls, config: "PipelineConfig") -> "PipelineState":
        names = [StageName.DOWNLOAD]
        if config.minimal:
            names += [StageName.EXTRACT, StageName.CONFIGURE]
        names += [StageName.INSTALL, StageName.CLEANUP]
        return cls(stages=[StageProgress(name) for name in names])

    def stage(self, name: StageName) -> StageProgress:
        for entry in self.stages:
            if entry.stage is name:
                return entry
        raise KeyError(name)

    @property
    def finished(self) -> bool:
        return all(entry.completed or entry.skipped for entry in self.stages)


@dataclass
class PipelineConfig:
    work_dir: Path
    minimal: bool = False
    silent: bool = False
    retain_files: bool = False
    cleanup_attempts: int = 5
    cleanup_backoff: float = 1.0


def remove_tree(
    path: Path,
    *,
    attempts: int = 5,
    backoff: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    remover: Callable[[Path], None] | None = None,
) -> int:
    """Delete ``path`` recursively, retrying while files are still locked.

    Returns the attempt that succeeded (0 when there was nothing to delete).
    """
    remover = remover or shutil.rmtree
    last_error: OSError | None = None
    for attempt in range(1, attempts + 1):
        if not path.exists():
            return attempt - 1
        try:
            remover(path)
            return attempt
        except OSError as exc:
            last_error = exc
            logger.debug("Cleanup attempt %d/%d failed: %s", attempt, attempts, exc)
            if attempt < attempts:
                sleep(backoff * attempt)
    raise CleanupError(f"Could not remove {path} after {attempts} attempts: {last_error}") from last_error


def clear_setup_files(work_dir: Path) -> list[Path]:
    """Remove setup files an earlier run left in ``work_dir``."""
    settings = IMMUTABLE_CONFIG.installer
    removed = []
    for name in (settings.setup_executable, settings.setup_config, settings.setup_config_backup):
        path = work_dir / name
        if path.is_file():
            path.unlink()
            removed.append(path)
    if removed:
        logger.debug("Removed stale setup files: %s", ", ".join(path.name for path in removed))
    return removed


class FetchExecutePipeline:
    def __init__(
        self,
        *,
        downloader: Downloader | None = None,
        extractor: Extractor | None = None,
        installer: DriverInstaller | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._downloader = downloader or Downloader()
        self._extractor = extractor or Extractor(downloader=self._downloader)
        self._installer = installer or DriverInstaller()
        self._sleep = sleep

    def run(
        self,
        decision: UpdateDecision,
        config: PipelineConfig,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> PipelineState:
        driver = decision.driver
        if driver is None:
            raise ValueError("Cannot run the pipeline without a driver")
        cancel = cancel or CancellationToken()
        state = PipelineState.for_config(config)
        work_dir = Path(config.work_dir)
        try:
            work_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise DownloadError(f"Cannot create work directory {work_dir}: {exc}") from exc

        cancel.raise_if_cancelled()
        installer_path = work_dir / driver.file_name
        logger.info("Downloading driver %s to %s", driver.version, installer_path)
        self._downloader.download(driver.download_url, installer_path, self._reporter(state, StageName.DOWNLOAD, sink), cancel)
        state.installer_path = installer_path

        executable = installer_path
        if config.minimal:
            executable = self._slim_down(installer_path, work_dir, state, sink, cancel)

        if config.retain_files:
            for name in (StageName.INSTALL, StageName.CLEANUP):
                self._skip(state, name, "download only", sink)
            logger.info("Download-only mode: files kept in %s", work_dir)
            return state

        cancel.raise_if_cancelled()
        state.installer_exit_code = self._installer.install(
            executable,
            silent=config.silent,
            reporter=self._reporter(state, StageName.INSTALL, sink),
            cancel=cancel,
        )

        cleanup = self._reporter(state, StageName.CLEANUP, sink)
        try:
            remove_tree(work_dir, attempts=config.cleanup_attempts, backoff=config.cleanup_backoff, sleep=self._sleep)
        except CleanupError as exc:
            logger.warning("%s", exc)
            state.warnings.append(str(exc))
        cleanup.complete()
        return state

    def _slim_down(
        self,
        installer_path: Path,
        work_dir: Path,
        state: PipelineState,
        sink: ProgressSink | None,
        cancel: CancellationToken,
    ) -> Path:
        cancel.raise_if_cancelled()
        clear_setup_files(work_dir)
        extracted = self._extractor.extract(installer_path, work_dir, self._reporter(state, StageName.EXTRACT, sink), cancel)
        if not extracted:
            state.warnings.append("Extraction was skipped; the full installer will be used")
            self._reporter(state, StageName.CONFIGURE, sink).complete("skipped")
            return installer_path

        cancel.raise_if_cancelled()
        configured = configure_setup(work_dir, self._reporter(state, StageName.CONFIGURE, sink))
        if configured is None:
            state.warnings.append(f"{IMMUTABLE_CONFIG.installer.setup_config} not found; consent dialogs were not removed")

        setup = work_dir / IMMUTABLE_CONFIG.installer.setup_executable
        if setup.is_file():
            return setup
        logger.info("%s not found, falling back to %s", setup.name, installer_path.name)
        return installer_path

    def _reporter(self, state: PipelineState, name: StageName, sink: ProgressSink | None) -> ProgressReporter:
        entry = state.stage(name)

        def update(event: ProgressEvent) -> None:
            entry.value = event.value
            entry.completed = event.value == 100
            if event.detail:
                entry.detail = event.detail
            if sink is not None:
                sink(event)

        return ProgressReporter(name, update)

    def _skip(self, state: PipelineState, name: StageName, detail: str, sink: ProgressSink | None) -> None:
        entry = state.stage(name)
        entry.skipped = True
        entry.value = 100
        entry.detail = detail
        if sink is not None:
            sink(ProgressEvent(name, entry.value, detail))
