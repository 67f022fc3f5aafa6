"""Top-level driver update flow: profile, resolve, confirm, then run the pipeline."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Protocol, TypeVar

from nvidia_updater.paths import get_application_directory, get_default_work_directory
from nvidia_updater.user_settings import UpdateSettings
from services.catalog import DriverListing, DriverType, GpuKind, GpuRecord, NvidiaCatalogClient, OsRecord
from services.downloader import Downloader
from services.errors import CatalogUnavailable, PipelineCancelled, UpdaterError
from services.extractor import Extractor
from services.http import HttpTransport, UrllibTransport
from services.pipeline import FetchExecutePipeline, PipelineConfig, PipelineState
from services.profiler import LocalMachineProfile, MachineProfiler
from services.progress import CancellationToken, ProgressSink
from services.resolver import DriverResolver, UpdateDecision

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    NO_UPDATE_AVAILABLE = "no-update-available"
    CHECK_ONLY_STOPPED = "check-only-stopped"
    DECLINED_BY_USER = "declined-by-user"
    FAILED = "failed"


EXIT_CODES = {
    OutcomeKind.COMPLETED: 0,
    OutcomeKind.NO_UPDATE_AVAILABLE: 10,
    OutcomeKind.CHECK_ONLY_STOPPED: 11,
    OutcomeKind.DECLINED_BY_USER: 12,
    OutcomeKind.FAILED: 1,
}


@dataclass
class CheckResult:
    profile: LocalMachineProfile
    decision: UpdateDecision


@dataclass
class RunOutcome:
    kind: OutcomeKind
    reason: str = ""
    check: CheckResult | None = None
    state: PipelineState | None = None

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.kind]

    @property
    def succeeded(self) -> bool:
        return self.kind is not OutcomeKind.FAILED

    @classmethod
    def failed(cls, reason: str, check: CheckResult | None = None, state: PipelineState | None = None) -> "RunOutcome":
        return cls(OutcomeKind.FAILED, reason, check, state)


class CatalogClient(Protocol):
    def fetch_gpus(self) -> list[GpuRecord]:  # pragma: no cover - protocol
        ...

    def fetch_operating_systems(self) -> list[OsRecord]:  # pragma: no cover - protocol
        ...

    def fetch_drivers(
        self,
        gpu: GpuRecord,
        os_record: OsRecord,
        unified: bool,
        driver_type: DriverType,
    ) -> DriverListing:  # pragma: no cover - protocol
        ...


class Profiler(Protocol):
    def profile(self, chassis_override: GpuKind | None = None) -> LocalMachineProfile:  # pragma: no cover - protocol
        ...


class Pipeline(Protocol):
    def run(
        self,
        decision: UpdateDecision,
        config: PipelineConfig,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> PipelineState:  # pragma: no cover - protocol
        ...


class RetryingCatalog:
    """Retries catalog calls that fail with CatalogUnavailable."""

    def __init__(
        self,
        catalog: CatalogClient,
        *,
        attempts: int = 3,
        backoff: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._catalog = catalog
        self._attempts = max(1, attempts)
        self._backoff = backoff
        self._sleep = sleep

    def fetch_gpus(self) -> list[GpuRecord]:
        return self._call(self._catalog.fetch_gpus)

    def fetch_operating_systems(self) -> list[OsRecord]:
        return self._call(self._catalog.fetch_operating_systems)

    def fetch_drivers(self, gpu: GpuRecord, os_record: OsRecord, unified: bool, driver_type: DriverType) -> DriverListing:
        return self._call(self._catalog.fetch_drivers, gpu, os_record, unified, driver_type)

    def _call(self, func: Callable[..., T], *args: object) -> T:
        for attempt in range(1, self._attempts + 1):
            try:
                return func(*args)
            except CatalogUnavailable as exc:
                if attempt == self._attempts:
                    raise
                logger.warning("Catalog request failed (attempt %d/%d): %s", attempt, self._attempts, exc)
                self._sleep(self._backoff * attempt)
        raise AssertionError("unreachable")


ConfirmCallback = Callable[[CheckResult], bool]


class DriverUpdateService:
    def __init__(
        self,
        settings: UpdateSettings | None = None,
        *,
        transport: HttpTransport | None = None,
        catalog: CatalogClient | None = None,
        profiler: Profiler | None = None,
        pipeline: Pipeline | None = None,
        work_dir: Path | str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or UpdateSettings()
        self._transport = transport or UrllibTransport()
        self._catalog = catalog or NvidiaCatalogClient(transport=self._transport)
        self._profiler = profiler or MachineProfiler()
        self._pipeline = pipeline
        self._work_dir = Path(work_dir) if work_dir is not None else None
        self._sleep = sleep
        self.last_check: CheckResult | None = None

    def check(self) -> CheckResult:
        """Profile the machine and resolve the newest catalog driver for it."""
        settings = self.settings
        catalog = RetryingCatalog(
            self._catalog,
            attempts=settings.catalog_attempts,
            backoff=settings.catalog_backoff,
            sleep=self._sleep,
        )
        profile = self._profiler.profile(settings.chassis_override)
        gpus = catalog.fetch_gpus()
        operating_systems = catalog.fetch_operating_systems()
        resolver = DriverResolver(catalog, missing_baseline_is_outdated=settings.missing_baseline_is_outdated)
        decision = resolver.resolve(profile, gpus, operating_systems, settings.driver_type)
        for advisory in decision.advisories:
            logger.info("Advisory: %s", advisory)
        self.last_check = CheckResult(profile, decision)
        return self.last_check

    def evaluate(self, check: CheckResult) -> RunOutcome | None:
        """Return the outcome that ends the run before any download, if there is one."""
        decision = check.decision
        if not decision.update_available:
            if decision.driver is None:
                reason = "No driver is listed for this system"
            else:
                reason = f"Installed driver {decision.installed_version} is up to date ({decision.driver.version})"
            return RunOutcome(OutcomeKind.NO_UPDATE_AVAILABLE, reason, check)
        if self.settings.check_only:
            return RunOutcome(OutcomeKind.CHECK_ONLY_STOPPED, f"Driver {decision.driver.version} is available", check)
        return None

    def pipeline_config(self) -> PipelineConfig:
        settings = self.settings
        # The work directory is deleted after install; an output path only applies to download-only runs.
        if settings.download_only and settings.output_path.strip():
            work_dir = Path(settings.output_path).expanduser()
        else:
            work_dir = self._work_dir or get_default_work_directory()
        return PipelineConfig(
            work_dir=work_dir,
            minimal=settings.minimal,
            silent=settings.silent,
            retain_files=settings.download_only,
            cleanup_attempts=settings.cleanup_attempts,
            cleanup_backoff=settings.cleanup_backoff,
        )

    def apply(
        self,
        check: CheckResult,
        *,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> RunOutcome:
        try:
            self.settings.validate()
            state = self._build_pipeline().run(check.decision, self.pipeline_config(), sink, cancel)
        except PipelineCancelled:
            logger.warning("Update cancelled")
            return RunOutcome.failed("Cancelled by user", check)
        except ValueError as exc:
            return RunOutcome.failed(str(exc), check)
        except UpdaterError as exc:
            logger.error("Update failed: %s", exc)
            return RunOutcome.failed(str(exc), check)
        except OSError as exc:
            logger.error("Update failed on the file system: %s", exc)
            return RunOutcome.failed(f"File system error: {exc}", check)
        for warning in state.warnings:
            logger.warning("%s", warning)
        if self.settings.download_only:
            reason = f"Driver saved to {state.installer_path}"
        else:
            reason = f"Installer exited with code {state.installer_exit_code}"
        return RunOutcome(OutcomeKind.COMPLETED, reason, check, state)

    def run(
        self,
        *,
        confirm: ConfirmCallback | None = None,
        sink: ProgressSink | None = None,
        cancel: CancellationToken | None = None,
    ) -> RunOutcome:
        try:
            self.settings.validate()
            check = self.check()
        except ValueError as exc:
            return RunOutcome.failed(str(exc))
        except UpdaterError as exc:
            logger.error("Update check failed: %s", exc)
            return RunOutcome.failed(str(exc))

        outcome = self.evaluate(check)
        if outcome is not None:
            logger.info("%s", outcome.reason)
            return outcome
        if confirm is not None and not confirm(check):
            logger.info("Update declined")
            return RunOutcome(OutcomeKind.DECLINED_BY_USER, "Update declined", check)
        return self.apply(check, sink=sink, cancel=cancel)

    def _build_pipeline(self) -> Pipeline:
        if self._pipeline is not None:
            return self._pipeline
        downloader = Downloader(transport=self._transport)
        extractor = Extractor(
            downloader=downloader,
            tool_dir=get_application_directory(),
            tolerate_failure=self.settings.tolerate_extraction_failure,
        )
        return FetchExecutePipeline(downloader=downloader, extractor=extractor, sleep=self._sleep)
