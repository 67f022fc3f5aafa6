from __future__ import annotations

from pathlib import Path

import pytest

from nvidia_updater.user_settings import UpdateSettings
from services.catalog import DriverListing, DriverRecord, DriverType, GpuKind, GpuRecord, OsRecord
from services.drivers import DriverUpdateService, OutcomeKind, RetryingCatalog
from services.errors import CatalogUnavailable, DownloadError, PipelineCancelled, ProfileError
from services.pipeline import PipelineConfig, PipelineState, StageProgress
from services.profiler import InventorySnapshot, MachineProfiler, VideoController
from services.progress import StageName

GPUS = [
    GpuRecord("1001", "GeForce RTX 3060", GpuKind.DESKTOP),
    GpuRecord("1002", "GeForce RTX 3060", GpuKind.NOTEBOOK),
]
OSES = [OsRecord("57", "10.0", "Windows 10 64-bit"), OsRecord("135", "10.0", "Windows 11")]


class FakeInventory:
    def __init__(self, driver_version: str = "31.0.15.5123", chassis: list[int] | None = None) -> None:
        self.snapshot = InventorySnapshot(
            os_version="10.0.22631",
            is_64bit=True,
            video_controllers=[VideoController("NVIDIA GeForce RTX 3060", driver_version)],
            chassis_types=chassis or [3],
        )

    def read(self) -> InventorySnapshot:
        return self.snapshot


class FailingInventory:
    def read(self) -> InventorySnapshot:
        raise ProfileError("powershell not found on PATH")


class FakeRegistry:
    def get_value(self, path: str, value_name: str) -> str | int | None:
        return 1


class FakeCatalog:
    def __init__(self, version: str = "552.44", gpu_failures: int = 0) -> None:
        self.version = version
        self.gpu_failures = gpu_failures
        self.driver_calls: list[tuple[str, str, bool, DriverType]] = []

    def fetch_gpus(self) -> list[GpuRecord]:
        if self.gpu_failures:
            self.gpu_failures -= 1
            raise CatalogUnavailable("HTTP 503")
        return GPUS

    def fetch_operating_systems(self) -> list[OsRecord]:
        return OSES

    def fetch_drivers(self, gpu: GpuRecord, os_record: OsRecord, unified: bool, driver_type: DriverType) -> DriverListing:
        self.driver_calls.append((gpu.id, os_record.id, unified, driver_type))
        driver = DriverRecord(
            id="224155",
            name="GeForce Game Ready Driver",
            version=self.version,
            download_url=f"https://example.invalid/{self.version}.exe",
        )
        return DriverListing(True, driver)


class FakePipeline:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.configs: list[PipelineConfig] = []

    def run(self, decision, config, sink=None, cancel=None) -> PipelineState:
        self.configs.append(config)
        if self.error is not None:
            raise self.error
        state = PipelineState(stages=[StageProgress(StageName.DOWNLOAD, 100, True)])
        state.installer_path = config.work_dir / "552.44.exe"
        state.installer_exit_code = 0
        return state


def make_service(
    tmp_path: Path,
    settings: UpdateSettings | None = None,
    *,
    catalog: FakeCatalog | None = None,
    pipeline: FakePipeline | None = None,
    inventory=None,
    sleeps: list[float] | None = None,
) -> DriverUpdateService:
    recorded = sleeps if sleeps is not None else []
    return DriverUpdateService(
        settings or UpdateSettings(),
        catalog=catalog or FakeCatalog(),
        profiler=MachineProfiler(inventory=inventory or FakeInventory(), registry=FakeRegistry()),
        pipeline=pipeline or FakePipeline(),
        work_dir=tmp_path / "work",
        sleep=recorded.append,
    )


def test_run_installs_available_update(tmp_path: Path) -> None:
    pipeline = FakePipeline()
    service = make_service(tmp_path, UpdateSettings(minimal=True, silent=True), pipeline=pipeline)

    outcome = service.run()

    assert outcome.kind is OutcomeKind.COMPLETED
    assert outcome.exit_code == 0
    assert outcome.check is not None
    assert outcome.check.decision.driver is not None
    assert outcome.check.decision.driver.version == "552.44"
    config = pipeline.configs[0]
    assert config.work_dir == tmp_path / "work"
    assert config.minimal and config.silent and not config.retain_files


def test_run_without_newer_driver_reports_no_update(tmp_path: Path) -> None:
    pipeline = FakePipeline()
    service = make_service(
        tmp_path,
        catalog=FakeCatalog(version="555.10"),
        pipeline=pipeline,
        inventory=FakeInventory(driver_version="32.0.15.6000"),
    )

    outcome = service.run()

    assert outcome.kind is OutcomeKind.NO_UPDATE_AVAILABLE
    assert outcome.exit_code == 10
    assert pipeline.configs == []


def test_check_only_stops_before_pipeline(tmp_path: Path) -> None:
    pipeline = FakePipeline()
    service = make_service(tmp_path, UpdateSettings(check_only=True), pipeline=pipeline)

    outcome = service.run()

    assert outcome.kind is OutcomeKind.CHECK_ONLY_STOPPED
    assert outcome.exit_code == 11
    assert pipeline.configs == []


def test_declined_confirmation_skips_pipeline(tmp_path: Path) -> None:
    pipeline = FakePipeline()
    service = make_service(tmp_path, pipeline=pipeline)
    seen = []

    outcome = service.run(confirm=lambda check: seen.append(check) or False)

    assert outcome.kind is OutcomeKind.DECLINED_BY_USER
    assert outcome.exit_code == 12
    assert len(seen) == 1
    assert pipeline.configs == []


def test_profile_error_becomes_failed_outcome(tmp_path: Path) -> None:
    service = make_service(tmp_path, inventory=FailingInventory())

    outcome = service.run()

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.exit_code == 1
    assert "powershell" in outcome.reason


@pytest.mark.parametrize("error", [DownloadError("HTTP 404"), PipelineCancelled("Operation cancelled")])
def test_pipeline_errors_become_failed_outcome(tmp_path: Path, error: Exception) -> None:
    service = make_service(tmp_path, pipeline=FakePipeline(error))

    outcome = service.run()

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.check is not None


def test_catalog_failures_are_retried(tmp_path: Path) -> None:
    sleeps: list[float] = []
    service = make_service(tmp_path, UpdateSettings(catalog_attempts=3, catalog_backoff=2.0), catalog=FakeCatalog(gpu_failures=2), sleeps=sleeps)

    outcome = service.run()

    assert outcome.kind is OutcomeKind.COMPLETED
    assert sleeps == [2.0, 4.0]


def test_catalog_failure_after_retries_fails_run(tmp_path: Path) -> None:
    service = make_service(tmp_path, UpdateSettings(catalog_attempts=2), catalog=FakeCatalog(gpu_failures=5))

    outcome = service.run()

    assert outcome.kind is OutcomeKind.FAILED
    assert "HTTP 503" in outcome.reason


def test_retrying_catalog_passes_through_success() -> None:
    catalog = FakeCatalog()
    retrying = RetryingCatalog(catalog, attempts=3, sleep=lambda seconds: pytest.fail("unexpected sleep"))

    assert retrying.fetch_gpus() == GPUS
    listing = retrying.fetch_drivers(GPUS[0], OSES[1], True, DriverType.STUDIO)
    assert listing.success
    assert catalog.driver_calls == [("1001", "135", True, DriverType.STUDIO)]


def test_desktop_override_beats_notebook_chassis(tmp_path: Path) -> None:
    catalog = FakeCatalog()
    settings = UpdateSettings(chassis_override=GpuKind.DESKTOP)
    service = make_service(tmp_path, settings, catalog=catalog, inventory=FakeInventory(chassis=[9]))

    check = service.check()

    assert check.profile.form_factor is GpuKind.DESKTOP
    assert check.decision.gpu.id == "1001"
    assert catalog.driver_calls[0][0] == "1001"


def test_notebook_chassis_matches_notebook_gpu(tmp_path: Path) -> None:
    catalog = FakeCatalog()
    service = make_service(tmp_path, catalog=catalog, inventory=FakeInventory(chassis=[9]))

    check = service.check()

    assert check.decision.gpu.id == "1002"


def test_download_only_uses_output_path_and_retains_files(tmp_path: Path) -> None:
    pipeline = FakePipeline()
    output = tmp_path / "drivers"
    service = make_service(tmp_path, UpdateSettings(download_only=True, output_path=str(output)), pipeline=pipeline)

    outcome = service.run()

    assert outcome.kind is OutcomeKind.COMPLETED
    assert pipeline.configs[0].work_dir == output
    assert pipeline.configs[0].retain_files
    assert str(output) in outcome.reason


def test_download_only_without_output_path_fails(tmp_path: Path) -> None:
    pipeline = FakePipeline()
    service = make_service(tmp_path, UpdateSettings(download_only=True), pipeline=pipeline)

    outcome = service.run()

    assert outcome.kind is OutcomeKind.FAILED
    assert pipeline.configs == []


class UnusedTransport:
    def __init__(self) -> None:
        self.urls: list[str] = []

    def get(self, url: str):
        self.urls.append(url)
        raise OSError("network disabled")


def test_output_path_that_is_a_file_fails_run(tmp_path: Path) -> None:
    output = tmp_path / "drivers.txt"
    output.write_text("not a directory")
    transport = UnusedTransport()
    service = DriverUpdateService(
        UpdateSettings(download_only=True, output_path=str(output)),
        transport=transport,
        catalog=FakeCatalog(),
        profiler=MachineProfiler(inventory=FakeInventory(), registry=FakeRegistry()),
        sleep=lambda seconds: None,
    )

    outcome = service.run()

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.exit_code == 1
    assert str(output) in outcome.reason
    assert transport.urls == []


def test_file_system_errors_become_failed_outcome(tmp_path: Path) -> None:
    service = make_service(tmp_path, pipeline=FakePipeline(PermissionError(13, "Access is denied")))

    outcome = service.run()

    assert outcome.kind is OutcomeKind.FAILED
    assert outcome.reason.startswith("File system error")
    assert outcome.check is not None
