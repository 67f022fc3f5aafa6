from __future__ import annotations

import pytest

from services.catalog import DriverListing, DriverRecord, DriverType, GpuKind, GpuRecord, OsRecord
from services.errors import CatalogUnavailable, NoMatchFound
from services.profiler import LocalMachineProfile
from services.resolver import DriverResolver, is_update_available, parse_driver_version

GPUS = [
    GpuRecord("1001", "GeForce RTX 3060", GpuKind.DESKTOP),
    GpuRecord("1002", "GeForce RTX 3060 Laptop GPU", GpuKind.NOTEBOOK),
]
OSES = [OsRecord("57", "10.0", "Windows 10 64-bit"), OsRecord("135", "10.0", "Windows 11")]


def make_driver(version: str, *, unified: bool = True) -> DriverRecord:
    return DriverRecord(
        id=version,
        name="GeForce Game Ready Driver",
        version=version,
        download_url=f"https://example.invalid/{version}.exe",
        is_unified=unified,
    )


def make_profile(**overrides: object) -> LocalMachineProfile:
    values: dict[str, object] = {
        "os_major": 10,
        "os_minor": 0,
        "os_build": 19045,
        "is_64bit": True,
        "gpu_raw_name": "NVIDIA GeForce RTX 3060",
        "gpu_name": "GeForce RTX 3060",
        "driver_version": "551.23",
        "raw_driver_version": "31.0.15.5123",
        "is_unified_driver": True,
        "supports_unified_driver": True,
        "form_factor": GpuKind.DESKTOP,
    }
    values.update(overrides)
    return LocalMachineProfile(**values)  # type: ignore[arg-type]


class FakeCatalog:
    def __init__(self, listings: dict[bool, DriverListing | Exception]) -> None:
        self.listings = listings
        self.calls: list[tuple[str, str, bool, DriverType]] = []

    def fetch_drivers(self, gpu: GpuRecord, os_record: OsRecord, unified: bool, driver_type: DriverType) -> DriverListing:
        self.calls.append((gpu.id, os_record.id, unified, driver_type))
        result = self.listings[unified]
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.parametrize(
    ("installed", "candidate", "expected"),
    [
        ("551.23", "552.44", True),
        ("560.00", "555.10", False),
        ("552.44", "552.44", False),
        ("99.10", "100.00", True),
        ("551.9", "551.23", True),
        ("552", "552.01", True),
    ],
)
def test_update_available_compares_numerically(installed: str, candidate: str, expected: bool) -> None:
    assert is_update_available(installed, candidate) is expected


def test_missing_baseline_follows_policy() -> None:
    assert is_update_available(None, "552.44") is True
    assert is_update_available(None, "552.44", missing_baseline_is_outdated=False) is False


def test_unparsable_candidate_is_never_an_update() -> None:
    assert parse_driver_version("552.44-beta") is None
    assert is_update_available("551.23", "552.44-beta") is False


def test_resolve_reports_update_for_newer_driver() -> None:
    catalog = FakeCatalog({True: DriverListing(True, make_driver("552.44"))})

    decision = DriverResolver(catalog).resolve(make_profile(), GPUS, OSES, DriverType.GAME_READY)

    assert decision.update_available
    assert decision.driver is not None and decision.driver.version == "552.44"
    assert decision.gpu.id == "1001"
    assert decision.os_record.id == "57"
    assert catalog.calls == [("1001", "57", True, DriverType.GAME_READY)]


def test_resolve_reports_no_update_for_older_driver() -> None:
    catalog = FakeCatalog({True: DriverListing(True, make_driver("555.10"))})

    decision = DriverResolver(catalog).resolve(make_profile(driver_version="560.00"), GPUS, OSES, DriverType.GAME_READY)

    assert not decision.update_available
    assert decision.driver is not None


def test_resolve_prefers_unified_driver_when_supported() -> None:
    catalog = FakeCatalog(
        {
            False: DriverListing(True, make_driver("552.22", unified=False)),
            True: DriverListing(True, make_driver("552.44")),
        }
    )
    profile = make_profile(is_unified_driver=False)

    decision = DriverResolver(catalog).resolve(profile, GPUS, OSES, DriverType.STUDIO)

    assert [call[2] for call in catalog.calls] == [False, True]
    assert decision.driver is not None and decision.driver.version == "552.44"
    assert any("DCH" in advisory for advisory in decision.advisories)


@pytest.mark.parametrize("unified_result", [DriverListing(False), CatalogUnavailable("HTTP 500")])
def test_resolve_keeps_standard_driver_when_unified_lookup_fails(unified_result: object) -> None:
    catalog = FakeCatalog(
        {
            False: DriverListing(True, make_driver("552.22", unified=False)),
            True: unified_result,  # type: ignore[dict-item]
        }
    )

    decision = DriverResolver(catalog).resolve(make_profile(is_unified_driver=False), GPUS, OSES, DriverType.GAME_READY)

    assert decision.driver is not None and decision.driver.version == "552.22"
    assert decision.advisories


def test_resolve_skips_unified_requery_on_old_builds() -> None:
    catalog = FakeCatalog({False: DriverListing(True, make_driver("474.89", unified=False))})
    profile = make_profile(is_unified_driver=False, supports_unified_driver=False, driver_version="472.12")

    decision = DriverResolver(catalog).resolve(profile, GPUS, OSES, DriverType.GAME_READY)

    assert len(catalog.calls) == 1
    assert decision.update_available


def test_resolve_without_listing_has_no_update() -> None:
    catalog = FakeCatalog({True: DriverListing(False)})

    decision = DriverResolver(catalog).resolve(make_profile(), GPUS, OSES, DriverType.GAME_READY)

    assert decision.driver is None
    assert not decision.update_available
    assert decision.advisories


def test_resolve_missing_baseline_policy_is_configurable() -> None:
    catalog = FakeCatalog({True: DriverListing(True, make_driver("552.44"))})
    profile = make_profile(driver_version=None)

    outdated = DriverResolver(catalog).resolve(profile, GPUS, OSES, DriverType.GAME_READY)
    current = DriverResolver(catalog, missing_baseline_is_outdated=False).resolve(profile, GPUS, OSES, DriverType.GAME_READY)

    assert outdated.update_available
    assert not current.update_available


def test_resolve_notebook_profile_matches_notebook_gpu() -> None:
    catalog = FakeCatalog({True: DriverListing(True, make_driver("552.44"))})
    profile = make_profile(gpu_name="GeForce RTX 3060 Laptop GPU", form_factor=GpuKind.NOTEBOOK)

    decision = DriverResolver(catalog).resolve(profile, GPUS, OSES, DriverType.GAME_READY)

    assert decision.gpu.id == "1002"


def test_resolve_unknown_gpu_raises_no_match() -> None:
    catalog = FakeCatalog({})

    with pytest.raises(NoMatchFound):
        DriverResolver(catalog).resolve(make_profile(gpu_name="GeForce 8800 GT"), GPUS, OSES, DriverType.GAME_READY)
    assert catalog.calls == []
