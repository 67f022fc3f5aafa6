"""Decides whether the catalog offers a newer driver than the installed one."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from services.catalog import DriverListing, DriverRecord, DriverType, GpuRecord, OsRecord
from services.errors import CatalogUnavailable
from services.profiler import LocalMachineProfile, match_gpu, match_os

logger = logging.getLogger(__name__)


class DriverCatalog(Protocol):
    def fetch_drivers(
        self,
        gpu: GpuRecord,
        os_record: OsRecord,
        unified: bool,
        driver_type: DriverType,
    ) -> DriverListing:  # pragma: no cover - protocol
        ...


@dataclass
class UpdateDecision:
    gpu: GpuRecord
    os_record: OsRecord
    driver: DriverRecord | None
    installed_version: str | None
    outdated: bool = False
    advisories: list[str] = field(default_factory=list)

    @property
    def update_available(self) -> bool:
        return self.driver is not None and self.outdated


def parse_driver_version(value: str | None) -> tuple[int, ...] | None:
    if not value:
        return None
    parts = value.strip().split(".")
    try:
        numbers = tuple(int(part) for part in parts)
    except ValueError:
        return None
    if any(number < 0 for number in numbers):
        return None
    return numbers


def compare_versions(left: tuple[int, ...], right: tuple[int, ...]) -> int:
    width = max(len(left), len(right))
    padded_left = left + (0,) * (width - len(left))
    padded_right = right + (0,) * (width - len(right))
    if padded_left < padded_right:
        return -1
    if padded_left > padded_right:
        return 1
    return 0


def is_update_available(
    installed: str | None,
    candidate: str | None,
    *,
    missing_baseline_is_outdated: bool = True,
) -> bool:
    candidate_version = parse_driver_version(candidate)
    if candidate_version is None:
        return False
    installed_version = parse_driver_version(installed)
    if installed_version is None:
        return missing_baseline_is_outdated
    return compare_versions(installed_version, candidate_version) < 0


class DriverResolver:
    def __init__(self, catalog: DriverCatalog, *, missing_baseline_is_outdated: bool = True) -> None:
        self._catalog = catalog
        self._missing_baseline_is_outdated = missing_baseline_is_outdated

    def resolve(
        self,
        profile: LocalMachineProfile,
        gpus: Sequence[GpuRecord],
        operating_systems: Sequence[OsRecord],
        driver_type: DriverType,
    ) -> UpdateDecision:
        gpu = match_gpu(profile, gpus)
        os_record = match_os(profile, operating_systems)
        logger.info("Matched catalog GPU %s (%s) and OS %s (%s)", gpu.name, gpu.id, os_record.name, os_record.id)

        decision = UpdateDecision(
            gpu=gpu,
            os_record=os_record,
            driver=None,
            installed_version=profile.driver_version,
        )
        listing = self._catalog.fetch_drivers(gpu, os_record, profile.is_unified_driver, driver_type)
        if listing.success and profile.supports_unified_driver and not profile.is_unified_driver:
            listing = self._prefer_unified(listing, decision, driver_type)

        if not listing.success or listing.driver is None:
            decision.advisories.append(f"No {driver_type.value} driver is listed for {gpu.name} on {os_record.name}")
            return decision

        driver = listing.driver
        decision.driver = driver
        if driver.is_beta:
            decision.advisories.append(f"Driver {driver.version} is a beta release")
        if parse_driver_version(driver.version) is None:
            decision.advisories.append(f"Catalog version {driver.version!r} is not a numeric version")
            return decision
        if parse_driver_version(profile.driver_version) is None:
            policy = "outdated" if self._missing_baseline_is_outdated else "current"
            decision.advisories.append(f"Installed driver version is unknown; treating it as {policy}")

        decision.outdated = is_update_available(
            profile.driver_version,
            driver.version,
            missing_baseline_is_outdated=self._missing_baseline_is_outdated,
        )
        logger.info(
            "Installed %s, latest %s -> update available: %s",
            profile.driver_version or "unknown",
            driver.version,
            decision.update_available,
        )
        return decision

    def _prefer_unified(
        self,
        listing: DriverListing,
        decision: UpdateDecision,
        driver_type: DriverType,
    ) -> DriverListing:
        try:
            unified = self._catalog.fetch_drivers(decision.gpu, decision.os_record, True, driver_type)
        except CatalogUnavailable as exc:
            logger.warning("DCH driver lookup failed: %s", exc)
            unified = DriverListing(success=False)
        if unified.success:
            decision.advisories.append(
                "A Standard driver is installed; the DCH driver was selected and will replace it"
            )
            return unified
        decision.advisories.append("No DCH driver is listed for this system; keeping the Standard driver")
        return listing
