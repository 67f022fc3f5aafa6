"""NVIDIA catalog client: GPU, operating system and driver lookups."""
from __future__ import annotations

import json
import logging
import re
import urllib.parse
import xml.etree.ElementTree as ET
from contextlib import closing
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Iterable

from nvidia_updater.constants import IMMUTABLE_CONFIG, CatalogEndpoints
from services.errors import CatalogUnavailable
from services.http import HttpTransport, UrllibTransport, is_success

logger = logging.getLogger(__name__)

NOTEBOOK_NAME_PATTERN = re.compile(r"\(Notebook|Quadro Blade")
RELEASE_DATE_FORMAT = "%a %b %d, %Y"


class GpuKind(str, Enum):
    DESKTOP = "desktop"
    NOTEBOOK = "notebook"


class DriverType(str, Enum):
    GAME_READY = "game-ready"
    STUDIO = "studio"

    @property
    def crd_flag(self) -> int:
        return 1 if self is DriverType.STUDIO else 0


@dataclass(frozen=True)
class GpuRecord:
    id: str
    name: str
    kind: GpuKind
    parent_id: str | None = None


@dataclass(frozen=True)
class OsRecord:
    id: str
    code: str
    name: str


@dataclass(frozen=True)
class DriverRecord:
    id: str
    name: str
    version: str
    download_url: str
    release_date: datetime | None = None
    download_size: str | None = None
    details_url: str | None = None
    release_notes: str = ""
    is_unified: bool = False
    is_beta: bool = False
    is_whql: bool = False
    is_recommended: bool = False

    @property
    def file_name(self) -> str:
        path = urllib.parse.urlsplit(self.download_url).path
        return PurePosixPath(path).name or f"{self.version}.exe"


@dataclass(frozen=True)
class DriverListing:
    success: bool
    driver: DriverRecord | None = None


def reclassify_gpus(desktop: Iterable[GpuRecord], notebook: Iterable[GpuRecord]) -> list[GpuRecord]:
    """Tag desktop-table entries as notebooks when their parent is a notebook series.

    The vendor lists most products in both tables; only the desktop table is kept
    and each identity appears exactly once.
    """
    notebook_parents = {record.id for record in notebook if NOTEBOOK_NAME_PATTERN.search(record.name)}
    seen: set[str] = set()
    records: list[GpuRecord] = []
    for record in desktop:
        if record.id in seen:
            continue
        seen.add(record.id)
        kind = GpuKind.NOTEBOOK if record.parent_id in notebook_parents else GpuKind.DESKTOP
        records.append(replace(record, kind=kind))
    return records


def parse_lookup_values(payload: bytes) -> list[ET.Element]:
    try:
        root = ET.fromstring(payload)
    except ET.ParseError as exc:
        raise CatalogUnavailable(f"Catalog lookup payload is not valid XML: {exc}") from exc
    values = root.find("LookupValues")
    if values is None:
        raise CatalogUnavailable("Catalog lookup payload has no LookupValues element")
    return list(values)


def parse_gpu(node: ET.Element, kind: GpuKind) -> GpuRecord:
    return GpuRecord(
        id=_child_text(node, "Value"),
        name=_child_text(node, "Name"),
        kind=kind,
        parent_id=node.get("ParentID"),
    )


def parse_os(node: ET.Element) -> OsRecord:
    return OsRecord(
        id=_child_text(node, "Value"),
        code=node.get("Code", ""),
        name=_child_text(node, "Name"),
    )


def parse_driver_listing(payload: bytes) -> DriverListing:
    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise CatalogUnavailable(f"Driver lookup payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CatalogUnavailable("Driver lookup payload is not a JSON object")
    success = _parse_bool(data.get("Success"))
    entries = data.get("IDS") or []
    driver = None
    if isinstance(entries, list) and entries:
        first = entries[0]
        info = first.get("downloadInfo") if isinstance(first, dict) else None
        if isinstance(info, dict):
            driver = parse_driver(info)
    return DriverListing(success=success and driver is not None, driver=driver)


def parse_driver(info: dict[str, Any]) -> DriverRecord:
    version = str(info.get("Version") or "").strip()
    download_url = str(info.get("DownloadURL") or "").strip()
    if not version or not download_url:
        raise CatalogUnavailable("Driver entry is missing its version or download URL")
    return DriverRecord(
        id=str(info.get("ID") or ""),
        name=_unescape(info.get("Name")),
        version=version,
        download_url=download_url,
        release_date=_parse_release_date(info.get("ReleaseDateTime")),
        download_size=info.get("DownloadURLFileSize"),
        details_url=info.get("DetailsURL"),
        release_notes=_unescape(info.get("ReleaseNotes")),
        is_unified=_parse_bool(info.get("IsDC")),
        is_beta=_parse_bool(info.get("IsBeta")),
        is_whql=_parse_bool(info.get("IsWHQL")),
        is_recommended=_parse_bool(info.get("IsRecommended")),
    )


def _child_text(node: ET.Element, tag: str) -> str:
    child = node.find(tag)
    if child is None or child.text is None:
        raise CatalogUnavailable(f"Catalog lookup entry is missing <{tag}>")
    return child.text.strip()


def _unescape(value: Any) -> str:
    if value is None:
        return ""
    return urllib.parse.unquote(str(value))


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False


def _parse_release_date(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip(), RELEASE_DATE_FORMAT)
    except ValueError:
        logger.debug("Unrecognised release date %r", value)
        return None


class NvidiaCatalogClient:
    def __init__(
        self,
        *,
        transport: HttpTransport | None = None,
        endpoints: CatalogEndpoints | None = None,
    ) -> None:
        self._transport = transport or UrllibTransport()
        self._endpoints = endpoints or IMMUTABLE_CONFIG.catalog

    def fetch_gpus(self) -> list[GpuRecord]:
        notebook = [parse_gpu(node, GpuKind.NOTEBOOK) for node in self._lookup(self._endpoints.notebook_type_id)]
        desktop = [parse_gpu(node, GpuKind.DESKTOP) for node in self._lookup(self._endpoints.desktop_type_id)]
        records = reclassify_gpus(desktop, notebook)
        logger.debug("Loaded %d GPU catalog entries", len(records))
        return records

    def fetch_operating_systems(self) -> list[OsRecord]:
        records = [parse_os(node) for node in self._lookup(self._endpoints.os_type_id)]
        logger.debug("Loaded %d OS catalog entries", len(records))
        return records

    def fetch_drivers(
        self,
        gpu: GpuRecord,
        os_record: OsRecord,
        unified: bool,
        driver_type: DriverType,
    ) -> DriverListing:
        query = urllib.parse.urlencode(
            {
                "func": "DriverManualLookup",
                "pfid": gpu.id,
                "osID": os_record.id,
                "dch": 1 if unified else 0,
                "upCRD": driver_type.crd_flag,
            }
        )
        listing = parse_driver_listing(self._get(f"{self._endpoints.driver_lookup_url}?{query}"))
        logger.debug(
            "Driver lookup gpu=%s os=%s dch=%s type=%s -> success=%s",
            gpu.id,
            os_record.id,
            unified,
            driver_type.value,
            listing.success,
        )
        return listing

    def _lookup(self, type_id: int) -> list[ET.Element]:
        return parse_lookup_values(self._get(f"{self._endpoints.lookup_url}?TypeID={type_id}"))

    def _get(self, url: str) -> bytes:
        logger.debug("Requesting %s", url)
        try:
            with closing(self._transport.get(url)) as response:
                if not is_success(response.status):
                    raise CatalogUnavailable(f"Catalog request failed with HTTP {response.status}: {url}")
                return response.read()
        except OSError as exc:
            raise CatalogUnavailable(f"Catalog request failed for {url}: {exc}") from exc
