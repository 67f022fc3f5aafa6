"""User-editable settings persisted as JSON next to the application."""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

from nvidia_updater.paths import get_application_directory
from services.catalog import DriverType, GpuKind

logger = logging.getLogger(__name__)

SETTINGS_FILE_NAME = "nvidia_updater_settings.json"


@dataclass
class UpdateSettings:
    driver_type: DriverType = DriverType.GAME_READY
    minimal: bool = True
    silent: bool = False
    check_only: bool = False
    download_only: bool = False
    interactive: bool = False
    output_path: str = ""
    chassis_override: GpuKind | None = None
    missing_baseline_is_outdated: bool = True
    tolerate_extraction_failure: bool = True
    cleanup_attempts: int = 5
    cleanup_backoff: float = 1.0
    catalog_attempts: int = 3
    catalog_backoff: float = 1.0

    def validate(self) -> None:
        if self.download_only and not self.output_path.strip():
            raise ValueError("Download-only mode requires an output path")
        if self.cleanup_attempts < 1:
            raise ValueError("cleanup_attempts must be at least 1")
        if self.catalog_attempts < 1:
            raise ValueError("catalog_attempts must be at least 1")
        if self.cleanup_backoff < 0 or self.catalog_backoff < 0:
            raise ValueError("Backoff values cannot be negative")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["driver_type"] = self.driver_type.value
        data["chassis_override"] = self.chassis_override.value if self.chassis_override else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UpdateSettings":
        known = {item.name for item in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        if "driver_type" in values:
            values["driver_type"] = DriverType(values["driver_type"])
        if values.get("chassis_override"):
            values["chassis_override"] = GpuKind(values["chassis_override"])
        else:
            values.pop("chassis_override", None)
        return cls(**values)


class SettingsStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path else get_application_directory() / SETTINGS_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UpdateSettings:
        if not self._path.exists():
            return UpdateSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return UpdateSettings.from_dict(data if isinstance(data, dict) else {})
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Ignoring unreadable settings file %s: %s", self._path, exc)
            return UpdateSettings()

    def save(self, settings: UpdateSettings) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
