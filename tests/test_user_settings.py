from __future__ import annotations

import json
from pathlib import Path

import pytest

from nvidia_updater.user_settings import SettingsStore, UpdateSettings
from services.catalog import DriverType, GpuKind


def test_store_persists_settings(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "config" / "settings.json")
    settings = UpdateSettings(
        driver_type=DriverType.STUDIO,
        minimal=False,
        silent=True,
        chassis_override=GpuKind.NOTEBOOK,
        cleanup_attempts=2,
    )

    store.save(settings)

    data = json.loads(store.path.read_text(encoding="utf-8"))
    assert data["driver_type"] == "studio"
    assert data["chassis_override"] == "notebook"
    assert store.load() == settings


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    assert SettingsStore(tmp_path / "absent.json").load() == UpdateSettings()


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", "{\"driver_type\": \"beta\"}"])
def test_unreadable_file_gives_defaults(tmp_path: Path, content: str) -> None:
    path = tmp_path / "settings.json"
    path.write_text(content, encoding="utf-8")

    assert SettingsStore(path).load() == UpdateSettings()


def test_unknown_keys_are_ignored() -> None:
    settings = UpdateSettings.from_dict({"silent": True, "legacy_option": 3, "chassis_override": None})

    assert settings.silent
    assert settings.chassis_override is None


@pytest.mark.parametrize(
    "settings",
    [
        UpdateSettings(download_only=True, output_path="  "),
        UpdateSettings(cleanup_attempts=0),
        UpdateSettings(catalog_attempts=0),
        UpdateSettings(catalog_backoff=-1.0),
    ],
)
def test_validate_rejects_inconsistent_settings(settings: UpdateSettings) -> None:
    with pytest.raises(ValueError):
        settings.validate()


def test_download_only_with_output_path_is_valid(tmp_path: Path) -> None:
    UpdateSettings(download_only=True, output_path=str(tmp_path)).validate()
