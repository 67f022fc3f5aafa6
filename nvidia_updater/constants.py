"""Immutable settings for the NVIDIA driver updater."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple


@dataclass(frozen=True)
class CatalogEndpoints:
    lookup_url: str
    driver_lookup_url: str
    os_type_id: int
    notebook_type_id: int
    desktop_type_id: int


@dataclass(frozen=True)
class HttpSetting:
    user_agent: str
    timeout: float
    chunk_size: int


@dataclass(frozen=True)
class ProfilerSetting:
    vendor_prefix: str
    notebook_chassis_types: Tuple[int, ...]
    windows11_min_build: int
    unified_min_build: int
    dch_registry_path: str
    dch_registry_value: str


@dataclass(frozen=True)
class ExtractorSetting:
    tool_name: str
    tool_download_url: str
    members: Tuple[str, ...]
    success_codes: Tuple[int, ...]


@dataclass(frozen=True)
class InstallerSetting:
    setup_config: str
    setup_config_backup: str
    setup_executable: str
    suppressed_tokens: Tuple[str, ...]
    silent_args: Tuple[str, ...]
    interactive_args: Tuple[str, ...]
    success_codes: Tuple[int, ...]


@dataclass(frozen=True)
class ImmutableConfig:
    catalog: CatalogEndpoints
    http: HttpSetting
    profiler: ProfilerSetting
    extractor: ExtractorSetting
    installer: InstallerSetting
    work_dir_name: str


CONFIG_ROOT = Path(__file__).resolve().parent

IMMUTABLE_CONFIG = ImmutableConfig(
    catalog=CatalogEndpoints(
        lookup_url="https://www.nvidia.com/Download/API/lookupValueSearch.aspx",
        driver_lookup_url=(
            "https://gfwsl.geforce.com/services_toolkit/services/com/nvidia/services/AjaxDriverService.php"
        ),
        os_type_id=4,
        notebook_type_id=2,
        desktop_type_id=3,
    ),
    http=HttpSetting(
        user_agent="curl/7.79.1",
        timeout=60.0,
        chunk_size=16384,
    ),
    profiler=ProfilerSetting(
        vendor_prefix="NVIDIA",
        notebook_chassis_types=(1, 8, 9, 10, 11, 12, 14, 18, 21, 31, 32),
        windows11_min_build=22000,
        unified_min_build=10240,
        dch_registry_path=r"HKLM:\SYSTEM\CurrentControlSet\Services\nvlddmkm",
        dch_registry_value="DCHUVen",
    ),
    extractor=ExtractorSetting(
        tool_name="7zr.exe",
        tool_download_url="https://sourceforge.net/projects/sevenzip/files/7-Zip/23.01/7zr.exe/download",
        members=(
            "Display.Driver",
            "NVI2",
            "EULA.txt",
            "license.txt",
            "ListDevices.txt",
            "setup.cfg",
            "setup.exe",
        ),
        success_codes=(0, 1),
    ),
    installer=InstallerSetting(
        setup_config="setup.cfg",
        setup_config_backup="setup.cfg.bak",
        setup_executable="setup.exe",
        suppressed_tokens=(
            "${{EulaHtmlFile}}",
            "${{FunctionalConsentFile}}",
            "${{PrivacyPolicyFile}}",
        ),
        silent_args=("/s", "/noreboot"),
        interactive_args=("/nosplash",),
        success_codes=(0, 3010),
    ),
    work_dir_name="nvidia-driver-updater",
)
