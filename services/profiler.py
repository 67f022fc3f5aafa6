"""Local machine profiling and the rules that match it against the vendor catalog."""
from __future__ import annotations

import json
import logging
import platform
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, Sequence

from nvidia_updater.constants import IMMUTABLE_CONFIG, ProfilerSetting
from services.catalog import GpuKind, GpuRecord, OsRecord
from services.errors import NoMatchFound, ProfileError

try:
    import winreg  # type: ignore[import-not-found]
except ImportError:  # pragma: no cover - not available on Linux runners
    winreg = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

WINDOWS_11_PATTERN = re.compile(r"Windows 11")
GPU_SUFFIX_PATTERNS = (
    re.compile(r"^(.*) \([A-Z]+\)"),
    re.compile(r"^(.*) [0-9]+GB"),
    re.compile(r"^(.*) with Max-Q Design"),
    re.compile(r"^(.*) COLLECTORS EDITION"),
)

INVENTORY_SCRIPT = """
$os = Get-CimInstance Win32_OperatingSystem
$result = @{
    OSVersion = $os.Version
    OSArchitecture = $os.OSArchitecture
    VideoControllers = @(Get-CimInstance Win32_VideoController | ForEach-Object {
        @{ Name = $_.Name; DriverVersion = $_.DriverVersion }
    })
    ChassisTypes = @(Get-CimInstance Win32_SystemEnclosure | ForEach-Object { $_.ChassisTypes })
}
$result | ConvertTo-Json -Depth 4 -Compress
"""


@dataclass
class VideoController:
    name: str
    driver_version: str


@dataclass
class InventorySnapshot:
    os_version: str
    is_64bit: bool
    video_controllers: list[VideoController] = field(default_factory=list)
    chassis_types: list[int] = field(default_factory=list)


@dataclass
class LocalMachineProfile:
    os_major: int
    os_minor: int
    os_build: int
    is_64bit: bool
    gpu_raw_name: str
    gpu_name: str
    driver_version: str | None
    raw_driver_version: str | None
    is_unified_driver: bool
    supports_unified_driver: bool
    form_factor: GpuKind
    form_factor_overridden: bool = False

    @property
    def os_code(self) -> str:
        return f"{self.os_major}.{self.os_minor}"

    @property
    def bitness(self) -> str:
        return "64" if self.is_64bit else "32"


class CommandRunner(Protocol):
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:  # pragma: no cover - protocol
        ...


class SubprocessRunner:
    def run(self, command: Sequence[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(command, capture_output=True, text=True, check=False, timeout=60)


class SystemInventory(Protocol):
    def read(self) -> InventorySnapshot:  # pragma: no cover - protocol
        ...


class RegistryAccessor(Protocol):
    def get_value(self, path: str, value_name: str) -> str | int | None:  # pragma: no cover - protocol
        ...


class PowerShellInventory:
    """Reads OS, display adapter and chassis information through CIM."""

    def __init__(self, *, powershell: str = "powershell", command_runner: CommandRunner | None = None) -> None:
        self._powershell = powershell
        self._runner = command_runner or SubprocessRunner()

    def read(self) -> InventorySnapshot:
        if shutil.which(self._powershell) is None:
            raise ProfileError(f"{self._powershell} not found on PATH")
        try:
            result = self._runner.run([self._powershell, "-NoProfile", "-Command", INVENTORY_SCRIPT])
        except (OSError, subprocess.SubprocessError) as exc:
            raise ProfileError(f"System inventory query failed: {exc}") from exc
        if result.returncode != 0 or not result.stdout.strip():
            detail = (result.stderr or "").strip() or f"exit {result.returncode}"
            raise ProfileError(f"System inventory query failed: {detail}")
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise ProfileError(f"System inventory output is not valid JSON: {exc}") from exc
        return parse_inventory(data)


def parse_inventory(data: Any) -> InventorySnapshot:
    if not isinstance(data, dict):
        raise ProfileError("System inventory output is not a JSON object")
    architecture = str(data.get("OSArchitecture") or "")
    if architecture:
        is_64bit = "64" in architecture
    else:
        is_64bit = platform.machine().endswith("64")
    controllers = []
    for item in _as_list(data.get("VideoControllers")):
        if not isinstance(item, dict) or not item.get("Name"):
            continue
        controllers.append(VideoController(str(item["Name"]), str(item.get("DriverVersion") or "")))
    chassis: list[int] = []
    for value in _as_list(data.get("ChassisTypes")):
        try:
            chassis.append(int(value))
        except (TypeError, ValueError):
            continue
    return InventorySnapshot(
        os_version=str(data.get("OSVersion") or ""),
        is_64bit=is_64bit,
        video_controllers=controllers,
        chassis_types=chassis,
    )


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


class WindowsRegistryAccessor:
    """Read-only registry helper backed by winreg."""

    def __init__(self) -> None:
        if winreg is None:
            raise ProfileError("winreg not available on this platform")

    def get_value(self, path: str, value_name: str) -> str | int | None:
        hive, subkey = self._split_path(path)
        try:
            with winreg.OpenKey(hive, subkey) as key:  # type: ignore[arg-type]
                value, _ = winreg.QueryValueEx(key, value_name)
                return value
        except FileNotFoundError:
            return None

    def _split_path(self, path: str) -> tuple[object, str]:
        hive_name, _, subkey = path.replace("/", "\\").partition(":\\")
        hive_map = {
            "HKLM": winreg.HKEY_LOCAL_MACHINE,
            "HKCU": winreg.HKEY_CURRENT_USER,
        }
        try:
            return hive_map[hive_name.upper()], subkey.lstrip("\\")
        except KeyError as exc:
            raise ValueError(f"Unsupported hive: {hive_name}") from exc


def normalize_gpu_name(name: str, *, vendor_prefix: str | None = None) -> str:
    """Reduce an adapter or catalog name to its bare product name.

    Strips the vendor prefix and the first matching suffix (region code, memory
    size, Max-Q, Collectors Edition), repeating until nothing changes.
    """
    prefix = f"{vendor_prefix or IMMUTABLE_CONFIG.profiler.vendor_prefix} "
    current = name.strip()
    while True:
        text = current[len(prefix):] if current.startswith(prefix) else current
        for pattern in GPU_SUFFIX_PATTERNS:
            match = pattern.match(text)
            if match:
                text = match.group(1)
                break
        text = text.strip().replace("Super", "SUPER")
        if text == current:
            return current
        current = text


def parse_installed_driver_version(raw: str | None) -> str | None:
    """Turn the OS driver version (e.g. 31.0.15.5123) into the vendor form (551.23)."""
    compact = (raw or "").strip().replace(".", "")
    tail = compact[-5:]
    if len(tail) < 5 or not tail.isdigit():
        return None
    return f"{tail[:3]}.{tail[3:]}"


def parse_os_version(raw: str) -> tuple[int, int, int]:
    parts = raw.strip().split(".")
    try:
        major = int(parts[0])
        minor = int(parts[1]) if len(parts) > 1 else 0
        build = int(parts[2]) if len(parts) > 2 else 0
    except ValueError as exc:
        raise ProfileError(f"Unrecognised OS version: {raw!r}") from exc
    return major, minor, build


def detect_form_factor(
    chassis_types: Iterable[int],
    override: GpuKind | None = None,
    *,
    notebook_types: Iterable[int] | None = None,
) -> GpuKind:
    if override is not None:
        return override
    notebook = set(notebook_types if notebook_types is not None else IMMUTABLE_CONFIG.profiler.notebook_chassis_types)
    if any(value in notebook for value in chassis_types):
        return GpuKind.NOTEBOOK
    return GpuKind.DESKTOP


def select_video_controller(controllers: Iterable[VideoController], vendor_prefix: str | None = None) -> VideoController | None:
    prefix = vendor_prefix or IMMUTABLE_CONFIG.profiler.vendor_prefix
    for controller in controllers:
        if controller.name.startswith(prefix):
            return controller
    return None


def match_os(
    profile: LocalMachineProfile,
    operating_systems: Sequence[OsRecord],
    *,
    windows11_min_build: int | None = None,
) -> OsRecord:
    threshold = windows11_min_build or IMMUTABLE_CONFIG.profiler.windows11_min_build
    if profile.os_code == "10.0" and profile.os_build >= threshold:
        for record in operating_systems:
            if WINDOWS_11_PATTERN.search(record.name):
                return record
        raise NoMatchFound(f"No Windows 11 entry in the driver catalog for build {profile.os_build}")
    for record in operating_systems:
        if record.code == profile.os_code and profile.bitness in record.name:
            return record
    raise NoMatchFound(f"No catalog entry for Windows {profile.os_code} ({profile.bitness}-bit)")


def match_gpu(profile: LocalMachineProfile, gpus: Sequence[GpuRecord]) -> GpuRecord:
    candidates = [gpu for gpu in gpus if gpu.kind == profile.form_factor]
    for gpu in candidates:
        if gpu.name == profile.gpu_name:
            return gpu
    for gpu in candidates:
        if normalize_gpu_name(gpu.name) == profile.gpu_name:
            return gpu
    raise NoMatchFound(f"No {profile.form_factor.value} catalog entry for {profile.gpu_name}")


class MachineProfiler:
    def __init__(
        self,
        *,
        inventory: SystemInventory | None = None,
        registry: RegistryAccessor | None = None,
        settings: ProfilerSetting | None = None,
    ) -> None:
        self._inventory = inventory or PowerShellInventory()
        self._registry = registry
        self._settings = settings or IMMUTABLE_CONFIG.profiler

    def profile(self, chassis_override: GpuKind | None = None) -> LocalMachineProfile:
        snapshot = self._inventory.read()
        major, minor, build = parse_os_version(snapshot.os_version)
        controller = select_video_controller(snapshot.video_controllers, self._settings.vendor_prefix)
        if controller is None:
            names = ", ".join(c.name for c in snapshot.video_controllers) or "none"
            raise NoMatchFound(f"No {self._settings.vendor_prefix} display adapter found (adapters: {names})")
        driver_version = parse_installed_driver_version(controller.driver_version)
        if driver_version is None:
            logger.warning("Could not derive driver version from %r", controller.driver_version)
        form_factor = detect_form_factor(
            snapshot.chassis_types,
            chassis_override,
            notebook_types=self._settings.notebook_chassis_types,
        )
        profile = LocalMachineProfile(
            os_major=major,
            os_minor=minor,
            os_build=build,
            is_64bit=snapshot.is_64bit,
            gpu_raw_name=controller.name,
            gpu_name=normalize_gpu_name(controller.name, vendor_prefix=self._settings.vendor_prefix),
            driver_version=driver_version,
            raw_driver_version=controller.driver_version or None,
            is_unified_driver=self._read_unified_marker(),
            supports_unified_driver=build > self._settings.unified_min_build,
            form_factor=form_factor,
            form_factor_overridden=chassis_override is not None,
        )
        logger.info(
            "Profiled %s (driver %s, %s, unified=%s) on Windows %s build %d",
            profile.gpu_name,
            profile.driver_version,
            profile.form_factor.value,
            profile.is_unified_driver,
            profile.os_code,
            profile.os_build,
        )
        return profile

    def _read_unified_marker(self) -> bool:
        if self._registry is None:
            self._registry = WindowsRegistryAccessor()
        try:
            value = self._registry.get_value(self._settings.dch_registry_path, self._settings.dch_registry_value)
        except OSError as exc:
            raise ProfileError(f"Cannot read driver store marker: {exc}") from exc
        return value is not None
