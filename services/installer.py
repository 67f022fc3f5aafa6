"""Setup configuration rewriting and driver installer launch."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from nvidia_updater.constants import IMMUTABLE_CONFIG, InstallerSetting
from services.errors import InstallLaunchError
from services.process import PopenLauncher, ProcessLauncher, wait_for_exit
from services.progress import CancellationToken, ProgressReporter

logger = logging.getLogger(__name__)

ERROR_ELEVATION_REQUIRED = 740


@dataclass
class ConfigureResult:
    config_path: Path
    backup_path: Path
    total_lines: int
    removed_lines: int


def filter_setup_lines(lines: Sequence[bytes], tokens: Sequence[str]) -> list[bytes]:
    encoded = [token.encode("utf-8") for token in tokens]
    return [line for line in lines if not any(token in line for token in encoded)]


def configure_setup(
    directory: Path,
    reporter: ProgressReporter,
    *,
    settings: InstallerSetting | None = None,
) -> ConfigureResult | None:
    """Drop the consent-dialog entries from setup.cfg, keeping the original as a backup.

    Returns None when there is no setup.cfg to rewrite.
    """
    settings = settings or IMMUTABLE_CONFIG.installer
    config_path = Path(directory) / settings.setup_config
    backup_path = Path(directory) / settings.setup_config_backup
    if not config_path.is_file():
        reporter.complete("skipped")
        return None

    config_path.replace(backup_path)
    reporter.report(50)
    lines = backup_path.read_bytes().splitlines(keepends=True)
    kept = filter_setup_lines(lines, settings.suppressed_tokens)
    config_path.write_bytes(b"".join(kept))
    removed = len(lines) - len(kept)
    logger.info("Removed %d of %d lines from %s", removed, len(lines), config_path.name)
    reporter.complete()
    return ConfigureResult(config_path, backup_path, len(lines), removed)


class DriverInstaller:
    def __init__(
        self,
        *,
        launcher: ProcessLauncher | None = None,
        settings: InstallerSetting | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        self._launcher = launcher or PopenLauncher()
        self._settings = settings or IMMUTABLE_CONFIG.installer
        self._poll_interval = poll_interval

    def build_command(self, executable: Path, silent: bool) -> list[str]:
        args = self._settings.silent_args if silent else self._settings.interactive_args
        return [str(executable), *args]

    def install(
        self,
        executable: Path,
        *,
        silent: bool,
        reporter: ProgressReporter,
        cancel: CancellationToken | None = None,
    ) -> int:
        """Run the installer and wait for it; the exit code is returned, not judged."""
        command = self.build_command(executable, silent)
        logger.info("Launching %s", " ".join(command))
        try:
            process = self._launcher.launch(command, hidden=silent, capture_output=False)
        except OSError as exc:
            if getattr(exc, "winerror", None) == ERROR_ELEVATION_REQUIRED:
                raise InstallLaunchError(f"{executable.name} requires administrator rights; run the updater elevated") from exc
            raise InstallLaunchError(f"Failed to start {executable}: {exc}") from exc
        reporter.report(0, "running")

        exit_code = wait_for_exit(process, cancel, poll_interval=self._poll_interval)
        if exit_code in self._settings.success_codes:
            logger.info("Installer finished with exit code %d", exit_code)
        else:
            logger.warning("Installer finished with exit code %d", exit_code)
        reporter.complete(f"exit code {exit_code}")
        return exit_code
