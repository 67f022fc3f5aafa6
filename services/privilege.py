"""Admin privilege helpers for Windows."""
from __future__ import annotations

import ctypes
import logging
import subprocess
import sys
from typing import Final, Sequence

logger = logging.getLogger(__name__)

IS_WINDOWS: Final[bool] = sys.platform == "win32"
# ShellExecuteW returns a value greater than 32 on success.
SHELLEXECUTE_MIN_SUCCESS: Final[int] = 32
SW_SHOWNORMAL: Final[int] = 1


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except AttributeError:
        return False


def elevation_required(*, will_install: bool) -> bool:
    """The driver installer refuses to start from a non-elevated process."""
    return will_install and IS_WINDOWS and not is_admin()


def relaunch_command(args: Sequence[str]) -> tuple[str, str]:
    if getattr(sys, "frozen", False):
        return sys.executable, subprocess.list2cmdline(list(args))
    return sys.executable, subprocess.list2cmdline(["-m", "nvidia_updater", *args])


def _shell_execute(verb: str, executable: str, params: str) -> int:
    return int(ctypes.windll.shell32.ShellExecuteW(None, verb, executable, params, None, SW_SHOWNORMAL))


def relaunch_as_admin(args: Sequence[str] | None = None) -> bool:
    """Start this program again through the UAC prompt.

    Returns False when the prompt was declined or the launch failed.
    """
    executable, params = relaunch_command(sys.argv[1:] if args is None else args)
    logger.info("Requesting elevation: %s %s", executable, params)
    try:
        result = _shell_execute("runas", executable, params)
    except (AttributeError, OSError) as exc:
        logger.error("Elevation request failed: %s", exc)
        return False
    if result <= SHELLEXECUTE_MIN_SUCCESS:
        logger.warning("Elevation request was refused (code %d)", result)
        return False
    return True
