"""Filesystem locations used by the updater."""
from __future__ import annotations

import sys
import tempfile
from pathlib import Path

from nvidia_updater.constants import CONFIG_ROOT, IMMUTABLE_CONFIG


def get_application_directory() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return CONFIG_ROOT.parent


def get_default_work_directory() -> Path:
    return Path(tempfile.gettempdir()) / IMMUTABLE_CONFIG.work_dir_name


def get_log_directory() -> Path:
    return get_application_directory() / "logs"
