"""Root logger configuration: coloured console output plus a per-run log file."""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import colorlog

from nvidia_updater.paths import get_log_directory

CONSOLE_FORMAT = "%(log_color)s%(levelname)-8s%(cyan)s[%(name)s]%(reset)s %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}


def setup_logging(log_level: str = "INFO", log_dir: Path | None = None, *, console: bool = True) -> Path | None:
    """Configure the root logger and return the path of the log file, if one was opened."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    if console:
        stream = colorlog.StreamHandler()
        stream.setLevel(log_level)
        stream.setFormatter(colorlog.ColoredFormatter(CONSOLE_FORMAT, reset=True, log_colors=LOG_COLORS))
        root_logger.addHandler(stream)

    log_dir = Path(log_dir) if log_dir is not None else get_log_directory()
    log_path = log_dir / f"{datetime.now():%Y%m%d_%H%M}.log"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
    except OSError as exc:
        logging.getLogger(__name__).warning("File logging disabled: %s", exc)
        return None
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    root_logger.addHandler(file_handler)
    return log_path
