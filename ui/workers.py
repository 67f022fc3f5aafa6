"""QThreadPool workers for running service calls off the UI thread."""
from __future__ import annotations

import logging
from typing import Any, Callable

from PySide6.QtCore import QObject, QRunnable, Signal

logger = logging.getLogger(__name__)


class WorkerSignals(QObject):
    finished = Signal(object)
    error = Signal(str)
    progress = Signal(object)


class ServiceWorker(QRunnable):
    """Runs ``fn`` on a pool thread and reports the result through Qt signals.

    With ``report_progress`` set, ``fn`` receives a ``sink`` keyword argument that
    forwards progress events to the ``progress`` signal.
    """

    def __init__(self, fn: Callable[..., Any], *args: Any, report_progress: bool = False, **kwargs: Any) -> None:
        super().__init__()
        self.signals = WorkerSignals()
        self._fn = fn
        self._args = args
        self._kwargs = kwargs
        if report_progress:
            self._kwargs["sink"] = self.signals.progress.emit

    def run(self) -> None:
        try:
            result = self._fn(*self._args, **self._kwargs)
        except Exception as exc:  # noqa: BLE001 - surfaced to the UI through the error signal
            logger.exception("Background task failed")
            self.signals.error.emit(str(exc))
            return
        self.signals.finished.emit(result)
