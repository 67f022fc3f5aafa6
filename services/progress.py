"""Progress events and cooperative cancellation shared by the pipeline stages."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from services.errors import PipelineCancelled


class StageName(str, Enum):
    DOWNLOAD = "download"
    EXTRACT = "extract"
    CONFIGURE = "configure"
    INSTALL = "install"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class ProgressEvent:
    stage: StageName
    value: int
    detail: str = ""


ProgressSink = Callable[[ProgressEvent], None]


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled("Operation cancelled")

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)


class ProgressReporter:
    """Forwards stage progress to a sink, dropping values that would move backwards."""

    def __init__(self, stage: StageName, sink: ProgressSink | None = None) -> None:
        self.stage = stage
        self._sink = sink
        self._last: int | None = None

    @property
    def value(self) -> int:
        return self._last or 0

    @property
    def completed(self) -> bool:
        return self._last == 100

    def report(self, value: float, detail: str = "") -> None:
        clamped = max(0, min(100, int(value)))
        if self._last is not None and clamped <= self._last:
            return
        self._last = clamped
        if self._sink is not None:
            self._sink(ProgressEvent(self.stage, clamped, detail))

    def complete(self, detail: str = "") -> None:
        self.report(100, detail)
