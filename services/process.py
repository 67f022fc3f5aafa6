"""Thin process-launch layer so external tools can be faked in tests."""
from __future__ import annotations

import subprocess
from typing import IO, Protocol, Sequence

from services.progress import CancellationToken


class ProcessHandle(Protocol):
    stdout: IO[bytes] | None

    def poll(self) -> int | None:  # pragma: no cover - protocol
        ...

    def wait(self, timeout: float | None = None) -> int:  # pragma: no cover - protocol
        ...

    def kill(self) -> None:  # pragma: no cover - protocol
        ...


class ProcessLauncher(Protocol):
    def launch(self, command: Sequence[str], *, hidden: bool, capture_output: bool) -> ProcessHandle:  # pragma: no cover - protocol
        ...


class PopenLauncher:
    def launch(self, command: Sequence[str], *, hidden: bool, capture_output: bool) -> ProcessHandle:
        kwargs: dict[str, object] = {}
        if hidden and hasattr(subprocess, "STARTUPINFO"):
            startupinfo = subprocess.STARTUPINFO()  # type: ignore[attr-defined]
            startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW  # type: ignore[attr-defined]
            startupinfo.wShowWindow = 0
            kwargs["startupinfo"] = startupinfo
            kwargs["creationflags"] = subprocess.CREATE_NO_WINDOW  # type: ignore[attr-defined]
        if capture_output:
            kwargs["stdout"] = subprocess.PIPE
            kwargs["stderr"] = subprocess.STDOUT
        return subprocess.Popen(list(command), **kwargs)  # type: ignore[call-overload]


def wait_for_exit(
    process: ProcessHandle,
    cancel: CancellationToken | None = None,
    *,
    poll_interval: float = 0.5,
) -> int:
    """Block until the process exits, checking for cancellation between polls."""
    while True:
        if cancel is not None:
            cancel.raise_if_cancelled()
        try:
            return process.wait(timeout=poll_interval)
        except subprocess.TimeoutExpired:
            continue
