"""Main window: check for a newer driver and run the update pipeline."""
from __future__ import annotations

import sys

from PySide6.QtCore import QThreadPool
from PySide6.QtWidgets import (
    QApplication,
    QFormLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QProgressBar,
    QPushButton,
    QVBoxLayout,
    QWidget,
)

from nvidia_updater.log_config import setup_logging
from nvidia_updater.release_notes import describe_release_age, release_notes_to_text
from nvidia_updater.user_settings import SettingsStore, UpdateSettings
from services.drivers import CheckResult, DriverUpdateService, OutcomeKind, RunOutcome
from services.privilege import elevation_required, relaunch_as_admin
from services.progress import CancellationToken, ProgressEvent, StageName
from ui.settings_dialog import SettingsDialog
from ui.workers import ServiceWorker

STAGE_TITLES = {
    StageName.DOWNLOAD: "Download",
    StageName.EXTRACT: "Extract",
    StageName.CONFIGURE: "Configure",
    StageName.INSTALL: "Install",
    StageName.CLEANUP: "Cleanup",
}


class UpdateWindow(QMainWindow):
    def __init__(
        self,
        *,
        settings: UpdateSettings | None = None,
        settings_store: SettingsStore | None = None,
        thread_pool: QThreadPool | None = None,
    ) -> None:
        super().__init__()
        self._settings_store = settings_store or SettingsStore()
        self._settings = settings or self._settings_store.load()
        self._thread_pool = thread_pool or QThreadPool.globalInstance()
        self._service = DriverUpdateService(self._settings)
        self._workers: set[ServiceWorker] = set()
        self._check: CheckResult | None = None
        self._cancel: CancellationToken | None = None
        self._busy = False
        self.setWindowTitle("NVIDIA Driver Updater")
        self.resize(640, 560)
        self._build_ui()
        self._set_busy(False)

    def _build_ui(self) -> None:
        central = QWidget(self)
        layout = QVBoxLayout(central)

        info_box = QGroupBox("System Information")
        info_form = QFormLayout(info_box)
        self._os_label = QLabel("-")
        self._gpu_label = QLabel("-")
        self._installed_label = QLabel("-")
        self._dch_label = QLabel("-")
        info_form.addRow("OS", self._os_label)
        info_form.addRow("GPU", self._gpu_label)
        info_form.addRow("Driver version", self._installed_label)
        info_form.addRow("Driver is DCH?", self._dch_label)
        layout.addWidget(info_box)

        update_box = QGroupBox("Driver Update")
        update_form = QFormLayout(update_box)
        self._candidate_label = QLabel("-")
        self._status_label = QLabel("Not checked")
        update_form.addRow("Latest driver", self._candidate_label)
        update_form.addRow("Status", self._status_label)
        self._progress_bars: dict[StageName, QProgressBar] = {}
        for stage, title in STAGE_TITLES.items():
            bar = QProgressBar()
            bar.setRange(0, 100)
            bar.setValue(0)
            self._progress_bars[stage] = bar
            update_form.addRow(title, bar)
        layout.addWidget(update_box)

        button_row = QHBoxLayout()
        self._btn_check = QPushButton("Check")
        self._btn_update = QPushButton("Update")
        self._btn_cancel = QPushButton("Cancel")
        self._btn_settings = QPushButton("Settings")
        for btn in (self._btn_check, self._btn_update, self._btn_cancel):
            btn.setMinimumWidth(120)
        button_row.addWidget(self._btn_check)
        button_row.addWidget(self._btn_update)
        button_row.addWidget(self._btn_cancel)
        button_row.addStretch()
        button_row.addWidget(self._btn_settings)
        layout.addLayout(button_row)

        self._log_view = QPlainTextEdit()
        self._log_view.setReadOnly(True)
        layout.addWidget(self._log_view)

        self._btn_check.clicked.connect(self._start_check)
        self._btn_update.clicked.connect(self._start_update)
        self._btn_cancel.clicked.connect(self._cancel_update)
        self._btn_settings.clicked.connect(self._open_settings)
        self.setCentralWidget(central)

    def _log(self, message: str) -> None:
        self._log_view.appendPlainText(message)

    def _set_busy(self, busy: bool) -> None:
        self._busy = busy
        self._btn_check.setEnabled(not busy)
        self._btn_settings.setEnabled(not busy)
        self._btn_cancel.setEnabled(busy and self._cancel is not None)
        self._btn_update.setEnabled(not busy and self._check is not None and self._check.decision.update_available)

    def _track_worker(self, worker: ServiceWorker) -> None:
        self._workers.add(worker)
        worker.signals.finished.connect(lambda *_: self._workers.discard(worker))
        worker.signals.error.connect(lambda *_: self._workers.discard(worker))

    def _start_check(self) -> None:
        if self._busy:
            return
        self._check = None
        self._cancel = None
        self._set_busy(True)
        self._status_label.setText("Checking...")
        self._log("Checking for driver updates...")
        worker = ServiceWorker(self._service.check)
        worker.signals.finished.connect(self._handle_check)
        worker.signals.error.connect(self._handle_error)
        self._track_worker(worker)
        self._thread_pool.start(worker)

    def _handle_check(self, check: CheckResult) -> None:
        self._check = check
        profile, decision = check.profile, check.decision
        self._os_label.setText(f"{decision.os_record.name} (build {profile.os_build})")
        self._gpu_label.setText(f"{decision.gpu.name} ({profile.form_factor.value})")
        self._installed_label.setText(profile.driver_version or "unknown")
        self._dch_label.setText("Yes" if profile.is_unified_driver else "No")
        driver = decision.driver
        if driver is not None:
            self._candidate_label.setText(f"{driver.version} ({describe_release_age(driver.release_date)})")
        else:
            self._candidate_label.setText("none listed")
        for advisory in decision.advisories:
            self._log(f"[WARN] {advisory}")

        outcome = self._service.evaluate(check)
        if outcome is not None and outcome.kind is OutcomeKind.NO_UPDATE_AVAILABLE:
            self._status_label.setText("Up to date")
            self._log(outcome.reason)
        else:
            self._status_label.setText("Update available")
            self._log(f"Driver {driver.version} is available.")
        self._set_busy(False)

    def _start_update(self) -> None:
        if self._busy or self._check is None:
            return
        if not self._confirm(self._check):
            self._log("Update declined.")
            return
        for bar in self._progress_bars.values():
            bar.setValue(0)
        minimal = self._settings.minimal
        self._progress_bars[StageName.EXTRACT].setEnabled(minimal)
        self._progress_bars[StageName.CONFIGURE].setEnabled(minimal)
        self._cancel = CancellationToken()
        self._set_busy(True)
        self._status_label.setText("Updating...")
        self._log(f"Working directory: {self._service.pipeline_config().work_dir}")
        worker = ServiceWorker(self._service.apply, self._check, cancel=self._cancel, report_progress=True)
        worker.signals.progress.connect(self._handle_progress)
        worker.signals.finished.connect(self._handle_outcome)
        worker.signals.error.connect(self._handle_error)
        self._track_worker(worker)
        self._thread_pool.start(worker)

    def _confirm(self, check: CheckResult) -> bool:
        driver = check.decision.driver
        if driver is None:
            return False
        box = QMessageBox(self)
        box.setWindowTitle("Confirm Update")
        box.setIcon(QMessageBox.Question)
        box.setText(
            f"Update the driver from {check.decision.installed_version or 'unknown'} to {driver.version}?\n"
            f"Download size: {driver.download_size or 'unknown'}"
        )
        notes = release_notes_to_text(driver.release_notes)
        if notes:
            box.setDetailedText(notes)
        box.setStandardButtons(QMessageBox.Yes | QMessageBox.No)
        box.setDefaultButton(QMessageBox.Yes)
        return box.exec() == QMessageBox.Yes

    def _handle_progress(self, event: ProgressEvent) -> None:
        bar = self._progress_bars.get(event.stage)
        if bar is not None:
            bar.setValue(event.value)
        if event.detail:
            self._log(f"{STAGE_TITLES[event.stage]}: {event.detail}")

    def _handle_outcome(self, outcome: RunOutcome) -> None:
        if outcome.state is not None:
            for warning in outcome.state.warnings:
                self._log(f"[WARN] {warning}")
        if outcome.kind is OutcomeKind.FAILED:
            self._status_label.setText("Failed")
            self._log(f"[ERROR] {outcome.reason}")
            QMessageBox.warning(self, "Update Failed", outcome.reason)
        else:
            self._status_label.setText("Done")
            self._log(outcome.reason)
        self._cancel = None
        self._check = None
        self._set_busy(False)

    def _handle_error(self, message: str) -> None:
        self._status_label.setText("Failed")
        self._log(f"[ERROR] {message}")
        QMessageBox.critical(self, "Driver Updater", message)
        self._cancel = None
        self._set_busy(False)

    def _cancel_update(self) -> None:
        if self._cancel is not None:
            self._log("Cancelling...")
            self._cancel.cancel()
            self._btn_cancel.setEnabled(False)

    def _open_settings(self) -> None:
        dialog = SettingsDialog(self._settings, self._settings_store, self)
        if dialog.exec():
            self._service = DriverUpdateService(self._settings)
            self._check = None
            self._set_busy(False)
            self._log("Settings saved.")


def main() -> int:
    setup_logging("INFO")
    if elevation_required(will_install=True) and relaunch_as_admin(["--gui"]):
        return 0
    app = QApplication.instance() or QApplication(sys.argv)
    window = UpdateWindow()
    window.show()
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
