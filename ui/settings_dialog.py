"""Settings dialog for the driver update options."""
from __future__ import annotations

from dataclasses import fields
from pathlib import Path

from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLineEdit,
    QMessageBox,
    QPushButton,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from nvidia_updater.user_settings import SettingsStore, UpdateSettings
from services.catalog import DriverType, GpuKind

DRIVER_TYPE_LABELS = {
    DriverType.GAME_READY: "Game Ready",
    DriverType.STUDIO: "Studio",
}
CHASSIS_LABELS = {
    None: "Automatic",
    GpuKind.DESKTOP: "Force desktop",
    GpuKind.NOTEBOOK: "Force notebook",
}


class SettingsDialog(QDialog):
    def __init__(self, settings: UpdateSettings, store: SettingsStore, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        self._settings = settings
        self._store = store
        self.setWindowTitle("Update Settings")
        self.setMinimumWidth(520)
        self._build_ui()

    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        form = QFormLayout()

        self._driver_type = QComboBox()
        for driver_type, label in DRIVER_TYPE_LABELS.items():
            self._driver_type.addItem(label, driver_type.value)
        self._driver_type.setCurrentIndex(self._driver_type.findData(self._settings.driver_type.value))
        form.addRow("Driver Type", self._driver_type)

        self._chassis = QComboBox()
        for kind, label in CHASSIS_LABELS.items():
            self._chassis.addItem(label, kind.value if kind else "")
        self._chassis.setCurrentIndex(list(CHASSIS_LABELS).index(self._settings.chassis_override))
        form.addRow("Chassis", self._chassis)

        self._minimal = QCheckBox("Install the display driver only")
        self._minimal.setChecked(self._settings.minimal)
        form.addRow("", self._minimal)

        self._silent = QCheckBox("Install silently without rebooting")
        self._silent.setChecked(self._settings.silent)
        form.addRow("", self._silent)

        self._download_only = QCheckBox("Download only")
        self._download_only.setChecked(self._settings.download_only)
        form.addRow("", self._download_only)

        self._output_path = QLineEdit(self._settings.output_path)
        self._output_path.setPlaceholderText("Required for download only")
        form.addRow("Output Folder", self._make_dir_picker(self._output_path, "Select Output Folder"))

        self._tolerate_extraction = QCheckBox("Fall back to the full installer if extraction fails")
        self._tolerate_extraction.setChecked(self._settings.tolerate_extraction_failure)
        form.addRow("", self._tolerate_extraction)

        self._missing_baseline = QCheckBox("Treat an unknown installed version as outdated")
        self._missing_baseline.setChecked(self._settings.missing_baseline_is_outdated)
        form.addRow("", self._missing_baseline)

        self._cleanup_attempts = QSpinBox()
        self._cleanup_attempts.setRange(1, 20)
        self._cleanup_attempts.setValue(self._settings.cleanup_attempts)
        form.addRow("Cleanup Attempts", self._cleanup_attempts)

        layout.addLayout(form)

        buttons = QDialogButtonBox(QDialogButtonBox.Save | QDialogButtonBox.Cancel)
        buttons.accepted.connect(self._save)
        buttons.rejected.connect(self.reject)
        layout.addWidget(buttons)

    def _make_dir_picker(self, field: QLineEdit, title: str) -> QWidget:
        container = QWidget()
        row = QHBoxLayout(container)
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(field)
        browse = QPushButton("Browse")
        browse.clicked.connect(lambda: self._browse_for_dir(field, title))
        row.addWidget(browse)
        return container

    def _browse_for_dir(self, field: QLineEdit, title: str) -> None:
        current = field.text().strip()
        start_dir = current or str(Path.home())
        path = QFileDialog.getExistingDirectory(self, title, start_dir)
        if path:
            field.setText(path)

    def _save(self) -> None:
        candidate = UpdateSettings.from_dict(self._settings.to_dict())
        candidate.driver_type = DriverType(self._driver_type.currentData())
        chassis = self._chassis.currentData()
        candidate.chassis_override = GpuKind(chassis) if chassis else None
        candidate.minimal = self._minimal.isChecked()
        candidate.silent = self._silent.isChecked()
        candidate.download_only = self._download_only.isChecked()
        candidate.output_path = self._output_path.text().strip()
        candidate.tolerate_extraction_failure = self._tolerate_extraction.isChecked()
        candidate.missing_baseline_is_outdated = self._missing_baseline.isChecked()
        candidate.cleanup_attempts = self._cleanup_attempts.value()
        try:
            candidate.validate()
        except ValueError as exc:
            QMessageBox.warning(self, "Invalid Settings", str(exc))
            return
        for item in fields(UpdateSettings):
            setattr(self._settings, item.name, getattr(candidate, item.name))
        self._store.save(self._settings)
        self.accept()
