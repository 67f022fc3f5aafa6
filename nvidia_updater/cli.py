"""Command-line entry point for the NVIDIA driver updater."""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from typing import Any, Sequence, TextIO

from nvidia_updater.log_config import setup_logging
from nvidia_updater.prompts import InputFunc, prompt_choice, prompt_yes_no
from nvidia_updater.release_notes import describe_release_age, release_notes_to_text
from nvidia_updater.user_settings import SettingsStore, UpdateSettings
from services.catalog import DriverType, GpuKind
from services.drivers import CheckResult, DriverUpdateService, OutcomeKind, RunOutcome
from services.privilege import elevation_required, relaunch_as_admin
from services.progress import CancellationToken, ProgressEvent

logger = logging.getLogger(__name__)

STAGE_LABELS = {
    "download": "Downloading",
    "extract": "Extracting",
    "configure": "Configuring",
    "install": "Installing",
    "cleanup": "Cleaning up",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvidia-updater",
        description="Check for, download and install the latest NVIDIA display driver.",
    )
    parser.add_argument("-i", "--interactive", action="store_true", default=None, help="Prompt for options and confirm before installing")
    parser.add_argument("-q", "--quiet", dest="silent", action="store_true", default=None, help="Install silently without rebooting")
    parser.add_argument("-c", "--check", dest="check_only", action="store_true", default=None, help="Only check whether an update is available")
    size = parser.add_mutually_exclusive_group()
    size.add_argument("-m", "--minimal", dest="minimal", action="store_const", const=True, help="Install the display driver only")
    size.add_argument("--full", dest="minimal", action="store_const", const=False, help="Install the full driver package")
    parser.add_argument(
        "-t",
        "--driver-type",
        choices=[item.value for item in DriverType],
        help="Driver branch (default: game-ready)",
    )
    parser.add_argument("-o", "--output-path", help="Directory that receives the downloaded files")
    parser.add_argument("-d", "--download", dest="download_only", action="store_true", default=None, help="Download only; requires --output-path")
    chassis = parser.add_mutually_exclusive_group()
    chassis.add_argument("--override-desktop", dest="chassis_override", action="store_const", const=GpuKind.DESKTOP.value, help="Match desktop GPUs regardless of chassis")
    chassis.add_argument("--override-notebook", dest="chassis_override", action="store_const", const=GpuKind.NOTEBOOK.value, help="Match notebook GPUs regardless of chassis")
    parser.add_argument("--verbose", action="store_true", help="Show debug logging on the console")
    parser.add_argument("--gui", action="store_true", help="Open the desktop window")
    parser.add_argument("--save-settings", action="store_true", help="Persist the given options as defaults")
    return parser


def apply_arguments(settings: UpdateSettings, args: argparse.Namespace) -> UpdateSettings:
    for name in ("interactive", "silent", "check_only", "minimal", "download_only"):
        value = getattr(args, name, None)
        if value is not None:
            setattr(settings, name, value)
    if args.driver_type:
        settings.driver_type = DriverType(args.driver_type)
    if args.output_path:
        settings.output_path = args.output_path
    if args.chassis_override:
        settings.chassis_override = GpuKind(args.chassis_override)
    return settings


def interactive_input(settings: UpdateSettings, *, ask: InputFunc = input) -> UpdateSettings:
    overrides = [None, GpuKind.NOTEBOOK, GpuKind.DESKTOP]
    current = overrides.index(settings.chassis_override)
    selected = prompt_choice("Chassis detection", ["Automatic", "Force notebook", "Force desktop"], current, ask=ask)
    settings.chassis_override = overrides[selected]

    types = [DriverType.GAME_READY, DriverType.STUDIO]
    selected = prompt_choice("Driver type", ["Game Ready", "Studio"], types.index(settings.driver_type), ask=ask)
    settings.driver_type = types[selected]

    settings.minimal = prompt_yes_no("Install the display driver only?", settings.minimal, ask=ask)
    settings.silent = prompt_yes_no("Install silently?", settings.silent, ask=ask)
    return settings


def print_system_info(check: CheckResult, out: TextIO) -> None:
    profile, decision = check.profile, check.decision
    print("System information", file=out)
    print(f"  OS              {decision.os_record.name} (build {profile.os_build})", file=out)
    print(f"  GPU             {decision.gpu.name} ({profile.form_factor.value})", file=out)
    print(f"  Driver version  {profile.driver_version or 'unknown'}", file=out)
    print(f"  Driver is DCH?  {profile.is_unified_driver}", file=out)
    for advisory in decision.advisories:
        print(f"  ! {advisory}", file=out)


def print_update(check: CheckResult, out: TextIO) -> None:
    driver = check.decision.driver
    if driver is None:
        return
    print("\nUpdate available!", file=out)
    print(f"  {describe_release_age(driver.release_date)}", file=out)
    print(f"  Driver version {check.decision.installed_version or 'unknown'} -> {driver.version}", file=out)
    if driver.download_size:
        print(f"  Download size: {driver.download_size}", file=out)
    print(f"  Download URL: {driver.download_url}", file=out)
    notes = release_notes_to_text(driver.release_notes)
    if notes or driver.details_url:
        print("\nRelease notes", file=out)
        if driver.details_url:
            print(driver.details_url, file=out)
        if notes:
            print(notes, file=out)


class ConsoleProgress:
    """Prints one line per stage each time its progress crosses a 10% step."""

    def __init__(self, out: TextIO) -> None:
        self._out = out
        self._printed: dict[str, int] = {}

    def __call__(self, event: ProgressEvent) -> None:
        stage = event.stage.value
        step = event.value // 10 * 10
        if self._printed.get(stage, -1) >= step and not event.detail:
            return
        self._printed[stage] = step
        label = STAGE_LABELS.get(stage, stage)
        detail = f" ({event.detail})" if event.detail else ""
        print(f"{label}: {event.value}%{detail}", file=self._out, flush=True)


def run_update(
    service: DriverUpdateService,
    *,
    out: TextIO = sys.stdout,
    ask: InputFunc = input,
    cancel: CancellationToken | None = None,
) -> RunOutcome:
    cancel = cancel or CancellationToken()
    previous_handlers: list[Any] = []
    confirmed = False

    def confirm(check: CheckResult) -> bool:
        nonlocal confirmed
        confirmed = True
        print_system_info(check, out)
        print_update(check, out)
        if service.settings.interactive and not prompt_yes_no("\nDo you want to continue with the driver update?", ask=ask):
            return False
        print(f"\nDownload to: {service.pipeline_config().work_dir}", file=out)
        previous_handlers.append(signal.signal(signal.SIGINT, lambda *_: cancel.cancel()))
        return True

    try:
        outcome = service.run(confirm=confirm, sink=ConsoleProgress(out), cancel=cancel)
    finally:
        for handler in previous_handlers:
            signal.signal(signal.SIGINT, handler)

    if outcome.check is not None and not confirmed:
        print_system_info(outcome.check, out)
        if outcome.kind is OutcomeKind.CHECK_ONLY_STOPPED:
            print_update(outcome.check, out)
    return outcome


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.gui:
        from ui.update_window import main as gui_main

        return gui_main()

    log_path = setup_logging("DEBUG" if args.verbose else "WARNING")
    if log_path is not None:
        logger.debug("Logging to %s", log_path)

    store = SettingsStore()
    settings = apply_arguments(store.load(), args)
    try:
        settings.validate()
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if elevation_required(will_install=not (settings.check_only or settings.download_only)):
        print("Installing a driver requires administrator rights, requesting elevation.", file=sys.stderr)
        if relaunch_as_admin(sys.argv[1:] if argv is None else list(argv)):
            return 0
        print("Error: administrator rights were not granted", file=sys.stderr)
        return RunOutcome(OutcomeKind.FAILED).exit_code

    if settings.interactive:
        try:
            interactive_input(settings)
        except (EOFError, KeyboardInterrupt):
            print("\nAborted.", file=sys.stderr)
            return RunOutcome(OutcomeKind.DECLINED_BY_USER).exit_code
    if args.save_settings:
        store.save(settings)

    outcome = run_update(DriverUpdateService(settings))
    if outcome.kind is OutcomeKind.FAILED:
        print(f"Error: {outcome.reason}", file=sys.stderr)
    else:
        print(f"\n{outcome.reason}" if outcome.reason else "")
    if outcome.state is not None:
        for warning in outcome.state.warnings:
            print(f"Warning: {warning}", file=sys.stderr)
    return outcome.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
