"""Command-line interface for screencap.

This is the process-level composition root: it loads the configuration,
builds the probe, enumerator, engine, sink, notifier and orchestrator
explicitly, and routes to one of the modes below.

Entry point flow:
1. Parse arguments
2. Answer introspection flags without touching the desktop
3. Route to status, notification request, or capture
"""

import argparse
import asyncio
import atexit
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .authorization import SystemAuthorization
from .capture import CaptureEngine
from .config import (
    Config,
    config_defaults,
    config_schema,
    config_to_dict,
    load_config,
    validate_config_file,
)
from .displays import DisplayEnumerator
from .emit import EVENT_CATALOG, configure, emit
from .errors import ErrorKind, Remediation
from .notify import DesktopNotifier
from .orchestrator import CaptureOrchestrator, CaptureResult, ResultStatus
from .output import FileSink
from .permissions import PermissionProbe

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BLOCKED = 2
EXIT_BUSY = 3

REMEDIATION_HINTS = {
    Remediation.SCREEN_RECORDING: (
        "Screen access was refused. Allow screen capture for this application "
        "in your compositor or desktop privacy settings, then retry."
    ),
    Remediation.NOTIFICATIONS: (
        "Notifications are unavailable. Start a notification daemon or enable "
        "notifications for this application."
    ),
    Remediation.FILE_ACCESS: (
        "The save directory is not writable. Check its permissions or choose "
        "another directory with --output-dir."
    ),
}


def create_argument_parser() -> argparse.ArgumentParser:
    """Create comprehensive argument parser for CLI usage."""
    parser = argparse.ArgumentParser(
        description="Full-screen capture for Wayland desktops",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                           # Capture the primary display
  %(prog)s --all-displays            # Capture every display
  %(prog)s --output-dir ~/shots      # Prefer a directory
  %(prog)s --status --json           # Print permission and pipeline status
  %(prog)s --json                    # Capture and print the result as JSON
""",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"screencap {__version__}",
    )

    parser.add_argument(
        "--config",
        metavar="PATH",
        help="Path to config file (default: platform config dir)",
    )

    # Introspection
    parser.add_argument(
        "--print-defaults",
        action="store_true",
        help="Print default configuration as JSON and exit",
    )
    parser.add_argument(
        "--print-config-schema",
        action="store_true",
        help="Print configuration schema as JSON and exit",
    )
    parser.add_argument(
        "--validate-config",
        action="store_true",
        help="Validate configuration file and exit",
    )
    parser.add_argument(
        "--print-resolved",
        action="store_true",
        help="Print resolved configuration as JSON and exit",
    )
    parser.add_argument(
        "--print-event-catalog",
        action="store_true",
        help="Print event catalog as JSON and exit",
    )

    # Modes (mutually exclusive)
    mode_group = parser.add_mutually_exclusive_group()
    mode_group.add_argument(
        "--status",
        action="store_true",
        help="Probe permissions and print status instead of capturing",
    )
    mode_group.add_argument(
        "--request-notifications",
        action="store_true",
        help="Ask for notification authorization and exit",
    )

    # Capture options
    parser.add_argument(
        "--all-displays",
        action="store_true",
        default=None,
        help="Capture every display instead of the primary one",
    )
    parser.add_argument(
        "--output-dir", "-o",
        metavar="DIR",
        help="Preferred save directory (falls back when not writable)",
    )
    parser.add_argument(
        "--prefix",
        metavar="NAME",
        help="Filename prefix (default: screenshot)",
    )
    parser.add_argument(
        "--no-notification",
        action="store_true",
        help="Do not show notifications",
    )

    # Output modes
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output JSON to stdout",
    )
    parser.add_argument(
        "--events",
        action="store_true",
        help="Write structured events to stderr",
    )

    # Debug
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def _emit_json(payload: dict) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def _handle_introspection(args: argparse.Namespace) -> Optional[int]:
    config_path = Path(args.config).expanduser() if args.config else None

    if args.print_defaults:
        _emit_json(config_defaults())
        return EXIT_OK

    if args.print_config_schema:
        _emit_json(config_schema())
        return EXIT_OK

    if args.validate_config:
        try:
            errors = validate_config_file(config_path)
        except ValueError as e:
            errors = [str(e)]
        if errors:
            for error in errors:
                print(error, file=sys.stderr)
            return EXIT_FAILED
        return EXIT_OK

    if args.print_resolved:
        config = load_config(config_path=config_path)
        _emit_json(config_to_dict(config))
        return EXIT_OK

    if args.print_event_catalog:
        _emit_json({"catalog": EVENT_CATALOG})
        return EXIT_OK

    return None


def build_overrides(args: argparse.Namespace) -> dict:
    """Config overrides from parsed arguments (None values are ignored)."""
    return {
        "output_dir": args.output_dir,
        "filename_prefix": args.prefix,
        "capture_all_displays": args.all_displays,
        "enable_notification": False if args.no_notification else None,
    }


def build_orchestrator(config: Config) -> CaptureOrchestrator:
    """Wire the capture pipeline for this process."""
    notifier = DesktopNotifier()
    probe = PermissionProbe(SystemAuthorization(config, notifier), timeout=config.probe_timeout)
    return CaptureOrchestrator(
        config=config,
        probe=probe,
        enumerator=DisplayEnumerator(config),
        engine=CaptureEngine(config),
        sink=FileSink(config),
        notifier=notifier,
    )


def exit_code(result: CaptureResult) -> int:
    if result.ok:
        return EXIT_OK
    if result.kind is ErrorKind.PERMISSION_DENIED:
        return EXIT_BLOCKED
    if result.kind in (ErrorKind.BUSY, ErrorKind.CANCELLED):
        return EXIT_BUSY
    return EXIT_FAILED


def _report(result: CaptureResult, json_output: bool) -> None:
    if json_output:
        print(json.dumps(result.to_dict()), flush=True)
    elif result.ok:
        for path in result.paths:
            print(str(path), flush=True)
    elif result.status is ResultStatus.CANCELLED:
        log.info("Capture cancelled")

    if result.remediation is not None:
        log.warning(REMEDIATION_HINTS[result.remediation])


async def run_capture(orchestrator: CaptureOrchestrator, json_output: bool) -> int:
    result = await orchestrator.capture()
    _report(result, json_output)
    await orchestrator.drain()
    return exit_code(result)


async def run_status(orchestrator: CaptureOrchestrator, json_output: bool) -> int:
    probe = await orchestrator.recheck()
    snapshot = orchestrator.status()
    if json_output:
        payload = snapshot.to_dict()
        payload["probe"] = probe.to_dict()
        _emit_json(payload)
    else:
        print(f"screen recording: {snapshot.screen_state.value}")
        print(f"notifications:    {snapshot.notify_state.value}")
        if snapshot.remediation is not None:
            print(REMEDIATION_HINTS[snapshot.remediation])
    return EXIT_OK if snapshot.screen_state.usable else EXIT_BLOCKED


async def run_request_notifications(orchestrator: CaptureOrchestrator, json_output: bool) -> int:
    state = await orchestrator.request_notifications()
    if json_output:
        _emit_json({"notify_state": state.value})
    else:
        print(f"notifications: {state.value}")
    return EXIT_OK if state.usable else EXIT_FAILED


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_argument_parser()
    parsed_args = parser.parse_args(args)

    # Introspection flags short-circuit normal execution
    result = _handle_introspection(parsed_args)
    if result is not None:
        return result

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.debug else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    configure("screencap", stderr=parsed_args.events)
    atexit.register(lambda: emit("shutdown", {}))

    config_path = Path(parsed_args.config).expanduser() if parsed_args.config else None
    try:
        config = load_config(config_path=config_path, overrides=build_overrides(parsed_args))
    except (TypeError, ValueError) as e:
        log.error("Invalid configuration: %s", e)
        return EXIT_FAILED

    source = "cli" if config_path else "default"
    emit("config.resolved", {"config_path": str(config_path or "default"), "source": source})

    orchestrator = build_orchestrator(config)

    if parsed_args.status:
        return asyncio.run(run_status(orchestrator, parsed_args.json))
    if parsed_args.request_notifications:
        return asyncio.run(run_request_notifications(orchestrator, parsed_args.json))
    return asyncio.run(run_capture(orchestrator, parsed_args.json))


if __name__ == "__main__":
    sys.exit(main())
