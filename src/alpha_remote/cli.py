"""CLI entry point for alpha-remote.

Provides the ``alpha-remote`` console script with subcommands:

- ``status`` - Connect, refresh and print session state and settings
- ``get`` - Print the current value of one setting
- ``set`` - Change one setting
- ``capture`` - Take a picture and print the downloaded files
- ``server`` - Run the MCP server (default if no subcommand)

Usage::

    alpha-remote status --mode gphoto2
    alpha-remote set iso 400
    alpha-remote capture --long-exposure-timeout 120
    alpha-remote server --url http://192.168.122.1:8080

Every subcommand accepts the driver flags of ``alpha_remote.server``
(``--mode``, ``--url``, ``--capture-dir``, ...). Results are printed as
JSON on stdout; logs go to stderr.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Callable
from typing import Any

from alpha_remote.devices import CameraSession, create_session
from alpha_remote.drivers.config import DriverFactory
from alpha_remote.drivers.errors import CameraRemoteError
from alpha_remote.drivers.operations import Setting
from alpha_remote.server import (
    add_driver_arguments,
    config_from_args,
    configure_logging_from_args,
)
from alpha_remote.utils.values import label_of

PROG = "alpha-remote"


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _status(session: CameraSession, args: argparse.Namespace) -> int:
    _print(
        {
            "state": session.state.value,
            "simulated": session.is_simulated,
            "transport": session.transport.kind,
            "version": session.version,
            "settings": session.settings.to_dict(),
        }
    )
    return 0


def _get(session: CameraSession, args: argparse.Namespace) -> int:
    value = session.get_setting(args.setting)
    payload: dict[str, Any] = {"setting": args.setting, "value": value}
    if args.available:
        entries = session.available(args.setting)
        payload["available"] = (
            None if entries is None else [label_of(e) for e in entries]
        )
    _print(payload)
    return 0 if value is not None else 1


def _numeric_value(setting: str, text: str) -> Any:
    # Kelvin and EV are numeric; every other value is matched as text.
    try:
        kind = Setting.from_name(setting)
    except ValueError:
        return text
    if kind not in (Setting.WHITE_BALANCE, Setting.EXPOSURE_COMPENSATION):
        return text
    try:
        number = float(text)
    except ValueError:
        return text
    return int(number) if number.is_integer() else number


def _set(session: CameraSession, args: argparse.Namespace) -> int:
    value = _numeric_value(args.setting, args.value)
    applied = session.set_setting(args.setting, value)
    _print({"setting": args.setting, "requested": args.value, "value": applied})
    return 0 if applied is not None else 1


def _capture(session: CameraSession, args: argparse.Namespace) -> int:
    result = session.capture(timeout=args.timeout_s)
    _print(result.to_dict())
    return 0 if result.files else 1


Command = Callable[[CameraSession, argparse.Namespace], int]


def _run(command: Command, args: argparse.Namespace) -> int:
    configure_logging_from_args(args)
    session = create_session(DriverFactory(config_from_args(args)))
    try:
        session.connect()
        return command(session, args)
    except CameraRemoteError as e:
        print(f"{PROG}: {e}", file=sys.stderr)
        return 2
    finally:
        session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="alpha-remote - remote control for Sony cameras over Wi-Fi or USB",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    status_parser = subparsers.add_parser("status", help="Print camera status")
    add_driver_arguments(status_parser)
    status_parser.set_defaults(handler=_status)

    get_parser = subparsers.add_parser("get", help="Print one setting")
    get_parser.add_argument("setting", help="Setting name or alias (iso, shutter, ...)")
    get_parser.add_argument(
        "--available", action="store_true", help="Also list the legal values"
    )
    add_driver_arguments(get_parser)
    get_parser.set_defaults(handler=_get)

    set_parser = subparsers.add_parser("set", help="Change one setting")
    set_parser.add_argument("setting", help="Setting name or alias")
    set_parser.add_argument("value", help="New value (label, id or number)")
    add_driver_arguments(set_parser)
    set_parser.set_defaults(handler=_set)

    capture_parser = subparsers.add_parser("capture", help="Take a picture")
    capture_parser.add_argument(
        "--wait",
        dest="timeout_s",
        type=float,
        default=None,
        help="Maximum seconds to wait for a long exposure",
    )
    add_driver_arguments(capture_parser)
    capture_parser.set_defaults(handler=_capture)

    # Server flags are parsed by server.main()
    subparsers.add_parser(
        "server",
        help="Run MCP server (default if no subcommand)",
        add_help=False,
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        0 on success, 1 when the camera refused or had nothing to report,
        2 on connection or protocol errors.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    help_requested = bool(argv) and argv[0] in ("-h", "--help")
    if not argv or argv[0] == "server" or (
        argv[0].startswith("-") and not help_requested
    ):
        from alpha_remote.server import main as server_main

        server_main(argv[1:] if argv and argv[0] == "server" else argv)
        return 0

    args = build_parser().parse_args(argv)
    return _run(args.handler, args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
