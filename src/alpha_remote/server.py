"""MCP server entry point for camera remote control."""

import argparse
import asyncio
import logging
from pathlib import Path

from mcp.server import Server
from mcp.server.stdio import stdio_server

from alpha_remote.drivers.config import DriverConfig, DriverMode, configure
from alpha_remote.observability import configure_logging, get_logger
from alpha_remote.tools import camera

logger = get_logger(__name__)

SERVER_NAME = "alpha-remote"


def create_server(config: DriverConfig | None = None) -> Server:
    """Create the MCP server and connect the camera session.

    Configures the driver factory, connects the process-wide session (in
    offline replay when the camera cannot be reached and fallback is
    enabled) and registers the camera tools.

    Args:
        config: Driver configuration; the current global one when None.

    Returns:
        Configured MCP Server instance.

    Raises:
        ConnectionFailedError: Camera unreachable with fallback disabled.

    Example:
        >>> server = create_server(DriverConfig(mode=DriverMode.DIGITAL_TWIN))
    """
    from alpha_remote.devices import init_session

    if config is not None:
        configure(config)
    session = init_session()
    logger.info(
        "Camera session ready",
        state=session.state.value,
        transport=session.transport.kind,
    )

    server = Server(SERVER_NAME)
    camera.register(server)
    return server


async def run_server(config: DriverConfig | None = None) -> None:
    """Run the MCP server over stdio until stdin closes.

    The session is shut down on exit, whatever the reason.
    """
    server = create_server(config)
    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                server.create_initialization_options(),
            )
    finally:
        from alpha_remote.devices import shutdown_session

        shutdown_session()


def add_driver_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the flags that map onto DriverConfig."""
    defaults = DriverConfig()
    parser.add_argument(
        "--mode",
        choices=[m.value for m in DriverMode],
        default=defaults.mode.value,
        help="Transport: Wi-Fi HTTP API, USB gphoto2, or offline replay",
    )
    parser.add_argument(
        "--url",
        dest="endpoint",
        default=defaults.endpoint,
        help=f"Camera Remote API base URL (default: {defaults.endpoint})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=defaults.request_timeout,
        help="HTTP request timeout in seconds",
    )
    parser.add_argument(
        "--gphoto2",
        dest="gphoto2_executable",
        default=defaults.gphoto2_executable,
        help="gphoto2 executable",
    )
    parser.add_argument(
        "--capture-dir",
        type=Path,
        default=None,
        help="Directory for downloaded captures (default: temporary)",
    )
    parser.add_argument(
        "--download-postview",
        action="store_true",
        help="Save HTTP postview images into the capture directory",
    )
    parser.add_argument(
        "--offline-snapshot",
        type=Path,
        default=None,
        help="Recorded getEvent JSON used for offline replay",
    )
    parser.add_argument(
        "--no-offline-fallback",
        dest="fallback_to_offline",
        action="store_false",
        help="Fail instead of switching to offline replay",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=defaults.poll_interval,
        help="Seconds between status refreshes",
    )
    parser.add_argument(
        "--long-exposure-timeout",
        type=float,
        default=defaults.long_exposure_timeout,
        help="Maximum seconds to wait for a long exposure",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default="info",
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON lines",
    )


def config_from_args(args: argparse.Namespace) -> DriverConfig:
    return DriverConfig(
        mode=DriverMode(args.mode),
        endpoint=args.endpoint,
        request_timeout=args.timeout,
        gphoto2_executable=args.gphoto2_executable,
        capture_dir=args.capture_dir,
        offline_snapshot=args.offline_snapshot,
        fallback_to_offline=args.fallback_to_offline,
        download_postview=args.download_postview,
        poll_interval=args.poll_interval,
        long_exposure_timeout=args.long_exposure_timeout,
    )


def configure_logging_from_args(args: argparse.Namespace) -> None:
    configure_logging(
        level=getattr(logging, args.log_level.upper()),
        json_format=args.log_json,
        force=True,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="alpha-remote MCP server - remote control for Sony cameras"
    )
    add_driver_arguments(parser)
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, configure logging and serve MCP over stdio.

    Example:
        >>> # alpha-remote server --mode gphoto2 --log-level debug
    """
    args = parse_args(argv)
    configure_logging_from_args(args)
    logger.info("Starting MCP server", mode=args.mode)
    asyncio.run(run_server(config_from_args(args)))


if __name__ == "__main__":  # pragma: no cover
    main()
