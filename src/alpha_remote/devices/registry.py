"""Process-wide session registry for the MCP server and CLI.

The tools layer needs one well-known session. ``init_session`` builds it
from the configured DriverFactory, connects it and starts its poll
scheduler; ``get_session`` hands it out; ``shutdown_session`` closes both.

Example:
    from alpha_remote.devices.registry import init_session, get_session

    init_session()
    get_session().set_setting("iso", "400")
"""

from __future__ import annotations

from dataclasses import dataclass

from alpha_remote.devices.scheduler import PollScheduler
from alpha_remote.devices.session import CameraSession, Clock
from alpha_remote.drivers.config import DriverFactory, get_factory
from alpha_remote.drivers.process import CommandRunner
from alpha_remote.observability import RpcStats, get_logger
from alpha_remote.utils.image import FrameGrabber

__all__ = [
    "SessionHandle",
    "create_session",
    "get_scheduler",
    "get_session",
    "init_session",
    "register_session",
    "shutdown_session",
]

logger = get_logger(__name__)


@dataclass(slots=True)
class SessionHandle:
    session: CameraSession
    scheduler: PollScheduler | None


_current: SessionHandle | None = None


def create_session(
    factory: DriverFactory | None = None,
    clock: Clock | None = None,
    frame_grabber: FrameGrabber | None = None,
    runner: CommandRunner | None = None,
) -> CameraSession:
    """Build an unconnected session from ``factory`` (the global one if None)."""
    factory = factory or get_factory()
    stats = RpcStats()
    config = factory.config
    return CameraSession(
        factory.create_transport(stats=stats, runner=runner),
        offline_factory=(
            factory.create_offline_transport if config.fallback_to_offline else None
        ),
        clock=clock,
        frame_grabber=frame_grabber,
        stats=stats,
        long_exposure_timeout=config.long_exposure_timeout,
    )


def init_session(
    factory: DriverFactory | None = None,
    clock: Clock | None = None,
    frame_grabber: FrameGrabber | None = None,
    runner: CommandRunner | None = None,
    start_scheduler: bool = True,
) -> CameraSession:
    """Create, connect and register the process-wide session.

    Replaces (and closes) any previously registered session.

    Raises:
        ConnectionFailedError: Camera unreachable and offline fallback
            disabled.
    """
    shutdown_session()
    factory = factory or get_factory()
    session = create_session(factory, clock, frame_grabber, runner)
    session.connect()
    scheduler = None
    if start_scheduler:
        scheduler = PollScheduler(session, interval=factory.config.poll_interval)
        scheduler.start()
    global _current
    _current = SessionHandle(session, scheduler)
    return session


def register_session(
    session: CameraSession, scheduler: PollScheduler | None = None
) -> None:
    """Register an already built session (tests, embedding applications)."""
    global _current
    shutdown_session()
    _current = SessionHandle(session, scheduler)


def get_session() -> CameraSession:
    """Return the registered session.

    Raises:
        RuntimeError: init_session() has not been called.
    """
    if _current is None:
        raise RuntimeError("Session not initialized. Call init_session() first.")
    return _current.session


def get_scheduler() -> PollScheduler | None:
    return None if _current is None else _current.scheduler


def shutdown_session() -> None:
    """Stop the scheduler and close the session. Safe when nothing is set."""
    global _current
    if _current is None:
        return
    handle, _current = _current, None
    if handle.scheduler is not None:
        handle.scheduler.stop()
    handle.session.close()
    logger.info("Session shut down")
