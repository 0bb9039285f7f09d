"""Device layer: camera session, status decoding and capture coordination.

Example:
    from alpha_remote.devices import CameraSession, PollScheduler
    from alpha_remote.drivers import get_factory

    session = CameraSession(get_factory().create_transport())
    session.connect()
    scheduler = PollScheduler(session)
    scheduler.start()
"""

from alpha_remote.devices.background import (
    BackgroundCaptureCoordinator,
    BackgroundHandle,
    BackgroundResult,
    BackgroundStatus,
)
from alpha_remote.devices.capture import (
    CaptureRequest,
    CaptureResult,
    CaptureState,
    CaptureStatus,
    InvalidTransitionError,
)
from alpha_remote.devices.registry import (
    create_session,
    get_scheduler,
    get_session,
    init_session,
    register_session,
    shutdown_session,
)
from alpha_remote.devices.scheduler import PollScheduler
from alpha_remote.devices.session import (
    CameraSession,
    CameraSettings,
    Clock,
    SessionState,
    SystemClock,
)
from alpha_remote.devices.status import StatusSnapshot, normalize

__all__ = [
    # Session
    "CameraSession",
    "CameraSettings",
    "SessionState",
    "Clock",
    "SystemClock",
    # Status
    "StatusSnapshot",
    "normalize",
    # Capture
    "CaptureRequest",
    "CaptureResult",
    "CaptureState",
    "CaptureStatus",
    "InvalidTransitionError",
    # Background
    "BackgroundCaptureCoordinator",
    "BackgroundHandle",
    "BackgroundResult",
    "BackgroundStatus",
    # Scheduling
    "PollScheduler",
    # Registry
    "create_session",
    "init_session",
    "register_session",
    "get_session",
    "get_scheduler",
    "shutdown_session",
]
