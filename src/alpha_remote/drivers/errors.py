"""Exception hierarchy shared by transports and the session layer.

There is no Busy exception. A capture requested while the camera is not
idle is reported through ``CaptureStatus.BUSY``.
"""

from __future__ import annotations

from typing import Any


class CameraRemoteError(Exception):
    """Base exception for alpha-remote."""

    pass


class ConnectionFailedError(CameraRemoteError):
    """Transport could not reach the camera.

    Raised for HTTP connection errors, timeouts and non-2xx statuses, and
    for gphoto2 invocations that exit non-zero or cannot be started.

    Attributes:
        details: Diagnostic payload (command, exit code, stdout, stderr,
            url, status code) depending on the transport.
    """

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details


class ProtocolError(CameraRemoteError):
    """Response arrived but could not be decoded."""

    pass


class UnsupportedOperationError(CameraRemoteError):
    """The active backend has no equivalent for the requested operation."""

    pass


class AlreadyInProgressError(CameraRemoteError):
    """A background capture is already pending for this session."""

    pass


class SessionClosedError(CameraRemoteError):
    """Operation attempted on a closed session."""

    pass


class CaptureFailedError(CameraRemoteError):
    """The camera answered a capture with a hard error.

    Attributes:
        code: Camera error code, when one was reported.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class LongExposureInProgress(CameraRemoteError):
    """Camera is still exposing (error 40403).

    Internal signal that drives the await loop; never surfaced to callers.
    """

    pass
