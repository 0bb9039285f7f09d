"""Live-view frame grabbing abstractions for dependency injection.

The session never decodes live-view streams itself. It hands the stream
URL (HTTP transport) or preview file path (gphoto2 and offline
transports) to a ``FrameGrabber`` and gets JPEG bytes back.

Usage:
    # Production (default)
    grabber = OpenCVFrameGrabber()
    jpeg_bytes = grabber.grab("http://192.168.122.1:8080/liveview/liveviewstream")

    # Testing
    class FakeGrabber:
        def grab(self, source, quality=85):
            return b'\xff\xd8fake'

Architecture:
    FrameGrabber (Protocol) <- OpenCVFrameGrabber (real)
                            <- FakeGrabber (tests)

OpenCVFrameGrabber imports cv2 when instantiated, not at module import
time, so tests with a fake grabber never load OpenCV.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from alpha_remote.drivers.errors import ProtocolError
from alpha_remote.observability import get_logger

__all__ = ["FrameGrabber", "OpenCVFrameGrabber"]

logger = get_logger(__name__)


@runtime_checkable
class FrameGrabber(Protocol):
    """Pulls one frame from a live-view source.

    Example:
        >>> class FakeGrabber:
        ...     def grab(self, source, quality=85):
        ...         return b'\xff\xd8test'
        >>> isinstance(FakeGrabber(), FrameGrabber)
        True
    """

    def grab(self, source: str, quality: int = 85) -> bytes:
        """Read one frame from ``source`` and return it JPEG-encoded.

        Args:
            source: Stream URL or image file path.
            quality: JPEG quality 1-100.

        Returns:
            JPEG bytes starting with 0xFFD8.

        Raises:
            ProtocolError: Source could not be opened or decoded.
        """
        ...  # pragma: no cover


class OpenCVFrameGrabber(FrameGrabber):
    """FrameGrabber backed by ``cv2.VideoCapture``.

    VideoCapture reads both motion-JPEG streams and still image files, so
    the same grabber serves every transport.
    """

    def __init__(self) -> None:
        import cv2

        self._cv2 = cv2

    def grab(self, source: str, quality: int = 85) -> bytes:
        if not 1 <= quality <= 100:
            raise ValueError(f"JPEG quality must be 1-100, got {quality}")
        cv2 = self._cv2
        capture = cv2.VideoCapture(source)
        try:
            if not capture.isOpened():
                raise ProtocolError(f"Cannot open live view source: {source}")
            ok, frame = capture.read()
        finally:
            capture.release()
        if not ok or frame is None:
            raise ProtocolError(f"No frame from live view source: {source}")
        ok, jpeg = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
        if not ok:
            raise ProtocolError("JPEG encoding failed")
        logger.debug("Live view frame", source=source, size=len(jpeg))
        return jpeg.tobytes()
