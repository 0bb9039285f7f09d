"""Background capture coordination.

Starts a capture without blocking the caller and lets a periodic tick
collect the result:

    coordinator = BackgroundCaptureCoordinator(lambda: transport, is_idle)
    handle = coordinator.request()
    ...
    result = coordinator.poll(handle)   # PENDING until the camera is done

At most one handle is outstanding per coordinator. The transport writes
the raw result to a file under ``work_dir`` (a detached gphoto2 process,
or the HTTP worker thread); polling only reads that file. A long-exposure
answer (40403) re-submits awaitTakePicture the same way. ``close()``
terminates the running job, after which polls return CANCELLED without
touching any file.
"""

from __future__ import annotations

import itertools
import tempfile
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from alpha_remote.devices.capture import CaptureRequest, CaptureState, CaptureStatus
from alpha_remote.drivers.errors import (
    AlreadyInProgressError,
    CameraRemoteError,
    LongExposureInProgress,
    SessionClosedError,
)
from alpha_remote.drivers.operations import Operation
from alpha_remote.drivers.transports import (
    BackgroundJob,
    RawResult,
    RpcError,
    Transport,
)
from alpha_remote.observability import get_logger

__all__ = [
    "BackgroundCaptureCoordinator",
    "BackgroundHandle",
    "BackgroundResult",
    "BackgroundStatus",
]

logger = get_logger(__name__)


class BackgroundStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class BackgroundResult:
    """Outcome of one poll.

    Attributes:
        status: PENDING while the camera is still working.
        files: Captured files once COMPLETED.
        error: Failure description when FAILED.
    """

    status: BackgroundStatus
    files: tuple[str, ...] = ()
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "status": self.status.value,
            "files": list(self.files),
            "error": self.error,
        }


_PENDING = BackgroundResult(BackgroundStatus.PENDING)
_CANCELLED = BackgroundResult(BackgroundStatus.CANCELLED)
_handle_ids = itertools.count(1)


@dataclass(slots=True, eq=False)
class BackgroundHandle:
    """Token for one background capture.

    Attributes:
        handle_id: Process-unique id.
        request: Lifecycle of the underlying shutter action.
        job: Transport job currently producing the result.
        result: Final result once the handle left PENDING.
    """

    request: CaptureRequest
    job: BackgroundJob | None = None
    result: BackgroundResult | None = None
    handle_id: int = field(default_factory=lambda: next(_handle_ids))

    @property
    def finished(self) -> bool:
        return self.result is not None


def capture_files(raw: RawResult) -> tuple[str, ...]:
    """Flatten a capture result into file paths or URLs."""
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, list | tuple):
        files: list[str] = []
        for item in raw:
            files.extend(capture_files(item))
        return tuple(files)
    return (str(raw),)


def check_capture(raw: RawResult) -> RawResult:
    """Return ``raw`` unless the camera answered with an error.

    Raises:
        LongExposureInProgress: Error 40403.
        CameraRemoteError: Any other camera error code.
    """
    if isinstance(raw, RpcError):
        if raw.is_long_exposure:
            raise LongExposureInProgress(raw.message or "Still capturing")
        raise CameraRemoteError(f"Camera error {raw.code}: {raw.message}".strip())
    return raw


class BackgroundCaptureCoordinator:
    """Runs at most one background capture and collects its result.

    Args:
        transport: Returns the session's current transport. A callable
            because the session may switch to the offline transport.
        is_idle: Returns True when the camera can take a picture.
        work_dir: Directory for result files; a temporary one if None.
    """

    def __init__(
        self,
        transport: Callable[[], Transport],
        is_idle: Callable[[], bool],
        work_dir: Path | None = None,
    ) -> None:
        self._transport = transport
        self._is_idle = is_idle
        self._work_dir = work_dir
        self._pending: BackgroundHandle | None = None
        self._closed = False
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def pending(self) -> BackgroundHandle | None:
        return self._pending

    @property
    def closed(self) -> bool:
        return self._closed

    def _result_path(self, operation: Operation) -> Path:
        if self._work_dir is None:
            self._work_dir = Path(tempfile.mkdtemp(prefix="alpha-remote-bg-"))
        return self._work_dir / f"{operation.value}-{next(self._counter)}.out"

    def request(
        self, operation: Operation = Operation.ACT_TAKE_PICTURE
    ) -> BackgroundHandle | CaptureStatus:
        """Start ``operation`` in the background.

        Returns:
            A handle to poll, or CaptureStatus.BUSY when the camera is not
            idle (nothing is started).

        Raises:
            AlreadyInProgressError: A handle is still outstanding.
            SessionClosedError: The coordinator was closed.
            ConnectionFailedError: The job could not be launched.
        """
        with self._lock:
            if self._closed:
                raise SessionClosedError("Background coordinator is closed")
            if self._pending is not None:
                raise AlreadyInProgressError(
                    f"Background capture {self._pending.handle_id} still pending"
                )
            if not self._is_idle():
                logger.info("Background capture refused, camera busy")
                return CaptureStatus.BUSY
            handle = BackgroundHandle(request=CaptureRequest())
            handle.request.advance(CaptureState.REQUESTED)
            try:
                handle.job = self._transport().start_background(
                    operation, self._result_path(operation)
                )
            except CameraRemoteError:
                handle.request.advance(CaptureState.FAILED)
                raise
            self._pending = handle
        logger.info(
            "Background capture started",
            handle=handle.handle_id,
            operation=operation.value,
        )
        return handle

    def poll(self, handle: BackgroundHandle) -> BackgroundResult:
        """Check ``handle`` without blocking."""
        with self._lock:
            if handle.result is not None:
                return handle.result
            if self._closed or handle is not self._pending or handle.job is None:
                return _CANCELLED
            job = handle.job
            if not job.done():
                return _PENDING
            try:
                files = capture_files(check_capture(job.result()))
            except LongExposureInProgress:
                if handle.request.state is CaptureState.REQUESTED:
                    handle.request.advance(CaptureState.AWAITING_LONG_EXPOSURE)
                operation = Operation.AWAIT_TAKE_PICTURE
                try:
                    handle.job = self._transport().start_background(
                        operation, self._result_path(operation)
                    )
                except CameraRemoteError as e:
                    return self._finish(handle, BackgroundStatus.FAILED, error=str(e))
                logger.debug("Long exposure, awaiting", handle=handle.handle_id)
                return _PENDING
            except CameraRemoteError as e:
                return self._finish(handle, BackgroundStatus.FAILED, error=str(e))
            return self._finish(handle, BackgroundStatus.COMPLETED, files=files)

    def _finish(
        self,
        handle: BackgroundHandle,
        status: BackgroundStatus,
        files: tuple[str, ...] = (),
        error: str | None = None,
    ) -> BackgroundResult:
        state = {
            BackgroundStatus.COMPLETED: CaptureState.COMPLETED,
            BackgroundStatus.FAILED: CaptureState.FAILED,
            BackgroundStatus.CANCELLED: CaptureState.CANCELLED,
        }[status]
        handle.request.advance(state)
        handle.result = BackgroundResult(status, files, error)
        if self._pending is handle:
            self._pending = None
        if status is BackgroundStatus.FAILED:
            logger.warning(
                "Background capture failed", handle=handle.handle_id, error=error
            )
        else:
            logger.info(
                "Background capture finished",
                handle=handle.handle_id,
                status=status.value,
                files=len(files),
            )
        return handle.result

    def cancel(self) -> BackgroundResult | None:
        """Cancel the outstanding handle, if any."""
        with self._lock:
            handle = self._pending
            if handle is None:
                return None
            if handle.job is not None:
                handle.job.cancel()
            return self._finish(handle, BackgroundStatus.CANCELLED)

    def close(self) -> None:
        """Cancel any pending capture and refuse further requests."""
        self.cancel()
        with self._lock:
            self._closed = True
