"""Transport contract shared by the HTTP, gphoto2 and offline backends.

A transport executes one ``Operation`` and hands back a ``RawResult``:
a scalar, a list, or an ``RpcError`` payload. Single-element wrappers are
collapsed one level before the result leaves the transport, so a camera
answering ``{"result": [["AUTO", "100"]]}`` yields ``["AUTO", "100"]`` and
``{"result": [0]}`` yields ``0``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from alpha_remote.drivers.operations import (
    LONG_EXPOSURE_ERROR_CODE,
    Operation,
    Service,
)


@dataclass(frozen=True, slots=True)
class RpcError:
    """Error payload returned by the camera instead of a result.

    Attributes:
        code: Numeric camera error code (40403 while exposing).
        message: Text the camera sent with the code.
    """

    code: int
    message: str = ""

    @property
    def is_long_exposure(self) -> bool:
        return self.code == LONG_EXPOSURE_ERROR_CODE


#: What ``Transport.execute`` returns.
RawResult = Any


def collapse_single(value: Any) -> Any:
    """Unwrap a one-element list or tuple exactly one level.

    Example:
        >>> collapse_single([["a", "b"]])
        ['a', 'b']
        >>> collapse_single([7])
        7
        >>> collapse_single([1, 2])
        [1, 2]
    """
    if isinstance(value, list | tuple) and len(value) == 1:
        return value[0]
    return value


@runtime_checkable
class BackgroundJob(Protocol):  # pragma: no cover
    """One request running outside the caller's thread.

    Attributes:
        result_path: File the request writes its raw output to.
    """

    result_path: Path

    def done(self) -> bool:
        """Return True once the result file is complete."""
        ...

    def result(self) -> RawResult:
        """Decode the finished job.

        Raises:
            ConnectionFailedError: The request never reached the camera.
            ProtocolError: The result file could not be decoded.
        """
        ...

    def cancel(self) -> None:
        """Stop the job if it is still running. Idempotent."""
        ...


@runtime_checkable
class Transport(Protocol):  # pragma: no cover
    """Executes operations against one camera.

    Attributes:
        kind: Short backend name for logs and status ("http", "gphoto2",
            "offline").
        ev_step: EV per exposure-compensation index step, or None when the
            backend reports exposure compensation directly in EV choices.
    """

    kind: str
    ev_step: float | None

    def execute(
        self,
        operation: Operation,
        params: list[Any] | None = None,
        service: Service = Service.CAMERA,
    ) -> RawResult:
        """Run one operation and return its collapsed raw result.

        Args:
            operation: What to run.
            params: Operation parameters in Camera Remote API form.
            service: API namespace.

        Returns:
            Scalar, list or RpcError.

        Raises:
            ConnectionFailedError: Camera unreachable or command failed.
            ProtocolError: Response could not be decoded.
            UnsupportedOperationError: Backend has no equivalent.
        """
        ...

    def start_background(
        self, operation: Operation, result_path: Path
    ) -> BackgroundJob:
        """Launch ``operation`` detached, writing its output to ``result_path``."""
        ...

    def close(self) -> None:
        """Release sockets or child processes."""
        ...
