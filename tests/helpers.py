"""Test helpers for alpha-remote.

Protocol compliance assertions plus in-memory stand-ins for everything
that talks to hardware or the outside world:

- FakeTransport: scripted Transport recording every call.
- FakeJob: BackgroundJob the test finishes by hand.
- FakeClock: monotonic clock advanced by sleep().
- FakeGrabber: FrameGrabber returning canned JPEG bytes.
- FakeRunner / FakeProcess: CommandRunner for the gphoto2 transport.

Example:
    from tests.helpers import FakeTransport, assert_implements_protocol
    from alpha_remote.drivers.transports import Transport

    def test_fake_is_a_transport():
        assert_implements_protocol(FakeTransport(), Transport)
"""

from __future__ import annotations

import copy
import threading
from collections import deque
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Protocol

from alpha_remote.drivers.errors import (
    ConnectionFailedError,
    UnsupportedOperationError,
)
from alpha_remote.drivers.operations import Operation, Service
from alpha_remote.drivers.process import CommandResult
from alpha_remote.drivers.transports import RpcError


def assert_implements_protocol(instance: object, protocol: type[Protocol]) -> None:
    """Assert that ``instance`` satisfies a @runtime_checkable Protocol.

    Args:
        instance: Object to check.
        protocol: Protocol class decorated with @runtime_checkable.

    Raises:
        AssertionError: Instance lacks protocol members; the message names
            the missing ones.
    """
    if isinstance(instance, protocol):
        return
    object_attrs = set(dir(object))
    members = {
        attr
        for attr in set(dir(protocol)) - object_attrs
        if not attr.startswith("_")
    }
    missing = sorted(m for m in members if not hasattr(instance, m))
    missing_str = ", ".join(missing) if missing else "unknown"
    raise AssertionError(
        f"{type(instance).__name__} does not implement {protocol.__name__}. "
        f"Missing: {missing_str}"
    )


def assert_all_implement_protocol(
    instances: list[Any], protocol: type[Protocol]
) -> None:
    """Assert that every instance in ``instances`` implements ``protocol``."""
    for i, instance in enumerate(instances):
        try:
            assert_implements_protocol(instance, protocol)
        except AssertionError as e:
            raise AssertionError(f"Instance at index {i}: {e}") from e


POSTVIEW_URL = "http://192.168.122.1:8080/postview/pict20260101_000001_0.JPG"
LIVEVIEW_URL = "http://192.168.122.1:8080/liveview/liveviewstream"
JPEG_BYTES = b"\xff\xd8\xff\xe0fake-jpeg"

#: getEvent result shaped like an idle camera in program mode.
IDLE_EVENT: list[Any] = [
    {"type": "availableApiList", "names": ["getEvent", "actTakePicture"]},
    {"type": "cameraStatus", "cameraStatus": "IDLE"},
    {"type": "zoomInformation", "zoomPosition": 0},
    None,
    [],
    {"type": "shootMode", "currentShootMode": "still"},
    {
        "type": "exposureMode",
        "currentExposureMode": "Program Auto",
        "exposureModeCandidates": ["Program Auto", "Aperture", "Shutter", "Manual"],
    },
    {
        "type": "isoSpeedRate",
        "currentIsoSpeedRate": "AUTO",
        "isoSpeedRateCandidates": ["AUTO", "100", "200", "400", "800"],
    },
    {
        "type": "exposureCompensation",
        "currentExposureCompensation": 0,
        "maxExposureCompensation": 15,
        "minExposureCompensation": -15,
        "stepIndexOfExposureCompensation": 1,
    },
    {"type": "whiteBalance", "currentWhiteBalanceMode": "Auto WB"},
    {"type": "shutterSpeed", "currentShutterSpeed": "1/60"},
]


def event_with(**changes: Any) -> list[Any]:
    """Copy of IDLE_EVENT with selected record fields replaced.

    Keys are ``<type>__<field>``, e.g. ``cameraStatus__cameraStatus="StillCapturing"``.
    """
    event = copy.deepcopy(IDLE_EVENT)
    for key, value in changes.items():
        kind, field = key.split("__", 1)
        for record in event:
            if isinstance(record, dict) and record.get("type") == kind:
                record[field] = value
    return event


class FakeJob:
    """BackgroundJob whose completion is controlled by the test."""

    def __init__(self, operation: Operation, result_path: Path) -> None:
        self.operation = operation
        self.result_path = result_path
        self.cancelled = False
        self._done = False
        self._result: Any = None
        self._error: Exception | None = None

    def finish(self, result: Any = None, error: Exception | None = None) -> None:
        self._done = True
        self._result = result
        self._error = error

    def done(self) -> bool:
        return self._done

    def result(self) -> Any:
        if self._error is not None:
            raise self._error
        return self._result

    def cancel(self) -> None:
        self.cancelled = True


class FakeTransport:
    """Scripted Transport.

    Every call is appended to ``calls`` as ``(operation, params, service)``.
    ``script(op, *results)`` queues answers for one operation; queued
    exceptions are raised. Unscripted calls fall back to ``defaults``.
    """

    def __init__(
        self,
        kind: str = "fake",
        ev_step: float | None = 1.0 / 3.0,
        unreachable: bool = False,
        unsupported: Sequence[Operation] = (),
    ) -> None:
        self.kind = kind
        self.ev_step = ev_step
        self.unreachable = unreachable
        self.unsupported = set(unsupported)
        self.calls: list[tuple[Operation, list[Any] | None, Service]] = []
        self.jobs: list[FakeJob] = []
        self.closed = False
        self._scripted: dict[Operation, deque[Any]] = {}
        self.defaults: dict[Operation, Any] = {
            Operation.GET_APPLICATION_INFO: ["FakeCam", "2.40"],
            Operation.START_REC_MODE: 0,
            Operation.STOP_REC_MODE: 0,
            Operation.GET_EVENT: IDLE_EVENT,
            Operation.GET_SUPPORTED_ISO_SPEED_RATE: ["AUTO", "100", "200", "400"],
            Operation.GET_SUPPORTED_EXPOSURE_MODE: [
                "Program Auto",
                "Aperture",
                "Shutter",
                "Manual",
            ],
            Operation.GET_SUPPORTED_EXPOSURE_COMPENSATION: [[15], [-15], [1]],
            Operation.GET_SUPPORTED_WHITE_BALANCE: [
                {"whiteBalanceMode": "Auto WB", "colorTemperatureRange": []},
                {"whiteBalanceMode": "Daylight", "colorTemperatureRange": []},
            ],
            Operation.GET_SUPPORTED_F_NUMBER: [],
            Operation.ACT_TAKE_PICTURE: [POSTVIEW_URL],
            Operation.AWAIT_TAKE_PICTURE: RpcError(40403, "Still capturing"),
            Operation.START_LIVEVIEW: LIVEVIEW_URL,
            Operation.ACT_ZOOM: 0,
            Operation.SET_ZOOM_SETTING: 0,
        }

    def script(self, operation: Operation, *results: Any) -> None:
        self._scripted.setdefault(operation, deque()).extend(results)

    def calls_to(self, operation: Operation) -> list[list[Any] | None]:
        return [params for op, params, _ in self.calls if op is operation]

    def execute(
        self,
        operation: Operation,
        params: list[Any] | None = None,
        service: Service = Service.CAMERA,
    ) -> Any:
        self.calls.append((operation, params, service))
        if self.unreachable:
            raise ConnectionFailedError(
                "Connection failed: http://camera", url="http://camera"
            )
        if operation in self.unsupported:
            raise UnsupportedOperationError(f"{operation.value} unsupported")
        queue = self._scripted.get(operation)
        if queue:
            result = queue.popleft()
            if isinstance(result, Exception):
                raise result
            return copy.deepcopy(result)
        if operation.value.startswith("set"):
            return 0
        return copy.deepcopy(self.defaults.get(operation))

    def start_background(self, operation: Operation, result_path: Path) -> FakeJob:
        job = FakeJob(operation, result_path)
        self.jobs.append(job)
        return job

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def wait(self, event: threading.Event, seconds: float) -> bool:
        self.sleeps.append(seconds)
        self.now += seconds
        return event.is_set()

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGrabber:
    def __init__(self, frame: bytes = JPEG_BYTES) -> None:
        self.frame = frame
        self.sources: list[tuple[str, int]] = []

    def grab(self, source: str, quality: int = 85) -> bytes:
        self.sources.append((source, quality))
        return self.frame


class FakeProcess:
    """RunningProcess with a settable exit code."""

    def __init__(self) -> None:
        self.returncode: int | None = None
        self.terminated = False

    def poll(self) -> int | None:
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.returncode = -15

    def wait(self, timeout: float | None = None) -> int:
        return 0 if self.returncode is None else self.returncode


class FakeRunner:
    """CommandRunner answering through ``handler(args)``.

    ``handler`` returns stdout text, a CommandResult, or raises. Without a
    handler every command succeeds with empty output.
    """

    def __init__(
        self, handler: Callable[[list[str]], str | CommandResult] | None = None
    ) -> None:
        self.handler = handler
        self.runs: list[tuple[list[str], float]] = []
        self.spawned: list[tuple[list[str], Path, FakeProcess]] = []

    def run(self, args: Sequence[str], timeout: float) -> CommandResult:
        argv = list(args)
        self.runs.append((argv, timeout))
        output = self.handler(argv) if self.handler is not None else ""
        if isinstance(output, CommandResult):
            return output
        return CommandResult(tuple(argv), 0, output, "")

    def spawn(self, args: Sequence[str], stdout_path: Path) -> FakeProcess:
        process = FakeProcess()
        self.spawned.append((list(args), stdout_path, process))
        return process
