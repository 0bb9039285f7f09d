"""Camera session: one connection, its cached state and capture lifecycle.

CameraSession is the single entry point for camera operations. It turns
caller values into wire values with the value translator, runs them
through a Transport and keeps an immutable cache of what the camera last
reported.

State machine:

    DISCONNECTED --connect()--> READY <--> BUSY
         |                         |
         +--connect() fails--> SIMULATED (offline transport)
    any --close()--> CLOSED

Example:
    from alpha_remote.devices import CameraSession
    from alpha_remote.drivers import get_factory

    session = CameraSession(get_factory().create_transport())
    session.connect()
    session.set_setting("iso", "400")
    result = session.capture()
    session.close()
"""

from __future__ import annotations

import dataclasses
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

from alpha_remote.devices.background import (
    BackgroundCaptureCoordinator,
    BackgroundHandle,
    BackgroundResult,
    capture_files,
    check_capture,
)
from alpha_remote.devices.capture import (
    CaptureRequest,
    CaptureResult,
    CaptureState,
    CaptureStatus,
)
from alpha_remote.devices.status import StatusSnapshot, normalize
from alpha_remote.drivers.errors import (
    CameraRemoteError,
    CaptureFailedError,
    ConnectionFailedError,
    LongExposureInProgress,
    ProtocolError,
    SessionClosedError,
    UnsupportedOperationError,
)
from alpha_remote.drivers.operations import SETTINGS, Operation, Service, Setting
from alpha_remote.drivers.transports import RawResult, RpcError, Transport
from alpha_remote.observability import LogContext, RpcStats, get_logger
from alpha_remote.utils.image import FrameGrabber
from alpha_remote.utils.values import (
    DEFAULT_F_NUMBERS,
    DEFAULT_SHUTTER_SPEEDS,
    display_exposure_mode,
    ev_from_index,
    ev_to_index,
    expand_exposure_mode,
    exposure_compensation_values,
    format_shutter_speed,
    resolve_to_wire_value,
)

__all__ = [
    "CameraSession",
    "CameraSettings",
    "Clock",
    "SessionState",
    "SystemClock",
]

logger = get_logger(__name__)

#: First delay between awaitTakePicture polls.
LONG_EXPOSURE_INITIAL_DELAY_S = 0.5
#: Growth factor applied to the delay after each still-capturing answer.
LONG_EXPOSURE_BACKOFF = 1.5
#: Ceiling for the delay between polls.
LONG_EXPOSURE_MAX_DELAY_S = 5.0
#: Default limit for one long exposure.
DEFAULT_LONG_EXPOSURE_TIMEOUT_S = 600.0

IDLE_STATUS = "IDLE"
ZOOM_MODE = "On:Clear Image Zoom"
ZOOM_DIRECTIONS = ("in", "out")


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    READY = "ready"
    BUSY = "busy"
    SIMULATED = "simulated"
    CLOSED = "closed"


class Clock(Protocol):  # pragma: no cover
    """Time source for the long-exposure loop (injectable for tests).

    ``wait`` blocks up to ``seconds`` or until ``event`` is set and returns
    whether it was set.

    Example:
        class FakeClock:
            def __init__(self):
                self.now = 0.0

            def monotonic(self) -> float:
                return self.now

            def sleep(self, seconds: float) -> None:
                self.now += seconds

            def wait(self, event, seconds):
                self.now += seconds
                return event.is_set()
    """

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...

    def wait(self, event: threading.Event, seconds: float) -> bool: ...


class SystemClock:
    """Clock backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)

    def wait(self, event: threading.Event, seconds: float) -> bool:
        return event.wait(seconds)


#: Values assumed before the camera has reported anything.
DEFAULT_VALUES: Mapping[Setting, Any] = MappingProxyType(
    {
        Setting.ISO: "AUTO",
        Setting.SHUTTER_SPEED: "1/60",
        Setting.APERTURE: "2.8",
        Setting.WHITE_BALANCE: "Auto WB",
        Setting.EXPOSURE_COMPENSATION: 0,
        Setting.FOCUS_MODE: "AF-S",
        Setting.SELF_TIMER: 0,
        Setting.IMAGE_QUALITY: None,
        Setting.EXPOSURE_MODE: "P",
        Setting.ZOOM: -1,
    }
)


@dataclass(frozen=True, slots=True)
class CameraSettings:
    """Cached camera state in caller-facing form.

    Replaced as a whole on every change, so readers never see a partial
    update.

    Attributes:
        camera_status: Last reported camera status.
        shoot_mode: Last reported shoot mode.
        values: Current value per setting. Exposure mode uses its
            single-letter code and exposure compensation is in EV.
    """

    camera_status: str = IDLE_STATUS
    shoot_mode: str = "still"
    values: Mapping[Setting, Any] = field(default_factory=lambda: DEFAULT_VALUES)

    def with_values(self, updates: Mapping[Setting, Any]) -> CameraSettings:
        if not updates:
            return self
        merged = dict(self.values)
        merged.update(updates)
        return dataclasses.replace(self, values=MappingProxyType(merged))

    def to_dict(self) -> dict[str, Any]:
        return {
            "camera_status": self.camera_status,
            "shoot_mode": self.shoot_mode,
            **{setting.value: value for setting, value in self.values.items()},
        }


def _lookup(name: str | Setting) -> Setting | None:
    try:
        return Setting.from_name(name)
    except ValueError:
        return None


def _as_list(raw: RawResult) -> list[Any]:
    if raw is None or isinstance(raw, RpcError):
        return []
    if isinstance(raw, list | tuple):
        return list(raw)
    return [raw]


class CameraSession:
    """One camera connection with cached state and busy tracking.

    Transport calls are serialized by a per-session lock. Cached settings,
    the status snapshot and the availability table are immutable and
    swapped whole.

    Args:
        transport: Backend to talk through.
        offline_factory: Builds the offline transport used when connect()
            cannot reach the camera. None disables the fallback.
        clock: Time source for the long-exposure loop.
        frame_grabber: Pulls live-view frames; OpenCV when None.
        stats: Statistics sink, shared with the transport.
        long_exposure_timeout: Default limit for one long exposure.
    """

    def __init__(
        self,
        transport: Transport,
        offline_factory: Callable[[], Transport] | None = None,
        clock: Clock | None = None,
        frame_grabber: FrameGrabber | None = None,
        stats: RpcStats | None = None,
        long_exposure_timeout: float = DEFAULT_LONG_EXPOSURE_TIMEOUT_S,
    ) -> None:
        self._transport = transport
        self._offline_factory = offline_factory
        self._clock = clock or SystemClock()
        self._frame_grabber = frame_grabber
        self.stats = stats
        self.long_exposure_timeout = long_exposure_timeout

        self._lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._connected = False
        self._simulated = False
        self._closed = False
        self._capture: CaptureRequest | None = None
        self._application_info: Any = None
        self._liveview_source: str | None = None

        self._settings = CameraSettings()
        self._snapshot = StatusSnapshot()
        self._availability: Mapping[Setting, tuple[Any, ...]] = MappingProxyType({})
        self.background = BackgroundCaptureCoordinator(
            lambda: self._transport, lambda: self.is_idle
        )

    # -- properties --------------------------------------------------------

    @property
    def transport(self) -> Transport:
        return self._transport

    @property
    def settings(self) -> CameraSettings:
        return self._settings

    @property
    def snapshot(self) -> StatusSnapshot:
        return self._snapshot

    @property
    def availability(self) -> Mapping[Setting, tuple[Any, ...]]:
        return self._availability

    @property
    def is_simulated(self) -> bool:
        return self._simulated

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_idle(self) -> bool:
        """True when no capture is running and the camera reports IDLE."""
        return (
            self._capture is None
            and self.background.pending is None
            and self._settings.camera_status == IDLE_STATUS
        )

    @property
    def state(self) -> SessionState:
        if self._closed:
            return SessionState.CLOSED
        if not self._connected:
            return SessionState.DISCONNECTED
        if not self.is_idle:
            return SessionState.BUSY
        if self._simulated:
            return SessionState.SIMULATED
        return SessionState.READY

    @property
    def version(self) -> str | None:
        """Server version from getApplicationInfo, e.g. ``"2.40"``."""
        info = self._application_info
        if info is None:
            return None
        if isinstance(info, list | tuple):
            return str(info[-1]) if info else None
        return str(info)

    # -- transport access --------------------------------------------------

    def _call(
        self,
        operation: Operation,
        params: list[Any] | None = None,
        service: Service = Service.CAMERA,
    ) -> RawResult:
        with self._lock:
            if self._closed:
                raise SessionClosedError(f"Session closed; {operation.value} refused")
            return self._transport.execute(operation, params, service)

    def api(
        self,
        operation: Operation | str,
        params: list[Any] | None = None,
        service: Service | str = Service.CAMERA,
    ) -> RawResult:
        """Run any operation directly and return its raw result.

        Raises:
            ValueError: ``operation`` or ``service`` is not a known name.
        """
        return self._call(Operation(operation), params, Service(service))

    # -- lifecycle ---------------------------------------------------------

    def connect(self) -> SessionState:
        """Probe the camera, enter remote shooting and load settings.

        Falls back to the offline transport (SIMULATED) when the camera
        cannot be reached and an offline factory is configured.

        Raises:
            ConnectionFailedError: Camera unreachable and no fallback.
            SessionClosedError: Session already closed.
        """
        with LogContext(transport=self._transport.kind):
            try:
                self._open()
            except ConnectionFailedError as e:
                if self._offline_factory is None:
                    raise
                logger.warning(
                    "Camera unreachable, switching to offline replay",
                    error=str(e),
                    **{k: v for k, v in e.details.items() if k in ("url", "command")},
                )
                with self._lock:
                    self._transport.close()
                    self._transport = self._offline_factory()
                    self._simulated = True
                self._open()
        logger.info(
            "Session connected",
            state=self.state.value,
            transport=self._transport.kind,
            version=self.version,
        )
        return self.state

    def _open(self) -> None:
        self._application_info = self._call(Operation.GET_APPLICATION_INFO)
        started = self._call(Operation.START_REC_MODE)
        if isinstance(started, RpcError):
            logger.debug("startRecMode refused", code=started.code)
        self._connected = True
        self.refresh_status()
        self._load_availability()

    def start(self) -> RawResult:
        """Enter remote shooting mode."""
        return self._call(Operation.START_REC_MODE)

    def stop(self) -> RawResult:
        """Leave remote shooting mode."""
        return self._call(Operation.STOP_REC_MODE)

    def close(self) -> None:
        """Cancel background work and release the transport. Idempotent."""
        if self._closed:
            return
        self.background.close()
        with self._lock:
            self._closed = True
            self._transport.close()
        logger.info("Session closed")

    # -- status ------------------------------------------------------------

    def refresh_status(self) -> StatusSnapshot:
        """Fetch getEvent, swap the snapshot and update cached fields.

        Fields the camera did not report keep their previous value.

        Raises:
            ProtocolError: The camera answered getEvent with an error.
        """
        with self._lock:
            raw = self._call(Operation.GET_EVENT, [False])
            if isinstance(raw, RpcError):
                raise ProtocolError(
                    f"getEvent failed: {raw.code} {raw.message}".strip()
                )
            snapshot = normalize(raw)

            updates: dict[Setting, Any] = {}
            for setting, value in snapshot.values.items():
                if value is not None:
                    updates[setting] = self._display(setting, value)
            settings = self._settings.with_values(updates)
            changes: dict[str, Any] = {}
            if snapshot.camera_status is not None:
                changes["camera_status"] = snapshot.camera_status
            if snapshot.shoot_mode is not None:
                changes["shoot_mode"] = snapshot.shoot_mode
            if changes:
                settings = dataclasses.replace(settings, **changes)

            self._snapshot = snapshot
            self._settings = settings
        logger.debug(
            "Status refreshed",
            camera_status=settings.camera_status,
            records=len(snapshot.records),
        )
        return snapshot

    # -- settings ----------------------------------------------------------

    def _display(self, setting: Setting, raw: Any) -> Any:
        """Convert a reported value into caller-facing form."""
        value = raw
        if isinstance(value, Mapping):
            spec = SETTINGS[setting]
            for key in ("whiteBalanceMode", spec.event_type, spec.current_key):
                if key in value:
                    value = value[key]
                    break
        if setting is Setting.EXPOSURE_MODE:
            return display_exposure_mode(value)
        if setting is Setting.EXPOSURE_COMPENSATION and self._transport.ev_step:
            try:
                return ev_from_index(value, self._transport.ev_step)
            except (TypeError, ValueError):
                return value
        return value

    def _load_availability(self) -> None:
        table: dict[Setting, tuple[Any, ...]] = {}
        for setting, spec in SETTINGS.items():
            if spec.supported_op is None:
                continue
            try:
                raw = self._call(spec.supported_op)
            except UnsupportedOperationError:
                continue
            table[setting] = self._availability_from(setting, raw)
        self._availability = MappingProxyType(table)

    def _availability_from(self, setting: Setting, raw: RawResult) -> tuple[Any, ...]:
        ev_step = self._transport.ev_step
        if (
            setting is Setting.EXPOSURE_COMPENSATION
            and ev_step
            and isinstance(raw, list | tuple)
            and len(raw) == 3
        ):
            entries: list[Any] = exposure_compensation_values(raw, ev_step)
        else:
            entries = [
                item.get("whiteBalanceMode", item) if isinstance(item, dict) else item
                for item in _as_list(raw)
            ]
        if not entries:
            candidates = self._snapshot.candidates.get(setting)
            entries = list(candidates or ())
        if not entries and setting is Setting.APERTURE:
            entries = list(DEFAULT_F_NUMBERS)
        if not entries and setting is Setting.SHUTTER_SPEED:
            entries = list(DEFAULT_SHUTTER_SPEEDS)
        return tuple(entries)

    def available(self, name: str | Setting) -> tuple[Any, ...] | None:
        """Legal values for ``name`` in camera order, None if unsupported."""
        setting = _lookup(name)
        if setting is None:
            return None
        return self._availability.get(setting)

    def get_setting(self, name: str | Setting) -> Any:
        """Query the camera for the current value of ``name``.

        Returns:
            The caller-facing value, or None when the setting is unknown or
            the backend does not support it.
        """
        setting = _lookup(name)
        if setting is None:
            return None
        spec = SETTINGS[setting]
        if spec.get_op is None:
            return self._settings.values.get(setting)
        with self._lock:
            try:
                raw = self._call(spec.get_op)
            except UnsupportedOperationError:
                return None
            if raw is None or isinstance(raw, RpcError):
                if isinstance(raw, RpcError):
                    logger.debug(
                        "Setting query refused", setting=setting.value, code=raw.code
                    )
                return None
            value = self._display(setting, raw)
            self._settings = self._settings.with_values({setting: value})
        return value

    def wire_value(self, setting: Setting, value: Any) -> Any:
        """Translate a caller value into the parameter the camera expects."""
        if setting is Setting.EXPOSURE_MODE:
            value = expand_exposure_mode(value)
        numeric = isinstance(value, int | float) and not isinstance(value, bool)
        if setting is Setting.WHITE_BALANCE and numeric:
            # Kelvin: colour temperature mode.
            return value
        if setting is Setting.SHUTTER_SPEED and numeric:
            value = format_shutter_speed(value)
        wire = resolve_to_wire_value(value, self._availability.get(setting, ()))
        ev_step = self._transport.ev_step
        if setting is Setting.EXPOSURE_COMPENSATION and ev_step:
            return ev_to_index(wire, ev_step)
        return wire

    def set_setting(self, name: str | Setting, value: Any) -> Any:
        """Change ``name`` to ``value``.

        ``value`` may be a label, an id or a number; it is resolved against
        the availability list. Exposure mode accepts ``"P"`` as well as
        ``"Program Auto"``.

        A numeric shutter speed is in seconds: ``2`` becomes ``2"`` and
        ``0.01`` becomes ``1/100``.

        Returns:
            The new caller-facing value, or None when the setting is unknown,
            unsupported or refused by the camera.

        Raises:
            ValueError: Non-positive numeric shutter speed.
        """
        setting = _lookup(name)
        if setting is None:
            return None
        spec = SETTINGS[setting]
        if spec.set_op is None:
            return None
        with self._lock:
            wire = self.wire_value(setting, value)
            try:
                result = self._call(spec.set_op, spec.encode(wire))
            except UnsupportedOperationError:
                return None
            if isinstance(result, RpcError):
                logger.warning(
                    "Setting refused",
                    setting=setting.value,
                    value=value,
                    code=result.code,
                    error=result.message,
                )
                return None

            if setting is Setting.EXPOSURE_MODE:
                shown = display_exposure_mode(expand_exposure_mode(value))
            elif setting is Setting.EXPOSURE_COMPENSATION and self._transport.ev_step:
                shown = ev_from_index(wire, self._transport.ev_step)
            elif setting is Setting.SHUTTER_SPEED and isinstance(value, int | float):
                shown = format_shutter_speed(value)
            else:
                shown = value
            self._settings = self._settings.with_values({setting: shown})
        logger.info("Setting changed", setting=setting.value, value=shown, wire=wire)
        return shown

    # -- capture -----------------------------------------------------------

    def capture(
        self,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> CaptureResult:
        """Take a picture and wait for it.

        Returns BUSY without calling the camera when another capture is in
        flight or the camera is not idle. A still-capturing answer (40403)
        is followed by awaitTakePicture polls with growing delays; the
        original actTakePicture is never re-sent.

        Args:
            timeout: Limit for the long-exposure wait; the session default
                when None.
            cancel: Set to abandon the wait.

        Returns:
            CaptureResult with COMPLETED, BUSY or CANCELLED.

        Raises:
            CaptureFailedError: Camera error, or the wait timed out.
            ConnectionFailedError: Transport failure.
        """
        with self._state_lock:
            if self._closed:
                raise SessionClosedError("Session closed; capture refused")
            if not self.is_idle:
                logger.info("Capture refused, camera busy")
                return CaptureResult(CaptureStatus.BUSY)
            request = CaptureRequest()
            self._capture = request

        try:
            with LogContext(capture=request.request_id):
                return self._run_capture(request, timeout, cancel)
        except Exception:
            if not request.done:
                request.advance(CaptureState.FAILED)
            raise
        finally:
            with self._state_lock:
                self._capture = None

    def _run_capture(
        self,
        request: CaptureRequest,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> CaptureResult:
        request.advance(CaptureState.REQUESTED)
        logger.info("Capture requested")
        try:
            raw = check_capture(self._call(Operation.ACT_TAKE_PICTURE))
        except LongExposureInProgress:
            request.advance(CaptureState.AWAITING_LONG_EXPOSURE)
            logger.info("Long exposure in progress, awaiting result")
            raw = self._await_long_exposure(request, timeout, cancel)
            if raw is None:
                return CaptureResult(CaptureStatus.CANCELLED, request=request)
        except CameraRemoteError as e:
            if isinstance(e, ConnectionFailedError | SessionClosedError):
                raise
            raise CaptureFailedError(str(e)) from e

        files = capture_files(raw)
        request.advance(CaptureState.COMPLETED)
        logger.info("Capture complete", files=len(files))
        return CaptureResult(CaptureStatus.COMPLETED, files=files, request=request)

    def _await_long_exposure(
        self,
        request: CaptureRequest,
        timeout: float | None,
        cancel: threading.Event | None,
    ) -> RawResult:
        limit = self.long_exposure_timeout if timeout is None else timeout
        deadline = self._clock.monotonic() + limit
        delay = LONG_EXPOSURE_INITIAL_DELAY_S
        polls = 0
        while True:
            if (cancel is not None and cancel.is_set()) or self._closed:
                request.advance(CaptureState.CANCELLED)
                logger.info("Long exposure wait cancelled", polls=polls)
                return None
            if self._clock.monotonic() >= deadline:
                raise CaptureFailedError(
                    f"Long exposure did not finish within {limit:g}s"
                )
            polls += 1
            raw = self._call(Operation.AWAIT_TAKE_PICTURE)
            if isinstance(raw, RpcError) and raw.is_long_exposure:
                remaining = max(deadline - self._clock.monotonic(), 0.0)
                pause = min(delay, remaining)
                if cancel is None:
                    self._clock.sleep(pause)
                else:
                    self._clock.wait(cancel, pause)
                delay = min(delay * LONG_EXPOSURE_BACKOFF, LONG_EXPOSURE_MAX_DELAY_S)
                continue
            if isinstance(raw, RpcError):
                raise CaptureFailedError(
                    f"awaitTakePicture failed: {raw.message}".strip(), code=raw.code
                )
            logger.debug("Long exposure finished", polls=polls)
            return raw

    def capture_async(self) -> BackgroundHandle | CaptureStatus:
        """Start a capture in the background; see BackgroundCaptureCoordinator."""
        if self._capture is not None:
            return CaptureStatus.BUSY
        return self.background.request(Operation.ACT_TAKE_PICTURE)

    def poll_background(self) -> BackgroundResult | None:
        """Poll the outstanding background capture, if any.

        Returns None when the session is closed or nothing is pending.
        """
        if self._closed:
            return None
        handle = self.background.pending
        if handle is None:
            return None
        return self.background.poll(handle)

    # -- live view ---------------------------------------------------------

    def start_live_preview(self) -> str | None:
        """Start live view and return the stream URL or preview file path."""
        raw = self._call(Operation.START_LIVEVIEW)
        if raw is None or isinstance(raw, RpcError):
            return None
        self._liveview_source = str(raw)
        logger.debug("Live view started", source=self._liveview_source)
        return self._liveview_source

    def stop_live_preview(self) -> None:
        self._liveview_source = None
        self._call(Operation.STOP_LIVEVIEW)

    def grab_live_frame(self, quality: int = 85) -> bytes | None:
        """Return one JPEG live-view frame, or None while busy or unsupported.

        Stream URLs stay open between grabs. File based previews (gphoto2,
        offline) take a fresh preview shot for every frame.
        """
        if not self.is_idle:
            return None
        source = self._liveview_source
        if source is None or not source.startswith(("http://", "https://")):
            try:
                source = self.start_live_preview()
            except UnsupportedOperationError:
                return None
        if source is None:
            return None
        if self._frame_grabber is None:
            from alpha_remote.utils.image import OpenCVFrameGrabber

            self._frame_grabber = OpenCVFrameGrabber()
        return self._frame_grabber.grab(source, quality)

    # -- zoom --------------------------------------------------------------

    def zoom(self, direction: str) -> int | None:
        """Zoom one step ``"in"`` or ``"out"``.

        Returns:
            Zoom position after the step, or None when the backend has no
            zoom.

        Raises:
            ValueError: Unknown direction.
        """
        direction = direction.strip().lower()
        if direction not in ZOOM_DIRECTIONS:
            raise ValueError(f"Zoom direction must be 'in' or 'out', got {direction!r}")
        try:
            self._call(Operation.SET_ZOOM_SETTING, [{"zoom": ZOOM_MODE}])
            result = self._call(Operation.ACT_ZOOM, [direction, "1shot"])
        except UnsupportedOperationError:
            return None
        if isinstance(result, RpcError):
            logger.warning("Zoom refused", code=result.code, error=result.message)
            return None
        self.refresh_status()
        position = self._settings.values.get(Setting.ZOOM)
        return position if isinstance(position, int) else None
