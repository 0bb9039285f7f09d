"""Tests for CameraSession over the scripted FakeTransport."""

import dataclasses
import threading

import pytest

from alpha_remote.devices import (
    BackgroundHandle,
    BackgroundStatus,
    CameraSession,
    CaptureState,
    CaptureStatus,
    SessionState,
    SystemClock,
)
from alpha_remote.devices.session import DEFAULT_VALUES, CameraSettings
from alpha_remote.drivers.errors import (
    CaptureFailedError,
    ConnectionFailedError,
    ProtocolError,
    SessionClosedError,
)
from alpha_remote.drivers.operations import Operation, Service, Setting
from alpha_remote.drivers.transports import RpcError
from alpha_remote.utils.values import DEFAULT_F_NUMBERS, DEFAULT_SHUTTER_SPEEDS
from tests.helpers import (
    LIVEVIEW_URL,
    POSTVIEW_URL,
    FakeClock,
    FakeGrabber,
    FakeTransport,
    event_with,
)


def _session(transport, **kwargs):
    return CameraSession(
        transport, clock=FakeClock(), frame_grabber=FakeGrabber(), **kwargs
    )


class HeldEventTransport(FakeTransport):
    """FakeTransport whose next getEvent blocks until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.hold = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def execute(self, operation, params=None, service=Service.CAMERA):
        result = super().execute(operation, params, service)
        if operation is Operation.GET_EVENT and self.hold:
            self.hold = False
            self.entered.set()
            self.release.wait(5)
        return result


class TestConnect:
    def test_connect_sequence(self, transport, clock, grabber):
        """Verifies connect() probes, enters rec mode and loads state.

        Arrangement:
        1. FakeTransport with default answers for an idle camera.

        Action:
        connect().

        Assertion Strategy:
        - The first three calls are app info, startRecMode, getEvent.
        - Every setting with a supported-values operation is queried.
        - The session is READY with the reported version.
        """
        session = CameraSession(transport, clock=clock, frame_grabber=grabber)
        assert session.state is SessionState.DISCONNECTED
        assert session.connect() is SessionState.READY

        operations = [op for op, _, _ in transport.calls]
        assert operations[:3] == [
            Operation.GET_APPLICATION_INFO,
            Operation.START_REC_MODE,
            Operation.GET_EVENT,
        ]
        assert transport.calls[2][1] == [False]
        assert Operation.GET_SUPPORTED_ISO_SPEED_RATE in operations
        assert Operation.GET_SUPPORTED_EXPOSURE_MODE in operations
        assert session.version == "2.40"
        assert not session.is_simulated

    def test_cached_values_after_connect(self, session):
        values = session.settings.values
        assert values[Setting.ISO] == "AUTO"
        assert values[Setting.EXPOSURE_MODE] == "P"
        assert values[Setting.EXPOSURE_COMPENSATION] == 0
        assert values[Setting.ZOOM] == 0
        assert session.settings.camera_status == "IDLE"
        assert session.settings.shoot_mode == "still"

    def test_fallback_to_offline(self):
        """Verifies an unreachable camera switches to the offline transport.

        Arrangement:
        1. Primary transport raises ConnectionFailedError on every call.
        2. offline_factory returns a working FakeTransport.

        Action:
        connect().

        Assertion Strategy:
        - State is SIMULATED and the session uses the offline transport.
        - The primary transport was closed.
        """
        primary = FakeTransport(unreachable=True)
        offline = FakeTransport(kind="offline")
        session = _session(primary, offline_factory=lambda: offline)

        assert session.connect() is SessionState.SIMULATED
        assert session.is_simulated
        assert session.transport is offline
        assert primary.closed
        assert offline.calls_to(Operation.START_REC_MODE) == [None]

    def test_no_fallback_raises(self):
        session = _session(FakeTransport(unreachable=True))
        with pytest.raises(ConnectionFailedError):
            session.connect()
        assert session.state is SessionState.DISCONNECTED

    def test_rec_mode_refusal_is_tolerated(self, transport):
        transport.script(Operation.START_REC_MODE, RpcError(1, "Any"))
        session = _session(transport)
        assert session.connect() is SessionState.READY

    def test_get_event_error_raises(self, session, transport):
        transport.script(Operation.GET_EVENT, RpcError(40400, "Not Ready"))
        with pytest.raises(ProtocolError):
            session.refresh_status()

    def test_refresh_keeps_unreported_values(self, session, transport):
        transport.script(
            Operation.GET_EVENT, [{"type": "cameraStatus", "cameraStatus": "IDLE"}]
        )
        session.refresh_status()
        assert session.settings.values[Setting.ISO] == "AUTO"


class TestAvailability:
    def test_exposure_compensation_in_whole_stops(self, session):
        assert session.available("ev") == tuple(range(-5, 6))

    def test_white_balance_modes(self, session):
        assert session.available("wb") == ("Auto WB", "Daylight")

    def test_aperture_defaults(self, session):
        assert session.available(Setting.APERTURE) == tuple(DEFAULT_F_NUMBERS)

    def test_shutter_speed_defaults(self, session):
        assert session.available("shutter") == tuple(DEFAULT_SHUTTER_SPEEDS)

    def test_unknown_setting(self, session):
        assert session.available("bogus") is None

    def test_unsupported_operation_skipped(self):
        transport = FakeTransport(
            unsupported=[Operation.GET_SUPPORTED_FOCUS_MODE]
        )
        session = _session(transport)
        session.connect()
        assert session.available("focus") is None
        assert session.available("iso") == ("AUTO", "100", "200", "400")


class TestSetSetting:
    def test_iso(self, session, transport):
        assert session.set_setting("iso", "400") == "400"
        assert transport.calls_to(Operation.SET_ISO_SPEED_RATE) == [["400"]]
        assert session.settings.values[Setting.ISO] == "400"

    def test_exposure_mode_code(self, session, transport):
        """Verifies a single-letter code goes out as the camera's mode name.

        Arrangement:
        1. Camera lists "Program Auto", "Aperture", "Shutter", "Manual".

        Action:
        set_setting("mode", "A").

        Assertion Strategy:
        - setExposureMode received "Aperture".
        - The cached and returned value is the code "A".
        """
        assert session.set_setting("mode", "A") == "A"
        assert transport.calls_to(Operation.SET_EXPOSURE_MODE) == [["Aperture"]]
        assert session.settings.values[Setting.EXPOSURE_MODE] == "A"

    def test_exposure_compensation_sent_as_index(self, session, transport):
        assert session.set_setting("ev", 1) == 1
        assert transport.calls_to(Operation.SET_EXPOSURE_COMPENSATION) == [[3]]

    def test_negative_exposure_compensation(self, session, transport):
        assert session.set_setting("exposure_compensation", "-2") == -2
        assert transport.calls_to(Operation.SET_EXPOSURE_COMPENSATION) == [[-6]]

    def test_white_balance_kelvin(self, session, transport):
        assert session.set_setting("white_balance", 5500) == 5500
        assert transport.calls_to(Operation.SET_WHITE_BALANCE) == [
            ["Color Temperature", True, 5500]
        ]

    def test_white_balance_mode(self, session, transport):
        session.set_setting("wb", "Daylight")
        assert transport.calls_to(Operation.SET_WHITE_BALANCE) == [
            ["Daylight", False, -1]
        ]

    def test_still_quality_param_shape(self, session, transport):
        session.set_setting("quality", "Fine")
        assert transport.calls_to(Operation.SET_STILL_QUALITY) == [
            [{"stillQuality": "Fine"}]
        ]

    def test_numeric_shutter_speed_in_camera_notation(self, session, transport):
        assert session.set_setting("shutter", 2) == '2"'
        session.set_setting("shutter", 0.01)
        assert transport.calls_to(Operation.SET_SHUTTER_SPEED) == [['2"'], ["1/100"]]
        assert session.settings.values[Setting.SHUTTER_SPEED] == "1/100"

    def test_non_positive_shutter_speed(self, session, transport):
        with pytest.raises(ValueError):
            session.set_setting("shutter", 0)
        assert transport.calls_to(Operation.SET_SHUTTER_SPEED) == []

    def test_refresh_does_not_overwrite_concurrent_set(self):
        """Verifies a status refresh and a setter run one after the other.

        Arrangement:
        1. A transport that holds the getEvent answer until released.
        2. A refresh thread parked inside that getEvent call.

        Action:
        set_setting("iso", "400") from a second thread, then release.

        Assertion Strategy:
        - The setter waits while the refresh holds the session.
        - The cached ISO is the new value, not the older snapshot's AUTO.
        """
        transport = HeldEventTransport()
        session = _session(transport)
        session.connect()
        transport.hold = True

        refresher = threading.Thread(target=session.refresh_status)
        refresher.start()
        assert transport.entered.wait(5)
        setter = threading.Thread(target=session.set_setting, args=("iso", "400"))
        setter.start()
        setter.join(0.2)
        assert setter.is_alive()

        transport.release.set()
        refresher.join(5)
        setter.join(5)
        assert session.settings.values[Setting.ISO] == "400"
        session.close()

    def test_refused_returns_none(self, session, transport):
        transport.script(Operation.SET_ISO_SPEED_RATE, RpcError(3, "Illegal Argument"))
        assert session.set_setting("iso", "400") is None
        assert session.settings.values[Setting.ISO] == "AUTO"

    def test_unknown_setting_makes_no_call(self, session, transport):
        assert session.set_setting("bogus", 1) is None
        assert transport.calls == []

    def test_zoom_is_not_settable(self, session, transport):
        assert session.set_setting("zoom", 50) is None
        assert transport.calls == []

    def test_unsupported_returns_none(self):
        transport = FakeTransport(unsupported=[Operation.SET_F_NUMBER])
        session = _session(transport)
        session.connect()
        assert session.set_setting("aperture", "4.0") is None


class TestGetSetting:
    def test_query_updates_cache(self, session, transport):
        transport.script(Operation.GET_ISO_SPEED_RATE, "800")
        assert session.get_setting("iso") == "800"
        assert session.settings.values[Setting.ISO] == "800"

    def test_exposure_mode_displayed_as_code(self, session, transport):
        transport.script(Operation.GET_EXPOSURE_MODE, "Manual")
        assert session.get_setting("mode") == "M"

    def test_exposure_compensation_in_ev(self, session, transport):
        transport.script(Operation.GET_EXPOSURE_COMPENSATION, -3)
        assert session.get_setting("ev") == -1

    def test_refused_returns_none(self, session, transport):
        transport.script(Operation.GET_F_NUMBER, RpcError(1, "Any"))
        assert session.get_setting("aperture") is None

    def test_zoom_comes_from_cache(self, session, transport):
        assert session.get_setting("zoom") == 0
        assert transport.calls == []

    def test_unknown(self, session):
        assert session.get_setting("bogus") is None


class TestCapture:
    def test_completes(self, session, transport):
        result = session.capture()
        assert result.status is CaptureStatus.COMPLETED
        assert result.files == (POSTVIEW_URL,)
        assert result.request.history == [
            CaptureState.IDLE,
            CaptureState.REQUESTED,
            CaptureState.COMPLETED,
        ]
        assert session.is_idle

    def test_busy_camera_is_not_triggered(self, session, transport):
        transport.script(
            Operation.GET_EVENT,
            event_with(cameraStatus__cameraStatus="StillCapturing"),
        )
        session.refresh_status()
        assert session.state is SessionState.BUSY

        result = session.capture()
        assert result.status is CaptureStatus.BUSY
        assert result.request is None
        assert transport.calls_to(Operation.ACT_TAKE_PICTURE) == []

    def test_long_exposure_polls_with_backoff(self, session, transport, clock):
        """Verifies the 40403 wait loop.

        Arrangement:
        1. actTakePicture answers 40403.
        2. awaitTakePicture answers 40403 twice, then the postview URL.

        Action:
        capture().

        Assertion Strategy:
        - actTakePicture was sent exactly once.
        - awaitTakePicture was polled three times.
        - Sleeps between polls grew by the backoff factor.
        - The request passed through AWAITING_LONG_EXPOSURE.
        """
        long_shot = RpcError(40403, "Long shooting")
        transport.script(Operation.ACT_TAKE_PICTURE, long_shot)
        transport.script(
            Operation.AWAIT_TAKE_PICTURE, long_shot, long_shot, [POSTVIEW_URL]
        )

        result = session.capture()

        assert result.status is CaptureStatus.COMPLETED
        assert result.files == (POSTVIEW_URL,)
        assert len(transport.calls_to(Operation.ACT_TAKE_PICTURE)) == 1
        assert len(transport.calls_to(Operation.AWAIT_TAKE_PICTURE)) == 3
        assert clock.sleeps == [0.5, 0.75]
        assert CaptureState.AWAITING_LONG_EXPOSURE in result.request.history

    def test_backoff_is_capped(self, session, transport, clock):
        transport.script(Operation.ACT_TAKE_PICTURE, RpcError(40403, ""))
        with pytest.raises(CaptureFailedError):
            session.capture(timeout=60)
        assert max(clock.sleeps) == 5.0

    def test_long_exposure_timeout(self, session, transport, clock):
        """Verifies the last pause is cut to the time left before the deadline."""
        transport.script(Operation.ACT_TAKE_PICTURE, RpcError(40403, ""))
        with pytest.raises(CaptureFailedError, match="did not finish"):
            session.capture(timeout=2)
        assert clock.sleeps == [0.5, 0.75, 0.75]
        assert clock.now == pytest.approx(2.0)
        assert session.is_idle

    def test_cancel_wakes_the_backoff_pause(self, transport):
        """Verifies cancelling during a pause ends the wait at the next check.

        Arrangement:
        1. A clock whose wait() sets the cancel event on the second pause.
        2. awaitTakePicture keeps answering 40403.

        Action:
        capture(cancel=event).

        Assertion Strategy:
        - The result is CANCELLED after two pauses.
        - Both pauses waited on the cancel event, not a plain sleep.
        """

        class CancellingClock(FakeClock):
            def __init__(self):
                super().__init__()
                self.waits = 0

            def wait(self, event, seconds):
                self.waits += 1
                if self.waits == 2:
                    event.set()
                return super().wait(event, seconds)

        clock = CancellingClock()
        session = CameraSession(transport, clock=clock, frame_grabber=FakeGrabber())
        session.connect()
        transport.script(Operation.ACT_TAKE_PICTURE, RpcError(40403, ""))

        result = session.capture(cancel=threading.Event())

        assert result.status is CaptureStatus.CANCELLED
        assert clock.waits == 2
        assert len(transport.calls_to(Operation.AWAIT_TAKE_PICTURE)) == 2
        session.close()

    def test_system_clock_wait_returns_when_set(self):
        event = threading.Event()
        event.set()
        assert SystemClock().wait(event, 30.0) is True

    def test_cancelled_wait(self, session, transport):
        transport.script(Operation.ACT_TAKE_PICTURE, RpcError(40403, ""))
        cancel = threading.Event()
        cancel.set()
        result = session.capture(cancel=cancel)
        assert result.status is CaptureStatus.CANCELLED
        assert result.request.state is CaptureState.CANCELLED
        assert transport.calls_to(Operation.AWAIT_TAKE_PICTURE) == []

    def test_camera_error_fails_capture(self, session, transport):
        transport.script(Operation.ACT_TAKE_PICTURE, RpcError(1, "Any"))
        with pytest.raises(CaptureFailedError):
            session.capture()
        assert session.is_idle

    def test_await_error_fails_capture(self, session, transport):
        transport.script(Operation.ACT_TAKE_PICTURE, RpcError(40403, ""))
        transport.script(Operation.AWAIT_TAKE_PICTURE, RpcError(40401, "Not Ready"))
        with pytest.raises(CaptureFailedError) as exc_info:
            session.capture()
        assert exc_info.value.code == 40401

    def test_connection_failure_propagates(self, session, transport):
        transport.script(
            Operation.ACT_TAKE_PICTURE, ConnectionFailedError("Connection failed")
        )
        with pytest.raises(ConnectionFailedError):
            session.capture()
        assert session.is_idle


class TestBackgroundCapture:
    def test_capture_async_then_poll(self, session, transport):
        handle = session.capture_async()
        assert isinstance(handle, BackgroundHandle)
        assert transport.jobs[0].operation is Operation.ACT_TAKE_PICTURE
        assert session.state is SessionState.BUSY

        assert session.poll_background().status is BackgroundStatus.PENDING
        transport.jobs[0].finish([POSTVIEW_URL])
        result = session.poll_background()
        assert result.status is BackgroundStatus.COMPLETED
        assert result.files == (POSTVIEW_URL,)
        assert session.poll_background() is None
        assert session.is_idle

    def test_sync_capture_refused_while_background_pending(self, session, transport):
        session.capture_async()
        assert session.capture().status is CaptureStatus.BUSY
        assert transport.calls_to(Operation.ACT_TAKE_PICTURE) == []

    def test_close_cancels_background(self, session, transport):
        session.capture_async()
        session.close()
        assert transport.jobs[0].cancelled
        assert session.poll_background() is None


class TestLifecycle:
    def test_closed_session_refuses_calls(self, session, transport):
        session.close()
        assert session.state is SessionState.CLOSED
        assert transport.closed
        with pytest.raises(SessionClosedError):
            session.set_setting("iso", "400")
        with pytest.raises(SessionClosedError):
            session.capture()

    def test_close_is_idempotent(self, session):
        session.close()
        session.close()
        assert session.closed

    def test_start_and_stop_rec_mode(self, session, transport):
        session.stop()
        session.start()
        operations = [op for op, _, _ in transport.calls]
        assert operations == [Operation.STOP_REC_MODE, Operation.START_REC_MODE]

    def test_settings_to_dict(self, session):
        data = session.settings.to_dict()
        assert data["camera_status"] == "IDLE"
        assert data["iso"] == "AUTO"
        assert data["exposure_mode"] == "P"


class TestApiPassthrough:
    def test_by_name(self, session, transport):
        transport.script(Operation.GET_VERSIONS, ["1.0", "1.2"])
        assert session.api("getVersions") == ["1.0", "1.2"]
        assert transport.calls[-1] == (Operation.GET_VERSIONS, None, Service.CAMERA)

    def test_service_by_name(self, session, transport):
        session.api(Operation.GET_VERSIONS, service="avContent")
        assert transport.calls[-1][2] is Service.AV_CONTENT

    def test_unknown_operation(self, session):
        with pytest.raises(ValueError):
            session.api("deleteEverything")


class TestZoom:
    def test_zoom_in(self, session, transport):
        transport.script(
            Operation.GET_EVENT, event_with(zoomInformation__zoomPosition=10)
        )
        assert session.zoom(" In ") == 10
        assert transport.calls_to(Operation.SET_ZOOM_SETTING) == [
            [{"zoom": "On:Clear Image Zoom"}]
        ]
        assert transport.calls_to(Operation.ACT_ZOOM) == [["in", "1shot"]]

    def test_bad_direction(self, session, transport):
        with pytest.raises(ValueError):
            session.zoom("sideways")
        assert transport.calls == []

    def test_unsupported(self):
        session = _session(FakeTransport(unsupported=[Operation.ACT_ZOOM]))
        session.connect()
        assert session.zoom("out") is None

    def test_refused(self, session, transport):
        transport.script(Operation.ACT_ZOOM, RpcError(1, "Any"))
        assert session.zoom("in") is None


class TestLiveView:
    def test_stream_is_reused(self, session, transport, grabber):
        assert session.grab_live_frame() == grabber.frame
        assert session.grab_live_frame(quality=60) == grabber.frame
        assert len(transport.calls_to(Operation.START_LIVEVIEW)) == 1
        assert grabber.sources == [(LIVEVIEW_URL, 85), (LIVEVIEW_URL, 60)]

    def test_file_source_reshot_each_frame(self, session, transport, grabber):
        transport.script(
            Operation.START_LIVEVIEW, "/tmp/preview-1.jpg", "/tmp/preview-2.jpg"
        )
        session.grab_live_frame()
        session.grab_live_frame()
        assert [source for source, _ in grabber.sources] == [
            "/tmp/preview-1.jpg",
            "/tmp/preview-2.jpg",
        ]

    def test_busy_returns_none(self, session, transport, grabber):
        session.capture_async()
        assert session.grab_live_frame() is None
        assert grabber.sources == []

    def test_unsupported_returns_none(self):
        session = _session(FakeTransport(unsupported=[Operation.START_LIVEVIEW]))
        session.connect()
        assert session.grab_live_frame() is None

    def test_stop_clears_source(self, session, transport):
        session.start_live_preview()
        session.stop_live_preview()
        session.grab_live_frame()
        assert len(transport.calls_to(Operation.START_LIVEVIEW)) == 2
        assert transport.calls_to(Operation.STOP_LIVEVIEW) == [None]


class TestCameraSettings:
    def test_defaults_come_from_a_factory(self):
        """The read-only defaults are supplied per instance, not as a class default."""
        values_field = {f.name: f for f in dataclasses.fields(CameraSettings)}["values"]
        assert values_field.default is dataclasses.MISSING
        settings = CameraSettings()
        assert settings.values is DEFAULT_VALUES
        assert settings.values[Setting.ISO] == "AUTO"

    def test_with_values_leaves_defaults_untouched(self):
        updated = CameraSettings().with_values({Setting.ISO: "400"})
        assert updated.values[Setting.ISO] == "400"
        assert DEFAULT_VALUES[Setting.ISO] == "AUTO"
