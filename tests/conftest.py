"""Pytest configuration and fixtures for alpha-remote tests.

Fixtures build sessions over the fakes in ``tests.helpers`` so no test
needs a camera, a network or the gphoto2 binary.
"""

import pytest

from alpha_remote.devices import CameraSession, shutdown_session
from alpha_remote.drivers import config as driver_config
from tests.helpers import FakeClock, FakeGrabber, FakeTransport


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def grabber() -> FakeGrabber:
    return FakeGrabber()


@pytest.fixture
def session(transport, clock, grabber):
    """Provide a connected CameraSession over FakeTransport.

    The connect() calls are cleared from ``transport.calls`` so tests only
    see the calls they cause. The session is closed on teardown.

    Yields:
        CameraSession: READY session with the IDLE_EVENT state loaded.
    """
    camera = CameraSession(transport, clock=clock, frame_grabber=grabber)
    camera.connect()
    transport.calls.clear()
    yield camera
    camera.close()


@pytest.fixture
def restore_factory():
    """Put back the process-wide DriverFactory after a test replaced it."""
    saved = driver_config._factory
    yield
    driver_config._factory = saved


@pytest.fixture
def clean_registry():
    """Make sure no session stays registered between tests."""
    shutdown_session()
    yield
    shutdown_session()
