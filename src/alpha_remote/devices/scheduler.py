"""Caller-owned periodic refresh and timelapse trigger.

The session has no timer of its own. Whoever owns the session (the MCP
server, the CLI, a script) creates a PollScheduler that refreshes status
and polls the background capture on every tick:

    scheduler = PollScheduler(session, interval=5.0)
    scheduler.start()
    scheduler.toggle_timelapse(30.0)   # one capture every 30 s while idle
    ...
    scheduler.stop()

Ticks never overlap: a tick that starts while the previous one is still
running is skipped. Once the session is closed the scheduler stops itself
without touching the session again.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING

from alpha_remote.devices.background import BackgroundHandle
from alpha_remote.drivers.errors import CameraRemoteError
from alpha_remote.observability import get_logger

if TYPE_CHECKING:
    from alpha_remote.devices.session import CameraSession, Clock

__all__ = ["PollScheduler"]

logger = get_logger(__name__)


class PollScheduler:
    """Background thread driving ``refresh_status`` and ``poll_background``.

    Args:
        session: Session to drive.
        interval: Seconds between ticks.
        clock: Time source for the timelapse period; SystemClock when
            None.
    """

    def __init__(
        self,
        session: CameraSession,
        interval: float = 5.0,
        clock: Clock | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if clock is None:
            from alpha_remote.devices.session import SystemClock

            clock = SystemClock()
        self.session = session
        self.interval = interval
        self._clock = clock
        self._tick_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._timelapse_period: float | None = None
        self._last_trigger: float | None = None
        self.ticks = 0
        self.skipped = 0
        self.triggered = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def timelapse_period(self) -> float | None:
        """Seconds between timelapse captures, None when inactive."""
        return self._timelapse_period

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="alpha-remote-poll", daemon=True
        )
        self._thread.start()
        logger.info("Poll scheduler started", interval=self.interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout if timeout is not None else self.interval * 2)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.tick()

    def toggle_timelapse(self, period: float = 0.0) -> bool:
        """Start or stop the timelapse.

        Args:
            period: Seconds between captures. 0 captures continuously,
                whenever the camera is idle at a tick.

        Returns:
            True if the timelapse is now running.
        """
        if self._timelapse_period is not None:
            self._timelapse_period = None
            logger.info("Timelapse stopped", captures=self.triggered)
            return False
        if period < 0:
            raise ValueError(f"period must not be negative, got {period}")
        self._timelapse_period = period
        self._last_trigger = None
        self.triggered = 0
        logger.info("Timelapse started", period=period)
        return True

    def tick(self) -> bool:
        """Run one refresh cycle now.

        Returns:
            False when the tick was skipped (previous tick still running or
            session closed).
        """
        if not self._tick_lock.acquire(blocking=False):
            self.skipped += 1
            logger.debug("Tick skipped, previous tick still running")
            return False
        try:
            if self.session.closed:
                logger.info("Session closed, poll scheduler stopping")
                self._stop.set()
                return False
            self.ticks += 1
            try:
                self.session.refresh_status()
                result = self.session.poll_background()
                if result is not None:
                    logger.debug("Background poll", status=result.status.value)
                self._maybe_trigger()
            except CameraRemoteError as e:
                logger.warning("Poll tick failed", error=str(e))
            return True
        finally:
            self._tick_lock.release()

    def _maybe_trigger(self) -> None:
        period = self._timelapse_period
        if period is None or not self.session.is_idle:
            return
        now = self._clock.monotonic()
        if self._last_trigger is not None and now - self._last_trigger < period:
            return
        handle = self.session.capture_async()
        if isinstance(handle, BackgroundHandle):
            self._last_trigger = now
            self.triggered += 1
            logger.info("Timelapse capture", number=self.triggered)
