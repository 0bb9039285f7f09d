"""Driver configuration and transport factory.

Selects which transport a session talks through:

- HTTP: Camera Remote API over the camera's Wi-Fi access point.
- GPHOTO2: USB tethering through the gphoto2 command line.
- DIGITAL_TWIN: offline replay of a recorded camera state.

Example:
    from alpha_remote.drivers import config

    config.use_gphoto2()
    transport = config.get_factory().create_transport()
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from alpha_remote.drivers.process import CommandRunner
from alpha_remote.drivers.transports import (
    Gphoto2Transport,
    HttpRpcTransport,
    OfflineTransport,
    Transport,
)
from alpha_remote.drivers.transports.gphoto2 import (
    DEFAULT_CAPTURE_TIMEOUT_S,
    DEFAULT_EXECUTABLE,
    DEFAULT_FILENAME_PATTERN,
)
from alpha_remote.drivers.transports.http_rpc import (
    DEFAULT_ENDPOINT,
    DEFAULT_TIMEOUT_S,
)
from alpha_remote.observability import RpcStats

#: Seconds between scheduler ticks (status refresh + background poll).
DEFAULT_POLL_INTERVAL_S = 5.0

#: Upper bound for one long-exposure await loop.
DEFAULT_LONG_EXPOSURE_TIMEOUT_S = 600.0


class DriverMode(Enum):
    """Transport selection."""

    HTTP = "http"  # Camera Remote API over Wi-Fi
    GPHOTO2 = "gphoto2"  # USB tethering via gphoto2
    DIGITAL_TWIN = "digital_twin"  # Offline replay


@dataclass
class DriverConfig:
    """Settings for transport creation and session timing.

    Attributes:
        mode: Which transport to create.
        endpoint: Camera Remote API base URL.
        request_timeout: Per-request HTTP timeout in seconds.
        gphoto2_executable: gphoto2 binary name or path.
        capture_dir: Download directory for gphoto2 captures and HTTP
            postviews (temp if None).
        filename_pattern: gphoto2 --filename pattern inside capture_dir.
        capture_timeout: Timeout for one gphoto2 capture.
        offline_snapshot: Recorded getEvent payload for the offline twin.
        fallback_to_offline: Use the offline twin when connect fails.
        download_postview: Download HTTP postview images into capture_dir.
        poll_interval: Scheduler tick period in seconds.
        long_exposure_timeout: Limit for one long-exposure await loop.
    """

    mode: DriverMode = DriverMode.HTTP
    endpoint: str = DEFAULT_ENDPOINT
    request_timeout: float = DEFAULT_TIMEOUT_S
    gphoto2_executable: str = DEFAULT_EXECUTABLE
    capture_dir: Path | None = None
    filename_pattern: str = DEFAULT_FILENAME_PATTERN
    capture_timeout: float = DEFAULT_CAPTURE_TIMEOUT_S
    offline_snapshot: Path | None = None
    fallback_to_offline: bool = True
    download_postview: bool = False
    poll_interval: float = DEFAULT_POLL_INTERVAL_S
    long_exposure_timeout: float = DEFAULT_LONG_EXPOSURE_TIMEOUT_S


class DriverFactory:
    """Creates transports from a DriverConfig.

    Not thread-safe; configure once at startup.
    """

    def __init__(self, config: DriverConfig | None = None) -> None:
        self.config = config or DriverConfig()

    def create_transport(
        self,
        stats: RpcStats | None = None,
        runner: CommandRunner | None = None,
    ) -> Transport:
        """Build the transport selected by ``config.mode``.

        Args:
            stats: Statistics sink shared with the session.
            runner: Command runner for the gphoto2 transport (tests).

        Returns:
            HttpRpcTransport, Gphoto2Transport or OfflineTransport.
        """
        cfg = self.config
        if cfg.mode is DriverMode.HTTP:
            return HttpRpcTransport(
                endpoint=cfg.endpoint,
                timeout=cfg.request_timeout,
                stats=stats,
                download_postview=cfg.download_postview,
                download_dir=cfg.capture_dir,
            )
        if cfg.mode is DriverMode.GPHOTO2:
            return Gphoto2Transport(
                executable=cfg.gphoto2_executable,
                runner=runner,
                capture_dir=cfg.capture_dir,
                filename_pattern=cfg.filename_pattern,
                capture_timeout=cfg.capture_timeout,
                stats=stats,
            )
        return self.create_offline_transport()

    def create_offline_transport(self) -> OfflineTransport:
        return OfflineTransport(
            snapshot_path=self.config.offline_snapshot,
            output_dir=self.config.capture_dir,
        )


# Configure before starting threads; these globals are not locked.
_factory: DriverFactory | None = None


def get_factory() -> DriverFactory:
    """Return the process-wide factory, creating a default one on first use."""
    global _factory
    if _factory is None:
        _factory = DriverFactory()
    return _factory


def configure(config: DriverConfig) -> None:
    """Replace the process-wide factory."""
    global _factory
    _factory = DriverFactory(config)


def _use_mode(mode: DriverMode) -> None:
    configure(dataclasses.replace(get_factory().config, mode=mode))


def use_http(endpoint: str | None = None) -> None:
    """Switch to the HTTP transport, optionally changing the endpoint."""
    _use_mode(DriverMode.HTTP)
    if endpoint is not None:
        get_factory().config.endpoint = endpoint


def use_gphoto2() -> None:
    _use_mode(DriverMode.GPHOTO2)


def use_digital_twin() -> None:
    _use_mode(DriverMode.DIGITAL_TWIN)
