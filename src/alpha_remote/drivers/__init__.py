"""Camera transports and their configuration.

Supports three modes:
- HTTP: Camera Remote API over the camera's Wi-Fi access point
- GPHOTO2: USB tethering through the gphoto2 command line
- DIGITAL_TWIN: offline replay of a recorded camera state

Use drivers.config to switch modes:
    from alpha_remote.drivers import config
    config.use_gphoto2()  # or config.use_http(), config.use_digital_twin()

Process protocols:
    CommandRunner lets the gphoto2 transport run without a real binary in
    tests.

    from alpha_remote.drivers import CommandRunner, CommandResult
"""

from alpha_remote.drivers import config
from alpha_remote.drivers.config import (
    DriverConfig,
    DriverFactory,
    DriverMode,
    configure,
    get_factory,
    use_digital_twin,
    use_gphoto2,
    use_http,
)
from alpha_remote.drivers.errors import (
    AlreadyInProgressError,
    CameraRemoteError,
    CaptureFailedError,
    ConnectionFailedError,
    LongExposureInProgress,
    ProtocolError,
    SessionClosedError,
    UnsupportedOperationError,
)
from alpha_remote.drivers.operations import (
    LONG_EXPOSURE_ERROR_CODE,
    SETTINGS,
    Operation,
    Service,
    Setting,
    SettingSpec,
)
from alpha_remote.drivers.process import (
    CommandResult,
    CommandRunner,
    SubprocessRunner,
    sanitized_environment,
)

__all__ = [
    "config",
    # Configuration
    "DriverMode",
    "DriverConfig",
    "DriverFactory",
    "get_factory",
    "configure",
    "use_http",
    "use_gphoto2",
    "use_digital_twin",
    # Errors
    "CameraRemoteError",
    "ConnectionFailedError",
    "ProtocolError",
    "UnsupportedOperationError",
    "AlreadyInProgressError",
    "SessionClosedError",
    "CaptureFailedError",
    "LongExposureInProgress",
    # Operations
    "Operation",
    "Service",
    "Setting",
    "SettingSpec",
    "SETTINGS",
    "LONG_EXPOSURE_ERROR_CODE",
    # Processes
    "CommandRunner",
    "CommandResult",
    "SubprocessRunner",
    "sanitized_environment",
]
