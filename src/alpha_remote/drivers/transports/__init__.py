"""Camera transports.

Protocols:
    Transport: Synchronous execute plus background launch.
    BackgroundJob: Handle on one detached request.

Implementations:
    HttpRpcTransport: Camera Remote API over HTTP (requests).
    Gphoto2Transport: USB tethering through the gphoto2 command line.
    OfflineTransport: Replays a recorded getEvent payload.
"""

from alpha_remote.drivers.transports.base import (
    BackgroundJob,
    RawResult,
    RpcError,
    Transport,
    collapse_single,
)
from alpha_remote.drivers.transports.gphoto2 import Gphoto2Transport
from alpha_remote.drivers.transports.http_rpc import HttpRpcTransport
from alpha_remote.drivers.transports.twin import OfflineTransport

__all__ = [
    "BackgroundJob",
    "Gphoto2Transport",
    "HttpRpcTransport",
    "OfflineTransport",
    "RawResult",
    "RpcError",
    "Transport",
    "collapse_single",
]
