"""Observability for alpha-remote: structured logging and RPC statistics.

Example:
    from alpha_remote.observability import LogContext, RpcStats, get_logger

    logger = get_logger(__name__)
    with LogContext(transport="gphoto2"):
        logger.info("Camera detected", model="ILCE-7M3")

    stats = RpcStats()
    stats.record("getEvent", duration_ms=40.0, success=True)
"""

from alpha_remote.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from alpha_remote.observability.stats import RpcStats, StatsSummary

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "RpcStats",
    "StatsSummary",
]
