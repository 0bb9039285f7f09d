"""Structured logging for alpha-remote.

Thin layer over the standard logging module that lets every call site
attach key-value fields to a record:

    logger = get_logger(__name__)
    logger.info("RPC call", operation="getEvent", duration_ms=42.0)

Fields from an enclosing LogContext are merged in, so a capture can tag
every transport call it makes:

    with LogContext(capture_id=7):
        session.capture()

Two formatters are provided. StructuredFormatter appends the fields as
``| key=value`` pairs for console use; JSONFormatter emits one JSON object
per line. configure_logging() installs one of them on the ``alpha_remote``
logger tree. get_logger() configures defaults lazily.

Untrusted values (camera labels, stderr from gphoto2) should be passed as
fields, never interpolated into the message string.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any, cast

ROOT_LOGGER_NAME = "alpha_remote"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "alpha_remote_log_context", default={}
)


class StructuredLogger(logging.Logger):
    """Logger whose methods accept arbitrary keyword fields.

    The standard ``Logger.info(msg, *args, **kwargs)`` forwards its keyword
    arguments to ``_log``. Overriding ``_log`` alone is therefore enough to
    turn unknown keywords into structured data.
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        """Merge context and keyword fields into ``record.structured_data``.

        Args:
            level: Numeric log level.
            msg: Message, optionally with % placeholders.
            args: Arguments for % formatting.
            exc_info: Exception info as accepted by the stdlib logger.
            extra: Extra record attributes. ``structured_data`` is overwritten.
            stack_info: Attach the current stack.
            stacklevel: Caller frame offset.
            **fields: Structured fields. Explicit fields win over LogContext.
        """
        merged = {**_log_context.get(), **fields}
        extra = dict(extra) if extra else {}
        extra["structured_data"] = merged
        super()._log(
            level,
            msg,
            args if args is not None else (),
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


def _format_value(value: Any) -> str:
    """Render one field value for the key=value formatter.

    None becomes ``null``, strings with spaces are quoted, containers are
    JSON-encoded and anything else goes through ``str``.

    Example:
        >>> _format_value("Auto WB")
        '"Auto WB"'
        >>> _format_value([100, 200])
        '[100, 200]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"' if " " in value else value
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter: ``<base format> | key=value key=value``."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        super().__init__(
            fmt or "%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt
        )
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        structured = getattr(record, "structured_data", None)
        if not self.include_structured or not structured:
            return base
        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, structured fields at the top level.

    Base keys are ``timestamp`` (UTC ISO-8601), ``level``, ``logger`` and
    ``message``; ``exception`` is added when the record carries exc_info.
    Values that are not JSON serializable are passed through ``str``.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(getattr(record, "structured_data", {}) or {})
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class LogContext:
    """Context manager adding fields to every record logged inside it.

    Backed by a ContextVar, so nesting works and threads started with a
    copied context keep their own view.

    Example:
        >>> with LogContext(transport="http"):
        ...     with LogContext(operation="actTakePicture"):
        ...         logger.info("Sending")  # transport and operation attached
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Install a handler on the ``alpha_remote`` logger.

    Idempotent unless ``force`` is set, in which case existing handlers are
    removed first. Propagation to the root logger is disabled so records
    are not emitted twice when the host application also configures
    logging.

    Args:
        level: Minimum level, as int or name ("DEBUG", "INFO", ...).
        json_format: Use JSONFormatter instead of StructuredFormatter.
        stream: Target stream. Defaults to stderr, which keeps stdout free
            for the MCP stdio transport.
        include_structured: Append fields in text mode.
        force: Reconfigure even if already configured.
    """
    with _config_lock:
        if force:
            _reset_locked()
        _configure_locked(level, json_format, stream, include_structured)


def _configure_locked(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    global _configured
    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def _reset_locked() -> None:
    global _configured
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    _configured = False


def reset_logging() -> None:
    """Remove installed handlers and mark logging unconfigured (tests)."""
    with _config_lock:
        _reset_locked()


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger, configuring defaults on first use.

    Loggers created before configuration (for instance at import time of
    a module outside ``alpha_remote``) are plain ``logging.Logger``
    instances; within the package every module calls this at import, after
    the logger class has been installed.

    Args:
        name: Usually ``__name__``.

    Returns:
        Logger accepting keyword fields.
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_locked()
    return cast(StructuredLogger, logging.getLogger(name))
