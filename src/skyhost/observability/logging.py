"""Structured logging for skyhost.

Thin layer over the standard logging module that lets callers attach
key-value data to a log line:

    logger = get_logger(__name__)
    logger.info("Broadcast sent", port=5000, host="obs-pc")

    with LogContext(endpoint="/api/phd2/starimage"):
        logger.warning("Temp frame not deleted", path=path)

Output is either human-readable (``message | key=value``) or one JSON
object per line for log shippers.

Security Note:
    Values coming from the network (guider error strings, query
    parameters) belong in keyword arguments, not in the message text,
    so they cannot forge extra log lines.
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

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "skyhost_log_context", default={}
)

ROOT_LOGGER_NAME = "skyhost"


class StructuredLogger(logging.Logger):
    """Logger whose methods accept arbitrary keyword arguments.

    ``Logger.info(msg, *args, **kwargs)`` forwards unknown keyword
    arguments to ``_log``; this class collects them (merged over the
    active LogContext) into ``record.structured_data``.

    Usage:
        logger = get_logger("skyhost.discovery")
        logger.error("Broadcast failed", error=str(exc), port=37020)
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
        **kwargs: Any,
    ) -> None:
        """Emit a record carrying context and keyword data.

        Merge order is LogContext values < explicit kwargs, so per-call
        data overrides ambient request context.

        Args:
            level: Numeric log level.
            msg: Log message, may contain % placeholders.
            args: Arguments for % formatting.
            exc_info: Exception info, True to capture the current one.
            extra: Extra record attributes; ``structured_data`` is set here.
            stack_info: Include a stack trace.
            stacklevel: Frames to skip when locating the caller. One more
                frame is skipped for this override.
            **kwargs: Structured key-value data.
        """
        structured_data = {**_log_context.get(), **kwargs}
        extra = dict(extra) if extra else {}
        extra["structured_data"] = structured_data

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter: ``timestamp - name - level - msg | k=v``."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def formatMessage(self, record: logging.LogRecord) -> str:
        """Format the message line and append structured pairs, if any.

        Runs before ``format()`` adds the traceback, so the pairs stay on
        the message line.

        Args:
            record: Record to format. ``structured_data`` is optional so
                records from third-party loggers format normally.

        Returns:
            Formatted line, e.g.
            ``2026-01-01 21:04:11 - skyhost.discovery - DEBUG - Broadcast
            sent | port=5000``.
        """
        base = super().formatMessage(record)
        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """One JSON object per record with structured keys at top level."""

    def format(self, record: logging.LogRecord) -> str:
        """Serialize the record as a single JSON line.

        Args:
            record: Record to format.

        Returns:
            JSON text with ``timestamp``, ``level``, ``logger``,
            ``message``, optional ``exception`` and the structured data.
            Values that are not JSON-serializable go through ``str()``.
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_dict.update(getattr(record, "structured_data", {}))

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Render a structured value for the key=value text format.

    Examples:
        >>> _format_value(None)
        'null'
        >>> _format_value("obs pc")
        '"obs pc"'
        >>> _format_value([1, 2])
        '[1, 2]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list):
        return json.dumps(value, default=str)
    return str(value)


class LogContext:
    """Context manager adding key-value pairs to every log line inside it.

    Backed by contextvars, so each asyncio task (one per HTTP request)
    sees its own context. Contexts nest; inner values win.

    Usage:
        with LogContext(endpoint="save-image"):
            logger.info("Saving frame")  # includes endpoint=save-image
    """

    def __init__(self, **kwargs: Any) -> None:
        self._kwargs = kwargs
        self._token: contextvars.Token[dict[str, Any]] | None = None

    def __enter__(self) -> LogContext:
        current = _log_context.get()
        self._token = _log_context.set({**current, **self._kwargs})
        return self

    def __exit__(self, *args: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


# Configuration state
_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the ``skyhost`` logger hierarchy.

    Idempotent: later calls are ignored unless ``force`` is True.
    Thread-safe.

    Args:
        level: Minimum level, int or name ("DEBUG", "info", ...).
        json_format: Emit NDJSON instead of key=value text.
        stream: Output stream, default ``sys.stderr``.
        include_structured: Append structured pairs in text mode.
        force: Drop existing handlers and configure again.

    Example:
        >>> configure_logging(level="DEBUG")
        >>> configure_logging(json_format=True, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Internal implementation of configure_logging (lock held)."""
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

    if isinstance(level, str):
        level = level.upper()

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Internal implementation of reset_logging (lock held)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Remove skyhost handlers and mark logging unconfigured (tests)."""
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Return a StructuredLogger, configuring defaults on first use.

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        Logger accepting ``logger.info("msg", key=value)``.

    Note:
        Loggers created before the first call (e.g. by a third-party
        import of the same name) keep the plain Logger class, so modules
        obtain their loggers at import time through this function.
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    return cast(StructuredLogger, logging.getLogger(name))
