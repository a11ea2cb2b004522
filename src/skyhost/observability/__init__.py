"""Observability module for skyhost.

Provides structured logging used by the pipeline, the guider bridge,
the discovery broadcaster and the server lifecycle.

Example:
    from skyhost.observability import get_logger, LogContext

    logger = get_logger(__name__)
    logger.info("Server started", port=5000)

    with LogContext(endpoint="starimage"):
        logger.warning("No image data from PHD2")
"""

from skyhost.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)

__all__ = [
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
]
