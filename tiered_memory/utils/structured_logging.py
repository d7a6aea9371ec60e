"""
Structured logging utility - Wrapper around structlog for consistent logging.
Provides a simple interface to get logger instances with context.
"""

import logging
import sys
from typing import Optional

import structlog


def setup_logging(level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog on top of stdlib logging.

    Args:
        level: Minimum log level name
        json_output: Render JSON lines instead of the console format
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )


class EnhancedLogger:
    """
    Enhanced logger wrapper that adds custom logging methods.
    Wraps structlog's bound logger with additional methods.
    """

    def __init__(self, logger, name: str = None):
        self._logger = logger
        self._name = name

    def __getattr__(self, name):
        """Delegate attribute access to the wrapped logger."""
        return getattr(self._logger, name)

    def tier_call(
        self,
        tier: str,
        operation: str,
        latency_ms: float,
        success: bool,
        results: Optional[int] = None,
        error: Optional[str] = None
    ):
        """
        Log a single memory-tier operation with structured data.

        Args:
            tier: Tier name ("short_term", "long_term", "rag")
            operation: Operation name (e.g. "recent", "get_relevant")
            latency_ms: Call latency in milliseconds
            success: Whether the call succeeded
            results: Number of items returned, if any
            error: Error message if failed
        """
        # NOTE: structlog reserves the key "event" for the log message.
        event_data = {
            "event_type": "tier_call",
            "tier": tier,
            "operation": operation,
            "latency_ms": round(latency_ms, 2),
            "success": success,
        }
        if results is not None:
            event_data["results"] = results
        if error:
            event_data["error"] = error

        if success:
            self._logger.debug("Tier call completed", **event_data)
        else:
            self._logger.warning("Tier call failed", **event_data)


def get_logger(name: str = None):
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically module name)

    Returns:
        Enhanced structured logger with context binding
    """
    # Initial values keep the proxy lazy so setup_logging() still applies
    logger = structlog.get_logger(logger_name=name) if name else structlog.get_logger()
    return EnhancedLogger(logger, name)
