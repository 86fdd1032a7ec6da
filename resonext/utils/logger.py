"""
Structured Logger Module

Configures structlog for JSON-formatted structured logging with correlation IDs.
Every controller binds its flow and component so a single user action can be
traced from the session controller through the Gateway and the store.

Example Usage:
    from resonext.utils.logger import get_logger

    logger = get_logger(
        correlation_id="a1b2c3d4-e5f6-7890-abcd-ef1234567890",
        flow="discovery",
        component="discovery_flow"
    )

    logger.info("Finding professors", university="MIT")
    logger.warning("Discarding stale response", request_token=3)
    logger.error("Gateway call failed", error="Timeout after 60s")

Log Levels:
    - DEBUG: Prompts, response sizes, persistence scheduling
    - INFO: Session transitions, Gateway calls, saved documents
    - WARNING: Dropped saves, version conflicts, rejected input
    - ERROR: Failed loads and Gateway calls
    - CRITICAL: Unusable configuration
"""

import logging
import os
import sys
import uuid
from pathlib import Path
from typing import Optional

import structlog
from structlog.types import BindableLogger, EventDict, WrappedLogger

DEFAULT_LOG_FILE = "logs/resonext.log"


def mask_credentials(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """
    Processor to mask sensitive credentials in log output.

    Args:
        logger: Logger instance
        method_name: Logging method name
        event_dict: Event dictionary to process

    Returns:
        Event dictionary with masked credentials

    Masks:
        - password, api_key, anon_key, token, secret, credential, auth fields
        - Replaces values with "***MASKED***"
        - Uses word boundary matching to avoid false positives
    """
    sensitive_fields = {
        "password",
        "api_key",
        "anon_key",
        "token",
        "secret",
        "credential",
        "auth",
    }

    for key in list(event_dict.keys()):
        key_lower = key.lower()
        for sensitive in sensitive_fields:
            if (
                key_lower == sensitive
                or key_lower.endswith(f"_{sensitive}")
                or key_lower.endswith(f"-{sensitive}")
                or key_lower.startswith(f"{sensitive}_")
                or key_lower.startswith(f"{sensitive}-")
            ):
                event_dict[key] = "***MASKED***"
                break

    return event_dict


def configure_logging(
    log_file: Optional[str] = DEFAULT_LOG_FILE,
    log_level: str = "INFO",
    console: bool = True,
) -> None:
    """
    Configure structlog with JSON output and optional file logging.

    Args:
        log_file: Path to log file, or None to log to stdout only
        log_level: Logging level (default: "INFO")
        console: Also write log lines to stdout

    Log Format (JSON):
        {
            "timestamp": "2025-03-01T10:30:45Z",
            "level": "info",
            "correlation_id": "a1b2c3d4-...",
            "flow": "session",
            "component": "session_controller",
            "event": "Session ready",
            "profiles": 2
        }
    """
    handlers: list[logging.Handler] = []
    if console or not log_file:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_path))

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=handlers,
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            mask_credentials,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(
    correlation_id: Optional[str] = None,
    flow: Optional[str] = None,
    component: Optional[str] = None,
) -> BindableLogger:
    """
    Get structured logger with bound context.

    Args:
        correlation_id: Correlation ID for request tracing (generates UUID if not provided)
        flow: Application flow (e.g., "session", "discovery", "sop")
        component: Component name (e.g., "session_controller", "assist_gateway")

    Returns:
        BoundLogger with correlation_id, flow, and component bound to context
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())

    logger = structlog.get_logger()

    if correlation_id:
        logger = logger.bind(correlation_id=correlation_id)
    if flow:
        logger = logger.bind(flow=flow)
    if component:
        logger = logger.bind(component=component)

    return logger


# Initialize logging on module import; RESONEXT_LOG_FILE="" disables the file handler
configure_logging(
    log_file=os.getenv("RESONEXT_LOG_FILE", DEFAULT_LOG_FILE) or None,
    log_level=os.getenv("RESONEXT_LOG_LEVEL", "INFO"),
)
