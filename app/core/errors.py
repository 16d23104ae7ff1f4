"""
Error taxonomy and unified error capture with optional Sentry integration.

Taxonomy:
- TransientProviderFailure: AI provider timeout, non-2xx, malformed payload.
  Counted against the circuit breaker, always has a fallback.
- ConfigurationAbsence: no provider credential. Skips the breaker entirely.
- PersistenceFailure: entity store rejected a read or write. Retryable.
- AuditWriteFailure: audit/event sink rejected a write. Always swallowed.
- ValidationFailure: malformed input to a calculator or extractor.

Usage:
    capture_exception(exc, context={"vehicle_id": "veh_1"})

    with ErrorHandler("score_vehicle", context={"vehicle_id": vid}):
        score(...)
"""

from typing import Optional, Any, Dict
from datetime import datetime, timezone

from app.core.logging_config import get_logger

logger = get_logger(__name__)

__all__ = [
    "AutovinciError",
    "TransientProviderFailure",
    "ConfigurationAbsence",
    "PersistenceFailure",
    "AuditWriteFailure",
    "ValidationFailure",
    "init_sentry",
    "capture_exception",
    "capture_message",
    "ErrorHandler",
    "is_sentry_enabled",
]


class AutovinciError(Exception):
    """Base class for errors raised by the AI resilience layer."""

    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        if self.retryable:
            payload["retryable"] = True
        return payload


class TransientProviderFailure(AutovinciError):
    code = "AI_UNAVAILABLE"
    status_code = 502
    retryable = True


class ConfigurationAbsence(AutovinciError):
    code = "AI_NOT_CONFIGURED"
    status_code = 503


class PersistenceFailure(AutovinciError):
    code = "DB_ERROR"
    status_code = 503
    retryable = True


class AuditWriteFailure(AutovinciError):
    code = "AUDIT_WRITE_FAILED"


class ValidationFailure(AutovinciError):
    code = "VALIDATION_ERROR"
    status_code = 400


# Lazy-loaded Sentry SDK (optional dependency)
_sentry_initialized: bool = False


def init_sentry(
    dsn: str,
    environment: str = "production",
    traces_sample_rate: float = 0.1,
    release: Optional[str] = None,
) -> bool:
    """
    Initialize Sentry SDK for error tracking.

    Returns:
        True if initialization successful, False otherwise
    """
    global _sentry_initialized

    if not dsn:
        logger.info("Sentry disabled (no DSN provided)")
        return False

    try:
        import logging
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            traces_sample_rate=traces_sample_rate,
            release=release,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                SqlalchemyIntegration(),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            ignore_errors=[KeyboardInterrupt, SystemExit],
            before_send=_before_send,
        )

        _sentry_initialized = True
        logger.info("Sentry initialized", environment=environment, traces_sample_rate=traces_sample_rate)
        return True

    except ImportError:
        logger.warning("Sentry SDK not installed, error tracking disabled")
        return False
    except Exception as e:
        logger.error("Failed to initialize Sentry", error=str(e))
        return False


def _before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Drop health-check noise before it reaches Sentry."""
    if "request" in event:
        url = event["request"].get("url", "")
        if "/health" in url:
            return None
    return event


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def capture_exception(
    exc: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error",
    fingerprint: Optional[list[str]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture an exception with Sentry and structured logging.

    Args:
        exc: Exception to capture
        context: Additional context dict (e.g., {"lead_id": "lead_1"})
        level: Severity level (debug, info, warning, error, fatal)
        fingerprint: Custom grouping fingerprint for Sentry
        tags: Additional tags for filtering in Sentry

    Returns:
        Sentry event ID or None if not sent
    """
    enriched_context = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(exc).__name__,
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.error)
    log_func("Exception captured", exc_info=exc, **enriched_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                if tags:
                    for key, value in tags.items():
                        scope.set_tag(key, value)
                if fingerprint:
                    scope.fingerprint = fingerprint
                scope.level = level
                return sentry_sdk.capture_exception(exc)
        except Exception as e:
            logger.warning("Failed to send exception to Sentry", error=str(e))

    return None


def capture_message(
    message: str,
    level: str = "info",
    context: Optional[Dict[str, Any]] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Capture a non-exception event (circuit state changes, degraded runs).
    """
    enriched_context = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **(context or {}),
    }

    log_func = getattr(logger, level, logger.info)
    log_func(message, **enriched_context)

    if _sentry_initialized:
        try:
            import sentry_sdk

            with sentry_sdk.push_scope() as scope:
                for key, value in enriched_context.items():
                    if value is not None:
                        scope.set_extra(key, value)
                if tags:
                    for key, value in tags.items():
                        scope.set_tag(key, value)
                scope.level = level
                return sentry_sdk.capture_message(message, level=level)
        except Exception as e:
            logger.warning("Failed to send message to Sentry", error=str(e))

    return None


class ErrorHandler:
    """
    Context manager that captures and (by default) suppresses errors.

    Usage:
        with ErrorHandler("score_vehicle", context={"vehicle_id": vid}) as handler:
            score(...)
        if handler.failed:
            outcome.items_failed += 1

        with ErrorHandler("charge", reraise=True):
            charge(...)

    Args:
        operation: Name of the operation (for grouping in Sentry)
        context: Additional context dict
        capture: Whether to capture via capture_exception (default: True)
        reraise: Whether to re-raise the exception (default: False)
        level: Log level used when capturing
        fingerprint: Custom fingerprint for Sentry grouping
    """

    def __init__(
        self,
        operation: str,
        context: Optional[Dict[str, Any]] = None,
        capture: bool = True,
        reraise: bool = False,
        level: str = "error",
        fingerprint: Optional[list[str]] = None,
    ):
        self.operation = operation
        self.context = context or {}
        self.capture = capture
        self.reraise = reraise
        self.level = level
        self.fingerprint = fingerprint or [operation]
        self.event_id: Optional[str] = None
        self.error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def __enter__(self) -> "ErrorHandler":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_val is None:
            return False
        # Never swallow interpreter shutdown signals
        if not isinstance(exc_val, Exception):
            return False

        self.error = exc_val
        if self.capture:
            self.event_id = capture_exception(
                exc_val,
                context={"operation": self.operation, **self.context},
                level=self.level,
                fingerprint=self.fingerprint + [type(exc_val).__name__],
            )

        return not self.reraise

