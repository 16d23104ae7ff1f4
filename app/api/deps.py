from functools import lru_cache
from typing import Optional
import hmac

from fastapi import Depends, Header, HTTPException, Request, status

from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.config import settings
from app.core.logging_config import get_logger
from app.services.ai_client import AIClient
from app.services.ai_features import AIFeatureService
from app.services.events import EventSink, default_event_sink
from app.services.reconciliation import ReconciliationPolicy

logger = get_logger(__name__)

BEARER_PREFIX = "Bearer "


def get_breaker_registry(request: Request) -> CircuitBreakerRegistry:
    """The per-process registry created in the app lifespan."""
    registry = getattr(request.app.state, "breaker_registry", None)
    if registry is None:
        registry = CircuitBreakerRegistry.from_settings(settings)
        request.app.state.breaker_registry = registry
    return registry


@lru_cache
def get_ai_client() -> AIClient:
    return AIClient()


def get_ai_features(
    client: AIClient = Depends(get_ai_client),
    registry: CircuitBreakerRegistry = Depends(get_breaker_registry),
) -> AIFeatureService:
    return AIFeatureService(client, registry)


def get_event_sink() -> EventSink:
    return default_event_sink()


def get_reconciliation_policy() -> ReconciliationPolicy:
    return ReconciliationPolicy.from_settings(settings)


def get_cron_secret() -> str:
    return settings.CRON_SECRET


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    secret: str = Depends(get_cron_secret),
) -> None:
    """
    Require `Authorization: Bearer <CRON_SECRET>`.

    An unset CRON_SECRET rejects everything rather than allowing everything.
    """
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not secret:
        logger.warning("cron trigger rejected: CRON_SECRET not configured")
        raise unauthorized
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise unauthorized

    token = authorization[len(BEARER_PREFIX):]
    if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("cron trigger rejected: secret mismatch")
        raise unauthorized
