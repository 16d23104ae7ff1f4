from fastapi import APIRouter, Depends

from app.api import deps
from app.core.circuit_breaker import CircuitBreakerRegistry, expires_at
from app.schemas import CircuitStatusListOut

router = APIRouter()


@router.get("/circuit-breakers", response_model=CircuitStatusListOut)
def get_circuit_breakers(
    registry: CircuitBreakerRegistry = Depends(deps.get_breaker_registry),
):
    """
    Current circuit state and failure count per AI service.

    For dashboards only. Each API process reports its own view.
    """
    services = {}
    for name, status in registry.status_of_all().items():
        retry_at = expires_at(registry.get(name))
        services[name] = {**status, "retry_at": retry_at.isoformat() if retry_at else None}
    return {"services": services}
