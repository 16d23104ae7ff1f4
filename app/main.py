from contextlib import asynccontextmanager
from typing import Any, cast

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import admin, ai, cron, leads
from app.core.circuit_breaker import CircuitBreakerRegistry
from app.core.config import settings
from app.core.errors import AutovinciError, capture_message, init_sentry
from app.core.logging_config import get_logger
from app.core.scheduler import start_scheduler, stop_scheduler
from app.db import create_db_and_tables

logger = get_logger(__name__)


def report_circuit_change(service: str, old_state: str, new_state: str) -> None:
    if new_state == "OPEN":
        capture_message(
            "AI circuit opened",
            level="warning",
            context={"service": service, "previous_state": old_state},
            tags={"service": service},
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Autovinci AI API starting", environment=settings.ENVIRONMENT)
    create_db_and_tables()
    init_sentry(settings.SENTRY_DSN, environment=settings.ENVIRONMENT)

    # One breaker registry per process, shared by every request
    app.state.breaker_registry = CircuitBreakerRegistry.from_settings(settings, on_state_change=report_circuit_change)

    if settings.RUN_SCHEDULER:
        start_scheduler()
    else:
        logger.info("RUN_SCHEDULER is false, nightly reconciliation relies on the external cron")

    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json", lifespan=lifespan)

app.add_middleware(
    cast(Any, CORSMiddleware),
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AutovinciError)
async def autovinci_error_handler(request: Request, exc: AutovinciError):
    if exc.status_code >= 500:
        logger.error("request failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(cron.router, prefix=f"{settings.API_V1_STR}/cron", tags=["cron"])
app.include_router(admin.router, prefix=f"{settings.API_V1_STR}/admin", tags=["admin"])
app.include_router(ai.router, prefix=f"{settings.API_V1_STR}/ai", tags=["ai"])
app.include_router(leads.router, prefix=f"{settings.API_V1_STR}/leads", tags=["leads"])


@app.get("/health")
def health():
    """Basic health check endpoint."""
    return {"status": "healthy"}
