from typing import Dict

from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    PROJECT_NAME: str = "Autovinci AI Resilience"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"

    DATABASE_URL: str = "sqlite:///./autovinci.db"

    # OpenAI-compatible provider (empty key = fallback-only mode)
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MODEL: str = "gpt-4o-mini"
    AI_REQUEST_TIMEOUT_SECONDS: float = 15.0

    # Circuit breaker defaults, overridable per service via CIRCUIT_OVERRIDES, e.g.
    # {"replicate": {"failure_threshold": 5, "reset_timeout": 60}}
    CIRCUIT_FAILURE_THRESHOLD: int = 3
    CIRCUIT_RESET_TIMEOUT_SECONDS: float = 30.0
    CIRCUIT_FAILURE_WINDOW_SECONDS: float = 300.0
    CIRCUIT_OVERRIDES: Dict[str, Dict[str, float]] = {}

    # Shared secret for the external scheduler (Authorization: Bearer <secret>)
    CRON_SECRET: str = ""

    # Nightly reconciliation
    RECONCILE_VEHICLE_STALE_DAYS: int = 7
    RECONCILE_LEAD_STALE_HOURS: int = 48
    RECONCILE_VEHICLE_BATCH_SIZE: int = 50
    RECONCILE_LEAD_BATCH_SIZE: int = 30

    # In-process scheduler (off by default; the external cron hits the HTTP trigger)
    RUN_SCHEDULER: bool = False
    RECONCILE_CRON_HOUR: int = 20  # 20:30 UTC = 02:00 IST
    RECONCILE_CRON_MINUTE: int = 30

    SENTRY_DSN: str = ""

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra="ignore")


settings = Settings()
