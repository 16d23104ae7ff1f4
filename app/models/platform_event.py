"""
Append-only audit trail and dealer-facing activity notes.

Tables:
- platform_event: one row per automated change (scores, sentiment, job runs)
- activity: human-readable notes shown on the dealer dashboard
"""

from datetime import datetime
from typing import Optional, Any
from sqlmodel import Field, SQLModel, Column
from sqlalchemy import JSON

from app.core.typing import utc_now

__all__ = [
    "PlatformEvent",
    "Activity",
]


class PlatformEvent(SQLModel, table=True):
    """
    Audit event for an automated change.

    Example:
        PlatformEvent(
            type="VEHICLE_SCORED",
            entity_type="Vehicle",
            entity_id="42",
            event_metadata={"previous_score": None, "new_score": 85, "source": "CRON"},
        )
    """

    __tablename__ = "platform_event"

    id: Optional[int] = Field(default=None, primary_key=True)
    type: str = Field(max_length=50, index=True)
    entity_type: str = Field(max_length=50)
    entity_id: str = Field(max_length=64, index=True)
    dealer_profile_id: Optional[str] = Field(default=None, index=True)
    event_metadata: Optional[dict[str, Any]] = Field(
        default=None,
        sa_column=Column("metadata", JSON),
    )
    created_at: datetime = Field(default_factory=utc_now, nullable=False)


class Activity(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    dealer_profile_id: str = Field(index=True)
    title: str = Field(max_length=120)
    description: str = Field(max_length=500)
    type: str = Field(default="AUTO", max_length=20)
    created_at: datetime = Field(default_factory=utc_now, nullable=False)
