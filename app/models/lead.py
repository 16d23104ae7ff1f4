from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from app.core.typing import utc_now


class Lead(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    dealer_profile_id: str = Field(index=True)
    vehicle_id: Optional[int] = Field(default=None, foreign_key="vehicle.id")

    buyer_name: str
    message: Optional[str] = None  # Initial inquiry text
    source: str = Field(default="MARKETPLACE")
    budget: Optional[str] = None
    status: str = Field(default="NEW", index=True)  # NEW, CONTACTED, NEGOTIATING, CLOSED, LOST

    sentiment_label: str = Field(default="COOL", index=True)  # HOT, WARM, COOL
    sentiment: int = Field(default=0)  # Confidence 0-100, 0 = never evaluated

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: datetime = Field(default_factory=utc_now)


class LeadMessage(SQLModel, table=True):
    __tablename__ = "lead_message"

    id: Optional[int] = Field(default=None, primary_key=True)
    lead_id: int = Field(foreign_key="lead.id", index=True)
    role: str = Field(default="USER")  # USER (buyer), DEALER, AI, SYSTEM
    text: str
    created_at: datetime = Field(default_factory=utc_now)
