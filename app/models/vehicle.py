from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from app.core.typing import utc_now

# Listing statuses eligible for nightly re-scoring
ACTIVE_VEHICLE_STATUSES = ("AVAILABLE", "RESERVED")


class Vehicle(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    dealer_profile_id: str = Field(index=True)

    name: str
    brand: Optional[str] = Field(default=None, index=True)
    category: Optional[str] = None  # SUV, Sedan, Hatchback, ...
    year: int
    km: str = Field(default="0")  # As entered by the dealer, e.g. "45,000"
    fuel: Optional[str] = None
    transmission: Optional[str] = None
    owner: Optional[str] = None  # "1st Owner", "2nd Owner", ...
    condition: Optional[str] = None  # Excellent, Good, Fair
    location: Optional[str] = None
    price: Optional[float] = None  # Rupees
    description: Optional[str] = None

    status: str = Field(default="AVAILABLE", index=True)
    ai_score: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now, index=True)
