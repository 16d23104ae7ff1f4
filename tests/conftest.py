"""
Test fixtures for the AI resilience layer tests.

Provides database session fixtures, a controllable clock, and sample
vehicles/leads.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Generator, List
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from app.models.lead import Lead, LeadMessage
from app.models.vehicle import Vehicle
from app.services.events import EventSink


# Use in-memory SQLite for unit tests (fast, isolated)
TEST_DATABASE_URL = "sqlite:///:memory:"

# Fixed "now" for tests that depend on staleness cutoffs
NOW = datetime(2026, 3, 1, 20, 30, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for breaker and job tests."""

    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, seconds: float) -> None:
        """Move to `seconds` after the start time."""
        self.now = NOW + timedelta(seconds=seconds)

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def test_engine():
    """Create a test database engine with in-memory SQLite."""
    import app.models  # noqa: F401  (register tables)

    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def test_session(test_engine) -> Generator[Session, None, None]:
    """Provide a test database session."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def event_sink(test_engine) -> EventSink:
    """Event sink writing to the test database."""
    return EventSink(lambda: Session(test_engine))


def naive(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way in
    return value.replace(tzinfo=None)


@pytest.fixture
def sample_vehicles(test_session: Session) -> List[Vehicle]:
    """
    Mix of vehicles that should and should not be picked up for re-scoring
    at NOW.
    """
    fresh = naive(NOW - timedelta(days=1))
    stale = naive(NOW - timedelta(days=10))
    vehicles = [
        # 1: never scored -> selected
        Vehicle(id=1, dealer_profile_id="dealer_a", name="Toyota Innova", brand="Toyota",
                year=2022, km="45,000", owner="1st Owner", status="AVAILABLE",
                ai_score=None, updated_at=fresh),
        # 2: scored long ago -> selected
        Vehicle(id=2, dealer_profile_id="dealer_a", name="Honda City", brand="Honda",
                year=2019, km="90,000", owner="2nd Owner", status="RESERVED",
                ai_score=55, updated_at=stale),
        # 3: scored recently -> skipped
        Vehicle(id=3, dealer_profile_id="dealer_b", name="Hyundai Creta", brand="Hyundai",
                year=2023, km="12,000", owner="1st Owner", status="AVAILABLE",
                ai_score=88, updated_at=fresh),
        # 4: sold -> skipped even though unscored
        Vehicle(id=4, dealer_profile_id="dealer_b", name="Maruti Swift", brand="Maruti",
                year=2018, km="70,000", owner="1st Owner", status="SOLD",
                ai_score=None, updated_at=stale),
    ]
    for vehicle in vehicles:
        test_session.add(vehicle)
    test_session.commit()
    return vehicles


@pytest.fixture
def sample_leads(test_session: Session, sample_vehicles) -> List[Lead]:
    """Leads around the 48h staleness cutoff, with a short conversation on lead 1."""
    old = naive(NOW - timedelta(hours=72))
    recent = naive(NOW - timedelta(hours=2))
    leads = [
        # 1: old, never evaluated, COOL -> selected
        Lead(id=1, dealer_profile_id="dealer_a", vehicle_id=1, buyer_name="Rahul",
             status="NEW", sentiment_label="COOL", sentiment=0, created_at=old),
        # 2: too recent -> skipped
        Lead(id=2, dealer_profile_id="dealer_b", vehicle_id=3, buyer_name="Priya",
             status="NEW", sentiment_label="COOL", sentiment=0, created_at=recent),
        # 3: already evaluated -> skipped
        Lead(id=3, dealer_profile_id="dealer_b", vehicle_id=3, buyer_name="Amit",
             status="NEW", sentiment_label="COOL", sentiment=60, created_at=old),
        # 4: already contacted -> skipped
        Lead(id=4, dealer_profile_id="dealer_a", vehicle_id=2, buyer_name="Sneha",
             status="CONTACTED", sentiment_label="COOL", sentiment=0, created_at=old),
    ]
    for lead in leads:
        test_session.add(lead)
    test_session.commit()

    texts = [
        ("USER", "Is the price negotiable? What is your best price?"),
        ("DEALER", "We can do a small discount."),
        ("USER", "Can I book a test drive this weekend? I need it urgently."),
    ]
    for i, (role, text) in enumerate(texts):
        test_session.add(
            LeadMessage(lead_id=1, role=role, text=text, created_at=old + timedelta(minutes=i))
        )
    test_session.commit()
    return leads
