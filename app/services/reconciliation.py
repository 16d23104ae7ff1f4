"""
Nightly reconciliation of stale derived data.

Re-scores vehicles whose quality score is missing or stale and re-labels
cooled-off NEW leads, using the deterministic fallback calculators only. The
live AI provider is never called here, so a run always completes within the
time its batch caps allow.

Each item is processed inside its own failure boundary: a bad record bumps
`items_failed` and the loop moves on. Audit events and activity notes are
best-effort and never count as item failures.
"""

from collections import Counter
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import uuid

import structlog
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.errors import ErrorHandler, PersistenceFailure
from app.core.logging_config import get_logger
from app.core.typing import col, utc_now
from app.models.lead import Lead, LeadMessage
from app.models.vehicle import ACTIVE_VEHICLE_STATUSES, Vehicle
from app.services.events import EventSink
from app.services.fallback import ScoringInput, score_from_input, sentiment_fallback
from app.services.intent_signals import extract_intent_signals

logger = get_logger(__name__)

JOB_NAME = "nightly-scoring"
EVENT_SOURCE = "CRON"
ACTIVITY_TITLE = "Nightly AI Scoring"


@dataclass(frozen=True)
class ReconciliationPolicy:
    vehicle_stale_days: int = 7
    lead_stale_hours: int = 48
    vehicle_batch_size: int = 50
    lead_batch_size: int = 30

    @classmethod
    def from_settings(cls, settings: Any) -> "ReconciliationPolicy":
        return cls(
            vehicle_stale_days=settings.RECONCILE_VEHICLE_STALE_DAYS,
            lead_stale_hours=settings.RECONCILE_LEAD_STALE_HOURS,
            vehicle_batch_size=settings.RECONCILE_VEHICLE_BATCH_SIZE,
            lead_batch_size=settings.RECONCILE_LEAD_BATCH_SIZE,
        )


@dataclass
class ReconciliationOutcome:
    started_at: datetime
    finished_at: Optional[datetime] = None
    items_scanned: int = 0
    items_updated: int = 0
    items_failed: int = 0
    vehicles_scored: int = 0
    leads_analyzed: int = 0
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        data["duration_seconds"] = self.duration_seconds
        return data


class EntityStore:
    """SQLModel-backed reads and writes for the entities the job reconciles."""

    def __init__(self, session: Session):
        self.session = session

    def stale_vehicles(self, cutoff: datetime, limit: int) -> List[Vehicle]:
        statement = (
            select(Vehicle)
            .where(col(Vehicle.status).in_(ACTIVE_VEHICLE_STATUSES))
            .where(or_(col(Vehicle.ai_score).is_(None), col(Vehicle.updated_at) < cutoff))
            .order_by(col(Vehicle.id).asc())
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def stale_leads(self, cutoff: datetime, limit: int) -> List[Lead]:
        statement = (
            select(Lead)
            .where(Lead.status == "NEW")
            .where(Lead.sentiment_label == "COOL")
            .where(Lead.sentiment == 0)
            .where(col(Lead.created_at) < cutoff)
            .order_by(col(Lead.id).asc())
            .limit(limit)
        )
        return list(self.session.exec(statement).all())

    def lead_messages(self, lead_id: int) -> List[LeadMessage]:
        statement = (
            select(LeadMessage)
            .where(LeadMessage.lead_id == lead_id)
            .order_by(col(LeadMessage.created_at).asc(), col(LeadMessage.id).asc())
        )
        return list(self.session.exec(statement).all())

    def save_vehicle_score(self, vehicle: Vehicle, score: int, now: datetime) -> None:
        vehicle.ai_score = score
        vehicle.updated_at = now
        self.session.add(vehicle)
        self.session.commit()

    def save_lead_sentiment(self, lead: Lead, label: str, confidence: int, now: datetime) -> None:
        lead.sentiment_label = label
        lead.sentiment = confidence
        lead.updated_at = now
        self.session.add(lead)
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class ReconciliationJob:
    """
    One serial pass over stale vehicles, then stale leads.

    Usage:
        with Session(engine) as session:
            job = ReconciliationJob(EntityStore(session), default_event_sink())
            outcome = job.run()
    """

    def __init__(
        self,
        store: EntityStore,
        events: EventSink,
        policy: Optional[ReconciliationPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.events = events
        self.policy = policy or ReconciliationPolicy()
        self.clock = clock

    def run(self) -> ReconciliationOutcome:
        """
        Raises:
            PersistenceFailure: both selection queries failed, nothing was processed
        """
        now = self.clock()
        outcome = ReconciliationOutcome(started_at=now)
        touched_dealers: Counter = Counter()
        structlog.contextvars.bind_contextvars(job=JOB_NAME, run_id=outcome.run_id)

        try:
            logger.info("reconciliation started", policy=asdict(self.policy))

            vehicles = self._select(
                "vehicles",
                lambda: self.store.stale_vehicles(
                    now - timedelta(days=self.policy.vehicle_stale_days), self.policy.vehicle_batch_size
                ),
            )
            leads = self._select(
                "leads",
                lambda: self.store.stale_leads(
                    now - timedelta(hours=self.policy.lead_stale_hours), self.policy.lead_batch_size
                ),
            )
            if vehicles is None and leads is None:
                raise PersistenceFailure("Could not select stale entities")

            for vehicle in vehicles or []:
                outcome.items_scanned += 1
                dealer_id = self._process_item("vehicle", vehicle, self._rescore_vehicle, outcome)
                if dealer_id is not None:
                    outcome.vehicles_scored += 1
                    touched_dealers[(dealer_id, "vehicles")] += 1

            for lead in leads or []:
                outcome.items_scanned += 1
                dealer_id = self._process_item("lead", lead, self._reanalyze_lead, outcome)
                if dealer_id is not None:
                    outcome.leads_analyzed += 1
                    touched_dealers[(dealer_id, "leads")] += 1

            outcome.finished_at = self.clock()
            self._write_activity_notes(touched_dealers)
            self.events.emit(
                "RECONCILIATION_COMPLETED",
                "Job",
                JOB_NAME,
                metadata={**outcome.to_dict(), "source": EVENT_SOURCE},
            )
            logger.info(
                "reconciliation finished",
                items_scanned=outcome.items_scanned,
                items_updated=outcome.items_updated,
                items_failed=outcome.items_failed,
                duration_seconds=outcome.duration_seconds,
            )
            return outcome
        finally:
            structlog.contextvars.unbind_contextvars("job", "run_id")

    def _select(self, kind: str, query: Callable[[], List[Any]]) -> Optional[List[Any]]:
        try:
            return query()
        except SQLAlchemyError as e:
            logger.error("stale selection failed", kind=kind, error=str(e))
            self.store.rollback()
            return None

    def _process_item(
        self,
        kind: str,
        item: Any,
        process: Callable[[Any], str],
        outcome: ReconciliationOutcome,
    ) -> Optional[str]:
        """Run one item in its own failure boundary. Returns the owning dealer on success."""
        item_id = getattr(item, "id", None)
        dealer_id: Optional[str] = None
        with ErrorHandler(f"reconcile_{kind}", context={"item_id": item_id}, level="warning") as handler:
            dealer_id = process(item)

        if handler.failed:
            outcome.items_failed += 1
            try:
                self.store.rollback()
            except SQLAlchemyError as e:
                logger.error("rollback after item failure failed", kind=kind, item_id=item_id, error=str(e))
            return None

        outcome.items_updated += 1
        return dealer_id

    def _rescore_vehicle(self, vehicle: Vehicle) -> str:
        now = self.clock()
        vehicle_id = vehicle.id
        dealer_id = vehicle.dealer_profile_id
        previous_score = vehicle.ai_score
        new_score = score_from_input(ScoringInput.from_entity(vehicle), current_year=now.year)

        self.store.save_vehicle_score(vehicle, new_score, now)

        self.events.emit(
            "VEHICLE_SCORED",
            "Vehicle",
            vehicle_id,
            dealer_profile_id=dealer_id,
            metadata={"previous_score": previous_score, "new_score": new_score, "source": EVENT_SOURCE},
        )
        return dealer_id

    def _reanalyze_lead(self, lead: Lead) -> str:
        now = self.clock()
        lead_id = lead.id
        dealer_id = lead.dealer_profile_id
        previous_label = lead.sentiment_label

        messages = self.store.lead_messages(lead_id)
        sentiment = sentiment_fallback(len(messages))
        intent = extract_intent_signals(messages)

        self.store.save_lead_sentiment(lead, sentiment.sentiment, sentiment.confidence, now)

        self.events.emit(
            "SENTIMENT_ANALYZED",
            "Lead",
            lead_id,
            dealer_profile_id=dealer_id,
            metadata={
                "previous_label": previous_label,
                "label": sentiment.sentiment,
                "confidence": sentiment.confidence,
                "buyer_readiness": intent.buyer_readiness,
                "source": EVENT_SOURCE,
            },
        )
        return dealer_id

    def _write_activity_notes(self, touched: Counter) -> None:
        dealers = sorted({dealer_id for dealer_id, _ in touched})
        for dealer_id in dealers:
            vehicles = touched[(dealer_id, "vehicles")]
            leads = touched[(dealer_id, "leads")]
            self.events.record_activity(
                dealer_id,
                ACTIVITY_TITLE,
                f"Scored {vehicles} vehicles, analyzed {leads} leads",
            )


def run_reconciliation(session: Session, events: EventSink, policy: ReconciliationPolicy) -> ReconciliationOutcome:
    return ReconciliationJob(EntityStore(session), events, policy).run()
