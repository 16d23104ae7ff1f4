"""
AI-backed marketplace features with deterministic fallbacks.

Each feature follows the same path:

1. Provider not configured -> fallback, breaker untouched.
2. Breaker refuses the call -> fallback.
3. Live call fails or returns the wrong shape -> failure recorded, fallback.
4. Otherwise -> live result, success recorded.

Results always carry `generated` (True only for live output) and otherwise
have the same shape on both paths.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
import math
import re

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.circuit_breaker import CIRCUIT_REFUSED, CircuitBreakerRegistry
from app.core.errors import PersistenceFailure, TransientProviderFailure, ValidationFailure
from app.core.logging_config import get_logger
from app.core.typing import col, utc_now
from app.models.lead import Lead, LeadMessage
from app.models.vehicle import Vehicle
from app.services.ai_client import AIClient, PROVIDER_SERVICE
from app.services.events import EventSink
from app.services.fallback import (
    SENTIMENT_LABELS,
    ScoringInput,
    SentimentResult,
    ValuationFactor,
    ValuationResult,
    description_fallback,
    format_price_display,
    score_from_input,
    sentiment_fallback,
    valuation_fallback,
)

logger = get_logger(__name__)

T = TypeVar("T")

# Messages passed to the sentiment prompt
SENTIMENT_HISTORY_LIMIT = 20

_IMPACT_RE = re.compile(r"([+-]?\d+(?:\.\d+)?)")


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TransientProviderFailure(f"AI response field '{key}' is missing or not numeric")
    # json.loads accepts NaN and Infinity
    if not math.isfinite(value):
        raise TransientProviderFailure(f"AI response field '{key}' is not a finite number")
    return float(value)


def valuation_from_payload(payload: Dict[str, Any]) -> ValuationResult:
    """Validate a live valuation payload into the fallback's result shape."""
    raw_factors = payload.get("factors") or []
    if not isinstance(raw_factors, list):
        raise TransientProviderFailure("AI response field 'factors' is not a list")

    factors = []
    for raw in raw_factors:
        if not isinstance(raw, dict) or "name" not in raw:
            continue
        impact = str(raw.get("impact", "0"))
        match = _IMPACT_RE.search(impact)
        amount = float(match.group(1)) if match else 0.0
        factors.append(ValuationFactor(str(raw["name"]), amount, bool(raw.get("positive", amount >= 0))))

    demand = payload.get("market_demand")
    if demand not in ("High", "Medium", "Low"):
        raise TransientProviderFailure("AI response has an invalid market_demand")

    return ValuationResult(
        estimated_price=_require_number(payload, "estimated_price"),
        low=_require_number(payload, "low"),
        high=_require_number(payload, "high"),
        market_low=_require_number(payload, "market_low"),
        market_high=_require_number(payload, "market_high"),
        offer=_require_number(payload, "offer"),
        depreciation_rate=int(_require_number(payload, "depreciation_rate")),
        market_demand=demand,
        factors=factors,
    )


def sentiment_from_payload(payload: Dict[str, Any]) -> SentimentResult:
    label = payload.get("sentiment")
    if label not in SENTIMENT_LABELS:
        raise TransientProviderFailure("AI response has an invalid sentiment label")
    confidence = int(_require_number(payload, "confidence"))
    if not 0 <= confidence <= 100:
        raise TransientProviderFailure("AI response confidence out of range")
    return SentimentResult(
        sentiment=label,
        confidence=confidence,
        reasoning=str(payload.get("reasoning") or ""),
        suggested_action=str(payload.get("suggested_action") or ""),
    )


class AIFeatureService:
    """Live-or-fallback entry points for every AI-backed capability."""

    def __init__(
        self,
        client: AIClient,
        registry: CircuitBreakerRegistry,
        clock: Callable[[], datetime] = utc_now,
        service: str = PROVIDER_SERVICE,
    ):
        self.client = client
        self.registry = registry
        self.clock = clock
        self.service = service

    @property
    def current_year(self) -> int:
        return self.clock().year

    def _live_or_fallback(self, feature: str, live: Callable[[], T], fallback: Callable[[], T]) -> Tuple[T, bool]:
        if not self.client.configured:
            logger.debug("AI provider not configured, using fallback", feature=feature)
            return fallback(), False

        try:
            result = self.registry.with_breaker(self.service, live, refused=CIRCUIT_REFUSED)
        except TransientProviderFailure as e:
            logger.warning("AI call failed, using fallback", feature=feature, error=e.message)
            return fallback(), False

        if result is CIRCUIT_REFUSED:
            logger.info("AI circuit open, using fallback", feature=feature)
            return fallback(), False
        return result, True

    # -------------------------------------------------------------------------
    # Valuation
    # -------------------------------------------------------------------------

    def estimate_valuation(
        self,
        brand: str,
        model: str,
        year: Any,
        km: Any = None,
        fuel: Optional[str] = None,
        transmission: Optional[str] = None,
        owner: Optional[str] = None,
        city: Optional[str] = None,
        condition: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not brand or not model or not year:
            raise ValidationFailure("Brand, model, and year are required")

        def live() -> ValuationResult:
            prompt = (
                "You are an Indian used car market analyst. Value this car in Lakh INR and respond ONLY with "
                "a JSON object with keys estimated_price, low, high, market_low, market_high, offer, "
                "depreciation_rate, market_demand (High|Medium|Low) and factors "
                "([{name, impact like \"+0.5L\", positive}]).\n"
                f"Brand: {brand}\nModel: {model}\nYear: {year}\nKM Driven: {km or '30,000'}\n"
                f"Fuel: {fuel or 'Petrol'}\nTransmission: {transmission or 'Manual'}\n"
                f"Owner: {owner or '1st Owner'}\nCity: {city or 'Delhi'}\nCondition: {condition or 'Good'}"
            )
            payload = self.client.complete_json(
                [{"role": "user", "content": prompt}], max_tokens=400, temperature=0.3
            )
            return valuation_from_payload(payload)

        def fallback() -> ValuationResult:
            return valuation_fallback(brand, year, km, condition, city or "", current_year=self.current_year)

        result, generated = self._live_or_fallback("valuation", live, fallback)
        return {**result.to_dict(), "generated": generated}

    # -------------------------------------------------------------------------
    # Marketing description
    # -------------------------------------------------------------------------

    def write_description(self, vehicle: Dict[str, Any]) -> Dict[str, Any]:
        name = vehicle.get("name")
        if not name:
            raise ValidationFailure("Vehicle name is required")

        price_display = format_price_display(vehicle.get("price"))
        features = vehicle.get("features") or []
        feature_list = ", ".join(
            str(f.get("label")) for f in features if isinstance(f, dict) and f.get("available")
        )

        def live() -> str:
            details = "\n".join(
                f"- {label}: {value}"
                for label, value in (
                    ("Name", name),
                    ("Year", vehicle.get("year")),
                    ("Category", vehicle.get("category") or "Car"),
                    ("Odometer", f"{vehicle.get('km')} km"),
                    ("Price", price_display),
                    ("Fuel", vehicle.get("fuel")),
                    ("Transmission", vehicle.get("transmission")),
                    ("Owner", vehicle.get("owner") or "1st owner"),
                    ("Location", vehicle.get("location")),
                    ("Key Features", feature_list or None),
                )
                if value
            )
            prompt = (
                "Write a premium 3-4 sentence marketing description for this used car listing, "
                "third person, no bullet points, no preamble.\n" + details
            )
            return self.client.complete([{"role": "user", "content": prompt}], max_tokens=200, temperature=0.75)

        def fallback() -> str:
            return description_fallback(
                name=str(name),
                year=vehicle.get("year"),
                km=vehicle.get("km") or "0",
                price_display=price_display,
                fuel=vehicle.get("fuel"),
                transmission=vehicle.get("transmission"),
                location=vehicle.get("location"),
                owner=vehicle.get("owner"),
            )

        description, generated = self._live_or_fallback("description", live, fallback)
        return {"description": description, "generated": generated}

    # -------------------------------------------------------------------------
    # Vehicle quality score
    # -------------------------------------------------------------------------

    def score_vehicle(self, scoring_input: ScoringInput) -> Dict[str, Any]:
        def live() -> int:
            prompt = (
                "Rate this used car listing's quality from 0 to 100. Respond with JSON {\"score\": <int>}.\n"
                f"Year: {scoring_input.year}\nKM: {scoring_input.km}\nOwner: {scoring_input.owner}\n"
                f"Condition: {scoring_input.condition}\nCategory: {scoring_input.category}\n"
                f"Brand: {scoring_input.brand}\nCity: {scoring_input.city}"
            )
            payload = self.client.complete_json(
                [{"role": "user", "content": prompt}], max_tokens=50, temperature=0.2, json_mode=True
            )
            score = int(_require_number(payload, "score"))
            if not 0 <= score <= 100:
                raise TransientProviderFailure("AI score out of range")
            return score

        def fallback() -> int:
            return score_from_input(scoring_input, current_year=self.current_year)

        score, generated = self._live_or_fallback("quality_score", live, fallback)
        return {"score": score, "generated": generated}

    # -------------------------------------------------------------------------
    # Lead sentiment
    # -------------------------------------------------------------------------

    def analyze_sentiment(
        self,
        lead: Lead,
        messages: Sequence[LeadMessage],
        vehicle: Optional[Vehicle] = None,
    ) -> Dict[str, Any]:
        def live() -> SentimentResult:
            history = "\n".join(
                f"[{'AI' if m.role == 'AI' else 'Buyer' if m.role == 'USER' else 'Dealer'}]: {m.text}"
                for m in messages[:SENTIMENT_HISTORY_LIMIT]
            )
            prompt = (
                "Classify this car buyer lead as HOT (buying within 7 days), WARM (interested, comparing) "
                "or COOL (early research). Respond with JSON {\"sentiment\", \"confidence\" 0-100, "
                "\"reasoning\", \"suggested_action\"}.\n"
                f"Buyer: {lead.buyer_name}\nSource: {lead.source}\n"
                f"Vehicle: {vehicle.name if vehicle else 'General inquiry'}\nBudget: {lead.budget or 'Not specified'}\n"
                f"Status: {lead.status}\nMessages exchanged: {len(messages)}\n"
                f"Conversation:\n{history or '(No messages yet)'}"
            )
            payload = self.client.complete_json(
                [{"role": "user", "content": prompt}], max_tokens=200, temperature=0.3, json_mode=True
            )
            return sentiment_from_payload(payload)

        def fallback() -> SentimentResult:
            return sentiment_fallback(len(messages))

        result, generated = self._live_or_fallback("sentiment", live, fallback)
        return {**result.to_dict(), "generated": generated}


def load_lead_conversation(session: Session, lead_id: int) -> Tuple[Optional[Lead], List[LeadMessage]]:
    """Fetch a lead and its messages (oldest first)."""
    try:
        lead = session.get(Lead, lead_id)
        if lead is None:
            return None, []
        messages = list(
            session.exec(
                select(LeadMessage)
                .where(LeadMessage.lead_id == lead_id)
                .order_by(col(LeadMessage.created_at).asc(), col(LeadMessage.id).asc())
            ).all()
        )
    except SQLAlchemyError as e:
        raise PersistenceFailure("Failed to load lead conversation", details={"lead_id": lead_id}) from e
    return lead, messages


def analyze_and_store_sentiment(
    session: Session,
    features: AIFeatureService,
    events: EventSink,
    lead_id: int,
) -> Optional[Dict[str, Any]]:
    """
    On-demand sentiment analysis for one lead: analyze, persist the label,
    emit SENTIMENT_ANALYZED. Returns None if the lead does not exist.
    """
    lead, messages = load_lead_conversation(session, lead_id)
    if lead is None:
        return None

    vehicle = session.get(Vehicle, lead.vehicle_id) if lead.vehicle_id else None
    result = features.analyze_sentiment(lead, messages, vehicle)
    previous_label = lead.sentiment_label

    try:
        lead.sentiment_label = result["sentiment"]
        lead.sentiment = result["confidence"]
        lead.updated_at = utc_now()
        session.add(lead)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise PersistenceFailure("Failed to store lead sentiment", details={"lead_id": lead_id}) from e

    events.emit(
        "SENTIMENT_ANALYZED",
        "Lead",
        lead_id,
        dealer_profile_id=lead.dealer_profile_id,
        metadata={
            "previous_label": previous_label,
            "label": result["sentiment"],
            "confidence": result["confidence"],
            "source": "AI" if result["generated"] else "RULE",
        },
    )
    return result
