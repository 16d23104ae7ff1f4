"""
Deterministic fallback calculators.

Substitutes for AI-generated valuations, marketing descriptions, vehicle
quality scores and lead sentiment labels. Every function here is a pure
function of its arguments (the reference year is passed in explicitly), so the
live request path and the nightly reconciliation job can both call them
without touching the network or the circuit breaker.

Prices are in Lakh INR (1 Lakh = 100,000).
"""

from dataclasses import dataclass, field, asdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Union
import re

from app.core.errors import ValidationFailure

# Base resale value (Lakh) for a near-new car of each brand
BRAND_BASE_VALUES: Dict[str, float] = {
    "Maruti Suzuki": 4.8,
    "Hyundai": 5.5,
    "Tata": 5.2,
    "Mahindra": 6.0,
    "Honda": 5.8,
    "Toyota": 7.2,
    "Kia": 6.5,
    "Ford": 4.5,
    "Volkswagen": 5.0,
    "MG": 7.0,
    "Renault": 3.8,
    "Nissan": 3.5,
}
DEFAULT_BRAND_BASE = 5.0
PREMIUM_BRAND_THRESHOLD = 5.5

# (max age in years, remaining value multiplier), checked in order
DEPRECIATION_SCHEDULE = [
    (1, 0.85),
    (3, 0.70),
    (5, 0.55),
    (8, 0.40),
]
DEPRECIATION_FLOOR = 0.30

# (km above which the penalty applies, multiplier); penalties stack
DISTANCE_PENALTIES = [
    (50_000, 0.92),
    (100_000, 0.85),
]

CONDITION_MULTIPLIERS = {
    "excellent": 1.05,
    "fair": 0.90,
}

METRO_CITIES = ("delhi", "mumbai", "bangalore", "bengaluru", "hyderabad", "pune", "chennai")
METRO_PREMIUM = 1.03

MIN_VALUATION = 0.5
DEFAULT_MODEL_YEAR = 2020
DEFAULT_KM = 30_000

NARROW_BAND = 0.07
MARKET_BAND = 0.10
OFFER_PREMIUM = 0.02

# Demand label thresholds on the central estimate (Lakh)
HIGH_DEMAND_ABOVE = 6.0
MEDIUM_DEMAND_ABOVE = 3.0

# Quality score
QUALITY_BASE_SCORE = 70
RECENT_MODEL_YEARS = 3

# Sentiment tiers by number of exchanged messages
HOT_MIN_MESSAGES = 5
WARM_MIN_MESSAGES = 2
FALLBACK_SENTIMENT_CONFIDENCE = 60

SENTIMENT_LABELS = ("HOT", "WARM", "COOL")

SUGGESTED_ACTIONS = {
    "HOT": "Schedule a test drive immediately.",
    "WARM": "Follow up with a personalized offer.",
    "COOL": "Send an introductory message with top picks.",
}

Number = Union[int, float]


def round1(value: float) -> float:
    """Round to one decimal, half away from zero (matches displayed prices)."""
    return float(Decimal(repr(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def parse_km(value: Union[str, Number, None]) -> Optional[int]:
    """Parse an odometer value like "45,000" or 45000. None if unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = re.match(r"\s*(-?\d+)", str(value).replace(",", ""))
    return int(match.group(1)) if match else None


def parse_year(value: Union[str, int, None], default: int = DEFAULT_MODEL_YEAR) -> int:
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value or default
    match = re.match(r"\s*(\d+)", str(value))
    return int(match.group(1)) if match and int(match.group(1)) else default


def is_first_owner(owner: Union[str, int, None]) -> bool:
    if isinstance(owner, bool) or owner is None:
        return False
    if isinstance(owner, int):
        return owner == 1
    return owner.strip().lower() in ("1st owner", "first owner", "1")


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailure(f"{name} is required", details={"field": name})
    return value.strip()


# =============================================================================
# Scoring input
# =============================================================================


@dataclass(frozen=True)
class ScoringInput:
    """Read-only view of the attributes the calculators look at."""

    year: Union[str, int, None] = None
    km: Union[str, Number, None] = None
    owner: Union[str, int, None] = None
    condition: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    city: Optional[str] = None

    @classmethod
    def from_entity(cls, entity: Any) -> "ScoringInput":
        """Build from any object exposing the vehicle attribute names."""
        return cls(
            year=getattr(entity, "year", None),
            km=getattr(entity, "km", None),
            owner=getattr(entity, "owner", None),
            condition=getattr(entity, "condition", None),
            category=getattr(entity, "category", None),
            brand=getattr(entity, "brand", None),
            city=getattr(entity, "location", None) or getattr(entity, "city", None),
        )


# =============================================================================
# Valuation
# =============================================================================


@dataclass(frozen=True)
class ValuationFactor:
    name: str
    amount: float  # signed, Lakh
    positive: bool

    @property
    def impact(self) -> str:
        sign = "-" if self.amount < 0 else "+"
        return f"{sign}{abs(self.amount):.1f}L"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "impact": self.impact, "amount": self.amount, "positive": self.positive}


@dataclass(frozen=True)
class ValuationResult:
    estimated_price: float
    low: float
    high: float
    market_low: float
    market_high: float
    offer: float
    depreciation_rate: int
    market_demand: str
    factors: List[ValuationFactor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["factors"] = [f.to_dict() for f in self.factors]
        return data


def depreciation_multiplier(age: int) -> float:
    for max_age, multiplier in DEPRECIATION_SCHEDULE:
        if age <= max_age:
            return multiplier
    return DEPRECIATION_FLOOR


def market_demand_label(estimate: float) -> str:
    if estimate > HIGH_DEMAND_ABOVE:
        return "High"
    if estimate > MEDIUM_DEMAND_ABOVE:
        return "Medium"
    return "Low"


def valuation_fallback(
    brand: str,
    year: Union[str, int, None],
    km: Union[str, Number, None],
    condition: Optional[str],
    city: Optional[str],
    *,
    current_year: int,
) -> ValuationResult:
    """
    Estimate resale value without the AI provider.

    Multipliers compose in a fixed order: brand base -> age depreciation ->
    distance penalties -> condition -> metro premium -> floor. The narrow
    (+/-7%) and market (+/-10%) bands and the offer (+2%) are taken from the
    unrounded estimate, then every figure is rounded to one decimal.
    """
    brand = _require_text("brand", brand)

    base = BRAND_BASE_VALUES.get(brand, DEFAULT_BRAND_BASE)
    age = current_year - parse_year(year)
    dep_multiplier = depreciation_multiplier(age)
    price = base * dep_multiplier

    km_value = parse_km(km)
    if km_value is None:
        km_value = DEFAULT_KM
    for threshold, multiplier in DISTANCE_PENALTIES:
        if km_value > threshold:
            price *= multiplier

    condition_key = (condition or "").strip().lower()
    price *= CONDITION_MULTIPLIERS.get(condition_key, 1.0)

    city_key = (city or "").lower()
    if any(metro in city_key for metro in METRO_CITIES):
        price *= METRO_PREMIUM

    estimate = max(price, MIN_VALUATION)

    return ValuationResult(
        estimated_price=round1(estimate),
        low=round1(estimate * (1 - NARROW_BAND)),
        high=round1(estimate * (1 + NARROW_BAND)),
        market_low=round1(estimate * (1 - MARKET_BAND)),
        market_high=round1(estimate * (1 + MARKET_BAND)),
        offer=round1(estimate * (1 + OFFER_PREMIUM)),
        depreciation_rate=int(Decimal(repr((1 - dep_multiplier) * 100)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
        market_demand=market_demand_label(estimate),
        factors=_valuation_factors(base, condition_key, km_value, age),
    )


def _valuation_factors(base: float, condition_key: str, km_value: int, age: int) -> List[ValuationFactor]:
    if condition_key == "excellent":
        condition_amount = 0.3
    elif condition_key == "fair":
        condition_amount = -0.5
    else:
        condition_amount = 0.0

    if km_value < 30_000:
        km_amount = 0.3
    elif km_value > 80_000:
        km_amount = -0.5
    else:
        km_amount = 0.0

    return [
        ValuationFactor("Brand Value", 0.5 if base > PREMIUM_BRAND_THRESHOLD else 0.2, True),
        ValuationFactor("Condition", condition_amount, condition_key != "fair"),
        ValuationFactor("KM Driven", km_amount, km_value < 50_000),
        ValuationFactor("Age", -round1(max(age, 0) * 0.4), False),
    ]


# =============================================================================
# Marketing description
# =============================================================================


def odometer_phrase(km: Union[str, Number, None]) -> str:
    km_value = parse_km(km) or 0
    if km_value < 30_000:
        return "low odometer reading"
    if km_value < 70_000:
        return "well-maintained"
    return "honest kilometres"


def format_price_display(price: Union[Number, None]) -> str:
    """Rupee display: crores at or above 1 Cr, lakhs below."""
    amount = float(price or 0)
    if amount >= 10_000_000:
        return f"₹{amount / 10_000_000:.2f} Cr"
    return f"₹{amount / 100_000:.1f}L"


def description_fallback(
    name: str,
    year: Union[str, int, None],
    km: Union[str, Number, None],
    price_display: str,
    fuel: Optional[str] = None,
    transmission: Optional[str] = None,
    location: Optional[str] = None,
    owner: Optional[str] = None,
) -> str:
    """Fixed-template listing description, no randomness."""
    name = _require_text("name", name)
    km_text = str(km if km is not None else "0")
    transmission = transmission or "Manual"

    return (
        f"The {parse_year(year, default=2023)} {name} arrives with a {odometer_phrase(km)} of {km_text} km "
        f"on the clock, making it a standout choice in the {fuel or 'Petrol'} {transmission.lower()} segment. "
        f"Carefully maintained and sourced from a {owner or '1st owner'} in {location or 'India'}, "
        f"this vehicle combines reliability with premium value. "
        f"At {price_display}, it represents a compelling opportunity for buyers seeking quality "
        f"without compromise. Book a test drive today and experience the difference firsthand."
    )


# =============================================================================
# Vehicle quality score
# =============================================================================


def quality_score_fallback(
    km: Union[str, Number, None],
    owner: Union[str, int, None],
    year: Union[str, int, None],
    *,
    current_year: int,
) -> int:
    """Score 0-100 from odometer, ownership and model year."""
    score = QUALITY_BASE_SCORE

    km_value = parse_km(km)
    if km_value is not None:
        if km_value < 20_000:
            score += 15
        elif km_value < 50_000:
            score += 10
        elif km_value > 100_000:
            score -= 10

    if is_first_owner(owner):
        score += 10

    if parse_year(year, default=0) >= current_year - RECENT_MODEL_YEARS:
        score += 5

    return max(0, min(100, score))


def score_from_input(scoring_input: ScoringInput, *, current_year: int) -> int:
    return quality_score_fallback(
        scoring_input.km,
        scoring_input.owner,
        scoring_input.year,
        current_year=current_year,
    )


# =============================================================================
# Lead sentiment
# =============================================================================


@dataclass(frozen=True)
class SentimentResult:
    sentiment: str
    confidence: int
    reasoning: str
    suggested_action: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def sentiment_label_for(message_count: int) -> str:
    if message_count >= HOT_MIN_MESSAGES:
        return "HOT"
    if message_count >= WARM_MIN_MESSAGES:
        return "WARM"
    return "COOL"


def sentiment_fallback(message_count: int) -> SentimentResult:
    if isinstance(message_count, bool) or not isinstance(message_count, int) or message_count < 0:
        raise ValidationFailure("message_count must be a non-negative integer")

    label = sentiment_label_for(message_count)
    return SentimentResult(
        sentiment=label,
        confidence=FALLBACK_SENTIMENT_CONFIDENCE,
        reasoning=f"Based on {message_count} message(s) exchanged. AI analysis unavailable.",
        suggested_action=SUGGESTED_ACTIONS[label],
    )
