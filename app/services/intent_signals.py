"""
Rule-based buyer intent extraction from lead conversations.

One static pattern table (category -> keywords -> urgency) consumed by a
single matching loop. No AI call, so it is always available and returns the
same report for the same transcript.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

from app.core.errors import ValidationFailure

URGENCY_ORDER = {"high": 0, "medium": 1, "low": 2}

# Roles whose text is written by the buyer; dealer, AI and system text is ignored
BUYER_ROLES = frozenset({"user", "buyer"})

SUMMARY_TOP_SIGNALS = 3


@dataclass(frozen=True)
class IntentPattern:
    category: str
    keywords: Tuple[str, ...]
    urgency: str


@dataclass(frozen=True)
class IntentSignal:
    category: str
    matched_keywords: Tuple[str, ...]
    count: int
    urgency: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "keyword": ", ".join(self.matched_keywords),
            "matched_keywords": list(self.matched_keywords),
            "count": self.count,
            "urgency": self.urgency,
        }


@dataclass(frozen=True)
class IntentReport:
    signals: Tuple[IntentSignal, ...]
    buyer_readiness: str
    summary: str
    messages_analyzed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signals": [s.to_dict() for s in self.signals],
            "buyer_readiness": self.buyer_readiness,
            "summary": self.summary,
            "messages_analyzed": self.messages_analyzed,
        }


SIGNAL_PATTERNS: Tuple[IntentPattern, ...] = (
    IntentPattern(
        "Ready to Buy",
        ("ready to buy", "want to buy", "finalize", "close the deal", "book now", "when can i pick up", "delivery date"),
        "high",
    ),
    IntentPattern(
        "Price Negotiation",
        ("best price", "discount", "negotiate", "lower price", "final offer", "budget is", "can you do",
         "too expensive", "overpriced"),
        "high",
    ),
    IntentPattern(
        "Finance Interest",
        ("emi", "loan", "finance", "monthly payment", "down payment", "interest rate", "credit"),
        "medium",
    ),
    IntentPattern(
        "Comparison Shopping",
        ("cardekho", "cars24", "olx", "spinny", "other dealer", "comparing", "better deal", "cheaper elsewhere"),
        "medium",
    ),
    IntentPattern(
        "Test Drive",
        ("test drive", "see the car", "inspect", "visit", "come to showroom", "viewing", "check the car"),
        "medium",
    ),
    IntentPattern(
        "Documentation",
        ("rc transfer", "insurance", "registration", "documents", "noc", "rto", "challan"),
        "low",
    ),
    IntentPattern(
        "Vehicle Concern",
        ("accident", "scratch", "dent", "service history", "repair", "problem", "issue", "defect", "damage"),
        "medium",
    ),
    IntentPattern(
        "Urgency",
        ("urgent", "asap", "today", "tomorrow", "this week", "immediately", "quickly", "hurry"),
        "high",
    ),
    IntentPattern(
        "Exchange Interest",
        ("exchange", "trade in", "swap", "my old car", "part exchange", "current car"),
        "medium",
    ),
)


def _field(message: Any, name: str) -> Any:
    if isinstance(message, Mapping):
        if name not in message:
            raise ValidationFailure(f"message is missing '{name}'", details={"field": name})
        return message[name]
    if not hasattr(message, name):
        raise ValidationFailure(f"message is missing '{name}'", details={"field": name})
    return getattr(message, name)


def buyer_texts(messages: Iterable[Any]) -> List[str]:
    """Case-folded text of buyer-authored messages, in transcript order."""
    texts = []
    for message in messages:
        role = _field(message, "role")
        text = _field(message, "text")
        if str(role or "").lower() in BUYER_ROLES:
            texts.append(str(text or "").casefold())
    return texts


def classify_readiness(signals: Sequence[IntentSignal]) -> str:
    high = sum(s.count for s in signals if s.urgency == "high")
    medium = sum(s.count for s in signals if s.urgency == "medium")

    if high >= 3 or (high >= 1 and medium >= 3):
        return "high"
    if high >= 1 or medium >= 2:
        return "medium"
    return "low"


def extract_intent_signals(
    messages: Iterable[Any],
    patterns: Sequence[IntentPattern] = SIGNAL_PATTERNS,
) -> IntentReport:
    """
    Scan buyer messages for intent keywords.

    Args:
        messages: Mappings or objects with `text` and `role`
        patterns: Pattern catalog (defaults to SIGNAL_PATTERNS)

    Returns:
        IntentReport with signals sorted by urgency (high first) then by
        descending count; an empty signal list when nothing matches.
    """
    texts = buyer_texts(messages)
    buffer = " ".join(texts)

    signals: List[IntentSignal] = []
    for pattern in patterns:
        total = 0
        matched: List[str] = []
        for keyword in pattern.keywords:
            occurrences = buffer.count(keyword.casefold())
            if occurrences:
                total += occurrences
                if keyword not in matched:
                    matched.append(keyword)
        if total:
            signals.append(IntentSignal(pattern.category, tuple(matched), total, pattern.urgency))

    signals.sort(key=lambda s: (URGENCY_ORDER[s.urgency], -s.count))
    readiness = classify_readiness(signals)

    if signals:
        top = ", ".join(s.category for s in signals[:SUMMARY_TOP_SIGNALS])
        summary = f"Buyer shows {readiness} readiness. Key signals: {top}. {len(texts)} messages analyzed."
    else:
        summary = f"No intent signals detected from {len(texts)} messages."

    return IntentReport(
        signals=tuple(signals),
        buyer_readiness=readiness,
        summary=summary,
        messages_analyzed=len(texts),
    )
