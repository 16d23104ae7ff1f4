"""
Tests for rule-based buyer intent extraction.
"""

import pytest

from app.core.errors import ValidationFailure
from app.models.lead import LeadMessage
from app.services.intent_signals import (
    SIGNAL_PATTERNS,
    IntentPattern,
    IntentSignal,
    classify_readiness,
    extract_intent_signals,
)


def buyer(text):
    return {"role": "USER", "text": text}


def dealer(text):
    return {"role": "DEALER", "text": text}


class TestPatternTable:
    def test_categories(self):
        assert [p.category for p in SIGNAL_PATTERNS] == [
            "Ready to Buy",
            "Price Negotiation",
            "Finance Interest",
            "Comparison Shopping",
            "Test Drive",
            "Documentation",
            "Vehicle Concern",
            "Urgency",
            "Exchange Interest",
        ]

    def test_urgencies_are_known(self):
        assert {p.urgency for p in SIGNAL_PATTERNS} <= {"high", "medium", "low"}


class TestExtractIntentSignals:
    def test_empty_transcript(self):
        report = extract_intent_signals([])

        assert report.signals == ()
        assert report.buyer_readiness == "low"
        assert report.messages_analyzed == 0
        assert report.summary == "No intent signals detected from 0 messages."

    def test_non_buyer_messages_are_ignored(self):
        report = extract_intent_signals([
            dealer("Best price for you, ready to buy today?"),
            {"role": "AI", "text": "We offer easy EMI and loan options."},
            {"role": "SYSTEM", "text": "Lead created, urgent follow-up"},
        ])

        assert report.signals == ()
        assert report.messages_analyzed == 0

    def test_buyer_role_is_case_insensitive(self):
        report = extract_intent_signals([{"role": "buyer", "text": "Can I get a discount?"}])

        assert report.messages_analyzed == 1
        assert report.signals[0].category == "Price Negotiation"

    def test_matching_is_case_insensitive(self):
        report = extract_intent_signals([buyer("I want a TEST DRIVE")])
        assert report.signals[0].category == "Test Drive"

    def test_counts_every_occurrence(self):
        report = extract_intent_signals([
            buyer("Any discount? Maybe a discount for cash?"),
            buyer("What's the best price, any discount at all?"),
        ])

        negotiation = report.signals[0]
        assert negotiation.category == "Price Negotiation"
        assert negotiation.count == 4
        assert negotiation.matched_keywords == ("best price", "discount")

    def test_sorted_by_urgency_then_count(self):
        report = extract_intent_signals([
            buyer("Need the insurance and registration documents"),
            buyer("I want to inspect it, can I visit?"),
            buyer("Is a loan possible?"),
            buyer("What's your best price?"),
        ])

        assert [s.category for s in report.signals] == [
            "Price Negotiation",
            "Test Drive",
            "Finance Interest",
            "Documentation",
        ]
        assert [s.urgency for s in report.signals] == ["high", "medium", "medium", "low"]

    def test_summary_lists_top_three(self):
        report = extract_intent_signals([
            buyer("I am ready to buy, what's the best price? Need it asap."),
            buyer("Can I come for a test drive?"),
        ])

        assert report.summary == (
            "Buyer shows high readiness. Key signals: Ready to Buy, Price Negotiation, Urgency. "
            "2 messages analyzed."
        )

    def test_no_signals_summary(self):
        report = extract_intent_signals([buyer("Hello"), buyer("Thanks")])
        assert report.summary == "No intent signals detected from 2 messages."

    def test_accepts_model_instances(self):
        messages = [
            LeadMessage(lead_id=1, role="USER", text="Exchange my old car?"),
            LeadMessage(lead_id=1, role="DEALER", text="Sure, exchange works"),
        ]
        report = extract_intent_signals(messages)

        assert report.messages_analyzed == 1
        assert report.signals[0].category == "Exchange Interest"
        assert report.signals[0].count == 2

    def test_input_is_not_mutated(self):
        messages = [buyer("Best price please"), dealer("Sure")]
        snapshot = [dict(m) for m in messages]

        extract_intent_signals(messages)

        assert messages == snapshot

    def test_same_transcript_same_report(self):
        messages = [buyer("Loan and EMI options? Want to buy this week.")]
        assert extract_intent_signals(messages) == extract_intent_signals(messages)

    def test_custom_pattern_table(self):
        patterns = (IntentPattern("Colour", ("red", "blue"), "low"),)
        report = extract_intent_signals([buyer("Do you have it in red?")], patterns=patterns)

        assert [s.category for s in report.signals] == ["Colour"]

    @pytest.mark.parametrize("message", [{"text": "hi"}, {"role": "USER"}])
    def test_malformed_message_rejected(self, message):
        with pytest.raises(ValidationFailure):
            extract_intent_signals([message])

    def test_to_dict(self):
        data = extract_intent_signals([buyer("Best price? Any discount?")]).to_dict()

        assert data["signals"][0] == {
            "category": "Price Negotiation",
            "keyword": "best price, discount",
            "matched_keywords": ["best price", "discount"],
            "count": 2,
            "urgency": "high",
        }


class TestClassifyReadiness:
    def signal(self, urgency, count):
        return IntentSignal("x", ("x",), count, urgency)

    def test_three_high_is_high(self):
        assert classify_readiness([self.signal("high", 3)]) == "high"

    def test_one_high_three_medium_is_high(self):
        assert classify_readiness([self.signal("high", 1), self.signal("medium", 3)]) == "high"

    def test_one_high_is_medium(self):
        assert classify_readiness([self.signal("high", 1)]) == "medium"

    def test_two_medium_is_medium(self):
        assert classify_readiness([self.signal("medium", 2)]) == "medium"

    def test_low_only_is_low(self):
        assert classify_readiness([self.signal("low", 10), self.signal("medium", 1)]) == "low"
