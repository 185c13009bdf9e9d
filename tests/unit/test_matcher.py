"""Unit tests for the hybrid matcher's decision policy.

Classifiers are in-memory stubs; no network access.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from sitecost.config import MatchingConfig
from sitecost.core.errors import ClassificationError
from sitecost.matching.classifier import Classification
from sitecost.matching.matcher import Matcher
from sitecost.models import InvoiceLineItem, MatchMethod


class StubClassifier:
    """Returns a fixed classification and records every call."""

    def __init__(self, classification=None, error=None, delay=0.0):
        self.classification = classification
        self.error = error
        self.delay = delay
        self.calls = []

    async def classify(self, description, amount, candidates):
        self.calls.append((description, amount, [c.id for c in candidates]))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.classification


@pytest.fixture
def overpriced_switchboard_item() -> InvoiceLineItem:
    """Same wording as the switchboard estimate but billed at 10x: heuristic score 0.70."""
    return InvoiceLineItem(
        id="ili-big",
        invoice_id="inv-1",
        description="Switchboard supply and install",
        quantity=Decimal("1"),
        unit_price=Decimal("1650.00"),
        total_price=Decimal("1650.00"),
    )


@pytest.fixture
def candidates(switchboard_estimate, hot_water_estimate):
    return [switchboard_estimate, hot_water_estimate]


class TestHeuristicOnly:
    @pytest.mark.asyncio
    async def test_high_score_auto_accepted(self, switchboard_invoice_item, candidates):
        outcome = await Matcher().match(switchboard_invoice_item, candidates)

        assert outcome.matched
        assert outcome.result.estimate_id == "est-switchboard"
        assert outcome.result.method == MatchMethod.LOGIC
        assert outcome.result.confidence == pytest.approx(0.9727, abs=1e-4)
        assert outcome.assisted_attempted is False

    @pytest.mark.asyncio
    async def test_mid_score_accepted_above_floor(self, overpriced_switchboard_item, candidates):
        outcome = await Matcher().match(overpriced_switchboard_item, candidates)

        assert outcome.result.estimate_id == "est-switchboard"
        assert outcome.result.method == MatchMethod.LOGIC
        assert outcome.result.confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_below_floor_unmatched(self, candidates):
        item = InvoiceLineItem(
            id="ili-3",
            invoice_id="inv-2",
            description="Zzz qqq",
            unit_price=Decimal("25"),
            total_price=Decimal("25"),
        )

        outcome = await Matcher().match(item, candidates)

        assert outcome.result is None
        assert not outcome.matched

    @pytest.mark.asyncio
    async def test_no_candidates(self, switchboard_invoice_item):
        classifier = StubClassifier(Classification(candidate_index=0, confidence=0.99))

        outcome = await Matcher().match(switchboard_invoice_item, [], classifier)

        assert outcome.result is None
        assert classifier.calls == []

    @pytest.mark.asyncio
    async def test_floor_is_inclusive(self, overpriced_switchboard_item, candidates):
        matcher = Matcher(MatchingConfig(heuristic_floor=0.7, auto_accept_confidence=0.75))

        outcome = await matcher.match(overpriced_switchboard_item, candidates)

        assert outcome.matched


class TestAssistedStage:
    @pytest.mark.asyncio
    async def test_high_heuristic_skips_classifier(self, switchboard_invoice_item, candidates):
        classifier = StubClassifier(Classification(candidate_index=1, confidence=0.99))

        outcome = await Matcher().match(switchboard_invoice_item, candidates, classifier)

        assert outcome.result.method == MatchMethod.LOGIC
        assert classifier.calls == []
        assert outcome.assisted_attempted is False

    @pytest.mark.asyncio
    async def test_confident_classifier_wins(self, overpriced_switchboard_item, candidates):
        classifier = StubClassifier(
            Classification(candidate_index=0, confidence=0.9, reasoning="Same switchboard")
        )

        outcome = await Matcher().match(overpriced_switchboard_item, candidates, classifier)

        assert outcome.assisted_attempted is True
        assert outcome.assisted_failed is False
        assert outcome.result.method == MatchMethod.LLM
        assert outcome.result.estimate_id == "est-switchboard"
        assert outcome.result.confidence == 0.9
        assert outcome.result.reasoning == "Same switchboard"

    @pytest.mark.asyncio
    async def test_shortlist_is_ranked_best_first(self, overpriced_switchboard_item, candidates):
        classifier = StubClassifier(Classification(candidate_index=1, confidence=0.8))

        outcome = await Matcher().match(overpriced_switchboard_item, candidates, classifier)

        description, amount, shortlist = classifier.calls[0]
        assert description == "Switchboard supply and install"
        assert amount == Decimal("1650.00")
        assert shortlist == ["est-switchboard", "est-hws"]
        assert outcome.result.estimate_id == "est-hws"

    @pytest.mark.asyncio
    async def test_shortlist_size_respected(self, overpriced_switchboard_item, candidates):
        config = MatchingConfig(shortlist_size=1)
        classifier = StubClassifier(Classification(candidate_index=0, confidence=0.9))

        await Matcher(config).match(overpriced_switchboard_item, candidates, classifier)

        assert classifier.calls[0][2] == ["est-switchboard"]

    @pytest.mark.asyncio
    async def test_low_confidence_falls_back_to_heuristic(self, overpriced_switchboard_item, candidates):
        classifier = StubClassifier(Classification(candidate_index=1, confidence=0.4))

        outcome = await Matcher().match(overpriced_switchboard_item, candidates, classifier)

        assert outcome.assisted_attempted is True
        assert outcome.assisted_failed is False
        assert outcome.result.method == MatchMethod.LOGIC
        assert outcome.result.estimate_id == "est-switchboard"

    @pytest.mark.asyncio
    async def test_no_pick_falls_back_to_heuristic(self, overpriced_switchboard_item, candidates):
        classifier = StubClassifier(Classification(candidate_index=None, confidence=0.95))

        outcome = await Matcher().match(overpriced_switchboard_item, candidates, classifier)

        assert outcome.result.method == MatchMethod.LOGIC

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "classifier",
        [
            StubClassifier(error=ClassificationError("bad json")),
            StubClassifier(error=RuntimeError("connection reset")),
            StubClassifier(Classification(candidate_index=7, confidence=0.9)),
            StubClassifier(Classification(candidate_index=0, confidence=1.5)),
            StubClassifier(Classification(candidate_index=0, confidence=0.9, reasoning=42)),
        ],
        ids=[
            "classification-error",
            "unexpected-error",
            "index-out-of-range",
            "confidence-out-of-range",
            "non-string-reasoning",
        ],
    )
    async def test_failures_fall_back_to_heuristic(self, classifier, overpriced_switchboard_item, candidates):
        outcome = await Matcher().match(overpriced_switchboard_item, candidates, classifier)

        assert outcome.assisted_attempted is True
        assert outcome.assisted_failed is True
        assert outcome.result.method == MatchMethod.LOGIC
        assert outcome.result.confidence == pytest.approx(0.7)

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, overpriced_switchboard_item, candidates):
        matcher = Matcher(MatchingConfig(assisted_timeout_seconds=0.05))
        classifier = StubClassifier(Classification(candidate_index=0, confidence=0.99), delay=1.0)

        outcome = await matcher.match(overpriced_switchboard_item, candidates, classifier)

        assert outcome.assisted_failed is True
        assert outcome.result.method == MatchMethod.LOGIC

    @pytest.mark.asyncio
    async def test_failure_below_floor_leaves_item_unmatched(self, candidates):
        item = InvoiceLineItem(
            id="ili-3",
            invoice_id="inv-2",
            description="Zzz qqq",
            unit_price=Decimal("25"),
            total_price=Decimal("25"),
        )
        classifier = StubClassifier(error=ClassificationError("rate limited"))

        outcome = await Matcher().match(item, candidates, classifier)

        assert outcome.assisted_failed is True
        assert outcome.result is None

    @pytest.mark.asyncio
    async def test_gate_bounds_concurrent_calls(self, overpriced_switchboard_item, candidates):
        in_flight = 0
        peak = 0

        class CountingClassifier:
            async def classify(self, description, amount, shortlist):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return Classification(candidate_index=0, confidence=0.9)

        matcher = Matcher()
        gate = asyncio.Semaphore(2)
        classifier = CountingClassifier()

        outcomes = await asyncio.gather(
            *(
                matcher.match(overpriced_switchboard_item, candidates, classifier, gate=gate)
                for _ in range(6)
            )
        )

        assert peak == 2
        assert all(o.result.method == MatchMethod.LLM for o in outcomes)
