"""Hybrid matcher: heuristic ranking with an optional assisted stage."""

from __future__ import annotations

import asyncio
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from sitecost.config import MatchingConfig
from sitecost.core.errors import ClassificationError
from sitecost.matching.classifier import Classification, Classifier
from sitecost.matching.heuristic import ScoredCandidate, rank_candidates
from sitecost.models import EstimateLineItem, InvoiceLineItem, MatchMethod, MatchResult

logger = logging.getLogger(__name__)


@dataclass
class MatchOutcome:
    """Matcher output plus what happened in the assisted stage."""

    result: Optional[MatchResult]
    assisted_attempted: bool = False
    assisted_failed: bool = False

    @property
    def matched(self) -> bool:
        return self.result is not None


class Matcher:
    """Chooses the best estimate line item for one invoice line item.

    Decision policy:
    1. Heuristic top score >= auto-accept: accept it (method "logic"), no
       assisted call
    2. Assisted confidence >= auto-accept: accept the assisted pick ("llm")
    3. Heuristic top score >= floor: accept it ("logic")
    4. Otherwise no match; the item waits for manual review

    Assisted failures (timeout, error, malformed or out-of-range answer) are
    recovered here and fall through to step 3.
    """

    def __init__(self, config: MatchingConfig | None = None) -> None:
        self.config = config or MatchingConfig()

    async def match(
        self,
        item: InvoiceLineItem,
        candidates: list[EstimateLineItem],
        classifier: Classifier | None = None,
        gate: asyncio.Semaphore | None = None,
    ) -> MatchOutcome:
        """Match an invoice line item against the project's estimate line items.

        Args:
            item: Invoice line item to place
            candidates: Every estimate line item of the same project
            classifier: Assisted classification capability (None = heuristic only)
            gate: Semaphore bounding concurrent classifier calls

        Returns:
            MatchOutcome whose result is None when nothing clears the floor
        """
        ranked = rank_candidates(item, candidates)
        if not ranked:
            return MatchOutcome(result=None)

        top = ranked[0]
        if top.score >= self.config.auto_accept_confidence:
            return MatchOutcome(result=self._heuristic_result(item, top))

        outcome = MatchOutcome(result=None)
        if classifier is not None:
            outcome.assisted_attempted = True
            shortlist = ranked[: self.config.shortlist_size]
            try:
                classification = await self._classify(item, shortlist, classifier, gate)
                assisted = self._assisted_result(item, shortlist, classification)
            except ClassificationError as e:
                outcome.assisted_failed = True
                logger.warning(f"Assisted match failed for {item.id}, using heuristic: {e}")
            else:
                if assisted is not None:
                    outcome.result = assisted
                    return outcome

        if top.score >= self.config.heuristic_floor:
            outcome.result = self._heuristic_result(item, top)
        return outcome

    async def _classify(
        self,
        item: InvoiceLineItem,
        shortlist: list[ScoredCandidate],
        classifier: Classifier,
        gate: asyncio.Semaphore | None,
    ) -> Classification:
        async with gate if gate is not None else nullcontext():
            try:
                classification = await asyncio.wait_for(
                    classifier.classify(
                        item.description,
                        item.total_price,
                        [scored.candidate for scored in shortlist],
                    ),
                    timeout=self.config.assisted_timeout_seconds,
                )
            except ClassificationError:
                raise
            except asyncio.TimeoutError as e:
                raise ClassificationError(
                    f"Classifier timed out after {self.config.assisted_timeout_seconds}s"
                ) from e
            except Exception as e:
                raise ClassificationError(f"Classifier error: {e}") from e

        index = classification.candidate_index
        if index is not None and not 0 <= index < len(shortlist):
            raise ClassificationError(
                f"Classifier index {index} outside shortlist of {len(shortlist)}"
            )
        if not 0 <= classification.confidence <= 1:
            raise ClassificationError(
                f"Classifier confidence {classification.confidence} outside [0, 1]"
            )
        return classification

    def _assisted_result(
        self,
        item: InvoiceLineItem,
        shortlist: list[ScoredCandidate],
        classification: Classification,
    ) -> Optional[MatchResult]:
        if (
            classification.candidate_index is None
            or classification.confidence < self.config.auto_accept_confidence
        ):
            return None

        chosen = shortlist[classification.candidate_index].candidate
        try:
            return MatchResult(
                invoice_line_id=item.id,
                estimate_id=chosen.id,
                confidence=round(classification.confidence, 4),
                method=MatchMethod.LLM,
                reasoning=classification.reasoning,
            )
        except ValidationError as e:
            raise ClassificationError(f"Unusable classifier answer: {e}") from e

    @staticmethod
    def _heuristic_result(item: InvoiceLineItem, top: ScoredCandidate) -> MatchResult:
        return MatchResult(
            invoice_line_id=item.id,
            estimate_id=top.candidate.id,
            confidence=top.score,
            method=MatchMethod.LOGIC,
            reasoning=f"Heuristic match on '{top.candidate.description}' (score {top.score:.2f})",
        )
