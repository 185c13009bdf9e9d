"""Heuristic scoring of invoice line items against estimate line items.

Pure functions, no I/O. A candidate's score combines text similarity
(keyword overlap and RapidFuzz token-set ratio) with an amount-proximity
factor, and lies in [0, 1].
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from rapidfuzz import fuzz, utils

from sitecost.models import EstimateLineItem, InvoiceLineItem

# Applied when the candidate has no estimate amount to compare against
UNKNOWN_AMOUNT_FACTOR = 0.85
AMOUNT_MISMATCH_WEIGHT = 0.3

STOP_WORDS = frozenset(
    {
        "and", "the", "for", "with", "from", "into", "per", "inc", "incl",
        "including", "supply", "supplied", "install", "installed", "installation",
        "item", "items", "work", "works", "various", "sundry", "sundries",
    }
)

_NON_WORD = re.compile(r"[^a-z0-9]+")


def keywords(text: str) -> set[str]:
    """Lower-cased words longer than two characters, stop-words removed."""
    words = _NON_WORD.sub(" ", (text or "").lower()).split()
    return {w for w in words if len(w) > 2 and w not in STOP_WORDS}


def keyword_overlap(a: str, b: str) -> float:
    """Jaccard overlap of the two texts' keyword sets."""
    ka, kb = keywords(a), keywords(b)
    if not ka or not kb:
        return 0.0
    return len(ka & kb) / len(ka | kb)


def text_similarity(invoice_description: str, estimate_description: str) -> float:
    overlap = keyword_overlap(invoice_description, estimate_description)
    fuzzy = (
        fuzz.token_set_ratio(
            invoice_description or "",
            estimate_description or "",
            processor=utils.default_process,
        )
        / 100
    )
    return 0.5 * overlap + 0.5 * fuzzy


def amount_factor(invoice_total: Decimal, estimate_total: Decimal) -> float:
    """Penalty factor in [0.7, 1] for the gap between billed and estimated amounts."""
    if estimate_total <= 0:
        return UNKNOWN_AMOUNT_FACTOR
    mismatch = min(abs(invoice_total - estimate_total) / estimate_total, Decimal(1))
    return 1 - AMOUNT_MISMATCH_WEIGHT * float(mismatch)


def score_candidate(item: InvoiceLineItem, candidate: EstimateLineItem) -> float:
    """Score one candidate, clamped to [0, 1] and rounded to 4 decimals."""
    score = text_similarity(item.description, candidate.description) * amount_factor(
        item.total_price, candidate.estimate_total
    )
    return round(max(0.0, min(1.0, score)), 4)


@dataclass(frozen=True)
class ScoredCandidate:
    """An estimate line item with its heuristic score for one invoice line item."""

    candidate: EstimateLineItem
    score: float
    same_trade: bool = False

    @property
    def rank_key(self) -> tuple:
        # Highest score, then the invoice's import trade, then lowest id
        return (-self.score, not self.same_trade, self.candidate.id)


def rank_candidates(
    item: InvoiceLineItem, candidates: list[EstimateLineItem]
) -> list[ScoredCandidate]:
    """Score and order candidates best-first with a deterministic tie-break.

    Args:
        item: Invoice line item to place
        candidates: All estimate line items of the project

    Returns:
        Scored candidates, best first. Empty if there are no candidates.
    """
    scored = [
        ScoredCandidate(
            candidate=candidate,
            score=score_candidate(item, candidate),
            same_trade=(
                item.invoice_trade_id is not None
                and candidate.trade_id == item.invoice_trade_id
            ),
        )
        for candidate in candidates
    ]
    scored.sort(key=lambda s: s.rank_key)
    return scored
