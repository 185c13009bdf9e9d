"""Pattern memory: learned invoice description -> estimate line item mappings.

High-confidence matches teach the project a pattern keyed on the normalised
description, so recurring charges (monthly hire, repeat deliveries) match
without scoring or classification on later runs.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from sitecost.db.connection import dialect_insert
from sitecost.db.models import MatchPatternModel, new_id

logger = logging.getLogger(__name__)

# Pattern hits never report full certainty
MAX_PATTERN_CONFIDENCE = 0.95

_DIGITS = re.compile(r"\d+")
_PUNCTUATION = re.compile(r"[^\w\s*]")
_WHITESPACE = re.compile(r"\s+")


def pattern_key(description: str) -> str:
    """Normalise a description so recurring charges share a key.

    Lower-cases, replaces digit runs with '*', strips punctuation and
    collapses whitespace: "Scaffold hire - Week 12" -> "scaffold hire week *".
    """
    text = _DIGITS.sub("*", (description or "").lower())
    text = _PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


@dataclass(frozen=True)
class LearnedPattern:
    pattern_key: str
    estimate_line_item_id: str
    confidence: float
    usage_count: int = 1

    @property
    def match_confidence(self) -> float:
        return min(self.confidence, MAX_PATTERN_CONFIDENCE)


class PatternMemory:
    """Per-project pattern store backed by the match_patterns table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def load(self, project_id: str) -> dict[str, LearnedPattern]:
        """All learned patterns of a project, keyed by pattern key."""
        result = await self.session.execute(
            select(MatchPatternModel).where(MatchPatternModel.project_id == project_id)
        )
        return {
            row.pattern_key: LearnedPattern(
                pattern_key=row.pattern_key,
                estimate_line_item_id=row.estimate_line_item_id,
                confidence=row.confidence,
                usage_count=row.usage_count,
            )
            for row in result.scalars().all()
        }

    async def learn(
        self,
        project_id: str,
        description: str,
        estimate_line_item_id: str,
        confidence: float,
    ) -> None:
        """Record (or reinforce) a pattern from an accepted match."""
        key = pattern_key(description)
        if not key:
            return

        stmt = dialect_insert(self.session, MatchPatternModel).values(
            id=new_id(),
            project_id=project_id,
            pattern_key=key,
            estimate_line_item_id=estimate_line_item_id,
            confidence=confidence,
            usage_count=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[MatchPatternModel.project_id, MatchPatternModel.pattern_key],
            set_={
                "estimate_line_item_id": stmt.excluded.estimate_line_item_id,
                "confidence": stmt.excluded.confidence,
                "usage_count": MatchPatternModel.usage_count + 1,
                "last_used_at": func.now(),
            },
        )
        await self.session.execute(stmt)
        logger.debug(f"Learned pattern '{key}' -> {estimate_line_item_id} ({confidence:.2f})")

    async def record_usage(self, project_id: str, keys: list[str]) -> None:
        """Bump usage counters for patterns that produced matches."""
        if not keys:
            return
        rows = (
            await self.session.execute(
                select(MatchPatternModel).where(
                    MatchPatternModel.project_id == project_id,
                    MatchPatternModel.pattern_key.in_(set(keys)),
                )
            )
        ).scalars().all()
        for row in rows:
            row.usage_count += keys.count(row.pattern_key)
            row.last_used_at = func.now()
