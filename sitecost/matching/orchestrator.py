"""Batch matching orchestrator for SiteCost.

Coordinates load → pattern memory → heuristic/assisted matching (bounded
fan-out) → per-item mapping commits → pattern learning → telemetry.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from sitecost.config import MatchingConfig
from sitecost.core.errors import MappingError, PersistenceError, ProjectNotFoundError
from sitecost.db.queries import get_project, load_estimate_line_items, load_invoice_line_items
from sitecost.mapping.store import MappingStore
from sitecost.matching.classifier import Classifier
from sitecost.matching.matcher import Matcher, MatchOutcome
from sitecost.matching.patterns import LearnedPattern, PatternMemory, pattern_key
from sitecost.models import (
    BulkMatchingResult,
    EstimateLineItem,
    InvoiceLineItem,
    MappingFailure,
    MatchMethod,
    MatchResult,
    ProcessingDetails,
)

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Matching run cancelled"


@dataclass
class RunStats:
    """Counters for one run. Only mutated from coroutines on the event loop."""

    processed: int = 0
    llm_attempts: int = 0
    llm_matches: int = 0
    llm_failures: int = 0
    logic_matches: int = 0
    patterns_used: int = 0
    invoice_ids: set[str] = field(default_factory=set)

    def record(self, item: InvoiceLineItem, outcome: MatchOutcome) -> None:
        self.processed += 1
        self.invoice_ids.add(item.invoice_id)
        if outcome.assisted_attempted:
            self.llm_attempts += 1
        if outcome.assisted_failed:
            self.llm_failures += 1
        if outcome.result is None:
            return
        if outcome.result.method == MatchMethod.LLM:
            self.llm_matches += 1
        else:
            self.logic_matches += 1

    def record_pattern_hit(self, item: InvoiceLineItem) -> None:
        self.processed += 1
        self.invoice_ids.add(item.invoice_id)
        self.patterns_used += 1


@dataclass
class _Accepted:
    item: InvoiceLineItem
    result: MatchResult
    from_pattern: bool = False


class BatchMatchingOrchestrator:
    """Runs the matcher over a project's invoice line items and persists results."""

    def __init__(
        self,
        session_factory: sessionmaker,
        matcher: Matcher | None = None,
        classifier: Classifier | None = None,
        config: MatchingConfig | None = None,
    ):
        """Initialize orchestrator.

        Args:
            session_factory: Factory producing AsyncSession instances
            matcher: Matcher to use (default: Matcher built from config)
            classifier: Assisted classification capability (None = heuristic only)
            config: Matching thresholds and concurrency limits
        """
        self.session_factory = session_factory
        self.config = config or (matcher.config if matcher else MatchingConfig())
        self.matcher = matcher or Matcher(self.config)
        self.classifier = classifier

    async def match_all(
        self,
        project_id: str,
        invoice_line_item_ids: Optional[list[str]] = None,
        rematch: bool = False,
        cancel_event: asyncio.Event | None = None,
        include_manual: bool = False,
    ) -> BulkMatchingResult:
        """Match a project's invoice line items against its estimate.

        Args:
            project_id: Project to process
            invoice_line_item_ids: Restrict the run to these items (default: all)
            rematch: Re-match items that already have an automatic mapping
            cancel_event: Set to stop dispatching new items
            include_manual: With rematch, also re-match manual overrides

        Returns:
            BulkMatchingResult with matches, counts and processing details

        Raises:
            ProjectNotFoundError: If the project does not exist
            PersistenceError: If the project data cannot be loaded
        """
        started = time.perf_counter()
        cancel_event = cancel_event or asyncio.Event()

        candidates, items, patterns = await self._load(
            project_id, invoice_line_item_ids, rematch, include_manual
        )
        logger.info(
            f"Matching {len(items)} invoice line items against "
            f"{len(candidates)} estimate line items for project {project_id}"
        )

        stats = RunStats()
        accepted: list[_Accepted] = []
        if not cancel_event.is_set():
            accepted, remaining = self._apply_patterns(items, candidates, patterns, stats)
            accepted.extend(await self._fan_out(remaining, candidates, stats, cancel_event))

        cancelled = cancel_event.is_set()
        matches, errors = await self._commit(project_id, accepted)

        elapsed = time.perf_counter() - started
        processing_ms = int(elapsed * 1000)

        result = BulkMatchingResult(
            success=not cancelled,
            total_invoices=len(stats.invoice_ids),
            total_line_items=stats.processed,
            matched_items=len(matches),
            unmatched_items=stats.processed - len(matches),
            average_confidence=(
                round(sum(m.confidence for m in matches) / len(matches), 4) if matches else 0.0
            ),
            matches=matches,
            processing_details=ProcessingDetails(
                processing_time_ms=processing_ms,
                average_time_per_item=(
                    round(processing_ms / stats.processed, 2) if stats.processed else 0.0
                ),
                throughput_items_per_second=(
                    round(stats.processed / elapsed, 2) if elapsed > 0 else 0.0
                ),
                llm_attempts=stats.llm_attempts,
                llm_matches=stats.llm_matches,
                llm_failures=stats.llm_failures,
                logic_matches=stats.logic_matches,
                patterns_used=stats.patterns_used,
                batch_size=self.config.batch_size,
            ),
            error=CANCELLED_MESSAGE if cancelled else None,
            errors=errors,
        )

        logger.info(
            f"Matching finished for project {project_id}: "
            f"{result.matched_items}/{result.total_line_items} matched in {processing_ms}ms"
            + (" (cancelled)" if cancelled else "")
        )
        return result

    async def _load(
        self,
        project_id: str,
        invoice_line_item_ids: Optional[list[str]],
        rematch: bool,
        include_manual: bool,
    ) -> tuple[list[EstimateLineItem], list[InvoiceLineItem], dict[str, LearnedPattern]]:
        try:
            async with self.session_factory() as session:
                if await get_project(session, project_id) is None:
                    raise ProjectNotFoundError(project_id)

                candidates = await load_estimate_line_items(session, project_id)
                items = await load_invoice_line_items(session, project_id, invoice_line_item_ids)

                if not rematch or not include_manual:
                    # Manual overrides are only replaced on request
                    mapped = await MappingStore(session).mapped_invoice_line_item_ids(
                        (item.id for item in items),
                        methods=[MatchMethod.MANUAL] if rematch else None,
                    )
                    items = [item for item in items if item.id not in mapped]

                patterns = (
                    await PatternMemory(session).load(project_id)
                    if self.config.pattern_learning_enabled
                    else {}
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to load matching data for {project_id}: {e}") from e

        return candidates, items, patterns

    def _apply_patterns(
        self,
        items: list[InvoiceLineItem],
        candidates: list[EstimateLineItem],
        patterns: dict[str, LearnedPattern],
        stats: RunStats,
    ) -> tuple[list[_Accepted], list[InvoiceLineItem]]:
        """Match items with a learned pattern; return (accepted, still to match)."""
        if not patterns:
            return [], list(items)

        candidate_ids = {c.id for c in candidates}
        accepted: list[_Accepted] = []
        remaining: list[InvoiceLineItem] = []

        for item in items:
            pattern = patterns.get(pattern_key(item.description))
            if pattern is None or pattern.estimate_line_item_id not in candidate_ids:
                remaining.append(item)
                continue

            stats.record_pattern_hit(item)
            accepted.append(
                _Accepted(
                    item=item,
                    result=MatchResult(
                        invoice_line_id=item.id,
                        estimate_id=pattern.estimate_line_item_id,
                        confidence=pattern.match_confidence,
                        method=MatchMethod.LOGIC,
                        reasoning=f"Learned pattern '{pattern.pattern_key}'",
                    ),
                    from_pattern=True,
                )
            )

        return accepted, remaining

    async def _fan_out(
        self,
        items: list[InvoiceLineItem],
        candidates: list[EstimateLineItem],
        stats: RunStats,
        cancel_event: asyncio.Event,
    ) -> list[_Accepted]:
        worker_gate = asyncio.Semaphore(self.config.heuristic_concurrency)
        classifier_gate = asyncio.Semaphore(self.config.batch_size)
        accepted: list[_Accepted] = []

        async def worker(item: InvoiceLineItem) -> None:
            async with worker_gate:
                if cancel_event.is_set():
                    return
                outcome = await self.matcher.match(
                    item, candidates, self.classifier, gate=classifier_gate
                )

            # Finished after cancellation: discard
            if cancel_event.is_set():
                return

            stats.record(item, outcome)
            if outcome.result is not None:
                accepted.append(_Accepted(item=item, result=outcome.result))

        await asyncio.gather(*(worker(item) for item in items))
        return accepted

    async def _commit(
        self, project_id: str, accepted: list[_Accepted]
    ) -> tuple[list[MatchResult], list[MappingFailure]]:
        """Persist accepted matches, one transaction each."""
        matches: list[MatchResult] = []
        errors: list[MappingFailure] = []
        pattern_hits: list[str] = []

        for entry in sorted(accepted, key=lambda a: a.item.id):
            result = entry.result
            try:
                async with self.session_factory() as session:
                    await MappingStore(session).upsert_mapping(
                        result.invoice_line_id,
                        result.estimate_id,
                        result.confidence,
                        result.method,
                    )
                    await session.commit()
            except (MappingError, PersistenceError, SQLAlchemyError) as e:
                logger.error(f"Failed to persist mapping for {result.invoice_line_id}: {e}")
                errors.append(MappingFailure(invoice_line_item_id=result.invoice_line_id, error=str(e)))
                continue

            matches.append(result)
            if entry.from_pattern:
                pattern_hits.append(pattern_key(entry.item.description))
            elif (
                self.config.pattern_learning_enabled
                and result.confidence >= self.config.pattern_min_confidence
            ):
                await self._learn(project_id, entry)

        if pattern_hits:
            try:
                async with self.session_factory() as session:
                    await PatternMemory(session).record_usage(project_id, pattern_hits)
                    await session.commit()
            except SQLAlchemyError as e:
                logger.warning(f"Failed to record pattern usage for {project_id}: {e}")

        return matches, errors

    async def _learn(self, project_id: str, entry: _Accepted) -> None:
        try:
            async with self.session_factory() as session:
                await PatternMemory(session).learn(
                    project_id,
                    entry.item.description,
                    entry.result.estimate_id,
                    entry.result.confidence,
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to learn pattern for {entry.item.id}: {e}")
