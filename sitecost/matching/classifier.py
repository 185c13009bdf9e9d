"""Assisted classification of invoice line items (LLM).

The matcher depends only on the `Classifier` protocol. `OpenAIClassifier`
is the production implementation: it asks the model to pick one shortlisted
estimate line item and report its confidence.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from openai import AsyncOpenAI, OpenAIError, RateLimitError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sitecost.config import LLMConfig
from sitecost.core.errors import ClassificationError
from sitecost.models import EstimateLineItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    """Classifier verdict: index into the shortlist (None = no match) and confidence."""

    candidate_index: Optional[int]
    confidence: float
    reasoning: Optional[str] = None


class Classifier(Protocol):
    async def classify(
        self,
        description: str,
        amount: Decimal,
        candidates: list[EstimateLineItem],
    ) -> Classification: ...


SYSTEM_PROMPT = """You reconcile construction supplier invoices against a project estimate.
Given one invoice line item and a numbered list of estimate line items, choose the
estimate line item the charge belongs to.

Respond with a JSON object:
{
  "candidate_index": <0-based index of the chosen estimate line item, or null if none fits>,
  "confidence": <number between 0 and 1>,
  "reasoning": "<one short sentence>"
}"""


class OpenAIClassifier:
    """Classifier backed by the OpenAI chat completions API in JSON mode."""

    def __init__(self, config: LLMConfig, client: AsyncOpenAI | None = None):
        if client is None and not config.api_key:
            raise ValueError("OPENAI_API_KEY is required for assisted matching")
        self.config = config
        self.client = client or AsyncOpenAI(api_key=config.api_key)

    async def classify(
        self,
        description: str,
        amount: Decimal,
        candidates: list[EstimateLineItem],
    ) -> Classification:
        """Ask the model to pick a candidate.

        Raises:
            ClassificationError: If the API call fails or the response is malformed
        """
        try:
            content = await self._complete(self._build_prompt(description, amount, candidates))
        except OpenAIError as e:
            raise ClassificationError(f"Assisted classification failed: {e}") from e

        return self._parse_response(content)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    async def _complete(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.config.llm_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    @staticmethod
    def _build_prompt(
        description: str, amount: Decimal, candidates: list[EstimateLineItem]
    ) -> str:
        lines = [
            f"Invoice line item: {description}",
            f"Amount: {amount}",
            "",
            "Estimate line items:",
        ]
        for index, candidate in enumerate(candidates):
            trade = f" [{candidate.trade_name}]" if candidate.trade_name else ""
            lines.append(
                f"{index}. {candidate.description}{trade} "
                f"(estimate {candidate.estimate_total:.2f} for {candidate.quantity} {candidate.unit})"
            )
        return "\n".join(lines)

    @staticmethod
    def _parse_response(content: str) -> Classification:
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error("Failed to parse classifier response as JSON")
            raise ClassificationError("Classifier returned invalid JSON") from e

        if not isinstance(payload, dict):
            raise ClassificationError("Classifier response is not a JSON object")

        index = payload.get("candidate_index")
        if index is not None and (isinstance(index, bool) or not isinstance(index, int)):
            raise ClassificationError(f"Invalid candidate_index: {index!r}")

        try:
            confidence = float(payload.get("confidence", 0))
        except (TypeError, ValueError) as e:
            raise ClassificationError(
                f"Invalid confidence: {payload.get('confidence')!r}"
            ) from e

        reasoning = payload.get("reasoning")
        if reasoning is not None and not isinstance(reasoning, str):
            raise ClassificationError(f"Invalid reasoning: {reasoning!r}")

        return Classification(
            candidate_index=index,
            confidence=confidence,
            reasoning=reasoning,
        )


def build_classifier(config: LLMConfig) -> Optional[Classifier]:
    """Production classifier, or None when assisted matching is unavailable."""
    if not config.is_available:
        logger.info("Assisted matching disabled; running heuristic-only")
        return None
    if config.provider != "openai":
        raise ValueError(f"Unsupported LLM provider: {config.provider}")
    return OpenAIClassifier(config)
