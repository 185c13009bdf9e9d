"""Shared dependencies for SiteCost web routes.

Injected with FastAPI's Depends(); tests swap them through
app.dependency_overrides.
"""

from __future__ import annotations

from sitecost.config import get_config
from sitecost.db.connection import get_session_factory
from sitecost.matching.classifier import build_classifier
from sitecost.matching.matcher import Matcher
from sitecost.matching.orchestrator import BatchMatchingOrchestrator


def get_orchestrator() -> BatchMatchingOrchestrator:
    """Batch matching orchestrator wired from application configuration."""
    config = get_config()
    return BatchMatchingOrchestrator(
        session_factory=get_session_factory(),
        matcher=Matcher(config.matching),
        classifier=build_classifier(config.llm),
        config=config.matching,
    )
