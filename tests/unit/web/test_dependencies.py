"""Tests for sitecost.web.dependencies - Shared dependency providers."""

from unittest.mock import patch

from sitecost.config import get_config
from sitecost.matching.classifier import OpenAIClassifier
from sitecost.matching.orchestrator import BatchMatchingOrchestrator
from sitecost.web.dependencies import get_orchestrator


@patch("sitecost.web.dependencies.get_session_factory")
def test_get_orchestrator_heuristic_only_without_key(mock_factory):
    orchestrator = get_orchestrator()

    assert isinstance(orchestrator, BatchMatchingOrchestrator)
    assert orchestrator.classifier is None
    assert orchestrator.session_factory is mock_factory.return_value


@patch("sitecost.web.dependencies.get_session_factory")
def test_get_orchestrator_uses_matching_config(mock_factory, monkeypatch):
    monkeypatch.setenv("MATCH_BATCH_SIZE", "3")

    orchestrator = get_orchestrator()

    assert orchestrator.config.batch_size == 3
    assert orchestrator.matcher.config is get_config().matching


@patch("sitecost.web.dependencies.get_session_factory")
def test_get_orchestrator_assisted_with_key(mock_factory, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("ASSISTED_MATCHING_ENABLED", "true")

    orchestrator = get_orchestrator()

    assert isinstance(orchestrator.classifier, OpenAIClassifier)
