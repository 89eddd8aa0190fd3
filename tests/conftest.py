"""
Pytest configuration and shared fixtures.

Provides stub scoring models, request/result factories, a ready pipeline
and an HTTP test client for the Lifeline test suite.

IMPORTANT: Environment variables must be set BEFORE importing lifeline
modules that use pydantic-settings, as get_settings() caches on first use.
"""

import asyncio
import os

# Set test environment variables before importing lifeline modules
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["DEBUG"] = "false"
os.environ["LLM_SCORING_ENABLED"] = "false"
os.environ["SEMANTIC_SCORING_ENABLED"] = "false"
os.environ.pop("AUDIT_LOG_DIR", None)

# Now safe to import everything else
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

from lifeline.config import Settings, get_settings
from lifeline.registry import ModelMetadata, ModelRegistry, ModelScore, ScoringModel
from lifeline.schemas.moderation import (
    CrisisLevel,
    MessageType,
    ModerationAction,
    ModerationContext,
    ModerationRequest,
    ModerationResult,
    ModelVersions,
    SentimentScore,
)
from lifeline.schemas.oversight import ExpertAvailability, ExpertProfile


def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "asyncio: mark test as async")
    config.addinivalue_line("markers", "benchmark: mark test as performance benchmark")
    config.addinivalue_line(
        "markers", "integration: mark test as requiring real API calls"
    )
    config.addinivalue_line("markers", "slow: mark test as slow-running")


class StubModel(ScoringModel):
    """
    Scoring model with a fixed answer.

    Raises ``error`` when set, and sleeps ``delay`` seconds before answering
    so time budgets can be exercised.
    """

    def __init__(
        self,
        name: str,
        score: float = 0.0,
        confidence: float = 0.9,
        weight: float = 0.5,
        categories: list[str] | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
        timeout_ms: int = 100,
    ):
        self.metadata = ModelMetadata(
            name=name,
            version="test",
            weight=weight,
            categories=categories or [],
            timeout_ms=timeout_ms,
        )
        self._score = score
        self._confidence = confidence
        self._error = error
        self._delay = delay
        self.calls = 0
        self.initialized = False

    async def initialize(self) -> None:
        self.initialized = True

    async def analyze(self, text: str, language: str) -> ModelScore:
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        return ModelScore(
            score=self._score,
            confidence=self._confidence,
            categories=list(self.metadata.categories),
        )


@pytest.fixture
def settings():
    """Settings with only the in-process heuristic scorers enabled."""
    return Settings(
        llm_scoring_enabled=False,
        semantic_scoring_enabled=False,
        audit_log_dir=None,
        log_level="WARNING",
    )


@pytest.fixture
def stub_model():
    """
    Factory fixture for StubModel instances.

    Usage:
        model = stub_model("always-high", score=0.95, weight=0.6)
    """

    def _create(name: str = "stub", **kwargs) -> StubModel:
        return StubModel(name, **kwargs)

    return _create


@pytest.fixture
def stub_registry(stub_model):
    """
    Factory fixture for a registry of stub models.

    Usage:
        registry = stub_registry(stub_model("a", score=1.0))
    """

    def _create(*models: ScoringModel) -> ModelRegistry:
        return ModelRegistry(list(models))

    return _create


@pytest.fixture
def make_request():
    """
    Factory fixture for ModerationRequest objects.

    Usage:
        request = make_request("I have the pills", MessageType.CRISIS)
    """

    def _create(
        content: str,
        message_type: MessageType = MessageType.GENERAL,
        language: str | None = None,
        ensemble_mode: bool = False,
        session_id: str | None = None,
        user_id: str | None = None,
        is_anonymous: bool = True,
    ) -> ModerationRequest:
        return ModerationRequest(
            content=content,
            language=language,
            ensemble_mode=ensemble_mode,
            context=ModerationContext(
                message_type=message_type,
                session_id=session_id,
                user_id=user_id,
                is_anonymous=is_anonymous,
            ),
        )

    return _create


@pytest.fixture
def make_result():
    """
    Factory fixture for ModerationResult objects.

    Usage:
        result = make_result(risk_score=85, crisis_level=CrisisLevel.EMERGENCY)
    """

    def _create(
        risk_score: int = 10,
        confidence_score: int = 90,
        crisis_level: CrisisLevel = CrisisLevel.NONE,
        action: ModerationAction = ModerationAction.ALLOW,
        detected_language: str = "en",
        crisis_keywords: list[str] | None = None,
        sentiment: SentimentScore | None = None,
        processing_time_ms: float = 4.0,
    ) -> ModerationResult:
        return ModerationResult(
            id=f"result-{risk_score}-{confidence_score}-{crisis_level.value}",
            safe=action == ModerationAction.ALLOW,
            risk_score=risk_score,
            confidence_score=confidence_score,
            crisis_level=crisis_level,
            detected_language=detected_language,
            sentiment=sentiment or SentimentScore(),
            action=action,
            reasoning="test result",
            crisis_keywords=crisis_keywords or [],
            processing_time_ms=processing_time_ms,
            model_versions=ModelVersions(primary="crisis-specialist-v3.0"),
        )

    return _create


@pytest.fixture
def make_expert():
    """
    Factory fixture for ExpertProfile objects.

    Usage:
        expert = make_expert("exp-1", ["crisis_counseling"], max_cases=1)
    """

    def _create(
        expert_id: str = "expert_test",
        expertise: list[str] | None = None,
        max_cases: int = 3,
        name: str = "Test Expert",
    ) -> ExpertProfile:
        return ExpertProfile(
            id=expert_id,
            name=name,
            expertise=expertise
            if expertise is not None
            else ["crisis_counseling", "safety_assessment"],
            availability=ExpertAvailability(max_concurrent_cases=max_cases),
        )

    return _create


@pytest.fixture
def mock_groq_response():
    """Create a mock Groq chat-completion response."""
    response = MagicMock()
    response.choices = [
        MagicMock(
            message=MagicMock(
                content='{"risk_score": 0.85, "confidence": 0.9, "categories": ["crisis", "self-harm"], "reasoning": "Explicit plan"}'
            )
        )
    ]
    return response


@pytest.fixture
def mock_groq_client(mock_groq_response):
    """Create a fully mocked AsyncGroq client."""
    mock = AsyncMock()
    mock.chat = MagicMock()
    mock.chat.completions = MagicMock()
    mock.chat.completions.create = AsyncMock(return_value=mock_groq_response)
    return mock


@pytest.fixture
def mock_provider_clients(mock_groq_client):
    """Mocked ProviderClients handing out the mocked Groq client."""
    mock_clients = MagicMock()
    mock_clients.groq = mock_groq_client
    mock_clients.for_provider = MagicMock(return_value=mock_groq_client)
    return mock_clients


@pytest.fixture
def pipeline(settings):
    """A SafetyPipeline over the default heuristic registry (not started)."""
    from lifeline.pipeline import SafetyPipeline

    pipe = SafetyPipeline(settings)
    yield pipe
    pipe.stop()


@pytest.fixture
def test_client():
    """
    Create a FastAPI TestClient running the real lifespan.

    Each client gets a fresh pipeline: the lifespan builds one on entry and
    stops it on exit. Settings come from the environment set above.
    """
    get_settings.cache_clear()

    from lifeline.main import app

    with TestClient(app) as client:
        yield client

    get_settings.cache_clear()
