"""
Scoring Model Registry

This module defines the scoring-model interface and the registry the
ensemble draws from:
- ModelMetadata: name, version, weight, kind, categories, time budget
- ScoringModel: async ``analyze(text, language) -> ModelScore``
- ModelRegistry: ordered collection with ``primary_model()`` selection

Three heuristic models are always registered:
- toxicity-detector v2.1 (weight 0.3): insults and self-directed abuse
- crisis-specialist v3.0 (weight 0.4): suicide and self-harm language
- general-safety v2.5 (weight 0.3): harassment, violence and spam

The LLM-backed and embedding-backed scorers in providers.py and
semantic.py are registered on top of these when enabled in settings.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
import logging

from pydantic import BaseModel, Field

from lifeline.config import Settings

logger = logging.getLogger(__name__)


class ModelKind(str, Enum):
    """How a scoring model produces its score."""

    HEURISTIC = "heuristic"  # Word lists, in-process, sub-millisecond
    LLM = "llm"  # Hosted chat-completion model
    SEMANTIC = "semantic"  # Local embedding similarity


class ModelMetadata(BaseModel):
    """
    Descriptive metadata for a registered scoring model.

    ``weight`` is relative: the ensemble normalises weights over whichever
    models actually returned a score.
    """

    name: str = Field(..., min_length=1, description="Unique model name")

    version: str = Field(..., min_length=1, description="Model version tag")

    weight: float = Field(..., gt=0, description="Relative ensemble weight")

    kind: ModelKind = Field(default=ModelKind.HEURISTIC)

    categories: list[str] = Field(
        default_factory=list,
        description="Categories this model reports on",
    )

    timeout_ms: int = Field(
        default=100,
        gt=0,
        description="Time budget for one analyze() call",
    )

    @property
    def qualified_name(self) -> str:
        return f"{self.name}-{self.version}"


@dataclass(frozen=True)
class ModelScore:
    """One model's verdict on one text."""

    score: float
    confidence: float
    categories: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"score out of range: {self.score}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")


class ScoringModel(ABC):
    """
    Interface every ensemble member implements.

    ``analyze`` may raise; the ensemble excludes a failing model from the
    weighted average instead of failing the request.
    """

    metadata: ModelMetadata

    @property
    def name(self) -> str:
        return self.metadata.name

    async def initialize(self) -> None:
        """Load anything expensive (indexes, clients) before the first request."""

    @abstractmethod
    async def analyze(self, text: str, language: str) -> ModelScore:
        ...


class KeywordScoringModel(ScoringModel):
    """
    Heuristic scorer: a fixed per-hit score over a substring word list.

    score = min(hits * per_hit, 1.0); confidence is constant.
    """

    def __init__(
        self,
        metadata: ModelMetadata,
        terms: tuple[str, ...],
        per_hit: float,
        confidence: float,
    ) -> None:
        self.metadata = metadata
        self._terms = terms
        self._per_hit = per_hit
        self._confidence = confidence

    async def analyze(self, text: str, language: str) -> ModelScore:
        lowered = text.lower()
        hits = sum(1 for term in self._terms if term in lowered)
        return ModelScore(
            score=min(hits * self._per_hit, 1.0),
            confidence=self._confidence,
            categories=list(self.metadata.categories),
        )


def toxicity_detector() -> KeywordScoringModel:
    return KeywordScoringModel(
        ModelMetadata(
            name="toxicity-detector",
            version="v2.1",
            weight=0.3,
            categories=["toxicity"],
        ),
        terms=("hate", "stupid", "idiot", "kill yourself"),
        per_hit=0.3,
        confidence=0.9,
    )


def crisis_specialist() -> KeywordScoringModel:
    return KeywordScoringModel(
        ModelMetadata(
            name="crisis-specialist",
            version="v3.0",
            weight=0.4,
            categories=["crisis", "self-harm"],
        ),
        terms=("suicide", "kill myself", "end my life", "die", "hopeless"),
        per_hit=0.4,
        confidence=0.95,
    )


def general_safety() -> KeywordScoringModel:
    return KeywordScoringModel(
        ModelMetadata(
            name="general-safety",
            version="v2.5",
            weight=0.3,
            categories=["harassment", "violence", "spam"],
        ),
        terms=("violence", "attack", "hurt someone", "spam", "buy now"),
        per_hit=0.25,
        confidence=0.85,
    )


class ModelRegistry:
    """
    Ordered collection of scoring models.

    Registration order is preserved and breaks weight ties in
    ``primary_model()``. The registry is built once at startup and read
    concurrently afterwards; it is not mutated on the request path.
    """

    def __init__(self, models: list[ScoringModel] | None = None) -> None:
        self._models: dict[str, ScoringModel] = {}
        for model in models or []:
            self.register(model)

    def register(self, model: ScoringModel) -> None:
        """Register a model, replacing any model of the same name."""
        self._models[model.name] = model
        logger.debug(
            "Registered scoring model %s (weight=%.2f)",
            model.metadata.qualified_name,
            model.metadata.weight,
        )

    def unregister(self, name: str) -> bool:
        return self._models.pop(name, None) is not None

    def get_model(self, name: str) -> ScoringModel | None:
        return self._models.get(name)

    def list_models(self) -> list[ScoringModel]:
        return list(self._models.values())

    def list_metadata(self) -> list[ModelMetadata]:
        return [model.metadata for model in self._models.values()]

    def primary_model(self) -> ScoringModel | None:
        """
        The highest-weighted model; the earliest registered wins a tie.

        Returns:
            The primary ScoringModel, or None when the registry is empty
        """
        primary: ScoringModel | None = None
        for model in self._models.values():
            if primary is None or model.metadata.weight > primary.metadata.weight:
                primary = model
        return primary

    def __len__(self) -> int:
        return len(self._models)

    def __contains__(self, name: object) -> bool:
        return name in self._models


def build_default_registry(settings: Settings) -> ModelRegistry:
    """
    Build the registry for a pipeline from settings.

    The heuristic trio is always present. The LLM scorer is added when
    ``llm_scoring_enabled`` is set and a key for the chosen provider is
    configured; the semantic scorer when ``semantic_scoring_enabled`` is set.

    Args:
        settings: Application settings

    Returns:
        A populated ModelRegistry
    """
    registry = ModelRegistry([toxicity_detector(), crisis_specialist(), general_safety()])

    if settings.llm_scoring_enabled:
        from lifeline.registry.providers import LLMScoringModel, has_provider_key

        if has_provider_key(settings):
            registry.register(LLMScoringModel.from_settings(settings))
        else:
            logger.warning(
                "LLM scoring enabled but no %s API key configured; skipping",
                settings.llm_provider,
            )

    if settings.semantic_scoring_enabled:
        from lifeline.registry.semantic import SemanticCrisisModel

        registry.register(SemanticCrisisModel.from_settings(settings))

    logger.info(
        "Scoring registry ready: %s",
        ", ".join(m.qualified_name for m in registry.list_metadata()),
    )
    return registry
