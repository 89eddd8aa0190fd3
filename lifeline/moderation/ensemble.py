"""
Ensemble Scorer

Runs the registered scoring models concurrently over one text and folds
their votes into a single risk/confidence pair, then merges in the crisis
lexicon and sentiment signals.

Two modes:
- ensemble: every registered model (crisis/emergency contexts, or forced)
- primary: only the highest-weighted model (general content, lower latency)

Failure policy:
- A model that raises or overruns its time budget is logged and excluded;
  weights are re-normalised over the models that answered.
- If no selected model answers, EnsembleFailure is raised. An empty
  success is never returned.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from lifeline.lexicon import (
    KeywordAnalysis,
    analyze_basic_sentiment,
    analyze_keywords,
    analyze_sentiment,
)
from lifeline.registry.models import ModelRegistry, ModelScore, ScoringModel
from lifeline.schemas.moderation import ModelDecision, SentimentScore

logger = logging.getLogger(__name__)


class EnsembleFailure(RuntimeError):
    """Every selected scoring model failed for a request."""

    def __init__(self, message: str, failed_models: list[str]) -> None:
        super().__init__(message)
        self.failed_models = failed_models


@dataclass(frozen=True)
class ModelOutcome:
    """One model's result (or failure) for one request."""

    name: str
    version: str
    weight: float
    latency_ms: float
    result: ModelScore | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


@dataclass(frozen=True)
class EnsembleScore:
    """
    Combined model vote.

    Attributes:
        score: Weight-normalised mean risk over successful models (0-1)
        confidence: Weight-normalised mean confidence (0-1)
        categories: Union of reported categories, first-seen order
        outcomes: Per-model outcomes, successful and failed
        ensemble_mode: Whether all models were selected
    """

    score: float
    confidence: float
    categories: list[str]
    outcomes: list[ModelOutcome]
    ensemble_mode: bool

    @property
    def succeeded(self) -> list[ModelOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed_models(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.ok]

    @property
    def model_latency_ms(self) -> float:
        return max((o.latency_ms for o in self.outcomes), default=0.0)

    @property
    def agreement(self) -> float:
        """1 minus the spread between the highest and lowest model score."""
        scores = [o.result.score for o in self.succeeded]
        if len(scores) < 2:
            return 1.0
        return round(1.0 - (max(scores) - min(scores)), 4)

    def category_score(self, category: str) -> float:
        """Mean score of the successful models that report a category."""
        scores = [
            o.result.score for o in self.succeeded if category in o.result.categories
        ]
        return sum(scores) / len(scores) if scores else 0.0

    def decisions(self) -> list[ModelDecision]:
        return [
            ModelDecision(
                model=o.name,
                version=o.version,
                score=o.result.score,
                confidence=o.result.confidence,
                categories=list(o.result.categories),
                latency_ms=round(o.latency_ms, 3),
            )
            for o in self.succeeded
        ]


@dataclass(frozen=True)
class Assessment:
    """Model vote plus lexicon and sentiment signals for one text."""

    models: EnsembleScore
    keywords: KeywordAnalysis
    sentiment: SentimentScore
    categories: list[str] = field(default_factory=list)


class EnsembleScorer:
    """
    Fan-out scorer over a ModelRegistry.

    Usage:
        scorer = EnsembleScorer(registry)
        assessment = await scorer.assess("text", "en", ensemble=True)
    """

    def __init__(
        self,
        registry: ModelRegistry,
        protective_step: float = 0.1,
        protective_floor: float = 0.3,
    ) -> None:
        self.registry = registry
        self._protective_step = protective_step
        self._protective_floor = protective_floor

    def select_models(self, ensemble: bool) -> list[ScoringModel]:
        if ensemble:
            return self.registry.list_models()
        primary = self.registry.primary_model()
        return [primary] if primary is not None else []

    async def score(self, text: str, language: str, *, ensemble: bool) -> EnsembleScore:
        """
        Run the selected models concurrently and combine their scores.

        Every selected model is awaited; there is no early exit, since each
        vote contributes to the weighted average.

        Raises:
            EnsembleFailure: If no model is registered or all of them fail
        """
        models = self.select_models(ensemble)
        if not models:
            raise EnsembleFailure("No scoring models registered", failed_models=[])

        outcomes = list(
            await asyncio.gather(*(self._run(model, text, language) for model in models))
        )
        succeeded = [o for o in outcomes if o.ok]

        if not succeeded:
            failed = [o.name for o in outcomes]
            logger.error("All %d scoring models failed: %s", len(outcomes), ", ".join(failed))
            raise EnsembleFailure("All scoring models failed", failed_models=failed)

        total_weight = sum(o.weight for o in succeeded)
        score = sum(o.result.score * o.weight for o in succeeded) / total_weight
        confidence = sum(o.result.confidence * o.weight for o in succeeded) / total_weight

        categories: list[str] = []
        for outcome in succeeded:
            for category in outcome.result.categories:
                if category not in categories:
                    categories.append(category)

        return EnsembleScore(
            score=round(min(max(score, 0.0), 1.0), 4),
            confidence=round(min(max(confidence, 0.0), 1.0), 4),
            categories=categories,
            outcomes=outcomes,
            ensemble_mode=ensemble,
        )

    async def assess(self, text: str, language: str, *, ensemble: bool) -> Assessment:
        """
        Model vote plus lexicon severity and sentiment.

        Ensemble mode uses the full emotion analysis; primary mode the
        cheaper polarity count.
        """
        models = await self.score(text, language, ensemble=ensemble)
        keywords = analyze_keywords(
            text,
            language,
            protective_step=self._protective_step,
            protective_floor=self._protective_floor,
        )
        sentiment = (
            analyze_sentiment(text, language)
            if ensemble
            else analyze_basic_sentiment(text, language)
        )

        categories = list(models.categories)
        if keywords.detected and keywords.category not in categories:
            categories.append(keywords.category)

        return Assessment(
            models=models,
            keywords=keywords,
            sentiment=sentiment,
            categories=categories,
        )

    async def _run(self, model: ScoringModel, text: str, language: str) -> ModelOutcome:
        meta = model.metadata
        start_time = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                model.analyze(text, language), timeout=meta.timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("Model %s timed out after %.0fms", meta.name, latency_ms)
            return ModelOutcome(
                name=meta.name,
                version=meta.version,
                weight=meta.weight,
                latency_ms=latency_ms,
                error=f"timeout after {meta.timeout_ms}ms",
            )
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.warning("Model %s failed: %s", meta.name, e)
            return ModelOutcome(
                name=meta.name,
                version=meta.version,
                weight=meta.weight,
                latency_ms=latency_ms,
                error=str(e) or type(e).__name__,
            )

        return ModelOutcome(
            name=meta.name,
            version=meta.version,
            weight=meta.weight,
            latency_ms=(time.perf_counter() - start_time) * 1000,
            result=result,
        )
