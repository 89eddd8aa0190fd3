"""
Moderation Engine - the single entry point for scoring a message.

Per request:
1. Short-circuit empty content to a safe ALLOW result
2. Look up the result cache (5 min TTL, truncated content + context key)
3. Detect language (separately cached) unless the caller supplied one
4. Choose ensemble or primary-model mode
5. Classify the crisis level from lexicon severity and sentiment
6. Determine the action; crisis channels are never blocked
7. Emit monitoring events, record metrics, forward to the audit trail

Error policy:
- Empty input is not an error: it yields a well-formed safe result.
- Total model failure yields a synthetic non-ALLOW result asking for
  manual review; ``moderate`` itself never raises.
"""

import hashlib
import logging
import time
import uuid
from collections import defaultdict
from typing import TYPE_CHECKING, Callable

from lifeline.config import Settings
from lifeline.lexicon import (
    LanguageDetection,
    analyze_keywords,
    analyze_sentiment,
    classify_crisis_level,
    detect_language,
)
from lifeline.metrics.reporter import MetricsReporter
from lifeline.metrics.store import MetricsStore, RequestMetric
from lifeline.moderation.cache import TTLCache
from lifeline.moderation.ensemble import Assessment, EnsembleFailure, EnsembleScorer
from lifeline.schemas.moderation import (
    CategoryFlags,
    CrisisLevel,
    DecisionAuditTrail,
    MessageType,
    ModerationAction,
    ModerationRequest,
    ModerationResult,
    ModelVersions,
    SentimentScore,
)

if TYPE_CHECKING:
    from lifeline.audit.recorder import AuditRecorder

logger = logging.getLogger(__name__)

MODERATION_COMPLETE = "moderation_complete"
EMERGENCY_DETECTED = "emergency_detected"

SYSTEM_ERROR_REASONING = "System error - manual review required"

Listener = Callable[[ModerationResult], None]


def determine_action(
    crisis_level: CrisisLevel,
    risk: float,
    message_type: MessageType,
    block_threshold: float = 0.8,
    flag_threshold: float = 0.6,
) -> ModerationAction:
    """
    Map crisis level, risk (0-1) and channel to an action.

    Crisis and emergency channels never resolve to BLOCK: EMERGENCY stays
    EMERGENCY, CRITICAL and HIGH escalate, everything else is allowed.
    Elsewhere the risk thresholds additionally permit BLOCK and FLAG.
    """
    if message_type in (MessageType.CRISIS, MessageType.EMERGENCY):
        if crisis_level == CrisisLevel.EMERGENCY:
            return ModerationAction.EMERGENCY
        if crisis_level in (CrisisLevel.CRITICAL, CrisisLevel.HIGH):
            return ModerationAction.ESCALATE
        return ModerationAction.ALLOW

    if crisis_level == CrisisLevel.EMERGENCY:
        return ModerationAction.EMERGENCY
    if crisis_level == CrisisLevel.CRITICAL:
        return ModerationAction.ESCALATE
    if risk > block_threshold:
        return ModerationAction.BLOCK
    if risk > flag_threshold or crisis_level == CrisisLevel.HIGH:
        return ModerationAction.FLAG
    return ModerationAction.ALLOW


def build_reasoning(
    risk: float,
    crisis_level: CrisisLevel,
    categories: list[str],
    sentiment: SentimentScore,
    matched_terms: list[str],
) -> str:
    reasons = []
    if crisis_level != CrisisLevel.NONE:
        reasons.append(f"Crisis level: {crisis_level.value}")
    if matched_terms:
        reasons.append(f"Crisis language matched ({len(matched_terms)} phrase(s))")
    if risk > 0.7:
        reasons.append(f"High risk score: {round(risk * 100)}%")
    if "toxicity" in categories and risk > 0:
        reasons.append("Toxic language detected")
    if sentiment.overall < -0.5:
        reasons.append("Highly negative sentiment detected")
    return "; ".join(reasons) if reasons else "Content appears safe"


def build_recommendations(
    crisis_level: CrisisLevel, sentiment: SentimentScore
) -> list[str]:
    if crisis_level == CrisisLevel.EMERGENCY:
        return [
            "Immediate emergency intervention required",
            "Contact emergency services",
            "Assign crisis specialist immediately",
        ]
    if crisis_level in (CrisisLevel.CRITICAL, CrisisLevel.HIGH):
        return [
            "Escalate to senior volunteer",
            "Monitor conversation closely",
            "Provide crisis resources",
        ]
    if sentiment.emotions.despair > 0.6:
        return ["Provide emotional support", "Share coping resources"]
    return []


class ModerationEngine:
    """
    Orchestrates language detection, caching, scoring and decision.

    Owns the result and language caches; both are safe for concurrent use.
    One instance is created per pipeline and shared across requests.

    Usage:
        engine = ModerationEngine(settings, scorer, metrics, recorder)
        engine.on("emergency_detected", page_on_call)
        result = await engine.moderate(request)
    """

    def __init__(
        self,
        settings: Settings,
        scorer: EnsembleScorer,
        metrics: MetricsStore,
        recorder: "AuditRecorder | None" = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self.scorer = scorer
        self.metrics = metrics
        self._recorder = recorder
        self._result_cache: TTLCache[ModerationResult] = TTLCache(
            settings.cache_ttl_seconds, settings.cache_max_entries, clock=clock
        )
        self._language_cache: TTLCache[LanguageDetection] = TTLCache(
            settings.cache_ttl_seconds, settings.cache_max_entries, clock=clock
        )
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: str, callback: Listener) -> None:
        """Register a callback for ``moderation_complete`` or ``emergency_detected``."""
        self._listeners[event].append(callback)

    def _emit(self, event: str, result: ModerationResult) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(result)
            except Exception:
                logger.exception("Listener for %s failed", event)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def moderate(self, request: ModerationRequest) -> ModerationResult:
        """
        Moderate one message.

        Never raises: empty input and total model failure both produce a
        well-formed result the caller can act on.
        """
        start_time = time.perf_counter()
        context = request.context

        if not request.content or not request.content.strip():
            result = self._empty_result(start_time)
            return self._finish(request, result, cached=False)

        cache_key = self._cache_key(request)
        cached = self._result_cache.get(cache_key)
        if cached is not None:
            result = cached.model_copy(
                update={
                    "id": str(uuid.uuid4()),
                    "cached": True,
                    "processing_time_ms": _elapsed_ms(start_time),
                }
            )
            logger.debug("Result cache hit for %s", result.id)
            return self._finish(request, result, cached=True)

        language = request.language or self.detect_language(request.content).language
        ensemble = request.ensemble_mode or context.is_crisis

        try:
            assessment = await self.scorer.assess(
                request.content, language, ensemble=ensemble
            )
        except EnsembleFailure as e:
            result = self._system_error_result(request, language, start_time, e.failed_models)
            return self._finish(request, result, cached=False, system_error=True)
        except Exception:
            logger.exception("Moderation failed unexpectedly")
            result = self._system_error_result(request, language, start_time, [])
            return self._finish(request, result, cached=False, system_error=True)

        result = self._build_result(request, language, assessment, start_time)
        self._result_cache.set(cache_key, result)
        return self._finish(
            request,
            result,
            cached=False,
            failed_models=len(assessment.models.failed_models),
        )

    def detect_language(self, text: str) -> LanguageDetection:
        key = text[: self._settings.language_cache_key_chars]
        detection = self._language_cache.get(key)
        if detection is None:
            detection = detect_language(text)
            self._language_cache.set(key, detection)
        return detection

    def sweep_caches(self) -> int:
        """Drop expired cache entries. Returns how many were removed."""
        removed = self._result_cache.sweep() + self._language_cache.sweep()
        if removed:
            logger.debug("Swept %d expired moderation cache entries", removed)
        return removed

    def validate_performance(self) -> bool:
        return MetricsReporter(self.metrics).validate_performance()

    @property
    def cache_size(self) -> int:
        return len(self._result_cache)

    # ------------------------------------------------------------------
    # Result construction
    # ------------------------------------------------------------------

    def _build_result(
        self,
        request: ModerationRequest,
        language: str,
        assessment: Assessment,
        start_time: float,
    ) -> ModerationResult:
        models = assessment.models
        keywords = assessment.keywords
        crisis_level = classify_crisis_level(keywords, assessment.sentiment)
        action = determine_action(
            crisis_level,
            models.score,
            request.context.message_type,
            self._settings.block_risk_threshold,
            self._settings.flag_risk_threshold,
        )

        names = [f"{o.name}-{o.version}" for o in models.outcomes]
        if models.ensemble_mode:
            versions = ModelVersions(primary="ensemble", ensemble=names)
        else:
            versions = ModelVersions(primary=names[0])

        return ModerationResult(
            id=str(uuid.uuid4()),
            safe=action == ModerationAction.ALLOW,
            risk_score=round(models.score * 100),
            confidence_score=round(models.confidence * 100),
            crisis_level=crisis_level,
            categories=assessment.categories,
            detected_language=language,
            flags=CategoryFlags(
                toxicity=round(models.category_score("toxicity") * 100, 2),
                harassment=round(models.category_score("harassment") * 100, 2),
                self_harm=round(models.category_score("self-harm") * 100, 2),
                violence=round(models.category_score("violence") * 100, 2),
                spam=round(models.category_score("spam") * 100, 2),
                crisis=round(keywords.severity * 100, 2),
            ),
            sentiment=assessment.sentiment,
            action=action,
            reasoning=build_reasoning(
                models.score,
                crisis_level,
                assessment.categories,
                assessment.sentiment,
                keywords.matched_terms,
            ),
            recommendations=build_recommendations(crisis_level, assessment.sentiment),
            crisis_keywords=keywords.matched_terms,
            processing_time_ms=_elapsed_ms(start_time),
            model_versions=versions,
            audit_trail=DecisionAuditTrail(
                model_decisions=models.decisions(),
                failed_models=models.failed_models,
            ),
        )

    def _empty_result(self, start_time: float) -> ModerationResult:
        return ModerationResult(
            id=str(uuid.uuid4()),
            safe=True,
            risk_score=0,
            confidence_score=100,
            crisis_level=CrisisLevel.NONE,
            detected_language="en",
            action=ModerationAction.ALLOW,
            reasoning="Empty content",
            processing_time_ms=_elapsed_ms(start_time),
            model_versions=ModelVersions(primary="empty-content-handler"),
        )

    def _system_error_result(
        self,
        request: ModerationRequest,
        language: str,
        start_time: float,
        failed_models: list[str],
    ) -> ModerationResult:
        """
        Synthetic result when no model could score the message.

        The lexicon still runs, so an unmistakable emergency is not lost.
        The action is never ALLOW: FLAG elsewhere, ESCALATE on crisis
        channels, or stronger when the lexicon demands it.
        """
        keywords = analyze_keywords(
            request.content,
            language,
            protective_step=self._settings.protective_factor_step,
            protective_floor=self._settings.protective_factor_floor,
        )
        sentiment = analyze_sentiment(request.content, language)
        crisis_level = classify_crisis_level(keywords, sentiment)
        action = determine_action(
            crisis_level,
            0.5,
            request.context.message_type,
            self._settings.block_risk_threshold,
            self._settings.flag_risk_threshold,
        )
        if action == ModerationAction.ALLOW:
            action = (
                ModerationAction.ESCALATE
                if request.context.is_crisis
                else ModerationAction.FLAG
            )

        recommendations = ["Manual review required due to system error"]
        recommendations.extend(build_recommendations(crisis_level, sentiment))

        return ModerationResult(
            id=str(uuid.uuid4()),
            safe=False,
            risk_score=50,
            confidence_score=0,
            crisis_level=crisis_level,
            categories=["system-error"],
            detected_language=language,
            flags=CategoryFlags(crisis=round(keywords.severity * 100, 2)),
            sentiment=sentiment,
            action=action,
            reasoning=SYSTEM_ERROR_REASONING,
            recommendations=recommendations,
            crisis_keywords=keywords.matched_terms,
            processing_time_ms=_elapsed_ms(start_time),
            model_versions=ModelVersions(primary="error-handler"),
            audit_trail=DecisionAuditTrail(failed_models=failed_models),
        )

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _finish(
        self,
        request: ModerationRequest,
        result: ModerationResult,
        cached: bool,
        failed_models: int = 0,
        system_error: bool = False,
    ) -> ModerationResult:
        budget = self._settings.latency_budget_ms
        if result.processing_time_ms > budget:
            logger.warning(
                "Moderation exceeded latency budget: %.2fms (budget %.0fms)",
                result.processing_time_ms,
                budget,
            )

        self.metrics.record(
            RequestMetric(
                timestamp=time.time(),
                action=result.action.value,
                crisis_level=result.crisis_level.value,
                message_type=request.context.message_type.value,
                latency_ms=result.processing_time_ms,
                cached=cached,
                ensemble_mode=result.model_versions.ensemble is not None,
                failed_models=failed_models,
                system_error=system_error,
            )
        )

        logger.debug(
            "Moderated %s: action=%s level=%s risk=%d len=%d %.2fms",
            result.id,
            result.action.value,
            result.crisis_level.value,
            result.risk_score,
            len(request.content),
            result.processing_time_ms,
        )

        self._emit(MODERATION_COMPLETE, result)
        if result.crisis_level == CrisisLevel.EMERGENCY:
            self._emit(EMERGENCY_DETECTED, result)

        if self._recorder is not None:
            self._recorder.record_moderation(request, result)

        return result

    def _cache_key(self, request: ModerationRequest) -> str:
        content = request.content
        fingerprint = "\x1f".join(
            (
                content[: self._settings.cache_key_chars],
                hashlib.sha256(content.encode("utf-8")).hexdigest(),
                request.context.message_type.value,
                request.language or "auto",
                "ensemble" if request.ensemble_mode else "auto",
            )
        )
        return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000
