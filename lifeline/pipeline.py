"""
Safety Pipeline

Wires one moderation engine, one oversight manager, one audit recorder and
the metrics store together, plus the background maintenance tasks that keep
them tidy. Built explicitly from Settings so tests and the demo runner can
hold several independent pipelines side by side.
"""

import logging

from lifeline.audit import AuditRecorder
from lifeline.audit.store import AuditStore
from lifeline.config import Settings
from lifeline.maintenance import PeriodicTask
from lifeline.metrics import MetricsReporter, MetricsStore
from lifeline.moderation import EMERGENCY_DETECTED, EnsembleScorer, ModerationEngine
from lifeline.oversight import OversightManager
from lifeline.registry import ModelRegistry, build_default_registry
from lifeline.schemas.api import TriageResponse
from lifeline.schemas.moderation import ModerationAction, ModerationRequest, ModerationResult
from lifeline.schemas.oversight import ExpertProfile

logger = logging.getLogger(__name__)

_OVERSIGHT_ACTIONS = frozenset({ModerationAction.ESCALATE, ModerationAction.EMERGENCY})


class SafetyPipeline:
    """
    Moderation, oversight and audit behind a single entry point.

    Usage:
        pipeline = SafetyPipeline(settings)
        await pipeline.start()
        triage = await pipeline.process(request)
        pipeline.stop()
    """

    def __init__(
        self,
        settings: Settings,
        registry: ModelRegistry | None = None,
        audit_store: AuditStore | None = None,
        experts: list[ExpertProfile] | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry if registry is not None else build_default_registry(settings)
        self.metrics = MetricsStore(latency_budget_ms=settings.latency_budget_ms)
        self.recorder = AuditRecorder(settings, store=audit_store)
        self.scorer = EnsembleScorer(
            self.registry,
            protective_step=settings.protective_factor_step,
            protective_floor=settings.protective_factor_floor,
        )
        self.engine = ModerationEngine(settings, self.scorer, self.metrics, self.recorder)
        self.oversight = OversightManager(settings, self.recorder, experts=experts)
        self.engine.on(EMERGENCY_DETECTED, _log_emergency)

        flusher = PeriodicTask(
            "audit-flush", settings.audit_flush_interval_seconds, self.recorder.flush
        )
        self.recorder.on_buffer_full(flusher.wake)
        self._tasks = [
            flusher,
            PeriodicTask(
                "moderation-cache-sweep",
                settings.maintenance_interval_seconds,
                self.engine.sweep_caches,
            ),
            PeriodicTask(
                "analytics-cache-sweep",
                settings.maintenance_interval_seconds,
                self.recorder.sweep_analytics_cache,
            ),
            PeriodicTask(
                "metrics-log", settings.metrics_log_interval_seconds, self.log_summary
            ),
        ]
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    @property
    def tasks(self) -> list[PeriodicTask]:
        return list(self._tasks)

    async def start(self) -> None:
        """Initialize every scoring model and start the background tasks."""
        if self._started:
            return
        for model in self.registry.list_models():
            await model.initialize()
        for task in self._tasks:
            task.start()
        self._started = True
        logger.info(
            "Safety pipeline started: %d model(s), %d expert(s)",
            len(self.registry),
            len(self.oversight.list_experts()),
        )

    def stop(self) -> None:
        """Stop the background tasks and flush the audit buffer."""
        for task in self._tasks:
            task.stop()
        self.recorder.close()
        self._started = False
        logger.info("Safety pipeline stopped")

    async def moderate(self, request: ModerationRequest) -> ModerationResult:
        return await self.engine.moderate(request)

    async def process(self, request: ModerationRequest) -> TriageResponse:
        """
        Moderate a message, then open an oversight case when warranted.

        Oversight is evaluated for crisis/emergency channels and for any
        ESCALATE or EMERGENCY decision; everything else returns the
        moderation result alone.
        """
        result = await self.engine.moderate(request)
        if not (request.context.is_crisis or result.action in _OVERSIGHT_ACTIONS):
            return TriageResponse(result=result)

        evaluation = self.oversight.evaluate(request.content, result, request.context)
        return TriageResponse(result=result, oversight=evaluation)

    def log_summary(self) -> None:
        MetricsReporter(self.metrics).log_summary()
        self.oversight.log_summary()


def _log_emergency(result: ModerationResult) -> None:
    logger.critical(
        "EMERGENCY detected: result=%s risk=%d keywords=%s",
        result.id,
        result.risk_score,
        ", ".join(result.crisis_keywords) or "none",
    )
