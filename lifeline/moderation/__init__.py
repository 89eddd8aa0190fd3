"""
Moderation module: ensemble scoring and the moderation engine.

Example usage:
    from lifeline.moderation import EnsembleScorer, ModerationEngine

    scorer = EnsembleScorer(build_default_registry(settings))
    engine = ModerationEngine(settings, scorer, MetricsStore())
    result = await engine.moderate(ModerationRequest(content="..."))
"""

from lifeline.moderation.cache import TTLCache
from lifeline.moderation.ensemble import (
    Assessment,
    EnsembleFailure,
    EnsembleScore,
    EnsembleScorer,
    ModelOutcome,
)
from lifeline.moderation.engine import (
    EMERGENCY_DETECTED,
    MODERATION_COMPLETE,
    SYSTEM_ERROR_REASONING,
    ModerationEngine,
    determine_action,
)

__all__ = [
    "TTLCache",
    "Assessment",
    "EnsembleFailure",
    "EnsembleScore",
    "EnsembleScorer",
    "ModelOutcome",
    "EMERGENCY_DETECTED",
    "MODERATION_COMPLETE",
    "SYSTEM_ERROR_REASONING",
    "ModerationEngine",
    "determine_action",
]
