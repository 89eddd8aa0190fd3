"""
Registry module: scoring models available to the ensemble.

Example usage:
    from lifeline.registry import build_default_registry

    registry = build_default_registry(settings)
    primary = registry.primary_model()
"""

from lifeline.registry.models import (
    KeywordScoringModel,
    ModelKind,
    ModelMetadata,
    ModelRegistry,
    ModelScore,
    ScoringModel,
    build_default_registry,
    crisis_specialist,
    general_safety,
    toxicity_detector,
)

__all__ = [
    "KeywordScoringModel",
    "ModelKind",
    "ModelMetadata",
    "ModelRegistry",
    "ModelScore",
    "ScoringModel",
    "build_default_registry",
    "crisis_specialist",
    "general_safety",
    "toxicity_detector",
]
