"""
Oversight module: human review of high-stakes or uncertain decisions.

Components:
    OversightManager: Evaluates decisions, opens cases, assigns and resolves them
    CaseQueue: Priority queue of unassigned cases (priority, then arrival)
    ExpertPool: Reviewer roster with capacity bookkeeping and scoring

Usage:
    from lifeline.oversight import OversightManager

    manager = OversightManager(settings, recorder)
    evaluation = manager.evaluate(content, result, context)
"""

from lifeline.oversight.experts import (
    ExpertPool,
    default_experts,
    expertise_overlap,
    score_expert,
)
from lifeline.oversight.manager import (
    OversightAnalysis,
    OversightManager,
    analyze_oversight_need,
    upgrade_priority,
    urgency_score,
)
from lifeline.oversight.queue import CaseQueue

__all__ = [
    "ExpertPool",
    "default_experts",
    "expertise_overlap",
    "score_expert",
    "OversightAnalysis",
    "OversightManager",
    "analyze_oversight_need",
    "upgrade_priority",
    "urgency_score",
    "CaseQueue",
]
