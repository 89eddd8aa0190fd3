"""
Pydantic Schemas for Human Oversight

Cases, expert profiles and the request/response models of the oversight
escalation manager. Cases and experts are mutable inside the manager; every
value handed out of it is a deep copy, so callers never observe (or cause)
a half-applied transition.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from lifeline.schemas.moderation import (
    CrisisLevel,
    ModerationAction,
    ModerationContext,
    ModerationResult,
    SentimentScore,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMERATIONS
# =============================================================================


class OversightPriority(str, Enum):
    """
    Case priority, totally ordered LOW < MEDIUM < HIGH < URGENT < EMERGENCY.

    Drives queue position, urgency and the response-time budget.
    """

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"
    EMERGENCY = "EMERGENCY"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    @property
    def response_minutes(self) -> int:
        """Response-time budget for a case at this priority."""
        return _RESPONSE_MINUTES[self.value]


_PRIORITY_ORDER = list(OversightPriority)

_RESPONSE_MINUTES = {
    "EMERGENCY": 5,
    "URGENT": 15,
    "HIGH": 60,
    "MEDIUM": 240,
    "LOW": 1440,
}


class CaseType(str, Enum):
    """Why a case was opened."""

    EDGE_CASE = "edge_case"
    AMBIGUOUS_CONTENT = "ambiguous_content"
    AI_UNCERTAINTY = "ai_uncertainty"
    ESCALATION_REVIEW = "escalation_review"
    QUALITY_CHECK = "quality_check"
    LEARNING_CASE = "learning_case"


class CaseStatus(str, Enum):
    """Case lifecycle: pending -> assigned -> in_review -> resolved | escalated_further."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    ESCALATED_FURTHER = "escalated_further"


class HumanDecision(str, Enum):
    """Expert verdict on the automated decision."""

    APPROVE_AI = "approve_ai"
    OVERRIDE_AI = "override_ai"
    MODIFY_AI = "modify_ai"
    ESCALATE_FURTHER = "escalate_further"


class Expertise(str, Enum):
    """Expertise tags a case can require."""

    CRISIS_COUNSELING = "crisis_counseling"
    PSYCHIATRIC_EVALUATION = "psychiatric_evaluation"
    SAFETY_ASSESSMENT = "safety_assessment"
    CULTURAL_CONTEXT = "cultural_context"
    LANGUAGE_SPECIALIST = "language_specialist"


class ExpertStatus(str, Enum):
    AVAILABLE = "available"
    BUSY = "busy"
    OFFLINE = "offline"


# =============================================================================
# CASE MODELS
# =============================================================================


class AIAnalysisSnapshot(BaseModel):
    """Salient fields of the moderation result that triggered the case."""

    moderation_id: str
    risk_score: int = Field(..., ge=0, le=100)
    confidence_score: int = Field(..., ge=0, le=100)
    crisis_level: CrisisLevel
    action: ModerationAction
    detected_keywords: list[str] = Field(default_factory=list)
    sentiment: SentimentScore = Field(default_factory=SentimentScore)
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    model_versions: list[str] = Field(default_factory=list)
    uncertainty_factors: list[str] = Field(default_factory=list)


class OversightRequirements(BaseModel):
    """What the case needs from a reviewer and how soon."""

    expertise_needed: list[Expertise] = Field(default_factory=list)

    urgency: float = Field(..., ge=1.0, le=10.0, description="Urgency score (1-10)")

    reason_for_escalation: str

    suggested_actions: list[str] = Field(default_factory=list)

    time_limit_minutes: int = Field(..., gt=0, description="Response-time budget")


class AssignedExpert(BaseModel):
    id: str
    name: str
    expertise: list[str] = Field(default_factory=list)
    assigned_at: datetime = Field(default_factory=_utcnow)


class ResolutionInput(BaseModel):
    """
    An expert's resolution of a case, as submitted by the review console.

    Example:
        {
            "human_decision": "override_ai",
            "final_action": "ESCALATE",
            "reasoning": "Sarcasm, but the session history shows real risk",
            "confidence": 0.85
        }
    """

    human_decision: HumanDecision

    final_action: ModerationAction

    final_risk_score: int | None = Field(default=None, ge=0, le=100)

    reasoning: str = Field(..., min_length=1, max_length=5000)

    recommendations: list[str] = Field(default_factory=list)

    confidence: float | None = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Reviewer confidence (defaults by decision when omitted)",
    )


class CaseResolution(ResolutionInput):
    """A resolution once stamped by the oversight manager."""

    resolved_at: datetime = Field(default_factory=_utcnow)
    resolved_by: str
    time_to_resolution_ms: float = Field(..., ge=0.0)


class LearningData(BaseModel):
    """Learning signal derived from a resolution."""

    ai_was_correct: bool
    human_confidence: float = Field(..., ge=0.0, le=1.0)
    lesson_learned: str
    pattern_identified: str | None = None
    training_data_candidate: bool


class OversightCase(BaseModel):
    """A unit of work requiring human review of an automated decision."""

    id: str
    priority: OversightPriority
    case_type: CaseType
    original_content: str
    content_language: str = "en"
    context: ModerationContext
    ai_analysis: AIAnalysisSnapshot
    requirements: OversightRequirements
    status: CaseStatus = CaseStatus.PENDING
    assigned_expert: AssignedExpert | None = None
    resolution: CaseResolution | None = None
    learning_data: LearningData | None = None
    audit_event_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# =============================================================================
# EXPERT MODELS
# =============================================================================


class ExpertAvailability(BaseModel):
    status: ExpertStatus = ExpertStatus.AVAILABLE
    max_concurrent_cases: int = Field(default=3, gt=0)
    current_case_load: int = Field(default=0, ge=0)
    timezone: str = "UTC"
    working_hours_start: str = "09:00"
    working_hours_end: str = "17:00"

    @model_validator(mode="after")
    def check_load(self) -> "ExpertAvailability":
        if self.current_case_load > self.max_concurrent_cases:
            raise ValueError(
                f"current_case_load ({self.current_case_load}) exceeds "
                f"max_concurrent_cases ({self.max_concurrent_cases})"
            )
        return self


class ExpertPerformance(BaseModel):
    total_cases_handled: int = Field(default=0, ge=0)
    average_response_minutes: float = Field(default=0.0, ge=0.0)
    accuracy_rate: float = Field(default=0.8, ge=0.0, le=1.0)
    satisfaction_score: float = Field(default=4.0, ge=0.0, le=5.0)
    specializations: list[str] = Field(default_factory=list)


class ExpertProfile(BaseModel):
    """
    A human reviewer.

    Mutated only by the oversight manager: on assignment (load up, busy at
    capacity), on release (load down, available again) and on resolution
    (running accuracy and response-time averages).
    """

    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    expertise: list[str] = Field(default_factory=list)
    availability: ExpertAvailability = Field(default_factory=ExpertAvailability)
    performance: ExpertPerformance = Field(default_factory=ExpertPerformance)
    languages: list[str] = Field(default_factory=lambda: ["en"])
    certifications: list[str] = Field(default_factory=list)

    @property
    def utilization(self) -> float:
        return (
            self.availability.current_case_load
            / self.availability.max_concurrent_cases
        )

    @property
    def has_capacity(self) -> bool:
        return (
            self.availability.status == ExpertStatus.AVAILABLE
            and self.availability.current_case_load
            < self.availability.max_concurrent_cases
        )


# =============================================================================
# OPERATION RESULTS
# =============================================================================


class OversightEvaluation(BaseModel):
    """Outcome of evaluating one moderation decision for human review."""

    needs_oversight: bool
    case: OversightCase | None = None
    reasoning: str
    priority: OversightPriority
    assigned: bool = False
    expert_id: str | None = None


class AssignmentResult(BaseModel):
    assigned: bool
    case_id: str
    expert_id: str | None = None
    reason: str | None = None


class ReviewResult(BaseModel):
    success: bool
    case_id: str
    status: CaseStatus | None = None
    reason: str | None = None


class ResolutionResult(BaseModel):
    success: bool
    case_id: str
    status: CaseStatus | None = None
    learning_data: LearningData | None = None
    reason: str | None = None


class OversightMetrics(BaseModel):
    total_cases: int = 0
    pending_cases: int = 0
    average_response_minutes: float = 0.0
    human_ai_agreement_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    emergency_cases_handled: int = 0
    expert_utilization: float = Field(default=0.0, ge=0.0, le=1.0)
    learning_cases_generated: int = 0


# =============================================================================
# API REQUEST MODELS
# =============================================================================


class EvaluateRequest(BaseModel):
    """Body of POST /oversight/evaluate."""

    content: str = Field(default="", max_length=10000)
    result: ModerationResult
    context: ModerationContext = Field(default_factory=ModerationContext)


class ReviewRequest(BaseModel):
    expert_id: str = Field(..., min_length=1)


class ResolveRequest(BaseModel):
    """Body of POST /oversight/cases/{id}/resolve."""

    expert_id: str = Field(..., min_length=1)
    resolution: ResolutionInput
