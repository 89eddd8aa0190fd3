"""
Schemas module: Pydantic request/response models.

This module provides validated data models for the Lifeline pipeline:
- Moderation requests and results
- Oversight cases, experts and resolutions
- Immutable audit entries, queries and reports
- Error, health and metrics models for the HTTP surface

Example usage:
    from lifeline.schemas import ModerationRequest, ModerationContext, MessageType

    request = ModerationRequest(
        content="I can't take anymore",
        context=ModerationContext(message_type=MessageType.CRISIS),
    )
"""

from lifeline.schemas.moderation import (
    # Enums
    CrisisLevel,
    MessageType,
    ModerationAction,
    # Request models
    ModerationContext,
    ModerationRequest,
    # Result models
    CategoryFlags,
    DecisionAuditTrail,
    EmotionVector,
    ModelDecision,
    ModelVersions,
    ModerationResult,
    SentimentScore,
)
from lifeline.schemas.oversight import (
    AIAnalysisSnapshot,
    AssignedExpert,
    AssignmentResult,
    CaseResolution,
    CaseStatus,
    CaseType,
    EvaluateRequest,
    ExpertAvailability,
    Expertise,
    ExpertPerformance,
    ExpertProfile,
    ExpertStatus,
    HumanDecision,
    LearningData,
    OversightCase,
    OversightEvaluation,
    OversightMetrics,
    OversightPriority,
    OversightRequirements,
    ResolutionInput,
    ResolutionResult,
    ResolveRequest,
    ReviewRequest,
    ReviewResult,
)
from lifeline.schemas.audit import (
    AuditAnalytics,
    AuditEntry,
    AuditEventType,
    AuditMetrics,
    AuditQuery,
    AuditSeverity,
    ComplianceReport,
    DataClassification,
    IntegrityReport,
    PrivacyLevel,
    QueryResult,
    RecordResult,
    TimeRange,
)
from lifeline.schemas.api import (
    ComponentHealth,
    ErrorCodes,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    LatencySummary,
    MetricsResponse,
    TriageResponse,
)

__all__ = [
    # Moderation
    "CrisisLevel",
    "MessageType",
    "ModerationAction",
    "ModerationContext",
    "ModerationRequest",
    "CategoryFlags",
    "DecisionAuditTrail",
    "EmotionVector",
    "ModelDecision",
    "ModelVersions",
    "ModerationResult",
    "SentimentScore",
    # Oversight
    "AIAnalysisSnapshot",
    "AssignedExpert",
    "AssignmentResult",
    "CaseResolution",
    "CaseStatus",
    "CaseType",
    "EvaluateRequest",
    "ExpertAvailability",
    "Expertise",
    "ExpertPerformance",
    "ExpertProfile",
    "ExpertStatus",
    "HumanDecision",
    "LearningData",
    "OversightCase",
    "OversightEvaluation",
    "OversightMetrics",
    "OversightPriority",
    "OversightRequirements",
    "ResolutionInput",
    "ResolutionResult",
    "ReviewResult",
    "ResolveRequest",
    "ReviewRequest",
    # Audit
    "AuditAnalytics",
    "AuditEntry",
    "AuditEventType",
    "AuditMetrics",
    "AuditQuery",
    "AuditSeverity",
    "ComplianceReport",
    "DataClassification",
    "IntegrityReport",
    "PrivacyLevel",
    "QueryResult",
    "RecordResult",
    "TimeRange",
    # API
    "ComponentHealth",
    "ErrorCodes",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "LatencySummary",
    "MetricsResponse",
    "TriageResponse",
]
