"""
Pydantic Schemas for the Audit Trail

AuditEntry is append-only: every nested model is frozen, and a correction
is a new entry that points back through ``related_events`` or
``parent_event_id``. Raw content never reaches this module; entries carry
a SHA-256 content hash and salted identifier hashes instead.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# ENUMERATIONS
# =============================================================================


class AuditEventType(str, Enum):
    MODERATION_ANALYSIS = "moderation_analysis"
    CRISIS_DETECTION = "crisis_detection"
    RISK_ASSESSMENT = "risk_assessment"
    HUMAN_OVERSIGHT = "human_oversight"
    ESCALATION = "escalation"
    SYSTEM_ACTION = "system_action"


class AuditSeverity(str, Enum):
    """Entry severity, ordered LOW < MEDIUM < HIGH < CRITICAL < EMERGENCY."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    EMERGENCY = "EMERGENCY"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @property
    def is_immediate(self) -> bool:
        """Severities that are written straight to the store, never buffered."""
        return self in (AuditSeverity.CRITICAL, AuditSeverity.EMERGENCY)


_SEVERITY_ORDER = list(AuditSeverity)


class DataClassification(str, Enum):
    PUBLIC = "public"
    INTERNAL = "internal"
    CONFIDENTIAL = "confidential"
    RESTRICTED = "restricted"


class PrivacyLevel(str, Enum):
    ANONYMOUS = "anonymous"
    PSEUDONYMOUS = "pseudonymous"
    IDENTIFIED = "identified"


# =============================================================================
# ENTRY SECTIONS
# =============================================================================


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ModelRecord(_Frozen):
    name: str
    version: str
    processing_time_ms: float = Field(default=0.0, ge=0.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    score: float = Field(..., ge=0.0, le=1.0)


class EnsembleRecord(_Frozen):
    method: str = "weighted_average"
    final_score: float = Field(..., ge=0.0, le=1.0)
    agreement: float = Field(..., ge=0.0, le=1.0)
    failed_models: tuple[str, ...] = ()


class KeywordRecord(_Frozen):
    keyword: str
    severity: float = Field(..., ge=0.0, le=1.0)
    category: str


class SentimentRecord(_Frozen):
    overall: float = Field(default=0.0, ge=-1.0, le=1.0)
    emotions: dict[str, float] = Field(default_factory=dict)


class AIAnalysisRecord(_Frozen):
    models: tuple[ModelRecord, ...] = ()
    ensemble: EnsembleRecord | None = None
    flags: dict[str, float] = Field(default_factory=dict)
    keywords: tuple[KeywordRecord, ...] = ()
    sentiment: SentimentRecord = Field(default_factory=SentimentRecord)


class HumanOversightRecord(_Frozen):
    required: bool
    assigned: bool = False
    expert_id_hash: str | None = None
    expert_expertise: tuple[str, ...] = ()
    response_time_ms: float | None = Field(default=None, ge=0.0)
    decision: str | None = None
    reasoning: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class ContextFactor(_Frozen):
    factor: str
    weight: float
    impact: Literal["increase", "decrease", "neutral"]
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)


class RiskAssessmentRecord(_Frozen):
    """Risk on a 0-10 scale."""

    original_risk: float = Field(..., ge=0.0, le=10.0)
    adjusted_risk: float = Field(..., ge=0.0, le=10.0)
    context_factors: tuple[ContextFactor, ...] = ()
    false_positive_probability: float = Field(default=0.0, ge=0.0, le=1.0)
    confidence_level: float = Field(..., ge=0.0, le=100.0)


class FinalDecisionRecord(_Frozen):
    action: str
    reasoning: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    overridden_by: Literal["human", "system", "escalation"] | None = None
    implemented_actions: tuple[str, ...] = ()


class PerformanceRecord(_Frozen):
    total_processing_time_ms: float = Field(default=0.0, ge=0.0)
    model_processing_time_ms: float = Field(default=0.0, ge=0.0)
    risk_assessment_time_ms: float = Field(default=0.0, ge=0.0)
    oversight_time_ms: float | None = Field(default=None, ge=0.0)
    queue_wait_time_ms: float | None = Field(default=None, ge=0.0)


class ComplianceRecord(_Frozen):
    regulations: tuple[str, ...]
    data_classification: DataClassification
    retention_policy: str
    privacy_level: PrivacyLevel


class QualityMetrics(_Frozen):
    accuracy_score: float | None = None
    appropriateness_score: float | None = None
    user_satisfaction: float | None = None
    follow_up_required: bool = False
    learning_opportunity: bool = False


class SystemInfo(_Frozen):
    version: str
    environment: str
    region: str
    node_id: str


# =============================================================================
# AUDIT ENTRY
# =============================================================================


class AuditEntry(_Frozen):
    """
    One immutable compliance record.

    Example:
        {
            "id": "audit_1733312345000_3f9a1c2b",
            "event_type": "moderation_analysis",
            "severity": "EMERGENCY",
            "category": "content_moderation",
            "content_hash": "9f86d081884c7d65...",
            "final_decision": {"action": "EMERGENCY", ...},
            ...
        }
    """

    id: str
    timestamp: datetime
    version: str = "1.0"
    event_type: AuditEventType
    severity: AuditSeverity
    category: str
    subcategory: str | None = None

    content_hash: str = Field(..., description="SHA-256 of the content")
    content_length: int = Field(default=0, ge=0)
    content_language: str = "en"
    context_fingerprint: str = ""
    session_hash: str | None = None
    user_id_hash: str | None = None
    volunteer_id_hash: str | None = None

    ai_analysis: AIAnalysisRecord = Field(default_factory=AIAnalysisRecord)
    human_oversight: HumanOversightRecord | None = None
    risk_assessment: RiskAssessmentRecord
    final_decision: FinalDecisionRecord
    performance: PerformanceRecord = Field(default_factory=PerformanceRecord)
    compliance: ComplianceRecord
    quality_metrics: QualityMetrics | None = None

    related_events: tuple[str, ...] = ()
    parent_event_id: str | None = None
    incident_id: str | None = None
    system_info: SystemInfo


# =============================================================================
# QUERIES AND REPORTS
# =============================================================================


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC so they compare with stored timestamps."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TimeRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def normalise_timezone(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def check_order(self) -> "TimeRange":
        if self.start > self.end:
            raise ValueError("time range start must not be after its end")
        return self

    @property
    def hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600

    @classmethod
    def last(cls, hours: float) -> "TimeRange":
        end = datetime.now(timezone.utc)
        return cls(start=end - timedelta(hours=hours), end=end)


class AuditQuery(BaseModel):
    """
    Filter, sort and page over audit entries.

    Example:
        {
            "event_types": ["crisis_detection"],
            "severities": ["CRITICAL", "EMERGENCY"],
            "min_risk_score": 7,
            "order_by": "risk_score",
            "limit": 50
        }
    """

    start_time: datetime | None = None
    end_time: datetime | None = None
    event_types: list[AuditEventType] | None = None
    severities: list[AuditSeverity] | None = None
    categories: list[str] | None = None
    actions: list[str] | None = None
    session_hash: str | None = None
    user_id_hash: str | None = None
    min_processing_time_ms: float | None = Field(default=None, ge=0.0)
    max_processing_time_ms: float | None = Field(default=None, ge=0.0)
    min_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    max_confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    min_risk_score: float | None = Field(default=None, ge=0.0, le=10.0)
    max_risk_score: float | None = Field(default=None, ge=0.0, le=10.0)
    false_positive_only: bool = False
    human_override_only: bool = False
    limit: int = Field(default=100, ge=1, le=10_000)
    offset: int = Field(default=0, ge=0)
    order_by: Literal["timestamp", "severity", "processing_time", "risk_score"] = (
        "timestamp"
    )
    order_direction: Literal["ASC", "DESC"] = "DESC"

    @field_validator("start_time", "end_time")
    @classmethod
    def normalise_timezone(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)


class RecordResult(BaseModel):
    audit_id: str
    write_latency_ms: float = Field(..., ge=0.0)
    buffered: bool


class QueryResult(BaseModel):
    entries: list[AuditEntry]
    total_count: int
    query_time_ms: float


class LatencyPercentiles(BaseModel):
    p50: float = 0.0
    p90: float = 0.0
    p95: float = 0.0
    p99: float = 0.0


class AuditAnalytics(BaseModel):
    """Roll-up over a time range."""

    time_range: TimeRange
    total_events: int = 0
    events_by_type: dict[str, int] = Field(default_factory=dict)
    events_by_severity: dict[str, int] = Field(default_factory=dict)
    events_per_hour: float = 0.0
    average_processing_time_ms: float = 0.0
    processing_time_percentiles: LatencyPercentiles = Field(
        default_factory=LatencyPercentiles
    )
    human_override_rate: float = 0.0
    false_positive_rate: float = 0.0
    risk_distribution: dict[str, int] = Field(default_factory=dict)
    high_risk_events: int = 0
    emergency_escalations: int = 0
    average_confidence: float = 0.0
    low_confidence_events: int = 0
    learning_opportunities: int = 0
    hourly_distribution: dict[str, int] = Field(default_factory=dict)


class ComplianceReport(BaseModel):
    regulation: str
    time_range: TimeRange
    total_decisions: int = 0
    human_oversight_rate: float = 0.0
    average_response_time_ms: float = 0.0
    high_risk_decisions: int = 0
    data_retention_compliance: float = 0.0
    privacy_compliance: float = 0.0
    audit_trail_completeness: float = 0.0


class IntegrityReport(BaseModel):
    valid: bool
    total_entries: int
    valid_entries: int
    issues: list[str] = Field(default_factory=list)


class AuditMetrics(BaseModel):
    total_entries: int = 0
    buffered_entries: int = 0
    flush_count: int = 0
    failed_flushes: int = 0
    dropped_entries: int = 0
    average_write_latency_ms: float = 0.0
    average_query_latency_ms: float = 0.0
    analytics_cache_hits: int = 0
    analytics_cache_misses: int = 0
    store: dict[str, Any] = Field(default_factory=dict)
