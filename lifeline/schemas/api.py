"""
Pydantic Schemas for the HTTP Surface

Error envelopes, health checks and the metrics report. The decision
models themselves live in moderation.py, oversight.py and audit.py.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from lifeline.schemas.moderation import ModerationResult
from lifeline.schemas.oversight import OversightEvaluation


# =============================================================================
# ERROR MODELS
# =============================================================================


class ErrorCodes:
    """
    Standard error codes for API responses.

    These codes enable programmatic error handling by clients
    without parsing human-readable messages.
    """

    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONTENT_TOO_LONG = "CONTENT_TOO_LONG"
    NOT_FOUND = "NOT_FOUND"
    INVALID_QUERY = "INVALID_QUERY"
    MODERATION_ERROR = "MODERATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorDetail(BaseModel):
    """Machine-readable code, human-readable message, optional field."""

    code: str = Field(
        ...,
        description="Machine-readable error code for programmatic handling",
    )

    message: str = Field(
        ...,
        description="Human-readable error message",
    )

    field: str | None = Field(
        default=None,
        description="Field that caused the error (for validation errors)",
    )


class ErrorResponse(BaseModel):
    """
    Standard error response format for all API errors.

    Example:
        {
            "error": {
                "code": "NOT_FOUND",
                "message": "Case case_123 not found"
            }
        }
    """

    error: ErrorDetail = Field(..., description="Error details")

    request_id: str | None = Field(
        default=None,
        description="Request ID for tracking and support",
    )


# =============================================================================
# PIPELINE MODELS
# =============================================================================


class TriageResponse(BaseModel):
    """Response of POST /triage: the decision plus any oversight outcome."""

    result: ModerationResult
    oversight: OversightEvaluation | None = None


# =============================================================================
# METRICS MODELS
# =============================================================================


class LatencySummary(BaseModel):
    average_ms: float = Field(default=0.0, ge=0.0)
    p50_ms: float = Field(default=0.0, ge=0.0)
    p95_ms: float = Field(default=0.0, ge=0.0)
    budget_ms: float = Field(..., gt=0.0)
    budget_overruns: int = Field(default=0, ge=0)
    within_budget: bool = True


class MetricsResponse(BaseModel):
    """
    Response from the /metrics endpoint.

    Example:
        {
            "total_requests": 1000,
            "cache_hits": 120,
            "cache_hit_rate": 0.12,
            "requests_by_action": {"ALLOW": 900, "FLAG": 60, ...},
            "requests_by_crisis_level": {"NONE": 850, ...},
            "crisis_detections": 140,
            "emergency_escalations": 4,
            "model_failures": 0,
            "latency": {"average_ms": 3.2, "p95_ms": 7.9, ...}
        }
    """

    total_requests: int = Field(default=0, ge=0)
    cache_hits: int = Field(default=0, ge=0)
    cache_hit_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    requests_by_action: dict[str, int] = Field(default_factory=dict)
    requests_by_crisis_level: dict[str, int] = Field(default_factory=dict)
    requests_by_message_type: dict[str, int] = Field(default_factory=dict)
    crisis_detections: int = Field(default=0, ge=0)
    emergency_escalations: int = Field(default=0, ge=0)
    model_failures: int = Field(default=0, ge=0)
    latency: LatencySummary


# =============================================================================
# HEALTH MODELS
# =============================================================================


class ComponentHealth(BaseModel):
    """Health status of an individual pipeline component."""

    name: str = Field(
        ...,
        description="Component name (e.g., 'moderation', 'oversight', 'audit')",
    )

    status: Literal["healthy", "degraded", "unhealthy"]

    latency_ms: float | None = Field(default=None, ge=0.0)

    message: str | None = Field(
        default=None,
        description="Additional status information or error details",
    )


class HealthResponse(BaseModel):
    """
    Response from the /health endpoint.

    Example:
        {
            "status": "healthy",
            "service": "lifeline-safety",
            "version": "0.1.0",
            "components": [
                {"name": "moderation", "status": "healthy", "latency_ms": 3.1},
                {"name": "audit", "status": "healthy", "message": "0 buffered"}
            ],
            "uptime_seconds": 3600.5
        }
    """

    status: Literal["healthy", "degraded", "unhealthy"]

    service: str = Field(default="lifeline-safety")

    version: str

    components: list[ComponentHealth] = Field(default_factory=list)

    uptime_seconds: float | None = Field(default=None, ge=0.0)

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "status": "healthy",
                    "service": "lifeline-safety",
                    "version": "0.1.0",
                    "components": [
                        {"name": "moderation", "status": "healthy"},
                        {"name": "oversight", "status": "healthy"},
                        {"name": "audit", "status": "healthy"},
                    ],
                    "uptime_seconds": 3600.5,
                }
            ]
        }
    )
