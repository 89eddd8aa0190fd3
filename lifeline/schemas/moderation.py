"""
Pydantic Schemas for Moderation

This module defines the request and result models for the moderation engine:
- ModerationRequest: Inbound message with its conversational context
- ModerationResult: Risk/confidence scores, crisis level, action, provenance

The enumerations here are part of the external contract. Downstream UI
logic branches on their exact member sets, so members are never renamed
or removed.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# ENUMERATIONS
# =============================================================================


class MessageType(str, Enum):
    """Channel a message was sent on."""

    CRISIS = "crisis"
    VOLUNTEER = "volunteer"
    GENERAL = "general"
    EMERGENCY = "emergency"


class CrisisLevel(str, Enum):
    """
    Ordered crisis severity of a single message.

    NONE < LOW < MODERATE < HIGH < CRITICAL < EMERGENCY. Compare levels
    through ``rank``; the string values sort alphabetically, not by severity.
    """

    NONE = "NONE"
    LOW = "LOW"
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
    EMERGENCY = "EMERGENCY"

    @property
    def rank(self) -> int:
        return _CRISIS_ORDER.index(self)


_CRISIS_ORDER = list(CrisisLevel)


class ModerationAction(str, Enum):
    """
    Decision handed back to the chat layer.

    ALLOW: Deliver the message
    FLAG: Deliver, but mark for moderator attention
    BLOCK: Withhold the message (never used on crisis channels)
    ESCALATE: Deliver and route to a senior responder
    EMERGENCY: Deliver and trigger the emergency protocol
    """

    ALLOW = "ALLOW"
    FLAG = "FLAG"
    BLOCK = "BLOCK"
    ESCALATE = "ESCALATE"
    EMERGENCY = "EMERGENCY"


# =============================================================================
# REQUEST MODELS
# =============================================================================


class ModerationContext(BaseModel):
    """
    Conversational context accompanying a message.

    The session and user identifiers are only ever stored hashed by the
    audit trail; they are carried here so the trail can correlate events.
    """

    message_type: MessageType = Field(
        default=MessageType.GENERAL,
        description="Channel the message was sent on",
    )

    is_anonymous: bool = Field(
        default=True,
        description="Whether the sender is anonymous",
    )

    session_id: str | None = Field(
        default=None,
        max_length=200,
        description="Chat session reference",
    )

    user_id: str | None = Field(
        default=None,
        max_length=200,
        description="Sender reference (hashed before storage)",
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the message was sent",
    )

    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Free-form metadata from the chat layer",
    )

    @property
    def is_crisis(self) -> bool:
        """Crisis and emergency channels are never silently blocked."""
        return self.message_type in (MessageType.CRISIS, MessageType.EMERGENCY)


class ModerationRequest(BaseModel):
    """
    Immutable input to the moderation engine.

    Empty or whitespace-only content is accepted here on purpose: the engine
    answers it with a safe ALLOW decision instead of an error, so the caller
    always receives something it can act on.

    Example:
        {
            "content": "I can't take anymore",
            "context": {"message_type": "crisis", "session_id": "s-42"}
        }
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {
                    "content": "I'm anxious about my presentation tomorrow",
                    "context": {"message_type": "general"},
                },
                {
                    "content": "I have the pills and I'm taking them tonight",
                    "context": {"message_type": "crisis", "session_id": "s-42"},
                    "ensemble_mode": True,
                },
            ]
        },
    )

    content: str = Field(
        default="",
        max_length=10000,
        description="The message text to moderate",
    )

    language: str | None = Field(
        default=None,
        pattern=r"^[a-z]{2}(-[A-Z]{2})?$",
        description="Language hint as an ISO code (e.g. 'en', 'es')",
    )

    context: ModerationContext = Field(
        default_factory=ModerationContext,
        description="Conversational context",
    )

    ensemble_mode: bool = Field(
        default=False,
        description="Force full-ensemble analysis regardless of context",
    )


# =============================================================================
# RESULT MODELS
# =============================================================================


class CategoryFlags(BaseModel):
    """Per-category scores on a 0-100 scale."""

    model_config = ConfigDict(frozen=True)

    toxicity: float = Field(default=0.0, ge=0.0, le=100.0)
    harassment: float = Field(default=0.0, ge=0.0, le=100.0)
    self_harm: float = Field(default=0.0, ge=0.0, le=100.0)
    violence: float = Field(default=0.0, ge=0.0, le=100.0)
    spam: float = Field(default=0.0, ge=0.0, le=100.0)
    crisis: float = Field(default=0.0, ge=0.0, le=100.0)


class EmotionVector(BaseModel):
    """Bounded emotion intensities (0.0-1.0)."""

    model_config = ConfigDict(frozen=True)

    despair: float = Field(default=0.0, ge=0.0, le=1.0)
    anger: float = Field(default=0.0, ge=0.0, le=1.0)
    fear: float = Field(default=0.0, ge=0.0, le=1.0)
    hope: float = Field(default=0.0, ge=0.0, le=1.0)


class SentimentScore(BaseModel):
    """Overall polarity (-1.0 to 1.0) plus the emotion vector."""

    model_config = ConfigDict(frozen=True)

    overall: float = Field(default=0.0, ge=-1.0, le=1.0)
    emotions: EmotionVector = Field(default_factory=EmotionVector)


class ModelDecision(BaseModel):
    """One model's vote, as recorded in the decision audit trail."""

    model_config = ConfigDict(frozen=True)

    model: str
    version: str
    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)
    categories: list[str] = Field(default_factory=list)
    latency_ms: float = Field(default=0.0, ge=0.0)


class DecisionAuditTrail(BaseModel):
    """Decision-level provenance attached to every result."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    model_decisions: list[ModelDecision] = Field(default_factory=list)
    failed_models: list[str] = Field(default_factory=list)


class ModelVersions(BaseModel):
    """Model provenance: the primary scorer and, in ensemble mode, every member."""

    model_config = ConfigDict(frozen=True)

    primary: str
    ensemble: list[str] | None = None


class ModerationResult(BaseModel):
    """
    Output of the moderation engine.

    Results are immutable once returned. ``action`` is a deterministic
    function of ``crisis_level``, ``risk_score`` and the context's message
    type, except for the synthetic results produced when every scoring
    model failed.

    Example:
        {
            "id": "4a0c...",
            "safe": false,
            "risk_score": 0,
            "confidence_score": 90,
            "crisis_level": "EMERGENCY",
            "action": "EMERGENCY",
            "detected_language": "en",
            ...
        }
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique result id (fresh even for cache hits)")

    safe: bool = Field(..., description="True only when the action is ALLOW")

    risk_score: int = Field(..., ge=0, le=100, description="Combined risk (0-100)")

    confidence_score: int = Field(
        ..., ge=0, le=100, description="Combined confidence (0-100)"
    )

    crisis_level: CrisisLevel

    categories: list[str] = Field(default_factory=list)

    detected_language: str = Field(default="en")

    flags: CategoryFlags = Field(default_factory=CategoryFlags)

    sentiment: SentimentScore = Field(default_factory=SentimentScore)

    action: ModerationAction

    reasoning: str = Field(..., description="Human-readable explanation")

    recommendations: list[str] = Field(default_factory=list)

    crisis_keywords: list[str] = Field(
        default_factory=list, description="Crisis lexicon phrases that matched"
    )

    processing_time_ms: float = Field(..., ge=0.0)

    model_versions: ModelVersions

    audit_trail: DecisionAuditTrail = Field(default_factory=DecisionAuditTrail)

    cached: bool = Field(default=False, description="Analysis served from the result cache")
