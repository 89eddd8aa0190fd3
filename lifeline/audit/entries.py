"""
Audit Entry Construction

Turns moderation results and oversight cases into immutable AuditEntry
records. This is the only place raw content and identifiers are seen by the
audit trail: content is reduced to a SHA-256 digest and identifiers to
salted, truncated digests before an entry exists.

Risk in entries is stored on a 0-10 scale (moderation risk / 10).
"""

import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Callable

from lifeline import __version__
from lifeline.config import Settings
from lifeline.lexicon.phrases import tier_for_phrase
from lifeline.schemas.audit import (
    AIAnalysisRecord,
    AuditEntry,
    AuditEventType,
    AuditSeverity,
    ComplianceRecord,
    ContextFactor,
    DataClassification,
    EnsembleRecord,
    FinalDecisionRecord,
    HumanOversightRecord,
    KeywordRecord,
    ModelRecord,
    PerformanceRecord,
    PrivacyLevel,
    QualityMetrics,
    RiskAssessmentRecord,
    SentimentRecord,
    SystemInfo,
)
from lifeline.schemas.moderation import (
    CrisisLevel,
    ModerationAction,
    ModerationContext,
    ModerationRequest,
    ModerationResult,
    SentimentScore,
)
from lifeline.schemas.oversight import HumanDecision, OversightCase, OversightPriority

CONTENT_MODERATION = "content_moderation"
CRISIS_KEYWORDS = "crisis_keywords"
OVERSIGHT_ESCALATION = "oversight_escalation"
EXPERT_REVIEW = "expert_review"

SYSTEM_ERROR_CATEGORY = "system-error"

_CRISIS_SEVERITY = {
    CrisisLevel.NONE: AuditSeverity.LOW,
    CrisisLevel.LOW: AuditSeverity.LOW,
    CrisisLevel.MODERATE: AuditSeverity.MEDIUM,
    CrisisLevel.HIGH: AuditSeverity.HIGH,
    CrisisLevel.CRITICAL: AuditSeverity.CRITICAL,
    CrisisLevel.EMERGENCY: AuditSeverity.EMERGENCY,
}

_PRIORITY_SEVERITY = {
    OversightPriority.LOW: AuditSeverity.LOW,
    OversightPriority.MEDIUM: AuditSeverity.MEDIUM,
    OversightPriority.HIGH: AuditSeverity.HIGH,
    OversightPriority.URGENT: AuditSeverity.CRITICAL,
    OversightPriority.EMERGENCY: AuditSeverity.EMERGENCY,
}

_IMPLEMENTED_ACTIONS = {
    ModerationAction.ALLOW: ("message_delivered",),
    ModerationAction.FLAG: ("message_delivered", "flagged_for_review"),
    ModerationAction.BLOCK: ("message_withheld",),
    ModerationAction.ESCALATE: ("message_delivered", "escalated_to_senior_responder"),
    ModerationAction.EMERGENCY: ("message_delivered", "emergency_protocol_triggered"),
}


def severity_for_risk(risk_score: int) -> AuditSeverity:
    """Severity for a 0-100 moderation risk score."""
    if risk_score >= 90:
        return AuditSeverity.EMERGENCY
    if risk_score >= 80:
        return AuditSeverity.CRITICAL
    if risk_score >= 60:
        return AuditSeverity.HIGH
    if risk_score >= 40:
        return AuditSeverity.MEDIUM
    return AuditSeverity.LOW


def severity_for_crisis(level: CrisisLevel) -> AuditSeverity:
    return _CRISIS_SEVERITY[level]


def severity_for_priority(priority: OversightPriority) -> AuditSeverity:
    return _PRIORITY_SEVERITY[priority]


def moderation_severity(result: ModerationResult) -> AuditSeverity:
    """The higher of the risk-derived and crisis-derived severities."""
    return max(
        severity_for_risk(result.risk_score),
        severity_for_crisis(result.crisis_level),
        key=lambda s: s.rank,
    )


def new_audit_id() -> str:
    return f"audit_{uuid.uuid4().hex}"


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class EntryFactory:
    """
    Builds AuditEntry records for every event the pipeline audits.

    Usage:
        factory = EntryFactory(settings)
        entry = factory.build_moderation_entry(request, result)
    """

    def __init__(
        self,
        settings: Settings,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._salt = settings.audit_hash_salt.get_secret_value()
        self._now = now
        self._regulations = tuple(settings.audit_regulations)
        self._retention_policy = settings.retention_policy
        self._system_info = SystemInfo(
            version=__version__,
            environment=settings.environment,
            region=settings.region,
            node_id=settings.node_id,
        )

    # ------------------------------------------------------------------
    # Hashing and classification
    # ------------------------------------------------------------------

    def hash_identifier(self, value: str | None) -> str | None:
        """Salted, truncated SHA-256 of an identifier (None stays None)."""
        if value is None:
            return None
        digest = hashlib.sha256(f"{self._salt}:{value}".encode("utf-8"))
        return digest.hexdigest()[:16]

    def context_fingerprint(self, context: ModerationContext) -> str:
        payload = json.dumps(
            {
                "message_type": context.message_type.value,
                "is_anonymous": context.is_anonymous,
                "timestamp": context.timestamp.isoformat(),
            },
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    @staticmethod
    def classify(
        content: str, context: ModerationContext, crisis_level: CrisisLevel
    ) -> DataClassification:
        if context.is_crisis or crisis_level == CrisisLevel.EMERGENCY:
            return DataClassification.RESTRICTED
        if len(content) > 1000 or not context.is_anonymous:
            return DataClassification.CONFIDENTIAL
        return DataClassification.INTERNAL

    @staticmethod
    def privacy_level(context: ModerationContext) -> PrivacyLevel:
        return PrivacyLevel.ANONYMOUS if context.is_anonymous else PrivacyLevel.PSEUDONYMOUS

    def _compliance(
        self, content: str, context: ModerationContext, crisis_level: CrisisLevel
    ) -> ComplianceRecord:
        return ComplianceRecord(
            regulations=self._regulations,
            data_classification=self.classify(content, context, crisis_level),
            retention_policy=self._retention_policy,
            privacy_level=self.privacy_level(context),
        )

    # ------------------------------------------------------------------
    # Moderation events
    # ------------------------------------------------------------------

    def build_moderation_entry(
        self, request: ModerationRequest, result: ModerationResult
    ) -> AuditEntry:
        context = request.context
        system_error = SYSTEM_ERROR_CATEGORY in result.categories
        model_ms = max(
            (d.latency_ms for d in result.audit_trail.model_decisions), default=0.0
        )

        return AuditEntry(
            id=new_audit_id(),
            timestamp=self._now(),
            event_type=AuditEventType.MODERATION_ANALYSIS,
            severity=moderation_severity(result),
            category=CONTENT_MODERATION,
            subcategory=context.message_type.value,
            content_hash=hash_content(request.content),
            content_length=len(request.content),
            content_language=result.detected_language,
            context_fingerprint=self.context_fingerprint(context),
            session_hash=self.hash_identifier(context.session_id),
            user_id_hash=self.hash_identifier(context.user_id),
            ai_analysis=_analysis_record(result),
            risk_assessment=RiskAssessmentRecord(
                original_risk=result.risk_score / 10,
                adjusted_risk=result.risk_score / 10,
                context_factors=_context_factors(context, result.sentiment),
                false_positive_probability=_moderation_false_positive(result),
                confidence_level=result.confidence_score,
            ),
            final_decision=FinalDecisionRecord(
                action=result.action.value,
                reasoning=result.reasoning,
                confidence=result.confidence_score / 100,
                overridden_by="system" if system_error else None,
                implemented_actions=_IMPLEMENTED_ACTIONS[result.action],
            ),
            performance=PerformanceRecord(
                total_processing_time_ms=result.processing_time_ms,
                model_processing_time_ms=model_ms,
                risk_assessment_time_ms=max(0.0, result.processing_time_ms - model_ms),
            ),
            compliance=self._compliance(request.content, context, result.crisis_level),
            quality_metrics=QualityMetrics(
                follow_up_required=result.action
                in (ModerationAction.ESCALATE, ModerationAction.EMERGENCY),
                learning_opportunity=result.confidence_score < 70 or system_error,
            ),
            related_events=(result.id,),
            system_info=self._system_info,
        )

    def build_crisis_entry(
        self, request: ModerationRequest, result: ModerationResult, parent_id: str
    ) -> AuditEntry:
        """A crisis_detection entry that points back to its moderation entry."""
        context = request.context
        keywords = _keyword_records(result.crisis_keywords)
        subcategory = keywords[0].category if keywords else result.crisis_level.value.lower()

        return AuditEntry(
            id=new_audit_id(),
            timestamp=self._now(),
            event_type=AuditEventType.CRISIS_DETECTION,
            severity=severity_for_crisis(result.crisis_level),
            category=CRISIS_KEYWORDS,
            subcategory=subcategory,
            content_hash=hash_content(request.content),
            content_length=len(request.content),
            content_language=result.detected_language,
            context_fingerprint=self.context_fingerprint(context),
            session_hash=self.hash_identifier(context.session_id),
            user_id_hash=self.hash_identifier(context.user_id),
            ai_analysis=AIAnalysisRecord(
                flags={"crisis": result.flags.crisis},
                keywords=keywords,
                sentiment=_sentiment_record(result.sentiment),
            ),
            risk_assessment=RiskAssessmentRecord(
                original_risk=result.risk_score / 10,
                adjusted_risk=result.risk_score / 10,
                context_factors=_context_factors(context, result.sentiment),
                confidence_level=result.confidence_score,
            ),
            final_decision=FinalDecisionRecord(
                action=result.action.value,
                reasoning=f"Crisis level {result.crisis_level.value} detected",
                confidence=result.confidence_score / 100,
                implemented_actions=_IMPLEMENTED_ACTIONS[result.action],
            ),
            performance=PerformanceRecord(
                total_processing_time_ms=result.processing_time_ms
            ),
            compliance=self._compliance(request.content, context, result.crisis_level),
            quality_metrics=QualityMetrics(follow_up_required=True),
            related_events=(result.id,),
            parent_event_id=parent_id,
            system_info=self._system_info,
        )

    # ------------------------------------------------------------------
    # Oversight events
    # ------------------------------------------------------------------

    def build_escalation_entry(self, case: OversightCase) -> AuditEntry:
        analysis = case.ai_analysis
        expert = case.assigned_expert

        return AuditEntry(
            id=new_audit_id(),
            timestamp=self._now(),
            event_type=AuditEventType.ESCALATION,
            severity=severity_for_priority(case.priority),
            category=OVERSIGHT_ESCALATION,
            subcategory=case.case_type.value,
            content_hash=hash_content(case.original_content),
            content_length=len(case.original_content),
            content_language=case.content_language,
            context_fingerprint=self.context_fingerprint(case.context),
            session_hash=self.hash_identifier(case.context.session_id),
            user_id_hash=self.hash_identifier(case.context.user_id),
            ai_analysis=AIAnalysisRecord(
                keywords=_keyword_records(analysis.detected_keywords),
                sentiment=_sentiment_record(analysis.sentiment),
            ),
            human_oversight=HumanOversightRecord(
                required=True,
                assigned=expert is not None,
                expert_id_hash=self.hash_identifier(expert.id) if expert else None,
                expert_expertise=tuple(expert.expertise) if expert else (),
            ),
            risk_assessment=RiskAssessmentRecord(
                original_risk=analysis.risk_score / 10,
                adjusted_risk=analysis.risk_score / 10,
                context_factors=_context_factors(case.context, analysis.sentiment),
                confidence_level=analysis.confidence_score,
            ),
            final_decision=FinalDecisionRecord(
                action=analysis.action.value,
                reasoning=case.requirements.reason_for_escalation,
                confidence=analysis.confidence_score / 100,
                overridden_by="escalation",
                implemented_actions=(
                    "oversight_case_created",
                    f"queued_{case.priority.value.lower()}",
                ),
            ),
            performance=PerformanceRecord(
                total_processing_time_ms=analysis.processing_time_ms
            ),
            compliance=self._compliance(
                case.original_content, case.context, analysis.crisis_level
            ),
            quality_metrics=QualityMetrics(follow_up_required=True),
            related_events=(case.id, analysis.moderation_id),
            system_info=self._system_info,
        )

    def build_oversight_entry(self, case: OversightCase) -> AuditEntry:
        """A human_oversight entry for a resolved case."""
        if case.resolution is None:
            raise ValueError(f"Case {case.id} has no resolution to audit")

        resolution = case.resolution
        analysis = case.ai_analysis
        expert = case.assigned_expert
        decision = resolution.human_decision
        learning = case.learning_data

        original_risk = analysis.risk_score / 10
        adjusted_risk = (
            resolution.final_risk_score / 10
            if resolution.final_risk_score is not None
            else original_risk
        )
        false_positive = (
            decision == HumanDecision.OVERRIDE_AI
            and analysis.action != ModerationAction.ALLOW
            and resolution.final_action == ModerationAction.ALLOW
        )
        queue_wait_ms = (
            max(0.0, (expert.assigned_at - case.created_at).total_seconds() * 1000)
            if expert
            else None
        )

        return AuditEntry(
            id=new_audit_id(),
            timestamp=self._now(),
            event_type=AuditEventType.HUMAN_OVERSIGHT,
            severity=(
                AuditSeverity.HIGH
                if decision == HumanDecision.OVERRIDE_AI
                else AuditSeverity.MEDIUM
            ),
            category=EXPERT_REVIEW,
            subcategory=decision.value,
            content_hash=hash_content(case.original_content),
            content_length=len(case.original_content),
            content_language=case.content_language,
            context_fingerprint=self.context_fingerprint(case.context),
            session_hash=self.hash_identifier(case.context.session_id),
            user_id_hash=self.hash_identifier(case.context.user_id),
            volunteer_id_hash=self.hash_identifier(resolution.resolved_by),
            ai_analysis=AIAnalysisRecord(
                keywords=_keyword_records(analysis.detected_keywords),
                sentiment=_sentiment_record(analysis.sentiment),
            ),
            human_oversight=HumanOversightRecord(
                required=True,
                assigned=True,
                expert_id_hash=self.hash_identifier(resolution.resolved_by),
                expert_expertise=tuple(expert.expertise) if expert else (),
                response_time_ms=resolution.time_to_resolution_ms,
                decision=decision.value,
                reasoning=resolution.reasoning,
                confidence=resolution.confidence,
            ),
            risk_assessment=RiskAssessmentRecord(
                original_risk=original_risk,
                adjusted_risk=adjusted_risk,
                context_factors=_context_factors(case.context, analysis.sentiment),
                false_positive_probability=1.0 if false_positive else 0.0,
                confidence_level=(resolution.confidence or 0.0) * 100,
            ),
            final_decision=FinalDecisionRecord(
                action=resolution.final_action.value,
                reasoning=resolution.reasoning,
                confidence=resolution.confidence or 0.0,
                overridden_by=None if decision == HumanDecision.APPROVE_AI else "human",
                implemented_actions=_IMPLEMENTED_ACTIONS[resolution.final_action],
            ),
            performance=PerformanceRecord(
                total_processing_time_ms=analysis.processing_time_ms,
                oversight_time_ms=resolution.time_to_resolution_ms,
                queue_wait_time_ms=queue_wait_ms,
            ),
            compliance=self._compliance(
                case.original_content, case.context, analysis.crisis_level
            ),
            quality_metrics=QualityMetrics(
                accuracy_score=(
                    (1.0 if learning.ai_was_correct else 0.0) if learning else None
                ),
                follow_up_required=decision == HumanDecision.ESCALATE_FURTHER,
                learning_opportunity=bool(learning and learning.training_data_candidate),
            ),
            related_events=(case.id, analysis.moderation_id),
            parent_event_id=case.audit_event_id,
            system_info=self._system_info,
        )


# =============================================================================
# HELPERS
# =============================================================================


def _analysis_record(result: ModerationResult) -> AIAnalysisRecord:
    decisions = result.audit_trail.model_decisions
    models = tuple(
        ModelRecord(
            name=d.model,
            version=d.version,
            processing_time_ms=d.latency_ms,
            confidence=d.confidence,
            score=d.score,
        )
        for d in decisions
    )

    ensemble = None
    if result.model_versions.ensemble is not None:
        scores = [d.score for d in decisions]
        spread = max(scores) - min(scores) if scores else 0.0
        ensemble = EnsembleRecord(
            final_score=result.risk_score / 100,
            agreement=round(1.0 - spread, 4),
            failed_models=tuple(result.audit_trail.failed_models),
        )

    return AIAnalysisRecord(
        models=models,
        ensemble=ensemble,
        flags=result.flags.model_dump(),
        keywords=_keyword_records(result.crisis_keywords),
        sentiment=_sentiment_record(result.sentiment),
    )


def _keyword_records(terms: list[str]) -> tuple[KeywordRecord, ...]:
    records = []
    for term in terms:
        tier = tier_for_phrase(term)
        records.append(
            KeywordRecord(
                keyword=term,
                severity=tier.severity if tier else 0.0,
                category=tier.category if tier else "unknown",
            )
        )
    return tuple(records)


def _sentiment_record(sentiment: SentimentScore) -> SentimentRecord:
    return SentimentRecord(
        overall=sentiment.overall, emotions=sentiment.emotions.model_dump()
    )


def _context_factors(
    context: ModerationContext, sentiment: SentimentScore
) -> tuple[ContextFactor, ...]:
    factors = []
    if context.is_crisis:
        factors.append(
            ContextFactor(
                factor=f"{context.message_type.value}_channel",
                weight=0.3,
                impact="increase",
            )
        )
    if sentiment.overall < -0.5:
        factors.append(
            ContextFactor(factor="negative_sentiment", weight=0.2, impact="increase")
        )
    if sentiment.emotions.hope > 0.3:
        factors.append(
            ContextFactor(factor="hope_expressed", weight=0.1, impact="decrease")
        )
    if context.is_anonymous:
        factors.append(
            ContextFactor(factor="anonymous_sender", weight=0.0, impact="neutral")
        )
    return tuple(factors)


def _moderation_false_positive(result: ModerationResult) -> float:
    # Only an intervention can be a false positive.
    if result.action == ModerationAction.ALLOW:
        return 0.0
    return round((1 - result.confidence_score / 100) * 0.5, 4)
