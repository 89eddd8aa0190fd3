"""
Oversight Escalation Manager

Decides whether a moderation decision needs a human, opens a prioritized
case, assigns it to the best available expert, and ingests the expert's
resolution as learning signal.

Escalation triggers (any one is sufficient), evaluated in this order:
1. Confidence below the low-confidence threshold        -> MEDIUM, ai_uncertainty
2. Edge-case language (unusual ideation, cultural refs)  -> HIGH, edge_case
3. Two or more hedging-language matches                 -> MEDIUM, ambiguous_content
4. Cultural-context flags (+ language specialist when the
   message is not English)                              -> expertise only
5. Risk >= 80 on a crisis/emergency channel             -> URGENT, escalation_review
6. Contradictory signal pairs                           -> HIGH, ambiguous_content
7. Crisis level EMERGENCY                               -> EMERGENCY, unconditionally

Priority only moves up while triggers are evaluated.

Concurrency: one re-entrant lock guards cases, queue and expert pool, so
"expert has capacity" and "increment expert load" happen as one step.
Every case handed out is a deep copy.
"""

import logging
import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from lifeline.config import Settings
from lifeline.oversight.experts import ExpertPool, default_experts
from lifeline.oversight.queue import CaseQueue
from lifeline.schemas.moderation import (
    CrisisLevel,
    MessageType,
    ModerationContext,
    ModerationResult,
)
from lifeline.schemas.oversight import (
    AIAnalysisSnapshot,
    AssignedExpert,
    AssignmentResult,
    CaseResolution,
    CaseStatus,
    CaseType,
    ExpertProfile,
    Expertise,
    HumanDecision,
    LearningData,
    OversightCase,
    OversightEvaluation,
    OversightMetrics,
    OversightPriority,
    OversightRequirements,
    ResolutionInput,
    ResolutionResult,
    ReviewResult,
)

if TYPE_CHECKING:
    from lifeline.audit.recorder import AuditRecorder

logger = logging.getLogger(__name__)


# =============================================================================
# TRIGGER PATTERNS
# =============================================================================

UNUSUAL_IDEATION_PATTERNS = (
    re.compile(r"\b(quantum|simulation|matrix|reality)\b.*\b(not real|fake|illusion)\b", re.I),
    re.compile(r"\b(aliens?|extraterrestrial|ufo)\b.*\b(control|communicate|abduct)\b", re.I),
    re.compile(r"\b(government|cia|fbi)\b.*\b(tracking|monitoring|watching)\b", re.I),
)

CULTURAL_REFERENCES = (
    "honor killing",
    "arranged marriage",
    "family shame",
    "religious obligation",
    "cultural expectation",
    "tradition",
    "ancestral spirit",
    "karma",
)

HEDGING_PATTERNS = (
    re.compile(r"\b(maybe|perhaps|might|could be|not sure|unclear)\b", re.I),
    re.compile(r"\b(on one hand|on the other hand|both|neither)\b", re.I),
    re.compile(r"\b(depends|it varies|sometimes|occasionally)\b", re.I),
)

CULTURAL_CONTEXT_FLAGS = ("cultural", "religious", "ethnic", "tradition")

CONTRADICTORY_SIGNALS = (
    ("getting help", "nothing works"),
    ("feel better", "want to die"),
    ("have support", "all alone"),
)

AMBIGUITY_MATCHES = 2
HIGH_STAKES_RISK = 80

_BASE_URGENCY = {
    OversightPriority.EMERGENCY: 10,
    OversightPriority.URGENT: 9,
    OversightPriority.HIGH: 7,
    OversightPriority.MEDIUM: 5,
    OversightPriority.LOW: 3,
}

_IMMEDIATE_ASSIGNMENT = (OversightPriority.EMERGENCY, OversightPriority.URGENT)

_OPEN_STATUSES = (CaseStatus.PENDING, CaseStatus.ASSIGNED, CaseStatus.IN_REVIEW)


def upgrade_priority(
    current: OversightPriority, proposed: OversightPriority
) -> OversightPriority:
    return proposed if proposed.rank > current.rank else current


def urgency_score(
    priority: OversightPriority, risk_score: int, message_type: MessageType
) -> float:
    """1-10: priority base, up to +2 for risk, +2 emergency / +1 crisis channel."""
    urgency = _BASE_URGENCY[priority] + (risk_score / 100) * 2
    if message_type == MessageType.EMERGENCY:
        urgency += 2
    elif message_type == MessageType.CRISIS:
        urgency += 1
    return min(10.0, max(1.0, urgency))


@dataclass
class OversightAnalysis:
    needs_oversight: bool = False
    reasons: list[str] = field(default_factory=list)
    case_type: CaseType = CaseType.QUALITY_CHECK
    priority: OversightPriority = OversightPriority.LOW
    expertise: list[Expertise] = field(default_factory=list)

    @property
    def reasoning(self) -> str:
        return "; ".join(self.reasons)

    def trigger(
        self,
        reason: str,
        case_type: CaseType | None = None,
        priority: OversightPriority | None = None,
        *expertise: Expertise,
    ) -> None:
        self.needs_oversight = True
        self.reasons.append(reason)
        if case_type is not None:
            self.case_type = case_type
        if priority is not None:
            self.priority = upgrade_priority(self.priority, priority)
        for tag in expertise:
            if tag not in self.expertise:
                self.expertise.append(tag)


def analyze_oversight_need(
    content: str,
    result: ModerationResult,
    context: ModerationContext,
    low_confidence_threshold: float = 0.7,
) -> OversightAnalysis:
    """Run every escalation trigger over one decision. Pure."""
    analysis = OversightAnalysis()
    lowered = content.lower()

    if result.confidence_score < low_confidence_threshold * 100:
        analysis.trigger(
            f"Low AI confidence: {result.confidence_score}%",
            CaseType.AI_UNCERTAINTY,
            OversightPriority.MEDIUM,
        )

    edge_reasons: list[str] = []
    edge_expertise: list[Expertise] = []
    if any(p.search(content) for p in UNUSUAL_IDEATION_PATTERNS):
        edge_reasons.append("Unusual ideation patterns detected")
        edge_expertise.append(Expertise.PSYCHIATRIC_EVALUATION)
    if any(ref in lowered for ref in CULTURAL_REFERENCES):
        edge_reasons.append("Complex cultural context detected")
        edge_expertise.append(Expertise.CULTURAL_CONTEXT)
    if edge_reasons:
        analysis.trigger(
            f"Edge case detected: {'; '.join(edge_reasons)}",
            CaseType.EDGE_CASE,
            OversightPriority.HIGH,
            *edge_expertise,
        )

    hedges = sum(len(p.findall(content)) for p in HEDGING_PATTERNS)
    if hedges >= AMBIGUITY_MATCHES:
        analysis.trigger(
            f"Ambiguous content: high ambiguity score: {hedges}",
            CaseType.AMBIGUOUS_CONTENT,
            OversightPriority.MEDIUM,
        )

    flags = [flag for flag in CULTURAL_CONTEXT_FLAGS if flag in lowered]
    if flags:
        expertise = [Expertise.CULTURAL_CONTEXT]
        if not result.detected_language.lower().startswith("en"):
            expertise.append(Expertise.LANGUAGE_SPECIALIST)
        analysis.trigger(
            f"Cultural context needed: {', '.join(flags)}", None, None, *expertise
        )

    if result.risk_score >= HIGH_STAKES_RISK and context.is_crisis:
        analysis.trigger(
            "High-stakes crisis situation requires human validation",
            CaseType.ESCALATION_REVIEW,
            OversightPriority.URGENT,
            Expertise.CRISIS_COUNSELING,
        )

    contradictions = [
        f"{positive} vs {negative}"
        for positive, negative in CONTRADICTORY_SIGNALS
        if positive in lowered and negative in lowered
    ]
    if contradictions:
        analysis.trigger(
            f"Contradictory signals: {', '.join(contradictions)}",
            CaseType.AMBIGUOUS_CONTENT,
            OversightPriority.HIGH,
            Expertise.PSYCHIATRIC_EVALUATION,
        )

    if result.crisis_level == CrisisLevel.EMERGENCY:
        analysis.trigger(
            "Emergency situation detected - mandatory human oversight",
            None,
            OversightPriority.EMERGENCY,
            Expertise.CRISIS_COUNSELING,
            Expertise.SAFETY_ASSESSMENT,
        )
        if analysis.case_type == CaseType.QUALITY_CHECK:
            analysis.case_type = CaseType.ESCALATION_REVIEW

    return analysis


def uncertainty_factors(result: ModerationResult) -> list[str]:
    factors = []
    if result.confidence_score < 70:
        factors.append("low_confidence")
    if result.sentiment.overall == 0:
        factors.append("neutral_sentiment")
    if result.flags.crisis > 50 and result.sentiment.emotions.hope > 0.3:
        factors.append("mixed_signals")
    if result.processing_time_ms > 100:
        factors.append("complex_analysis")
    return factors


def suggested_actions(result: ModerationResult, expertise: list[Expertise]) -> list[str]:
    actions = []
    if result.risk_score >= 80:
        actions.append("Consider immediate safety assessment")
    if Expertise.CRISIS_COUNSELING in expertise:
        actions.append("Engage crisis counselor for specialized evaluation")
    if Expertise.CULTURAL_CONTEXT in expertise:
        actions.append("Consult cultural specialist for context interpretation")
    if result.confidence_score < 60:
        actions.append("Request additional context from user if safe to do so")
    return actions


# =============================================================================
# MANAGER
# =============================================================================


class OversightManager:
    """
    Owns oversight cases, the case queue and the expert pool.

    Usage:
        manager = OversightManager(settings, recorder)
        evaluation = manager.evaluate(content, result, request.context)
        if evaluation.case:
            manager.resolve(evaluation.case.id, resolution, expert_id)
    """

    def __init__(
        self,
        settings: Settings,
        recorder: "AuditRecorder | None" = None,
        experts: list[ExpertProfile] | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._low_confidence_threshold = settings.low_confidence_threshold
        self._recorder = recorder
        self._now = now
        self._lock = threading.RLock()

        if experts is None and settings.seed_default_experts:
            experts = default_experts()
        self._pool = ExpertPool(experts)
        self._queue = CaseQueue()
        self._cases: dict[str, OversightCase] = {}

        self._resolved = 0
        self._approvals = 0
        self._response_minutes_total = 0.0
        self._emergency_handled = 0
        self._learning_cases = 0

        logger.info("Oversight manager ready with %d expert(s)", len(self._pool))

    # ------------------------------------------------------------------
    # Evaluation and case creation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        content: str,
        result: ModerationResult,
        context: ModerationContext,
    ) -> OversightEvaluation:
        analysis = analyze_oversight_need(
            content, result, context, self._low_confidence_threshold
        )
        if not analysis.needs_oversight:
            return OversightEvaluation(
                needs_oversight=False,
                reasoning=analysis.reasoning or "No oversight triggers fired",
                priority=OversightPriority.LOW,
            )

        with self._lock:
            case = self._create_case(content, result, context, analysis)
            self._cases[case.id] = case
            self._queue.push(case.id, case.priority)
            logger.info(
                "Oversight case %s opened: priority=%s type=%s",
                case.id,
                case.priority.value,
                case.case_type.value,
            )

            if case.priority in _IMMEDIATE_ASSIGNMENT:
                self._assign_locked(case)

            if self._recorder is not None:
                case.audit_event_id = self._recorder.record_escalation(case)

            snapshot = case.model_copy(deep=True)

        expert = snapshot.assigned_expert
        return OversightEvaluation(
            needs_oversight=True,
            case=snapshot,
            reasoning=analysis.reasoning,
            priority=snapshot.priority,
            assigned=expert is not None,
            expert_id=expert.id if expert else None,
        )

    def _create_case(
        self,
        content: str,
        result: ModerationResult,
        context: ModerationContext,
        analysis: OversightAnalysis,
    ) -> OversightCase:
        now = self._now()
        versions = [result.model_versions.primary, *(result.model_versions.ensemble or [])]
        return OversightCase(
            id=str(uuid.uuid4()),
            priority=analysis.priority,
            case_type=analysis.case_type,
            original_content=content,
            content_language=result.detected_language,
            context=context,
            ai_analysis=AIAnalysisSnapshot(
                moderation_id=result.id,
                risk_score=result.risk_score,
                confidence_score=result.confidence_score,
                crisis_level=result.crisis_level,
                action=result.action,
                detected_keywords=list(result.crisis_keywords),
                sentiment=result.sentiment,
                processing_time_ms=result.processing_time_ms,
                model_versions=versions,
                uncertainty_factors=uncertainty_factors(result),
            ),
            requirements=OversightRequirements(
                expertise_needed=list(analysis.expertise),
                urgency=urgency_score(
                    analysis.priority, result.risk_score, context.message_type
                ),
                reason_for_escalation=analysis.reasoning,
                suggested_actions=suggested_actions(result, analysis.expertise),
                time_limit_minutes=analysis.priority.response_minutes,
            ),
            created_at=now,
            updated_at=now,
        )

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign_expert(self, case_id: str) -> AssignmentResult:
        with self._lock:
            case = self._cases.get(case_id)
            if case is None:
                return AssignmentResult(assigned=False, case_id=case_id, reason="Case not found")
            if case.status != CaseStatus.PENDING:
                return AssignmentResult(
                    assigned=False,
                    case_id=case_id,
                    expert_id=case.assigned_expert.id if case.assigned_expert else None,
                    reason=f"Case is {case.status.value}",
                )
            return self._assign_locked(case)

    def _assign_locked(self, case: OversightCase) -> AssignmentResult:
        expert = self._pool.best_for(case)
        if expert is None:
            logger.warning(
                "No expert available for case %s (priority=%s); left queued",
                case.id,
                case.priority.value,
            )
            return AssignmentResult(
                assigned=False, case_id=case.id, reason="No suitable experts available"
            )

        self._pool.reserve(expert)
        now = self._now()
        case.assigned_expert = AssignedExpert(
            id=expert.id, name=expert.name, expertise=list(expert.expertise), assigned_at=now
        )
        case.status = CaseStatus.ASSIGNED
        case.updated_at = now
        self._queue.remove(case.id)

        logger.info("Expert %s assigned to case %s", expert.id, case.id)
        return AssignmentResult(
            assigned=True, case_id=case.id, expert_id=expert.id, reason="Successfully assigned"
        )

    def drain_queue(self) -> int:
        """Assign queued cases in priority order while experts have room."""
        assigned = 0
        with self._lock:
            while True:
                case_id = self._queue.peek()
                if case_id is None:
                    break
                case = self._cases[case_id]
                if not self._assign_locked(case).assigned:
                    break
                assigned += 1
        return assigned

    def start_review(self, case_id: str, expert_id: str) -> ReviewResult:
        with self._lock:
            case = self._cases.get(case_id)
            if case is None:
                return ReviewResult(success=False, case_id=case_id, reason="Case not found")
            if case.status != CaseStatus.ASSIGNED:
                return ReviewResult(
                    success=False,
                    case_id=case_id,
                    status=case.status,
                    reason=f"Case is {case.status.value}",
                )
            if case.assigned_expert is None or case.assigned_expert.id != expert_id:
                return ReviewResult(
                    success=False,
                    case_id=case_id,
                    status=case.status,
                    reason="Case is assigned to another expert",
                )
            case.status = CaseStatus.IN_REVIEW
            case.updated_at = self._now()
            return ReviewResult(success=True, case_id=case_id, status=case.status)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self, case_id: str, resolution: ResolutionInput, expert_id: str
    ) -> ResolutionResult:
        with self._lock:
            case = self._cases.get(case_id)
            if case is None:
                return ResolutionResult(success=False, case_id=case_id, reason="Case not found")
            expert = self._pool.get(expert_id)
            if expert is None:
                return ResolutionResult(
                    success=False, case_id=case_id, reason="Expert not found"
                )
            if case.status not in _OPEN_STATUSES:
                return ResolutionResult(
                    success=False,
                    case_id=case_id,
                    status=case.status,
                    reason="Case already resolved",
                )
            assigned = case.assigned_expert
            if assigned is not None and assigned.id != expert_id:
                return ResolutionResult(
                    success=False,
                    case_id=case_id,
                    status=case.status,
                    reason="Case is assigned to another expert",
                )

            resolved_at = self._now()
            elapsed_ms = max(0.0, (resolved_at - case.created_at).total_seconds() * 1000)
            confidence = resolution.confidence
            if confidence is None:
                confidence = 0.9 if resolution.human_decision == HumanDecision.APPROVE_AI else 0.7

            case.resolution = CaseResolution(
                **resolution.model_dump(exclude={"confidence"}),
                confidence=confidence,
                resolved_at=resolved_at,
                resolved_by=expert_id,
                time_to_resolution_ms=elapsed_ms,
            )
            case.status = (
                CaseStatus.ESCALATED_FURTHER
                if resolution.human_decision == HumanDecision.ESCALATE_FURTHER
                else CaseStatus.RESOLVED
            )
            case.updated_at = resolved_at
            case.learning_data = self._learning_data(case, case.resolution)

            response_minutes = elapsed_ms / 60_000
            ExpertPool.record_resolution(
                expert, response_minutes, case.learning_data.ai_was_correct
            )
            self._record_metrics(case, response_minutes)

            if assigned is not None:
                self._pool.release(expert)
            self._queue.remove(case_id)

            logger.info(
                "Case %s resolved by %s: %s",
                case_id,
                expert_id,
                resolution.human_decision.value,
            )

            if self._recorder is not None:
                self._recorder.record_oversight_resolution(case)

            learning = case.learning_data.model_copy()
            status = case.status
            self.drain_queue()

        return ResolutionResult(
            success=True, case_id=case_id, status=status, learning_data=learning
        )

    @staticmethod
    def _learning_data(case: OversightCase, resolution: CaseResolution) -> LearningData:
        ai_was_correct = resolution.human_decision == HumanDecision.APPROVE_AI
        risk = case.ai_analysis.risk_score

        lesson = ""
        if not ai_was_correct:
            human = (
                resolution.final_risk_score
                if resolution.final_risk_score is not None
                else resolution.final_action.value
            )
            lesson = (
                f"AI {'over' if risk >= 70 else 'under'}-estimated risk. "
                f"Human assessment: {human}"
            )

        pattern = None
        if (
            Expertise.CULTURAL_CONTEXT in case.requirements.expertise_needed
            and resolution.human_decision == HumanDecision.MODIFY_AI
        ):
            pattern = "cultural_context_adjustment_needed"
        elif (
            case.ai_analysis.confidence_score < 60
            and resolution.human_decision == HumanDecision.OVERRIDE_AI
        ):
            pattern = "low_confidence_prediction_unreliable"

        return LearningData(
            ai_was_correct=ai_was_correct,
            human_confidence=resolution.confidence,
            lesson_learned=lesson,
            pattern_identified=pattern,
            training_data_candidate=not ai_was_correct
            or case.case_type == CaseType.EDGE_CASE,
        )

    def _record_metrics(self, case: OversightCase, response_minutes: float) -> None:
        self._resolved += 1
        self._response_minutes_total += response_minutes
        if case.learning_data.ai_was_correct:
            self._approvals += 1
        if case.priority == OversightPriority.EMERGENCY:
            self._emergency_handled += 1
        if case.learning_data.training_data_candidate:
            self._learning_cases += 1

    # ------------------------------------------------------------------
    # Experts and lookups
    # ------------------------------------------------------------------

    def register_expert(self, expert: ExpertProfile) -> ExpertProfile:
        with self._lock:
            registered = self._pool.register(expert.model_copy(deep=True))
            logger.info("Expert %s registered", registered.id)
            self.drain_queue()
            return registered.model_copy(deep=True)

    def list_experts(self) -> list[ExpertProfile]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._pool.all()]

    def get_case(self, case_id: str) -> OversightCase | None:
        with self._lock:
            case = self._cases.get(case_id)
            return case.model_copy(deep=True) if case else None

    def pending_cases(self) -> list[OversightCase]:
        """Queued (unassigned) cases, next-to-serve first."""
        with self._lock:
            return [self._cases[i].model_copy(deep=True) for i in self._queue.ordered()]

    def metrics(self) -> OversightMetrics:
        with self._lock:
            open_cases = sum(1 for c in self._cases.values() if c.status in _OPEN_STATUSES)
            return OversightMetrics(
                total_cases=len(self._cases),
                pending_cases=open_cases,
                average_response_minutes=(
                    round(self._response_minutes_total / self._resolved, 3)
                    if self._resolved
                    else 0.0
                ),
                human_ai_agreement_rate=(
                    round(self._approvals / self._resolved, 4) if self._resolved else 0.0
                ),
                emergency_cases_handled=self._emergency_handled,
                expert_utilization=round(self._pool.utilization(), 4),
                learning_cases_generated=self._learning_cases,
            )

    def log_summary(self) -> None:
        m = self.metrics()
        logger.info(
            "Oversight metrics: cases=%d open=%d avg_response=%.1fmin agreement=%.1f%% utilization=%.0f%%",
            m.total_cases,
            m.pending_cases,
            m.average_response_minutes,
            m.human_ai_agreement_rate * 100,
            m.expert_utilization * 100,
        )
