"""
Oversight Manager Tests

Validates escalation triggers, case prioritisation, expert assignment under
capacity limits, resolution and the learning signal derived from it.

Test Categories:
1. TestTriggers - analyze_oversight_need() over each trigger
2. TestUrgency - urgency_score() and upgrade_priority()
3. TestCaseQueue - Priority-then-arrival ordering
4. TestAssignment - Immediate assignment, capacity, draining
5. TestReview - start_review() transitions
6. TestResolve - Resolution outcomes, learning data, metrics
7. TestIsolationAndConcurrency - Deep copies and the capacity race
8. TestAuditIntegration - Escalation and resolution entries
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from lifeline.audit import AuditRecorder
from lifeline.oversight import (
    CaseQueue,
    OversightManager,
    analyze_oversight_need,
    score_expert,
    upgrade_priority,
    urgency_score,
)
from lifeline.schemas.audit import AuditEventType, AuditQuery
from lifeline.schemas.moderation import (
    CrisisLevel,
    MessageType,
    ModerationAction,
    ModerationContext,
)
from lifeline.schemas.oversight import (
    CaseStatus,
    CaseType,
    Expertise,
    ExpertAvailability,
    ExpertProfile,
    ExpertStatus,
    HumanDecision,
    OversightPriority,
    ResolutionInput,
)
from tests.fixtures import (
    AMBIGUOUS_SAMPLE,
    CONTRADICTORY_SAMPLE,
    CULTURAL_SAMPLE,
    UNUSUAL_IDEATION_SAMPLE,
)

GENERAL = ModerationContext(message_type=MessageType.GENERAL)
CRISIS = ModerationContext(message_type=MessageType.CRISIS)


def _resolution(decision=HumanDecision.APPROVE_AI, action=ModerationAction.EMERGENCY, **kwargs):
    return ResolutionInput(
        human_decision=decision,
        final_action=action,
        reasoning=kwargs.pop("reasoning", "Reviewed the conversation"),
        **kwargs,
    )


@pytest.fixture
def emergency_result(make_result):
    return make_result(
        risk_score=95,
        crisis_level=CrisisLevel.EMERGENCY,
        action=ModerationAction.EMERGENCY,
        crisis_keywords=["have the pills"],
    )


@pytest.fixture
def make_manager(settings):
    """
    Factory fixture for OversightManager instances with an explicit roster.

    Usage:
        manager = make_manager([make_expert()])
        manager = make_manager([], recorder=recorder)
    """

    def _create(experts=None, **kwargs) -> OversightManager:
        return OversightManager(settings, experts=experts if experts is not None else [], **kwargs)

    return _create


class TestTriggers:
    """Tests for analyze_oversight_need()."""

    def test_benign_decision_needs_no_review(self, make_result):
        analysis = analyze_oversight_need("hello there", make_result(), GENERAL)

        assert not analysis.needs_oversight
        assert analysis.priority == OversightPriority.LOW

    def test_low_confidence(self, make_result):
        analysis = analyze_oversight_need(
            "hello there", make_result(confidence_score=50), GENERAL
        )

        assert analysis.needs_oversight
        assert analysis.case_type == CaseType.AI_UNCERTAINTY
        assert analysis.priority == OversightPriority.MEDIUM
        assert "Low AI confidence: 50%" in analysis.reasoning

    def test_threshold_is_configurable(self, make_result):
        analysis = analyze_oversight_need(
            "hello there", make_result(confidence_score=80), GENERAL, 0.9
        )

        assert analysis.case_type == CaseType.AI_UNCERTAINTY

    def test_unusual_ideation(self, make_result):
        analysis = analyze_oversight_need(UNUSUAL_IDEATION_SAMPLE, make_result(), GENERAL)

        assert analysis.case_type == CaseType.EDGE_CASE
        assert analysis.priority == OversightPriority.HIGH
        assert Expertise.PSYCHIATRIC_EVALUATION in analysis.expertise

    def test_cultural_reference_is_edge_case(self, make_result):
        analysis = analyze_oversight_need(
            "My parents want an arranged marriage", make_result(), GENERAL
        )

        assert analysis.case_type == CaseType.EDGE_CASE
        assert Expertise.CULTURAL_CONTEXT in analysis.expertise

    def test_hedging_language(self, make_result):
        analysis = analyze_oversight_need(AMBIGUOUS_SAMPLE, make_result(), GENERAL)

        assert analysis.case_type == CaseType.AMBIGUOUS_CONTENT
        assert analysis.priority == OversightPriority.MEDIUM

    def test_single_hedge_is_not_enough(self, make_result):
        analysis = analyze_oversight_need("Maybe later", make_result(), GENERAL)

        assert not analysis.needs_oversight

    def test_cultural_flag_adds_expertise_only(self, make_result):
        analysis = analyze_oversight_need(CULTURAL_SAMPLE, make_result(), GENERAL)

        assert analysis.needs_oversight
        assert analysis.case_type == CaseType.QUALITY_CHECK
        assert analysis.priority == OversightPriority.LOW
        assert analysis.expertise == [Expertise.CULTURAL_CONTEXT]

    def test_cultural_flag_non_english_needs_language_specialist(self, make_result):
        analysis = analyze_oversight_need(
            CULTURAL_SAMPLE, make_result(detected_language="es"), GENERAL
        )

        assert Expertise.LANGUAGE_SPECIALIST in analysis.expertise

    def test_high_stakes_crisis_channel(self, make_result):
        analysis = analyze_oversight_need("hello", make_result(risk_score=85), CRISIS)

        assert analysis.case_type == CaseType.ESCALATION_REVIEW
        assert analysis.priority == OversightPriority.URGENT
        assert Expertise.CRISIS_COUNSELING in analysis.expertise

    def test_high_risk_on_general_channel_not_escalated(self, make_result):
        analysis = analyze_oversight_need("hello", make_result(risk_score=85), GENERAL)

        assert not analysis.needs_oversight

    def test_contradictory_signals(self, make_result):
        analysis = analyze_oversight_need(CONTRADICTORY_SAMPLE, make_result(), GENERAL)

        assert analysis.case_type == CaseType.AMBIGUOUS_CONTENT
        assert analysis.priority == OversightPriority.HIGH
        assert "getting help vs nothing works" in analysis.reasoning

    def test_emergency_is_unconditional(self, emergency_result):
        analysis = analyze_oversight_need("hello", emergency_result, GENERAL)

        assert analysis.priority == OversightPriority.EMERGENCY
        assert analysis.case_type == CaseType.ESCALATION_REVIEW
        assert analysis.expertise == [
            Expertise.CRISIS_COUNSELING,
            Expertise.SAFETY_ASSESSMENT,
        ]

    def test_priority_never_lowered(self, make_result):
        # Edge case (HIGH) followed by hedging (MEDIUM)
        analysis = analyze_oversight_need(
            "Maybe the government is tracking me, I'm not sure", make_result(), GENERAL
        )

        assert analysis.priority == OversightPriority.HIGH
        assert analysis.case_type == CaseType.AMBIGUOUS_CONTENT


class TestUrgency:
    """Tests for urgency_score() and upgrade_priority()."""

    @pytest.mark.parametrize(
        "priority,risk,message_type,expected",
        [
            (OversightPriority.EMERGENCY, 100, MessageType.EMERGENCY, 10.0),
            (OversightPriority.HIGH, 50, MessageType.CRISIS, 9.0),
            (OversightPriority.MEDIUM, 50, MessageType.GENERAL, 6.0),
            (OversightPriority.LOW, 0, MessageType.GENERAL, 3.0),
        ],
    )
    def test_urgency_score(self, priority, risk, message_type, expected):
        assert urgency_score(priority, risk, message_type) == pytest.approx(expected)

    def test_upgrade_priority(self):
        assert upgrade_priority(OversightPriority.HIGH, OversightPriority.MEDIUM) == (
            OversightPriority.HIGH
        )
        assert upgrade_priority(OversightPriority.MEDIUM, OversightPriority.URGENT) == (
            OversightPriority.URGENT
        )

    def test_response_budget(self):
        assert OversightPriority.EMERGENCY.response_minutes == 5
        assert OversightPriority.LOW.response_minutes == 1440


class TestCaseQueue:
    """Tests for CaseQueue."""

    def test_priority_then_arrival(self):
        queue = CaseQueue()
        queue.push("a", OversightPriority.LOW)
        queue.push("b", OversightPriority.HIGH)
        queue.push("c", OversightPriority.HIGH)

        assert queue.ordered() == ["b", "c", "a"]
        assert queue.peek() == "b"

    def test_upgrade_moves_case_forward(self):
        queue = CaseQueue()
        queue.push("a", OversightPriority.LOW)
        queue.push("b", OversightPriority.HIGH)
        queue.push("a", OversightPriority.EMERGENCY)

        assert queue.pop() == "a"
        assert queue.pop() == "b"
        assert queue.pop() is None

    def test_downgrade_ignored(self):
        queue = CaseQueue()
        queue.push("a", OversightPriority.HIGH)
        queue.push("b", OversightPriority.MEDIUM)
        queue.push("a", OversightPriority.LOW)

        assert queue.ordered() == ["a", "b"]

    def test_remove(self):
        queue = CaseQueue()
        queue.push("a", OversightPriority.HIGH)
        queue.push("b", OversightPriority.LOW)

        assert queue.remove("a") is True
        assert queue.remove("a") is False
        assert "a" not in queue
        assert len(queue) == 1
        assert queue.peek() == "b"

    def test_removed_entries_do_not_accumulate(self):
        queue = CaseQueue()
        queue.push("waiting", OversightPriority.LOW)

        for i in range(100):
            queue.push(f"case-{i}", OversightPriority.EMERGENCY)
            queue.remove(f"case-{i}")

        assert queue.heap_size <= 2
        assert queue.pop() == "waiting"
        assert queue.pop() is None

    def test_upgrades_do_not_accumulate(self):
        queue = CaseQueue()
        queue.push("a", OversightPriority.LOW)
        queue.push("a", OversightPriority.MEDIUM)
        queue.push("a", OversightPriority.HIGH)
        queue.push("a", OversightPriority.EMERGENCY)

        assert queue.heap_size <= 2
        assert queue.ordered() == ["a"]


class TestAssignment:
    """Tests for expert assignment."""

    def test_emergency_assigned_immediately(self, make_manager, make_expert, emergency_result):
        manager = make_manager([make_expert()])

        evaluation = manager.evaluate("I have the pills", emergency_result, CRISIS)

        assert evaluation.needs_oversight
        assert evaluation.assigned
        assert evaluation.expert_id == "expert_test"
        assert evaluation.case.status == CaseStatus.ASSIGNED
        assert manager.pending_cases() == []

    def test_medium_case_is_queued(self, make_manager, make_expert, make_result):
        manager = make_manager([make_expert()])

        evaluation = manager.evaluate("hello", make_result(confidence_score=40), GENERAL)

        assert not evaluation.assigned
        assert evaluation.case.status == CaseStatus.PENDING
        assert [c.id for c in manager.pending_cases()] == [evaluation.case.id]

    def test_manual_assignment(self, make_manager, make_expert, make_result):
        manager = make_manager([make_expert()])
        case = manager.evaluate("hello", make_result(confidence_score=40), GENERAL).case

        result = manager.assign_expert(case.id)
        again = manager.assign_expert(case.id)

        assert result.assigned
        assert result.expert_id == "expert_test"
        assert not again.assigned
        assert again.reason == "Case is assigned"

    def test_assign_missing_case(self, make_manager):
        result = make_manager().assign_expert("nope")

        assert not result.assigned
        assert result.reason == "Case not found"

    def test_no_experts_leaves_case_queued(self, make_manager, emergency_result):
        manager = make_manager([])

        evaluation = manager.evaluate("I have the pills", emergency_result, CRISIS)

        assert not evaluation.assigned
        assert len(manager.pending_cases()) == 1

    def test_best_expert_chosen(self, make_manager, make_expert, emergency_result):
        generalist = make_expert("generalist")
        specialist = make_expert(
            "specialist", ["cultural_context", "crisis_counseling", "safety_assessment"]
        )
        manager = make_manager([generalist, specialist])

        evaluation = manager.evaluate(CULTURAL_SAMPLE, emergency_result, CRISIS)

        assert evaluation.expert_id == "specialist"

    def test_score_expert(self, make_expert, make_manager, emergency_result):
        expert = make_expert()
        case = make_manager([]).evaluate("x", emergency_result, CRISIS).case

        # Full overlap, 0.8 accuracy, idle, no history
        assert score_expert(expert, case) == pytest.approx(0.84)

    def test_capacity_respected_and_freed_on_resolve(
        self, make_manager, make_expert, emergency_result
    ):
        manager = make_manager([make_expert(max_cases=1)])

        first = manager.evaluate("one", emergency_result, CRISIS)
        second = manager.evaluate("two", emergency_result, CRISIS)

        assert first.assigned
        assert not second.assigned
        assert manager.list_experts()[0].availability.status == ExpertStatus.BUSY

        manager.resolve(first.case.id, _resolution(), "expert_test")

        assert manager.get_case(second.case.id).status == CaseStatus.ASSIGNED
        assert manager.list_experts()[0].availability.current_case_load == 1

    def test_drain_in_priority_order(self, make_manager, make_expert, make_result):
        manager = make_manager([])
        medium = manager.evaluate("hello", make_result(confidence_score=40), GENERAL).case
        high = manager.evaluate(CONTRADICTORY_SAMPLE, make_result(), GENERAL).case

        manager.register_expert(make_expert(max_cases=1))

        assert manager.get_case(high.id).status == CaseStatus.ASSIGNED
        assert manager.get_case(medium.id).status == CaseStatus.PENDING

    def test_overloaded_expert_rejected(self):
        with pytest.raises(ValidationError):
            ExpertAvailability(max_concurrent_cases=2, current_case_load=5)

    def test_expert_registered_at_capacity_is_busy(self, make_manager, emergency_result):
        manager = make_manager([])
        full = ExpertProfile(
            id="full",
            name="Full Reviewer",
            availability=ExpertAvailability(max_concurrent_cases=2, current_case_load=2),
        )

        registered = manager.register_expert(full)
        evaluation = manager.evaluate("I have the pills", emergency_result, CRISIS)

        assert registered.availability.status == ExpertStatus.BUSY
        assert not evaluation.assigned
        assert manager.metrics().expert_utilization == 1.0

    def test_capacity_cannot_drop_below_open_cases(
        self, make_manager, make_expert, emergency_result
    ):
        manager = make_manager([make_expert(max_cases=2)])
        manager.evaluate("one", emergency_result, CRISIS)
        manager.evaluate("two", emergency_result, CRISIS)

        with pytest.raises(ValueError, match="open cases"):
            manager.register_expert(make_expert(max_cases=1))

        expert = manager.list_experts()[0]
        assert expert.availability.max_concurrent_cases == 2
        assert expert.availability.current_case_load == 2
        assert manager.metrics().expert_utilization == 1.0

    def test_default_roster_seeded(self, settings):
        manager = OversightManager(settings)

        assert [e.id for e in manager.list_experts()] == ["expert_001", "expert_002"]


class TestReview:
    """Tests for start_review()."""

    @pytest.fixture
    def assigned_case(self, make_manager, make_expert, emergency_result):
        manager = make_manager([make_expert(), make_expert("other")])
        case = manager.evaluate("I have the pills", emergency_result, CRISIS).case
        return manager, case

    def test_assigned_expert_starts_review(self, assigned_case):
        manager, case = assigned_case

        result = manager.start_review(case.id, case.assigned_expert.id)

        assert result.success
        assert manager.get_case(case.id).status == CaseStatus.IN_REVIEW

    def test_other_expert_cannot_start(self, assigned_case):
        manager, case = assigned_case
        other = "other" if case.assigned_expert.id != "other" else "expert_test"

        result = manager.start_review(case.id, other)

        assert not result.success
        assert result.reason == "Case is assigned to another expert"

    def test_pending_case_cannot_start(self, make_manager, make_result):
        manager = make_manager([])
        case = manager.evaluate("hello", make_result(confidence_score=40), GENERAL).case

        result = manager.start_review(case.id, "anyone")

        assert not result.success
        assert result.reason == "Case is pending"

    def test_missing_case(self, make_manager):
        assert make_manager().start_review("nope", "x").reason == "Case not found"


class TestResolve:
    """Tests for resolve()."""

    @pytest.fixture
    def manager(self, make_manager, make_expert):
        return make_manager([make_expert()])

    @pytest.fixture
    def case(self, manager, emergency_result):
        return manager.evaluate("I have the pills", emergency_result, CRISIS).case

    def test_approve(self, manager, case):
        result = manager.resolve(case.id, _resolution(), "expert_test")

        assert result.success
        assert result.status == CaseStatus.RESOLVED
        assert result.learning_data.ai_was_correct
        assert result.learning_data.lesson_learned == ""
        stored = manager.get_case(case.id)
        assert stored.resolution.confidence == 0.9
        assert stored.resolution.resolved_by == "expert_test"

    def test_override(self, manager, case):
        result = manager.resolve(
            case.id,
            _resolution(HumanDecision.OVERRIDE_AI, ModerationAction.FLAG, final_risk_score=40),
            "expert_test",
        )

        learning = result.learning_data
        assert not learning.ai_was_correct
        assert learning.training_data_candidate
        assert learning.human_confidence == 0.7
        assert learning.lesson_learned == "AI over-estimated risk. Human assessment: 40"

    def test_explicit_confidence_kept(self, manager, case):
        manager.resolve(case.id, _resolution(confidence=0.55), "expert_test")

        assert manager.get_case(case.id).resolution.confidence == 0.55

    def test_escalate_further(self, manager, case):
        result = manager.resolve(
            case.id, _resolution(HumanDecision.ESCALATE_FURTHER), "expert_test"
        )

        assert result.status == CaseStatus.ESCALATED_FURTHER

    def test_missing_case(self, manager):
        result = manager.resolve("nope", _resolution(), "expert_test")

        assert not result.success
        assert result.reason == "Case not found"

    def test_unknown_expert(self, manager, case):
        result = manager.resolve(case.id, _resolution(), "ghost")

        assert not result.success
        assert result.reason == "Expert not found"

    def test_second_resolution_rejected(self, manager, case):
        manager.resolve(case.id, _resolution(), "expert_test")
        result = manager.resolve(case.id, _resolution(), "expert_test")

        assert not result.success
        assert result.reason == "Case already resolved"

    def test_other_expert_rejected(self, manager, case, make_expert):
        manager.register_expert(make_expert("other"))

        result = manager.resolve(case.id, _resolution(), "other")

        assert not result.success
        assert result.reason == "Case is assigned to another expert"

    def test_expert_released(self, manager, case):
        manager.resolve(case.id, _resolution(), "expert_test")

        expert = manager.list_experts()[0]
        assert expert.availability.current_case_load == 0
        assert expert.performance.total_cases_handled == 1

    def test_cultural_modification_pattern(self, manager, make_result):
        case = manager.evaluate(CULTURAL_SAMPLE, make_result(), GENERAL).case

        result = manager.resolve(
            case.id, _resolution(HumanDecision.MODIFY_AI, ModerationAction.FLAG), "expert_test"
        )

        assert result.learning_data.pattern_identified == "cultural_context_adjustment_needed"

    def test_low_confidence_override_pattern(self, manager, make_result):
        case = manager.evaluate("hello", make_result(confidence_score=50), GENERAL).case

        result = manager.resolve(
            case.id, _resolution(HumanDecision.OVERRIDE_AI, ModerationAction.FLAG), "expert_test"
        )

        assert result.learning_data.pattern_identified == "low_confidence_prediction_unreliable"
        assert result.learning_data.lesson_learned.startswith("AI under-estimated risk")

    def test_approved_edge_case_is_training_candidate(self, manager, make_result):
        case = manager.evaluate(UNUSUAL_IDEATION_SAMPLE, make_result(), GENERAL).case

        result = manager.resolve(case.id, _resolution(action=ModerationAction.ALLOW), "expert_test")

        assert result.learning_data.ai_was_correct
        assert result.learning_data.training_data_candidate

    def test_metrics(self, make_manager, make_expert, emergency_result):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        clock = [start]
        manager = make_manager([make_expert()], now=lambda: clock[0])

        a = manager.evaluate("one", emergency_result, CRISIS).case
        b = manager.evaluate("two", emergency_result, CRISIS).case
        clock[0] = start + timedelta(minutes=6)
        manager.resolve(a.id, _resolution(), "expert_test")
        manager.resolve(b.id, _resolution(HumanDecision.OVERRIDE_AI), "expert_test")

        metrics = manager.metrics()
        assert metrics.total_cases == 2
        assert metrics.pending_cases == 0
        assert metrics.human_ai_agreement_rate == 0.5
        assert metrics.average_response_minutes == pytest.approx(6.0)
        assert metrics.emergency_cases_handled == 2
        assert metrics.learning_cases_generated == 1


class TestIsolationAndConcurrency:
    """Returned cases are copies; capacity holds under concurrency."""

    def test_returned_case_is_a_copy(self, make_manager, make_expert, emergency_result):
        manager = make_manager([make_expert()])
        case = manager.evaluate("x", emergency_result, CRISIS).case

        case.status = CaseStatus.RESOLVED
        case.original_content = "tampered"

        stored = manager.get_case(case.id)
        assert stored.status == CaseStatus.ASSIGNED
        assert stored.original_content == "x"

    def test_listed_experts_are_copies(self, make_manager, make_expert):
        manager = make_manager([make_expert()])

        manager.list_experts()[0].availability.current_case_load = 99

        assert manager.list_experts()[0].availability.current_case_load == 0

    def test_concurrent_evaluations_respect_capacity(
        self, make_manager, make_expert, emergency_result
    ):
        manager = make_manager([make_expert(max_cases=5)])

        with ThreadPoolExecutor(max_workers=8) as pool:
            evaluations = list(
                pool.map(
                    lambda i: manager.evaluate(f"msg {i}", emergency_result, CRISIS),
                    range(20),
                )
            )

        assert sum(1 for e in evaluations if e.assigned) == 5
        assert manager.list_experts()[0].availability.current_case_load == 5
        assert len(manager.pending_cases()) == 15
        assert manager.metrics().pending_cases == 20


class TestAuditIntegration:
    """Escalations and resolutions reach the audit trail."""

    def test_escalation_and_resolution_audited(
        self, settings, make_manager, make_expert, emergency_result
    ):
        recorder = AuditRecorder(settings)
        manager = make_manager([make_expert()], recorder=recorder)

        case = manager.evaluate("I have the pills", emergency_result, CRISIS).case
        manager.resolve(case.id, _resolution(), "expert_test")

        escalations = recorder.query(AuditQuery(event_types=[AuditEventType.ESCALATION]))
        oversight = recorder.query(AuditQuery(event_types=[AuditEventType.HUMAN_OVERSIGHT]))

        assert case.audit_event_id == escalations.entries[0].id
        assert oversight.total_count == 1
        entry = oversight.entries[0]
        assert entry.parent_event_id == case.audit_event_id
        assert entry.human_oversight.decision == "approve_ai"
        assert entry.human_oversight.expert_id_hash != "expert_test"
        assert "I have the pills" not in entry.model_dump_json()
