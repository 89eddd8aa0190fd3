"""
Moderation Engine Tests

Validates the engine end to end over real and stub registries: empty
input, action determination, crisis-channel rules, total model failure,
caching, language detection, events and audit forwarding.

Test Categories:
1. TestDetermineAction - The action table
2. TestModerate - Decisions over the default heuristic registry
3. TestCrisisChannels - Crisis and emergency channels are never blocked
4. TestSystemError - Total model failure
5. TestCaching - Result and language caches
6. TestEvents - moderation_complete / emergency_detected listeners
7. TestAuditForwarding - Decisions reach the audit trail
"""

import pytest
from pydantic import ValidationError

from lifeline.audit import AuditRecorder
from lifeline.metrics import MetricsStore
from lifeline.moderation import (
    EMERGENCY_DETECTED,
    MODERATION_COMPLETE,
    SYSTEM_ERROR_REASONING,
    EnsembleScorer,
    ModerationEngine,
    determine_action,
)
from lifeline.registry import build_default_registry
from lifeline.schemas.audit import AuditEventType, AuditQuery
from lifeline.schemas.moderation import CrisisLevel, MessageType, ModerationAction
from tests.fixtures import IMMEDIATE_SAMPLES, MULTILINGUAL_SAMPLES, SUPPORTIVE_SAMPLES


@pytest.fixture
def make_engine(settings):
    """
    Factory fixture for ModerationEngine instances.

    Usage:
        engine = make_engine()                     # default heuristic registry
        engine = make_engine(registry, clock=...)  # custom registry / clock
    """

    def _create(registry=None, recorder=None, **kwargs) -> ModerationEngine:
        scorer = EnsembleScorer(registry or build_default_registry(settings))
        return ModerationEngine(
            settings, scorer, MetricsStore(settings.latency_budget_ms), recorder, **kwargs
        )

    return _create


class TestDetermineAction:
    """Tests for determine_action()."""

    @pytest.mark.parametrize(
        "level,risk,expected",
        [
            (CrisisLevel.EMERGENCY, 0.0, ModerationAction.EMERGENCY),
            (CrisisLevel.CRITICAL, 0.0, ModerationAction.ESCALATE),
            (CrisisLevel.NONE, 0.85, ModerationAction.BLOCK),
            (CrisisLevel.NONE, 0.8, ModerationAction.FLAG),
            (CrisisLevel.NONE, 0.65, ModerationAction.FLAG),
            (CrisisLevel.HIGH, 0.1, ModerationAction.FLAG),
            (CrisisLevel.MODERATE, 0.6, ModerationAction.ALLOW),
            (CrisisLevel.NONE, 0.0, ModerationAction.ALLOW),
        ],
    )
    def test_general_channel(self, level, risk, expected):
        assert determine_action(level, risk, MessageType.GENERAL) == expected

    @pytest.mark.parametrize("message_type", [MessageType.CRISIS, MessageType.EMERGENCY])
    @pytest.mark.parametrize(
        "level,expected",
        [
            (CrisisLevel.EMERGENCY, ModerationAction.EMERGENCY),
            (CrisisLevel.CRITICAL, ModerationAction.ESCALATE),
            (CrisisLevel.HIGH, ModerationAction.ESCALATE),
            (CrisisLevel.MODERATE, ModerationAction.ALLOW),
            (CrisisLevel.NONE, ModerationAction.ALLOW),
        ],
    )
    def test_crisis_channels_never_block(self, message_type, level, expected):
        assert determine_action(level, 1.0, message_type) == expected

    def test_custom_thresholds(self):
        assert (
            determine_action(CrisisLevel.NONE, 0.5, MessageType.GENERAL, 0.4, 0.3)
            == ModerationAction.BLOCK
        )


class TestModerate:
    """Tests for ModerationEngine.moderate() over the heuristic registry."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", ["", "   \n\t  "])
    async def test_empty_content_is_safe(self, make_engine, make_request, content):
        result = await make_engine().moderate(make_request(content))

        assert result.action == ModerationAction.ALLOW
        assert result.safe
        assert result.risk_score == 0
        assert result.crisis_level == CrisisLevel.NONE
        assert result.model_versions.primary == "empty-content-handler"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", IMMEDIATE_SAMPLES)
    async def test_immediate_danger_is_emergency(self, make_engine, make_request, content):
        result = await make_engine().moderate(make_request(content))

        assert result.crisis_level == CrisisLevel.EMERGENCY
        assert result.action == ModerationAction.EMERGENCY
        assert not result.safe
        assert result.crisis_keywords
        assert "Immediate emergency intervention required" in result.recommendations

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", SUPPORTIVE_SAMPLES)
    async def test_supportive_content_allowed(self, make_engine, make_request, content):
        result = await make_engine().moderate(make_request(content))

        assert result.action == ModerationAction.ALLOW
        assert result.crisis_level == CrisisLevel.NONE
        assert result.reasoning == "Content appears safe"

    @pytest.mark.asyncio
    async def test_primary_mode_on_general_channel(self, make_engine, make_request):
        result = await make_engine().moderate(make_request("Just checking in"))

        assert result.model_versions.primary == "crisis-specialist-v3.0"
        assert result.model_versions.ensemble is None

    @pytest.mark.asyncio
    async def test_ensemble_mode_forced(self, make_engine, make_request):
        result = await make_engine().moderate(
            make_request("Just checking in", ensemble_mode=True)
        )

        assert result.model_versions.primary == "ensemble"
        assert len(result.model_versions.ensemble) == 3
        assert len(result.audit_trail.model_decisions) == 3

    @pytest.mark.asyncio
    async def test_protective_factors_lower_level(self, make_engine, make_request):
        engine = make_engine()

        plain = await engine.moderate(make_request("I keep cutting myself"))
        supported = await engine.moderate(
            make_request("I keep cutting myself but my therapist and medication help")
        )

        assert plain.crisis_level == CrisisLevel.HIGH
        assert supported.crisis_level == CrisisLevel.MODERATE

    @pytest.mark.asyncio
    async def test_high_risk_blocked_on_general_channel(
        self, make_engine, make_request, stub_model, stub_registry
    ):
        engine = make_engine(stub_registry(stub_model("always-high", score=0.95)))

        result = await engine.moderate(make_request("hello there"))

        assert result.risk_score == 95
        assert result.action == ModerationAction.BLOCK

    @pytest.mark.asyncio
    async def test_elevated_risk_flagged(
        self, make_engine, make_request, stub_model, stub_registry
    ):
        engine = make_engine(stub_registry(stub_model("elevated", score=0.7)))

        result = await engine.moderate(make_request("hello there"))

        assert result.action == ModerationAction.FLAG

    @pytest.mark.asyncio
    async def test_scores_in_range(self, make_engine, make_request):
        result = await make_engine().moderate(
            make_request("suicide, kill myself, end my life, die, hopeless")
        )

        assert 0 <= result.risk_score <= 100
        assert 0 <= result.confidence_score <= 100
        assert result.processing_time_ms >= 0

    @pytest.mark.asyncio
    async def test_result_is_immutable(self, make_engine, make_request):
        result = await make_engine().moderate(make_request("hello"))

        with pytest.raises(ValidationError):
            result.action = ModerationAction.BLOCK

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, make_engine, make_request):
        engine = make_engine()

        await engine.moderate(make_request("hello"))
        await engine.moderate(make_request("I have the pills"))

        agg = engine.metrics.get_aggregated()
        assert agg.total_requests == 2
        assert agg.emergency_escalations == 1
        assert agg.requests_by_action["ALLOW"] == 1


class TestCrisisChannels:
    """Crisis and emergency channels escalate instead of blocking."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message_type", [MessageType.CRISIS, MessageType.EMERGENCY])
    async def test_high_risk_not_blocked(
        self, make_engine, make_request, stub_model, stub_registry, message_type
    ):
        engine = make_engine(stub_registry(stub_model("always-high", score=1.0)))

        result = await engine.moderate(make_request("hello there", message_type))

        assert result.action != ModerationAction.BLOCK
        assert result.action == ModerationAction.ALLOW

    @pytest.mark.asyncio
    async def test_crisis_channel_uses_ensemble(self, make_engine, make_request):
        result = await make_engine().moderate(
            make_request("I can't take anymore", MessageType.CRISIS)
        )

        assert result.model_versions.primary == "ensemble"

    @pytest.mark.asyncio
    async def test_self_harm_escalated(self, make_engine, make_request):
        result = await make_engine().moderate(
            make_request("I want to hurt myself again", MessageType.CRISIS)
        )

        assert result.crisis_level == CrisisLevel.HIGH
        assert result.action == ModerationAction.ESCALATE

    @pytest.mark.asyncio
    async def test_emergency_on_crisis_channel(self, make_engine, make_request):
        result = await make_engine().moderate(
            make_request("The gun is loaded", MessageType.CRISIS)
        )

        assert result.action == ModerationAction.EMERGENCY


class TestSystemError:
    """Total model failure yields a conservative synthetic result."""

    @pytest.fixture
    def broken_engine(self, make_engine, stub_model, stub_registry):
        return make_engine(
            stub_registry(
                stub_model("a", error=RuntimeError("down")),
                stub_model("b", error=RuntimeError("down")),
            )
        )

    @pytest.mark.asyncio
    async def test_never_allows(self, broken_engine, make_request):
        result = await broken_engine.moderate(make_request("hello there"))

        assert result.action == ModerationAction.FLAG
        assert not result.safe
        assert result.categories == ["system-error"]
        assert result.risk_score == 50
        assert result.confidence_score == 0
        assert result.reasoning == SYSTEM_ERROR_REASONING
        assert result.model_versions.primary == "error-handler"
        assert "Manual review required due to system error" in result.recommendations

    @pytest.mark.asyncio
    async def test_escalates_on_crisis_channel(self, broken_engine, make_request):
        result = await broken_engine.moderate(make_request("hello", MessageType.CRISIS))

        assert result.action == ModerationAction.ESCALATE

    @pytest.mark.asyncio
    async def test_lexicon_still_detects_emergency(self, broken_engine, make_request):
        result = await broken_engine.moderate(make_request("I have the pills"))

        assert result.crisis_level == CrisisLevel.EMERGENCY
        assert result.action == ModerationAction.EMERGENCY

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, broken_engine, make_request):
        await broken_engine.moderate(make_request("hello there"))

        assert broken_engine.cache_size == 0
        assert broken_engine.metrics.get_aggregated().system_errors == 1

    @pytest.mark.asyncio
    async def test_partial_failure_recorded(
        self, make_engine, make_request, stub_model, stub_registry
    ):
        engine = make_engine(
            stub_registry(
                stub_model("broken", error=RuntimeError("down")),
                stub_model("ok", score=0.1),
            )
        )

        result = await engine.moderate(make_request("hello", ensemble_mode=True))

        assert result.audit_trail.failed_models == ["broken"]
        assert "system-error" not in result.categories


class TestCaching:
    """Tests for the result and language caches."""

    @pytest.mark.asyncio
    async def test_cache_hit_gets_new_id(self, make_engine, make_request):
        engine = make_engine()
        request = make_request("Something to think about")

        first = await engine.moderate(request)
        second = await engine.moderate(request)

        assert not first.cached
        assert second.cached
        assert second.id != first.id
        assert second.action == first.action
        assert engine.metrics.get_aggregated().cache_hits == 1

    @pytest.mark.asyncio
    async def test_cache_key_includes_message_type(
        self, make_engine, make_request, stub_model, stub_registry
    ):
        engine = make_engine(stub_registry(stub_model("always-high", score=1.0)))

        general = await engine.moderate(make_request("same text"))
        crisis = await engine.moderate(make_request("same text", MessageType.CRISIS))

        assert general.action == ModerationAction.BLOCK
        assert not crisis.cached
        assert crisis.action == ModerationAction.ALLOW

    @pytest.mark.asyncio
    async def test_shared_prefix_does_not_share_result(
        self, make_engine, make_request, settings
    ):
        """Messages that differ only past the key prefix are scored separately."""
        engine = make_engine()
        prefix = ("The weather report for the weekend mentions rain in the morning. " * 10)[
            : settings.cache_key_chars
        ]

        safe = await engine.moderate(make_request(prefix + " Anyway, hello friends"))
        danger = await engine.moderate(
            make_request(prefix + " I have the pills and I'm taking them tonight")
        )

        assert safe.crisis_level != CrisisLevel.EMERGENCY
        assert not danger.cached
        assert danger.crisis_level == CrisisLevel.EMERGENCY
        assert danger.action == ModerationAction.EMERGENCY

    @pytest.mark.asyncio
    async def test_cache_expires(self, make_engine, make_request, settings):
        now = [1000.0]
        engine = make_engine(clock=lambda: now[0])
        request = make_request("Something to think about")

        await engine.moderate(request)
        now[0] += settings.cache_ttl_seconds + 1
        result = await engine.moderate(request)

        assert not result.cached

    @pytest.mark.asyncio
    async def test_sweep_removes_expired(self, make_engine, make_request, settings):
        now = [1000.0]
        engine = make_engine(clock=lambda: now[0])
        await engine.moderate(make_request("first message"))
        await engine.moderate(make_request("second message"))

        now[0] += settings.cache_ttl_seconds + 1

        assert engine.sweep_caches() >= 2
        assert engine.cache_size == 0

    @pytest.mark.asyncio
    async def test_detects_language(self, make_engine, make_request):
        result = await make_engine().moderate(make_request(MULTILINGUAL_SAMPLES["es"]))

        assert result.detected_language == "es"
        assert result.crisis_level == CrisisLevel.EMERGENCY

    @pytest.mark.asyncio
    async def test_language_hint_wins(self, make_engine, make_request):
        result = await make_engine().moderate(
            make_request(MULTILINGUAL_SAMPLES["es"], language="fr")
        )

        assert result.detected_language == "fr"

    def test_language_detection_cached(self, make_engine):
        engine = make_engine()

        first = engine.detect_language("je ne peux plus, vous savez")
        second = engine.detect_language("je ne peux plus, vous savez")

        assert first is second


class TestEvents:
    """Tests for engine event listeners."""

    @pytest.mark.asyncio
    async def test_emergency_event(self, make_engine, make_request):
        engine = make_engine()
        emergencies, completed = [], []
        engine.on(EMERGENCY_DETECTED, emergencies.append)
        engine.on(MODERATION_COMPLETE, completed.append)

        await engine.moderate(make_request("hello"))
        result = await engine.moderate(make_request("I have the pills"))

        assert [r.id for r in emergencies] == [result.id]
        assert len(completed) == 2

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_moderation(
        self, make_engine, make_request
    ):
        engine = make_engine()

        def explode(result):
            raise RuntimeError("listener bug")

        engine.on(MODERATION_COMPLETE, explode)

        result = await engine.moderate(make_request("hello"))

        assert result.action == ModerationAction.ALLOW


class TestAuditForwarding:
    """Every decision is forwarded to the audit recorder."""

    @pytest.mark.asyncio
    async def test_moderation_and_crisis_entries(self, make_engine, make_request, settings):
        recorder = AuditRecorder(settings)
        engine = make_engine(recorder=recorder)

        await engine.moderate(make_request("hello"))
        await engine.moderate(make_request("I have the pills", MessageType.CRISIS))

        moderation = recorder.query(
            AuditQuery(event_types=[AuditEventType.MODERATION_ANALYSIS])
        )
        crisis = recorder.query(AuditQuery(event_types=[AuditEventType.CRISIS_DETECTION]))

        assert moderation.total_count == 2
        assert crisis.total_count == 1
        assert crisis.entries[0].parent_event_id in {e.id for e in moderation.entries}

    @pytest.mark.asyncio
    async def test_cache_hits_are_audited(self, make_engine, make_request, settings):
        recorder = AuditRecorder(settings)
        engine = make_engine(recorder=recorder)
        request = make_request("hello")

        await engine.moderate(request)
        await engine.moderate(request)

        assert recorder.query(AuditQuery()).total_count == 2
