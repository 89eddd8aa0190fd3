"""
Model Registry Tests

Validates the scoring-model registry, the heuristic ensemble members and
how optional scorers are added from settings.

Test Categories:
1. TestModelScore - Range validation
2. TestModelRegistry - Registration, lookup, primary selection
3. TestHeuristicModels - The default keyword scorers
4. TestDefaultRegistry - Registry construction from settings
"""

import pytest

from lifeline.config import Settings
from lifeline.registry import (
    ModelKind,
    ModelRegistry,
    ModelScore,
    build_default_registry,
    crisis_specialist,
    general_safety,
    toxicity_detector,
)


class TestModelScore:
    """Tests for ModelScore validation."""

    def test_valid_score(self):
        score = ModelScore(score=0.4, confidence=0.9, categories=["crisis"])

        assert score.score == 0.4
        assert score.categories == ["crisis"]

    @pytest.mark.parametrize("score,confidence", [(1.5, 0.5), (-0.1, 0.5), (0.5, 1.2)])
    def test_out_of_range_rejected(self, score, confidence):
        with pytest.raises(ValueError):
            ModelScore(score=score, confidence=confidence)


class TestModelRegistry:
    """Tests for ModelRegistry."""

    def test_register_and_lookup(self, stub_model):
        model = stub_model("a")
        registry = ModelRegistry([model])

        assert len(registry) == 1
        assert "a" in registry
        assert registry.get_model("a") is model
        assert registry.get_model("missing") is None

    def test_register_replaces_same_name(self, stub_model):
        registry = ModelRegistry([stub_model("a", weight=0.2)])
        registry.register(stub_model("a", weight=0.9))

        assert len(registry) == 1
        assert registry.get_model("a").metadata.weight == 0.9

    def test_unregister(self, stub_model):
        registry = ModelRegistry([stub_model("a")])

        assert registry.unregister("a") is True
        assert registry.unregister("a") is False
        assert len(registry) == 0

    def test_primary_is_highest_weight(self, stub_model):
        registry = ModelRegistry(
            [stub_model("low", weight=0.2), stub_model("high", weight=0.7)]
        )

        assert registry.primary_model().name == "high"

    def test_primary_tie_goes_to_first_registered(self, stub_model):
        registry = ModelRegistry(
            [stub_model("first", weight=0.5), stub_model("second", weight=0.5)]
        )

        assert registry.primary_model().name == "first"

    def test_empty_registry_has_no_primary(self):
        assert ModelRegistry().primary_model() is None

    def test_list_preserves_registration_order(self, stub_model):
        registry = ModelRegistry([stub_model("b"), stub_model("a"), stub_model("c")])

        assert [m.name for m in registry.list_models()] == ["b", "a", "c"]
        assert [m.name for m in registry.list_metadata()] == ["b", "a", "c"]


class TestHeuristicModels:
    """Tests for the three keyword scorers."""

    def test_metadata(self):
        assert crisis_specialist().metadata.qualified_name == "crisis-specialist-v3.0"
        assert toxicity_detector().metadata.weight == 0.3
        assert general_safety().metadata.kind == ModelKind.HEURISTIC

    @pytest.mark.asyncio
    async def test_crisis_specialist_scores_per_hit(self):
        result = await crisis_specialist().analyze("I want to die, it's hopeless", "en")

        assert result.score == pytest.approx(0.8)
        assert result.confidence == 0.95
        assert "crisis" in result.categories

    @pytest.mark.asyncio
    async def test_score_capped_at_one(self):
        text = "suicide, kill myself, end my life, die, hopeless"
        result = await crisis_specialist().analyze(text, "en")

        assert result.score == 1.0

    @pytest.mark.asyncio
    async def test_benign_text_scores_zero(self):
        for model in (crisis_specialist(), toxicity_detector(), general_safety()):
            result = await model.analyze("Lovely weather for a walk", "en")
            assert result.score == 0.0

    @pytest.mark.asyncio
    async def test_toxicity_detector(self):
        result = await toxicity_detector().analyze("You are a stupid idiot", "en")

        assert result.score == pytest.approx(0.6)
        assert result.categories == ["toxicity"]


class TestDefaultRegistry:
    """Tests for build_default_registry()."""

    def test_heuristic_trio(self, settings):
        registry = build_default_registry(settings)

        assert len(registry) == 3
        assert registry.primary_model().name == "crisis-specialist"

    def test_llm_scorer_added_with_key(self):
        settings = Settings(
            llm_scoring_enabled=True,
            llm_provider="groq",
            groq_api_key="test-key-not-real",
        )
        registry = build_default_registry(settings)

        assert "llm-groq" in registry
        assert registry.get_model("llm-groq").metadata.kind == ModelKind.LLM
        assert len(registry) == 4

    def test_llm_scorer_skipped_without_key(self):
        settings = Settings(
            llm_scoring_enabled=True,
            llm_provider="openai",
            openai_api_key=None,
        )
        registry = build_default_registry(settings)

        assert len(registry) == 3

    def test_semantic_scorer_added(self):
        settings = Settings(semantic_scoring_enabled=True)
        registry = build_default_registry(settings)

        assert "semantic-crisis" in registry
        # Not initialized until the pipeline starts
        assert not registry.get_model("semantic-crisis").is_initialized
