"""
LLM-backed Scoring Model

Scores content with a hosted chat-completion model (Groq or OpenAI) in
JSON mode, so a large model can take part in the ensemble vote next to
the in-process heuristics.

Key components:
- ProviderClients: Lazy-initialized async SDK clients
- parse_model_response(): Tolerant JSON extraction from model output
- LLMScoringModel: ScoringModel that calls the configured provider

A provider error, timeout or unparseable reply raises ProviderError; the
ensemble then drops this model from the weighted average for the request.
"""

import json
import logging
import time

from groq import AsyncGroq
from openai import AsyncOpenAI

from lifeline.config import Settings
from lifeline.registry.models import ModelKind, ModelMetadata, ModelScore, ScoringModel

logger = logging.getLogger(__name__)


RISK_SCORING_PROMPT = """You are a safety classifier for a crisis-support chat service.

Rate the risk that the message indicates self-harm, suicide, violence,
harassment or abuse. Messages asking for help are not harmful in themselves;
rate the danger to the sender or others.

Respond with a JSON object:
{
    "risk_score": 0.0-1.0,
    "confidence": 0.0-1.0,
    "categories": ["crisis" | "self-harm" | "toxicity" | "harassment" | "violence" | "spam"],
    "reasoning": "one sentence"
}"""

KNOWN_CATEGORIES = frozenset(
    {"crisis", "self-harm", "toxicity", "harassment", "violence", "spam"}
)


class ProviderError(RuntimeError):
    """A provider call failed or returned nothing usable."""


def has_provider_key(settings: Settings) -> bool:
    key = settings.groq_api_key if settings.llm_provider == "groq" else settings.openai_api_key
    return key is not None and bool(key.get_secret_value())


class ProviderClients:
    """
    Lazy-initialized provider SDK clients.

    Clients are created on first use so that a pipeline configured for one
    provider never needs the other provider's key.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._groq: AsyncGroq | None = None
        self._openai: AsyncOpenAI | None = None

    @property
    def groq(self) -> AsyncGroq:
        if self._groq is None:
            if self._settings.groq_api_key is None:
                raise ProviderError("GROQ_API_KEY is not configured")
            self._groq = AsyncGroq(api_key=self._settings.groq_api_key.get_secret_value())
            logger.debug("Initialized Groq client")
        return self._groq

    @property
    def openai(self) -> AsyncOpenAI:
        if self._openai is None:
            if self._settings.openai_api_key is None:
                raise ProviderError("OPENAI_API_KEY is not configured")
            self._openai = AsyncOpenAI(
                api_key=self._settings.openai_api_key.get_secret_value()
            )
            logger.debug("Initialized OpenAI client")
        return self._openai

    def for_provider(self, provider: str) -> AsyncGroq | AsyncOpenAI:
        return self.groq if provider == "groq" else self.openai


def parse_model_response(response_text: str | None) -> dict:
    """
    Parse a model reply into a dict with at least ``risk_score``.

    Models are prompted for JSON, but replies are handled with fallbacks:
    1. Direct JSON parse
    2. Extract from ```json code blocks
    3. Extract from ``` code blocks
    4. Infer a coarse risk from keywords (confidence 0.5)

    Raises:
        ProviderError: If the reply is empty
    """
    if not response_text:
        raise ProviderError("empty model response")

    try:
        return json.loads(response_text)
    except json.JSONDecodeError:
        pass

    if "```json" in response_text:
        try:
            start = response_text.index("```json") + 7
            end = response_text.index("```", start)
            return json.loads(response_text[start:end].strip())
        except (ValueError, json.JSONDecodeError):
            pass

    if "```" in response_text:
        try:
            start = response_text.index("```") + 3
            # Skip a language identifier such as ```javascript
            newline = response_text.find("\n", start)
            if newline != -1 and newline < start + 20:
                start = newline + 1
            end = response_text.index("```", start)
            return json.loads(response_text[start:end].strip())
        except (ValueError, json.JSONDecodeError):
            pass

    lowered = response_text.lower()
    if any(word in lowered for word in ("high risk", "unsafe", "danger", "harmful")):
        risk = 0.8
    elif "low risk" in lowered or ("safe" in lowered and "unsafe" not in lowered):
        risk = 0.1
    else:
        risk = 0.5

    return {"risk_score": risk, "confidence": 0.5, "reasoning": response_text[:500]}


def _to_model_score(parsed: dict) -> ModelScore:
    try:
        score = float(parsed.get("risk_score", parsed.get("score")))
        confidence = float(parsed.get("confidence", 0.5))
    except (TypeError, ValueError) as e:
        raise ProviderError(f"unusable model response: {parsed!r}") from e

    categories = [
        str(c).lower()
        for c in parsed.get("categories") or []
        if str(c).lower() in KNOWN_CATEGORIES
    ]
    return ModelScore(
        score=min(max(score, 0.0), 1.0),
        confidence=min(max(confidence, 0.0), 1.0),
        categories=categories,
    )


class LLMScoringModel(ScoringModel):
    """
    Ensemble member backed by a chat-completion API.

    Example:
        model = LLMScoringModel.from_settings(settings)
        score = await model.analyze("I can't go on", "en")
    """

    def __init__(
        self,
        metadata: ModelMetadata,
        provider: str,
        api_model_name: str,
        clients: ProviderClients,
        max_tokens: int = 200,
    ) -> None:
        self.metadata = metadata
        self.provider = provider
        self.api_model_name = api_model_name
        self._clients = clients
        self._max_tokens = max_tokens

    @classmethod
    def from_settings(
        cls, settings: Settings, clients: ProviderClients | None = None
    ) -> "LLMScoringModel":
        metadata = ModelMetadata(
            name=f"llm-{settings.llm_provider}",
            version=settings.llm_model,
            weight=settings.llm_weight,
            kind=ModelKind.LLM,
            categories=sorted(KNOWN_CATEGORIES),
            timeout_ms=settings.llm_timeout_ms,
        )
        return cls(
            metadata=metadata,
            provider=settings.llm_provider,
            api_model_name=settings.llm_model,
            clients=clients or ProviderClients(settings),
        )

    async def analyze(self, text: str, language: str) -> ModelScore:
        client = self._clients.for_provider(self.provider)
        start_time = time.perf_counter()

        try:
            response = await client.chat.completions.create(
                model=self.api_model_name,
                messages=[
                    {"role": "system", "content": RISK_SCORING_PROMPT},
                    {"role": "user", "content": f"[language={language}]\n{text}"},
                ],
                max_tokens=self._max_tokens,
                temperature=0.0,
                response_format={"type": "json_object"},
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{self.provider} request failed: {e}") from e

        latency_ms = (time.perf_counter() - start_time) * 1000
        parsed = parse_model_response(response.choices[0].message.content)
        score = _to_model_score(parsed)

        logger.debug(
            "LLM score: provider=%s model=%s latency=%.0fms risk=%.2f",
            self.provider,
            self.api_model_name,
            latency_ms,
            score.score,
        )
        return score
