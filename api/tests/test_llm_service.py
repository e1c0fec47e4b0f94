"""
Tests for the LLM recommender: prompt construction, response validation and
provider failure handling. Providers are always mocked.
"""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from core.exceptions import LLMContractViolation, LLMProviderError, LLMProviderUnavailable
from engines.recommendation.schemas import (
    CandidateProduct,
    ConsumptionTiming,
    RecommendationSource,
    TrainingContext,
    UserProfile,
)
from services.llm_service import (
    DEFAULT_OVERALL_REASONING,
    GeminiProvider,
    LLMRecommender,
    OpenAIProvider,
    build_messages,
    build_provider,
    coerce_product_id,
    normalize_timing,
    parse_llm_response,
)


def make_provider(raw="", tokens=0, name="openai"):
    provider = MagicMock()
    provider.name = name
    provider.available = True
    provider.complete = AsyncMock(return_value=(raw, tokens))
    return provider


def llm_payload(*entries, overall="Fuel early, replenish late."):
    return json.dumps({"recommendations": list(entries), "llm_overall_reasoning": overall})


class TestParseLLMResponse:

    def test_valid_response(self):
        raw = llm_payload(
            {"product_id": 1, "reasoning": "Pre-load", "consumption_timing": "antes", "timing_minutes": 30},
            {"product_id": "2", "reasoning": "Fuel", "consumption_timing": "durante", "quantity": "1 gel"},
            {"product_id": 3.0, "reasoning": "Recover", "consumption_timing": "despues"},
        )

        result = parse_llm_response(raw, {1, 2, 3})

        assert result.source == RecommendationSource.LLM
        assert [i.product_id for i in result.items] == [1, 2, 3]
        assert [i.consumption_timing for i in result.items] == [
            ConsumptionTiming.BEFORE,
            ConsumptionTiming.DURING,
            ConsumptionTiming.AFTER,
        ]
        assert result.items[0].timing_minutes == 30
        assert result.items[1].quantity == "1 gel"
        assert result.overall_reasoning == "Fuel early, replenish late."

    def test_code_fences_are_stripped(self):
        raw = "```json\n" + llm_payload({"product_id": 1}) + "\n```"
        assert parse_llm_response(raw, {1}).items[0].product_id == 1

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "   ",
            "not json",
            "[1, 2, 3]",
            json.dumps({"llm_overall_reasoning": "x"}),
            json.dumps({"recommendations": "none"}),
            json.dumps({"recommendations": ["one"]}),
            json.dumps({"recommendations": []}),
        ],
    )
    def test_contract_violations(self, raw):
        with pytest.raises(LLMContractViolation):
            parse_llm_response(raw, {1})

    @pytest.mark.parametrize("bad_id", ["abc", 1.5, None, True, [1]])
    def test_uncoercible_product_id(self, bad_id):
        with pytest.raises(LLMContractViolation):
            parse_llm_response(llm_payload({"product_id": bad_id}), {1})

    def test_repairs_duplicates_and_unknown_ids(self):
        raw = llm_payload(
            {"product_id": 1, "consumption_timing": "antes"},
            {"product_id": 1, "consumption_timing": "durante"},
            {"product_id": 99, "consumption_timing": "durante"},
            {"product_id": 2, "consumption_timing": "despues"},
        )

        result = parse_llm_response(raw, {1, 2})

        assert [i.product_id for i in result.items] == [1, 2]
        assert result.items[0].consumption_timing == ConsumptionTiming.BEFORE

    def test_only_unknown_ids_is_a_violation(self):
        with pytest.raises(LLMContractViolation):
            parse_llm_response(llm_payload({"product_id": 99}), {1, 2})

    def test_caps_at_three(self):
        raw = llm_payload(*[{"product_id": i} for i in range(1, 6)])
        assert len(parse_llm_response(raw, {1, 2, 3, 4, 5}).items) == 3

    def test_unknown_timing_and_default_overall(self):
        raw = json.dumps({"recommendations": [{"product_id": 1, "consumption_timing": "whenever"}]})

        result = parse_llm_response(raw, {1})

        assert result.items[0].consumption_timing == ConsumptionTiming.UNSPECIFIED
        assert result.overall_reasoning == DEFAULT_OVERALL_REASONING


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [(7, 7), (7.0, 7), ("7", 7), (" 7 ", 7), ("7.0", 7)])
    def test_coerce_product_id(self, value, expected):
        assert coerce_product_id(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("Antes", ConsumptionTiming.BEFORE),
            ("después", ConsumptionTiming.AFTER),
            ("post", ConsumptionTiming.AFTER),
            ("diario", ConsumptionTiming.DAILY),
            (None, ConsumptionTiming.UNSPECIFIED),
        ],
    )
    def test_normalize_timing(self, value, expected):
        assert normalize_timing(value) == expected


class TestBuildMessages:

    def test_prompt_contents(self, sample_candidates):
        profile = UserProfile(user_id=1, age=30)
        context = TrainingContext(type="cycling", intensity="high", duration_minutes=120)

        system, user = build_messages(profile, context, sample_candidates, positive_ids={3})

        assert "Dietary restrictions must be respected" in system
        assert "- Age: 30" in user
        assert "- Duration: 120 minutes" in user
        assert "EXACTLY 3" in user

        products_json = user.split("Available products (JSON):\n", 1)[1].split("\n\nRecommend", 1)[0]
        products = json.loads(products_json)
        assert [p["product_id"] for p in products] == [c.product_id for c in sample_candidates]
        liked = {p["product_id"] for p in products if p["previously_liked"]}
        assert liked == {3}

    def test_long_text_is_truncated(self):
        candidate = CandidateProduct(product_id=1, name="Bar", description="x" * 400, usage_recommendation="y" * 400)

        _, user = build_messages(UserProfile(), None, [candidate])

        products_json = user.split("Available products (JSON):\n", 1)[1].split("\n\nRecommend", 1)[0]
        product = json.loads(products_json)[0]
        assert len(product["description"]) == 150
        assert len(product["usage_recommendation"]) == 100

    def test_missing_context_described_as_not_specified(self):
        _, user = build_messages(UserProfile(), None, [])
        assert "- Type: not specified" in user


class TestLLMRecommender:

    @pytest.mark.asyncio
    async def test_successful_recommendation(self, sample_candidates):
        provider = make_provider(llm_payload({"product_id": 1, "consumption_timing": "despues"}), tokens=321)
        recommender = LLMRecommender(provider=provider)

        result = await recommender.recommend(UserProfile(), None, sample_candidates)

        assert result.items[0].product_id == 1
        assert result.prompt_used.startswith("System: ")
        stats = recommender.get_usage_stats()
        assert stats["successful_requests"] == 1
        assert stats["total_tokens"] == 321
        assert stats["success_rate"] == 100

    @pytest.mark.asyncio
    async def test_contract_violation_is_counted(self, sample_candidates):
        recommender = LLMRecommender(provider=make_provider("not json"))

        with pytest.raises(LLMContractViolation):
            await recommender.recommend(UserProfile(), None, sample_candidates)

        assert recommender.api_usage_stats["contract_violations"] == 1
        assert recommender.api_usage_stats["successful_requests"] == 0

    @pytest.mark.asyncio
    async def test_provider_exception_becomes_provider_error(self, sample_candidates):
        provider = make_provider()
        provider.complete.side_effect = RuntimeError("connection reset")
        recommender = LLMRecommender(provider=provider)

        with pytest.raises(LLMProviderError):
            await recommender.recommend(UserProfile(), None, sample_candidates)

        assert recommender.api_usage_stats["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_timeout_becomes_provider_error(self, sample_candidates):
        async def slow_complete(system_prompt, user_prompt):
            await asyncio.sleep(1)
            return "{}", 0

        provider = make_provider()
        provider.complete = slow_complete
        recommender = LLMRecommender(provider=provider, timeout=0.01)

        with pytest.raises(LLMProviderError, match="timed out"):
            await recommender.recommend(UserProfile(), None, sample_candidates)

    @pytest.mark.asyncio
    async def test_disabled_provider(self, sample_candidates):
        recommender = LLMRecommender(provider=None)

        assert recommender.enabled() is False
        with pytest.raises(LLMProviderUnavailable):
            await recommender.recommend(UserProfile(), None, sample_candidates)

    def test_reset_usage_stats(self):
        recommender = LLMRecommender(provider=make_provider())
        recommender.api_usage_stats["total_requests"] = 5
        recommender.reset_usage_stats()
        assert recommender.api_usage_stats["total_requests"] == 0


class TestProviders:

    def test_build_provider_by_name(self):
        with patch("services.llm_service.settings") as mock_settings:
            mock_settings.openai_api_key = None
            mock_settings.openai_model = "gpt-4o-mini"
            mock_settings.llm_timeout_seconds = 30.0
            mock_settings.google_ai_api_key = None
            mock_settings.google_ai_model = "gemini-2.5-flash-lite"

            assert isinstance(build_provider("openai"), OpenAIProvider)
            assert isinstance(build_provider("gemini"), GeminiProvider)
            assert build_provider("none") is None
            assert build_provider("llama") is None

    def test_provider_without_key_is_unavailable(self):
        assert OpenAIProvider(api_key="").available is False
        assert GeminiProvider(api_key="").available is False

    @pytest.mark.asyncio
    async def test_openai_provider_requests_json(self):
        client = MagicMock()
        response = MagicMock()
        response.choices = [MagicMock()]
        response.choices[0].message.content = '{"recommendations": []}'
        response.usage.total_tokens = 42
        client.chat.completions.create = AsyncMock(return_value=response)

        text, tokens = await OpenAIProvider(client=client).complete("sys", "user")

        assert text == '{"recommendations": []}'
        assert tokens == 42
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_gemini_provider(self):
        client = MagicMock()
        response = MagicMock()
        response.text = '{"recommendations": []}'
        response.usage_metadata.total_token_count = 17
        client.aio.models.generate_content = AsyncMock(return_value=response)

        text, tokens = await GeminiProvider(client=client).complete("sys", "user")

        assert text == '{"recommendations": []}'
        assert tokens == 17
        config = client.aio.models.generate_content.call_args.kwargs["config"]
        assert config.system_instruction == "sys"
