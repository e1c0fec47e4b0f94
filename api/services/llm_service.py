"""
LLM recommendation service.

Sends the athlete profile, training context and candidate products to the
configured generative model (OpenAI or Gemini) under a strict JSON contract,
then validates and repairs the answer. Any failure is raised as an LLMError
subclass; compensating with the fallback scorer is the engine's job.
"""
import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

import openai
from google import genai
from google.genai import types

from core.config import settings
from core.exceptions import LLMContractViolation, LLMProviderError, LLMProviderUnavailable
from engines.recommendation.schemas import (
    CandidateProduct,
    ConsumptionTiming,
    RecommendationItem,
    RecommendationResult,
    RecommendationSource,
    TrainingContext,
    UserProfile,
)

logger = logging.getLogger(__name__)

DEFAULT_OVERALL_REASONING = "Recommendations generated."
MAX_RECOMMENDATIONS = 3

TIMING_SYNONYMS: Dict[str, ConsumptionTiming] = {
    "antes": ConsumptionTiming.BEFORE,
    "before": ConsumptionTiming.BEFORE,
    "pre": ConsumptionTiming.BEFORE,
    "durante": ConsumptionTiming.DURING,
    "during": ConsumptionTiming.DURING,
    "despues": ConsumptionTiming.AFTER,
    "después": ConsumptionTiming.AFTER,
    "after": ConsumptionTiming.AFTER,
    "post": ConsumptionTiming.AFTER,
    "diario": ConsumptionTiming.DAILY,
    "daily": ConsumptionTiming.DAILY,
}

SYSTEM_PROMPT = """You are SportNutriBot, an expert sports-nutrition assistant. Analyse the athlete's profile and the list of available sports supplements and recommend the most suitable ones.

Rules:
1. Always recommend at least one product, even if it is not a perfect match.
2. If nothing matches the primary goal exactly, recommend what best fits the athlete's general needs.
3. Take the training type, duration and intensity into account.
4. Dietary restrictions must be respected by every recommended product.
5. Consider caffeine tolerance for any product containing caffeine.
6. For long sessions (over 60 minutes) prioritise energy and carbohydrate products.
7. For strength or muscle-focused goals prioritise protein-rich products.
8. The list already excludes products the athlete marked as not working for them. Prefer products marked "previously_liked": true when they fit."""


def _truncate(text: Optional[str], max_length: int) -> str:
    if not text:
        return ""
    return text if len(text) <= max_length else text[: max_length - 3] + "..."


def _describe(value: Any, default: str = "not specified") -> str:
    if value is None or value == "":
        return default
    return str(value.value if hasattr(value, "value") else value)


def build_messages(
    profile: UserProfile,
    context: Optional[TrainingContext],
    candidates: Sequence[CandidateProduct],
    positive_ids: Optional[Set[int]] = None,
) -> Tuple[str, str]:
    """Return the (system, user) prompt pair for a recommendation request"""
    positive_ids = positive_ids or set()
    context = context or TrainingContext()

    profile_summary = "\n".join(
        [
            f"- Age: {_describe(profile.age)}",
            f"- Weight: {_describe(profile.weight)} kg",
            f"- Height: {_describe(profile.height)} cm",
            f"- Gender: {_describe(profile.gender)}",
            f"- Activity level: {_describe(profile.activity_level)}",
            f"- Training frequency: {_describe(profile.training_frequency)} times/week",
            f"- Primary goal: {_describe(profile.primary_goal)}",
            f"- Sweat level: {_describe(profile.sweat_level)}",
            f"- Caffeine tolerance: {_describe(profile.caffeine_tolerance)}",
            f"- Dietary restriction: {_describe(profile.dietary_restriction)}",
        ]
    )

    training_summary = "\n".join(
        [
            f"- Type: {_describe(context.type)}",
            f"- Intensity: {_describe(context.intensity)}",
            f"- Duration: {_describe(context.duration_minutes)} minutes",
            f"- Weather: {_describe(context.weather)}",
            f"- Notes: {_describe(context.notes, 'none')}",
        ]
    )

    products = [
        {
            "product_id": p.product_id,
            "name": p.name,
            "category": p.category or "",
            "type": p.type or "",
            "description": _truncate(p.description, 150),
            "usage_recommendation": _truncate(p.usage_recommendation, 100),
            "attributes": p.attributes,
            "protein_g": p.protein_g or 0,
            "carbs_g": p.carbs_g or 0,
            "energy_kcal": p.energy_kcal or 0,
            "caffeine_mg": p.caffeine_mg or 0,
            "previously_liked": p.product_id in positive_ids,
        }
        for p in candidates
    ]

    user_prompt = f"""Athlete profile:
{profile_summary}

Current training session:
{training_summary}

Available products (JSON):
{json.dumps(products, ensure_ascii=False, indent=2)}

Recommend EXACTLY 3 products, one per timing:
1. One product to take BEFORE training ("antes", 15-30 minutes before)
2. One product to take DURING training ("durante")
3. One product to take AFTER training ("despues", within 30 minutes)

Each product must have a different consumption_timing. If no ideal product exists for a phase, pick the closest useful one; omit the phase only if nothing fits at all. Natural fits: before = energy / pre-workout, during = gels / hydration / electrolytes, after = recovery / protein.

For each product return product_id (integer from the list), reasoning, consumption_timing ("antes", "durante" or "despues"), timing_minutes, quantity and instructions.

Respond ONLY with JSON in this shape:
{{
  "recommendations": [
    {{
      "product_id": 1,
      "reasoning": "Why this product fits this phase and this athlete",
      "consumption_timing": "antes",
      "timing_minutes": 30,
      "quantity": "1 serving",
      "instructions": "Specific instructions"
    }}
  ],
  "llm_overall_reasoning": "Summary of the fuelling strategy for this session"
}}"""

    return SYSTEM_PROMPT, user_prompt


def strip_code_fences(raw: str) -> str:
    cleaned = raw.strip()
    cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned.strip()


def coerce_product_id(value: Any) -> int:
    """Integer product id from an int, integral float or numeric string"""
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not a product id: {value}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"Non-integral product id: {value}")
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            number = float(text)
            if number.is_integer():
                return int(number)
            raise ValueError(f"Non-integral product id: {value}")
    raise ValueError(f"Unsupported product id type: {type(value).__name__}")


def normalize_timing(value: Any) -> ConsumptionTiming:
    if value is None:
        return ConsumptionTiming.UNSPECIFIED
    return TIMING_SYNONYMS.get(str(value).strip().lower(), ConsumptionTiming.UNSPECIFIED)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def parse_llm_response(raw: str, candidate_ids: Optional[Set[int]] = None) -> RecommendationResult:
    """
    Validate and repair a raw model answer

    Args:
        raw: Model output, possibly wrapped in code fences
        candidate_ids: Ids that were offered; anything else is dropped

    Returns:
        RecommendationResult with at most 3 unique items

    Raises:
        LLMContractViolation: unparseable JSON, missing recommendations array,
            an uncoercible product_id, or nothing usable left after repair
    """
    if not raw or not raw.strip():
        raise LLMContractViolation("Empty LLM response", raw)

    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError as e:
        logger.warning(f"LLM response is not valid JSON: {e}. Raw (first 300 chars): {raw[:300]}")
        raise LLMContractViolation("LLM response is not valid JSON", raw) from e

    if not isinstance(data, dict):
        raise LLMContractViolation("LLM response is not a JSON object", raw)

    recommendations = data.get("recommendations")
    if not isinstance(recommendations, list):
        raise LLMContractViolation("LLM response is missing the 'recommendations' array", raw)

    items: List[RecommendationItem] = []
    seen: Set[int] = set()
    for entry in recommendations:
        if not isinstance(entry, dict):
            raise LLMContractViolation("Recommendation entry is not an object", raw)
        try:
            product_id = coerce_product_id(entry.get("product_id"))
        except (TypeError, ValueError) as e:
            raise LLMContractViolation(f"Invalid product_id in LLM response: {entry.get('product_id')!r}", raw) from e

        if product_id in seen:
            logger.debug(f"Dropping duplicate product {product_id} from LLM response")
            continue
        if candidate_ids is not None and product_id not in candidate_ids:
            logger.warning(f"LLM recommended product {product_id} which was not among the candidates")
            continue

        seen.add(product_id)
        items.append(
            RecommendationItem(
                product_id=product_id,
                reasoning=str(entry.get("reasoning") or ""),
                consumption_timing=normalize_timing(entry.get("consumption_timing")),
                timing_minutes=_optional_int(entry.get("timing_minutes")),
                quantity=_optional_text(entry.get("quantity")),
                instructions=_optional_text(entry.get("instructions")),
            )
        )

    if not items:
        raise LLMContractViolation("LLM response contains no usable recommendations", raw)

    overall = data.get("llm_overall_reasoning") or DEFAULT_OVERALL_REASONING
    return RecommendationResult(
        items=items[:MAX_RECOMMENDATIONS],
        overall_reasoning=str(overall),
        source=RecommendationSource.LLM,
    )


class OpenAIProvider:
    """Chat completions with JSON response format"""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, timeout: Optional[float] = None, client: Any = None):
        self.model = model or settings.openai_model
        self.timeout = timeout or settings.llm_timeout_seconds
        api_key = settings.openai_api_key if api_key is None else api_key
        self.client = client
        if self.client is None and api_key:
            self.client = openai.AsyncOpenAI(api_key=api_key, timeout=self.timeout, max_retries=1)

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(self, system_prompt: str, user_prompt: str) -> Tuple[str, int]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            response_format={"type": "json_object"},
            temperature=settings.openai_temperature,
            max_tokens=settings.openai_max_tokens,
        )
        tokens = response.usage.total_tokens if getattr(response, "usage", None) else 0
        return response.choices[0].message.content or "", tokens


class GeminiProvider:
    """Google Gemini text generation"""

    name = "gemini"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Any = None):
        self.model = model or settings.google_ai_model
        api_key = settings.google_ai_api_key if api_key is None else api_key
        self.client = client
        if self.client is None and api_key:
            self.client = genai.Client(api_key=api_key)

    @property
    def available(self) -> bool:
        return self.client is not None

    async def complete(self, system_prompt: str, user_prompt: str) -> Tuple[str, int]:
        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=user_prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt,
                temperature=settings.google_ai_temperature,
                max_output_tokens=settings.google_ai_max_tokens,
                response_mime_type="application/json",
            ),
        )
        usage = getattr(response, "usage_metadata", None)
        tokens = (usage.total_token_count or 0) if usage else 0
        return response.text or "", tokens


def build_provider(name: Optional[str] = None):
    """Provider for the configured name, or None when LLM use is disabled"""
    name = (name or settings.llm_provider or "none").lower()
    if name == "openai":
        return OpenAIProvider()
    if name == "gemini":
        return GeminiProvider()
    if name != "none":
        logger.warning(f"Unknown LLM provider '{name}' - LLM recommendations disabled")
    return None


class LLMRecommender:
    """Generates recommendations through the configured LLM provider"""

    def __init__(self, provider: Any = None, timeout: Optional[float] = None):
        self.provider = provider
        self.timeout = timeout or settings.llm_timeout_seconds
        self.api_usage_stats = {
            "total_requests": 0,
            "successful_requests": 0,
            "failed_requests": 0,
            "contract_violations": 0,
            "total_tokens": 0,
        }
        if self.enabled():
            logger.info(f"LLMRecommender using provider '{self.provider.name}'")
        else:
            logger.warning("No LLM provider available - fallback scoring will be used")

    def enabled(self) -> bool:
        return self.provider is not None and self.provider.available

    async def recommend(
        self,
        profile: UserProfile,
        context: Optional[TrainingContext],
        candidates: Sequence[CandidateProduct],
        positive_ids: Optional[Set[int]] = None,
    ) -> RecommendationResult:
        """
        Ask the model for up to three recommendations

        Raises:
            LLMProviderUnavailable: provider disabled or missing credentials
            LLMProviderError: transport, auth or timeout failure
            LLMContractViolation: response failed validation
        """
        if not self.enabled():
            raise LLMProviderUnavailable("LLM provider is not configured")

        system_prompt, user_prompt = build_messages(profile, context, candidates, positive_ids)
        self.api_usage_stats["total_requests"] += 1

        try:
            raw, tokens = await asyncio.wait_for(self.provider.complete(system_prompt, user_prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.api_usage_stats["failed_requests"] += 1
            logger.error(f"{self.provider.name} request timed out after {self.timeout}s")
            raise LLMProviderError(f"LLM request timed out after {self.timeout}s")
        except openai.RateLimitError as e:
            self.api_usage_stats["failed_requests"] += 1
            logger.error(f"OpenAI rate limit exceeded: {e}")
            raise LLMProviderError("LLM rate limit exceeded") from e
        except openai.AuthenticationError as e:
            self.api_usage_stats["failed_requests"] += 1
            logger.error(f"OpenAI authentication failed: {e}")
            raise LLMProviderError("LLM authentication failed") from e
        except openai.APIError as e:
            self.api_usage_stats["failed_requests"] += 1
            logger.error(f"OpenAI API error: {e}")
            raise LLMProviderError("LLM provider error") from e
        except Exception as e:
            self.api_usage_stats["failed_requests"] += 1
            logger.error(f"{self.provider.name} request failed: {e}")
            raise LLMProviderError("LLM provider error") from e

        self.api_usage_stats["total_tokens"] += tokens or 0

        try:
            result = parse_llm_response(raw, {c.product_id for c in candidates})
        except LLMContractViolation:
            self.api_usage_stats["contract_violations"] += 1
            raise

        self.api_usage_stats["successful_requests"] += 1
        result.prompt_used = f"System: {system_prompt}\nUser: {user_prompt}"
        logger.info(
            f"{self.provider.name} returned {len(result.items)} recommendations "
            f"(products={[i.product_id for i in result.items]}, tokens={tokens})"
        )
        return result

    def get_usage_stats(self) -> Dict[str, Any]:
        """Get API usage statistics"""
        return {
            **self.api_usage_stats,
            "success_rate": (
                self.api_usage_stats["successful_requests"] / max(self.api_usage_stats["total_requests"], 1) * 100
            ),
            "average_tokens_per_request": (
                self.api_usage_stats["total_tokens"] / max(self.api_usage_stats["successful_requests"], 1)
            ),
        }

    def reset_usage_stats(self):
        for key in self.api_usage_stats:
            self.api_usage_stats[key] = 0
