"""
Profile Normalizer

Maps raw profile values (English identifiers, loose spellings and the legacy
Spanish store vocabulary) onto the canonical enums. Never raises: anything
unrecognised falls back to the attribute's default.
"""
import logging
import re
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .schemas import (
    ActivityLevel,
    CaffeineTolerance,
    DietaryRestriction,
    Gender,
    Goal,
    SweatLevel,
    TrainingContext,
    TrainingFrequency,
    UserProfile,
)

logger = logging.getLogger(__name__)


def _key(value: Any) -> str:
    """Case, whitespace, underscore and hyphen insensitive lookup key"""
    text = str(value).strip().lower()
    text = re.sub(r"[_\-]+", " ", text)
    return re.sub(r"\s+", " ", text)


GENDER_SYNONYMS: Dict[str, Gender] = {
    "m": Gender.MALE,
    "male": Gender.MALE,
    "man": Gender.MALE,
    "hombre": Gender.MALE,
    "f": Gender.FEMALE,
    "female": Gender.FEMALE,
    "woman": Gender.FEMALE,
    "mujer": Gender.FEMALE,
    "other": Gender.OTHER,
    "otro": Gender.OTHER,
    "undisclosed": Gender.UNDISCLOSED,
    "prefer not to say": Gender.UNDISCLOSED,
    "prefiero no decir": Gender.UNDISCLOSED,
}

ACTIVITY_SYNONYMS: Dict[str, ActivityLevel] = {
    "sedentary": ActivityLevel.SEDENTARY,
    "sedentario": ActivityLevel.SEDENTARY,
    "moderate": ActivityLevel.MODERATE,
    "moderado": ActivityLevel.MODERATE,
    "active": ActivityLevel.ACTIVE,
    "activo": ActivityLevel.ACTIVE,
    "very active": ActivityLevel.VERY_ACTIVE,
    "muy activo": ActivityLevel.VERY_ACTIVE,
}

FREQUENCY_SYNONYMS: Dict[str, TrainingFrequency] = {
    "1 2": TrainingFrequency.ONE_TO_TWO,
    "3 4": TrainingFrequency.THREE_TO_FOUR,
    "5+": TrainingFrequency.FIVE_PLUS,
    "5 plus": TrainingFrequency.FIVE_PLUS,
    "occasional": TrainingFrequency.OCCASIONAL,
    "ocasional": TrainingFrequency.OCCASIONAL,
    "ocacional": TrainingFrequency.OCCASIONAL,
}

GOAL_SYNONYMS: Dict[str, Goal] = {
    "performance": Goal.PERFORMANCE,
    "mejor rendimiento": Goal.PERFORMANCE,
    "rendimiento": Goal.PERFORMANCE,
    "weight loss": Goal.WEIGHT_LOSS,
    "perder peso": Goal.WEIGHT_LOSS,
    "muscle gain": Goal.MUSCLE_GAIN,
    "ganar musculo": Goal.MUSCLE_GAIN,
    "ganar músculo": Goal.MUSCLE_GAIN,
    "strength": Goal.MUSCLE_GAIN,
    "endurance": Goal.ENDURANCE,
    "resistencia": Goal.ENDURANCE,
    "recovery": Goal.RECOVERY,
    "recuperacion": Goal.RECOVERY,
    "recuperación": Goal.RECOVERY,
    "general health": Goal.GENERAL_HEALTH,
    "health": Goal.GENERAL_HEALTH,
    "por salud": Goal.GENERAL_HEALTH,
    "salud": Goal.GENERAL_HEALTH,
}

SWEAT_SYNONYMS: Dict[str, SweatLevel] = {
    "low": SweatLevel.LOW,
    "bajo": SweatLevel.LOW,
    "medium": SweatLevel.MEDIUM,
    "medio": SweatLevel.MEDIUM,
    "high": SweatLevel.HIGH,
    "alto": SweatLevel.HIGH,
}

CAFFEINE_SYNONYMS: Dict[str, CaffeineTolerance] = {
    "none": CaffeineTolerance.NONE,
    "no": CaffeineTolerance.NONE,
    "low": CaffeineTolerance.LOW,
    "bajo": CaffeineTolerance.LOW,
    "medium": CaffeineTolerance.MEDIUM,
    "medio": CaffeineTolerance.MEDIUM,
    "high": CaffeineTolerance.HIGH,
    "alto": CaffeineTolerance.HIGH,
}

DIET_SYNONYMS: Dict[str, DietaryRestriction] = {
    "none": DietaryRestriction.NONE,
    "no": DietaryRestriction.NONE,
    "vegetarian": DietaryRestriction.VEGETARIAN,
    "vegetariano": DietaryRestriction.VEGETARIAN,
    "vegan": DietaryRestriction.VEGAN,
    "vegano": DietaryRestriction.VEGAN,
    "gluten free": DietaryRestriction.GLUTEN_FREE,
    "libre de gluten": DietaryRestriction.GLUTEN_FREE,
    "lactose free": DietaryRestriction.LACTOSE_FREE,
    "libre de lactosa": DietaryRestriction.LACTOSE_FREE,
    "nut free": DietaryRestriction.NUT_FREE,
    "libre de frutos secos": DietaryRestriction.NUT_FREE,
}


def _lookup(value: Any, table: Mapping[str, Any], default):
    if value is None:
        return default
    if isinstance(value, Enum):
        value = value.value
    return table.get(_key(value), default)


def normalize_gender(value: Any) -> Gender:
    return _lookup(value, GENDER_SYNONYMS, Gender.OTHER)


def normalize_activity_level(value: Any) -> ActivityLevel:
    return _lookup(value, ACTIVITY_SYNONYMS, ActivityLevel.MODERATE)


def normalize_training_frequency(value: Any) -> TrainingFrequency:
    return _lookup(value, FREQUENCY_SYNONYMS, TrainingFrequency.THREE_TO_FOUR)


def normalize_goal(value: Any) -> Goal:
    return _lookup(value, GOAL_SYNONYMS, Goal.GENERAL_HEALTH)


def normalize_sweat_level(value: Any) -> SweatLevel:
    return _lookup(value, SWEAT_SYNONYMS, SweatLevel.MEDIUM)


def normalize_caffeine_tolerance(value: Any) -> CaffeineTolerance:
    return _lookup(value, CAFFEINE_SYNONYMS, CaffeineTolerance.MEDIUM)


def normalize_dietary_restriction(value: Any) -> DietaryRestriction:
    """Single restriction; lists and comma-separated strings keep the first entry"""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    elif isinstance(value, str) and "," in value:
        value = value.split(",")[0]
    return _lookup(value, DIET_SYNONYMS, DietaryRestriction.NONE)


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_profile(raw: Mapping[str, Any]) -> UserProfile:
    """Build a canonical UserProfile from a stored or submitted record"""
    raw = raw or {}
    diet = raw.get("dietary_restrictions", raw.get("dietary_restriction"))

    profile = UserProfile(
        user_id=_to_int(raw.get("user_id")),
        age=_to_int(raw.get("age")),
        weight=_to_float(raw.get("weight")),
        height=_to_float(raw.get("height")),
        gender=normalize_gender(raw.get("gender")),
        activity_level=normalize_activity_level(raw.get("activity_level")),
        training_frequency=normalize_training_frequency(raw.get("training_frequency")),
        primary_goal=normalize_goal(raw.get("primary_goal")),
        sweat_level=normalize_sweat_level(raw.get("sweat_level")),
        caffeine_tolerance=normalize_caffeine_tolerance(raw.get("caffeine_tolerance")),
        dietary_restriction=normalize_dietary_restriction(diet),
    )
    logger.debug(f"Normalized profile for user {profile.user_id}: goal={profile.primary_goal.value}, diet={profile.dietary_restriction.value}")
    return profile


def normalize_training_context(raw: Optional[Mapping[str, Any]]) -> Optional[TrainingContext]:
    """Build a TrainingContext, or None when no session data was given"""
    if not raw:
        return None

    duration = raw.get("duration_minutes", raw.get("durationMin", raw.get("duration_min")))
    return TrainingContext(
        type=raw.get("type") or raw.get("session_type"),
        intensity=raw.get("intensity"),
        duration_minutes=_to_int(duration),
        weather=raw.get("weather"),
        notes=raw.get("notes"),
    )
