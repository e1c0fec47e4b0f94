"""
Pydantic schemas for the Recommendation Engine
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

# ==================== Canonical profile vocabulary ====================


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNDISCLOSED = "undisclosed"


class ActivityLevel(str, Enum):
    SEDENTARY = "sedentary"
    MODERATE = "moderate"
    ACTIVE = "active"
    VERY_ACTIVE = "very_active"


class TrainingFrequency(str, Enum):
    ONE_TO_TWO = "1-2"
    THREE_TO_FOUR = "3-4"
    FIVE_PLUS = "5+"
    OCCASIONAL = "occasional"


class Goal(str, Enum):
    PERFORMANCE = "performance"
    WEIGHT_LOSS = "weight_loss"
    MUSCLE_GAIN = "muscle_gain"
    ENDURANCE = "endurance"
    RECOVERY = "recovery"
    GENERAL_HEALTH = "general_health"


class SweatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class CaffeineTolerance(str, Enum):
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DietaryRestriction(str, Enum):
    NONE = "none"
    VEGETARIAN = "vegetarian"
    VEGAN = "vegan"
    GLUTEN_FREE = "gluten_free"
    LACTOSE_FREE = "lactose_free"
    NUT_FREE = "nut_free"


class ConsumptionTiming(str, Enum):
    BEFORE = "before"
    DURING = "during"
    AFTER = "after"
    DAILY = "daily"
    UNSPECIFIED = "unspecified"


class RecommendationSource(str, Enum):
    LLM = "llm"
    FALLBACK = "fallback"


class RetrievalMode(str, Enum):
    VECTOR = "vector"
    SQL = "sql"
    NONE = "none"


# ==================== Pipeline records ====================


class UserProfile(BaseModel):
    """Normalized physiological profile"""

    user_id: Optional[int] = None
    age: Optional[int] = None
    weight: Optional[float] = Field(default=None, description="Body weight in kg")
    height: Optional[float] = Field(default=None, description="Height in cm")
    gender: Gender = Gender.OTHER
    activity_level: ActivityLevel = ActivityLevel.MODERATE
    training_frequency: TrainingFrequency = TrainingFrequency.THREE_TO_FOUR
    primary_goal: Goal = Goal.GENERAL_HEALTH
    sweat_level: SweatLevel = SweatLevel.MEDIUM
    caffeine_tolerance: CaffeineTolerance = CaffeineTolerance.MEDIUM
    dietary_restriction: DietaryRestriction = DietaryRestriction.NONE


class TrainingContext(BaseModel):
    """Optional description of the training session being fuelled"""

    type: Optional[str] = None
    intensity: Optional[str] = None
    duration_minutes: Optional[int] = None
    weather: Optional[str] = None
    notes: Optional[str] = None


class CandidateProduct(BaseModel):
    """Read-only projection of an active catalog product"""

    product_id: int
    name: str
    category: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    usage_recommendation: Optional[str] = None
    usage_context: Optional[str] = None
    attributes: List[str] = Field(default_factory=list, description="Lowercase tags")
    serving_size: Optional[str] = None
    energy_kcal: Optional[float] = None
    protein_g: Optional[float] = None
    carbs_g: Optional[float] = None
    sugars_g: Optional[float] = None
    sodium_mg: Optional[float] = None
    caffeine_mg: Optional[float] = None

    def has_tag(self, tag: str) -> bool:
        return tag in self.attributes


class ScoredCandidate(BaseModel):
    """Candidate with a relevance score (cosine or heuristic)"""

    product: CandidateProduct
    score: float


class RecommendationItem(BaseModel):
    """One recommended product with consumption guidance"""

    product_id: int
    reasoning: str = ""
    consumption_timing: ConsumptionTiming = ConsumptionTiming.UNSPECIFIED
    timing_minutes: Optional[int] = None
    quantity: Optional[str] = None
    instructions: Optional[str] = None


class RecommendationResult(BaseModel):
    """Validated output of either the LLM or the fallback scorer"""

    items: List[RecommendationItem] = Field(default_factory=list)
    overall_reasoning: str = ""
    source: RecommendationSource = RecommendationSource.LLM
    prompt_used: Optional[str] = Field(default=None, description="Audit only, never persisted")


class RetrievalResult(BaseModel):
    """Bounded candidate list and the mode that produced it"""

    candidates: List[CandidateProduct] = Field(default_factory=list)
    mode: RetrievalMode = RetrievalMode.NONE


class RecommendedProduct(CandidateProduct):
    """Candidate details joined with the recommendation item"""

    reasoning: str = ""
    consumption_timing: ConsumptionTiming = ConsumptionTiming.UNSPECIFIED
    timing_minutes: Optional[int] = None
    quantity: Optional[str] = None
    instructions: Optional[str] = None


class RecommendationOutcome(BaseModel):
    """Pipeline response"""

    message: str
    recommendations: List[RecommendedProduct] = Field(default_factory=list)
    source: Optional[RecommendationSource] = None
    overall_reasoning: Optional[str] = None
    candidate_count: int = 0
    mode: RetrievalMode = RetrievalMode.NONE
    saved_count: int = 0
