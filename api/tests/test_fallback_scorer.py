"""
Unit tests for the heuristic fallback scorer.
"""
import pytest

from engines.recommendation.fallback_scorer import (
    EMPTY_REASONING,
    FallbackScorer,
    natural_timing,
    serving_guide,
)
from engines.recommendation.schemas import (
    CaffeineTolerance,
    CandidateProduct,
    ConsumptionTiming,
    DietaryRestriction,
    Goal,
    RecommendationSource,
    UserProfile,
)


@pytest.fixture
def scorer():
    return FallbackScorer()


class TestNaturalTiming:

    @pytest.mark.parametrize(
        "name,category,expected",
        [
            ("Rego Rapid Recovery", None, ConsumptionTiming.AFTER),
            ("Whey Protein Isolate", "protein", ConsumptionTiming.AFTER),
            ("Caffeine Energy Gel", "energy", ConsumptionTiming.DURING),
            ("Hydro Tablets", None, ConsumptionTiming.DURING),
            ("Beta Fuel Energy Bar", "energy", ConsumptionTiming.BEFORE),
            ("Multivitamin Complex", None, ConsumptionTiming.DAILY),
            ("Mystery Powder", "energy", ConsumptionTiming.BEFORE),
            ("Mystery Powder", None, ConsumptionTiming.DURING),
        ],
    )
    def test_keywords(self, name, category, expected):
        product = CandidateProduct(product_id=1, name=name, category=category)
        assert natural_timing(product) == expected


class TestScore:

    def test_muscle_gain_weights_protein(self, scorer):
        profile = UserProfile(primary_goal=Goal.MUSCLE_GAIN)
        shake = CandidateProduct(product_id=1, name="Shake", category="recovery", protein_g=20)
        bar = CandidateProduct(product_id=2, name="Bar", category="snack", protein_g=20)

        assert scorer.score(shake, profile) == 50
        assert scorer.score(bar, profile) == 40

    def test_endurance_weights_carbs(self, scorer):
        profile = UserProfile(primary_goal=Goal.ENDURANCE)
        gel = CandidateProduct(product_id=1, name="Gel", category="energy", carbs_g=20)
        assert scorer.score(gel, profile) == 40

    def test_weight_loss_prefers_low_calories(self, scorer):
        profile = UserProfile(primary_goal=Goal.WEIGHT_LOSS)
        light = CandidateProduct(product_id=1, name="Light", energy_kcal=50)
        heavy = CandidateProduct(product_id=2, name="Heavy", energy_kcal=400)
        assert scorer.score(light, profile) > scorer.score(heavy, profile)

    def test_constraint_penalties(self, scorer):
        gel = CandidateProduct(product_id=1, name="Gel", caffeine_mg=80)

        assert scorer.score(gel, UserProfile(caffeine_tolerance=CaffeineTolerance.NONE)) == -1000
        assert scorer.score(gel, UserProfile(caffeine_tolerance=CaffeineTolerance.LOW)) == -500
        assert scorer.score(gel, UserProfile(caffeine_tolerance=CaffeineTolerance.HIGH)) == 0
        assert scorer.score(gel, UserProfile(dietary_restriction=DietaryRestriction.VEGAN)) == -1000


class TestRecommend:

    def test_distributes_across_slots(self, scorer, sample_candidates):
        result = scorer.recommend(sample_candidates, UserProfile(user_id=1, primary_goal=Goal.MUSCLE_GAIN))

        assert result.source == RecommendationSource.FALLBACK
        assert result.prompt_used == "fallback"
        by_timing = {item.consumption_timing: item.product_id for item in result.items}
        assert by_timing == {
            ConsumptionTiming.BEFORE: 4,
            ConsumptionTiming.DURING: 2,
            ConsumptionTiming.AFTER: 5,
        }

    def test_timings_are_distinct_and_bounded(self, scorer, sample_candidates):
        for goal in Goal:
            result = scorer.recommend(sample_candidates, UserProfile(primary_goal=goal))
            timings = [item.consumption_timing for item in result.items]
            assert 1 <= len(result.items) <= 3
            assert len(set(timings)) == len(timings)
            assert len({item.product_id for item in result.items}) == len(result.items)

    def test_penalised_products_lose_their_slot(self, scorer, sample_candidates):
        profile = UserProfile(primary_goal=Goal.MUSCLE_GAIN, caffeine_tolerance=CaffeineTolerance.NONE)
        result = scorer.recommend(sample_candidates, profile)

        by_timing = {item.consumption_timing: item.product_id for item in result.items}
        assert by_timing[ConsumptionTiming.DURING] == 3

    def test_leftovers_fill_open_slots(self, scorer):
        candidates = [
            CandidateProduct(product_id=1, name="Whey Protein", protein_g=25),
            CandidateProduct(product_id=2, name="Recovery Shake", protein_g=10),
        ]
        result = scorer.recommend(candidates, UserProfile(primary_goal=Goal.MUSCLE_GAIN))

        assert [(i.consumption_timing, i.product_id) for i in result.items] == [
            (ConsumptionTiming.BEFORE, 2),
            (ConsumptionTiming.AFTER, 1),
        ]

    def test_single_candidate(self, scorer):
        result = scorer.recommend([CandidateProduct(product_id=9, name="Gel")], UserProfile())
        assert len(result.items) == 1
        assert result.items[0].product_id == 9

    def test_no_candidates(self, scorer):
        result = scorer.recommend([], UserProfile())
        assert result.items == []
        assert result.overall_reasoning == EMPTY_REASONING

    def test_reasoning_mentions_goal(self, scorer):
        result = scorer.recommend(
            [CandidateProduct(product_id=1, name="Whey Protein", protein_g=25)],
            UserProfile(primary_goal=Goal.MUSCLE_GAIN),
        )
        assert "muscle gain" in result.items[0].reasoning
        assert "25g" in result.items[0].reasoning


class TestServingGuide:

    def test_gel_during(self):
        guide = serving_guide(CandidateProduct(product_id=1, name="Energy Gel"), ConsumptionTiming.DURING)
        assert guide.quantity == "1 gel every 30-45 minutes"
        assert guide.timing_minutes is None

    def test_recovery_after(self):
        guide = serving_guide(CandidateProduct(product_id=1, name="Rego Recovery"), ConsumptionTiming.AFTER)
        assert guide.quantity == "1 serving mixed with 250ml water"
        assert guide.timing_minutes == 30

    def test_bar_before(self):
        guide = serving_guide(CandidateProduct(product_id=1, name="Oat Bar"), ConsumptionTiming.BEFORE)
        assert guide.quantity == "1 bar or serving"
        assert guide.timing_minutes == 30

    def test_default(self):
        guide = serving_guide(CandidateProduct(product_id=1, name="Tablets"), ConsumptionTiming.DAILY)
        assert guide.quantity == "1 serving"
        assert guide.instructions == "Follow package directions"
