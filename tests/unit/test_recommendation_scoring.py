"""Unit tests for bank product recommendation scoring"""

import pytest

from fincalc.domain.products import Bank, BankProduct, ProductRequirements
from fincalc.domain.profiles import CalculationHistoryItem, UserBehaviorAnalysis, UserProfile
from fincalc.domain.scoring import (
    RecommendationContext,
    calculate_estimated_savings,
    calculate_fees_score,
    calculate_financial_fit,
    calculate_location_match,
    calculate_match_percentage,
    calculate_profile_match,
    calculate_rate_score,
    calculate_recommendation_score,
    filter_by_region,
    generate_reasoning,
    generate_tags,
    rank_general,
    rank_products,
)


def product(product_id: str = "p", **overrides) -> BankProduct:
    fields = {
        "id": product_id,
        "bank_id": "bank_1",
        "product_type": "credit",
        "name": product_id,
        "interest_rate": 10.0,
    }
    fields.update(overrides)
    return BankProduct(**fields)


def context(calculation_type: str = "credit", **params) -> RecommendationContext:
    return RecommendationContext(calculation_type=calculation_type, calculation_params=params)


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(id="p1", user_id="u1")


@pytest.fixture
def behavior() -> UserBehaviorAnalysis:
    return UserBehaviorAnalysis()


def test_cheap_product_outranks_expensive_one(profile, behavior):
    cheap = product("A", interest_rate=6.0)
    expensive = product("B", interest_rate=15.0, fees={"issuance": 8_000})

    ranked = rank_products([expensive, cheap], profile, behavior, context(amount=500_000, term=24))

    assert [r.product.id for r in ranked] == ["A", "B"]
    assert ranked[0].score > ranked[1].score


def test_rate_score_by_calculation_type():
    assert calculate_rate_score(product(interest_rate=5.0), context("credit")) == 100
    assert calculate_rate_score(product(interest_rate=20.0), context("mortgage")) == 0
    assert calculate_rate_score(product(interest_rate=30.0), context("credit")) == 0
    assert calculate_rate_score(product(interest_rate=15.0), context("deposit")) == 100
    assert calculate_rate_score(product(interest_rate=3.0), context("insurance")) == 50


def test_promotional_rate_is_used():
    promoted = product(interest_rate=18.0, promotional_rate=5.0)

    assert calculate_rate_score(promoted, context("credit")) == 100


def test_financial_fit(profile):
    ranged = product(min_amount=100_000, max_amount=1_000_000, min_term=6, max_term=60)

    assert calculate_financial_fit(ranged, profile, context(amount=500_000, term=24)) == 100
    assert calculate_financial_fit(ranged, profile, context(amount=50_000)) == 50
    assert calculate_financial_fit(ranged, profile, context(amount=500_000, term=120)) == 75
    assert calculate_financial_fit(product(), profile, context()) == 50


def test_financial_fit_requirements():
    demanding = product(requirements=ProductRequirements(min_income=100_000, min_credit_score=700))
    applicant = UserProfile(id="p1", user_id="u1", monthly_income=50_000, credit_score=650)

    # Income ratio 50, credit score below requirement 30
    assert calculate_financial_fit(demanding, applicant, context()) == 40


def test_profile_match(profile, behavior):
    interested = profile.model_copy(update={"product_interests": ["credit"], "risk_tolerance": "low"})
    engaged = UserBehaviorAnalysis(engagement_score=60, calculation_frequency=2.0)

    assert calculate_profile_match(product(), profile, behavior) == 50
    # Interest 100, low tolerance with rate 10 -> 50
    assert calculate_profile_match(product(), interested, behavior) == 75
    # Plus engagement 80 and frequency 70
    assert calculate_profile_match(product(), interested, engaged) == 75


def test_location_match(profile):
    everywhere = product()
    kazan_only = product(available_regions=["Kazan"])
    travelled = profile.model_copy(
        update={"calculation_history": [CalculationHistoryItem(calculator_type="credit", parameters={"region": "Kazan"})]}
    )

    assert calculate_location_match(everywhere, profile, context()) == 50
    assert calculate_location_match(everywhere, profile, RecommendationContext("credit", user_location="Moscow")) == 100
    assert calculate_location_match(kazan_only, travelled, RecommendationContext("credit", user_location="Moscow")) == 70
    assert calculate_location_match(kazan_only, profile, RecommendationContext("credit", user_location="Moscow")) == 20


@pytest.mark.parametrize(
    "fees,expected",
    [({}, 100), ({"issuance": 500}, 90), ({"issuance": 3_000}, 70), ({"a": 5_000, "b": 3_000}, 50), ({"a": 20_000}, 30)],
)
def test_fees_score(fees, expected):
    assert calculate_fees_score(product(fees=fees)) == expected


def test_fees_ignore_missing_values():
    assert product(fees={"issuance": None, "service": 100}).total_fees == 100


def test_score_is_bounded(behavior):
    best = product(
        interest_rate=1.0,
        is_featured=True,
        priority=100,
        min_amount=1,
        max_amount=10_000_000,
        min_term=1,
        max_term=360,
        bank=Bank(id="bank_1", name="Best", overall_rating=5.0),
    )
    worst = product(
        interest_rate=40.0,
        fees={"issuance": 1_000_000},
        available_regions=["Nowhere"],
        min_amount=10_000_000,
        max_amount=20_000_000,
        min_term=300,
        max_term=360,
        requirements=ProductRequirements(min_income=10_000_000, min_credit_score=900),
    )
    fan = UserProfile(id="p1", user_id="u1", preferred_banks=["bank_1"], product_interests=["credit"], monthly_income=1)
    skeptic = UserProfile(id="p2", user_id="u2", blacklisted_banks=["bank_1"], region="Moscow", credit_score=300)

    for candidate in (best, worst):
        for user in (fan, skeptic):
            for ctx in (context(amount=1, term=1), context("deposit"), context("insurance", amount=10**9)):
                score = calculate_recommendation_score(candidate, user, behavior, ctx)
                assert 0 <= score <= 100


def test_equal_scores_keep_input_order(profile, behavior):
    products = [product(f"p{i}") for i in range(4)]

    ranked = rank_products(products, profile, behavior, context())

    assert [r.product.id for r in ranked] == ["p0", "p1", "p2", "p3"]


def test_rank_limit(profile, behavior):
    ranked = rank_products([product(f"p{i}") for i in range(10)], profile, behavior, context(), limit=3)

    assert len(ranked) == 3


def test_reasoning_keeps_top_three(profile):
    generous = product(
        interest_rate=7.0,
        is_featured=True,
        promotional_rate=6.5,
        bank=Bank(id="bank_1", name="Alpha", overall_rating=4.6),
    )
    interested = profile.model_copy(update={"product_interests": ["credit"]})

    reasons = generate_reasoning(generous, interested, context())

    assert reasons == [
        "Низкая процентная ставка 6.50%",
        "Соответствует вашим интересам",
        "Высокий рейтинг банка (4.6/5)",
    ]


def test_tags():
    partner = product(interest_rate=6.0, is_featured=True, bank=Bank(id="bank_1", name="Alpha", is_partner=True))

    assert [t.type for t in generate_tags(partner, 85)] == [
        "best_rate",
        "lowest_fees",
        "most_popular",
        "recommended",
        "sponsored",
    ]
    assert [t.type for t in generate_tags(product(fees={"a": 2_000}), 40)] == []


def test_match_percentage(profile):
    ranged = product(min_amount=100_000, max_amount=1_000_000, min_term=6, max_term=60)

    assert calculate_match_percentage(ranged, profile, context()) == 50
    assert calculate_match_percentage(ranged, profile, context(amount=500_000, term=120)) == 50
    assert calculate_match_percentage(ranged, profile, context(amount=500_000, term=24)) == 100


def test_estimated_savings():
    assert calculate_estimated_savings(product(interest_rate=6.0), context(amount=1_000_000)) == 60_000
    assert calculate_estimated_savings(product(interest_rate=9.0), context(amount=1_000_000, term=24)) == 60_000
    assert calculate_estimated_savings(product(interest_rate=12.0), context(amount=1_000_000)) is None
    assert calculate_estimated_savings(product(interest_rate=6.0), context()) is None


def test_filter_by_region():
    products = [product("a"), product("b", available_regions=["Kazan"])]

    assert [p.id for p in filter_by_region(products, "Moscow")] == ["a"]
    assert len(filter_by_region(products, None)) == 2


def test_general_ranking_uses_priority_then_rating():
    low = product("low", priority=1, bank=Bank(id="b1", name="B1", overall_rating=5.0))
    high_rated = product("high_rated", priority=5, bank=Bank(id="b2", name="B2", overall_rating=4.5))
    high_unrated = product("high_unrated", priority=5)

    ranked = rank_general([low, high_unrated, high_rated], limit=2)

    assert [r.product.id for r in ranked] == ["high_rated", "high_unrated"]
    assert all(r.score == 50 for r in ranked)
    assert ranked[0].reasoning == ["Популярный выбор", "Высокий рейтинг"]


def test_form_style_params_are_converted(profile, behavior):
    ranged = product(min_amount=100_000, max_amount=1_000_000, min_term=6, max_term=60)
    typed = context(amount=500_000, term=24)
    form = context(amount="500000", term="24")

    assert form.amount == 500_000
    assert form.term == 24
    assert calculate_financial_fit(ranged, profile, form) == 100
    assert calculate_recommendation_score(ranged, profile, behavior, form) == calculate_recommendation_score(
        ranged, profile, behavior, typed
    )


def test_unparsable_params_are_ignored(profile):
    ranged = product(min_amount=100_000, max_amount=1_000_000)

    assert context(amount="lots").amount is None
    assert calculate_financial_fit(ranged, profile, context(amount="lots")) == 50
