"""Unit tests for suggestions that span several calculators"""

from datetime import datetime, timedelta, timezone

from fincalc.domain.cross_calculator import (
    CONSOLIDATION_BENEFIT,
    analyze_calculator_usage,
    build_cross_recommendations,
    calculate_early_repayment_savings,
    identify_financial_packages,
    suggest_alternative_solutions,
    suggest_financial_optimizations,
)
from fincalc.domain.products import BankProduct
from fincalc.domain.profiles import CalculationHistoryItem
from fincalc.domain.scoring import RecommendationResult

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def result(product_type: str, rate: float, score: float = 60.0, savings=None) -> RecommendationResult:
    return RecommendationResult(
        product=BankProduct(
            id=f"{product_type}_{rate}",
            bank_id="bank_1",
            product_type=product_type,
            name=product_type,
            interest_rate=rate,
        ),
        score=score,
        reasoning=[],
        tags=[],
        match_percentage=50,
        estimated_savings=savings,
    )


def calc(calculator_type: str, minutes: int = 0, **parameters) -> CalculationHistoryItem:
    return CalculationHistoryItem(
        calculator_type=calculator_type,
        parameters=parameters,
        timestamp=T0 + timedelta(minutes=minutes),
    )


def test_usage_tracks_counts_and_latest():
    usage = analyze_calculator_usage(
        [calc("credit", 5, amount=2), calc("credit", 1, amount=1), calc("mortgage", 3), calc("credit", 9, amount=3)]
    )

    assert usage.count_by_type == {"credit": 3, "mortgage": 1}
    assert usage.latest_by_type["credit"].parameters == {"amount": 3}
    assert usage.total_calculations == 4
    assert usage.unique_calculators == ["credit", "mortgage"]


def test_mortgage_insurance_package():
    packages = identify_financial_packages(
        {"mortgage": [result("mortgage", 9.0, 80, savings=30_000)], "insurance": [result("insurance", 0.0, 60)]}
    )

    assert len(packages) == 1
    assert packages[0].type == "package"
    assert packages[0].calculator_types == ["mortgage", "insurance"]
    assert packages[0].relevance_score == 70
    assert packages[0].estimated_benefit == 30_000


def test_credit_deposit_package():
    packages = identify_financial_packages({"credit": [result("credit", 9.0)], "deposit": [result("deposit", 7.0)]})

    assert [p.calculator_types for p in packages] == [["credit", "deposit"]]


def test_early_repayment_when_mortgage_rate_is_well_above_deposit_rate():
    recommendations = {"mortgage": [result("mortgage", 10.0)], "deposit": [result("deposit", 7.0)]}
    usage = analyze_calculator_usage([calc("mortgage", loan_amount=4_000_000), calc("deposit")])

    optimizations = suggest_financial_optimizations(recommendations, usage)

    assert len(optimizations) == 1
    assert optimizations[0].relevance_score == 85
    # Half a year at 10% on 4 000 000
    assert optimizations[0].estimated_benefit == 200_000
    assert calculate_early_repayment_savings(recommendations["mortgage"][0], usage) == 200_000


def test_no_early_repayment_for_close_rates():
    recommendations = {"mortgage": [result("mortgage", 9.0)], "deposit": [result("deposit", 7.0)]}
    usage = analyze_calculator_usage([calc("mortgage"), calc("deposit")])

    assert suggest_financial_optimizations(recommendations, usage) == []


def test_consolidation_needs_repeated_credit_calculations():
    recommendations = {"credit": [result("credit", 12.0)]}

    once = analyze_calculator_usage([calc("credit"), calc("deposit")])
    twice = analyze_calculator_usage([calc("credit"), calc("credit", 1), calc("deposit")])

    assert suggest_financial_optimizations(recommendations, once) == []
    optimizations = suggest_financial_optimizations(recommendations, twice)
    assert optimizations[0].estimated_benefit == CONSOLIDATION_BENEFIT
    assert optimizations[0].relevance_score == 80


def test_financial_cushion_for_close_rates():
    alternatives = suggest_alternative_solutions({"mortgage": [result("mortgage", 9.0)], "deposit": [result("deposit", 7.0)]})

    assert len(alternatives) == 1
    assert alternatives[0].type == "alternative"
    assert alternatives[0].products[0].product_type == "deposit"

    assert suggest_alternative_solutions({"mortgage": [result("mortgage", 12.0)], "deposit": [result("deposit", 7.0)]}) == []


def test_build_sorts_by_relevance_and_limits():
    recommendations = {
        "mortgage": [result("mortgage", 10.0, 40)],
        "deposit": [result("deposit", 7.0, 40)],
        "credit": [result("credit", 12.0, 40)],
        "insurance": [result("insurance", 0.0, 40)],
    }
    usage = analyze_calculator_usage([calc("mortgage", loan_amount=1_000_000), calc("credit"), calc("credit", 2)])

    suggestions = build_cross_recommendations(recommendations, usage)

    assert [s.relevance_score for s in suggestions] == [85, 80, 40, 40]

    assert len(build_cross_recommendations(recommendations, usage, limit=2)) == 2


def test_usage_mixes_naive_and_aware_timestamps():
    naive = CalculationHistoryItem(calculator_type="mortgage", parameters={"loan_amount": 1}, timestamp=datetime(2024, 5, 1, 10, 0))
    aware = CalculationHistoryItem(
        calculator_type="mortgage", parameters={"loan_amount": 2}, timestamp=datetime(2024, 5, 2, tzinfo=timezone.utc)
    )

    usage = analyze_calculator_usage([naive, aware])

    assert naive.timestamp.tzinfo is not None
    assert usage.latest_by_type["mortgage"].parameters == {"loan_amount": 2}


def test_early_repayment_accepts_form_style_amount():
    usage = analyze_calculator_usage([calc("mortgage", loan_amount="4000000"), calc("deposit")])

    assert calculate_early_repayment_savings(result("mortgage", 10.0), usage) == 200_000

    junk = analyze_calculator_usage([calc("mortgage", loan_amount="a lot")])
    assert calculate_early_repayment_savings(result("mortgage", 10.0), junk) == 0
