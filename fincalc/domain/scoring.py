"""Recommendation scoring engine - ranks bank products for a user and a calculation"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from fincalc.domain.products import BankProduct
from fincalc.domain.profiles import RiskTolerance, UserBehaviorAnalysis, UserProfile, first_numeric

CalculationType = Literal["mortgage", "deposit", "credit", "insurance"]
TagType = Literal["best_rate", "lowest_fees", "fastest_approval", "most_popular", "sponsored", "recommended"]

SCORE_WEIGHTS: Dict[str, float] = {
    "rate_competitiveness": 0.25,
    "financial_fit": 0.20,
    "profile_match": 0.15,
    "location_match": 0.10,
    "popularity": 0.10,
    "fees_competitiveness": 0.10,
    "bank_rating": 0.05,
    "user_preference": 0.05,
}

# Assumed market rate ranges (annual %) for normalizing rate competitiveness
LOAN_RATE_RANGE = (5.0, 20.0)
DEPOSIT_RATE_RANGE = (0.0, 15.0)
MARKET_AVERAGE_RATE = 12.0


@dataclass
class RecommendationContext:
    """Calculator that triggered the request and the parameters the user entered"""

    calculation_type: CalculationType
    calculation_params: Dict[str, Any] = field(default_factory=dict)
    user_location: Optional[str] = None
    device_type: Optional[str] = None
    session_history: List[str] = field(default_factory=list)

    @property
    def amount(self) -> Optional[float]:
        return first_numeric(self.calculation_params, ("amount", "loan_amount"))

    @property
    def term(self) -> Optional[float]:
        return first_numeric(self.calculation_params, ("term", "loan_term"))


@dataclass
class RecommendationTag:
    type: TagType
    label: str
    color: str


@dataclass
class RecommendationResult:
    product: BankProduct
    score: float
    reasoning: List[str]
    tags: List[RecommendationTag]
    match_percentage: int
    estimated_savings: Optional[float] = None
    is_sponsored: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def calculate_rate_score(product: BankProduct, context: RecommendationContext) -> float:
    """Lower rates win for loans, higher rates win for deposits; other types are neutral"""
    rate = product.effective_rate

    if context.calculation_type in ("mortgage", "credit"):
        min_rate, max_rate = LOAN_RATE_RANGE
        return _clamp((max_rate - rate) / (max_rate - min_rate) * 100)

    if context.calculation_type == "deposit":
        min_rate, max_rate = DEPOSIT_RATE_RANGE
        return _clamp((rate - min_rate) / (max_rate - min_rate) * 100)

    return 50.0


def calculate_financial_fit(product: BankProduct, profile: UserProfile, context: RecommendationContext) -> float:
    """
    Average of per-dimension fit ratios.

    Amount outside [min, max] earns credit proportional to the shortfall/excess,
    term outside its range earns 50, income below requirement earns the income ratio,
    credit score below requirement earns 30. No applicable dimension -> 50.
    """
    fit_score = 0.0
    factors = 0

    amount = context.amount
    if amount and product.min_amount and product.max_amount:
        if product.min_amount <= amount <= product.max_amount:
            fit_score += 100
        elif amount < product.min_amount:
            fit_score += max(0.0, 100 - (product.min_amount - amount) / product.min_amount * 100)
        else:
            fit_score += max(0.0, 100 - (amount - product.max_amount) / product.max_amount * 100)
        factors += 1

    term = context.term
    if term and product.min_term and product.max_term:
        fit_score += 100 if product.min_term <= term <= product.max_term else 50
        factors += 1

    min_income = product.requirements.min_income
    if profile.monthly_income and min_income:
        if profile.monthly_income >= min_income:
            fit_score += 100
        else:
            fit_score += max(0.0, profile.monthly_income / min_income * 100)
        factors += 1

    min_credit_score = product.requirements.min_credit_score
    if profile.credit_score and min_credit_score:
        fit_score += 100 if profile.credit_score >= min_credit_score else 30
        factors += 1

    return fit_score / factors if factors else 50.0


def match_risk_tolerance(product: BankProduct, risk_tolerance: RiskTolerance) -> float:
    rate = product.effective_rate
    if risk_tolerance == "low":
        return 100.0 if rate < 10 else 50.0
    if risk_tolerance == "medium":
        return 100.0 if 8 <= rate <= 15 else 70.0
    if risk_tolerance == "high":
        return 100.0 if rate > 12 else 60.0
    return 50.0


def calculate_profile_match(product: BankProduct, profile: UserProfile, behavior: UserBehaviorAnalysis) -> float:
    """
    Average over the signals that apply: declared interest in the product type (100 or 0),
    risk-tolerance banding, engagement above 50 (80) and more than one calculation a day (70).
    """
    match_score = 0.0
    factors = 0

    if profile.product_interests:
        match_score += 100 if product.product_type in profile.product_interests else 0
        factors += 1

    if profile.risk_tolerance:
        match_score += match_risk_tolerance(product, profile.risk_tolerance)
        factors += 1

    if behavior.engagement_score > 50:
        match_score += 80
        factors += 1

    if behavior.calculation_frequency > 1:
        match_score += 70
        factors += 1

    return match_score / factors if factors else 50.0


def _history_regions(profile: UserProfile) -> List[str]:
    return [
        h.parameters["region"]
        for h in profile.calculation_history
        if isinstance(h.parameters.get("region"), str) and h.parameters["region"]
    ]


def calculate_location_match(product: BankProduct, profile: UserProfile, context: RecommendationContext) -> float:
    user_location = context.user_location or profile.region
    if not user_location:
        return 50.0

    if product.is_available_in(user_location):
        return 100.0

    # Regions the user has calculated for before count as a weaker match
    if any(region in product.available_regions for region in _history_regions(profile)):
        return 70.0
    return 20.0


def calculate_popularity_score(product: BankProduct) -> float:
    score = 50.0
    if product.is_featured:
        score += 30
    if product.priority > 50:
        score += 20
    return min(100.0, score)


def calculate_fees_score(product: BankProduct) -> float:
    total_fees = product.total_fees
    if total_fees == 0:
        return 100.0
    if total_fees < 1_000:
        return 90.0
    if total_fees < 5_000:
        return 70.0
    if total_fees < 10_000:
        return 50.0
    return 30.0


def calculate_bank_rating_score(product: BankProduct) -> float:
    rating = product.bank.overall_rating if product.bank else None
    if not rating:
        return 50.0
    return rating / 5 * 100


def calculate_user_preference_score(product: BankProduct, profile: UserProfile) -> float:
    if product.bank_id in profile.preferred_banks:
        return 100.0
    if product.bank_id in profile.blacklisted_banks:
        return 0.0
    return 50.0


def calculate_factor_scores(
    product: BankProduct,
    profile: UserProfile,
    behavior: UserBehaviorAnalysis,
    context: RecommendationContext,
) -> Dict[str, float]:
    """Each factor independently on a 0-100 scale, keyed like SCORE_WEIGHTS"""
    return {
        "rate_competitiveness": calculate_rate_score(product, context),
        "financial_fit": calculate_financial_fit(product, profile, context),
        "profile_match": calculate_profile_match(product, profile, behavior),
        "location_match": calculate_location_match(product, profile, context),
        "popularity": calculate_popularity_score(product),
        "fees_competitiveness": calculate_fees_score(product),
        "bank_rating": calculate_bank_rating_score(product),
        "user_preference": calculate_user_preference_score(product, profile),
    }


def calculate_recommendation_score(
    product: BankProduct,
    profile: UserProfile,
    behavior: UserBehaviorAnalysis,
    context: RecommendationContext,
) -> float:
    """
    Weighted sum of eight factor scores, clamped to [0, 100].

    Weights:
    - 25%: rate competitiveness
    - 20%: financial fit (amount, term, income, credit score)
    - 15%: profile match
    - 10% each: location, popularity, fees
    - 5% each: bank rating, user bank preference
    """
    factors = calculate_factor_scores(product, profile, behavior, context)
    score = sum(factors[name] * weight for name, weight in SCORE_WEIGHTS.items())
    return _clamp(score)


def generate_reasoning(product: BankProduct, profile: UserProfile, context: RecommendationContext) -> List[str]:
    """Top three human-readable reasons, in fixed trigger order"""
    reasons: List[str] = []
    rate = product.effective_rate

    if context.calculation_type in ("mortgage", "credit") and rate < 10:
        reasons.append(f"Низкая процентная ставка {rate:.2f}%")
    elif context.calculation_type == "deposit" and rate > 8:
        reasons.append(f"Высокая процентная ставка {rate:.2f}%")

    if product.product_type in profile.product_interests:
        reasons.append("Соответствует вашим интересам")

    user_location = context.user_location or profile.region
    if user_location and user_location in product.available_regions:
        reasons.append("Доступен в вашем регионе")

    rating = product.bank.overall_rating if product.bank else None
    if rating and rating >= 4:
        reasons.append(f"Высокий рейтинг банка ({rating:.1f}/5)")

    if product.total_fees < 1_000:
        reasons.append("Минимальные комиссии")

    if product.is_featured:
        reasons.append("Популярный выбор")

    if product.promotional_rate:
        reasons.append("Действует специальное предложение")

    return reasons[:3]


def generate_tags(product: BankProduct, score: float) -> List[RecommendationTag]:
    tags: List[RecommendationTag] = []

    if product.effective_rate < 8:
        tags.append(RecommendationTag(type="best_rate", label="Лучшая ставка", color="green"))
    if product.total_fees < 1_000:
        tags.append(RecommendationTag(type="lowest_fees", label="Минимальные комиссии", color="blue"))
    if product.is_featured:
        tags.append(RecommendationTag(type="most_popular", label="Популярный", color="purple"))
    if score >= 80:
        tags.append(RecommendationTag(type="recommended", label="Рекомендуем", color="gold"))
    if product.bank and product.bank.is_partner:
        tags.append(RecommendationTag(type="sponsored", label="Партнер", color="gray"))

    return tags


def calculate_match_percentage(product: BankProduct, profile: UserProfile, context: RecommendationContext) -> int:
    """Share of applicable hard constraints (amount, term, income, region) satisfied; 50 if none apply"""
    matches = 0
    total = 0

    amount = context.amount
    if amount and product.min_amount and product.max_amount:
        total += 1
        matches += product.min_amount <= amount <= product.max_amount

    term = context.term
    if term and product.min_term and product.max_term:
        total += 1
        matches += product.min_term <= term <= product.max_term

    min_income = product.requirements.min_income
    if profile.monthly_income and min_income:
        total += 1
        matches += profile.monthly_income >= min_income

    user_location = context.user_location or profile.region
    if user_location:
        total += 1
        matches += product.is_available_in(user_location)

    return round(matches / total * 100) if total else 50


def calculate_estimated_savings(product: BankProduct, context: RecommendationContext) -> Optional[float]:
    """Interest saved versus the market average rate over the term (months, default 12)"""
    amount = context.amount
    if not amount:
        return None

    term = context.term or 12
    rate = product.effective_rate
    if rate >= MARKET_AVERAGE_RATE:
        return None

    return round(amount * ((MARKET_AVERAGE_RATE - rate) / 100) * term / 12)


def build_recommendation(
    product: BankProduct,
    score: float,
    profile: UserProfile,
    context: RecommendationContext,
) -> RecommendationResult:
    return RecommendationResult(
        product=product,
        score=score,
        reasoning=generate_reasoning(product, profile, context),
        tags=generate_tags(product, score),
        match_percentage=calculate_match_percentage(product, profile, context),
        estimated_savings=calculate_estimated_savings(product, context),
        is_sponsored=bool(product.bank and product.bank.is_partner),
    )


def filter_by_region(products: List[BankProduct], region: Optional[str]) -> List[BankProduct]:
    if not region:
        return list(products)
    return [p for p in products if p.is_available_in(region)]


def rank_products(
    products: List[BankProduct],
    profile: UserProfile,
    behavior: UserBehaviorAnalysis,
    context: RecommendationContext,
    limit: Optional[int] = None,
) -> List[RecommendationResult]:
    """
    Score, sort descending and explain products.

    The sort is stable, so equal scores keep their input order.
    """
    scored = [(product, calculate_recommendation_score(product, profile, behavior, context)) for product in products]
    scored.sort(key=lambda pair: pair[1], reverse=True)
    if limit is not None:
        scored = scored[:limit]
    return [build_recommendation(product, score, profile, context) for product, score in scored]


def rank_general(products: List[BankProduct], limit: int) -> List[RecommendationResult]:
    """Ranking for users without a profile: priority, then bank rating, fixed score 50"""
    ordered = sorted(
        products,
        key=lambda p: (p.priority, (p.bank.overall_rating if p.bank else None) or 0),
        reverse=True,
    )[:limit]
    return [
        RecommendationResult(
            product=product,
            score=50.0,
            reasoning=["Популярный выбор", "Высокий рейтинг"],
            tags=generate_tags(product, 50.0),
            match_percentage=50,
            is_sponsored=bool(product.bank and product.bank.is_partner),
        )
        for product in ordered
    ]
