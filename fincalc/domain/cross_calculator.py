"""Cross-calculator suggestions built from per-calculator top recommendations"""

import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from fincalc.domain.products import BankProduct
from fincalc.domain.profiles import CalculationHistoryItem, first_numeric
from fincalc.domain.scoring import RecommendationResult
from fincalc.utils.date_utils import parse_timestamp

CrossRecommendationType = Literal["package", "optimization", "alternative"]
RiskLevel = Literal["low", "medium", "high"]

# Rate gap (percentage points) separating "repay early" from "keep a cushion"
RATE_GAP_THRESHOLD = 2.0
CONSOLIDATION_BENEFIT = 50_000


@dataclass
class FinancialImpact:
    savings_amount: float
    timeframe: str
    risk_level: RiskLevel


@dataclass
class DetailedExplanation:
    summary: str
    detailed_reasons: List[str]
    financial_impact: FinancialImpact
    related_calculations: List[str] = field(default_factory=list)


@dataclass
class CrossCalculatorRecommendation:
    type: CrossRecommendationType
    title: str
    description: str
    products: List[BankProduct]
    calculator_types: List[str]
    explanation: DetailedExplanation
    estimated_benefit: float
    relevance_score: float
    action_steps: List[str]
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass
class CalculatorUsage:
    count_by_type: Dict[str, int]
    latest_by_type: Dict[str, CalculationHistoryItem]
    total_calculations: int

    @property
    def unique_calculators(self) -> List[str]:
        return list(self.count_by_type)


def analyze_calculator_usage(history: List[CalculationHistoryItem]) -> CalculatorUsage:
    counts: Counter = Counter()
    latest: Dict[str, CalculationHistoryItem] = {}

    for item in history:
        counts[item.calculator_type] += 1
        current = latest.get(item.calculator_type)
        if current is None or parse_timestamp(item.timestamp) > parse_timestamp(current.timestamp):
            latest[item.calculator_type] = item

    return CalculatorUsage(count_by_type=dict(counts), latest_by_type=latest, total_calculations=len(history))


def calculate_package_benefit(results: List[RecommendationResult]) -> float:
    return sum(r.estimated_savings or 0 for r in results)


def calculate_early_repayment_savings(mortgage: RecommendationResult, usage: CalculatorUsage) -> float:
    """Half a year of interest on the last mortgage loan amount"""
    calc = usage.latest_by_type.get("mortgage")
    if calc is None:
        return 0

    loan_amount = first_numeric(calc.parameters, ("loan_amount",)) or 0
    return round(loan_amount * (mortgage.product.effective_rate / 100) * 0.5)


def _top(recommendations: Dict[str, List[RecommendationResult]], calculator_type: str) -> Optional[RecommendationResult]:
    results = recommendations.get(calculator_type)
    return results[0] if results else None


def identify_financial_packages(
    recommendations: Dict[str, List[RecommendationResult]],
) -> List[CrossCalculatorRecommendation]:
    packages: List[CrossCalculatorRecommendation] = []

    mortgage = _top(recommendations, "mortgage")
    insurance = _top(recommendations, "insurance")
    if mortgage and insurance:
        benefit = calculate_package_benefit([mortgage, insurance])
        packages.append(
            CrossCalculatorRecommendation(
                type="package",
                title="Комплексное решение: Ипотека + Страхование",
                description="Оптимальное сочетание ипотечного кредита и страхования для защиты вашей недвижимости",
                products=[mortgage.product, insurance.product],
                calculator_types=["mortgage", "insurance"],
                explanation=DetailedExplanation(
                    summary="Комплексное решение для защиты вашей недвижимости и финансовой безопасности",
                    detailed_reasons=[
                        "Ипотека и страхование от одного банка часто предоставляют скидки",
                        "Страхование защищает от рисков потери имущества",
                        "Упрощенное оформление при покупке пакета",
                    ],
                    financial_impact=FinancialImpact(benefit, "12 месяцев", "low"),
                    related_calculations=["mortgage", "insurance"],
                ),
                estimated_benefit=benefit,
                relevance_score=(mortgage.score + insurance.score) / 2,
                action_steps=[
                    "Оформите ипотеку с выгодной ставкой",
                    "Подключите страхование для защиты имущества",
                    "Получите скидку на страхование при оформлении ипотеки",
                ],
            )
        )

    credit = _top(recommendations, "credit")
    deposit = _top(recommendations, "deposit")
    if credit and deposit:
        benefit = calculate_package_benefit([credit, deposit])
        packages.append(
            CrossCalculatorRecommendation(
                type="package",
                title="Финансовая оптимизация: Кредит + Вклад",
                description="Рефинансируйте кредит под более низкую ставку и откройте вклад для накоплений",
                products=[credit.product, deposit.product],
                calculator_types=["credit", "deposit"],
                explanation=DetailedExplanation(
                    summary="Оптимизация финансов через рефинансирование и накопления",
                    detailed_reasons=[
                        "Рефинансирование снизит ежемесячный платеж по кредиту",
                        "Разницу в платежах можно направить на вклад",
                        "Формирование накоплений при снижении долговой нагрузки",
                    ],
                    financial_impact=FinancialImpact(benefit, "24 месяца", "medium"),
                    related_calculations=["credit", "deposit"],
                ),
                estimated_benefit=benefit,
                relevance_score=(credit.score + deposit.score) / 2,
                action_steps=[
                    "Рефинансируйте текущий кредит под более выгодную ставку",
                    "Откройте вклад для накопления средств",
                    "Используйте разницу в платежах для формирования сбережений",
                ],
            )
        )

    return packages


def suggest_financial_optimizations(
    recommendations: Dict[str, List[RecommendationResult]],
    usage: CalculatorUsage,
) -> List[CrossCalculatorRecommendation]:
    optimizations: List[CrossCalculatorRecommendation] = []

    mortgage = _top(recommendations, "mortgage")
    deposit = _top(recommendations, "deposit")
    if mortgage and deposit:
        mortgage_rate = mortgage.product.effective_rate
        deposit_rate = deposit.product.effective_rate
        if mortgage_rate > deposit_rate + RATE_GAP_THRESHOLD:
            savings = calculate_early_repayment_savings(mortgage, usage)
            optimizations.append(
                CrossCalculatorRecommendation(
                    type="optimization",
                    title="Стратегия досрочного погашения ипотеки",
                    description="Направьте средства на досрочное погашение ипотеки вместо вклада для большей экономии",
                    products=[mortgage.product],
                    calculator_types=["mortgage", "deposit"],
                    explanation=DetailedExplanation(
                        summary=(
                            f"Ставка по ипотеке ({mortgage_rate:.2f}%) значительно выше ставки по вкладу "
                            f"({deposit_rate:.2f}%). Досрочное погашение ипотеки принесет большую выгоду."
                        ),
                        detailed_reasons=[
                            f"Экономия на процентах по ипотеке: {mortgage_rate:.2f}% годовых",
                            f"Доход от вклада: {deposit_rate:.2f}% годовых",
                            f"Разница в пользу досрочного погашения: {mortgage_rate - deposit_rate:.2f}%",
                        ],
                        financial_impact=FinancialImpact(savings, "12 месяцев", "low"),
                        related_calculations=["mortgage", "deposit"],
                    ),
                    estimated_benefit=savings,
                    relevance_score=85,
                    action_steps=[
                        "Проверьте условия досрочного погашения в вашем договоре",
                        "Рассчитайте оптимальную сумму досрочного платежа",
                        "Внесите досрочный платеж для уменьшения переплаты",
                    ],
                )
            )

    credit = _top(recommendations, "credit")
    if credit and usage.count_by_type.get("credit", 0) > 1:
        optimizations.append(
            CrossCalculatorRecommendation(
                type="optimization",
                title="Консолидация кредитов",
                description="Объедините несколько кредитов в один для снижения ежемесячного платежа",
                products=[credit.product],
                calculator_types=["credit"],
                explanation=DetailedExplanation(
                    summary=(
                        "Вы использовали кредитный калькулятор несколько раз. "
                        "Консолидация кредитов может снизить общую финансовую нагрузку."
                    ),
                    detailed_reasons=[
                        "Один платеж вместо нескольких упростит управление финансами",
                        "Возможность получить более низкую ставку при консолидации",
                    ],
                    financial_impact=FinancialImpact(CONSOLIDATION_BENEFIT, "24 месяца", "medium"),
                    related_calculations=["credit"],
                ),
                estimated_benefit=CONSOLIDATION_BENEFIT,
                relevance_score=80,
                action_steps=[
                    "Соберите информацию о всех текущих кредитах",
                    "Подайте заявку на кредит для консолидации",
                    "После одобрения погасите все старые кредиты",
                ],
            )
        )

    return optimizations


def suggest_alternative_solutions(
    recommendations: Dict[str, List[RecommendationResult]],
) -> List[CrossCalculatorRecommendation]:
    mortgage = _top(recommendations, "mortgage")
    deposit = _top(recommendations, "deposit")
    if not (mortgage and deposit):
        return []

    gap = abs(mortgage.product.effective_rate - deposit.product.effective_rate)
    if gap > RATE_GAP_THRESHOLD:
        return []

    return [
        CrossCalculatorRecommendation(
            type="alternative",
            title="Формирование финансовой подушки",
            description="Создайте резервный фонд на вкладе вместо досрочного погашения ипотеки",
            products=[deposit.product],
            calculator_types=["mortgage", "deposit"],
            explanation=DetailedExplanation(
                summary=(
                    "Ставки по ипотеке и вкладу близки. "
                    "Рекомендуем сформировать финансовую подушку для непредвиденных ситуаций."
                ),
                detailed_reasons=[
                    "Финансовая подушка обеспечит ликвидность в экстренных случаях",
                    f"Разница в ставках минимальна: {gap:.2f}%",
                    "Вклад можно использовать для досрочного погашения в будущем",
                ],
                financial_impact=FinancialImpact(0, "12 месяцев", "low"),
                related_calculations=["mortgage", "deposit"],
            ),
            estimated_benefit=0,
            relevance_score=70,
            action_steps=[
                "Откройте вклад с возможностью пополнения",
                "Сформируйте резерв на 3-6 месяцев расходов",
                "При необходимости используйте средства для досрочного погашения",
            ],
        )
    ]


def build_cross_recommendations(
    recommendations: Dict[str, List[RecommendationResult]],
    usage: CalculatorUsage,
    limit: int = 10,
) -> List[CrossCalculatorRecommendation]:
    """Packages, optimizations and alternatives, most relevant first"""
    suggestions = (
        identify_financial_packages(recommendations)
        + suggest_financial_optimizations(recommendations, usage)
        + suggest_alternative_solutions(recommendations)
    )
    suggestions.sort(key=lambda s: s.relevance_score, reverse=True)
    return suggestions[:limit]
