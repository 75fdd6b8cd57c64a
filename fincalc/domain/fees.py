"""Court-fee rule tables and fee calculation (NK RF art. 333.19, 333.21, 333.36, 333.37)"""

from datetime import date, datetime, timezone
from typing import List, Optional

from fincalc.domain.exceptions import InvalidAmountError
from fincalc.domain.models import (
    CourtType,
    ExemptionCategory,
    FeeBreakdownItem,
    FeeCalculation,
    FeeRule,
    FeeSchedule,
    FeeScheduleData,
    LegalArticle,
    LegalDocument,
)

# Bumped whenever the Tax Code tables below change
CURRENT_VERSION = "2024.1.0"
CURRENT_VERSION_DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)
LEGAL_SOURCE = "НК РФ статьи 333.19, 333.21, 333.36, 333.37"

APPLICABLE_ARTICLES = {
    "general": "ст. 333.19 НК РФ",
    "arbitration": "ст. 333.21 НК РФ",
}

GENERAL_JURISDICTION_RULES: List[FeeRule] = [
    FeeRule(
        min_amount=0,
        max_amount=20_000,
        fee_type="percentage",
        fee_value=0.04,
        minimum_fee=400,
        formula="цена иска × 4%, но не менее 400 руб.",
        legal_basis="пп. 1 п. 1 ст. 333.19 НК РФ",
    ),
    FeeRule(
        min_amount=20_001,
        max_amount=100_000,
        fee_type="progressive",
        fee_value=0.03,
        base_fee=800,
        formula="800 руб. + 3% с суммы, превышающей 20 000 руб.",
        legal_basis="пп. 2 п. 1 ст. 333.19 НК РФ",
    ),
    FeeRule(
        min_amount=100_001,
        max_amount=200_000,
        fee_type="progressive",
        fee_value=0.02,
        base_fee=3_200,
        formula="3 200 руб. + 2% с суммы, превышающей 100 000 руб.",
        legal_basis="пп. 3 п. 1 ст. 333.19 НК РФ",
    ),
    FeeRule(
        min_amount=200_001,
        max_amount=1_000_000,
        fee_type="progressive",
        fee_value=0.01,
        base_fee=5_200,
        formula="5 200 руб. + 1% с суммы, превышающей 200 000 руб.",
        legal_basis="пп. 4 п. 1 ст. 333.19 НК РФ",
    ),
    FeeRule(
        min_amount=1_000_001,
        max_amount=None,
        fee_type="fixed",
        fee_value=60_000,
        maximum_fee=60_000,
        formula="60 000 руб.",
        legal_basis="пп. 5 п. 1 ст. 333.19 НК РФ",
    ),
]

ARBITRATION_RULES: List[FeeRule] = [
    FeeRule(
        min_amount=0,
        max_amount=100_000,
        fee_type="percentage",
        fee_value=0.04,
        minimum_fee=2_000,
        formula="цена иска × 4%, но не менее 2 000 руб.",
        legal_basis="пп. 1 п. 1 ст. 333.21 НК РФ",
    ),
    FeeRule(
        min_amount=100_001,
        max_amount=500_000,
        fee_type="progressive",
        fee_value=0.03,
        base_fee=4_000,
        formula="4 000 руб. + 3% с суммы, превышающей 100 000 руб.",
        legal_basis="пп. 2 п. 1 ст. 333.21 НК РФ",
    ),
    FeeRule(
        min_amount=500_001,
        max_amount=1_500_000,
        fee_type="progressive",
        fee_value=0.02,
        base_fee=16_000,
        formula="16 000 руб. + 2% с суммы, превышающей 500 000 руб.",
        legal_basis="пп. 3 п. 1 ст. 333.21 НК РФ",
    ),
    FeeRule(
        min_amount=1_500_001,
        max_amount=10_000_000,
        fee_type="progressive",
        fee_value=0.01,
        base_fee=36_000,
        formula="36 000 руб. + 1% с суммы, превышающей 1 500 000 руб.",
        legal_basis="пп. 4 п. 1 ст. 333.21 НК РФ",
    ),
    FeeRule(
        min_amount=10_000_001,
        max_amount=500_000_000,
        fee_type="progressive",
        fee_value=0.005,
        base_fee=121_000,
        maximum_fee=200_000,
        formula="121 000 руб. + 0,5% с суммы, превышающей 10 000 000 руб., но не более 200 000 руб.",
        legal_basis="пп. 5 п. 1 ст. 333.21 НК РФ",
    ),
    FeeRule(
        min_amount=500_000_001,
        max_amount=None,
        fee_type="fixed",
        fee_value=200_000,
        maximum_fee=200_000,
        formula="200 000 руб.",
        legal_basis="пп. 6 п. 1 ст. 333.21 НК РФ",
    ),
]

EXEMPTION_CATEGORIES: List[ExemptionCategory] = [
    ExemptionCategory(
        id="disabled_1_2",
        name="Инвалиды I-II группы",
        description="Инвалиды I или II группы, дети-инвалиды, инвалиды с детства",
        discount_type="fixed",
        discount_value=25_000,
        applicable_courts=["general"],
        legal_basis="п.2 ст.333.36 НК РФ",
    ),
    ExemptionCategory(
        id="veterans",
        name="Ветераны боевых действий",
        description="Ветераны боевых действий, ветераны военной службы",
        discount_type="exempt",
        discount_value=0,
        applicable_courts=["general"],
        legal_basis="п.3 ст.333.36 НК РФ",
    ),
    ExemptionCategory(
        id="consumer_disputes",
        name="Потребительские споры",
        description="Иски, связанные с нарушением прав потребителей",
        discount_type="exempt",
        discount_value=0,
        applicable_courts=["general"],
        legal_basis="п.2 ст.333.36 НК РФ",
    ),
    ExemptionCategory(
        id="pensioners",
        name="Пенсионеры",
        description="Пенсионеры по искам к ПФР и НПФ",
        discount_type="exempt",
        discount_value=0,
        applicable_courts=["general"],
        legal_basis="п.2 ст.333.36 НК РФ",
    ),
    ExemptionCategory(
        id="disabled_arbitration",
        name="Инвалиды I-II группы (арбитраж)",
        description="Инвалиды I и II группы в арбитражных судах",
        discount_type="fixed",
        discount_value=55_000,
        applicable_courts=["arbitration"],
        legal_basis="п.2 ст.333.37 НК РФ",
    ),
]


def get_fee_rules(court_type: CourtType) -> List[FeeRule]:
    return GENERAL_JURISDICTION_RULES if court_type == "general" else ARBITRATION_RULES


def create_schedule_from_rules(court_type: CourtType, last_updated: datetime | None = None) -> FeeSchedule:
    """Build a schedule from the static rule tables"""
    return FeeSchedule(
        court_type=court_type,
        version=CURRENT_VERSION,
        last_updated=last_updated or CURRENT_VERSION_DATE,
        rules=[rule.model_copy() for rule in get_fee_rules(court_type)],
    )


def find_applicable_rule(amount: float, rules: List[FeeRule]) -> Optional[FeeRule]:
    """Band containing the amount; kopecks above a band's upper bound stay in that band"""
    for i, rule in enumerate(rules):
        if rule.contains(amount):
            return rule
        next_rule = rules[i + 1] if i + 1 < len(rules) else None
        if (
            next_rule is not None
            and rule.max_amount is not None
            and rule.max_amount < amount < next_rule.min_amount
            and next_rule.min_amount == rule.max_amount + 1
        ):
            return rule
    return None


def find_rule_range_violations(rules: List[FeeRule]) -> List[str]:
    """
    Describe every way a rule list breaks the contiguous-range invariant.

    Rules must start at 0, never go negative, have max > min, and each band must
    begin exactly one unit after the previous band ends. Amounts are whole rubles.
    """
    violations: List[str] = []
    if not rules:
        return ["rule list is empty"]

    if rules[0].min_amount != 0:
        violations.append(f"first rule starts at {rules[0].min_amount}, expected 0")

    for i, rule in enumerate(rules):
        if rule.min_amount < 0:
            violations.append(f"rule {i} has negative min_amount {rule.min_amount}")
        if rule.max_amount is not None and rule.max_amount <= rule.min_amount:
            violations.append(f"rule {i} max_amount {rule.max_amount} <= min_amount {rule.min_amount}")

        if i == 0:
            continue
        prev = rules[i - 1]
        if prev.max_amount is None:
            violations.append(f"rule {i} follows open-ended rule {i - 1}")
        elif rule.min_amount != prev.max_amount + 1:
            violations.append(
                f"gap or overlap between rule {i - 1} (max {prev.max_amount}) and rule {i} (min {rule.min_amount})"
            )

    return violations


def validate_rule_ranges(rules: List[FeeRule]) -> bool:
    return not find_rule_range_violations(rules)


def calculate_rule_fee(amount: float, rule: FeeRule) -> float:
    """Apply one band's formula, then its minimum/maximum caps"""
    if rule.fee_type == "fixed":
        fee = rule.fee_value
    elif rule.fee_type == "progressive":
        # Progressive bands charge on the excess over the previous band's upper bound
        threshold = rule.min_amount - 1 if rule.min_amount > 0 else 0
        fee = rule.base_fee + (amount - threshold) * rule.fee_value
    else:
        fee = amount * rule.fee_value

    if rule.minimum_fee is not None:
        fee = max(fee, rule.minimum_fee)
    if rule.maximum_fee is not None:
        fee = min(fee, rule.maximum_fee)

    return round(fee, 2)


def calculate_fee(amount: float, schedule: FeeSchedule) -> FeeCalculation:
    """
    Compute the filing fee for a claim amount under a schedule.

    Raises:
        InvalidAmountError: amount is not positive or no band covers it
    """
    if amount <= 0:
        raise InvalidAmountError("Claim amount must be a positive number")

    rule = find_applicable_rule(amount, schedule.rules)
    if rule is None:
        raise InvalidAmountError(f"No fee rule covers amount {amount}")

    fee = calculate_rule_fee(amount, rule)
    return FeeCalculation(
        amount=fee,
        formula=rule.formula,
        applicable_article=APPLICABLE_ARTICLES[schedule.court_type],
        breakdown=[
            FeeBreakdownItem(
                description="Расчет госпошлины",
                amount=fee,
                formula=rule.formula,
                legal_basis=rule.legal_basis,
            )
        ],
    )


def calculate_discount(base_fee: float, exemption: ExemptionCategory) -> float:
    """Discount granted by an exemption; never exceeds the fee itself"""
    if exemption.discount_type == "exempt":
        return base_fee
    if exemption.discount_type == "fixed":
        return min(exemption.discount_value, base_fee)
    return round(min(base_fee * exemption.discount_value / 100, base_fee), 2)


def apply_exemption(calculation: FeeCalculation, exemption: ExemptionCategory) -> FeeCalculation:
    discount = calculate_discount(calculation.amount, exemption)
    new_amount = round(calculation.amount - discount, 2)

    breakdown = list(calculation.breakdown)
    if discount > 0:
        if exemption.discount_type == "exempt":
            formula = "Полное освобождение"
        elif exemption.discount_type == "fixed":
            formula = f"Скидка {exemption.discount_value:g} руб."
        else:
            formula = f"Скидка {exemption.discount_value:g}%"
        breakdown.append(
            FeeBreakdownItem(
                description=f"Льгота: {exemption.name}",
                amount=-discount,
                formula=formula,
                legal_basis=exemption.legal_basis,
            )
        )

    return FeeCalculation(
        amount=new_amount,
        formula=f"{calculation.formula} - льгота {discount:g} руб. = {new_amount:g} руб.",
        applicable_article=calculation.applicable_article,
        breakdown=breakdown,
    )


def get_available_exemptions(court_type: CourtType) -> List[ExemptionCategory]:
    return [e for e in EXEMPTION_CATEGORIES if court_type in e.applicable_courts]


def find_exemption_by_id(exemption_id: str) -> Optional[ExemptionCategory]:
    return next((e for e in EXEMPTION_CATEGORIES if e.id == exemption_id), None)


def conservative_fee_schedule_data() -> FeeScheduleData:
    """Minimal-but-correct schedule served when nothing fresher is available"""
    return FeeScheduleData(
        version="fallback-1.0",
        effective_date=date(2024, 1, 1),
        source="fallback_system",
        court_types={
            "general": [
                FeeRule(
                    min_amount=0,
                    max_amount=None,
                    fee_type="percentage",
                    fee_value=0.04,
                    minimum_fee=400,
                    maximum_fee=60_000,
                    formula="цена иска × 4%, от 400 до 60 000 руб.",
                    legal_basis="Статья 333.19 НК РФ (резервные данные)",
                )
            ],
            "arbitration": [
                FeeRule(
                    min_amount=0,
                    max_amount=None,
                    fee_type="percentage",
                    fee_value=0.04,
                    minimum_fee=2_000,
                    maximum_fee=200_000,
                    formula="цена иска × 4%, от 2 000 до 200 000 руб.",
                    legal_basis="Статья 333.21 НК РФ (резервные данные)",
                )
            ],
        },
        exemptions=[
            ExemptionCategory(
                id="default_exemption_1",
                name="Льготы для физических лиц",
                description="Стандартные льготы при недоступности актуальных данных",
                discount_type="percentage",
                discount_value=50,
                applicable_courts=["general", "arbitration"],
                legal_basis="Статья 333.36 НК РФ (резервные данные)",
            )
        ],
    )


def degraded_fee_schedule_data() -> FeeScheduleData:
    """Flat minimum fee per court type; keeps the calculator working in limited mode"""
    return FeeScheduleData(
        version="degraded-1.0",
        effective_date=date.today(),
        source="degraded_fallback",
        court_types={
            "general": [
                FeeRule(
                    min_amount=0,
                    max_amount=None,
                    fee_type="fixed",
                    fee_value=300,
                    formula="300",
                    legal_basis="Минимальная пошлина (ограниченный режим)",
                )
            ],
            "arbitration": [
                FeeRule(
                    min_amount=0,
                    max_amount=None,
                    fee_type="fixed",
                    fee_value=3_000,
                    formula="3000",
                    legal_basis="Минимальная пошлина (ограниченный режим)",
                )
            ],
        },
        exemptions=[],
    )


def default_legal_document() -> LegalDocument:
    return LegalDocument(
        id="fallback_document",
        title="Резервный правовой документ",
        type="regulation",
        number="FALLBACK-001",
        date=date(2024, 1, 1),
        status="active",
        source="fallback_system",
        articles=[
            LegalArticle(
                number="1",
                title="Общие положения",
                content="Данный документ используется при недоступности основных источников правовой информации.",
            )
        ],
    )
