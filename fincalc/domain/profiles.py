"""User profiles, calculation history and behavior analysis"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fincalc.domain.products import ProductType
from fincalc.utils.date_utils import days_between, parse_timestamp, utc_now

RiskTolerance = Literal["low", "medium", "high"]
EmploymentType = Literal["employee", "self_employed", "unemployed", "retired", "student"]

MAX_HISTORY_ITEMS = 100
ANONYMOUS_USER_ID = "anonymous"

# Calculator identifiers that imply interest in a product type. Unlisted types imply nothing.
CALCULATOR_PRODUCT_TYPES: Dict[str, ProductType] = {
    "mortgage": "mortgage",
    "mortgage_calculator": "mortgage",
    "deposit": "deposit",
    "deposit_calculator": "deposit",
    "credit": "credit",
    "credit_calculator": "credit",
    "loan": "credit",
    "insurance": "insurance",
}

AMOUNT_ALIASES = ("amount", "loan_amount", "property_price")
TERM_ALIASES = ("term", "loan_term")
REGION_ALIASES = ("region", "location")


class SyncStatus(str, Enum):
    """Whether the local copy of a profile matches the remote store"""

    SYNCED = "synced"
    LOCAL_ONLY = "local_only"
    CONFLICT = "conflict"


class CalculationHistoryItem(BaseModel):
    """One completed calculation; immutable once recorded"""

    model_config = ConfigDict(frozen=True)

    calculator_type: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    session_id: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def timestamp_to_utc(cls, value: datetime) -> datetime:
        """Client-supplied naive timestamps are taken as UTC"""
        return parse_timestamp(value)


class UserProfileData(BaseModel):
    """Fields a caller may supply when creating or updating a profile"""

    user_id: Optional[str] = None
    monthly_income: Optional[float] = None
    credit_score: Optional[int] = None
    employment_type: Optional[EmploymentType] = None
    region: Optional[str] = None
    age_range: Optional[str] = None
    risk_tolerance: Optional[RiskTolerance] = None
    preferred_banks: Optional[List[str]] = None
    blacklisted_banks: Optional[List[str]] = None
    calculation_history: Optional[List[CalculationHistoryItem]] = None
    product_interests: Optional[List[ProductType]] = None
    conversion_count: Optional[int] = None


class UserProfile(BaseModel):
    id: str
    user_id: str
    monthly_income: Optional[float] = None
    credit_score: Optional[int] = None
    employment_type: Optional[EmploymentType] = None
    region: Optional[str] = None
    age_range: Optional[str] = None
    risk_tolerance: Optional[RiskTolerance] = None
    preferred_banks: List[str] = Field(default_factory=list)
    blacklisted_banks: List[str] = Field(default_factory=list)
    calculation_history: List[CalculationHistoryItem] = Field(default_factory=list)
    product_interests: List[ProductType] = Field(default_factory=list)
    session_count: int = 1
    conversion_count: int = 0
    last_active: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    sync_status: SyncStatus = SyncStatus.SYNCED


@dataclass
class CalculationData:
    """Input for tracking a finished calculation"""

    calculator_type: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    result: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    session_id: Optional[str] = None


@dataclass
class ProfileUpdateOptions:
    merge_calculation_history: bool = True
    update_last_active: bool = True
    increment_session: bool = False


@dataclass
class UserBehaviorAnalysis:
    primary_interests: List[ProductType] = field(default_factory=list)
    preferred_regions: List[str] = field(default_factory=list)
    calculation_frequency: float = 0.0
    last_calculation_date: datetime = field(default_factory=utc_now)
    risk_profile: RiskTolerance = "medium"
    engagement_score: int = 0
    average_loan_amount: Optional[float] = None
    average_term: Optional[float] = None


def infer_product_type(calculator_type: str) -> Optional[ProductType]:
    return CALCULATOR_PRODUCT_TYPES.get(calculator_type.lower())


def merge_history(
    new_items: List[CalculationHistoryItem],
    existing: List[CalculationHistoryItem],
    limit: int = MAX_HISTORY_ITEMS,
) -> List[CalculationHistoryItem]:
    """Prepend new items (newest first) and keep only the most recent `limit`"""
    return (list(new_items) + list(existing))[:limit]


def first_numeric(parameters: Dict[str, Any], aliases: tuple[str, ...]) -> Optional[float]:
    """First non-empty alias as a number; form-style strings are converted, junk gives None"""
    for alias in aliases:
        value = parameters.get(alias)
        if value:
            try:
                return float(value)
            except (TypeError, ValueError):
                return None
    return None


def _first_string(parameters: Dict[str, Any], aliases: tuple[str, ...]) -> Optional[str]:
    for alias in aliases:
        value = parameters.get(alias)
        if value and isinstance(value, str):
            return value
    return None


def identify_primary_interests(history: List[CalculationHistoryItem]) -> List[ProductType]:
    """Product types implied by the history, most frequent first"""
    counts: Counter = Counter()
    for item in history:
        product_type = infer_product_type(item.calculator_type)
        if product_type:
            counts[product_type] += 1
    return [product_type for product_type, _ in counts.most_common()]


def calculate_averages(history: List[CalculationHistoryItem]) -> tuple[Optional[float], Optional[float]]:
    amounts = [a for a in (first_numeric(h.parameters, AMOUNT_ALIASES) for h in history) if a is not None]
    terms = [t for t in (first_numeric(h.parameters, TERM_ALIASES) for h in history) if t is not None]

    average_amount = sum(amounts) / len(amounts) if amounts else None
    average_term = sum(terms) / len(terms) if terms else None
    return average_amount, average_term


def extract_preferred_regions(history: List[CalculationHistoryItem]) -> List[str]:
    counts = Counter(r for r in (_first_string(h.parameters, REGION_ALIASES) for h in history) if r)
    return [region for region, _ in counts.most_common()]


def calculate_frequency(history: List[CalculationHistoryItem]) -> float:
    """
    Calculations per day over the span of the history.

    Not clamped: two calculations a few hours apart yield a rate above 1.
    A zero-length span returns the item count.
    """
    if len(history) < 2:
        return 0.0

    timestamps = sorted(parse_timestamp(h.timestamp) for h in history)
    span_days = days_between(timestamps[0], timestamps[-1])
    return len(history) / span_days if span_days > 0 else float(len(history))


def determine_risk_profile(profile: UserProfile, history: List[CalculationHistoryItem]) -> RiskTolerance:
    if profile.risk_tolerance:
        return profile.risk_tolerance

    average_amount, average_term = calculate_averages(history)
    if average_amount and average_term:
        # Large, long commitments read as conservative borrowers
        if average_amount > 5_000_000 and average_term > 180:
            return "low"
        if average_amount > 1_000_000 and average_term > 60:
            return "medium"
        return "high"

    return "medium"


def calculate_engagement_score(
    profile: UserProfile,
    history: List[CalculationHistoryItem],
    now: Optional[datetime] = None,
) -> int:
    """
    Heuristic 0-100 activity score.

    - history length x3 (max 30)
    - sessions x2 (max 20)
    - distinct calculators x5 (max 20)
    - recency of last activity: 15 / 10 / 5 / 0 for <1 / <7 / <30 / >=30 days
    - conversions x5 (max 15)
    """
    now = now or utc_now()
    score = 0
    score += min(len(history) * 3, 30)
    score += min(profile.session_count * 2, 20)
    score += min(len({h.calculator_type for h in history}) * 5, 20)

    days_since_active = days_between(profile.last_active, now)
    if days_since_active < 1:
        score += 15
    elif days_since_active < 7:
        score += 10
    elif days_since_active < 30:
        score += 5

    score += min(profile.conversion_count * 5, 15)
    return min(score, 100)


def analyze_behavior(profile: Optional[UserProfile], now: Optional[datetime] = None) -> UserBehaviorAnalysis:
    """Pure analysis of a profile's calculation history"""
    now = now or utc_now()
    if profile is None or not profile.calculation_history:
        return UserBehaviorAnalysis(last_calculation_date=now)

    history = profile.calculation_history
    average_amount, average_term = calculate_averages(history)

    return UserBehaviorAnalysis(
        primary_interests=identify_primary_interests(history),
        average_loan_amount=average_amount,
        average_term=average_term,
        preferred_regions=extract_preferred_regions(history),
        calculation_frequency=calculate_frequency(history),
        last_calculation_date=history[0].timestamp,
        risk_profile=determine_risk_profile(profile, history),
        engagement_score=calculate_engagement_score(profile, history, now),
    )
