"""Pydantic schemas for API request/response validation"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from fincalc.domain.models import CourtType, FeeRule
from fincalc.domain.products import BankProduct, ProductType
from fincalc.domain.profiles import SyncStatus
from fincalc.domain.scoring import CalculationType


class FeeScheduleResponse(BaseModel):
    """Response for GET /v1/fee-schedule/{court_type}"""

    court_type: CourtType
    version: str
    last_updated: datetime
    rules: List[FeeRule]
    offline_mode: bool


class FreshnessResponse(BaseModel):
    """Response for GET /v1/fee-schedule/freshness"""

    model_config = ConfigDict(from_attributes=True)

    is_up_to_date: bool
    last_update_date: datetime
    days_since_update: int
    warning_message: Optional[str] = None


class CacheStatusResponse(BaseModel):
    """Response for GET /v1/fee-schedule/status"""

    version: str
    checksum: Optional[str]
    offline_mode: bool
    is_offline_ready: bool
    schedules_count: int
    exemptions_count: int
    last_cache_update: Optional[datetime]
    data_valid: bool


class FeeCalculationRequest(BaseModel):
    """Request body for POST /v1/fee/calculate"""

    amount: float = Field(..., description="Claim amount in rubles")
    court_type: CourtType
    exemption_id: Optional[str] = None


class BreakdownItemSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    description: str
    amount: float
    legal_basis: str
    formula: Optional[str] = None


class FeeCalculationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: float
    formula: str
    applicable_article: str
    breakdown: List[BreakdownItemSchema]


class TrackCalculationRequest(BaseModel):
    """Request body for POST /v1/profiles/{user_id}/calculations"""

    calculator_type: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result: Dict[str, Any] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None
    session_id: Optional[str] = None


class ProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    region: Optional[str] = None
    product_interests: List[ProductType]
    session_count: int
    conversion_count: int
    history_size: int
    last_active: datetime
    sync_status: SyncStatus


class BehaviorResponse(BaseModel):
    """Response for GET /v1/profiles/{user_id}/behavior"""

    model_config = ConfigDict(from_attributes=True)

    primary_interests: List[ProductType]
    preferred_regions: List[str]
    calculation_frequency: float
    last_calculation_date: datetime
    risk_profile: str
    engagement_score: int
    average_loan_amount: Optional[float] = None
    average_term: Optional[float] = None


class RecommendationRequest(BaseModel):
    """Request body for POST /v1/recommendations"""

    user_id: str = Field(..., min_length=1)
    calculation_type: CalculationType
    calculation_params: Dict[str, Any] = Field(default_factory=dict)
    user_location: Optional[str] = None
    limit: int = Field(5, gt=0, le=50)


class TagSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    label: str
    color: str


class RecommendationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    product: BankProduct
    score: float
    reasoning: List[str]
    tags: List[TagSchema]
    match_percentage: int
    estimated_savings: Optional[float] = None
    is_sponsored: bool


class FinancialImpactSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    savings_amount: float
    timeframe: str
    risk_level: str


class ExplanationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    summary: str
    detailed_reasons: List[str]
    financial_impact: FinancialImpactSchema
    related_calculations: List[str]


class CrossRecommendationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    title: str
    description: str
    products: List[BankProduct]
    calculator_types: List[str]
    explanation: ExplanationSchema
    estimated_benefit: float
    relevance_score: float
    action_steps: List[str]


class FeedbackRequest(BaseModel):
    """Request body for POST /v1/recommendations/{recommendation_id}/feedback"""

    user_id: str = Field(..., min_length=1)
    feedback: Literal["clicked", "dismissed", "applied"]


class FeedbackResponse(BaseModel):
    recommendation_id: str
    recorded: bool
