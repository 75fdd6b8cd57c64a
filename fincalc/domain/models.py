"""Domain models for fee reference data, cache entries and data-source responses"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

CourtType = Literal["general", "arbitration"]
FeeType = Literal["percentage", "progressive", "fixed"]
DiscountType = Literal["percentage", "fixed", "exempt"]

COURT_TYPES: tuple[CourtType, ...] = ("general", "arbitration")


class FeeRule(BaseModel):
    """One amount band of a court-fee schedule"""

    min_amount: int = Field(..., ge=0)
    max_amount: Optional[int] = None  # None = open-ended top band
    fee_type: FeeType
    fee_value: float
    minimum_fee: Optional[float] = None
    maximum_fee: Optional[float] = None
    base_fee: float = 0.0  # Fixed part of a progressive band
    formula: str
    legal_basis: str

    def contains(self, amount: float) -> bool:
        return amount >= self.min_amount and (self.max_amount is None or amount <= self.max_amount)


class FeeSchedule(BaseModel):
    """Ordered, contiguous set of fee rules for one court type"""

    court_type: CourtType
    version: str
    last_updated: datetime
    rules: List[FeeRule]


class ExemptionCategory(BaseModel):
    """Category of claimants entitled to a fee discount or full exemption"""

    id: str
    name: str
    description: str
    discount_type: DiscountType
    discount_value: float
    applicable_courts: List[CourtType]
    legal_basis: str


class FeeScheduleData(BaseModel):
    """Reference-data payload as served by the remote endpoint and stored for fallback"""

    version: str
    effective_date: date
    source: str
    court_types: Dict[CourtType, List[FeeRule]]
    exemptions: List[ExemptionCategory] = Field(default_factory=list)


class LegalArticle(BaseModel):
    number: str
    title: str
    content: str


class LegalDocument(BaseModel):
    id: str
    title: str
    type: str
    number: str
    date: date
    status: str
    source: str
    articles: List[LegalArticle] = Field(default_factory=list)


class CacheMetadata(BaseModel):
    """Bookkeeping stored next to every cached value (times in epoch ms)"""

    timestamp: int
    expiration_date: int  # 0 = never expires
    access_count: int = 0
    last_accessed: int
    size: int
    version: str = "1.0"
    tags: List[str] = Field(default_factory=list)
    source: str = "unknown"

    def is_expired(self, now_ms: int) -> bool:
        return self.expiration_date > 0 and now_ms > self.expiration_date


class CacheEntry(BaseModel):
    data: Any
    metadata: CacheMetadata


@dataclass
class CacheStatistics:
    """Snapshot of cache contents plus cumulative hit/miss rates"""

    total_entries: int = 0
    total_size: int = 0
    hit_rate: float = 0.0
    miss_rate: float = 0.0
    expired_entries: int = 0
    average_access_count: float = 0.0
    oldest_entry: int = 0
    newest_entry: int = 0
    entries_by_source: Dict[str, int] = field(default_factory=dict)
    entries_by_tag: Dict[str, int] = field(default_factory=dict)


@dataclass
class ApiResponse:
    """Outcome of a data-source call (remote endpoint or fallback chain)"""

    success: bool
    source: str
    timestamp: datetime
    cached: bool = False
    data: Any = None
    error: Optional[str] = None
    strategy: Optional[str] = None  # Fallback strategy that produced the data


@dataclass
class UpdateCheck:
    has_updates: bool
    last_update: datetime


@dataclass
class DataFreshnessStatus:
    is_up_to_date: bool
    last_update_date: datetime
    days_since_update: int
    warning_message: Optional[str] = None


@dataclass
class DataVersionInfo:
    version: str
    release_date: datetime
    source: str
    checksum: Optional[str] = None


@dataclass
class FeeBreakdownItem:
    description: str
    amount: float
    legal_basis: str
    formula: Optional[str] = None


@dataclass
class FeeCalculation:
    """Fee for a claim amount, before or after exemptions"""

    amount: float
    formula: str
    applicable_article: str
    breakdown: List[FeeBreakdownItem] = field(default_factory=list)
