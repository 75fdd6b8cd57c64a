"""Bank and bank product entities consumed by recommendation scoring"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ProductType = Literal["mortgage", "deposit", "credit", "insurance", "debit"]


class Bank(BaseModel):
    id: str
    name: str
    short_name: str = ""
    overall_rating: Optional[float] = None  # 0-5
    is_partner: bool = False
    commission_rate: Optional[float] = None


class ProductRequirements(BaseModel):
    min_income: Optional[float] = None
    min_age: Optional[int] = None
    max_age: Optional[int] = None
    min_credit_score: Optional[int] = None
    employment_experience: Optional[int] = None  # months


class BankProduct(BaseModel):
    """Read-only product offer; rates are annual percentages, terms in months"""

    id: str
    bank_id: str
    product_type: ProductType
    name: str
    description: Optional[str] = None
    interest_rate: float
    promotional_rate: Optional[float] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    min_term: Optional[int] = None
    max_term: Optional[int] = None
    fees: Dict[str, Optional[float]] = Field(default_factory=dict)
    requirements: ProductRequirements = Field(default_factory=ProductRequirements)
    available_regions: List[str] = Field(default_factory=lambda: ["all"])
    is_active: bool = True
    is_featured: bool = False
    priority: int = 0
    bank: Optional[Bank] = None

    @property
    def effective_rate(self) -> float:
        """Promotional rate when one is running, else the base rate"""
        return self.promotional_rate if self.promotional_rate else self.interest_rate

    @property
    def total_fees(self) -> float:
        return sum(fee for fee in self.fees.values() if isinstance(fee, (int, float)))

    def is_available_in(self, region: str) -> bool:
        return "all" in self.available_regions or region in self.available_regions
