"""Data access layer for profiles, bank products and served recommendations"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session, joinedload

from fincalc.domain.products import Bank, BankProduct, ProductRequirements
from fincalc.domain.profiles import CalculationHistoryItem, SyncStatus, UserProfile
from fincalc.domain.scoring import RecommendationResult
from fincalc.infrastructure.database.models import (
    BankProductRecord,
    BankRecord,
    RecommendationRecord,
    UserProfileRecord,
)
from fincalc.utils.date_utils import parse_timestamp

PROFILE_FIELDS = (
    "monthly_income",
    "credit_score",
    "employment_type",
    "region",
    "age_range",
    "risk_tolerance",
    "preferred_banks",
    "blacklisted_banks",
    "product_interests",
    "session_count",
    "conversion_count",
    "last_active",
    "updated_at",
)


def profile_from_record(record: UserProfileRecord) -> UserProfile:
    """Convert a stored row to a domain profile; SQLite drops tzinfo so timestamps are re-anchored to UTC"""
    return UserProfile(
        id=record.id,
        user_id=record.user_id,
        monthly_income=record.monthly_income,
        credit_score=record.credit_score,
        employment_type=record.employment_type,
        region=record.region,
        age_range=record.age_range,
        risk_tolerance=record.risk_tolerance,
        preferred_banks=list(record.preferred_banks or []),
        blacklisted_banks=list(record.blacklisted_banks or []),
        calculation_history=[CalculationHistoryItem.model_validate(h) for h in record.calculation_history or []],
        product_interests=list(record.product_interests or []),
        session_count=record.session_count,
        conversion_count=record.conversion_count,
        last_active=parse_timestamp(record.last_active),
        created_at=parse_timestamp(record.created_at),
        updated_at=parse_timestamp(record.updated_at),
        sync_status=SyncStatus.SYNCED,
    )


def product_from_record(record: BankProductRecord) -> BankProduct:
    bank = None
    if record.bank is not None:
        bank = Bank(
            id=record.bank.id,
            name=record.bank.name,
            short_name=record.bank.short_name,
            overall_rating=record.bank.overall_rating,
            is_partner=record.bank.is_partner,
            commission_rate=record.bank.commission_rate,
        )

    return BankProduct(
        id=record.id,
        bank_id=record.bank_id,
        product_type=record.product_type,
        name=record.name,
        description=record.description,
        interest_rate=record.interest_rate,
        promotional_rate=record.promotional_rate,
        min_amount=record.min_amount,
        max_amount=record.max_amount,
        min_term=record.min_term,
        max_term=record.max_term,
        fees=dict(record.fees or {}),
        requirements=ProductRequirements.model_validate(record.requirements or {}),
        available_regions=list(record.available_regions or ["all"]),
        is_active=record.is_active,
        is_featured=record.is_featured,
        priority=record.priority,
        bank=bank,
    )


class ProfileRepository:
    """Repository for remote user profiles"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_user_id(self, user_id: str) -> Optional[UserProfileRecord]:
        return self.db.query(UserProfileRecord).filter(UserProfileRecord.user_id == user_id).first()

    def create_profile(self, profile: UserProfile) -> UserProfileRecord:
        """Insert a profile row; the domain id is kept so local and remote copies agree"""
        record = UserProfileRecord(
            id=profile.id,
            user_id=profile.user_id,
            created_at=profile.created_at,
        )
        self._apply(record, profile)
        self.db.add(record)
        self.db.flush()
        return record

    def update_profile(self, record: UserProfileRecord, profile: UserProfile) -> UserProfileRecord:
        self._apply(record, profile)
        self.db.flush()
        return record

    def _apply(self, record: UserProfileRecord, profile: UserProfile) -> None:
        for name in PROFILE_FIELDS:
            setattr(record, name, getattr(profile, name))
        record.calculation_history = [h.model_dump(mode="json") for h in profile.calculation_history]


class ProductRepository:
    """Repository for the read-only bank product catalog"""

    def __init__(self, db: Session):
        self.db = db

    def get_active_products(self, product_type: str) -> List[BankProduct]:
        records = (
            self.db.query(BankProductRecord)
            .options(joinedload(BankProductRecord.bank))
            .filter(BankProductRecord.product_type == product_type)
            .filter(BankProductRecord.is_active.is_(True))
            .all()
        )
        return [product_from_record(r) for r in records]

    def create_bank(self, bank: Bank) -> BankRecord:
        record = BankRecord(**bank.model_dump())
        self.db.add(record)
        self.db.flush()
        return record

    def create_product(self, product: BankProduct) -> BankProductRecord:
        record = BankProductRecord(
            **product.model_dump(exclude={"bank", "requirements"}),
            requirements=product.requirements.model_dump(exclude_none=True),
        )
        self.db.add(record)
        self.db.flush()
        return record


class RecommendationRepository:
    """Repository for served recommendations and their feedback timestamps"""

    def __init__(self, db: Session):
        self.db = db

    def create_recommendations(
        self,
        user_id: str,
        results: List[RecommendationResult],
        context: Dict[str, Any],
    ) -> List[RecommendationRecord]:
        records = [
            RecommendationRecord(
                id=result.id,
                user_id=user_id,
                product_id=result.product.id,
                score=result.score,
                reasoning=result.reasoning,
                context=context,
            )
            for result in results
        ]
        self.db.add_all(records)
        self.db.flush()
        return records

    def get_recommendation(self, recommendation_id: str) -> Optional[RecommendationRecord]:
        return self.db.query(RecommendationRecord).filter(RecommendationRecord.id == recommendation_id).first()

    def get_recommendations_by_user(self, user_id: str, limit: int = 10) -> List[RecommendationRecord]:
        """Most recent recommendations served to a user"""
        return (
            self.db.query(RecommendationRecord)
            .filter(RecommendationRecord.user_id == user_id)
            .order_by(RecommendationRecord.created_at.desc())
            .limit(limit)
            .all()
        )

    def mark_feedback(self, record: RecommendationRecord, feedback: str, at: datetime) -> RecommendationRecord:
        """Stamp clicked_at, dismissed_at or applied_at"""
        setattr(record, f"{feedback}_at", at)
        self.db.flush()
        return record
