"""SQLAlchemy ORM models for the remote profile store, product catalog and key-value medium"""

import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class UserProfileRecord(Base):
    """Remote copy of a user profile; one row per user_id"""

    __tablename__ = "user_profiles"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=False, unique=True, index=True)
    monthly_income = Column(Float, nullable=True)
    credit_score = Column(Integer, nullable=True)
    employment_type = Column(Text, nullable=True)
    region = Column(Text, nullable=True)
    age_range = Column(Text, nullable=True)
    risk_tolerance = Column(Text, nullable=True)
    preferred_banks = Column(JSON, nullable=False, default=list)
    blacklisted_banks = Column(JSON, nullable=False, default=list)
    calculation_history = Column(JSON, nullable=False, default=list)
    product_interests = Column(JSON, nullable=False, default=list)
    session_count = Column(Integer, nullable=False, default=1)
    conversion_count = Column(Integer, nullable=False, default=0)
    last_active = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class BankRecord(Base):
    __tablename__ = "banks"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(Text, nullable=False)
    short_name = Column(Text, nullable=False, default="")
    overall_rating = Column(Float, nullable=True)
    is_partner = Column(Boolean, nullable=False, default=False)
    commission_rate = Column(Float, nullable=True)

    products = relationship("BankProductRecord", back_populates="bank")


class BankProductRecord(Base):
    """Product offer from a partner bank"""

    __tablename__ = "bank_products"

    id = Column(String(36), primary_key=True, default=_uuid)
    bank_id = Column(String(36), ForeignKey("banks.id"), nullable=False, index=True)
    product_type = Column(Text, nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    interest_rate = Column(Float, nullable=False)
    promotional_rate = Column(Float, nullable=True)
    min_amount = Column(Float, nullable=True)
    max_amount = Column(Float, nullable=True)
    min_term = Column(Integer, nullable=True)
    max_term = Column(Integer, nullable=True)
    fees = Column(JSON, nullable=False, default=dict)
    requirements = Column(JSON, nullable=False, default=dict)
    available_regions = Column(JSON, nullable=False, default=lambda: ["all"])
    is_active = Column(Boolean, nullable=False, default=True)
    is_featured = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=0)

    bank = relationship("BankRecord", back_populates="products")


class RecommendationRecord(Base):
    """Served recommendation kept for analytics and feedback learning"""

    __tablename__ = "recommendations"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(Text, nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("bank_products.id"), nullable=False)
    score = Column(Float, nullable=False)
    reasoning = Column(JSON, nullable=False, default=list)
    context = Column(JSON, nullable=False, default=dict)
    recommendation_type = Column(Text, nullable=False, default="automatic")
    source = Column(Text, nullable=False, default="calculator")
    clicked_at = Column(DateTime(timezone=True), nullable=True)
    dismissed_at = Column(DateTime(timezone=True), nullable=True)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    product = relationship("BankProductRecord")


class KeyValueRecord(Base):
    """Durable key-value medium backing SQLStorage"""

    __tablename__ = "kv_store"

    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
