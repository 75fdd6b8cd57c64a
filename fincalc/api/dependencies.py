"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from fincalc.infrastructure.database.session import get_db
from fincalc.services.fee_data import FeeDataManager
from fincalc.services.profile_store import UserProfileStore
from fincalc.services.recommendations import RecommendationService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_fee_data_manager(request: Request) -> FeeDataManager:
    """Provide the application's fee data manager (built once per app)"""
    return request.app.state.fee_data_manager


def get_profile_store(request: Request, db: Session = Depends(get_db)) -> UserProfileStore:
    """Provide a profile store bound to the request's database session"""
    return UserProfileStore(db, request.app.state.profile_storage)


def get_recommendation_service(
    db: Session = Depends(get_db),
    profile_store: UserProfileStore = Depends(get_profile_store),
) -> RecommendationService:
    return RecommendationService(db, profile_store)
