"""User profile tracking and behavior analysis endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from fincalc.api.dependencies import get_profile_store, get_request_id
from fincalc.api.v1.schemas import BehaviorResponse, ProfileResponse, TrackCalculationRequest
from fincalc.domain.exceptions import ProfileStoreError
from fincalc.domain.profiles import CalculationData, UserProfile
from fincalc.services.profile_store import UserProfileStore

logger = logging.getLogger(__name__)

router = APIRouter()


def to_profile_response(profile: UserProfile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        user_id=profile.user_id,
        region=profile.region,
        product_interests=profile.product_interests,
        session_count=profile.session_count,
        conversion_count=profile.conversion_count,
        history_size=len(profile.calculation_history),
        last_active=profile.last_active,
        sync_status=profile.sync_status,
    )


@router.post("/profiles/{user_id}/calculations", response_model=ProfileResponse)
def track_calculation(
    user_id: str,
    request_body: TrackCalculationRequest,
    request: Request,
    store: UserProfileStore = Depends(get_profile_store),
):
    """Record a finished calculation, creating the profile on first use"""
    request_id = get_request_id(request)

    try:
        profile = store.track_calculation(
            user_id,
            CalculationData(
                calculator_type=request_body.calculator_type,
                parameters=request_body.parameters,
                result=request_body.result,
                timestamp=request_body.timestamp,
                session_id=request_body.session_id,
            ),
        )
    except ProfileStoreError as e:
        logger.error(f"Profile store unavailable: {e}", extra={"request_id": request_id, "user_id": user_id})
        raise HTTPException(status_code=503, detail="Profile store unavailable")

    return to_profile_response(profile)


@router.get("/profiles/{user_id}/behavior", response_model=BehaviorResponse)
def get_behavior(user_id: str, store: UserProfileStore = Depends(get_profile_store)):
    """Behavior summary; unknown users get the neutral default analysis"""
    return BehaviorResponse.model_validate(store.analyze_user_behavior(user_id))
