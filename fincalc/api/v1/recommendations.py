"""Bank product recommendation endpoints"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from fincalc.api.dependencies import get_recommendation_service, get_request_id
from fincalc.api.v1.schemas import (
    CrossRecommendationSchema,
    FeedbackRequest,
    FeedbackResponse,
    RecommendationRequest,
    RecommendationSchema,
)
from fincalc.domain.exceptions import ProfileStoreError
from fincalc.domain.scoring import RecommendationContext
from fincalc.services.recommendations import RecommendationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/recommendations", response_model=List[RecommendationSchema])
def get_recommendations(
    request_body: RecommendationRequest,
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Products ranked for the user and the calculator they just used"""
    context = RecommendationContext(
        calculation_type=request_body.calculation_type,
        calculation_params=request_body.calculation_params,
        user_location=request_body.user_location,
    )
    results = service.get_personalized_recommendations(request_body.user_id, context, request_body.limit)
    return [RecommendationSchema.model_validate(r) for r in results]


@router.get("/recommendations/cross/{user_id}", response_model=List[CrossRecommendationSchema])
def get_cross_recommendations(
    user_id: str,
    limit: int = Query(10, gt=0, le=50),
    service: RecommendationService = Depends(get_recommendation_service),
):
    suggestions = service.get_cross_calculator_recommendations(user_id, limit)
    return [CrossRecommendationSchema.model_validate(s) for s in suggestions]


@router.post("/recommendations/{recommendation_id}/feedback", response_model=FeedbackResponse)
def post_feedback(
    recommendation_id: str,
    request_body: FeedbackRequest,
    request: Request,
    service: RecommendationService = Depends(get_recommendation_service),
):
    request_id = get_request_id(request)

    try:
        recorded = service.learn_from_feedback(request_body.user_id, recommendation_id, request_body.feedback)
    except ProfileStoreError as e:
        logger.error(f"Profile store unavailable: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail="Profile store unavailable")

    if not recorded:
        raise HTTPException(status_code=404, detail="Recommendation not found")

    return FeedbackResponse(recommendation_id=recommendation_id, recorded=True)
