"""Personalized and cross-calculator bank product recommendations"""

import logging
import time
from dataclasses import asdict
from typing import Dict, List, Literal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fincalc.domain.cross_calculator import (
    CrossCalculatorRecommendation,
    analyze_calculator_usage,
    build_cross_recommendations,
)
from fincalc.domain.products import BankProduct
from fincalc.domain.profiles import CalculationData, UserProfile, analyze_behavior
from fincalc.domain.scoring import (
    RecommendationContext,
    RecommendationResult,
    filter_by_region,
    rank_general,
    rank_products,
)
from fincalc.infrastructure.database.repositories import ProductRepository, RecommendationRepository
from fincalc.infrastructure.observability.logging import log_recommendations
from fincalc.infrastructure.observability.metrics import record_recommendations
from fincalc.services.profile_store import UserProfileStore
from fincalc.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

Feedback = Literal["clicked", "dismissed", "applied"]

CROSS_CALCULATOR_TYPES = ("mortgage", "deposit", "credit", "insurance")


class RecommendationService:
    """Fetches products, ranks them for a user and keeps a record of what was served"""

    def __init__(self, db: Session, profile_store: UserProfileStore):
        self.db = db
        self.profile_store = profile_store
        self.products = ProductRepository(db)
        self.recommendations = RecommendationRepository(db)

    def get_personalized_recommendations(
        self,
        user_id: str,
        context: RecommendationContext,
        limit: int = 5,
    ) -> List[RecommendationResult]:
        """
        Ranked products for the calculator the user just used.

        Users without a profile get general recommendations instead.
        """
        start_time = time.time()
        profile = self.profile_store.get_user_profile(user_id)

        if profile is None:
            results = rank_general(self._fetch_products(context.calculation_type), limit)
            record_recommendations("general", results[0].score if results else None)
            log_recommendations(
                user_id, context.calculation_type, len(results), None, False, (time.time() - start_time) * 1000
            )
            return results

        results = self._rank_for_profile(profile, context, limit)
        self._save_recommendations(user_id, results, context)

        top_score = results[0].score if results else None
        record_recommendations("personalized", top_score)
        log_recommendations(
            user_id, context.calculation_type, len(results), top_score, True, (time.time() - start_time) * 1000
        )
        return results

    def get_cross_calculator_recommendations(
        self,
        user_id: str,
        limit: int = 10,
    ) -> List[CrossCalculatorRecommendation]:
        """Suggestions spanning calculators; empty unless the user has used at least two"""
        profile = self.profile_store.get_user_profile(user_id)
        if profile is None or not profile.calculation_history:
            return []

        usage = analyze_calculator_usage(profile.calculation_history)
        if len(usage.unique_calculators) < 2:
            return []

        per_calculator: Dict[str, List[RecommendationResult]] = {}
        for calculator_type, latest in usage.latest_by_type.items():
            if calculator_type not in CROSS_CALCULATOR_TYPES:
                continue
            context = RecommendationContext(
                calculation_type=calculator_type,
                calculation_params=dict(latest.parameters),
                user_location=profile.region,
                session_history=[h.calculator_type for h in profile.calculation_history],
            )
            per_calculator[calculator_type] = self._rank_for_profile(profile, context, 3)

        suggestions = build_cross_recommendations(per_calculator, usage, limit)
        record_recommendations("cross", suggestions[0].relevance_score if suggestions else None)
        return suggestions

    def learn_from_feedback(self, user_id: str, recommendation_id: str, feedback: Feedback) -> bool:
        """
        Stamp the served recommendation with the user's reaction.

        An `applied` recommendation also counts as a conversion on the profile.
        Returns False when the recommendation is unknown or the store fails.
        """
        try:
            record = self.recommendations.get_recommendation(recommendation_id)
            if record is None or record.user_id != user_id:
                return False
            self.recommendations.mark_feedback(record, feedback, utc_now())
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to record feedback", extra={"recommendation_id": recommendation_id, "error": str(e)})
            return False

        if feedback == "applied":
            self.profile_store.record_conversion(user_id)
        return True

    def track_calculation(self, user_id: str, calculation: CalculationData) -> UserProfile:
        return self.profile_store.track_calculation(user_id, calculation)

    def _rank_for_profile(
        self,
        profile: UserProfile,
        context: RecommendationContext,
        limit: int,
    ) -> List[RecommendationResult]:
        behavior = analyze_behavior(profile)
        products = filter_by_region(
            self._fetch_products(context.calculation_type),
            context.user_location or profile.region,
        )
        return rank_products(products, profile, behavior, context, limit)

    def _fetch_products(self, product_type: str) -> List[BankProduct]:
        try:
            return self.products.get_active_products(product_type)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to fetch products", extra={"product_type": product_type, "error": str(e)})
            return []

    def _save_recommendations(
        self,
        user_id: str,
        results: List[RecommendationResult],
        context: RecommendationContext,
    ) -> None:
        """Persist a copy for analytics; failures never reach the caller"""
        if not results:
            return
        try:
            self.recommendations.create_recommendations(user_id, results, asdict(context))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Failed to save recommendations", extra={"user_id": user_id, "error": str(e)})
