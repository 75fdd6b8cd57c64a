"""User profiles kept in the remote database and mirrored to a local key-value store"""

import logging
import uuid
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fincalc.config import settings
from fincalc.domain.exceptions import ProfileStoreError, StorageError
from fincalc.domain.profiles import (
    ANONYMOUS_USER_ID,
    CalculationData,
    CalculationHistoryItem,
    ProfileUpdateOptions,
    SyncStatus,
    UserBehaviorAnalysis,
    UserProfile,
    UserProfileData,
    analyze_behavior,
    infer_product_type,
    merge_history,
)
from fincalc.infrastructure.database.repositories import ProfileRepository, profile_from_record
from fincalc.infrastructure.storage import KeyValueStorage
from fincalc.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

LOCAL_KEY_PREFIX = "user_profile_"


class UserProfileStore:
    """
    Repository over two stores.

    The remote database is authoritative; every profile it returns is mirrored
    locally as `synced`. When the remote write fails the change is kept locally
    as `local_only`. `sync_profile` reconciles the two and marks `conflict` when
    a newer local-only copy would otherwise be overwritten.
    """

    def __init__(self, db: Session, local_storage: KeyValueStorage, history_limit: Optional[int] = None):
        self.db = db
        self.repository = ProfileRepository(db)
        self.local_storage = local_storage
        self.history_limit = history_limit or settings.profile_history_limit

    def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        """Remote lookup; a miss or a remote failure falls back to the local copy"""
        try:
            record = self.repository.get_by_user_id(user_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Remote profile lookup failed, using local copy", extra={"user_id": user_id, "error": str(e)})
            return self._get_local(user_id)

        if record is None:
            return self._get_local(user_id)

        profile = profile_from_record(record)
        self._save_local(profile)
        return profile

    def create_user_profile(self, data: UserProfileData) -> UserProfile:
        """
        Insert a new profile remotely, or keep it local-only when the remote store fails.

        Raises:
            ProfileStoreError: no user_id given, or neither store accepted the profile
        """
        if not data.user_id:
            raise ProfileStoreError("user_id is required to create a profile")

        now = utc_now()
        fields = data.model_dump(exclude_none=True, exclude={"calculation_history"})
        profile = UserProfile(
            id=str(uuid.uuid4()),
            **fields,
            calculation_history=(data.calculation_history or [])[: self.history_limit],
            last_active=now,
            created_at=now,
            updated_at=now,
        )

        try:
            self.repository.create_profile(profile)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Remote profile insert failed, keeping local copy", extra={"user_id": data.user_id, "error": str(e)})
            profile = profile.model_copy(update={"sync_status": SyncStatus.LOCAL_ONLY})
            self._save_local_or_raise(profile)
            return profile

        self._save_local(profile)
        return profile

    def update_user_profile(
        self,
        user_id: str,
        updates: UserProfileData,
        options: Optional[ProfileUpdateOptions] = None,
    ) -> UserProfile:
        """
        Merge updates into the current profile (creating it if absent) and write it to both stores.

        Raises:
            ProfileStoreError: neither store accepted the update
        """
        options = options or ProfileUpdateOptions()
        current = self.get_user_profile(user_id)
        if current is None:
            return self.create_user_profile(updates.model_copy(update={"user_id": user_id}))

        now = utc_now()
        changes = updates.model_dump(exclude_none=True, exclude={"user_id", "calculation_history", "id"})
        changes["updated_at"] = now
        if options.update_last_active:
            changes["last_active"] = now
        if options.increment_session:
            changes["session_count"] = current.session_count + 1
        if updates.calculation_history is not None:
            if options.merge_calculation_history:
                changes["calculation_history"] = merge_history(
                    updates.calculation_history, current.calculation_history, self.history_limit
                )
            else:
                changes["calculation_history"] = list(updates.calculation_history)[: self.history_limit]

        updated = current.model_copy(update=changes)

        try:
            record = self.repository.get_by_user_id(user_id)
            if record is None:
                self.repository.create_profile(updated)
            else:
                self.repository.update_profile(record, updated)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Remote profile update failed, keeping local copy", extra={"user_id": user_id, "error": str(e)})
            updated = updated.model_copy(update={"sync_status": SyncStatus.LOCAL_ONLY})
            self._save_local_or_raise(updated)
            return updated

        updated = updated.model_copy(update={"sync_status": SyncStatus.SYNCED})
        self._save_local(updated)
        return updated

    def track_calculation(self, user_id: str, calculation: CalculationData) -> UserProfile:
        """Record a finished calculation and note the product type it implies"""
        item = CalculationHistoryItem(
            calculator_type=calculation.calculator_type,
            parameters=calculation.parameters,
            result=calculation.result,
            timestamp=calculation.timestamp or utc_now(),
            session_id=calculation.session_id,
        )

        current = self.get_user_profile(user_id)
        interests = list(current.product_interests) if current else []
        product_type = infer_product_type(calculation.calculator_type)
        if product_type and product_type not in interests:
            interests.append(product_type)

        return self.update_user_profile(
            user_id,
            UserProfileData(calculation_history=[item], product_interests=interests),
            ProfileUpdateOptions(merge_calculation_history=True, update_last_active=True),
        )

    def analyze_user_behavior(self, user_id: str) -> UserBehaviorAnalysis:
        return analyze_behavior(self.get_user_profile(user_id))

    def record_conversion(self, user_id: str) -> Optional[UserProfile]:
        profile = self.get_user_profile(user_id)
        if profile is None:
            return None
        return self.update_user_profile(
            user_id,
            UserProfileData(conversion_count=profile.conversion_count + 1),
            ProfileUpdateOptions(update_last_active=True),
        )

    def get_or_create_anonymous_profile(self) -> UserProfile:
        profile = self.get_user_profile(ANONYMOUS_USER_ID)
        if profile is None:
            profile = self.create_user_profile(UserProfileData(user_id=ANONYMOUS_USER_ID))
        return profile

    def clear_local_profile(self, user_id: str) -> None:
        try:
            self.local_storage.remove_item(LOCAL_KEY_PREFIX + user_id)
        except StorageError as e:
            logger.error("Failed to clear local profile", extra={"user_id": user_id, "error": str(e)})

    def sync_profile(self, user_id: str) -> Optional[UserProfile]:
        """
        Reconcile local and remote copies.

        - remote present: it replaces the local copy, unless the local copy is
          local-only and newer, in which case the local copy is kept as `conflict`
        - remote absent: a local-only copy is pushed
        Returns None when there is nothing to sync or the remote store fails.
        """
        local = self._get_local(user_id)
        try:
            record = self.repository.get_by_user_id(user_id)
            if record is None:
                if local is None or local.sync_status != SyncStatus.LOCAL_ONLY:
                    return None
                self.repository.create_profile(local)
                self.db.commit()
                pushed = local.model_copy(update={"sync_status": SyncStatus.SYNCED})
                self._save_local(pushed)
                return pushed
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Profile sync failed", extra={"user_id": user_id, "error": str(e)})
            return None

        remote = profile_from_record(record)
        if local is not None and local.sync_status == SyncStatus.LOCAL_ONLY and local.updated_at > remote.updated_at:
            conflicted = local.model_copy(update={"sync_status": SyncStatus.CONFLICT})
            self._save_local(conflicted)
            logger.warning("Local profile changes conflict with remote copy", extra={"user_id": user_id})
            return conflicted

        self._save_local(remote)
        return remote

    def _get_local(self, user_id: str) -> Optional[UserProfile]:
        try:
            raw = self.local_storage.get_item(LOCAL_KEY_PREFIX + user_id)
            return UserProfile.model_validate_json(raw) if raw is not None else None
        except (StorageError, ValidationError) as e:
            logger.warning("Unreadable local profile", extra={"user_id": user_id, "error": str(e)})
            return None

    def _save_local(self, profile: UserProfile) -> bool:
        try:
            self.local_storage.set_item(LOCAL_KEY_PREFIX + profile.user_id, profile.model_dump_json())
            return True
        except StorageError as e:
            logger.error("Failed to save local profile", extra={"user_id": profile.user_id, "error": str(e)})
            return False

    def _save_local_or_raise(self, profile: UserProfile) -> None:
        if not self._save_local(profile):
            raise ProfileStoreError(f"Profile for {profile.user_id} could not be stored")
