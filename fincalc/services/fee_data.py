"""Court-fee reference data with online/offline modes, freshness policy and validation"""

import hashlib
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Callable, List, Optional

from pydantic import TypeAdapter, ValidationError

from fincalc.config import settings
from fincalc.domain.exceptions import RemoteDataError, StorageError
from fincalc.domain.fees import (
    ARBITRATION_RULES,
    CURRENT_VERSION,
    CURRENT_VERSION_DATE,
    EXEMPTION_CATEGORIES,
    GENERAL_JURISDICTION_RULES,
    LEGAL_SOURCE,
    create_schedule_from_rules,
    find_rule_range_violations,
    get_fee_rules,
    validate_rule_ranges,
)
from fincalc.domain.models import (
    COURT_TYPES,
    CourtType,
    DataFreshnessStatus,
    DataVersionInfo,
    ExemptionCategory,
    FeeSchedule,
    FeeScheduleData,
)
from fincalc.infrastructure.cache import KeyValueCache
from fincalc.infrastructure.clients.fee_data import FeeDataClient
from fincalc.infrastructure.fallback import FallbackOrchestrator
from fincalc.infrastructure.observability.metrics import record_network_mode
from fincalc.infrastructure.storage import KeyValueStorage
from fincalc.utils.date_utils import MS_PER_DAY, Clock, parse_timestamp, system_clock

logger = logging.getLogger(__name__)

SCHEDULE_CACHE_PREFIX = "court_fee_data_"
EXEMPTIONS_CACHE_KEY = "court_fee_exemptions"
OFFLINE_MODE_KEY = "court_fee_offline_mode"
VERSION_KEY = "court_fee_version"
LAST_UPDATE_KEY = "court_fee_last_update"

DATA_FRESHNESS_DAYS = 30

_exemption_list = TypeAdapter(List[ExemptionCategory])

NetworkListener = Callable[[bool], None]


class NetworkMonitor:
    """Connectivity state with change notifications"""

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[NetworkListener] = []

    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: NetworkListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it"""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Record a connectivity change and notify listeners when it differs from the last state"""
        if online == self._online:
            return
        self._online = online
        for listener in list(self._listeners):
            listener(online)


@dataclass
class OfflineCacheStatistics:
    total_size: int
    schedules_count: int
    exemptions_count: int
    last_cache_update: Optional[datetime]
    is_offline_ready: bool


def schedule_from_data(data: FeeScheduleData, court_type: CourtType) -> Optional[FeeSchedule]:
    """Schedule for one court type out of a full payload; None when the payload has no rules for it"""
    rules = data.court_types.get(court_type)
    if not rules:
        return None
    return FeeSchedule(
        court_type=court_type,
        version=data.version,
        last_updated=datetime.combine(data.effective_date, time.min, tzinfo=timezone.utc),
        rules=rules,
    )


class FeeDataManager:
    """
    Serves fee schedules from the remote endpoint when online and from cache,
    fallback data or the static tables otherwise.

    Mode changes arrive through `handle_network_change`; the last known mode is
    persisted in durable storage and restored by `initialize()`.
    """

    def __init__(
        self,
        cache: KeyValueCache,
        fallback: FallbackOrchestrator,
        client: FeeDataClient,
        durable_storage: KeyValueStorage,
        network_monitor: Optional[NetworkMonitor] = None,
        schedule_ttl_ms: Optional[int] = None,
        clock: Clock = system_clock,
    ):
        self.cache = cache
        self.fallback = fallback
        self.client = client
        self.durable_storage = durable_storage
        self.network_monitor = network_monitor
        self.schedule_ttl_ms = schedule_ttl_ms if schedule_ttl_ms is not None else settings.schedule_cache_ttl_ms
        self.clock = clock
        self._offline = False
        self._unsubscribe: Optional[Callable[[], None]] = None

        self.cache.set_refresh_callback(self._refresh_cache_entry)

    async def initialize(self) -> None:
        """Restore the persisted mode, seed the cache, probe connectivity and subscribe to changes"""
        self._offline = self._read("offline mode", OFFLINE_MODE_KEY) == "true"

        for court_type in COURT_TYPES:
            if await self._get_cached_schedule(court_type) is None:
                await self._cache_schedule(court_type, create_schedule_from_rules(court_type, self.get_last_update_date()))
        if not await self.get_cached_exemptions():
            await self._cache_exemptions()

        if self.network_monitor is not None:
            if not self.network_monitor.is_online():
                self._set_offline(True)
            self._unsubscribe = self.network_monitor.subscribe(self.handle_network_change)

        record_network_mode(not self._offline)
        logger.info("Fee data manager initialized", extra={"offline": self._offline})

    def handle_network_change(self, is_online: bool) -> None:
        self._set_offline(not is_online)
        logger.info("Network state changed", extra={"online": is_online})

    def is_in_offline_mode(self) -> bool:
        return self._offline

    async def get_current_schedule(self, court_type: CourtType) -> FeeSchedule:
        """
        Online: remote fetch; on failure the cached schedule, then previously
        fetched fallback data, then the static tables.
        Offline: cache/static directly. Never raises.
        """
        try:
            if self._offline:
                return await self._get_offline_schedule(court_type)

            try:
                response = await self.client.get_fee_schedule()
            except RemoteDataError as e:
                logger.warning("Fee data fetch failed, using cached schedule", extra={"error": str(e)})
            else:
                schedule = schedule_from_data(response.data, court_type)
                if schedule is not None:
                    await self._cache_schedule(court_type, schedule)
                    self.fallback.store_fallback_data("fee_schedule", response.data, source=response.source)
                    return schedule
                logger.warning("Fee data has no rules for court type", extra={"court_type": court_type})

            cached = await self._get_valid_cached_schedule(court_type)
            if cached is not None:
                return cached

            # Only stored remote copies; conservative defaults never replace the static tables
            result = await self.fallback.execute_fallback("fee_schedule", {"court_type": court_type})
            if result.success and result.cached and isinstance(result.data, FeeScheduleData):
                schedule = schedule_from_data(result.data, court_type)
                if schedule is not None and validate_rule_ranges(schedule.rules):
                    return schedule

            return await self._get_offline_schedule(court_type)
        except Exception:  # the calculator must always get a schedule
            logger.exception("Failed to resolve fee schedule", extra={"court_type": court_type})
            return create_schedule_from_rules(court_type, self.get_last_update_date())

    async def check_for_updates(self) -> bool:
        if self._offline:
            return False

        try:
            check = await self.client.check_for_updates(CURRENT_VERSION)
            return check.has_updates
        except RemoteDataError as e:
            logger.warning("Update check failed, comparing stored version", extra={"error": str(e)})

        return self._read("version", VERSION_KEY) != CURRENT_VERSION

    async def update_schedule(self, court_type: CourtType) -> FeeSchedule:
        if self._offline:
            logger.info("Offline: schedule update unavailable, serving cached data")
            return await self._get_offline_schedule(court_type)

        try:
            response = await self.client.get_fee_schedule()
        except RemoteDataError as e:
            logger.warning("Schedule update failed", extra={"court_type": court_type, "error": str(e)})
            return await self._get_offline_schedule(court_type)

        schedule = schedule_from_data(response.data, court_type) or create_schedule_from_rules(court_type)
        await self._cache_schedule(court_type, schedule)
        self.fallback.store_fallback_data("fee_schedule", response.data, source=response.source)
        self._write("version", VERSION_KEY, CURRENT_VERSION)
        self._write("last update", LAST_UPDATE_KEY, self._now().isoformat())
        return schedule

    def get_last_update_date(self) -> datetime:
        raw = self._read("last update", LAST_UPDATE_KEY)
        if not raw:
            return CURRENT_VERSION_DATE
        try:
            return parse_timestamp(raw)
        except ValueError:
            logger.warning("Unparsable last update timestamp", extra={"value": raw})
            return CURRENT_VERSION_DATE

    def check_data_freshness(self) -> DataFreshnessStatus:
        last_update = self.get_last_update_date()
        elapsed_ms = self.clock() - last_update.timestamp() * 1000
        # Future timestamps (clock skew, tests) count as fresh
        days_since_update = max(0, math.floor(elapsed_ms / MS_PER_DAY))

        warning_message = None
        if days_since_update > 180:
            warning_message = (
                f"Критическое предупреждение! Данные сильно устарели ({days_since_update} дней). "
                "Расчеты могут быть неточными."
            )
        elif days_since_update > 60:
            warning_message = (
                f"Внимание! Данные о госпошлинах устарели ({days_since_update} дней). "
                "Обязательно проверьте актуальные тарифы в НК РФ."
            )
        elif days_since_update > DATA_FRESHNESS_DAYS:
            warning_message = (
                f"Данные о госпошлинах обновлялись {days_since_update} дней назад. "
                "Рекомендуется проверить актуальность тарифов."
            )

        return DataFreshnessStatus(
            is_up_to_date=days_since_update <= DATA_FRESHNESS_DAYS,
            last_update_date=last_update,
            days_since_update=days_since_update,
            warning_message=warning_message,
        )

    def get_data_version_info(self) -> DataVersionInfo:
        return DataVersionInfo(
            version=CURRENT_VERSION,
            release_date=CURRENT_VERSION_DATE,
            source=LEGAL_SOURCE,
            checksum=self.calculate_data_checksum(),
        )

    @staticmethod
    def calculate_data_checksum() -> str:
        payload = json.dumps(
            [[r.model_dump() for r in GENERAL_JURISDICTION_RULES], [r.model_dump() for r in ARBITRATION_RULES]],
            ensure_ascii=False,
            sort_keys=True,
        )
        return hashlib.sha256((payload + CURRENT_VERSION).encode("utf-8")).hexdigest()[:16]

    def validate_data_integrity(self) -> bool:
        """Both static rule sets exist and form contiguous ranges"""
        for court_type in COURT_TYPES:
            violations = find_rule_range_violations(get_fee_rules(court_type))
            if violations:
                logger.error("Fee rules failed validation", extra={"court_type": court_type, "violations": violations})
                return False
        return True

    async def get_cached_exemptions(self) -> List[ExemptionCategory]:
        data = await self.cache.get(EXEMPTIONS_CACHE_KEY)
        if data is None:
            return []
        try:
            return _exemption_list.validate_python(data)
        except ValidationError:
            logger.warning("Discarding invalid cached exemptions")
            return []

    async def get_cache_statistics(self) -> OfflineCacheStatistics:
        now = self.clock()
        total_size = 0
        schedules_count = 0
        exemptions_count = 0
        last_update_ms = 0

        for court_type in COURT_TYPES:
            metadata = await self.cache.get_metadata(SCHEDULE_CACHE_PREFIX + court_type)
            if metadata is not None and not metadata.is_expired(now):
                schedules_count += 1
                total_size += metadata.size
                last_update_ms = max(last_update_ms, metadata.timestamp)

        metadata = await self.cache.get_metadata(EXEMPTIONS_CACHE_KEY)
        if metadata is not None and not metadata.is_expired(now):
            exemptions_count = len(await self.get_cached_exemptions())
            total_size += metadata.size

        return OfflineCacheStatistics(
            total_size=total_size,
            schedules_count=schedules_count,
            exemptions_count=exemptions_count,
            last_cache_update=datetime.fromtimestamp(last_update_ms / 1000, tz=timezone.utc) if last_update_ms else None,
            is_offline_ready=schedules_count >= 2 and exemptions_count > 0,
        )

    async def clear_offline_cache(self) -> None:
        for court_type in COURT_TYPES:
            await self.cache.delete(SCHEDULE_CACHE_PREFIX + court_type)
        await self.cache.delete(EXEMPTIONS_CACHE_KEY)
        try:
            self.durable_storage.remove_item(OFFLINE_MODE_KEY)
        except StorageError as e:
            logger.error("Failed to clear offline mode flag", extra={"error": str(e)})
        logger.info("Offline cache cleared")

    async def refresh_offline_cache(self) -> None:
        """Re-fetch both schedules and re-cache exemptions regardless of the current mode"""
        was_offline = self._offline
        self._offline = False
        try:
            for court_type in COURT_TYPES:
                await self.update_schedule(court_type)
            await self._cache_exemptions()
        finally:
            self._offline = was_offline
        logger.info("Offline cache refreshed")

    async def dispose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.cache.dispose()

    async def _get_offline_schedule(self, court_type: CourtType) -> FeeSchedule:
        cached = await self._get_valid_cached_schedule(court_type)
        if cached is not None:
            return cached

        logger.warning("Serving static fee schedule", extra={"court_type": court_type})
        schedule = create_schedule_from_rules(court_type, self.get_last_update_date())
        await self._cache_schedule(court_type, schedule)
        return schedule

    async def _get_cached_schedule(self, court_type: CourtType) -> Optional[FeeSchedule]:
        data = await self.cache.get(SCHEDULE_CACHE_PREFIX + court_type)
        if data is None:
            return None
        try:
            return FeeSchedule.model_validate(data)
        except ValidationError:
            logger.warning("Discarding invalid cached schedule", extra={"court_type": court_type})
            return None

    async def _get_valid_cached_schedule(self, court_type: CourtType) -> Optional[FeeSchedule]:
        cached = await self._get_cached_schedule(court_type)
        if cached is None or not validate_rule_ranges(cached.rules):
            return None
        return cached

    async def _cache_schedule(self, court_type: CourtType, schedule: FeeSchedule) -> None:
        try:
            await self.cache.set(
                SCHEDULE_CACHE_PREFIX + court_type,
                schedule.model_dump(mode="json"),
                self.schedule_ttl_ms,
                tags=["fee_schedule", court_type],
                source="fee_data_manager",
                version=schedule.version,
            )
        except StorageError as e:
            logger.error("Failed to cache fee schedule", extra={"court_type": court_type, "error": str(e)})

    async def _cache_exemptions(self) -> None:
        try:
            await self.cache.set(
                EXEMPTIONS_CACHE_KEY,
                [e.model_dump(mode="json") for e in EXEMPTION_CATEGORIES],
                tags=["exemptions"],
                source="fee_data_manager",
                version=CURRENT_VERSION,
            )
        except StorageError as e:
            logger.error("Failed to cache exemptions", extra={"error": str(e)})

    async def _refresh_cache_entry(self, key: str) -> Optional[dict]:
        """Refresh callback for near-expiry schedule entries; None leaves the entry as is"""
        if self._offline or not key.startswith(SCHEDULE_CACHE_PREFIX):
            return None

        court_type = key[len(SCHEDULE_CACHE_PREFIX):]
        if court_type not in COURT_TYPES:
            return None

        response = await self.client.get_fee_schedule()
        schedule = schedule_from_data(response.data, court_type)
        return schedule.model_dump(mode="json") if schedule else None

    def _set_offline(self, offline: bool) -> None:
        self._offline = offline
        self._write("offline mode", OFFLINE_MODE_KEY, "true" if offline else "false")
        record_network_mode(not offline)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock() / 1000, tz=timezone.utc)

    def _read(self, label: str, key: str) -> Optional[str]:
        try:
            return self.durable_storage.get_item(key)
        except StorageError as e:
            logger.error("Failed to read %s", label, extra={"error": str(e)})
            return None

    def _write(self, label: str, key: str, value: str) -> None:
        try:
            self.durable_storage.set_item(key, value)
        except StorageError as e:
            logger.error("Failed to persist %s", label, extra={"error": str(e)})
