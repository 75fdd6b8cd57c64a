"""Ordered fallback strategies for reference data when the remote source is unavailable"""

import json
import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from fincalc.config import settings
from fincalc.domain.exceptions import StorageError
from fincalc.domain.fees import conservative_fee_schedule_data, default_legal_document, degraded_fee_schedule_data
from fincalc.domain.models import ApiResponse, FeeScheduleData, LegalDocument
from fincalc.infrastructure.observability.logging import log_fallback
from fincalc.infrastructure.observability.metrics import fallback_attempts_counter
from fincalc.infrastructure.storage import KeyValueStorage
from fincalc.utils.date_utils import Clock, system_clock, utc_now

logger = logging.getLogger(__name__)

KNOWN_DATA_TYPES = ("fee_schedule", "legal_document", "search_results")
HISTORY_LIMIT = 100

DURABLE_FEE_SCHEDULE_KEY = "fallback_fee_schedule"
SESSION_FEE_SCHEDULE_KEY = "session_fee_schedule"
TIMESTAMP_SUFFIX = "_timestamp"
LEGAL_DOC_KEY_PREFIX = "fallback_legal_doc_"

# Payload shape per data type, checked whenever stored data is read back
PAYLOAD_MODELS: Dict[str, Type[BaseModel]] = {
    "fee_schedule": FeeScheduleData,
    "legal_document": LegalDocument,
}


def fallback_response(success: bool, data: Any = None, error: Optional[str] = None, cached: bool = False) -> ApiResponse:
    return ApiResponse(success=success, data=data, error=error, source="fallback", timestamp=utc_now(), cached=cached)


@dataclass
class FallbackAttempt:
    timestamp: int
    strategy: str
    success: bool


@dataclass
class FallbackAvailability:
    available: bool
    sources: List[str]
    oldest_data_age: float
    newest_data_age: float


@dataclass
class FallbackStatistics:
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    strategies_used: Dict[str, int] = field(default_factory=dict)
    data_types_requested: Dict[str, int] = field(default_factory=dict)


class FallbackDataProvider(ABC):
    """A place previously fetched data may still be read from"""

    source_name: str = "unknown"

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def get_data_age(self) -> float:
        """Age in milliseconds; infinity when unknown"""

    @abstractmethod
    def get_data(self) -> Any:
        ...


class StorageDataProvider(FallbackDataProvider):
    """
    Reads a payload and its `<key>_timestamp` sidecar from a key-value storage.

    Payloads that fail validation against `model` count as unavailable.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str,
        source_name: str,
        model: Optional[Type[BaseModel]] = None,
        clock: Clock = system_clock,
    ):
        self.storage = storage
        self.key = key
        self.source_name = source_name
        self.model = model
        self.clock = clock

    def is_available(self) -> bool:
        return self.get_data() is not None

    def get_data_age(self) -> float:
        try:
            raw = self.storage.get_item(self.key + TIMESTAMP_SUFFIX)
            return self.clock() - int(raw) if raw is not None else math.inf
        except (StorageError, ValueError):
            return math.inf

    def get_data(self) -> Any:
        try:
            raw = self.storage.get_item(self.key)
            if raw is None:
                return None
            return self.model.model_validate_json(raw) if self.model else json.loads(raw)
        except (StorageError, ValidationError, ValueError) as e:
            logger.warning("Discarding unreadable fallback data", extra={"key": self.key, "error": str(e)})
            return None


class FallbackStrategy(ABC):
    name: str
    priority: int  # 1 = tried first

    @abstractmethod
    def can_handle(self, data_type: str) -> bool:
        ...

    @abstractmethod
    async def execute(self, data_type: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        ...


class CachedDataStrategy(FallbackStrategy):
    """Freshest available provider data no older than max_data_age_ms"""

    name = "cached_data"
    priority = 1

    def __init__(self, providers: Dict[str, List[FallbackDataProvider]], max_data_age_ms: int):
        self.providers = providers
        self.max_data_age_ms = max_data_age_ms

    def can_handle(self, data_type: str) -> bool:
        return True

    async def execute(self, data_type: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        candidates = [(p.get_data_age(), p) for p in self.providers.get(data_type, []) if p.is_available()]
        candidates.sort(key=lambda pair: pair[0])

        for age, provider in candidates:
            if age > self.max_data_age_ms:
                break
            data = provider.get_data()
            if data is not None:
                return fallback_response(True, data=data, cached=True)

        return fallback_response(False, error="No cached data available within acceptable age limit")


class DefaultDataStrategy(FallbackStrategy):
    """Static conservative data shipped with the application"""

    name = "default_data"
    priority = 2

    def can_handle(self, data_type: str) -> bool:
        return data_type in ("fee_schedule", "legal_document")

    async def execute(self, data_type: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        if data_type == "fee_schedule":
            return fallback_response(True, data=conservative_fee_schedule_data())
        if data_type == "legal_document":
            return fallback_response(True, data=default_legal_document())
        return fallback_response(False, error=f"No default data available for type: {data_type}")


class GracefulDegradationStrategy(FallbackStrategy):
    """Minimal data that keeps callers working in a limited mode"""

    name = "graceful_degradation"
    priority = 3

    def can_handle(self, data_type: str) -> bool:
        return True

    async def execute(self, data_type: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        if data_type == "fee_schedule":
            return fallback_response(True, data=degraded_fee_schedule_data())
        if data_type == "search_results":
            return fallback_response(True, data=[])
        return fallback_response(False, error="No degraded data available")


class FallbackOrchestrator:
    """
    Tries registered strategies for a data type in ascending priority until one succeeds.

    Every attempt is recorded in a per-type history bounded to the last 100 entries.
    """

    def __init__(
        self,
        durable_storage: KeyValueStorage,
        session_storage: KeyValueStorage,
        max_data_age_ms: Optional[int] = None,
        graceful_degradation: Optional[bool] = None,
        notify_user: Optional[bool] = None,
        clock: Clock = system_clock,
    ):
        self.durable_storage = durable_storage
        self.session_storage = session_storage
        self.max_data_age_ms = max_data_age_ms if max_data_age_ms is not None else settings.fallback_max_data_age_ms
        self.graceful_degradation = (
            graceful_degradation if graceful_degradation is not None else settings.fallback_graceful_degradation
        )
        self.notify_user = notify_user if notify_user is not None else settings.fallback_notify_user
        self.clock = clock

        self.strategies: Dict[str, List[FallbackStrategy]] = {}
        self.data_providers: Dict[str, List[FallbackDataProvider]] = {}
        self._history: Dict[str, Deque[FallbackAttempt]] = {}

        self._register_defaults()

    def _register_defaults(self) -> None:
        self.register_strategy(CachedDataStrategy(self.data_providers, self.max_data_age_ms))
        self.register_strategy(DefaultDataStrategy())
        if self.graceful_degradation:
            self.register_strategy(GracefulDegradationStrategy())

        self.register_data_provider(
            "fee_schedule",
            StorageDataProvider(self.durable_storage, DURABLE_FEE_SCHEDULE_KEY, "durable", FeeScheduleData, self.clock),
        )
        self.register_data_provider(
            "fee_schedule",
            StorageDataProvider(self.session_storage, SESSION_FEE_SCHEDULE_KEY, "session", FeeScheduleData, self.clock),
        )

    def register_strategy(self, strategy: FallbackStrategy) -> None:
        """Attach a strategy to every known data type it handles; equal priorities keep registration order"""
        for data_type in KNOWN_DATA_TYPES:
            if strategy.can_handle(data_type):
                strategies = self.strategies.setdefault(data_type, [])
                strategies.append(strategy)
                strategies.sort(key=lambda s: s.priority)

    def register_data_provider(self, data_type: str, provider: FallbackDataProvider) -> None:
        self.data_providers.setdefault(data_type, []).append(provider)

    async def execute_fallback(self, data_type: str, context: Optional[Dict[str, Any]] = None) -> ApiResponse:
        strategies = self.strategies.get(data_type, [])
        if not strategies:
            return fallback_response(False, error=f"No fallback strategies available for data type: {data_type}")

        start_time = time.time()
        last_error: Optional[str] = None

        for strategy in strategies:
            logger.debug("Trying fallback strategy", extra={"strategy": strategy.name, "data_type": data_type})
            try:
                result = await strategy.execute(data_type, context)
            except Exception as e:  # strategies may be registered by callers
                logger.exception("Fallback strategy raised", extra={"strategy": strategy.name, "data_type": data_type})
                self._record_attempt(data_type, strategy.name, False)
                last_error = str(e) or type(e).__name__
                continue

            self._record_attempt(data_type, strategy.name, result.success)
            if result.success:
                result.strategy = strategy.name
                if self.notify_user:
                    logger.warning("Fallback data in use", extra={"strategy": strategy.name, "data_type": data_type})
                log_fallback(data_type, True, strategy.name, (time.time() - start_time) * 1000)
                return result
            last_error = result.error

        error = f"All fallback strategies failed. Last error: {last_error}"
        log_fallback(data_type, False, None, (time.time() - start_time) * 1000, error=error)
        return fallback_response(False, error=error)

    def store_fallback_data(self, data_type: str, data: Any, source: str = "api") -> None:
        """Keep a copy of fresh data for later fallback; failures are logged, never raised"""
        try:
            payload = data.model_dump_json() if isinstance(data, BaseModel) else json.dumps(data, ensure_ascii=False)
            timestamp = str(self.clock())

            if data_type == "fee_schedule":
                self.durable_storage.set_item(DURABLE_FEE_SCHEDULE_KEY, payload)
                self.durable_storage.set_item(DURABLE_FEE_SCHEDULE_KEY + TIMESTAMP_SUFFIX, timestamp)
                self.session_storage.set_item(SESSION_FEE_SCHEDULE_KEY, payload)
                self.session_storage.set_item(SESSION_FEE_SCHEDULE_KEY + TIMESTAMP_SUFFIX, timestamp)
            elif data_type == "legal_document":
                document_id = data.id if isinstance(data, LegalDocument) else (data or {}).get("id")
                if document_id:
                    key = f"{LEGAL_DOC_KEY_PREFIX}{document_id}"
                    self.durable_storage.set_item(key, payload)
                    self.durable_storage.set_item(key + TIMESTAMP_SUFFIX, timestamp)

            logger.info("Stored fallback data", extra={"data_type": data_type, "source": source})
        except (StorageError, TypeError, ValueError) as e:
            logger.error("Failed to store fallback data", extra={"data_type": data_type, "error": str(e)})

    def check_fallback_availability(self, data_type: str) -> FallbackAvailability:
        sources: List[str] = []
        ages: List[float] = []
        for provider in self.data_providers.get(data_type, []):
            if provider.is_available():
                sources.append(provider.source_name)
                ages.append(provider.get_data_age())

        return FallbackAvailability(
            available=bool(sources),
            sources=sources,
            oldest_data_age=max(ages) if ages else 0,
            newest_data_age=min(ages) if ages else 0,
        )

    def get_fallback_statistics(self) -> FallbackStatistics:
        stats = FallbackStatistics()
        for data_type, attempts in self._history.items():
            stats.data_types_requested[data_type] = len(attempts)
            for attempt in attempts:
                stats.total_attempts += 1
                if attempt.success:
                    stats.successful_attempts += 1
                else:
                    stats.failed_attempts += 1
                stats.strategies_used[attempt.strategy] = stats.strategies_used.get(attempt.strategy, 0) + 1
        return stats

    def get_history(self, data_type: str) -> List[FallbackAttempt]:
        return list(self._history.get(data_type, ()))

    def clear_fallback_history(self) -> None:
        self._history.clear()

    def cleanup_expired_fallback_data(self) -> int:
        """Remove durable `fallback_*` payloads whose timestamp sidecar is older than max_data_age_ms"""
        now = self.clock()
        removed = 0
        try:
            for key in self.durable_storage.keys_with_prefix("fallback_"):
                if not key.endswith(TIMESTAMP_SUFFIX):
                    continue
                try:
                    stored_at = int(self.durable_storage.get_item(key) or 0)
                except ValueError:
                    stored_at = 0
                if now - stored_at > self.max_data_age_ms:
                    data_key = key[: -len(TIMESTAMP_SUFFIX)]
                    self.durable_storage.remove_item(key)
                    self.durable_storage.remove_item(data_key)
                    removed += 1
                    logger.info("Removed expired fallback data", extra={"key": data_key})
        except StorageError as e:
            logger.error("Failed to clean up fallback data", extra={"error": str(e)})
        return removed

    def _record_attempt(self, data_type: str, strategy: str, success: bool) -> None:
        history = self._history.setdefault(data_type, deque(maxlen=HISTORY_LIMIT))
        history.append(FallbackAttempt(timestamp=self.clock(), strategy=strategy, success=success))
        fallback_attempts_counter.labels(
            data_type=data_type, strategy=strategy, outcome="success" if success else "failure"
        ).inc()
