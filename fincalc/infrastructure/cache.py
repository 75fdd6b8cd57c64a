"""TTL key-value cache with access metadata, tag/source lookup and background refresh"""

import asyncio
import json
import logging
from collections import deque
from contextlib import suppress
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from pydantic import ValidationError

from fincalc.config import settings
from fincalc.domain.exceptions import StorageError, StorageQuotaExceededError
from fincalc.domain.models import CacheEntry, CacheMetadata, CacheStatistics
from fincalc.infrastructure.observability.metrics import (
    cache_errors_counter,
    cache_refresh_counter,
    cache_requests_counter,
)
from fincalc.infrastructure.storage import KeyValueStorage
from fincalc.utils.date_utils import Clock, MS_PER_DAY, system_clock

logger = logging.getLogger(__name__)

CACHE_PREFIX = "enhanced_cache_"
DEFAULT_REFRESH_TTL_MS = MS_PER_DAY

RefreshCallback = Callable[[str], Awaitable[Any]]


class RefreshScheduler:
    """
    Bounded-concurrency background refresher.

    Keys beyond `max_concurrent` wait in a FIFO queue (deduplicated). A slot freed
    by a finished refresh pulls the next key, and a fixed-interval loop started
    with `start()` drains whatever is left. `stop()` cancels the loop and any
    refresh still running.
    """

    def __init__(
        self,
        refresh: Callable[[str], Awaitable[bool]],
        max_concurrent: int = 3,
        interval_seconds: float = 30.0,
    ):
        self._refresh = refresh
        self.max_concurrent = max_concurrent
        self.interval_seconds = interval_seconds
        self._pending: Deque[str] = deque()
        self._pending_keys: Set[str] = set()
        self._active: Dict[str, asyncio.Task] = {}
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def pending_keys(self) -> List[str]:
        return list(self._pending)

    @property
    def active_keys(self) -> List[str]:
        return list(self._active)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def schedule(self, key: str) -> None:
        """Refresh now if a slot is free, otherwise queue; keys already queued or running are ignored"""
        if key in self._active or key in self._pending_keys:
            return

        if len(self._active) >= self.max_concurrent:
            self._pending.append(key)
            self._pending_keys.add(key)
            return

        self._launch(key)

    def discard(self, key: str) -> None:
        if key in self._pending_keys:
            self._pending_keys.discard(key)
            self._pending.remove(key)

    def clear(self) -> None:
        self._pending.clear()
        self._pending_keys.clear()

    def process_queue(self) -> int:
        """Launch queued refreshes into free slots; returns how many were started"""
        launched = 0
        while self._pending and len(self._active) < self.max_concurrent:
            key = self._pending.popleft()
            self._pending_keys.discard(key)
            if key in self._active:
                continue
            self._launch(key)
            launched += 1
        return launched

    def start(self) -> None:
        if self.is_running:
            return
        self._loop_task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        active = list(self._active.values())
        for task in active:
            task.cancel()
        if active:
            await asyncio.gather(*active, return_exceptions=True)

        self._active.clear()
        self.clear()

    def _launch(self, key: str) -> None:
        self._active[key] = asyncio.get_running_loop().create_task(self._run_refresh(key))

    async def _run_refresh(self, key: str) -> None:
        try:
            await self._refresh(key)
        finally:
            self._active.pop(key, None)
            self.process_queue()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            self.process_queue()


class KeyValueCache:
    """
    Generic TTL cache over a KeyValueStorage.

    Entries are stored as JSON under the `enhanced_cache_` prefix with metadata
    (times in epoch ms, expiration 0 = never). Reads never raise: storage
    failures and corrupted entries are logged and reported as a miss.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        refresh_callback: Optional[RefreshCallback] = None,
        refresh_threshold: Optional[float] = None,
        max_concurrent_refresh: Optional[int] = None,
        refresh_interval_seconds: Optional[float] = None,
        clock: Clock = system_clock,
    ):
        self.storage = storage
        self.refresh_callback = refresh_callback
        self.refresh_threshold = (
            refresh_threshold if refresh_threshold is not None else settings.cache_refresh_threshold
        )
        self.clock = clock
        self.scheduler = RefreshScheduler(
            self.refresh,
            max_concurrent=max_concurrent_refresh or settings.cache_max_concurrent_refresh,
            interval_seconds=refresh_interval_seconds or settings.cache_refresh_interval_seconds,
        )
        self._refreshing: Set[str] = set()
        self._statistics = {"hits": 0, "misses": 0, "refreshes": 0, "errors": 0}

    async def get(self, key: str) -> Any:
        full_key = CACHE_PREFIX + key
        try:
            raw = self.storage.get_item(full_key)
        except StorageError as e:
            self._record_error("get", e)
            return None

        entry = self._parse(raw) if raw is not None else None
        if entry is None:
            self._record_miss()
            return None

        now = self.clock()
        if entry.metadata.is_expired(now):
            self._remove_quietly(full_key)
            self._record_miss()
            return None

        entry.metadata.access_count += 1
        entry.metadata.last_accessed = now
        try:
            self.storage.set_item(full_key, entry.model_dump_json())
        except StorageError as e:
            self._record_error("touch", e)

        if self._should_refresh(entry.metadata, now):
            self.scheduler.schedule(key)

        self._statistics["hits"] += 1
        cache_requests_counter.labels(result="hit").inc()
        return entry.data

    async def set(
        self,
        key: str,
        value: Any,
        ttl_ms: int = 0,
        tags: Optional[List[str]] = None,
        source: Optional[str] = None,
        version: Optional[str] = None,
    ) -> None:
        """
        Store a value, replacing any previous entry and its metadata.

        Raises:
            StorageQuotaExceededError: still full after cleanup and one retry
            StorageError: any other storage failure
        """
        full_key = CACHE_PREFIX + key
        try:
            self.storage.set_item(full_key, self._serialize(value, ttl_ms, tags, source, version))
        except StorageQuotaExceededError as e:
            self._record_error("set", e)
            removed = await self.cleanup()
            logger.warning("Cache storage full, retrying after cleanup", extra={"key": key, "removed": removed})
            self.storage.set_item(full_key, self._serialize(value, ttl_ms, tags, source, version))
        except StorageError as e:
            self._record_error("set", e)
            raise

    async def delete(self, key: str) -> None:
        self._remove_quietly(CACHE_PREFIX + key)
        self.scheduler.discard(key)

    async def clear(self) -> None:
        """Remove every cache entry, pending refreshes and counters; storage failures are logged"""
        self.scheduler.clear()
        self._refreshing.clear()
        self.reset_statistics()
        try:
            cache_keys = self.storage.keys_with_prefix(CACHE_PREFIX)
        except StorageError as e:
            self._record_error("clear", e)
            return
        for full_key in cache_keys:
            self._remove_quietly(full_key)

    async def has(self, key: str) -> bool:
        return await self.get(key) is not None

    async def get_metadata(self, key: str) -> Optional[CacheMetadata]:
        try:
            raw = self.storage.get_item(CACHE_PREFIX + key)
        except StorageError as e:
            self._record_error("get_metadata", e)
            return None
        entry = self._parse(raw) if raw is not None else None
        return entry.metadata if entry else None

    async def find_by_tag(self, tag: str) -> List[str]:
        return self._find(lambda metadata: tag in metadata.tags)

    async def find_by_source(self, source: str) -> List[str]:
        return self._find(lambda metadata: metadata.source == source)

    def get_statistics(self) -> CacheStatistics:
        """Totals computed from storage now; hit/miss rates from counters since construction"""
        try:
            cache_keys = self.storage.keys_with_prefix(CACHE_PREFIX)
        except StorageError as e:
            self._record_error("statistics", e)
            return CacheStatistics()

        now = self.clock()
        stats = CacheStatistics(total_entries=len(cache_keys))
        total_access_count = 0
        oldest: Optional[int] = None

        for full_key in cache_keys:
            raw = self._read_quietly(full_key)
            if raw is None:
                continue
            entry = self._parse(raw)
            if entry is None:
                stats.expired_entries += 1
                continue

            metadata = entry.metadata
            stats.total_size += metadata.size
            total_access_count += metadata.access_count
            oldest = metadata.timestamp if oldest is None else min(oldest, metadata.timestamp)
            stats.newest_entry = max(stats.newest_entry, metadata.timestamp)
            if metadata.is_expired(now):
                stats.expired_entries += 1

            stats.entries_by_source[metadata.source] = stats.entries_by_source.get(metadata.source, 0) + 1
            for tag in metadata.tags:
                stats.entries_by_tag[tag] = stats.entries_by_tag.get(tag, 0) + 1

        total_requests = self._statistics["hits"] + self._statistics["misses"]
        if total_requests:
            stats.hit_rate = self._statistics["hits"] / total_requests
            stats.miss_rate = self._statistics["misses"] / total_requests
        if cache_keys:
            stats.average_access_count = total_access_count / len(cache_keys)
        stats.oldest_entry = oldest if oldest is not None else 0
        return stats

    def get_operation_statistics(self) -> Dict[str, int]:
        return dict(self._statistics)

    def reset_statistics(self) -> None:
        self._statistics = {"hits": 0, "misses": 0, "refreshes": 0, "errors": 0}

    def set_refresh_callback(self, callback: RefreshCallback) -> None:
        self.refresh_callback = callback

    async def refresh(self, key: str) -> bool:
        """
        Reload one entry through the refresh callback, keeping its tags, source and version.

        The new entry gets the remaining TTL of the old one (its full original TTL if
        it already lapsed, 24h if its metadata is gone). Returns False when there is
        no callback, the key is already refreshing, the callback returns None, or it fails.
        """
        if self.refresh_callback is None or key in self._refreshing:
            return False

        self._refreshing.add(key)
        self.scheduler.discard(key)
        try:
            new_data = await self.refresh_callback(key)
            if new_data is None:
                return False

            metadata = await self.get_metadata(key)
            await self.set(
                key,
                new_data,
                self._remaining_ttl(metadata),
                tags=metadata.tags if metadata else None,
                source=metadata.source if metadata else None,
                version=metadata.version if metadata else None,
            )
            self._statistics["refreshes"] += 1
            cache_refresh_counter.labels(outcome="success").inc()
            return True
        except Exception:  # refresh callbacks are caller-supplied
            logger.exception("Cache refresh failed", extra={"key": key})
            self._statistics["errors"] += 1
            cache_refresh_counter.labels(outcome="failure").inc()
            return False
        finally:
            self._refreshing.discard(key)

    async def cleanup(self) -> int:
        """Remove expired and corrupted entries; returns how many were removed"""
        now = self.clock()
        removed = 0
        for full_key in self.storage.keys_with_prefix(CACHE_PREFIX):
            raw = self._read_quietly(full_key)
            if raw is None:
                continue
            entry = self._parse(raw)
            if entry is None or entry.metadata.is_expired(now):
                self._remove_quietly(full_key)
                removed += 1

        logger.info("Cache cleanup completed", extra={"removed": removed})
        return removed

    def start(self) -> None:
        """Start the background refresh loop (requires a running event loop)"""
        self.scheduler.start()

    async def dispose(self) -> None:
        await self.scheduler.stop()
        self._refreshing.clear()

    def _serialize(
        self,
        value: Any,
        ttl_ms: int,
        tags: Optional[List[str]],
        source: Optional[str],
        version: Optional[str],
    ) -> str:
        now = self.clock()
        metadata = CacheMetadata(
            timestamp=now,
            expiration_date=now + ttl_ms if ttl_ms > 0 else 0,
            access_count=0,
            last_accessed=now,
            size=len(json.dumps(value, ensure_ascii=False)),
            version=version or "1.0",
            tags=list(tags or []),
            source=source or "unknown",
        )
        return CacheEntry(data=value, metadata=metadata).model_dump_json()

    def _parse(self, raw: str) -> Optional[CacheEntry]:
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError:
            logger.warning("Skipping corrupted cache entry")
            return None

    def _find(self, predicate: Callable[[CacheMetadata], bool]) -> List[str]:
        try:
            cache_keys = self.storage.keys_with_prefix(CACHE_PREFIX)
        except StorageError as e:
            self._record_error("find", e)
            return []

        matches = []
        for full_key in cache_keys:
            raw = self._read_quietly(full_key)
            entry = self._parse(raw) if raw is not None else None
            if entry is None or not predicate(entry.metadata):
                continue
            original_key = full_key[len(CACHE_PREFIX):]
            if original_key.strip():
                matches.append(original_key)
        return matches

    def _should_refresh(self, metadata: CacheMetadata, now: int) -> bool:
        if self.refresh_callback is None or metadata.expiration_date == 0:
            return False

        total_ttl = metadata.expiration_date - metadata.timestamp
        if total_ttl <= 0:
            return False
        remaining = metadata.expiration_date - now
        return remaining / total_ttl <= 1 - self.refresh_threshold

    def _remaining_ttl(self, metadata: Optional[CacheMetadata]) -> int:
        if metadata is None:
            return DEFAULT_REFRESH_TTL_MS
        if metadata.expiration_date == 0:
            return 0
        remaining = metadata.expiration_date - self.clock()
        return remaining if remaining > 0 else metadata.expiration_date - metadata.timestamp

    def _read_quietly(self, full_key: str) -> Optional[str]:
        try:
            return self.storage.get_item(full_key)
        except StorageError as e:
            self._record_error("read", e)
            return None

    def _remove_quietly(self, full_key: str) -> None:
        try:
            self.storage.remove_item(full_key)
        except StorageError as e:
            self._record_error("remove", e)

    def _record_miss(self) -> None:
        self._statistics["misses"] += 1
        cache_requests_counter.labels(result="miss").inc()

    def _record_error(self, operation: str, error: Exception) -> None:
        self._statistics["errors"] += 1
        cache_errors_counter.labels(operation=operation).inc()
        logger.warning("Cache storage error", extra={"operation": operation, "error": str(error)})
