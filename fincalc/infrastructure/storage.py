"""Persistent key-value media: in-memory (session-scoped) and SQL-backed (durable)"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fincalc.domain.exceptions import StorageError, StorageQuotaExceededError
from fincalc.infrastructure.database.models import KeyValueRecord

logger = logging.getLogger(__name__)


def entry_size(key: str, value: str) -> int:
    """Quota accounting unit: characters of key plus value"""
    return len(key) + len(value)


class KeyValueStorage(ABC):
    """Synchronous string-to-string store with an optional size quota"""

    def __init__(self, quota: Optional[int] = None):
        self.quota = quota

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        """
        Raises:
            StorageQuotaExceededError: the write would push usage past the quota
            StorageError: the medium failed
        """

    @abstractmethod
    def remove_item(self, key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        ...

    @abstractmethod
    def clear(self) -> None:
        ...

    @property
    def length(self) -> int:
        return len(self.keys())

    def key(self, index: int) -> Optional[str]:
        keys = self.keys()
        return keys[index] if 0 <= index < len(keys) else None

    def keys_with_prefix(self, prefix: str) -> List[str]:
        return [k for k in self.keys() if k.startswith(prefix)]

    def _check_quota(self, used: int, key: str, value: str) -> None:
        if self.quota is not None and used + entry_size(key, value) > self.quota:
            raise StorageQuotaExceededError(
                f"Storage quota of {self.quota} exceeded writing {key!r} ({entry_size(key, value)} units)"
            )


class MemoryStorage(KeyValueStorage):
    """Insertion-ordered dict; contents vanish with the process"""

    def __init__(self, quota: Optional[int] = None):
        super().__init__(quota)
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        used = sum(entry_size(k, v) for k, v in self._items.items() if k != key)
        self._check_quota(used, key, value)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items)

    def clear(self) -> None:
        self._items.clear()


class SQLStorage(KeyValueStorage):
    """
    Durable storage on the kv_store table.

    Every call runs in its own session from the factory and commits before returning.
    SQLAlchemy failures surface as StorageError.
    """

    def __init__(self, session_factory: Callable[[], Session], quota: Optional[int] = None):
        super().__init__(quota)
        self._session_factory = session_factory

    def get_item(self, key: str) -> Optional[str]:
        try:
            with self._session_factory() as db:
                record = db.get(KeyValueRecord, key)
                return record.value if record else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {key!r}: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        try:
            with self._session_factory() as db:
                if self.quota is not None:
                    used = (
                        db.query(
                            func.coalesce(func.sum(func.length(KeyValueRecord.key) + func.length(KeyValueRecord.value)), 0)
                        )
                        .filter(KeyValueRecord.key != key)
                        .scalar()
                    )
                    self._check_quota(int(used), key, value)

                record = db.get(KeyValueRecord, key)
                if record is None:
                    db.add(KeyValueRecord(key=key, value=value))
                else:
                    record.value = value
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write {key!r}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            with self._session_factory() as db:
                db.query(KeyValueRecord).filter(KeyValueRecord.key == key).delete()
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to remove {key!r}: {e}") from e

    def keys(self) -> List[str]:
        try:
            with self._session_factory() as db:
                return [row.key for row in db.query(KeyValueRecord.key).order_by(KeyValueRecord.key)]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list keys: {e}") from e

    def clear(self) -> None:
        try:
            with self._session_factory() as db:
                deleted = db.query(KeyValueRecord).delete()
                db.commit()
                logger.info("Cleared durable storage", extra={"deleted": deleted})
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to clear storage: {e}") from e
