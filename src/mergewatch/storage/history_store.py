from __future__ import annotations

from datetime import datetime, timedelta
import logging
from pathlib import Path
import sqlite3
from typing import Callable, Dict, List, Optional, Protocol, Tuple, Union

import diskcache

from mergewatch.exceptions import CorruptRecordError, StorageError
from mergewatch.storage.types import RetryHistory, utcnow

logger = logging.getLogger("mergewatch")

STALENESS_THRESHOLD = timedelta(days=5)

_STORAGE_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)


class HistoryStore(Protocol):
    """
    Durable mapping from a commit hash to its retry history.

    ``delete`` is idempotent: it returns ``True`` when a record was removed and
    ``False`` when there was nothing to remove. Neither outcome is an error.
    """

    def load(self, key: str) -> Optional[RetryHistory]: ...

    def save(self, key: str, retry_count: int) -> None: ...

    def delete(self, key: str) -> bool: ...

    def sweep(self, threshold: timedelta = STALENESS_THRESHOLD) -> int: ...

    def keys(self) -> List[str]: ...


def _decode(key: str, raw: object) -> RetryHistory:
    try:
        return RetryHistory.model_validate_json(raw)  # type: ignore[arg-type]
    except (ValueError, TypeError) as e:
        raise CorruptRecordError(key) from e


class _BaseHistoryStore:
    clock: Callable[[], datetime]

    def _read(self, key: str) -> object: ...

    def keys(self) -> List[str]: ...

    def delete(self, key: str) -> bool: ...

    def load(self, key: str) -> Optional[RetryHistory]:
        raw = self._read(key)
        if raw is None:
            return None
        return _decode(key, raw)

    def items(self) -> List[Tuple[str, Optional[RetryHistory]]]:
        """All records, with ``None`` in place of the ones that fail to decode."""
        result = []
        for key in self.keys():
            try:
                result.append((key, self.load(key)))
            except CorruptRecordError:
                result.append((key, None))
        return result

    def sweep(self, threshold: timedelta = STALENESS_THRESHOLD) -> int:
        now = self.clock()
        removed = 0
        for key in self.keys():
            try:
                history = self.load(key)
            except CorruptRecordError:
                logger.debug("Removing undecodable retry history %s", key)
                stale = True
            else:
                if history is None:
                    continue
                stale = history.age(now) >= threshold
            if stale and self.delete(key):
                removed += 1
        logger.debug("Removed %d stale retry histories", removed)
        return removed


class DiskHistoryStore(_BaseHistoryStore):
    """Retry histories kept in a diskcache directory, one entry per commit hash."""

    directory: Path
    cache: diskcache.Cache

    def __init__(
        self,
        directory: Union[str, Path],
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.directory = Path(directory)
        self.clock = clock
        logger.debug("Opening retry history dir: %s", self.directory)
        try:
            self.cache = diskcache.Cache(str(self.directory))
        except _STORAGE_ERRORS as e:
            raise StorageError(
                f"Could not open retry history at {self.directory}: {e}"
            ) from e

    def __enter__(self) -> "DiskHistoryStore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self.cache.close()

    def _read(self, key: str) -> object:
        try:
            return self.cache.get(key)
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Could not read retry history for {key}: {e}") from e

    def save(self, key: str, retry_count: int) -> None:
        history = RetryHistory(retry_count=retry_count, last_update=self.clock())
        try:
            self.cache.set(key, history.model_dump_json())
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Could not save retry history for {key}: {e}") from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self.cache.delete(key))
        except _STORAGE_ERRORS as e:
            raise StorageError(
                f"Could not delete retry history for {key}: {e}"
            ) from e

    def keys(self) -> List[str]:
        try:
            return [str(key) for key in self.cache.iterkeys()]
        except _STORAGE_ERRORS as e:
            raise StorageError(f"Could not list retry histories: {e}") from e


class MemoryHistoryStore(_BaseHistoryStore):
    records: Dict[str, str]

    def __init__(self, *, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self.records = {}

    def _read(self, key: str) -> object:
        return self.records.get(key)

    def save(self, key: str, retry_count: int) -> None:
        history = RetryHistory(retry_count=retry_count, last_update=self.clock())
        self.records[key] = history.model_dump_json()

    def delete(self, key: str) -> bool:
        return self.records.pop(key, None) is not None

    def keys(self) -> List[str]:
        return list(self.records)
