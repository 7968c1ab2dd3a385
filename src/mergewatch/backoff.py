import asyncio
from datetime import datetime, timedelta
import logging
from typing import Callable, Dict

import humanize

from mergewatch.exceptions import CorruptRecordError, StorageError
from mergewatch.storage import HistoryStore, utcnow

logger = logging.getLogger("mergewatch")

RETRY_INTERVAL = timedelta(minutes=5)


def backoff_delay(n_retries: int) -> timedelta:
    """Minimum age of a retry history before the next retry is allowed."""
    if n_retries == 0:
        return timedelta(0)
    return RETRY_INTERVAL


class BackoffPolicy:
    """
    Decides whether the builds of a commit may be retried right now.

    The stored ``retry_count`` is the number of retries already granted for a
    key. A grant is persisted before ``should_retry_now`` returns, and checks
    for the same key are serialised, so two checks in a row never both see an
    eligible record. Only the first retry is immediate; every later one waits
    for ``RETRY_INTERVAL`` since the previous grant.
    """

    store: HistoryStore
    clock: Callable[[], datetime]

    def __init__(
        self, store: HistoryStore, *, clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def should_retry_now(self, key: str, max_retries: int) -> bool:
        async with self._lock(key):
            return self._decide(key, max_retries)

    def _decide(self, key: str, max_retries: int) -> bool:
        try:
            history = self.store.load(key)
        except CorruptRecordError:
            logger.warning("Discarding corrupt retry history for %s", key)
            self._delete(key)
            return False
        except StorageError:
            logger.error("Could not load retry history for %s", key, exc_info=True)
            return False

        if history is None:
            if max_retries > 0:
                self._save(key, 1)
                return True
            self._save(key, 0)
            return False

        if history.retry_count >= max_retries:
            logger.debug(
                "Retry limit reached for %s (%d/%d)",
                key,
                history.retry_count,
                max_retries,
            )
            return False

        age = history.age(self.clock())
        delay = backoff_delay(history.retry_count)
        if age < delay:
            logger.debug(
                "Backing off %s, next retry allowed in %s",
                key,
                humanize.naturaldelta(delay - age),
            )
            return False

        self._save(key, history.retry_count + 1)
        return True

    def _save(self, key: str, retry_count: int) -> None:
        try:
            self.store.save(key, retry_count)
        except StorageError:
            logger.error("Error saving retry history for %s", key, exc_info=True)

    def _delete(self, key: str) -> None:
        try:
            self.store.delete(key)
        except StorageError:
            logger.error("Error deleting retry history for %s", key, exc_info=True)
