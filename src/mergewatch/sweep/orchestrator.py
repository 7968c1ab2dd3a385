from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple

import aiohttp

from mergewatch.backoff import BackoffPolicy
from mergewatch.bitbucket import API
from mergewatch.bitbucket.model import PullRequest
from mergewatch.config import Settings
from mergewatch.exceptions import MergewatchError, NoAuthorError, StorageError
from mergewatch.jenkins import Auth, JenkinsClient
from mergewatch.metric import error_counter, merge_counter, prs_checked_counter
from mergewatch.storage import DiskHistoryStore, HistoryStore
from mergewatch.sweep.evaluator import should_merge
from mergewatch.sweep.retry import RetryCoordinator
from mergewatch.sweep.types import CodeHost, ScopeResult, SweepResult
from mergewatch.trigger import TriggerMatcher

logger = logging.getLogger("mergewatch")

OWN_PR_PARAMS = {"state": "OPEN", "role": "AUTHOR"}
APPROVED_PR_PARAMS = {
    "state": "OPEN",
    "role": "REVIEWER",
    "participantStatus": "APPROVED",
}


class Sweeper:
    def __init__(
        self,
        *,
        api: CodeHost,
        settings: Settings,
        matcher: TriggerMatcher,
        store: HistoryStore,
        retry: RetryCoordinator,
    ):
        self.api = api
        self.settings = settings
        self.matcher = matcher
        self.store = store
        self.retry = retry

    async def handle_pr(self, pr: PullRequest, username: str) -> bool:
        """Evaluate, merge and on failure retry one PR. Returns whether it merged."""
        logger.debug("Checking %s", pr.url)
        if not await should_merge(
            self.api, pr, username, self.settings, self.matcher
        ):
            logger.debug("No merge trigger found in %s", pr.url)
            return False

        if self.settings.DRY_RUN:
            logger.info("Dry run, not merging %s", pr.url)
            return False

        try:
            await self.api.merge_pr(pr)
        except MergewatchError as e:
            logger.error("Could not merge: %s", e)
            merge_counter.labels(result="failure").inc()
            await self.retry.retry_failed_builds(pr)
            return False

        logger.info("Merged %s", pr.url)
        merge_counter.labels(result="success").inc()
        if pr.hash is not None:
            try:
                self.store.delete(pr.hash)
            except StorageError:
                logger.error(
                    "Could not delete retry history for %s", pr.hash, exc_info=True
                )
        return True

    async def check_prs(
        self, prs: List[PullRequest], username: str, scope: str
    ) -> Tuple[int, int]:
        """
        Handle all PRs concurrently, one task each. Returns the number merged
        and the number of tasks that failed unexpectedly.
        """
        results = await asyncio.gather(
            *(self.handle_pr(pr, username) for pr in prs), return_exceptions=True
        )

        failed = 0
        for pr, result in zip(prs, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.error("Handling %s failed", pr.url or pr, exc_info=result)
                error_counter.labels(context=f"{scope}_pr").inc()
        if failed > 0:
            logger.error(
                "%d of %d %s PR's could not be handled", failed, len(prs), scope
            )

        merged = sum(1 for result in results if result is True)
        return merged, failed

    async def own_prs(self) -> ScopeResult:
        """Search PRs authored by the authenticated user for the merge trigger."""
        logger.info("Fetching list of own PR's")
        prs = await self.api.get_prs(OWN_PR_PARAMS)
        if len(prs) == 0:
            logger.info("No open PR's of own found")
            return ScopeResult(scope="own")

        username = prs[0].author_name
        if username is None:
            raise NoAuthorError(f"No author field on {prs[0]}")

        logger.info("Scanning %s's PR's", username)
        prs_checked_counter.labels(scope="own").inc(len(prs))
        merged, failed = await self.check_prs(prs, username, "own")
        return ScopeResult(
            scope="own", checked=len(prs), merged=merged, failed_tasks=failed
        )

    async def approved_prs(self) -> ScopeResult:
        """Search PRs approved by the authenticated user for the merge trigger."""
        logger.info("Fetching approved PR's")
        prs, username = await asyncio.gather(
            self.api.get_prs(APPROVED_PR_PARAMS),
            self.api.get_username(),
            return_exceptions=True,
        )
        for result in (prs, username):
            if isinstance(result, BaseException):
                raise result

        logger.info("Scanning PR's approved by %s", username)
        prs_checked_counter.labels(scope="approved").inc(len(prs))
        merged, failed = await self.check_prs(prs, username, "approved")
        return ScopeResult(
            scope="approved", checked=len(prs), merged=merged, failed_tasks=failed
        )

    async def _run_scope(
        self, scope: str, fn: Callable[[], Awaitable[ScopeResult]]
    ) -> ScopeResult:
        try:
            return await fn()
        except MergewatchError as e:
            logger.error("Checking %s PR's failed: %s", scope, e)
            error_counter.labels(context=f"{scope}_scope").inc()
            return ScopeResult(scope=scope, error=str(e))
        except Exception as e:  # noqa: BLE001
            logger.error("Checking %s PR's failed", scope, exc_info=True)
            error_counter.labels(context=f"{scope}_scope").inc()
            return ScopeResult(scope=scope, error=repr(e))

    async def run(self) -> SweepResult:
        own, approved = await asyncio.gather(
            self._run_scope("own", self.own_prs),
            self._run_scope("approved", self.approved_prs),
        )
        return SweepResult(own=own, approved=approved)


def decruft(store: HistoryStore) -> int:
    try:
        removed = store.sweep()
    except StorageError:
        logger.error("Could not clean retry history", exc_info=True)
        return 0
    if removed > 0:
        logger.info("Removed %d stale retry histories", removed)
    return removed


async def run_sweep(
    settings: Settings, *, store: Optional[HistoryStore] = None
) -> SweepResult:
    """
    One full pass over own and approved PRs. Configuration errors surface
    before any request is made; everything after that is logged, not raised.
    """
    matcher = TriggerMatcher(settings.MERGE_TRIGGER)

    owned_store: Optional[DiskHistoryStore] = None
    if store is None:
        owned_store = store = DiskHistoryStore(settings.DATA_DIR)

    try:
        decruft(store)
        async with aiohttp.ClientSession() as session:
            api = API(
                session,
                settings.BITBUCKET_URL,
                settings.BITBUCKET_API_TOKEN,
                timeout=settings.REQUEST_TIMEOUT,
            )
            ci = None
            if settings.jenkins_enabled:
                ci = JenkinsClient(
                    session,
                    Auth(settings.JENKINS_USERNAME, settings.JENKINS_PASSWORD),
                    timeout=settings.REQUEST_TIMEOUT,
                )
            retry = RetryCoordinator(
                api=api, ci=ci, policy=BackoffPolicy(store), settings=settings
            )
            sweeper = Sweeper(
                api=api, settings=settings, matcher=matcher, store=store, retry=retry
            )
            result = await sweeper.run()
            logger.debug("Bitbucket API calls: %d", api.call_count)
    finally:
        if owned_store is not None:
            owned_store.close()

    return result
