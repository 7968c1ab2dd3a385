import logging
import re
from typing import Optional

from mergewatch.backoff import BackoffPolicy
from mergewatch.bitbucket.model import BuildState, PullRequest
from mergewatch.config import Settings
from mergewatch.exceptions import MergewatchError
from mergewatch.metric import error_counter, rebuild_counter
from mergewatch.sweep.types import CIHost, CodeHost

logger = logging.getLogger("mergewatch")


class RetryCoordinator:
    """
    Retriggers failed CI builds of a pull request whose merge failed.

    All builds of one commit share a single backoff counter, which caps the
    retries per revision rather than per build.
    """

    def __init__(
        self,
        *,
        api: CodeHost,
        ci: Optional[CIHost],
        policy: BackoffPolicy,
        settings: Settings,
    ):
        self.api = api
        self.ci = ci
        self.policy = policy
        self.max_retries = settings.JENKINS_RETRY_LIMIT
        self.retry_regex = (
            re.compile(settings.JENKINS_RETRY_TRIGGER)
            if settings.JENKINS_RETRY_TRIGGER is not None
            else None
        )

    async def retry_failed_builds(self, pr: PullRequest) -> int:
        """Returns the number of rebuilds triggered."""
        if self.ci is None:
            logger.warning("Jenkins not configured. Skipping retry attempt.")
            return 0
        if self.retry_regex is None:
            logger.warning("No retry trigger configured. Skipping retry attempt.")
            return 0
        commit_hash = pr.hash
        if commit_hash is None:
            logger.error("Could not resolve commit hash for %s", pr.url or pr)
            return 0

        try:
            builds = await self.api.get_build_status(commit_hash)
        except MergewatchError as e:
            logger.error("Could not fetch build status for %s: %s", pr.url, e)
            error_counter.labels(context="build_status").inc()
            builds = []

        rebuilt = 0
        for build in builds:
            if build.state != BuildState.FAILED:
                continue
            if not self.retry_regex.search(build.name):
                logger.debug("Build %s does not match retry trigger", build.name)
                continue
            if not await self.policy.should_retry_now(commit_hash, self.max_retries):
                logger.info("Not retrying %s for %s now", build.name, pr.url)
                continue

            logger.info("Attempting rebuild for %s (%s)", build.name, build.url)
            try:
                await self.ci.rebuild(build.url)
            except MergewatchError as e:
                logger.error("Rebuild of %s for %s failed: %s", build.name, pr.url, e)
                rebuild_counter.labels(result="error").inc()
                continue
            logger.info("Rebuilt %s", build.name)
            rebuild_counter.labels(result="success").inc()
            rebuilt += 1
        return rebuilt
