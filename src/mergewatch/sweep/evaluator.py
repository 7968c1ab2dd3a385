import logging

from mergewatch.bitbucket.model import PullRequest
from mergewatch.config import Settings
from mergewatch.exceptions import MergewatchError
from mergewatch.metric import error_counter
from mergewatch.sweep.types import CodeHost
from mergewatch.trigger import TriggerMatcher

logger = logging.getLogger("mergewatch")


async def should_merge(
    api: CodeHost,
    pr: PullRequest,
    username: str,
    settings: Settings,
    matcher: TriggerMatcher,
) -> bool:
    if settings.CHECK_DESCRIPTION and matcher.matches(pr.description):
        logger.info("Found trigger in description of %s", pr.url)
        return True

    if settings.CHECK_COMMENTS:
        try:
            comments = await api.get_pr_comments(pr, author=username)
        except MergewatchError as e:
            logger.error("Could not fetch comments for %s: %s", pr.url, e)
            error_counter.labels(context="comments").inc()
            comments = []
        for comment in comments:
            if matcher.matches(comment):
                logger.info("Found trigger in comment on %s", pr.url)
                return True

    return False
