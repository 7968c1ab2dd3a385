from mergewatch.bitbucket.api import API
from mergewatch.bitbucket.model import (
    BuildState,
    BuildStatus,
    Comment,
    MergeStatus,
    PullRequest,
    flatten_comments,
)

__all__ = [
    "API",
    "BuildState",
    "BuildStatus",
    "Comment",
    "MergeStatus",
    "PullRequest",
    "flatten_comments",
]
