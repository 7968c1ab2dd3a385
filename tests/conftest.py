from typing import Optional

import pytest

from mergewatch.bitbucket.model import BuildStatus, PullRequest
from mergewatch.config import Settings
from mergewatch.exceptions import ApiError, MergeError


def make_pr_payload(
    pr_id: int = 1,
    description: Optional[str] = None,
    author: Optional[str] = "alice",
    commit: Optional[str] = "a" * 40,
    version: int = 3,
) -> dict:
    payload = {
        "id": pr_id,
        "version": version,
        "title": f"PR {pr_id}",
        "fromRef": {
            "id": "refs/heads/feature",
            "displayId": "feature",
            "latestCommit": commit,
            "repository": {"slug": "repo", "project": {"key": "PROJ"}},
        },
        "toRef": {
            "id": "refs/heads/main",
            "displayId": "main",
            "latestCommit": "f" * 40,
            "repository": {"slug": "repo", "project": {"key": "PROJ"}},
        },
        "links": {
            "self": [
                {
                    "href": f"https://bitbucket.example.com/projects/PROJ/repos/repo/pull-requests/{pr_id}"
                }
            ]
        },
    }
    if description is not None:
        payload["description"] = description
    if author is not None:
        payload["author"] = {"user": {"name": author, "displayName": author.title()}}
    return payload


def make_pr(**kwargs) -> PullRequest:
    return PullRequest.model_validate(make_pr_payload(**kwargs))


def make_build(name: str, state: str = "FAILED", number: int = 10) -> BuildStatus:
    return BuildStatus.model_validate(
        {
            "state": state,
            "key": name,
            "name": name,
            "url": f"https://jenkins.example.com/job/{name}/{number}/display/redirect",
        }
    )


class FakeAPI:
    """In-memory stand-in for the Bitbucket client."""

    def __init__(
        self,
        *,
        own=None,
        approved=None,
        username="alice",
        comments=None,
        builds=None,
        mergeable=None,
    ):
        self.own = own if own is not None else []
        self.approved = approved if approved is not None else []
        self.username = username
        self.comments = comments or {}
        self.builds = builds or {}
        self.mergeable = mergeable
        self.merged = []
        self.comment_calls = []
        self.build_calls = []

    async def get_prs(self, params=None):
        prs = self.approved if params.get("role") == "REVIEWER" else self.own
        if isinstance(prs, Exception):
            raise prs
        return list(prs)

    async def get_username(self):
        if isinstance(self.username, Exception):
            raise self.username
        return self.username

    async def get_pr_comments(self, pr, author=None):
        self.comment_calls.append((pr.id, author))
        comments = self.comments.get(pr.id, [])
        if isinstance(comments, Exception):
            raise comments
        return comments

    async def merge_pr(self, pr):
        if self.mergeable is not None and pr.id not in self.mergeable:
            raise MergeError(f"Not ready to merge {pr.url}: vetoed", url=pr.url)
        self.merged.append(pr.id)

    async def get_build_status(self, commit_hash):
        self.build_calls.append(commit_hash)
        builds = self.builds.get(commit_hash, [])
        if isinstance(builds, Exception):
            raise builds
        return builds


class FakeCI:
    def __init__(self, fail_urls=()):
        self.rebuilt = []
        self.fail_urls = set(fail_urls)

    async def rebuild(self, build_url):
        if build_url in self.fail_urls:
            raise ApiError("Rebuild returned 500", status=500, url=build_url)
        self.rebuilt.append(build_url)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        BITBUCKET_URL="https://bitbucket.example.com",
        BITBUCKET_API_TOKEN="token",
        JENKINS_USERNAME="jenkins",
        JENKINS_PASSWORD="hunter2",
        JENKINS_RETRY_TRIGGER="^ci/",
        JENKINS_RETRY_LIMIT=2,
        DATA_DIR=tmp_path / "history",
    )
