import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

import aiohttp
import pydantic

from mergewatch.bitbucket.model import (
    BuildStatus,
    Comment,
    MergeStatus,
    PullRequest,
    flatten_comments,
)
from mergewatch.exceptions import ApiError, MergeError
from mergewatch.metric import record_api_call

logger = logging.getLogger("mergewatch")


class API:
    """Bitbucket Server REST client, authenticated with a personal access token."""

    session: aiohttp.ClientSession
    base_url: str
    timeout: aiohttp.ClientTimeout

    call_count: int

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        token: str,
        *,
        timeout: float = 5.0,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "X-Atlassian-Token": "no-check",
        }
        self.call_count = 0

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Mapping[str, str]] = None,
        *,
        as_json: bool = True,
    ) -> Any:
        self.call_count += 1
        record_api_call(endpoint)
        url = self.base_url + endpoint
        logger.debug("%s %s %s", method, url, dict(params or {}))
        try:
            async with self.session.request(
                method,
                url,
                params=params,
                headers=self._headers,
                timeout=self.timeout,
            ) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ApiError(
                        f"{method} {url} returned {response.status}: {body[:200]}",
                        status=response.status,
                        url=url,
                    )
                if as_json:
                    return await response.json(content_type=None)
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ApiError(f"{method} {url} failed: {e!r}", url=url) from e

    async def getitem(
        self, endpoint: str, params: Optional[Mapping[str, str]] = None
    ) -> Any:
        return await self._request("GET", endpoint, params)

    async def getiter(
        self, endpoint: str, params: Optional[Mapping[str, str]] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """Iterate over the values of a paged endpoint."""
        query = dict(params or {})
        query["start"] = "0"
        while True:
            page = await self.getitem(endpoint, query)
            if not isinstance(page, dict):
                raise ApiError(f"Unexpected page from {endpoint}: {page!r}")
            for value in page.get("values", []):
                yield value
            next_start = page.get("nextPageStart")
            if page.get("isLastPage", True) or next_start is None:
                break
            query["start"] = str(next_start)

    async def get_username(self) -> str:
        text = await self._request(
            "GET", "/plugins/servlet/applinks/whoami", as_json=False
        )
        username = text.strip()
        if not username:
            raise ApiError("Bitbucket did not report an authenticated user")
        return username

    async def get_prs(
        self, params: Optional[Mapping[str, str]] = None
    ) -> List[PullRequest]:
        endpoint = "/rest/api/1.0/dashboard/pull-requests"
        raw = [item async for item in self.getiter(endpoint, params)]
        try:
            return [PullRequest.model_validate(item) for item in raw]
        except pydantic.ValidationError as e:
            raise ApiError(f"Malformed pull request from {endpoint}: {e}") from e

    async def get_pr_comments(
        self, pr: PullRequest, author: Optional[str] = None
    ) -> List[str]:
        """Text of all comments on ``pr``, replies included."""
        comments = []
        async for activity in self.getiter(f"{pr.api_path}/activities"):
            if activity.get("action") != "COMMENTED" or "comment" not in activity:
                continue
            try:
                comments.append(Comment.model_validate(activity["comment"]))
            except pydantic.ValidationError as e:
                raise ApiError(f"Malformed comment on {pr.url}: {e}") from e
        return flatten_comments(comments, author)

    async def can_merge(self, pr: PullRequest) -> MergeStatus:
        data = await self.getitem(f"{pr.api_path}/merge")
        try:
            return MergeStatus.model_validate(data)
        except pydantic.ValidationError as e:
            raise ApiError(f"Malformed merge status for {pr.url}: {e}") from e

    async def merge_pr(self, pr: PullRequest) -> None:
        """Merge ``pr``, raising ``MergeError`` if the server refuses."""
        status = await self.can_merge(pr)
        if not status.can_merge:
            raise MergeError(
                f"Not ready to merge {pr.url}: {status.reason()}", url=pr.url
            )
        try:
            await self._request(
                "POST", f"{pr.api_path}/merge", {"version": str(pr.version)}
            )
        except ApiError as e:
            raise MergeError(f"Could not merge {pr.url}: {e}", url=pr.url) from e

    async def get_build_status(self, commit_hash: str) -> List[BuildStatus]:
        endpoint = f"/rest/build-status/1.0/commits/{commit_hash}"
        raw = [item async for item in self.getiter(endpoint)]
        try:
            return [BuildStatus.model_validate(item) for item in raw]
        except pydantic.ValidationError as e:
            raise ApiError(f"Malformed build status for {commit_hash}: {e}") from e
