import asyncio
from dataclasses import dataclass
import logging
import re
from typing import Any, List, Mapping, Tuple

import aiohttp

from mergewatch.exceptions import ApiError
from mergewatch.metric import record_api_call

logger = logging.getLogger("mergewatch")

JOB_URL_REGEX = re.compile(r"^(.*)/(\d+)(?:/)?(?:display/redirect)?$")

PARAMETERS_ACTION = "hudson.model.ParametersAction"
STRING_PARAMETER = "hudson.model.StringParameterValue"
BOOLEAN_PARAMETER = "hudson.model.BooleanParameterValue"


@dataclass(frozen=True)
class Auth:
    username: str
    # Password or API token
    password: str

    def basic_auth(self) -> aiohttp.BasicAuth:
        return aiohttp.BasicAuth(self.username, self.password)

    def __repr__(self) -> str:
        return f"Auth(username={self.username!r})"


def build_parameters(build: Mapping[str, Any]) -> List[Tuple[str, str]]:
    """
    Parameters a build was started with, as query parameters for a new one.
    Only string and boolean parameters are carried over.
    """
    for action in build.get("actions") or []:
        if isinstance(action, dict) and action.get("_class") == PARAMETERS_ACTION:
            parameters = action.get("parameters") or []
            break
    else:
        raise ApiError("Could not find build parameters")

    query = []
    for param in parameters:
        if not isinstance(param, dict):
            continue
        name = param.get("name")
        kind = param.get("_class")
        value = param.get("value")
        if not isinstance(name, str) or not name:
            logger.warning("Skipping build parameter without a name: %r", param)
        elif kind not in (STRING_PARAMETER, BOOLEAN_PARAMETER):
            logger.warning(
                "Parameter %s is not a String or Boolean parameter", name
            )
        elif value is None:
            logger.warning("Skipping parameter %s without a value", name)
        elif kind == STRING_PARAMETER:
            query.append((name, str(value)))
        else:
            query.append((name, "true" if value else "false"))
    return query


@dataclass(frozen=True)
class Job:
    """A single build of a Jenkins job"""

    base_url: str
    # Numerical build id
    id: str
    auth: Auth

    @classmethod
    def from_url(cls, build_url: str, auth: Auth) -> "Job":
        match = JOB_URL_REGEX.match(build_url)
        if match is None:
            raise ValueError(f"Invalid URL: {build_url}")
        return cls(base_url=match.group(1), id=match.group(2), auth=auth)

    @property
    def job_url(self) -> str:
        return f"{self.base_url}/{self.id}/api/json"

    @property
    def trigger_url(self) -> str:
        return f"{self.base_url}/buildWithParameters"

    async def fetch_build(
        self, session: aiohttp.ClientSession, timeout: aiohttp.ClientTimeout
    ) -> Mapping[str, Any]:
        record_api_call(self.job_url)
        try:
            async with session.get(
                self.job_url,
                headers={"Accept": "application/json"},
                auth=self.auth.basic_auth(),
                timeout=timeout,
            ) as response:
                if response.status >= 400:
                    raise ApiError(
                        f"Fetching {self.job_url} returned {response.status}",
                        status=response.status,
                        url=self.job_url,
                    )
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ApiError(
                f"Fetching {self.job_url} failed: {e!r}", url=self.job_url
            ) from e

    async def rebuild(
        self, session: aiohttp.ClientSession, timeout: aiohttp.ClientTimeout
    ) -> None:
        """Trigger a rebuild with the parameters of this build"""
        build = await self.fetch_build(session, timeout)
        params = build_parameters(build)

        record_api_call(self.trigger_url)
        try:
            async with session.post(
                self.trigger_url,
                params=params,
                auth=self.auth.basic_auth(),
                timeout=timeout,
            ) as response:
                if response.status >= 300:
                    raise ApiError(
                        f"Rebuild returned {response.status}",
                        status=response.status,
                        url=self.trigger_url,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ApiError(
                f"Rebuild via {self.trigger_url} failed: {e!r}", url=self.trigger_url
            ) from e


class JenkinsClient:
    session: aiohttp.ClientSession
    auth: Auth
    timeout: aiohttp.ClientTimeout

    def __init__(
        self, session: aiohttp.ClientSession, auth: Auth, *, timeout: float = 5.0
    ):
        self.session = session
        self.auth = auth
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def rebuild(self, build_url: str) -> None:
        try:
            job = Job.from_url(build_url, self.auth)
        except ValueError as e:
            raise ApiError(str(e), url=build_url) from e
        logger.debug("Rebuilding %s via %s", build_url, job.trigger_url)
        await job.rebuild(self.session, self.timeout)
