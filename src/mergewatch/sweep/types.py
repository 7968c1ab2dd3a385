from __future__ import annotations

from dataclasses import dataclass
from typing import List, Mapping, Optional, Protocol

from mergewatch.bitbucket.model import BuildStatus, PullRequest


class CodeHost(Protocol):
    async def get_prs(
        self, params: Optional[Mapping[str, str]] = None
    ) -> List[PullRequest]: ...

    async def get_username(self) -> str: ...

    async def get_pr_comments(
        self, pr: PullRequest, author: Optional[str] = None
    ) -> List[str]: ...

    async def merge_pr(self, pr: PullRequest) -> None: ...

    async def get_build_status(self, commit_hash: str) -> List[BuildStatus]: ...


class CIHost(Protocol):
    async def rebuild(self, build_url: str) -> None: ...


@dataclass(frozen=True)
class ScopeResult:
    scope: str
    checked: int = 0
    merged: int = 0
    failed_tasks: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class SweepResult:
    own: ScopeResult
    approved: ScopeResult

    @property
    def own_count(self) -> int:
        return self.own.checked

    @property
    def approved_count(self) -> int:
        return self.approved.checked
