from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

import pydantic
from pydantic.alias_generators import to_camel


class Model(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        extra="ignore", populate_by_name=True, alias_generator=to_camel
    )


class Project(Model):
    key: str


class Repository(Model):
    slug: str
    project: Project


class Ref(Model):
    id: Optional[str] = None
    display_id: Optional[str] = None
    latest_commit: Optional[str] = None
    repository: Optional[Repository] = None


class User(Model):
    name: str
    display_name: Optional[str] = None
    slug: Optional[str] = None


class Participant(Model):
    user: Optional[User] = None


class PullRequest(Model):
    id: int
    # Needed by the server to perform the merge
    version: int
    title: Optional[str] = None
    description: Optional[str] = None
    author: Optional[Participant] = None
    from_ref: Optional[Ref] = None
    to_ref: Ref
    links: Dict[str, Any] = pydantic.Field(default_factory=dict)

    @property
    def url(self) -> Optional[str]:
        try:
            return self.links["self"][0]["href"]
        except (KeyError, IndexError, TypeError):
            return None

    @property
    def hash(self) -> Optional[str]:
        if self.from_ref is None:
            return None
        return self.from_ref.latest_commit or None

    @property
    def author_name(self) -> Optional[str]:
        if self.author is None or self.author.user is None:
            return None
        return self.author.user.name or None

    @property
    def project_key(self) -> str:
        if self.to_ref.repository is None:
            raise ValueError(f"Pull request {self.id} has no target repository")
        return self.to_ref.repository.project.key

    @property
    def repo_slug(self) -> str:
        if self.to_ref.repository is None:
            raise ValueError(f"Pull request {self.id} has no target repository")
        return self.to_ref.repository.slug

    @property
    def api_path(self) -> str:
        return (
            f"/rest/api/1.0/projects/{self.project_key}"
            f"/repos/{self.repo_slug}/pull-requests/{self.id}"
        )

    def __str__(self) -> str:
        if self.to_ref.repository is None:
            return f"PR(#{self.id})"
        return f"PR({self.project_key}/{self.repo_slug}#{self.id})"


class Comment(Model):
    id: int
    text: str = ""
    author: Optional[User] = None
    comments: List["Comment"] = pydantic.Field(default_factory=list)


def flatten_comments(
    comments: Iterable[Comment],
    author: Optional[str] = None,
    seen: Optional[Set[int]] = None,
) -> List[str]:
    """
    Depth-first list of comment texts including all replies, optionally
    restricted to comments written by ``author``. Comments reachable through
    more than one activity are only reported once.
    """
    if seen is None:
        seen = set()
    texts: List[str] = []
    for comment in comments:
        if comment.id not in seen:
            seen.add(comment.id)
            if author is None or (
                comment.author is not None and comment.author.name == author
            ):
                texts.append(comment.text)
        texts.extend(flatten_comments(comment.comments, author, seen))
    return texts


class MergeVeto(Model):
    summary_message: str = ""
    detailed_message: Optional[str] = None


class MergeStatus(Model):
    can_merge: bool
    conflicted: bool = False
    outcome: Optional[str] = None
    vetoes: List[MergeVeto] = pydantic.Field(default_factory=list)

    def reason(self) -> str:
        if self.vetoes:
            return "; ".join(v.summary_message for v in self.vetoes)
        if self.conflicted:
            return "pull request has conflicts"
        return "server refused merge"


class BuildState(Enum):
    SUCCESSFUL = "SUCCESSFUL"
    FAILED = "FAILED"
    INPROGRESS = "INPROGRESS"
    UNKNOWN = "UNKNOWN"


class BuildStatus(Model):
    state: BuildState
    key: Optional[str] = None
    name: str
    url: str

    @pydantic.model_validator(mode="before")
    @classmethod
    def name_defaults_to_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and data.get("key"):
            data = {**data, "name": data["key"]}
        return data

    @pydantic.field_validator("state", mode="before")
    @classmethod
    def unknown_state(cls, value: Any) -> Any:
        if isinstance(value, str) and value.upper() in BuildState.__members__:
            return value.upper()
        if isinstance(value, BuildState):
            return value
        return BuildState.UNKNOWN

    def __str__(self) -> str:
        return f"{self.name} [{self.state.value}]"
