"""Domain models shared by the fetcher, reconciler and persistence layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .codehost import CodeHost


class ExternalThreadKind(str, Enum):
    issue = "Issue"
    pull_request = "PullRequest"


class ThreadState(str, Enum):
    open = "OPEN"
    closed = "CLOSED"
    merged = "MERGED"


class ExternalThread(BaseModel):
    """Normalized view of a GitHub issue or pull request.

    Issues and pull requests are folded into one shape; ``base_ref`` and
    ``head_ref`` are empty for issues.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    kind: ExternalThreadKind = Field(alias="__typename")
    external_id: str = Field(alias="id")
    number: int
    title: str
    body: str = ""
    state: ThreadState
    url: str = ""
    base_ref: str = Field(default="", alias="baseRefName")
    head_ref: str = Field(default="", alias="headRefName")
    repository_full_name: str
    author_login: str | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> ExternalThread:
        data = dict(node)
        data["repository_full_name"] = node["repository"]["nameWithOwner"]
        author = node.get("author") or {}
        data["author_login"] = author.get("login")
        return cls.model_validate(data)

    @property
    def is_pull_request(self) -> bool:
        return self.kind == ExternalThreadKind.pull_request


@dataclass(slots=True)
class Thread:
    repository_id: int
    external_service_id: int
    external_id: str
    title: str
    body: str = ""
    state: ThreadState = ThreadState.open
    number: int = 0
    base_ref: str = ""
    head_ref: str = ""
    author_login: str | None = None
    campaign_id: int | None = None
    id: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_external(
        cls,
        entity: ExternalThread,
        repository_id: int,
        external_service_id: int,
        campaign_id: int | None = None,
    ) -> Thread:
        return cls(
            repository_id=repository_id,
            external_service_id=external_service_id,
            external_id=entity.external_id,
            title=entity.title,
            body=entity.body,
            state=entity.state,
            number=entity.number,
            base_ref=entity.base_ref,
            head_ref=entity.head_ref,
            author_login=entity.author_login,
            campaign_id=campaign_id,
        )


@dataclass(frozen=True, slots=True)
class ExternalRepoSpec:
    """How a repository names itself on its code host."""

    id: str
    service_type: str
    service_id: str


@dataclass(slots=True)
class Repository:
    id: int
    name: str
    external_repo: ExternalRepoSpec
    external_service_id: int | None = None
    mirror_path: Path | None = None


@dataclass(slots=True)
class ExternalService:
    id: int
    kind: str
    url: str
    display_name: str = ""
    token: str | None = None
    code_host: CodeHost = field(init=False)

    def __post_init__(self) -> None:
        self.code_host = CodeHost.new(self.url, self.kind)


@dataclass(frozen=True, slots=True)
class SearchResult:
    threads: tuple[ExternalThread, ...]
    total_count: int = 0
    # Only the first page of results is fetched.
    truncated: bool = False


@dataclass(slots=True)
class ImportResult:
    thread_ids: list[int] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    truncated: bool = False
    first_error: Exception | None = None


@dataclass(frozen=True, slots=True)
class PullRequestDraft:
    base_ref: str
    head_ref: str
    title: str
    body: str
    existing_thread_id: int = 0
    campaign_id: int | None = None


__all__ = [
    "ExternalRepoSpec",
    "ExternalService",
    "ExternalThread",
    "ExternalThreadKind",
    "ImportResult",
    "PullRequestDraft",
    "Repository",
    "SearchResult",
    "Thread",
    "ThreadState",
]
