from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from thread_sync.fetcher import ExternalEntityFetcher
from thread_sync.models import ExternalRepoSpec, ExternalService, Repository
from thread_sync.reconciler import ThreadReconciler
from thread_sync.repositories import RepositoryDirectory
from thread_sync.resolver import ClientResolver
from thread_sync.storage import Database, ThreadStore

GITHUB_SERVICE_ID = "https://github.com/"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def make_node(
    number: int = 1,
    *,
    kind: str = "PullRequest",
    node_id: str | None = None,
    repo: str = "owner/repo",
    title: str = "Fix the bug",
    body: str = "body",
    state: str = "OPEN",
    base: str = "main",
    head: str = "a8n/fix-bug",
) -> dict[str, Any]:
    node: dict[str, Any] = {
        "__typename": kind,
        "id": node_id or f"{'PR' if kind == 'PullRequest' else 'I'}_{repo}_{number}",
        "number": number,
        "title": title,
        "body": body,
        "state": state,
        "url": f"https://github.com/{repo}/pull/{number}",
        "createdAt": "2024-01-02T03:04:05Z",
        "updatedAt": "2024-01-03T03:04:05Z",
        "author": {"login": "alice"},
        "repository": {"nameWithOwner": repo},
    }
    if kind == "PullRequest":
        node["baseRefName"] = base
        node["headRefName"] = head
    return node


class FakeGraphQLClient:
    """Answers GraphQL requests by operation name."""

    def __init__(self) -> None:
        self.handlers: dict[str, Any] = {}
        self.calls: list[tuple[str | None, dict[str, Any] | None]] = []

    def on(self, operation: str, response: dict[str, Any] | Exception | Callable[..., Any]) -> None:
        self.handlers[operation] = response

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def request_graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        operation_name: str | None = None,
    ) -> dict[str, Any]:
        self.calls.append((operation_name, variables))
        response = self.handlers[operation_name]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(variables)
        return response


@pytest.fixture
def node() -> Callable[..., dict[str, Any]]:
    return make_node


@pytest.fixture
def github() -> FakeGraphQLClient:
    return FakeGraphQLClient()


@pytest.fixture
def service() -> ExternalService:
    return ExternalService(id=1, kind="github", url="https://GitHub.com", token="t")


@pytest.fixture
def repo() -> Repository:
    return Repository(
        id=10,
        name="github.com/owner/repo",
        external_repo=ExternalRepoSpec(id="R_repo", service_type="github", service_id=GITHUB_SERVICE_ID),
    )


@pytest.fixture
def other_repo() -> Repository:
    return Repository(
        id=11,
        name="github.com/owner/other",
        external_repo=ExternalRepoSpec(id="R_other", service_type="github", service_id=GITHUB_SERVICE_ID),
    )


@pytest.fixture
def repositories(repo: Repository, other_repo: Repository) -> RepositoryDirectory:
    return RepositoryDirectory([repo, other_repo])


@pytest.fixture
def db(tmp_path: Path) -> Database:
    return Database(tmp_path / "threads.db")


@pytest.fixture
def threads(db: Database) -> ThreadStore:
    return ThreadStore(db)


@pytest.fixture
def resolver(service: ExternalService, github: FakeGraphQLClient) -> ClientResolver:
    return ClientResolver([service], client_factory=lambda _service: github)


@pytest.fixture
def reconciler(
    threads: ThreadStore, resolver: ClientResolver, repositories: RepositoryDirectory
) -> ThreadReconciler:
    return ThreadReconciler(
        threads=threads,
        resolver=resolver,
        fetcher=ExternalEntityFetcher(),
        repositories=repositories,
    )
