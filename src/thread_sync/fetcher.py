"""Read issues and pull requests from GitHub as ``ExternalThread`` values."""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from . import queries
from .errors import NotFoundError, NotFoundKind
from .graphql_client import GraphQLError
from .models import ExternalThread, SearchResult

logger = structlog.get_logger(__name__)

_THREAD_TYPES = {"Issue", "PullRequest"}


class GraphQLRequester(Protocol):
    async def request_graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        operation_name: str | None = None,
    ) -> dict[str, Any]: ...


def _is_thread_node(node: dict[str, Any] | None) -> bool:
    return bool(node) and node.get("__typename") in _THREAD_TYPES


class ExternalEntityFetcher:
    """Fetch issues and pull requests, and create or edit pull requests.

    The read operations never cache: GitHub is eventually consistent and a
    refetch must always observe the latest state.
    """

    async def by_node_id(self, client: GraphQLRequester, node_id: str) -> ExternalThread:
        try:
            data = await client.request_graphql(
                queries.NODE_BY_ID_QUERY, {"id": node_id}, operation_name="thread_by_node_id"
            )
        except GraphQLError as e:
            if e.is_not_found:
                raise NotFoundError(
                    NotFoundKind.node, f"github issue or pull request with ID {node_id!r} not found"
                ) from e
            raise
        node = data.get("node")
        if not _is_thread_node(node):
            raise NotFoundError(
                NotFoundKind.node, f"github issue or pull request with ID {node_id!r} not found"
            )
        return ExternalThread.from_node(node)

    async def by_repository_and_number(
        self, client: GraphQLRequester, repository_external_id: str, number: int
    ) -> ExternalThread:
        try:
            data = await client.request_graphql(
                queries.NODE_BY_REPOSITORY_AND_NUMBER_QUERY,
                {"repositoryId": repository_external_id, "number": number},
                operation_name="thread_by_repository_and_number",
            )
        except GraphQLError as e:
            if not e.is_not_found:
                raise
            # GitHub reports both a bad repository ID and a missing number as NOT_FOUND.
            paths = [err.get("path") or [] for err in e.errors]
            if any("issueOrPullRequest" in path for path in paths):
                data = {"node": {"issueOrPullRequest": None}}
            else:
                data = {"node": None}
        repository = data.get("node")
        if not repository:
            raise NotFoundError(
                NotFoundKind.repository,
                f"github repository with ID {repository_external_id!r} not found",
            )
        node = repository.get("issueOrPullRequest")
        if not _is_thread_node(node):
            raise NotFoundError(
                NotFoundKind.entity,
                f"no github issue or pull request in repository {repository_external_id!r} "
                f"with number {number}",
            )
        return ExternalThread.from_node(node)

    async def by_query(self, client: GraphQLRequester, query: str) -> SearchResult:
        """Run one search and return its first page.

        Results past ``queries.SEARCH_PAGE_SIZE`` are not fetched; ``truncated``
        tells the caller to split the query if it needs every match.
        """
        data = await client.request_graphql(
            queries.SEARCH_QUERY, {"query": query}, operation_name="threads_by_query"
        )
        search = data.get("search") or {}
        nodes = [node for node in search.get("nodes") or [] if _is_thread_node(node)]
        total = int(search.get("issueCount") or 0)
        has_next = bool((search.get("pageInfo") or {}).get("hasNextPage"))
        truncated = has_next or total > len(search.get("nodes") or [])
        if truncated:
            logger.warning(
                "search_results_truncated",
                query=query,
                returned=len(nodes),
                total=total,
                page_size=queries.SEARCH_PAGE_SIZE,
            )
        return SearchResult(
            threads=tuple(ExternalThread.from_node(node) for node in nodes),
            total_count=total,
            truncated=truncated,
        )

    async def find_pull_request_by_head(
        self,
        client: GraphQLRequester,
        repository_external_id: str,
        head_ref: str,
        base_ref: str,
    ) -> ExternalThread | None:
        data = await client.request_graphql(
            queries.PULL_REQUESTS_BY_HEAD_QUERY,
            {
                "repositoryId": repository_external_id,
                "headRefName": head_ref,
                "baseRefName": base_ref,
            },
            operation_name="pull_requests_by_head",
        )
        repository = data.get("node")
        if not repository:
            raise NotFoundError(
                NotFoundKind.repository,
                f"github repository with ID {repository_external_id!r} not found",
            )
        nodes = (repository.get("pullRequests") or {}).get("nodes") or []
        return ExternalThread.from_node(nodes[0]) if nodes else None

    async def create_pull_request(
        self,
        client: GraphQLRequester,
        repository_external_id: str,
        *,
        base_ref: str,
        head_ref: str,
        title: str,
        body: str,
    ) -> ExternalThread:
        data = await client.request_graphql(
            queries.CREATE_PULL_REQUEST_MUTATION,
            {
                "input": {
                    "repositoryId": repository_external_id,
                    "baseRefName": base_ref,
                    "headRefName": head_ref,
                    "title": title,
                    "body": body,
                }
            },
            operation_name="create_pull_request",
        )
        return ExternalThread.from_node(data["createPullRequest"]["pullRequest"])

    async def update_pull_request(
        self,
        client: GraphQLRequester,
        pull_request_id: str,
        *,
        title: str,
        body: str,
        base_ref: str,
    ) -> ExternalThread:
        data = await client.request_graphql(
            queries.UPDATE_PULL_REQUEST_MUTATION,
            {
                "input": {
                    "pullRequestId": pull_request_id,
                    "title": title,
                    "body": body,
                    "baseRefName": base_ref,
                }
            },
            operation_name="update_pull_request",
        )
        return ExternalThread.from_node(data["updatePullRequest"]["pullRequest"])


__all__ = ["ExternalEntityFetcher", "GraphQLRequester"]
