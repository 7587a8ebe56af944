"""GraphQL client for the GitHub API."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from .errors import RemoteError
from .models import ExternalService

logger = structlog.get_logger(__name__)


class GraphQLError(RemoteError):
    """The request succeeded but the response carried GraphQL errors."""

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        message = errors[0].get("message", "Unknown GraphQL error") if errors else "Unknown GraphQL error"
        super().__init__(f"GraphQL error: {message}")
        self.errors = errors

    @property
    def is_not_found(self) -> bool:
        return bool(self.errors) and all(e.get("type") == "NOT_FOUND" for e in self.errors)


def _status_error(status: int) -> RemoteError:
    if status == 401:
        return RemoteError("Invalid GitHub token", status_code=status)
    if status == 404:
        return RemoteError("Resource not found", status_code=status)
    if status in (403, 429):
        return RemoteError("GitHub API rate limit exceeded or forbidden", status_code=status)
    return RemoteError(f"GitHub API error: {status}", status_code=status)


class GitHubGraphQLClient:
    """GitHub GraphQL API client bound to one code host."""

    def __init__(
        self,
        token: str | None,
        base_url: str = "https://api.github.com/graphql",
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.headers = {"Content-Type": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self.rate_limit_remaining: int | None = None
        self.rate_limit_reset: int | None = None
        self.rate_limit_cost: int | None = None
        self.rate_limit_used: int | None = None

    @classmethod
    def for_service(cls, service: ExternalService) -> GitHubGraphQLClient:
        return cls(token=service.token, base_url=service.code_host.graphql_url)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubGraphQLClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _update_rate_limits(self, response: httpx.Response) -> None:
        headers = response.headers
        if "X-RateLimit-Remaining" in headers:
            self.rate_limit_remaining = int(headers["X-RateLimit-Remaining"])
        if "X-RateLimit-Reset" in headers:
            self.rate_limit_reset = int(headers["X-RateLimit-Reset"])
        if "X-RateLimit-Cost" in headers:
            self.rate_limit_cost = int(headers["X-RateLimit-Cost"])
        if "X-RateLimit-Used" in headers:
            self.rate_limit_used = int(headers["X-RateLimit-Used"])

    async def request_graphql(
        self,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        operation_name: str | None = None,
    ) -> dict[str, Any]:
        """Execute a GraphQL document and return its ``data`` object."""
        payload: dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        operation = operation_name or "anonymous"

        try:
            logger.info("github_graphql_request", operation=operation, endpoint=self.base_url)
            response = await self._client.post(self.base_url, headers=self.headers, json=payload)
            self._update_rate_limits(response)
            response.raise_for_status()
            result: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "github_graphql_http_error",
                operation=operation,
                status=e.response.status_code,
            )
            raise _status_error(e.response.status_code) from e
        except httpx.RequestError as e:
            logger.error("github_graphql_connection_failed", operation=operation, error=str(e))
            raise RemoteError(f"GitHub API connection failed: {e}") from e

        if result.get("errors"):
            logger.error(
                "github_graphql_error",
                operation=operation,
                errors=result["errors"],
                rate_limit_remaining=self.rate_limit_remaining,
            )
            raise GraphQLError(result["errors"])

        logger.info(
            "github_graphql_success",
            operation=operation,
            rate_limit_remaining=self.rate_limit_remaining,
            rate_limit_used=self.rate_limit_used,
            rate_limit_cost=self.rate_limit_cost,
        )
        return result.get("data") or {}


__all__ = ["GitHubGraphQLClient", "GraphQLError"]
