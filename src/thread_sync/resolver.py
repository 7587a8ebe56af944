"""Resolve the code host client responsible for a repository."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

import structlog

from .errors import ConfigError
from .graphql_client import GitHubGraphQLClient
from .models import ExternalService, Repository

logger = structlog.get_logger(__name__)

SUPPORTED_KINDS = frozenset({"github"})

ClientFactory = Callable[[ExternalService], Any]


class ClientResolver:
    """Map repositories to (client, external service id) pairs.

    One client is created per external service and reused for every
    repository hosted there.
    """

    def __init__(
        self,
        services: Iterable[ExternalService],
        client_factory: ClientFactory = GitHubGraphQLClient.for_service,
    ) -> None:
        self._services = list(services)
        self._client_factory = client_factory
        self._clients: dict[int, Any] = {}

    @property
    def services(self) -> list[ExternalService]:
        return list(self._services)

    def service(self, service_id: int) -> ExternalService:
        for service in self._services:
            if service.id == service_id:
                return service
        raise ConfigError(f"unknown external service {service_id}")

    def _client(self, service: ExternalService) -> Any:
        if service.kind not in SUPPORTED_KINDS:
            raise ConfigError(f"external service {service.id} has unsupported kind {service.kind!r}")
        client = self._clients.get(service.id)
        if client is None:
            client = self._client_factory(service)
            self._clients[service.id] = client
            logger.debug("code_host_client_created", service_id=service.id, url=service.code_host.service_id)
        return client

    def service_for(self, repository: Repository) -> ExternalService:
        spec = repository.external_repo
        if repository.external_service_id is not None:
            service = self.service(repository.external_service_id)
            if not service.code_host.is_host_of(spec):
                raise ConfigError(
                    f"repository {repository.name}: external service {service.id} "
                    f"({service.code_host.service_id}) does not host {spec.service_id}"
                )
            return service
        for service in self._services:
            if service.code_host.is_host_of(spec):
                return service
        raise ConfigError(
            f"no external service configured for repository {repository.name} "
            f"({spec.service_type} at {spec.service_id})"
        )

    def resolve(self, repository: Repository) -> tuple[Any, int]:
        service = self.service_for(repository)
        return self._client(service), service.id

    def default(self) -> tuple[Any, ExternalService]:
        """Client for queries that are not scoped to one repository."""
        for service in self._services:
            if service.kind in SUPPORTED_KINDS:
                return self._client(service), service
        raise ConfigError("no GitHub external service is configured")

    def active_clients(self) -> dict[int, Any]:
        return dict(self._clients)

    async def aclose(self) -> None:
        clients, self._clients = self._clients, {}
        for client in clients.values():
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()


__all__ = ["ClientResolver", "SUPPORTED_KINDS"]
