from __future__ import annotations

import pytest

from thread_sync.errors import ConfigError
from thread_sync.models import ExternalRepoSpec, ExternalService, Repository
from thread_sync.resolver import ClientResolver


class Client:
    def __init__(self, service):
        self.service = service
        self.closed = False

    async def aclose(self):
        self.closed = True


def _repo(service_id="https://github.com/", service_type="github", external_service_id=None):
    return Repository(
        id=1,
        name="github.com/owner/repo",
        external_repo=ExternalRepoSpec(id="R_1", service_type=service_type, service_id=service_id),
        external_service_id=external_service_id,
    )


@pytest.fixture
def services():
    return [
        ExternalService(id=1, kind="github", url="https://GitHub.com"),
        ExternalService(id=2, kind="github", url="https://ghe.example.com/"),
    ]


def test_resolve_matches_normalized_code_host(services):
    resolver = ClientResolver(services, client_factory=Client)

    client, service_id = resolver.resolve(_repo("https://ghe.example.com/"))

    assert service_id == 2
    assert client.service is services[1]


def test_one_client_per_service(services):
    resolver = ClientResolver(services, client_factory=Client)

    a, _ = resolver.resolve(_repo())
    b, _ = resolver.resolve(_repo())

    assert a is b
    assert list(resolver.active_clients()) == [1]


def test_explicit_service_must_host_repository(services):
    resolver = ClientResolver(services, client_factory=Client)

    assert resolver.resolve(_repo(external_service_id=1))[1] == 1
    with pytest.raises(ConfigError, match="does not host"):
        resolver.resolve(_repo(external_service_id=2))
    with pytest.raises(ConfigError, match="unknown external service"):
        resolver.resolve(_repo(external_service_id=7))


def test_service_type_is_part_of_identity(services):
    resolver = ClientResolver(services, client_factory=Client)

    with pytest.raises(ConfigError, match="no external service"):
        resolver.resolve(_repo(service_type="gitlab"))


def test_unsupported_kind():
    service = ExternalService(id=3, kind="gitlab", url="https://gitlab.com/")
    resolver = ClientResolver([service], client_factory=Client)

    with pytest.raises(ConfigError, match="unsupported kind"):
        resolver.resolve(_repo("https://gitlab.com/", "gitlab"))
    with pytest.raises(ConfigError):
        resolver.default()


def test_default_is_first_github_service(services):
    resolver = ClientResolver(services, client_factory=Client)

    _, service = resolver.default()

    assert service.id == 1


@pytest.mark.anyio
async def test_aclose_closes_clients(services):
    resolver = ClientResolver(services, client_factory=Client)
    client, _ = resolver.resolve(_repo())

    await resolver.aclose()

    assert client.closed
    assert resolver.active_clients() == {}
