"""Configuration loading for thread-sync."""

from __future__ import annotations

from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

import yaml

from .codehost import CodeHost
from .errors import ConfigError
from .models import ExternalRepoSpec, ExternalService, Repository

DEFAULT_DATABASE_PATH = Path("~/.local/share/thread-sync/threads.db")


@dataclass(slots=True)
class CodeHostConfig:
    id: int
    url: str
    kind: str = "github"
    display_name: str = ""
    token: str | None = None
    token_env: str | None = None


@dataclass(slots=True)
class RepositoryConfig:
    id: int
    name: str
    external_id: str
    external_service_id: int | None = None
    service_url: str | None = None
    service_type: str = "github"
    mirror_path: Path | None = None


@dataclass(slots=True)
class PublisherSettings:
    namespace_tag: str = "a8n"
    author_name: str = "thread-sync"
    author_email: str = "thread-sync@localhost"
    allowed_namespaces: list[str] = field(default_factory=list)
    timeout_seconds: float | None = 300.0


@dataclass(slots=True)
class ServerConfig:
    """Top level configuration."""

    database_path: Path = DEFAULT_DATABASE_PATH
    mirrors_root: Path | None = None
    code_hosts: list[CodeHostConfig] = field(default_factory=list)
    repositories: list[RepositoryConfig] = field(default_factory=list)
    publisher: PublisherSettings = field(default_factory=PublisherSettings)
    github_token: str | None = None
    webhook_secret: str | None = None
    log_level: str = "INFO"


def validate_base_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        raise ConfigError(f"invalid code host URL {url!r}: expected http(s)://host[/path]")
    return url


def _mapping(value: Any, what: str) -> MutableMapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, MutableMapping):
        raise ConfigError(f"{what} must be a mapping")
    return value


def _code_host(data: Any) -> CodeHostConfig:
    data = _mapping(data, "code_hosts entry")
    try:
        return CodeHostConfig(
            id=int(data["id"]),
            url=validate_base_url(str(data["url"])),
            kind=str(data.get("kind", "github")).lower(),
            display_name=str(data.get("display_name", "")),
            token=data.get("token"),
            token_env=data.get("token_env"),
        )
    except KeyError as e:
        raise ConfigError(f"code_hosts entry is missing {e.args[0]!r}") from None


def _repository(data: Any) -> RepositoryConfig:
    data = _mapping(data, "repositories entry")
    try:
        service_url = data.get("service_url")
        return RepositoryConfig(
            id=int(data["id"]),
            name=str(data["name"]),
            external_id=str(data["external_id"]),
            external_service_id=(
                int(data["external_service_id"]) if data.get("external_service_id") is not None else None
            ),
            service_url=validate_base_url(str(service_url)) if service_url else None,
            service_type=str(data.get("service_type", "github")).lower(),
            mirror_path=Path(data["mirror_path"]).expanduser() if data.get("mirror_path") else None,
        )
    except KeyError as e:
        raise ConfigError(f"repositories entry is missing {e.args[0]!r}") from None


def load_config(path: Path) -> ServerConfig:
    data = _mapping(yaml.safe_load(path.read_text()) if path.exists() else {}, "config file")
    publisher = _mapping(data.get("publisher"), "publisher")
    timeout = publisher.get("timeout_seconds", 300.0)
    return ServerConfig(
        database_path=Path(data.get("database_path", DEFAULT_DATABASE_PATH)).expanduser(),
        mirrors_root=Path(data["mirrors_root"]).expanduser() if data.get("mirrors_root") else None,
        code_hosts=[_code_host(x) for x in data.get("code_hosts") or []],
        repositories=[_repository(x) for x in data.get("repositories") or []],
        publisher=PublisherSettings(
            namespace_tag=str(publisher.get("namespace_tag", "a8n")),
            author_name=str(publisher.get("author_name", "thread-sync")),
            author_email=str(publisher.get("author_email", "thread-sync@localhost")),
            allowed_namespaces=[str(x) for x in publisher.get("allowed_namespaces") or []],
            timeout_seconds=float(timeout) if timeout is not None else None,
        ),
        webhook_secret=data.get("webhook_secret"),
        log_level=str(data.get("log_level", "INFO")),
    )


def load_from_env(env: Mapping[str, str], base: ServerConfig | None = None) -> ServerConfig:
    """Load the YAML file named by ``THREAD_SYNC_CONFIG`` and apply env overrides."""
    if base is None:
        base = load_config(Path(env["THREAD_SYNC_CONFIG"])) if env.get("THREAD_SYNC_CONFIG") else ServerConfig()
    if env.get("THREAD_SYNC_DB"):
        base.database_path = Path(env["THREAD_SYNC_DB"]).expanduser()
    if env.get("THREAD_SYNC_MIRRORS"):
        base.mirrors_root = Path(env["THREAD_SYNC_MIRRORS"]).expanduser()
    if env.get("THREAD_SYNC_ALLOWED_NAMESPACES"):
        base.publisher.allowed_namespaces.extend(
            x.strip() for x in env["THREAD_SYNC_ALLOWED_NAMESPACES"].split(",") if x.strip()
        )
    if env.get("GITHUB_TOKEN"):
        base.github_token = env["GITHUB_TOKEN"]
    if env.get("WEBHOOK_SECRET"):
        base.webhook_secret = env["WEBHOOK_SECRET"]
    if env.get("LOG_LEVEL"):
        base.log_level = env["LOG_LEVEL"]
    return base


def build_services(config: ServerConfig, env: Mapping[str, str] | None = None) -> list[ExternalService]:
    env = env or {}
    services: list[ExternalService] = []
    seen: dict[CodeHost, int] = {}
    for host in config.code_hosts:
        token = host.token or (env.get(host.token_env) if host.token_env else None) or config.github_token
        service = ExternalService(
            id=host.id, kind=host.kind, url=host.url, display_name=host.display_name, token=token
        )
        if any(s.id == service.id for s in services):
            raise ConfigError(f"duplicate external service id {service.id}")
        if service.code_host in seen:
            raise ConfigError(
                f"external services {seen[service.code_host]} and {service.id} are the same code host "
                f"({service.code_host.service_id})"
            )
        seen[service.code_host] = service.id
        services.append(service)
    return services


def build_repositories(config: ServerConfig, services: list[ExternalService]) -> list[Repository]:
    by_id = {s.id: s for s in services}
    repositories = []
    for repo in config.repositories:
        if repo.external_service_id is not None:
            service = by_id.get(repo.external_service_id)
            if service is None:
                raise ConfigError(
                    f"repository {repo.name} references unknown external service {repo.external_service_id}"
                )
            code_host = service.code_host
        elif repo.service_url:
            code_host = CodeHost.new(repo.service_url, repo.service_type)
        else:
            raise ConfigError(f"repository {repo.name} needs external_service_id or service_url")
        repositories.append(
            Repository(
                id=repo.id,
                name=repo.name,
                external_repo=ExternalRepoSpec(
                    id=repo.external_id,
                    service_type=code_host.service_type,
                    service_id=code_host.service_id,
                ),
                external_service_id=repo.external_service_id,
                mirror_path=repo.mirror_path,
            )
        )
    return repositories


__all__ = [
    "CodeHostConfig",
    "PublisherSettings",
    "RepositoryConfig",
    "ServerConfig",
    "build_repositories",
    "build_services",
    "load_config",
    "load_from_env",
    "validate_base_url",
]
