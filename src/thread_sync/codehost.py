"""Canonical identity of an external code host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit

GITHUB_DOT_COM = "github.com"


class ServiceRef(Protocol):
    service_id: str
    service_type: str


def normalize_base_url(base_url: str) -> str:
    """Return ``base_url`` with insignificant differences removed.

    The host is lower-cased and the path always ends with a slash, so
    ``https://GitHub.com`` and ``https://github.com/`` serialize identically.
    The result is what gets stored as a service id; never compare raw URLs.
    """
    parts = urlsplit(base_url)
    userinfo, sep, host = parts.netloc.rpartition("@")
    netloc = f"{userinfo}{sep}{host.lower()}"
    path = parts.path if parts.path.endswith("/") else parts.path + "/"
    return urlunsplit((parts.scheme, netloc, path, parts.query, parts.fragment))


@dataclass(frozen=True, slots=True)
class CodeHost:
    service_id: str
    service_type: str
    base_url: str

    @classmethod
    def new(cls, base_url: str, service_type: str) -> CodeHost:
        normalized = normalize_base_url(base_url)
        return cls(service_id=normalized, service_type=service_type, base_url=normalized)

    @property
    def hostname(self) -> str:
        return (urlsplit(self.base_url).hostname or "").lower()

    @property
    def graphql_url(self) -> str:
        if self.hostname == GITHUB_DOT_COM:
            return "https://api.github.com/graphql"
        # GitHub Enterprise serves GraphQL below the instance root.
        return f"{self.base_url}api/graphql"

    def is_host_of(self, other: ServiceRef) -> bool:
        return same_service(self, other)


def same_service(a: ServiceRef, b: ServiceRef) -> bool:
    return a.service_id == b.service_id and a.service_type == b.service_type


__all__ = ["CodeHost", "ServiceRef", "normalize_base_url", "same_service"]
