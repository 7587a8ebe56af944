"""Directory of repositories known to this instance."""

from __future__ import annotations

from collections.abc import Iterable

from .errors import NotFoundError, NotFoundKind
from .models import Repository


class RepositoryDirectory:
    """In-memory repository directory built from configuration.

    Names are matched case-insensitively, as code hosts treat
    ``github.com/Owner/Repo`` and ``github.com/owner/repo`` as the same.
    """

    def __init__(self, repositories: Iterable[Repository] = ()) -> None:
        self._by_id: dict[int, Repository] = {}
        self._by_name: dict[str, Repository] = {}
        for repository in repositories:
            self.add(repository)

    def add(self, repository: Repository) -> None:
        self._by_id[repository.id] = repository
        self._by_name[repository.name.lower()] = repository

    def list_repositories(
        self, name_prefix: str | None = None, limit: int | None = None
    ) -> list[Repository]:
        repos = sorted(self._by_id.values(), key=lambda r: r.id)
        if name_prefix:
            prefix = name_prefix.lower()
            repos = [r for r in repos if r.name.lower().startswith(prefix)]
        return repos[:limit] if limit is not None else repos

    def get_repository_by_name(self, name: str) -> Repository:
        try:
            return self._by_name[name.lower()]
        except KeyError:
            raise NotFoundError(NotFoundKind.local_repository, f"repository {name!r} not found") from None

    def get_repository_by_id(self, repository_id: int) -> Repository:
        try:
            return self._by_id[repository_id]
        except KeyError:
            raise NotFoundError(
                NotFoundKind.local_repository, f"repository {repository_id} not found"
            ) from None


__all__ = ["RepositoryDirectory"]
