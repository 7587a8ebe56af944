"""Publish a campaign's patch to a repository as a pull request."""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

import anyio
import structlog

from .errors import NamespaceNotAllowedError
from .models import PullRequestDraft
from .reconciler import ThreadReconciler
from .repositories import RepositoryDirectory
from .vcs import CommitInfo, GitBackend

logger = structlog.get_logger(__name__)

_BRANCH_UNSAFE = re.compile(r"[^a-zA-Z0-9_.]+")


def branch_name(namespace_tag: str, campaign_name: str) -> str:
    """``"a8n"``, ``"Fix the bug!"`` → ``"a8n/Fix-the-bug"``."""
    slug = _BRANCH_UNSAFE.sub("-", campaign_name).removesuffix("-")
    if not slug.strip("-"):
        raise ValueError(f"campaign name {campaign_name!r} has no characters usable in a branch name")
    return f"{namespace_tag}/{slug}"


@dataclass(slots=True)
class NamespaceAllowList:
    """Repository-name prefixes that publishing may write to.

    Each prefix names a whole namespace: ``github.com/sd9`` allows
    ``github.com/sd9/repo`` but not ``github.com/sd9evil/repo``. An empty
    allow-list refuses every repository.
    """

    prefixes: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.prefixes = [p.lower().rstrip("/") + "/" for p in self.prefixes if p.strip("/")]

    def __call__(self, repository_name: str) -> bool:
        name = repository_name.lower()
        return any(name.startswith(prefix) for prefix in self.prefixes)


@dataclass(slots=True)
class PublishConfig:
    author_name: str = "thread-sync"
    author_email: str = "thread-sync@localhost"
    namespace_tag: str = "a8n"
    is_allowed: Callable[[str], bool] = field(default_factory=NamespaceAllowList)
    timeout_seconds: float | None = 300.0


class ChangePublisher:
    """Commit a patch, push its branch and open or update the pull request.

    The steps are not transactional: a failure after the push leaves the
    branch on the remote, and rerunning ``publish`` picks it up again since
    the push is forced and the pull request lookup happens before creation.
    """

    def __init__(
        self,
        repositories: RepositoryDirectory,
        vcs: GitBackend,
        reconciler: ThreadReconciler,
        config: PublishConfig | None = None,
    ) -> None:
        self.repositories = repositories
        self.vcs = vcs
        self.reconciler = reconciler
        self.config = config or PublishConfig()

    async def publish(
        self,
        repository_name: str,
        campaign_name: str,
        title: str,
        body: str,
        patch: str,
        *,
        existing_thread_id: int = 0,
        campaign_id: int | None = None,
    ) -> int:
        timeout = self.config.timeout_seconds
        if timeout is None:
            return await self._publish(
                repository_name, campaign_name, title, body, patch, existing_thread_id, campaign_id
            )
        with anyio.fail_after(timeout):
            return await self._publish(
                repository_name, campaign_name, title, body, patch, existing_thread_id, campaign_id
            )

    async def _publish(
        self,
        repository_name: str,
        campaign_name: str,
        title: str,
        body: str,
        patch: str,
        existing_thread_id: int,
        campaign_id: int | None,
    ) -> int:
        branch = branch_name(self.config.namespace_tag, campaign_name)
        repository = self.repositories.get_repository_by_name(repository_name)
        default_branch, base_commit = await self.vcs.default_branch(repository)

        if not self.config.is_allowed(repository.name):
            logger.warning("publish_refused", repo=repository.name, branch=branch)
            raise NamespaceNotAllowedError(
                f"refusing to modify repository {repository.name}: not in an allowed namespace"
            )

        log = logger.bind(repo=repository.name, branch=branch, campaign=campaign_name)
        ref = f"refs/heads/{branch}"
        await self.vcs.create_commit_from_patch(
            repository,
            base_commit,
            ref,
            patch,
            CommitInfo(
                author_name=self.config.author_name,
                author_email=self.config.author_email,
                message=f"{self.config.namespace_tag}: {campaign_name}",
                date=datetime.now(timezone.utc),
            ),
        )
        await self.vcs.push(repository, [f"{ref}:{ref}"], force=True)
        log.info("publish_branch_pushed", base=default_branch, base_commit=base_commit)

        thread_id = await self.reconciler.create_or_get_pull_request(
            repository,
            PullRequestDraft(
                base_ref=default_branch,
                head_ref=branch,
                title=title,
                body=f"{body}\n\nCampaign: {campaign_name}",
                existing_thread_id=existing_thread_id,
                campaign_id=campaign_id,
            ),
        )
        log.info("publish_complete", thread_id=thread_id)
        return thread_id


__all__ = ["ChangePublisher", "NamespaceAllowList", "PublishConfig", "branch_name"]
