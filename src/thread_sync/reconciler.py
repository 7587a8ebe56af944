"""Map GitHub issues and pull requests onto internal threads.

Each external entity is identified by ``(repository_id, external_service_id,
external_id)`` and maps to at most one thread row. A tuple is either absent
(no row yet) or present (exactly one row); rows are never deleted here.

Nothing in this module locks or retries. Concurrent callers working on the
same tuple are serialized by the store's uniqueness constraint, whose upsert
turns a losing insert into an update of the winner's row, and callers retry
whole operations because every write is preceded by a lookup.
"""

from __future__ import annotations

import structlog

from .errors import NotFoundError, NotFoundKind, ServiceMismatchError
from .fetcher import ExternalEntityFetcher
from .models import (
    ExternalRepoSpec,
    ExternalThread,
    ImportResult,
    PullRequestDraft,
    Repository,
    Thread,
)
from .repositories import RepositoryDirectory
from .resolver import ClientResolver
from .storage import ThreadStore

logger = structlog.get_logger(__name__)


class ThreadReconciler:
    def __init__(
        self,
        threads: ThreadStore,
        resolver: ClientResolver,
        fetcher: ExternalEntityFetcher,
        repositories: RepositoryDirectory,
    ) -> None:
        self.threads = threads
        self.resolver = resolver
        self.fetcher = fetcher
        self.repositories = repositories

    async def create_or_get_existing(
        self, repository_id: int, external_repo: ExternalRepoSpec, number: int
    ) -> int:
        """Return the thread for issue/PR ``number``, creating the row if needed.

        The entity must already exist on the code host; this never creates
        remote issues or pull requests.
        """
        repository = self.repositories.get_repository_by_id(repository_id)
        client, external_service_id = self.resolver.resolve(repository)
        entity = await self.fetcher.by_repository_and_number(client, external_repo.id, number)
        return await self.create_or_update(repository_id, external_service_id, entity)

    async def update_metadata(
        self,
        thread_id: int,
        thread_external_service_id: int,
        external_id: str,
        repository_id: int,
    ) -> int:
        repository = self.repositories.get_repository_by_id(repository_id)
        client, external_service_id = self.resolver.resolve(repository)
        if external_service_id != thread_external_service_id:
            logger.error(
                "thread_service_mismatch",
                thread_id=thread_id,
                thread_external_service_id=thread_external_service_id,
                repository_external_service_id=external_service_id,
            )
            raise ServiceMismatchError(thread_id, thread_external_service_id, external_service_id)
        entity = await self.fetcher.by_node_id(client, external_id)
        return await self.create_or_update(
            repository_id, external_service_id, entity, pinned_thread_id=thread_id
        )

    async def import_by_query(self, query: str) -> ImportResult:
        """Import every issue and pull request matched by a GitHub search.

        Only the first page of results is imported. Each result is saved on
        its own; results in repositories unknown to this instance are skipped,
        and a failing result is recorded without stopping the rest.
        """
        client, search_service = self.resolver.default()
        search = await self.fetcher.by_query(client, query)
        result = ImportResult(truncated=search.truncated)
        host = search_service.code_host.hostname
        for entity in search.threads:
            name = f"{host}/{entity.repository_full_name}"
            try:
                repository = self.repositories.get_repository_by_name(name)
            except NotFoundError:
                logger.warning(
                    "import_repository_not_found",
                    repo=name,
                    title=entity.title,
                    number=entity.number,
                    hint="add the repository to the code host configuration and rerun the import",
                )
                result.skipped.append(name)
                continue
            try:
                _, external_service_id = self.resolver.resolve(repository)
                thread_id = await self.create_or_update(repository.id, external_service_id, entity)
            except Exception as exc:
                logger.error(
                    "import_thread_failed",
                    repo=name,
                    number=entity.number,
                    error=str(exc),
                )
                if result.first_error is None:
                    result.first_error = exc
                continue
            result.thread_ids.append(thread_id)
        logger.info(
            "import_by_query_complete",
            query=query,
            imported=len(result.thread_ids),
            skipped=len(result.skipped),
            truncated=result.truncated,
            failed=result.first_error is not None,
        )
        return result

    async def create_or_update(
        self,
        repository_id: int,
        external_service_id: int,
        entity: ExternalThread,
        pinned_thread_id: int = 0,
        campaign_id: int | None = None,
    ) -> int:
        thread = Thread.from_external(entity, repository_id, external_service_id, campaign_id)
        if pinned_thread_id:
            saved = await self.threads.update_thread(pinned_thread_id, thread)
            logger.info("thread_updated", thread_id=saved.id, external_id=entity.external_id)
            return saved.id

        existing = await self.threads.find_thread_by_tuple(
            repository_id, external_service_id, entity.external_id
        )
        if existing is not None:
            saved = await self.threads.update_thread(existing.id, thread)
            logger.info("thread_updated", thread_id=saved.id, external_id=entity.external_id)
            return saved.id

        saved = await self.threads.insert_thread(thread)
        logger.info(
            "thread_created",
            thread_id=saved.id,
            repository_id=repository_id,
            external_id=entity.external_id,
        )
        return saved.id

    async def create_or_get_pull_request(self, repository: Repository, draft: PullRequestDraft) -> int:
        """Open (or reuse, or edit) the pull request described by ``draft``.

        With ``existing_thread_id`` the thread's pull request is edited in
        place. Otherwise an open pull request for the same head and base is
        reused before a new one is created, so retrying after a partial
        failure does not open duplicates.
        """
        client, external_service_id = self.resolver.resolve(repository)
        repository_external_id = repository.external_repo.id

        if draft.existing_thread_id:
            thread = await self._owned_thread(draft.existing_thread_id, repository, external_service_id)
            entity = await self.fetcher.update_pull_request(
                client,
                thread.external_id,
                title=draft.title,
                body=draft.body,
                base_ref=draft.base_ref,
            )
            return await self.create_or_update(
                repository.id,
                external_service_id,
                entity,
                pinned_thread_id=thread.id,
                campaign_id=draft.campaign_id,
            )

        entity = await self.fetcher.find_pull_request_by_head(
            client, repository_external_id, draft.head_ref, draft.base_ref
        )
        if entity is not None:
            logger.info("pull_request_reused", repo=repository.name, number=entity.number, head=draft.head_ref)
        else:
            entity = await self.fetcher.create_pull_request(
                client,
                repository_external_id,
                base_ref=draft.base_ref,
                head_ref=draft.head_ref,
                title=draft.title,
                body=draft.body,
            )
            logger.info("pull_request_created", repo=repository.name, number=entity.number, head=draft.head_ref)
        return await self.create_or_update(
            repository.id, external_service_id, entity, campaign_id=draft.campaign_id
        )

    async def refresh(self, repository: Repository, external_id: str) -> int | None:
        """Refresh the thread mapped to ``external_id``, if one was imported."""
        _, external_service_id = self.resolver.resolve(repository)
        thread = await self.threads.find_thread_by_tuple(repository.id, external_service_id, external_id)
        if thread is None:
            logger.debug("refresh_thread_not_imported", repo=repository.name, external_id=external_id)
            return None
        return await self.update_metadata(
            thread.id, thread.external_service_id, thread.external_id, repository.id
        )

    async def _owned_thread(
        self, thread_id: int, repository: Repository, external_service_id: int
    ) -> Thread:
        thread = await self.threads.find_thread_by_id(thread_id)
        if thread is None:
            raise NotFoundError(NotFoundKind.thread, f"thread {thread_id} not found")
        if thread.repository_id != repository.id:
            raise NotFoundError(
                NotFoundKind.thread, f"thread {thread_id} does not belong to repository {repository.name}"
            )
        if thread.external_service_id != external_service_id:
            raise ServiceMismatchError(thread_id, thread.external_service_id, external_service_id)
        return thread


__all__ = ["ThreadReconciler"]
