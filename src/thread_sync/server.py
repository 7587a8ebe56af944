"""MCP tool server exposing thread reconciliation and comments."""

from __future__ import annotations

import os
from collections.abc import Callable, Coroutine, Mapping
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI

from . import __version__
from .comments import Comment, CommentObject, CommentStore
from .config import ServerConfig, build_repositories, build_services, load_from_env
from .errors import NotFoundError, NotFoundKind
from .fetcher import ExternalEntityFetcher
from .jsonrpc import JSONRPCServer
from .publisher import ChangePublisher, NamespaceAllowList, PublishConfig
from .reconciler import ThreadReconciler
from .repositories import RepositoryDirectory
from .resolver import ClientResolver
from .schemas import (
    AddCommentRequest,
    CreateOrGetThreadRequest,
    DeleteCommentRequest,
    HealthResponse,
    ImportThreadsRequest,
    ImportThreadsResponse,
    ListCommentsRequest,
    PublishChangeRequest,
    ThreadResponse,
    UpdateThreadMetadataRequest,
    schema_for,
)
from .storage import Database, ThreadStore
from .vcs import GitBackend
from .webhooks import create_app

logger = structlog.get_logger(__name__)

Tool = Callable[[dict[str, Any]], Coroutine[Any, Any, dict[str, Any]]]


def _comment_json(comment: Comment) -> dict[str, Any]:
    return {
        "id": comment.id,
        "campaign_id": comment.object.campaign_id,
        "thread_id": comment.object.thread_id,
        "author_user_id": comment.author_user_id,
        "body": comment.body,
        "created_at": comment.created_at.isoformat() if comment.created_at else None,
        "updated_at": comment.updated_at.isoformat() if comment.updated_at else None,
    }


@dataclass(slots=True)
class ThreadSyncServer:
    """JSON-RPC tools over the reconciler, publisher and comment store."""

    db: Database
    reconciler: ThreadReconciler
    publisher: ChangePublisher
    comments: CommentStore
    webhook_secret: str | None = None

    @classmethod
    def create(cls, config: ServerConfig, env: Mapping[str, str] | None = None) -> ThreadSyncServer:
        services = build_services(config, env)
        repositories = RepositoryDirectory(build_repositories(config, services))
        db = Database(config.database_path)
        resolver = ClientResolver(services)
        reconciler = ThreadReconciler(
            threads=ThreadStore(db),
            resolver=resolver,
            fetcher=ExternalEntityFetcher(),
            repositories=repositories,
        )
        settings = config.publisher
        publisher = ChangePublisher(
            repositories=repositories,
            vcs=GitBackend(config.mirrors_root),
            reconciler=reconciler,
            config=PublishConfig(
                author_name=settings.author_name,
                author_email=settings.author_email,
                namespace_tag=settings.namespace_tag,
                is_allowed=NamespaceAllowList(list(settings.allowed_namespaces)),
                timeout_seconds=settings.timeout_seconds,
            ),
        )
        logger.info(
            "server_configured",
            services=len(services),
            repositories=len(repositories.list_repositories()),
            database=str(config.database_path),
        )
        return cls(
            db=db,
            reconciler=reconciler,
            publisher=publisher,
            comments=CommentStore(db),
            webhook_secret=config.webhook_secret,
        )

    async def import_threads(self, params: dict[str, Any]) -> dict[str, Any]:
        request = ImportThreadsRequest.model_validate(params)
        result = await self.reconciler.import_by_query(request.query)
        return ImportThreadsResponse(
            thread_ids=result.thread_ids,
            skipped=result.skipped,
            truncated=result.truncated,
            error=str(result.first_error) if result.first_error else None,
        ).model_dump()

    async def create_or_get_thread(self, params: dict[str, Any]) -> dict[str, Any]:
        request = CreateOrGetThreadRequest.model_validate(params)
        repository = self.reconciler.repositories.get_repository_by_name(request.repository)
        thread_id = await self.reconciler.create_or_get_existing(
            repository.id, repository.external_repo, request.number
        )
        return ThreadResponse(thread_id=thread_id).model_dump()

    async def update_thread_metadata(self, params: dict[str, Any]) -> dict[str, Any]:
        request = UpdateThreadMetadataRequest.model_validate(params)
        thread = await self.reconciler.threads.find_thread_by_id(request.thread_id)
        if thread is None:
            raise NotFoundError(NotFoundKind.thread, f"thread {request.thread_id} not found")
        thread_id = await self.reconciler.update_metadata(
            thread.id, thread.external_service_id, thread.external_id, thread.repository_id
        )
        return ThreadResponse(thread_id=thread_id).model_dump()

    async def publish_change(self, params: dict[str, Any]) -> dict[str, Any]:
        request = PublishChangeRequest.model_validate(params)
        thread_id = await self.publisher.publish(
            request.repository,
            request.campaign_name,
            request.title,
            request.body,
            request.patch,
            existing_thread_id=request.existing_thread_id,
            campaign_id=request.campaign_id,
        )
        return ThreadResponse(thread_id=thread_id).model_dump()

    async def add_comment(self, params: dict[str, Any]) -> dict[str, Any]:
        request = AddCommentRequest.model_validate(params)
        comment = await self.comments.create(
            Comment(
                object=CommentObject(campaign_id=request.campaign_id, thread_id=request.thread_id),
                author_user_id=request.author_user_id,
                body=request.body,
            )
        )
        return _comment_json(comment)

    async def list_comments(self, params: dict[str, Any]) -> dict[str, Any]:
        request = ListCommentsRequest.model_validate(params)
        obj = None
        if request.campaign_id is not None or request.thread_id is not None:
            obj = CommentObject(campaign_id=request.campaign_id, thread_id=request.thread_id)
        comments = await self.comments.list(query=request.query, object=obj)
        return {"comments": [_comment_json(c) for c in comments], "count": len(comments)}

    async def delete_comment(self, params: dict[str, Any]) -> dict[str, Any]:
        request = DeleteCommentRequest.model_validate(params)
        await self.comments.delete_by_id(request.comment_id)
        return {"success": True}

    async def health(self, params: dict[str, Any]) -> dict[str, Any]:
        clients = self.reconciler.resolver.active_clients()
        return HealthResponse(
            version=__version__,
            database_healthy=self.db.health_check(),
            rate_limit={
                str(service_id): {
                    "remaining": getattr(client, "rate_limit_remaining", None),
                    "reset": getattr(client, "rate_limit_reset", None),
                }
                for service_id, client in clients.items()
            },
        ).model_dump()

    def handlers(self) -> dict[str, Tool]:
        """JSON-RPC handlers."""
        return {
            "import_threads": self.import_threads,
            "create_or_get_thread": self.create_or_get_thread,
            "update_thread_metadata": self.update_thread_metadata,
            "publish_change": self.publish_change,
            "add_comment": self.add_comment,
            "list_comments": self.list_comments,
            "delete_comment": self.delete_comment,
            "health": self.health,
        }

    def schemas(self) -> dict[str, dict[str, Any]]:
        """Tool schemas."""
        return {
            "import_threads": schema_for(ImportThreadsRequest),
            "create_or_get_thread": schema_for(CreateOrGetThreadRequest),
            "update_thread_metadata": schema_for(UpdateThreadMetadataRequest),
            "publish_change": schema_for(PublishChangeRequest),
            "add_comment": schema_for(AddCommentRequest),
            "list_comments": schema_for(ListCommentsRequest),
            "delete_comment": schema_for(DeleteCommentRequest),
            "health": {"type": "object", "properties": {}},
        }

    def descriptions(self) -> dict[str, str]:
        return {
            "import_threads": "Import GitHub issues and pull requests matching a search query (first 100 results).",
            "create_or_get_thread": "Map an existing issue or pull request of a repository to a thread.",
            "update_thread_metadata": "Refresh a thread from its GitHub issue or pull request.",
            "publish_change": "Commit a patch, push its campaign branch and open or update the pull request.",
            "add_comment": "Add a comment to a campaign or thread.",
            "list_comments": "List comments, optionally filtered by text and campaign or thread.",
            "delete_comment": "Delete a comment by ID.",
            "health": "Database and GitHub rate limit status.",
        }

    def rpc(self) -> JSONRPCServer:
        return JSONRPCServer(self.handlers(), schemas=self.schemas(), descriptions=self.descriptions())

    async def serve_stdio(self) -> None:
        """Serve via stdio."""
        await self.rpc().serve_stdio()

    def webhook_app(self) -> FastAPI:
        return create_app(self.reconciler, secret=self.webhook_secret)

    async def aclose(self) -> None:
        await self.reconciler.resolver.aclose()


async def run_stdio(env: Mapping[str, str] | None = None) -> None:
    """Entry point."""
    env = os.environ if env is None else env
    server = ThreadSyncServer.create(load_from_env(env), env)
    try:
        await server.serve_stdio()
    finally:
        await server.aclose()



def create_webhook_app(env: Mapping[str, str] | None = None) -> FastAPI:
    """ASGI factory for the webhook app, e.g. ``uvicorn --factory thread_sync.server:create_webhook_app``."""
    env = os.environ if env is None else env
    return ThreadSyncServer.create(load_from_env(env), env).webhook_app()


__all__ = ["ThreadSyncServer", "create_webhook_app", "run_stdio"]
