"""FastAPI webhook endpoint that refreshes threads from GitHub events."""

from __future__ import annotations

import hashlib
import hmac
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any
from urllib.parse import urlsplit

import structlog
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from .errors import NotFoundError, RemoteError, ServiceMismatchError
from .reconciler import ThreadReconciler

logger = structlog.get_logger(__name__)


class WebhookRepository(BaseModel):
    full_name: str
    html_url: str


class WebhookNode(BaseModel):
    node_id: str
    number: int | None = None


class BaseWebhookPayload(BaseModel):
    action: str = Field(..., min_length=1, max_length=100)


class IssuesPayload(BaseWebhookPayload):
    issue: WebhookNode
    repository: WebhookRepository


class PullRequestPayload(BaseWebhookPayload):
    pull_request: WebhookNode
    repository: WebhookRepository


EVENT_SCHEMAS: dict[str, type[BaseWebhookPayload]] = {
    "issues": IssuesPayload,
    "pull_request": PullRequestPayload,
}


def _verify_signature(secret: str | None, body: bytes, signature: str | None) -> None:
    if not secret:
        return
    if not signature:
        raise HTTPException(status_code=400, detail="Missing signature")
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(f"sha256={digest}", signature):
        raise HTTPException(status_code=401, detail="Signature mismatch")


def _accepted(status: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=202, content={"status": status, **extra})


def create_app(reconciler: ThreadReconciler, secret: str | None = None) -> FastAPI:
    """Build the webhook app; without ``secret`` the ``WEBHOOK_SECRET`` env var is used."""
    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await reconciler.resolver.aclose()

    app = FastAPI(title="thread-sync webhooks", lifespan=lifespan)

    @app.post("/webhook")
    async def handle_webhook(
        request: Request,
        x_hub_signature_256: str | None = Header(default=None),
        x_github_event: str | None = Header(default=None, alias="X-GitHub-Event"),
    ) -> JSONResponse:
        body = await request.body()
        _verify_signature(secret or os.environ.get("WEBHOOK_SECRET"), body, x_hub_signature_256)

        try:
            payload = await request.json()
        except Exception as e:
            raise HTTPException(status_code=400, detail=f"Invalid payload: {e}") from None

        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload: expected JSON object")

        if not x_github_event:
            raise HTTPException(status_code=400, detail="Missing X-GitHub-Event header")

        schema = EVENT_SCHEMAS.get(x_github_event)
        if schema is None:
            return _accepted("ignored", reason=f"event {x_github_event} not handled")

        try:
            event = schema.model_validate(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=f"Invalid payload: {exc.errors()}") from None

        node = event.issue if isinstance(event, IssuesPayload) else event.pull_request
        host = (urlsplit(event.repository.html_url).hostname or "").lower()
        name = f"{host}/{event.repository.full_name}"
        log = logger.bind(event=x_github_event, action=event.action, repo=name, external_id=node.node_id)

        try:
            repository = reconciler.repositories.get_repository_by_name(name)
        except NotFoundError:
            log.info("webhook_repository_unknown")
            return _accepted("ignored", reason="repository not known")

        try:
            thread_id = await reconciler.refresh(repository, node.node_id)
        except ServiceMismatchError as exc:
            log.error("webhook_service_mismatch", error=str(exc))
            raise HTTPException(status_code=409, detail=str(exc)) from None
        except NotFoundError as exc:
            log.info("webhook_entity_gone", error=str(exc))
            return _accepted("ignored", reason=str(exc))
        except RemoteError as exc:
            log.error("webhook_refresh_failed", error=str(exc))
            raise HTTPException(status_code=502, detail=str(exc)) from None

        if thread_id is None:
            return _accepted("ignored", reason="thread not imported")
        log.info("webhook_thread_refreshed", thread_id=thread_id)
        return _accepted("updated", thread_id=thread_id)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    return app


__all__ = ["create_app"]
