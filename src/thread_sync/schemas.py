"""Pydantic models for the JSON-RPC tools."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class ImportThreadsRequest(BaseModel):
    query: str = Field(..., min_length=1)


class ImportThreadsResponse(BaseModel):
    thread_ids: list[int]
    skipped: list[str] = Field(default_factory=list)
    truncated: bool = False
    error: str | None = None


class CreateOrGetThreadRequest(BaseModel):
    repository: str
    number: int = Field(..., gt=0)


class UpdateThreadMetadataRequest(BaseModel):
    thread_id: int = Field(..., gt=0)


class PublishChangeRequest(BaseModel):
    repository: str
    campaign_name: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    body: str = ""
    patch: str = Field(..., min_length=1)
    existing_thread_id: int = 0
    campaign_id: int | None = None


class ThreadResponse(BaseModel):
    thread_id: int


class CommentTarget(BaseModel):
    campaign_id: int | None = None
    thread_id: int | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> CommentTarget:
        if (self.campaign_id is None) == (self.thread_id is None):
            raise ValueError("exactly one of campaign_id or thread_id is required")
        return self


class AddCommentRequest(CommentTarget):
    author_user_id: int
    body: str = Field(..., min_length=1)


class ListCommentsRequest(BaseModel):
    query: str | None = None
    campaign_id: int | None = None
    thread_id: int | None = None


class DeleteCommentRequest(BaseModel):
    comment_id: int = Field(..., gt=0)


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    database_healthy: bool = True
    rate_limit: dict = Field(default_factory=dict)


def schema_for(model: type[BaseModel]) -> dict:
    """Return JSON schema for a model."""

    return model.model_json_schema()


__all__ = [
    "AddCommentRequest",
    "CommentTarget",
    "CreateOrGetThreadRequest",
    "DeleteCommentRequest",
    "HealthResponse",
    "ImportThreadsRequest",
    "ImportThreadsResponse",
    "ListCommentsRequest",
    "PublishChangeRequest",
    "ThreadResponse",
    "UpdateThreadMetadataRequest",
    "schema_for",
]
