"""Comment store: comments attached to a campaign or a thread."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field, replace
from datetime import datetime

import structlog

from .errors import NotFoundError, NotFoundKind
from .storage import Database, utcnow

logger = structlog.get_logger(__name__)

COMMENT_COLUMNS = "id, campaign_id, thread_id, author_user_id, body, created_at, updated_at"


@dataclass(frozen=True, slots=True)
class CommentObject:
    """The entity a comment is attached to: exactly one of campaign or thread."""

    campaign_id: int | None = None
    thread_id: int | None = None

    def __post_init__(self) -> None:
        kinds = [v for v in (self.campaign_id, self.thread_id) if v is not None]
        if len(kinds) != 1:
            raise ValueError("comment object must reference exactly one of campaign_id or thread_id")

    @classmethod
    def campaign(cls, campaign_id: int) -> CommentObject:
        return cls(campaign_id=campaign_id)

    @classmethod
    def thread(cls, thread_id: int) -> CommentObject:
        return cls(thread_id=thread_id)


@dataclass(slots=True)
class Comment:
    object: CommentObject
    author_user_id: int
    body: str
    id: int = 0
    created_at: datetime | None = field(default=None, compare=False)
    updated_at: datetime | None = field(default=None, compare=False)


def _comment_from_row(row: sqlite3.Row) -> Comment:
    return Comment(
        id=row["id"],
        object=CommentObject(campaign_id=row["campaign_id"], thread_id=row["thread_id"]),
        author_user_id=row["author_user_id"],
        body=row["body"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _where(query: str | None, obj: CommentObject | None) -> tuple[str, list[object]]:
    clauses: list[str] = []
    params: list[object] = []
    if query:
        clauses.append("body LIKE ? ESCAPE '\\'")
        params.append(_like_pattern(query))
    if obj is not None:
        if obj.campaign_id is not None:
            clauses.append("campaign_id = ?")
            params.append(obj.campaign_id)
        else:
            clauses.append("thread_id = ?")
            params.append(obj.thread_id)
    return (" WHERE " + " AND ".join(clauses)) if clauses else "", params


class CommentStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, comment: Comment) -> Comment:
        return await self._db.run("comment_create_failed", self._create, comment)

    def _create(self, comment: Comment) -> Comment:
        now = utcnow()
        with self._db.connection() as conn:
            cur = conn.execute(
                "INSERT INTO comments(campaign_id, thread_id, author_user_id, body, created_at, updated_at) "
                "VALUES(?,?,?,?,?,?)",
                (
                    comment.object.campaign_id,
                    comment.object.thread_id,
                    comment.author_user_id,
                    comment.body,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
            comment_id = int(cur.lastrowid or 0)
        logger.debug("comment_created", comment_id=comment_id)
        return replace(comment, id=comment_id, created_at=now, updated_at=now)

    async def get_by_id(self, comment_id: int) -> Comment:
        return await self._db.run("comment_fetch_failed", self._get_by_id, comment_id)

    def _get_by_id(self, comment_id: int) -> Comment:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {COMMENT_COLUMNS} FROM comments WHERE id = ?", (comment_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(NotFoundKind.comment, f"comment {comment_id} not found")
        return _comment_from_row(row)

    async def list(self, query: str | None = None, object: CommentObject | None = None) -> list[Comment]:
        return await self._db.run("comment_list_failed", self._list, query, object)

    def _list(self, query: str | None, obj: CommentObject | None) -> list[Comment]:
        where, params = _where(query, obj)
        with self._db.connection() as conn:
            rows = conn.execute(
                f"SELECT {COMMENT_COLUMNS} FROM comments{where} ORDER BY id", params
            ).fetchall()
        return [_comment_from_row(row) for row in rows]

    async def count(self, query: str | None = None, object: CommentObject | None = None) -> int:
        return await self._db.run("comment_count_failed", self._count, query, object)

    def _count(self, query: str | None, obj: CommentObject | None) -> int:
        where, params = _where(query, obj)
        with self._db.connection() as conn:
            return int(conn.execute(f"SELECT COUNT(*) FROM comments{where}", params).fetchone()[0])

    async def delete_by_id(self, comment_id: int) -> None:
        await self._db.run("comment_delete_failed", self._delete_by_id, comment_id)

    def _delete_by_id(self, comment_id: int) -> None:
        with self._db.connection() as conn:
            cur = conn.execute("DELETE FROM comments WHERE id = ?", (comment_id,))
        if cur.rowcount == 0:
            raise NotFoundError(NotFoundKind.comment, f"comment {comment_id} not found")
        logger.debug("comment_deleted", comment_id=comment_id)


__all__ = ["Comment", "CommentObject", "CommentStore"]
