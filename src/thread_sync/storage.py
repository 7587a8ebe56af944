"""Persistence helpers using SQLite."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import anyio
import structlog
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from .errors import NotFoundError, NotFoundKind, StorageError
from .models import Thread, ThreadState

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS threads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repository_id INTEGER NOT NULL,
    external_service_id INTEGER NOT NULL,
    external_id TEXT NOT NULL,
    campaign_id INTEGER,
    number INTEGER NOT NULL DEFAULT 0,
    title TEXT NOT NULL,
    body TEXT NOT NULL DEFAULT '',
    state TEXT NOT NULL,
    base_ref TEXT NOT NULL DEFAULT '',
    head_ref TEXT NOT NULL DEFAULT '',
    author_login TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (repository_id, external_service_id, external_id)
);

CREATE TABLE IF NOT EXISTS comments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    campaign_id INTEGER,
    thread_id INTEGER,
    author_user_id INTEGER NOT NULL,
    body TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK ((campaign_id IS NULL) != (thread_id IS NULL))
);
"""

THREAD_COLUMNS = (
    "id, repository_id, external_service_id, external_id, campaign_id, number, title, body, "
    "state, base_ref, head_ref, author_login, created_at, updated_at"
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _is_locked(exc: BaseException) -> bool:
    return isinstance(exc, sqlite3.OperationalError) and "locked" in str(exc).lower()


class Database:
    """A SQLite file shared by the thread and comment stores.

    Every call opens its own connection in autocommit mode and runs on a
    worker thread, so concurrent callers never share a cursor.
    """

    def __init__(self, path: Path, *, lock_retries: int = 5) -> None:
        self._path = path
        self._lock_retries = lock_retries
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self.connection() as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(SCHEMA)
            logger.info("storage_initialized", path=str(path))
        except (OSError, sqlite3.Error) as exc:
            logger.error("storage_init_failed", path=str(path), error=str(exc))
            raise StorageError(f"Failed to initialize storage at {path}: {exc}") from exc

    @property
    def path(self) -> Path:
        return self._path

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False, timeout=5.0)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def call(self, event: str, func: Callable[..., T], *args: Any) -> T:
        """Run ``func`` retrying only while the database file is locked."""
        try:
            for attempt in Retrying(
                retry=retry_if_exception(_is_locked),
                wait=wait_exponential(multiplier=0.05, max=1),
                stop=stop_after_attempt(self._lock_retries),
                reraise=True,
            ):
                with attempt:
                    return func(*args)
        except sqlite3.Error as exc:
            logger.error(event, error=str(exc))
            raise StorageError(f"{event}: {exc}") from exc
        raise AssertionError("unreachable")  # pragma: no cover

    async def run(self, event: str, func: Callable[..., T], *args: Any) -> T:
        return await anyio.to_thread.run_sync(self.call, event, func, *args)

    def health_check(self) -> bool:
        """Check if database is accessible."""
        try:
            with self.connection() as conn:
                conn.execute("SELECT 1")
            return True
        except sqlite3.Error:
            return False


def _thread_from_row(row: sqlite3.Row) -> Thread:
    return Thread(
        id=row["id"],
        repository_id=row["repository_id"],
        external_service_id=row["external_service_id"],
        external_id=row["external_id"],
        campaign_id=row["campaign_id"],
        number=row["number"],
        title=row["title"],
        body=row["body"],
        state=ThreadState(row["state"]),
        base_ref=row["base_ref"],
        head_ref=row["head_ref"],
        author_login=row["author_login"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class ThreadStore:
    """Thread rows keyed by (repository_id, external_service_id, external_id)."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def insert_thread(self, thread: Thread) -> Thread:
        """Insert ``thread`` or, if its key already exists, update that row.

        Two creators racing on the same key both succeed and both get the
        id of the single surviving row.
        """
        return await self._db.run("thread_insert_failed", self._upsert, thread)

    def _upsert(self, thread: Thread) -> Thread:
        now = utcnow().isoformat()
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO threads(
                    repository_id, external_service_id, external_id, campaign_id, number,
                    title, body, state, base_ref, head_ref, author_login, created_at, updated_at
                )
                VALUES(?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(repository_id, external_service_id, external_id) DO UPDATE SET
                    campaign_id=COALESCE(excluded.campaign_id, threads.campaign_id),
                    number=excluded.number,
                    title=excluded.title,
                    body=excluded.body,
                    state=excluded.state,
                    base_ref=excluded.base_ref,
                    head_ref=excluded.head_ref,
                    author_login=excluded.author_login,
                    updated_at=excluded.updated_at
                """,
                (
                    thread.repository_id,
                    thread.external_service_id,
                    thread.external_id,
                    thread.campaign_id,
                    thread.number,
                    thread.title,
                    thread.body,
                    thread.state.value,
                    thread.base_ref,
                    thread.head_ref,
                    thread.author_login,
                    now,
                    now,
                ),
            )
            row = conn.execute(
                f"SELECT {THREAD_COLUMNS} FROM threads "
                "WHERE repository_id = ? AND external_service_id = ? AND external_id = ?",
                (thread.repository_id, thread.external_service_id, thread.external_id),
            ).fetchone()
        saved = _thread_from_row(row)
        logger.debug("thread_saved", thread_id=saved.id, external_id=saved.external_id)
        return saved

    async def update_thread(self, thread_id: int, thread: Thread) -> Thread:
        """Overwrite the mutable fields of row ``thread_id``; its key never changes."""
        return await self._db.run("thread_update_failed", self._update, thread_id, thread)

    def _update(self, thread_id: int, thread: Thread) -> Thread:
        with self._db.connection() as conn:
            cur = conn.execute(
                """
                UPDATE threads SET
                    campaign_id=COALESCE(?, campaign_id),
                    number=?,
                    title=?,
                    body=?,
                    state=?,
                    base_ref=?,
                    head_ref=?,
                    author_login=?,
                    updated_at=?
                WHERE id = ?
                """,
                (
                    thread.campaign_id,
                    thread.number,
                    thread.title,
                    thread.body,
                    thread.state.value,
                    thread.base_ref,
                    thread.head_ref,
                    thread.author_login,
                    utcnow().isoformat(),
                    thread_id,
                ),
            )
            if cur.rowcount == 0:
                raise NotFoundError(NotFoundKind.thread, f"thread {thread_id} not found")
            row = conn.execute(
                f"SELECT {THREAD_COLUMNS} FROM threads WHERE id = ?", (thread_id,)
            ).fetchone()
        return _thread_from_row(row)

    async def find_thread_by_tuple(
        self, repository_id: int, external_service_id: int, external_id: str
    ) -> Thread | None:
        return await self._db.run(
            "thread_fetch_failed", self._find_by_tuple, repository_id, external_service_id, external_id
        )

    def _find_by_tuple(
        self, repository_id: int, external_service_id: int, external_id: str
    ) -> Thread | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {THREAD_COLUMNS} FROM threads "
                "WHERE repository_id = ? AND external_service_id = ? AND external_id = ?",
                (repository_id, external_service_id, external_id),
            ).fetchone()
        return _thread_from_row(row) if row else None

    async def find_thread_by_id(self, thread_id: int) -> Thread | None:
        return await self._db.run("thread_fetch_failed", self._find_by_id, thread_id)

    def _find_by_id(self, thread_id: int) -> Thread | None:
        with self._db.connection() as conn:
            row = conn.execute(
                f"SELECT {THREAD_COLUMNS} FROM threads WHERE id = ?", (thread_id,)
            ).fetchone()
        return _thread_from_row(row) if row else None

    async def count_threads(self) -> int:
        return await self._db.run("thread_count_failed", self._count)

    def _count(self) -> int:
        with self._db.connection() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM threads").fetchone()[0])


__all__ = ["Database", "ThreadStore", "utcnow"]
