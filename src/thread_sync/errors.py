"""Error types raised by the reconciliation engine and its boundaries."""

from __future__ import annotations

from enum import Enum


class ThreadSyncError(Exception):
    """Base class for all errors raised by thread_sync."""


class NotFoundKind(str, Enum):
    repository = "repository"
    entity = "entity"
    node = "node"
    thread = "thread"
    comment = "comment"
    local_repository = "local_repository"


class NotFoundError(ThreadSyncError):
    """A remote or local entity does not exist.

    ``kind`` tells callers which remediation applies: a missing remote
    repository usually means the repository needs a sync, while a missing
    issue or pull request is a permanent skip.
    """

    def __init__(self, kind: NotFoundKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class ServiceMismatchError(ThreadSyncError):
    def __init__(self, thread_id: int, thread_service_id: int, repository_service_id: int) -> None:
        super().__init__(
            f"thread {thread_id}: external service {thread_service_id} in DB does not match "
            f"repository external service {repository_service_id}"
        )
        self.thread_id = thread_id
        self.thread_service_id = thread_service_id
        self.repository_service_id = repository_service_id


class RemoteError(ThreadSyncError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigError(ThreadSyncError):
    pass


class NamespaceNotAllowedError(ThreadSyncError):
    pass


class StorageError(ThreadSyncError):
    pass


class VersionControlError(ThreadSyncError):
    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(f"{message}\n\n{output}" if output else message)
        self.output = output


__all__ = [
    "ConfigError",
    "NamespaceNotAllowedError",
    "NotFoundError",
    "NotFoundKind",
    "RemoteError",
    "ServiceMismatchError",
    "StorageError",
    "ThreadSyncError",
    "VersionControlError",
]
