"""Git operations on local repository mirrors."""

from __future__ import annotations

import functools
import os
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import anyio
import structlog

from .errors import VersionControlError
from .models import Repository

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CommitInfo:
    author_name: str
    author_email: str
    message: str
    date: datetime


class GitBackend:
    """Run git plumbing commands against a bare or non-bare mirror.

    A repository's mirror is ``repository.mirror_path`` when set, otherwise
    ``<mirrors_root>/<repository name>``.
    """

    def __init__(self, mirrors_root: Path | None = None, *, timeout: float = 60.0) -> None:
        self.mirrors_root = mirrors_root
        self.timeout = timeout

    def mirror_path(self, repository: Repository) -> Path:
        if repository.mirror_path is not None:
            return repository.mirror_path
        if self.mirrors_root is None:
            raise VersionControlError(f"no mirror configured for repository {repository.name}")
        return self.mirrors_root / repository.name

    async def _git(
        self,
        repository: Repository,
        *args: str,
        input: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> str:
        cwd = self.mirror_path(repository)
        run = functools.partial(
            subprocess.run,
            ["git", *args],
            cwd=cwd,
            input=input,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            env={**os.environ, **env} if env else None,
        )
        try:
            result = await anyio.to_thread.run_sync(run)
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError) as exc:
            logger.error("git_command_failed", repo=repository.name, command=args[0], error=str(exc))
            raise VersionControlError(f"git {args[0]} failed: {exc}") from exc
        if result.returncode != 0:
            output = (result.stdout + result.stderr).strip()
            logger.error(
                "git_command_failed",
                repo=repository.name,
                command=args[0],
                returncode=result.returncode,
            )
            raise VersionControlError(f"git {args[0]} exited with {result.returncode}", output)
        return result.stdout

    async def default_branch(self, repository: Repository) -> tuple[str, str]:
        """Return the default branch's short name and tip commit."""
        ref = (await self._git(repository, "symbolic-ref", "HEAD")).strip()
        oid = (await self._git(repository, "rev-parse", "--verify", f"{ref}^{{commit}}")).strip()
        return ref.removeprefix("refs/heads/"), oid

    async def create_commit_from_patch(
        self,
        repository: Repository,
        base_commit: str,
        target_ref: str,
        patch: str,
        commit_info: CommitInfo,
    ) -> str:
        """Apply ``patch`` on top of ``base_commit`` and point ``target_ref`` at the result.

        The working tree and the mirror's own index are left untouched.
        """
        date = commit_info.date.isoformat()
        ident = {
            "GIT_AUTHOR_NAME": commit_info.author_name,
            "GIT_AUTHOR_EMAIL": commit_info.author_email,
            "GIT_AUTHOR_DATE": date,
            "GIT_COMMITTER_NAME": commit_info.author_name,
            "GIT_COMMITTER_EMAIL": commit_info.author_email,
            "GIT_COMMITTER_DATE": date,
        }
        with tempfile.TemporaryDirectory(prefix="thread-sync-index-") as tmp:
            env = {**ident, "GIT_INDEX_FILE": str(Path(tmp) / "index")}
            await self._git(repository, "read-tree", base_commit, env=env)
            await self._git(repository, "apply", "--cached", "--whitespace=nowarn", "-", input=patch, env=env)
            tree = (await self._git(repository, "write-tree", env=env)).strip()
            oid = (
                await self._git(
                    repository, "commit-tree", tree, "-p", base_commit, "-m", commit_info.message, env=env
                )
            ).strip()
        await self._git(repository, "update-ref", target_ref, oid)
        logger.info("commit_created", repo=repository.name, ref=target_ref, commit=oid)
        return oid

    async def push(
        self, repository: Repository, refspecs: Sequence[str], *, remote: str = "origin", force: bool = True
    ) -> str:
        args = ["push"]
        if force:
            args.append("-f")
        output = await self._git(repository, *args, "--", remote, *refspecs)
        logger.info("refs_pushed", repo=repository.name, remote=remote, refspecs=list(refspecs))
        return output


__all__ = ["CommitInfo", "GitBackend"]
