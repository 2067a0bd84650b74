# Repo service - refresh, clone and pull for the repos view.
# Created: 2026-09-14
#
# All repo operations share one guard ("repos"): a refresh blocks clone
# and pull and vice versa. The GitHub listing is cached for
# github_cache_ttl seconds.

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path

from myme.dispatch.cancel import CancellationToken
from myme.errors import MymeError
from myme.integrations import git_local
from myme.services.base import BaseService
from myme.sync.models import LocalRepo, ReconciledEntry, RemoteRepo, RepoSnapshot
from myme.sync.reconcile import mark_busy, reconcile

logger = logging.getLogger(__name__)

RESOURCE = "repos"


class RepoService(BaseService):
    channel = "repos"

    def __init__(self, ctx):
        super().__init__(ctx)
        # Written from the caller thread (busy flags) and the runtime thread
        # (refresh results); every read-modify-write holds the lock.
        self._entries_lock = threading.Lock()
        self.entries: list[ReconciledEntry] = []
        self._remote_cache: tuple[float, list[RemoteRepo]] | None = None

    # ------------------------------------------------------------------
    # GitHub listing cache
    # ------------------------------------------------------------------

    def _cached_remotes(self) -> list[RemoteRepo] | None:
        if self._remote_cache is None:
            return None
        cached_at, repos = self._remote_cache
        if time.monotonic() - cached_at > self.ctx.settings.github_cache_ttl:
            return None
        return repos

    def invalidate_cache(self) -> None:
        self._remote_cache = None

    async def _remote_repos(self) -> list[RemoteRepo]:
        cached = self._cached_remotes()
        if cached is not None:
            return cached
        repos = await self.ctx.github.list_repos()
        self._remote_cache = (time.monotonic(), repos)
        return repos

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def refresh(self, force: bool = False) -> bool:
        """Discover local clones, list GitHub repos and merge them.

        A GitHub failure does not fail the refresh: local repos are still
        listed and the error is reported in ``RepoSnapshot.remote_error``.
        """
        settings = self.ctx.settings
        if force:
            self.invalidate_cache()

        async def work(_token: CancellationToken | None) -> RepoSnapshot:
            local = await self.ctx.dispatcher.run_blocking(
                git_local.discover_repositories, settings.repos_path, settings.repos_max_depth
            )
            remote: list[RemoteRepo] = []
            remote_error = None
            if await self.ctx.oauth.has_tokens("github"):
                try:
                    remote = await self._remote_repos()
                except MymeError as e:
                    logger.warning("GitHub listing failed: %s", e)
                    remote_error = e.user_message()

            entries = reconcile(local, remote)
            with self._entries_lock:
                self.entries = entries
            return RepoSnapshot(entries=entries, remote_error=remote_error)

        return self._request(RESOURCE, "refresh", work)

    def _set_busy(self, entry_id: str, busy: bool) -> None:
        with self._entries_lock:
            self.entries = mark_busy(self.entries, entry_id, busy=busy)

    def _entry(self, entry_id: str) -> ReconciledEntry:
        with self._entries_lock:
            entries = self.entries
        for entry in entries:
            if entry.id == entry_id:
                return entry
        raise KeyError(f"Unknown repository: {entry_id}")

    async def _github_token(self) -> str | None:
        if not await self.ctx.oauth.has_tokens("github"):
            return None
        return await self.ctx.oauth.get_valid_token("github")

    def clone(self, entry_id: str, dest: Path | None = None) -> bool:
        """Clone a GitHub-only entry into the local search path. Cancellable."""
        entry = self._entry(entry_id)
        if entry.remote is None or entry.local is not None:
            raise ValueError(f"{entry_id} has nothing to clone")
        remote = entry.remote
        url = remote.clone_url or f"https://github.com/{remote.full_name}.git"
        name = remote.name or remote.full_name.split("/")[-1]
        target = dest or self.ctx.settings.repos_path / name

        async def work(token: CancellationToken | None) -> LocalRepo:
            try:
                gh_token = await self._github_token()
                return await self.ctx.dispatcher.run_blocking(
                    git_local.clone_repository, url, target, gh_token, token
                )
            finally:
                self._set_busy(entry_id, False)

        self._set_busy(entry_id, True)
        accepted = self._request(RESOURCE, "clone", work, target=entry_id, cancellable=True)
        if not accepted:
            self._set_busy(entry_id, False)
        return accepted

    def pull(self, entry_id: str) -> bool:
        """Fast-forward pull of a local clone. Cancellable."""
        entry = self._entry(entry_id)
        if entry.local is None:
            raise ValueError(f"{entry_id} is not cloned locally")
        path = entry.local.path

        async def work(token: CancellationToken | None) -> str:
            try:
                gh_token = await self._github_token() if entry.remote is not None else None
                return await self.ctx.dispatcher.run_blocking(git_local.pull, path, gh_token, token)
            finally:
                self._set_busy(entry_id, False)

        self._set_busy(entry_id, True)
        accepted = self._request(RESOURCE, "pull", work, target=entry_id, cancellable=True)
        if not accepted:
            self._set_busy(entry_id, False)
        return accepted

    def cancel(self) -> bool:
        """Cancel a running clone or pull."""
        return self.ctx.dispatcher.cancel(RESOURCE)
