# Services context - everything the front end needs, built once and passed around.
# Created: 2026-09-16
#
# Replaces process-wide singletons: the GUI or CLI constructs one
# AppServices at startup and calls shutdown() on exit.

from __future__ import annotations

import logging
import webbrowser
from collections.abc import Callable
from typing import Any

from myme.auth.callback import CallbackListener
from myme.auth.oauth import OAuthManager
from myme.auth.token_store import TokenStore
from myme.config import Settings, get_settings
from myme.dispatch.dispatcher import Dispatcher
from myme.errors import PermanentError
from myme.integrations.github import GitHubClient
from myme.integrations.gmail import GmailClient
from myme.net.retry import RequestExecutor, RetryConfig
from myme.services.auth_service import AuthService
from myme.services.kanban_service import KanbanService
from myme.services.mail_service import MailService
from myme.services.queue_service import QueueService
from myme.services.repo_service import RepoService
from myme.sync.queue import Mutation, OfflineQueue
from myme.sync.replay import MutationReplayer

logger = logging.getLogger(__name__)


class AppServices:
    """Shared state for one running app.

    Every collaborator can be injected, which is how tests swap in a
    temporary token store, an in-memory queue or an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        store: TokenStore | None = None,
        offline_queue: OfflineQueue | None = None,
        executor: RequestExecutor | None = None,
        dispatcher: Dispatcher | None = None,
        open_browser: Callable[[str], bool] = webbrowser.open,
        listener_factory: Callable[[int, int], CallbackListener] = CallbackListener.bind,
    ):
        self.settings = settings or get_settings()
        self.executor = executor or RequestExecutor(
            RetryConfig.from_settings(self.settings), timeout=self.settings.http_timeout
        )
        self.oauth = OAuthManager.from_settings(self.settings, store or TokenStore(), self.executor)
        self.offline_queue = offline_queue or OfflineQueue()
        self.dispatcher = dispatcher or Dispatcher()
        self.open_browser = open_browser
        self.listener_factory = listener_factory

        self.github = GitHubClient(self.oauth, self.executor)
        self.gmail = GmailClient(self.oauth, self.executor)
        self.replayer = MutationReplayer(
            self.offline_queue, self.apply_mutation, self.settings.queue_max_attempts
        )

        self.auth = AuthService(self)
        self.repos = RepoService(self)
        self.mail = MailService(self)
        self.kanban = KanbanService(self)
        self.queue = QueueService(self)
        self._closed = False

    async def apply_mutation(self, mutation: Mutation) -> Any:
        """Route a mutation to the client of its service."""
        service = mutation.kind.service
        if service == "google":
            return await self.gmail.apply(mutation)
        if service == "github":
            return await self.github.apply(mutation)
        raise PermanentError(f"No client for {mutation.kind.value}")

    def start(self, replay: bool = True) -> None:
        """Start the runtime and, with *replay*, the periodic queue replay."""
        self.dispatcher.start()
        if replay:
            self.queue.start_periodic()

    def shutdown(self) -> None:
        """Stop the dispatcher, then close the queue database. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        steps = (("dispatcher", self.dispatcher.shutdown), ("queue", self.offline_queue.close))
        for name, step in steps:
            try:
                step()
                logger.debug("Shut down %s", name)
            except Exception:
                logger.warning("Error shutting down %s", name, exc_info=True)

    def __enter__(self) -> AppServices:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
