# Kanban service - GitHub issues as the task board of a project.
# Created: 2026-09-15
#
# A project is an ``owner/repo``. Syncing is guarded per project; issue
# writes are guarded per issue and queued while GitHub is unreachable.

from __future__ import annotations

import logging
from typing import Any

from myme.dispatch.cancel import CancellationToken
from myme.integrations.github import issue_target
from myme.services.base import BaseService, MutationResult
from myme.sync.queue import Mutation, MutationKind

logger = logging.getLogger(__name__)


class KanbanService(BaseService):
    channel = "kanban"

    def sync(self, project: str) -> bool:
        """Fetch all issues of *project* (open and closed)."""

        async def work(_token: CancellationToken | None) -> list[dict[str, Any]]:
            issues = await self.ctx.github.list_issues(project, state="all")
            logger.info("Synced %d issues for %s", len(issues), project)
            return issues

        return self._request(f"kanban:{project}", "sync", work, target=project)

    def create_issue(
        self,
        project: str,
        title: str,
        body: str | None = None,
        labels: list[str] | None = None,
    ) -> bool:
        params: dict[str, Any] = {"title": title}
        if body is not None:
            params["body"] = body
        if labels:
            params["labels"] = list(labels)
        mutation = Mutation(MutationKind.GITHUB_CREATE_ISSUE, project, params)

        async def work(_token: CancellationToken | None) -> MutationResult:
            return await self._apply_or_queue(mutation)

        return self._request(f"kanban:{project}:new", "create_issue", work, target=project)

    def update_issue(self, project: str, number: int, **fields: Any) -> bool:
        """Update title, body, state, labels, ... of an issue."""
        target = issue_target(project, number)
        mutation = Mutation(MutationKind.GITHUB_UPDATE_ISSUE, target, dict(fields))

        async def work(_token: CancellationToken | None) -> MutationResult:
            return await self._apply_or_queue(mutation)

        return self._request(f"kanban:{target}", "update_issue", work, target=target)

    def move(self, project: str, number: int, state: str) -> bool:
        """Move a card between columns: ``open`` or ``closed``."""
        return self.update_issue(project, number, state=state)
