# Mail service - inbox listing and Gmail actions, queued while offline.
# Created: 2026-09-14

from __future__ import annotations

import logging
from typing import Any

from myme.dispatch.cancel import CancellationToken
from myme.services.base import BaseService, MutationResult
from myme.sync.queue import Mutation, MutationKind

logger = logging.getLogger(__name__)


class MailService(BaseService):
    """Gmail actions, one in flight per message (resource ``mail:<id>``)."""

    channel = "mail"

    def list_inbox(self, max_results: int = 20, query: str = "") -> bool:
        async def work(_token: CancellationToken | None) -> list[dict[str, Any]]:
            return await self.ctx.gmail.list_inbox(max_results=max_results, query=query)

        return self._request("mail:inbox", "list_inbox", work)

    def _mutate(self, kind: MutationKind, message_id: str, **params: Any) -> bool:
        mutation = Mutation(kind=kind, target=message_id, params=params)

        async def work(_token: CancellationToken | None) -> MutationResult:
            return await self._apply_or_queue(mutation)

        return self._request(f"mail:{message_id}", kind.value, work, target=message_id)

    def mark_read(self, message_id: str) -> bool:
        return self._mutate(MutationKind.GMAIL_MARK_READ, message_id)

    def mark_unread(self, message_id: str) -> bool:
        return self._mutate(MutationKind.GMAIL_MARK_UNREAD, message_id)

    def star(self, message_id: str) -> bool:
        return self._mutate(MutationKind.GMAIL_STAR, message_id)

    def unstar(self, message_id: str) -> bool:
        return self._mutate(MutationKind.GMAIL_UNSTAR, message_id)

    def archive(self, message_id: str) -> bool:
        return self._mutate(MutationKind.GMAIL_ARCHIVE, message_id)

    def trash(self, message_id: str) -> bool:
        return self._mutate(MutationKind.GMAIL_TRASH, message_id)

    def add_labels(self, message_id: str, labels: list[str]) -> bool:
        return self._mutate(MutationKind.GMAIL_ADD_LABELS, message_id, labels=list(labels))

    def remove_labels(self, message_id: str, labels: list[str]) -> bool:
        return self._mutate(MutationKind.GMAIL_REMOVE_LABELS, message_id, labels=list(labels))
