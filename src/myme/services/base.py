# Service base - one dispatcher channel per service, shared result types.
# Created: 2026-09-13

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from myme.dispatch.dispatcher import Message, Work
from myme.errors import MymeError
from myme.sync.queue import Mutation

if TYPE_CHECKING:
    from myme.services.context import AppServices

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    """Value of a write operation's Message: applied now, or queued for replay."""

    mutation: Mutation
    queued: bool = False
    queue_id: int | None = None
    response: Any = None


class BaseService:
    """Thin layer over the dispatcher. Subclasses set ``channel``."""

    channel: str = ""

    def __init__(self, ctx: AppServices):
        self.ctx = ctx
        ctx.dispatcher.open_channel(self.channel)

    def try_recv(self) -> Message | None:
        return self.ctx.dispatcher.try_recv(self.channel)

    def is_busy(self, resource: str) -> bool:
        return self.ctx.dispatcher.is_busy(resource)

    def _request(
        self,
        resource: str,
        kind: str,
        work: Work,
        *,
        target: str | None = None,
        cancellable: bool = False,
    ) -> bool:
        accepted = self.ctx.dispatcher.request(
            self.channel, resource, kind, work, target=target, cancellable=cancellable
        )
        if not accepted:
            logger.info("%s: %s not started, %s is busy", self.channel, kind, resource)
        return accepted

    async def _apply_or_queue(self, mutation: Mutation) -> MutationResult:
        """Apply a write now, or queue it when the service is unreachable.

        A write for a target that already has queued writes is queued
        behind them so it cannot overtake them.
        """
        queue = self.ctx.offline_queue
        if await asyncio.to_thread(queue.has_pending_for, mutation.target):
            queue_id = await asyncio.to_thread(queue.enqueue, mutation)
            return MutationResult(mutation, queued=True, queue_id=queue_id)

        try:
            response = await self.ctx.apply_mutation(mutation)
        except MymeError as e:
            if not e.retryable:
                raise
            logger.info(
                "%s unreachable, queueing %s: %s", mutation.kind.service, mutation.kind.value, e
            )
            queue_id = await asyncio.to_thread(queue.enqueue, mutation)
            return MutationResult(mutation, queued=True, queue_id=queue_id)
        return MutationResult(mutation, response=response)
