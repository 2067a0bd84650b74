# Queue service - replay of the offline queue, on demand and on a timer.
# Created: 2026-09-15

from __future__ import annotations

import logging

from myme.dispatch.cancel import CancellationToken
from myme.services.base import BaseService
from myme.sync.queue import QueuedMutation
from myme.sync.replay import ReplayReport

logger = logging.getLogger(__name__)

RESOURCE = "queue"
PERIODIC_NAME = "queue-replay"


class QueueService(BaseService):
    """All queue operations share one guard, so replay never runs twice at once."""

    channel = "queue"

    def replay_now(self) -> bool:
        async def work(_token: CancellationToken | None) -> ReplayReport:
            return await self.ctx.replayer.replay_once()

        return self._request(RESOURCE, "replay", work)

    def list_pending(self) -> bool:
        async def work(_token: CancellationToken | None) -> list[QueuedMutation]:
            return await self.ctx.dispatcher.run_blocking(self.ctx.offline_queue.list_pending)

        return self._request(RESOURCE, "list", work)

    def clear(self) -> bool:
        async def work(_token: CancellationToken | None) -> int:
            removed = await self.ctx.dispatcher.run_blocking(self.ctx.offline_queue.clear)
            logger.info("Cleared %d queued mutation(s)", removed)
            return removed

        return self._request(RESOURCE, "clear", work)

    def start_periodic(self, interval: float | None = None) -> bool:
        """Replay every *interval* seconds (default ``queue_replay_interval``)."""
        interval = interval or self.ctx.settings.queue_replay_interval
        return self.ctx.dispatcher.schedule_periodic(PERIODIC_NAME, interval, self._tick)

    def stop_periodic(self) -> bool:
        return self.ctx.dispatcher.cancel_periodic(PERIODIC_NAME)

    async def _tick(self) -> None:
        if await self.ctx.dispatcher.run_blocking(self.ctx.offline_queue.pending_count):
            self.replay_now()
