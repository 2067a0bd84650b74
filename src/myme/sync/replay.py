# Mutation replay - drains the offline queue against the remote services.
# Created: 2026-09-09
#
# Strict FIFO: a transient or auth failure stops the cycle so later
# entries never overtake an earlier one. Permanent failures are dropped
# at once; entries that reach max_attempts are evicted after the cycle.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import httpx

from myme.errors import ErrorKind, MymeError
from myme.net.retry import error_from_exception
from myme.sync.queue import Mutation, OfflineQueue, QueuedMutation

logger = logging.getLogger(__name__)

ApplyFn = Callable[[Mutation], Awaitable[object]]

# Failures that leave the entry at the head of the queue. A missing OAuth
# client config is treated like an auth failure.
_RETAIN_KINDS = frozenset({ErrorKind.TRANSIENT, ErrorKind.AUTH, ErrorKind.CONFIG})


class ReplayOutcome(str, Enum):
    APPLIED = "applied"
    RETAINED = "retained"  # transient/auth failure, kept for the next cycle
    PERMANENT = "permanent"  # rejected by the service, removed
    GAVE_UP = "gave_up"  # evicted after too many attempts


@dataclass
class ReplayEvent:
    entry: QueuedMutation
    outcome: ReplayOutcome
    error: str | None = None


@dataclass
class ReplayReport:
    events: list[ReplayEvent] = field(default_factory=list)
    remaining: int = 0

    def count(self, outcome: ReplayOutcome) -> int:
        return sum(1 for e in self.events if e.outcome is outcome)

    @property
    def applied(self) -> int:
        return self.count(ReplayOutcome.APPLIED)

    @property
    def gave_up(self) -> list[ReplayEvent]:
        return [e for e in self.events if e.outcome is ReplayOutcome.GAVE_UP]


class MutationReplayer:
    """Applies queued mutations through *apply* in enqueue order.

    Args:
        queue: The offline queue to drain.
        apply: Coroutine that performs one mutation against its service.
            It raises a MymeError (or an httpx error) on failure. A ValueError
            from a malformed payload counts as permanent.
        max_attempts: Entries with this many recorded failures are evicted.
    """

    def __init__(self, queue: OfflineQueue, apply: ApplyFn, max_attempts: int = 5):
        self.queue = queue
        self._apply = apply
        self.max_attempts = max_attempts

    async def replay_once(self) -> ReplayReport:
        report = ReplayReport()

        while True:
            entry = await asyncio.to_thread(self.queue.peek)
            if entry is None:
                break

            try:
                await self._apply(entry.mutation)
            except (MymeError, httpx.HTTPError, ValueError) as exc:
                error = error_from_exception(exc)
                if error.kind is ErrorKind.CANCELLED:
                    raise
                if error.kind in _RETAIN_KINDS:
                    await asyncio.to_thread(self.queue.record_failure, entry.id, str(error))
                    entry.attempts += 1
                    logger.info(
                        "Replay of %s (id=%d) failed (%s), stopping cycle",
                        entry.mutation.kind.value,
                        entry.id,
                        error.kind.value,
                    )
                    report.events.append(ReplayEvent(entry, ReplayOutcome.RETAINED, str(error)))
                    break
                await asyncio.to_thread(self.queue.complete, entry.id)
                logger.warning(
                    "Dropping %s (id=%d): permanent failure: %s",
                    entry.mutation.kind.value,
                    entry.id,
                    error,
                )
                report.events.append(ReplayEvent(entry, ReplayOutcome.PERMANENT, str(error)))
                continue

            await asyncio.to_thread(self.queue.complete, entry.id)
            logger.debug("Replayed %s (id=%d)", entry.mutation.kind.value, entry.id)
            report.events.append(ReplayEvent(entry, ReplayOutcome.APPLIED))

        for evicted in await asyncio.to_thread(self.queue.list_exceeding, self.max_attempts):
            report.events.append(ReplayEvent(evicted, ReplayOutcome.GAVE_UP, evicted.last_error))
        await asyncio.to_thread(self.queue.remove_exceeding, self.max_attempts)

        report.remaining = await asyncio.to_thread(self.queue.pending_count)
        if report.events:
            logger.info(
                "Replay cycle: %d applied, %d permanent, %d gave up, %d remaining",
                report.applied,
                report.count(ReplayOutcome.PERMANENT),
                len(report.gave_up),
                report.remaining,
            )
        return report
