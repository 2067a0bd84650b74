# Operation guard - at most one in-flight operation per logical resource.
# Created: 2026-09-10

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Busy:
    kind: str
    target: str | None = None


class OperationGuard:
    """Idle, or Busy(kind, target) while an operation runs.

    ``start`` only succeeds from Idle; the dispatcher calls ``on_done``
    before it posts the operation's result, whether the work succeeded,
    failed or was cancelled.
    """

    def __init__(self) -> None:
        self.state: Busy | None = None

    @property
    def is_idle(self) -> bool:
        return self.state is None

    def can_start(self) -> bool:
        return self.state is None

    def start(self, kind: str, target: str | None = None) -> bool:
        if self.state is not None:
            return False
        self.state = Busy(kind, target)
        return True

    def on_done(self) -> None:
        self.state = None

    def __repr__(self) -> str:
        if self.state is None:
            return "OperationGuard(idle)"
        return f"OperationGuard(busy={self.state.kind!r}, target={self.state.target!r})"
