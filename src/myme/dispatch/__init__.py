"""Non-blocking dispatch of async work with per-resource single-flight.

Created: 2026-09-10
"""

from myme.dispatch.cancel import CancellationToken
from myme.dispatch.dispatcher import Dispatcher, Message, Outcome
from myme.dispatch.guard import OperationGuard

__all__ = ["CancellationToken", "Dispatcher", "Message", "OperationGuard", "Outcome"]
