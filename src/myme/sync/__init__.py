"""Repository reconciliation and the offline mutation queue.

Created: 2026-09-08
"""

from myme.sync.models import LocalRepo, ReconciledEntry, RemoteRepo, RepoState
from myme.sync.queue import Mutation, MutationKind, OfflineQueue, QueuedMutation
from myme.sync.reconcile import normalize_github_url, reconcile
from myme.sync.replay import MutationReplayer, ReplayOutcome, ReplayReport

__all__ = [
    "LocalRepo",
    "Mutation",
    "MutationKind",
    "MutationReplayer",
    "OfflineQueue",
    "QueuedMutation",
    "ReconciledEntry",
    "RemoteRepo",
    "ReplayOutcome",
    "ReplayReport",
    "RepoState",
    "normalize_github_url",
    "reconcile",
]
