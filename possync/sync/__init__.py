"""Offline-first sync engine.

Pushes queued local writes to the remote store, pulls remote state back,
and settles collisions with a per-table conflict policy.
"""

from .apply import ApplyOutcome, ChangeApplier
from .conflict import Resolution, merge_inventory, resolve
from .pull import Puller, PullResult
from .push import PushSynchronizer, SyncResult
from .scheduler import JobKind, JobState, SyncJob, SyncScheduler

__all__ = [
    "ApplyOutcome",
    "ChangeApplier",
    "JobKind",
    "JobState",
    "Puller",
    "PullResult",
    "PushSynchronizer",
    "Resolution",
    "SyncJob",
    "SyncResult",
    "SyncScheduler",
    "merge_inventory",
    "resolve",
]
