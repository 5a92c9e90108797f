"""Durable local state for the sync engine.

Provides:
- LocalStore: tenant-scoped synced records
- MutationQueue: FIFO queue of local writes awaiting push
"""

from .local_store import LocalStore
from .mutation_queue import MutationQueue, MutationQueueEntry

__all__ = ["LocalStore", "MutationQueue", "MutationQueueEntry"]
