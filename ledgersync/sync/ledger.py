"""
Mutation Ledger

Per-entity bookkeeping shared by the sync protocol and reconciliation.

1. Ordering: replays for one entity id run one at a time, in the order
   they were scheduled (asyncio.Lock wakes waiters first-in first-out).

2. Stale-overwrite guard: a remote snapshot fetched before our own write
   landed still carries the old state. Every local mutation and every
   replay completion stamps the id with a fresh generation from one
   counter. Reconciliation opens a checkpoint before it fetches; an id
   stamped after the checkpoint, or with a replay still pending, has a
   local state the snapshot cannot know about.

Stamps are only kept while an open checkpoint can still see them:
releasing a checkpoint drops every stamp at or below the oldest one still
open, so the table holds only ids touched since then.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class MutationLedger:

    def __init__(self):
        self._counter = 0
        self._generations: dict[str, int] = {}
        self._pending: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._open: dict[int, int] = {}

    def _stamp(self, entity_id: str) -> int:
        self._counter += 1
        self._generations[entity_id] = self._counter
        return self._counter

    def record_mutation(self, entity_id: str) -> int:
        """Stamp a local commit and count its replay as pending."""
        self._pending[entity_id] = self._pending.get(entity_id, 0) + 1
        return self._stamp(entity_id)

    def settle(self, entity_id: str) -> None:
        """Mark one pending replay finished (delivered, failed or skipped)."""
        remaining = self._pending.get(entity_id, 0) - 1
        if remaining > 0:
            self._pending[entity_id] = remaining
        else:
            self._pending.pop(entity_id, None)
            lock = self._locks.get(entity_id)
            if lock is not None and not lock.locked():
                del self._locks[entity_id]
        self._stamp(entity_id)

    def checkpoint(self) -> int:
        """Open a checkpoint. Pair every call with release()."""
        self._open[self._counter] = self._open.get(self._counter, 0) + 1
        return self._counter

    def release(self, checkpoint: int) -> None:
        holders = self._open.get(checkpoint, 0) - 1
        if holders > 0:
            self._open[checkpoint] = holders
        else:
            self._open.pop(checkpoint, None)
        floor = min(self._open) if self._open else self._counter
        self._generations = {
            entity_id: generation
            for entity_id, generation in self._generations.items()
            if generation > floor
        }

    @property
    def tracked_ids(self) -> int:
        return len(self._generations)

    def has_pending(self, entity_id: str) -> bool:
        return self._pending.get(entity_id, 0) > 0

    def changed_since(self, checkpoint: int, entity_id: str) -> bool:
        return self._generations.get(entity_id, 0) > checkpoint

    @asynccontextmanager
    async def replay_slot(self, entity_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(entity_id, asyncio.Lock())
        async with lock:
            yield
