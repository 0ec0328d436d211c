from __future__ import annotations

"""In-memory checkpoint store.

Checkpoints live in per-thread lists in insertion order, so "newest" never
depends on clock resolution. Each thread keeps at most ``max_items``
checkpoints; the oldest are evicted first.

Stored values are deep copies; callers can keep mutating their state objects
without affecting saved checkpoints.
"""

import logging
from typing import Any, Dict, Optional

from ..schemas.domain import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointStatus,
    PendingApproval,
    SerializedAgentState,
    new_checkpoint_id,
)

logger = logging.getLogger(__name__)


class MemoryCheckpointStore:
    """Process-local ``CheckpointStore`` for tests and single-process use."""

    def __init__(self, *, max_items: int = 100) -> None:
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self._max_items = max_items
        self._threads: Dict[str, list[Checkpoint]] = {}

    async def save(
        self,
        thread_id: str,
        state: SerializedAgentState,
        *,
        status: CheckpointStatus = CheckpointStatus.active,
        pending_approval: Optional[PendingApproval] = None,
        custom: Optional[Dict[str, Any]] = None,
    ) -> CheckpointMetadata:
        metadata = CheckpointMetadata(
            id=new_checkpoint_id(thread_id),
            thread_id=thread_id,
            step_count=state.step_count,
            status=status,
            pending_approval=pending_approval.model_copy(deep=True) if pending_approval else None,
            custom=dict(custom) if custom else None,
        )
        items = self._threads.setdefault(thread_id, [])
        items.append(Checkpoint(metadata=metadata, state=state.model_copy(deep=True)))
        if len(items) > self._max_items:
            evicted = len(items) - self._max_items
            del items[:evicted]
            logger.debug("Evicted %s old checkpoints of thread %s", evicted, thread_id)
        return metadata.model_copy(deep=True)

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        items = self._threads.get(thread_id)
        if not items:
            return None
        return items[-1].model_copy(deep=True)

    async def list(self, thread_id: str) -> list[CheckpointMetadata]:
        return [cp.metadata.model_copy(deep=True) for cp in reversed(self._threads.get(thread_id, []))]

    async def delete(self, checkpoint_id: str) -> bool:
        for thread_id, items in self._threads.items():
            for idx, cp in enumerate(items):
                if cp.metadata.id == checkpoint_id:
                    del items[idx]
                    if not items:
                        del self._threads[thread_id]
                    return True
        return False

    async def clear(self, thread_id: str) -> int:
        return len(self._threads.pop(thread_id, []))

    async def clear_history(self, thread_id: str, keep_id: Optional[str] = None) -> int:
        """Drop every checkpoint of a thread except ``keep_id`` (default: the newest)."""
        items = self._threads.get(thread_id)
        if not items:
            return 0
        keep = keep_id or items[-1].metadata.id
        survivors = [cp for cp in items if cp.metadata.id == keep]
        self._threads[thread_id] = survivors
        return len(items) - len(survivors)

    def reset(self) -> None:
        """Forget every thread."""
        self._threads.clear()
