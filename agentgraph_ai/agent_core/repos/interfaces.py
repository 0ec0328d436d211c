from __future__ import annotations

"""Checkpoint store interface contract.

The resumable executor depends on this Protocol instead of a concrete
backend.

Contract guidelines
-------------------

- All methods are async.
- Checkpoints are keyed by thread id; ``load`` returns the newest one.
- "Not found" is a valid ``None`` / ``False`` / ``0`` result, never an error.
- Durable backends retry transient failures with bounded backoff and raise
  ``CheckpointStoreError`` once retries are exhausted.
- One writer per thread id is assumed; no optimistic concurrency control.
"""

from typing import Any, Dict, Optional, Protocol, runtime_checkable

from ..schemas.domain import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointStatus,
    PendingApproval,
    SerializedAgentState,
)


@runtime_checkable
class CheckpointStore(Protocol):
    """Persist and query agent state snapshots per thread."""

    async def save(
        self,
        thread_id: str,
        state: SerializedAgentState,
        *,
        status: CheckpointStatus = CheckpointStatus.active,
        pending_approval: Optional[PendingApproval] = None,
        custom: Optional[Dict[str, Any]] = None,
    ) -> CheckpointMetadata:
        """
        Save a checkpoint.

        Args:
            thread_id: Execution lineage the checkpoint belongs to.
            state: Serialized agent state.
            status: Lifecycle status of the thread at this safe point.
            pending_approval: Tool calls awaiting a decision (``pending_approval`` status).
            custom: Free-form caller metadata.

        Returns:
            Metadata of the stored checkpoint.
        """
        ...

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        """
        Retrieve the most recent checkpoint of a thread.

        Returns:
            The latest Checkpoint if any exist, else None.
        """
        ...

    async def list(self, thread_id: str) -> list[CheckpointMetadata]:
        """
        List checkpoint metadata of a thread, newest first.
        """
        ...

    async def delete(self, checkpoint_id: str) -> bool:
        """
        Delete one checkpoint.

        Returns:
            True if a checkpoint was removed.
        """
        ...

    async def clear(self, thread_id: str) -> int:
        """
        Delete every checkpoint of a thread.

        Returns:
            Number of checkpoints removed.
        """
        ...
