from __future__ import annotations

"""SQLAlchemy async checkpoint store.

This module provides a relational implementation of the ``CheckpointStore``
interface defined in ``agentgraph_ai.agent_core.repos.interfaces``.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev; production typically uses
  migrations).
- Create a session factory with ``create_sessionmaker``.
- Build the store with ``SqlCheckpointStore(session_factory=...)``.

Transaction model
-----------------

Each method opens an ``AsyncSession``, performs its operation, and commits,
so a checkpoint is durable when ``save`` returns. Transient database failures
(dropped connections, operational errors, pool timeouts) are retried with
bounded backoff by re-running the whole unit of work.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..schemas.domain import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointStatus,
    PendingApproval,
    SerializedAgentState,
    new_checkpoint_id,
)
from .models import Base, CheckpointRow
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def is_transient_db_error(error: BaseException) -> bool:
    """Whether retrying the unit of work may succeed."""
    if isinstance(error, (OperationalError, PoolTimeoutError, ConnectionError)):
        return True
    return isinstance(error, DBAPIError) and bool(error.connection_invalidated)


def _metadata_from_row(row: CheckpointRow) -> CheckpointMetadata:
    return CheckpointMetadata(
        id=row.id,
        thread_id=row.thread_id,
        created_at=row.created_at,
        step_count=row.step_count,
        status=CheckpointStatus(row.status),
        pending_approval=PendingApproval.model_validate(row.pending_approval) if row.pending_approval else None,
        custom=row.custom,
    )


@dataclass(frozen=True)
class SqlCheckpointStore:
    """SQL implementation of ``CheckpointStore``.

    Rows are ordered by their autoincrement ``seq``; ``load`` returns the
    highest ``seq`` of a thread.
    """

    session_factory: async_sessionmaker[AsyncSession]
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    async def _run(self, description: str, operation):  # type: ignore[no-untyped-def]
        return await with_retry(
            operation, is_transient=is_transient_db_error, policy=self.retry_policy, description=description
        )

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
        Persist a checkpoint.

        Args:
            thread_id: Thread the checkpoint belongs to.
            state: Serialized agent state.
            status: Lifecycle status at this safe point.
            pending_approval: Calls awaiting a decision.
            custom: Free-form caller metadata.

        Returns:
            Metadata of the stored checkpoint.
        """
        metadata = CheckpointMetadata(
            id=new_checkpoint_id(thread_id),
            thread_id=thread_id,
            created_at=datetime.now(timezone.utc),
            step_count=state.step_count,
            status=status,
            pending_approval=pending_approval,
            custom=custom,
        )
        pending_json = pending_approval.model_dump(mode="json", by_alias=True) if pending_approval else None
        state_json = state.model_dump(mode="json", by_alias=True)

        async def _op() -> None:
            async with self.session_factory() as s:
                s.add(
                    CheckpointRow(
                        id=metadata.id,
                        thread_id=thread_id,
                        step_count=metadata.step_count,
                        status=status.value,
                        pending_approval=pending_json,
                        custom=custom,
                        state=state_json,
                        created_at=metadata.created_at,
                    )
                )
                await s.commit()

        await self._run(f"save checkpoint for thread {thread_id}", _op)
        return metadata

    async def load(self, thread_id: str) -> Optional[Checkpoint]:
        """
        Fetch the most recent checkpoint of a thread.

        Returns:
            The latest Checkpoint or None.
        """

        async def _op() -> Optional[Checkpoint]:
            async with self.session_factory() as s:
                stmt = (
                    select(CheckpointRow)
                    .where(CheckpointRow.thread_id == thread_id)
                    .order_by(CheckpointRow.seq.desc())
                    .limit(1)
                )
                row = (await s.execute(stmt)).scalars().first()
                if row is None:
                    return None
                return Checkpoint(
                    metadata=_metadata_from_row(row),
                    state=SerializedAgentState.model_validate(row.state),
                )

        return await self._run(f"load checkpoint for thread {thread_id}", _op)

    async def list(self, thread_id: str) -> list[CheckpointMetadata]:
        async def _op() -> list[CheckpointMetadata]:
            async with self.session_factory() as s:
                stmt = (
                    select(CheckpointRow)
                    .where(CheckpointRow.thread_id == thread_id)
                    .order_by(CheckpointRow.seq.desc())
                )
                rows = (await s.execute(stmt)).scalars().all()
                return [_metadata_from_row(r) for r in rows]

        return await self._run(f"list checkpoints for thread {thread_id}", _op)

    async def delete(self, checkpoint_id: str) -> bool:
        async def _op() -> bool:
            async with self.session_factory() as s:
                res = await s.execute(delete(CheckpointRow).where(CheckpointRow.id == checkpoint_id))
                await s.commit()
                return bool(res.rowcount)

        return await self._run(f"delete checkpoint {checkpoint_id}", _op)

    async def clear(self, thread_id: str) -> int:
        async def _op() -> int:
            async with self.session_factory() as s:
                res = await s.execute(delete(CheckpointRow).where(CheckpointRow.thread_id == thread_id))
                await s.commit()
                return int(res.rowcount or 0)

        return await self._run(f"clear checkpoints for thread {thread_id}", _op)

    async def clear_history(self, thread_id: str, keep_id: Optional[str] = None) -> int:
        """Delete every checkpoint of a thread except ``keep_id`` (default: the newest)."""

        async def _op() -> int:
            async with self.session_factory() as s:
                keep = keep_id
                if keep is None:
                    stmt = (
                        select(CheckpointRow.id)
                        .where(CheckpointRow.thread_id == thread_id)
                        .order_by(CheckpointRow.seq.desc())
                        .limit(1)
                    )
                    keep = (await s.execute(stmt)).scalars().first()
                    if keep is None:
                        return 0
                res = await s.execute(
                    delete(CheckpointRow).where(CheckpointRow.thread_id == thread_id, CheckpointRow.id != keep)
                )
                await s.commit()
                return int(res.rowcount or 0)

        return await self._run(f"clear history of thread {thread_id}", _op)
