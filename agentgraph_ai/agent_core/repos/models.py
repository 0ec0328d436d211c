from __future__ import annotations

"""SQLAlchemy ORM models for checkpoint persistence.

These ORM models define the SQL schema used by ``SqlCheckpointStore`` in
``agentgraph_ai.agent_core.repos.sql``.

Design
------

- One row per checkpoint. ``seq`` is an autoincrement key giving a total
  order of writes, so "newest checkpoint of a thread" does not depend on
  timestamp resolution.
- Status and step count are real columns so threads can be queried without
  decoding the state payload.
- Payload columns use JSONB on PostgreSQL and JSON elsewhere (SQLite in tests).

Table names are prefixed with ``ag_`` to avoid collisions in shared databases.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class CheckpointRow(Base):
    """Row model for ``ag_checkpoints``.

    Key fields:

    - ``thread_id``: execution lineage the checkpoint belongs to.
    - ``status``: ``active``, ``pending_approval`` or ``completed``.
    - ``state``: camelCase JSON of ``SerializedAgentState``.
    """

    __tablename__ = "ag_checkpoints"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    thread_id: Mapped[str] = mapped_column(String(255), index=True)

    step_count: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(32), index=True)
    pending_approval: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    custom: Mapped[Optional[Dict[str, Any]]] = mapped_column(JsonType, nullable=True)
    state: Mapped[Dict[str, Any]] = mapped_column(JsonType)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
