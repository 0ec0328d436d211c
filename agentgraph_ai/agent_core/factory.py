from __future__ import annotations

"""Convenience factories for wiring the agent core from ``Settings``.

This module contains small helpers to build the configured checkpoint store
and an ``AgentGraph`` whose limits come from the environment.

The intent is to keep application wiring and tests concise, while still
allowing advanced deployments to construct the classes directly.
"""

import logging
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import httpx

from ..core.config import RetryConfig, Settings, get_settings
from .llm.base import LLMClient
from .repos.interfaces import CheckpointStore
from .repos.kodo import KodoCheckpointStore
from .repos.memory import MemoryCheckpointStore
from .repos.retry import RetryPolicy
from .repos.sql import SqlCheckpointStore, create_all, create_engine, create_sessionmaker
from .runtime.agent_graph import AgentGraph
from .runtime.models import Skill
from .tools.base import Tool

logger = logging.getLogger(__name__)


def build_retry_policy(config: RetryConfig) -> RetryPolicy:
    return RetryPolicy(
        max_retries=config.max_retries,
        backoff_initial=config.backoff_initial,
        backoff_factor=config.backoff_factor,
        backoff_max=config.backoff_max,
    )


async def build_checkpoint_store(
    settings: Optional[Settings] = None,
    *,
    create_tables: bool = False,
    http_client: Optional[httpx.AsyncClient] = None,
) -> CheckpointStore:
    """
    Build the checkpoint store selected by ``checkpoint_backend``.

    Args:
        settings: Settings to read; defaults to ``get_settings()``.
        create_tables: Create the SQL tables (tests and local development).
        http_client: HTTP client for the Kodo backend.

    Returns:
        A ``CheckpointStore`` implementation.
    """
    settings = settings or get_settings()
    backend = settings.checkpoint_backend
    logger.info("Using %s checkpoint store", backend)

    if backend == "memory":
        return MemoryCheckpointStore(max_items=settings.checkpoint_max_items)

    retry_policy = build_retry_policy(settings.retry)
    if backend == "sql":
        engine = create_engine(settings.database_url)
        if create_tables:
            await create_all(engine)
        return SqlCheckpointStore(session_factory=create_sessionmaker(engine), retry_policy=retry_policy)

    return KodoCheckpointStore.from_config(settings.kodo, http_client=http_client, retry_policy=retry_policy)


def build_agent_graph(
    *,
    llm: LLMClient,
    model: str,
    tools: Union[Mapping[str, Tool], Iterable[Tool], None] = None,
    skills: Sequence[Skill] = (),
    settings: Optional[Settings] = None,
    **options: Any,
) -> AgentGraph:
    """Construct an ``AgentGraph`` with step and token limits taken from settings.

    Keyword ``options`` are passed to ``AgentGraph`` and win over settings.
    """
    settings = settings or get_settings()
    kwargs: dict[str, Any] = {
        "max_steps": settings.default_max_steps,
        "graph_step_multiplier": settings.graph_step_multiplier,
        "max_context_tokens": settings.max_context_tokens,
    }
    kwargs.update(options)
    return AgentGraph(llm=llm, model=model, tools=tools, skills=skills, **kwargs)
