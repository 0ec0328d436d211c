"""Token estimation, history compaction and conversation memory."""

from .compactor import (
    CompactionConfig,
    CompactionResult,
    InjectedSkill,
    compact,
    find_orphan_tool_calls,
    skill_priorities,
)
from .manager import (
    InMemoryVectorStore,
    LongTermConfig,
    MemoryConfig,
    MemoryDocument,
    MemoryManager,
    MemoryProcessResult,
    ShortTermConfig,
    SummarizerConfig,
    VectorStore,
)
from .token_estimator import (
    TokenEstimatorConfig,
    estimate_message_tokens,
    estimate_messages_tokens,
    estimate_text_tokens,
)

__all__ = [
    "CompactionConfig",
    "CompactionResult",
    "InMemoryVectorStore",
    "InjectedSkill",
    "LongTermConfig",
    "MemoryConfig",
    "MemoryDocument",
    "MemoryManager",
    "MemoryProcessResult",
    "ShortTermConfig",
    "SummarizerConfig",
    "TokenEstimatorConfig",
    "VectorStore",
    "compact",
    "estimate_message_tokens",
    "estimate_messages_tokens",
    "estimate_text_tokens",
    "find_orphan_tool_calls",
    "skill_priorities",
]
