"""Heuristic token estimation for chat messages.

The estimator is intentionally model-agnostic. It weights CJK characters more
heavily than Latin text and charges fixed costs for per-message framing, image
parts and tool calls, so budget decisions do not undercount multimodal or
tool-heavy histories.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from ..schemas.messages import Message

_CJK_RANGES = (
    (0x4E00, 0x9FFF),  # CJK Unified Ideographs
    (0x3400, 0x4DBF),  # CJK Extension A
    (0xAC00, 0xD7AF),  # Hangul syllables
    (0x3040, 0x30FF),  # Hiragana + Katakana
    (0xFF00, 0xFFEF),  # Half/full-width forms
)


@dataclass(frozen=True)
class TokenEstimatorConfig:
    chars_per_token: float = 4.0
    cjk_multiplier: float = 1.5
    message_overhead: int = 10
    image_token_cost: int = 85
    tool_call_cost: int = 50


DEFAULT_ESTIMATOR_CONFIG = TokenEstimatorConfig()


def _is_cjk(ch: str) -> bool:
    code = ord(ch)
    return any(lo <= code <= hi for lo, hi in _CJK_RANGES)


def _weighted_chars(text: str, config: TokenEstimatorConfig) -> float:
    weighted = 0.0
    for ch in text:
        weighted += config.cjk_multiplier if _is_cjk(ch) else 1.0
    return weighted


def estimate_text_tokens(text: str, config: TokenEstimatorConfig = DEFAULT_ESTIMATOR_CONFIG) -> int:
    """Estimate tokens of bare text (no message framing)."""
    if not text:
        return 0
    return math.ceil(_weighted_chars(text, config) / config.chars_per_token)


def estimate_message_tokens(message: Message, config: TokenEstimatorConfig = DEFAULT_ESTIMATOR_CONFIG) -> int:
    """Estimate tokens of one message including overhead, image parts and tool calls."""
    tokens = config.message_overhead
    if isinstance(message.content, str):
        tokens += estimate_text_tokens(message.content, config)
    else:
        for part in message.content:
            if part.type == "text":
                tokens += estimate_text_tokens(part.text or "", config)
            else:
                tokens += config.image_token_cost
    if message.tool_calls:
        tokens += config.tool_call_cost * len(message.tool_calls)
    return tokens


def estimate_messages_tokens(
    messages: Iterable[Message], config: TokenEstimatorConfig = DEFAULT_ESTIMATOR_CONFIG
) -> int:
    """Sum of ``estimate_message_tokens`` over ``messages``."""
    return sum(estimate_message_tokens(m, config) for m in messages)
