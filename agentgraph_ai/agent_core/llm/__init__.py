"""LLM invocation boundary and the pydantic-ai adapter."""

from .base import Completion, LLMClient, SamplingParams
from .pydantic_ai_client import PydanticAIClient

__all__ = ["Completion", "LLMClient", "PydanticAIClient", "SamplingParams"]
