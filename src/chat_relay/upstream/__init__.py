"""
Upstream module for the model provider.

Provides:
- A streaming HTTP client for the provider's chat-completions API
- An incremental parser turning the provider's byte stream into deltas
"""

from chat_relay.upstream.client import ModelProviderClient, UpstreamError
from chat_relay.upstream.parser import (
    AnswerChunk,
    ReasoningChunk,
    StreamEnd,
    UpstreamDelta,
    UpstreamStreamParser,
    iter_deltas,
)

__all__ = [
    "ModelProviderClient",
    "UpstreamError",
    "AnswerChunk",
    "ReasoningChunk",
    "StreamEnd",
    "UpstreamDelta",
    "UpstreamStreamParser",
    "iter_deltas",
]
