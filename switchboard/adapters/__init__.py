"""
Provider adapters for Switchboard.
Each one turns a provider's streaming protocol into StreamChunk deltas plus
one terminal chunk.
"""
from switchboard.adapters.base import BaseAdapter, ChatMessage, ModelConfig, StreamChunk
from switchboard.adapters.registry import AdapterRegistry
from switchboard.adapters.anthropic import AnthropicAdapter
from switchboard.adapters.openai import OpenAIAdapter
from switchboard.adapters.google import GoogleAdapter
from switchboard.adapters.ollama import OllamaAdapter

__all__ = [
    "AdapterRegistry",
    "BaseAdapter",
    "ChatMessage",
    "ModelConfig",
    "StreamChunk",
    "AnthropicAdapter",
    "OpenAIAdapter",
    "GoogleAdapter",
    "OllamaAdapter",
]
