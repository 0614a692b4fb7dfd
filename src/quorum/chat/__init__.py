"""Generic single-shot chat path for non-research models."""

# Import providers to trigger auto-registration with chat_registry.
from .anthropic import AnthropicChatProvider
from .gemini import GeminiChatProvider
from .openai import OpenAIChatProvider, PerplexityChatProvider, XAIChatProvider
from .provider import ChatChunk, ChatError, ChatProvider, ChatResult, chat_registry, get_chat_provider

__all__ = [
    "AnthropicChatProvider",
    "ChatChunk",
    "ChatError",
    "ChatProvider",
    "ChatResult",
    "GeminiChatProvider",
    "OpenAIChatProvider",
    "PerplexityChatProvider",
    "XAIChatProvider",
    "chat_registry",
    "get_chat_provider",
]
