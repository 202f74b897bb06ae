"""Chat backends: one per vendor, all behind the ChatBackend interface."""

from .base import BackendError, ChatBackend
from .gemini_provider import GeminiProvider
from .ollama import OllamaProvider
from .openai_provider import OpenAIProvider, PerplexityProvider

__all__ = [
    "BackendError",
    "ChatBackend",
    "GeminiProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "PerplexityProvider",
]
