from __future__ import annotations

import logging

from .config import DEFAULT_LLM_CORE_CONFIG, LLMCoreConfig
from .providers import (
    ChatBackend,
    GeminiProvider,
    OllamaProvider,
    OpenAIProvider,
    PerplexityProvider,
)

logger = logging.getLogger(__name__)

SUPPORTED_VENDORS = ("openai", "perplexity", "ollama", "gemini")
_VENDOR_ALIASES = {"google": "gemini"}

_backend_cache: dict[str, ChatBackend] = {}


class UnknownVendorError(ValueError):
    def __init__(self, vendor: str) -> None:
        super().__init__(f"Unknown vendor: {vendor!r}. Supported: {', '.join(SUPPORTED_VENDORS)}")
        self.vendor = vendor


def normalize_vendor(vendor: str | None) -> str:
    name = (vendor or "").strip().lower()
    return _VENDOR_ALIASES.get(name, name)


def _build_backend(name: str, config: LLMCoreConfig) -> ChatBackend:
    default_model = config.default_models.get(name, "")
    if name == "openai":
        return OpenAIProvider(default_model=default_model, timeout=config.request_timeout)
    if name == "perplexity":
        return PerplexityProvider(default_model=default_model, timeout=config.request_timeout)
    if name == "gemini":
        return GeminiProvider(default_model=default_model, timeout=config.request_timeout)
    return OllamaProvider(default_model=default_model, timeout=config.request_timeout)


def get_backend(vendor: str | None, config: LLMCoreConfig | None = None) -> ChatBackend:
    """Resolve a vendor name to its (cached) backend. Raises UnknownVendorError."""
    name = normalize_vendor(vendor)
    if name not in _backend_cache:
        if name not in SUPPORTED_VENDORS:
            raise UnknownVendorError(vendor or "")
        _backend_cache[name] = _build_backend(name, config or DEFAULT_LLM_CORE_CONFIG)
        logger.debug("Created %s backend", name)
    return _backend_cache[name]


def register_backend(vendor: str, backend: ChatBackend) -> None:
    """Install a backend under a vendor name, replacing any cached one."""
    _backend_cache[normalize_vendor(vendor)] = backend


def reset_backends() -> None:
    _backend_cache.clear()
