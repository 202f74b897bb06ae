from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


def _default_models() -> dict[str, str]:
    return {
        "openai": os.getenv("OPENAI_MODEL", "gpt-4.1-nano"),
        "perplexity": os.getenv("PERPLEXITY_MODEL", "sonar"),
        "ollama": os.getenv("OLLAMA_MODEL", "llama3.2"),
        "gemini": os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
    }


@dataclass
class LLMCoreConfig:
    """Configuration for the chat backends."""

    request_timeout: float = float(os.getenv("LLM_REQUEST_TIMEOUT", "90"))
    default_models: dict[str, str] = field(default_factory=_default_models)


DEFAULT_LLM_CORE_CONFIG = LLMCoreConfig()
