"""Shared chat models and vendor backends used across the backend."""

from .config import LLMCoreConfig, DEFAULT_LLM_CORE_CONFIG
from .core import SUPPORTED_VENDORS, UnknownVendorError, get_backend, normalize_vendor, register_backend
from .models import ChatCompletion, Message, TokenUsage
from .providers import BackendError, ChatBackend
from .result import Err, Ok, Result

__all__ = [
    "Message",
    "TokenUsage",
    "ChatCompletion",
    "LLMCoreConfig",
    "DEFAULT_LLM_CORE_CONFIG",
    "SUPPORTED_VENDORS",
    "UnknownVendorError",
    "get_backend",
    "normalize_vendor",
    "register_backend",
    "BackendError",
    "ChatBackend",
    "Ok",
    "Err",
    "Result",
]
