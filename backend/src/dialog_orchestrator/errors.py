"""Typed failures returned by the orchestrators."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.llm_core.result import Err, Ok, Result


class ErrorCode(str, Enum):
    EMPTY_MESSAGE = "EMPTY_MESSAGE"
    INVALID_MAX_ROUNDS = "INVALID_MAX_ROUNDS"
    BOTH_COMPRESSION_THRESHOLDS = "BOTH_COMPRESSION_THRESHOLDS"
    INVALID_TEMPERATURE = "INVALID_TEMPERATURE"
    INVALID_REQUEST = "INVALID_REQUEST"
    DIALOG_COMPLETED = "DIALOG_COMPLETED"
    MAX_ROUNDS_EXCEEDED = "MAX_ROUNDS_EXCEEDED"
    UNKNOWN_VENDOR = "UNKNOWN_VENDOR"
    BACKEND_FAILURE = "BACKEND_FAILURE"
    TOOL_PROTOCOL_FAILURE = "TOOL_PROTOCOL_FAILURE"
    OUTPUT_FORMAT_VIOLATION = "OUTPUT_FORMAT_VIOLATION"


# Caused by the request or the dialog state rather than by a remote party
CLIENT_ERROR_CODES = frozenset(
    {
        ErrorCode.EMPTY_MESSAGE,
        ErrorCode.INVALID_MAX_ROUNDS,
        ErrorCode.BOTH_COMPRESSION_THRESHOLDS,
        ErrorCode.INVALID_TEMPERATURE,
        ErrorCode.INVALID_REQUEST,
        ErrorCode.DIALOG_COMPLETED,
        ErrorCode.MAX_ROUNDS_EXCEEDED,
        ErrorCode.UNKNOWN_VENDOR,
    }
)


@dataclass(frozen=True)
class DialogError:
    code: ErrorCode
    message: str
    cause: BaseException | None = None

    @property
    def is_client_error(self) -> bool:
        return self.code in CLIENT_ERROR_CODES

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.code.value}

    @classmethod
    def empty_message(cls) -> DialogError:
        return cls(ErrorCode.EMPTY_MESSAGE, "Message must not be empty")

    @classmethod
    def invalid_max_rounds(cls) -> DialogError:
        return cls(ErrorCode.INVALID_MAX_ROUNDS, "max_rounds must be at least 1")

    @classmethod
    def both_thresholds(cls) -> DialogError:
        return cls(
            ErrorCode.BOTH_COMPRESSION_THRESHOLDS,
            "Only one of compression_messages_threshold and compression_tokens_threshold may be set",
        )

    @classmethod
    def invalid_temperature(cls, value: float) -> DialogError:
        return cls(ErrorCode.INVALID_TEMPERATURE, f"temperature must satisfy 0 <= t < 2, got {value}")

    @classmethod
    def invalid_request(cls, message: str) -> DialogError:
        return cls(ErrorCode.INVALID_REQUEST, message)

    @classmethod
    def dialog_completed(cls) -> DialogError:
        return cls(ErrorCode.DIALOG_COMPLETED, "Dialog is already completed; start a new one")

    @classmethod
    def max_rounds_exceeded(cls, max_rounds: int) -> DialogError:
        return cls(ErrorCode.MAX_ROUNDS_EXCEEDED, f"Maximum number of rounds ({max_rounds}) reached")

    @classmethod
    def unknown_vendor(cls, vendor: str, cause: BaseException | None = None) -> DialogError:
        return cls(ErrorCode.UNKNOWN_VENDOR, f"Unknown vendor: {vendor!r}", cause)

    @classmethod
    def backend_failure(cls, cause: BaseException) -> DialogError:
        return cls(ErrorCode.BACKEND_FAILURE, f"Backend request failed: {cause}", cause)

    @classmethod
    def tool_protocol_failure(cls, message: str, cause: BaseException | None = None) -> DialogError:
        return cls(ErrorCode.TOOL_PROTOCOL_FAILURE, message, cause)

    @classmethod
    def output_format_violation(cls, detail: str) -> DialogError:
        return cls(ErrorCode.OUTPUT_FORMAT_VIOLATION, f"Model reply is not a valid JSON object: {detail}")


def validate_temperature(temperature: float | None) -> DialogError | None:
    if temperature is not None and not (0 <= temperature < 2):
        return DialogError.invalid_temperature(temperature)
    return None


__all__ = [
    "ErrorCode",
    "DialogError",
    "CLIENT_ERROR_CODES",
    "validate_temperature",
    "Ok",
    "Err",
    "Result",
]
