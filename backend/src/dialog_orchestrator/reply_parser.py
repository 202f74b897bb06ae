"""Parse a model reply in the agent loop into a tool call or a final answer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class ToolCall:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FinalAnswer:
    text: str


@dataclass(frozen=True)
class Unparsable:
    raw: str


ModelReply = Union[ToolCall, FinalAnswer, Unparsable]


def strip_code_fences(text: str) -> str:
    """Drop a leading ```/```json line and a trailing ``` if present."""
    text = text.strip()
    if text.startswith("```"):
        newline = text.find("\n")
        text = text[newline + 1:] if newline != -1 else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def extract_json_object(text: str) -> dict[str, Any] | None:
    """The outermost {...} span of text, if it decodes to a JSON object."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        value = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def parse_model_reply(content: str) -> ModelReply:
    """
    Classify a reply as ToolCall, FinalAnswer or Unparsable.

    A JSON object with a "tool" field is a tool call ("args" defaults to {}).
    One with a "final" field is a final answer. Any other JSON object is
    taken as a final answer carrying the raw reply.
    """
    obj = extract_json_object(strip_code_fences(content))
    if obj is None:
        return Unparsable(raw=content)

    if "tool" in obj:
        name = obj["tool"]
        if not isinstance(name, str) or not name.strip():
            return Unparsable(raw=content)
        args = obj.get("args")
        return ToolCall(name=name.strip(), args=args if isinstance(args, dict) else {})

    if "final" in obj:
        final = obj["final"]
        if isinstance(final, str):
            return FinalAnswer(text=final)
        return FinalAnswer(text=json.dumps(final, ensure_ascii=False))

    return FinalAnswer(text=content)
