"""Prompt text assembled by the orchestrators."""

from __future__ import annotations

import json
from typing import Any

from .models import Message
from .tools import McpTool

FORMAT_JSON = "json"


def build_summary_prompt(messages: list[Message]) -> str:
    """Ask the model for a short summary of a dialog window."""
    lines = []
    for m in messages:
        speaker = "User" if m.role == "user" else "Assistant"
        lines.append(f"{speaker}: {m.content}")
    dialog = "\n".join(lines)
    return (
        "Create a brief summary of the following dialog, preserving the key information "
        "and context needed to continue the conversation. Write it as plain text.\n\n"
        f"Dialog:\n{dialog}\n\nSummary:"
    )


def build_round_context(
    base_prompt: str | None,
    *,
    is_last_round: bool,
    initial_user_message: str,
    current_round: int,
    max_rounds: int,
) -> str:
    """Base prompt plus either the final-round block or a round counter."""
    parts = [base_prompt] if base_prompt else []
    round_number = current_round + 1
    if is_last_round:
        parts.append(
            f"IMPORTANT: This is the final round (round {round_number} of {max_rounds}). "
            f'The original user request was: "{initial_user_message}"\n'
            "Your task:\n"
            "1. Gather all information collected in the previous rounds.\n"
            "2. Take every answer the user has given into account.\n"
            "3. Give one complete, self-contained and structured answer to the original request.\n"
            "4. Do not ask any further questions; this is the final answer."
        )
    else:
        parts.append(f"Current round: {round_number} of {max_rounds}.")
    return "\n\n".join(parts)


def build_output_format_prompt(output_format: str | None, output_schema: str | None = None) -> str | None:
    if not output_format:
        return None
    text = (
        f"Answer exclusively in {output_format} format. The reply must be a single valid "
        f"{output_format} document with no free text before or after it, no ``` fences "
        "and no line breaks."
    )
    if output_format.lower() == FORMAT_JSON:
        text += " The top-level value must be a JSON object."
        if output_schema:
            text += f"\nJSON schema: {output_schema}"
    return text


def join_system_parts(*parts: str | None) -> str | None:
    text = "\n\n".join(p for p in parts if p and p.strip())
    return text or None


def describe_arguments(schema: dict[str, Any] | None) -> str:
    """One line per property of a JSON-schema object."""
    if not schema:
        return "  (no arguments)"
    properties = schema.get("properties") or {}
    if not isinstance(properties, dict) or not properties:
        return "  (no arguments)"
    required = set(schema.get("required") or [])
    lines = []
    for prop, spec in properties.items():
        spec = spec if isinstance(spec, dict) else {}
        line = f"  - {prop}: {spec.get('type', 'any')}"
        if spec.get("title"):
            line += f" ({spec['title']})"
        if spec.get("description"):
            line += f" - {spec['description']}"
        if prop in required:
            line += " (required)"
        lines.append(line)
    return "\n".join(lines)


def build_tools_system_prompt(
    tools: list[McpTool],
    *,
    base_prompt: str | None = None,
    output_format: str | None = None,
    output_schema: str | None = None,
) -> str:
    catalogue = []
    for i, tool in enumerate(tools, start=1):
        catalogue.append(
            f"{i}) {tool.name}: {tool.description or 'no description'}\n"
            f"Arguments:\n{describe_arguments(tool.input_schema)}"
        )
    sections = []
    if base_prompt:
        sections.append(base_prompt)
    sections.append(
        "You are an AI agent that can use tools exposed through MCP servers.\n\n"
        "Available tools:\n" + "\n\n".join(catalogue)
    )
    sections.append(
        "IMPORTANT RULES:\n"
        "1. Call one tool at a time and wait for its result before deciding the next step.\n"
        "2. You may chain tools: use the result of one tool as the input of another.\n"
        "3. Only call tools from the list above, with the arguments they declare.\n"
        "4. When you have everything you need, give the final answer."
    )
    sections.append(
        "RESPONSE FORMAT (reply with exactly one JSON object):\n"
        'To call a tool: {"tool": "<tool_name>", "args": {...}}\n'
        'To finish: {"final": "<your final answer>"}\n'
        "CRITICAL: reply with valid JSON only, no other text."
    )
    if output_format and output_format.lower() == FORMAT_JSON:
        schema_line = "Output format: JSON. The value of \"final\" must itself be a JSON document."
        if output_schema:
            schema_line += f"\nJSON Schema: {output_schema}"
        sections.append(schema_line)
    return "\n\n".join(sections)


def tool_result_turn(tool_name: str, result: str) -> str:
    return (
        f"Result of tool {tool_name}:\n{result}\n\n"
        "You may continue using other tools if needed, or reply with "
        '{"final": "<answer>"} to finish.'
    )


def tool_error_turn(tool_name: str, error: str) -> str:
    return (
        f"Error calling tool {tool_name}: {error}\n\n"
        "Try a different tool or arguments, or reply with "
        '{"final": "<answer>"} to finish.'
    )
