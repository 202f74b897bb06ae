"""History compression: replace the oldest dialog turns with a model-written summary."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from src.llm_core.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message
from src.llm_core.providers import ChatBackend

from .errors import DialogError, Err, Ok, Result
from .models import COMPRESSED_HISTORY_TAG, DialogSession, is_dialog_turn
from .prompts import build_summary_prompt

logger = logging.getLogger(__name__)

# Dialog turns left untouched by token-based compression
KEEP_LAST_MESSAGES = 2


@dataclass
class CompressionOutcome:
    removed_messages: int = 0
    summary: str = ""
    tokens_spent: int | None = None

    @property
    def compressed(self) -> bool:
        return self.removed_messages > 0


def _dialog_positions(session: DialogSession) -> list[int]:
    return [i for i, m in enumerate(session.messages) if is_dialog_turn(m)]


def _message_window(session: DialogSession, threshold: int) -> list[int]:
    """
    Indices of the first `threshold` dialog turns. A window ending on a user
    message is extended by the assistant reply that follows, so a question is
    never separated from its answer.
    """
    positions = _dialog_positions(session)
    if len(positions) < threshold or threshold < 1:
        return []
    window = positions[:threshold]
    last = session.messages[window[-1]]
    if last.role == ROLE_USER and len(positions) > threshold:
        following = session.messages[positions[threshold]]
        if following.role == ROLE_ASSISTANT:
            window.append(positions[threshold])
    return window


def _apply_summary(session: DialogSession, window: list[int], summary: str) -> None:
    drop = set(window)
    messages = [m for i, m in enumerate(session.messages) if i not in drop]
    for i, m in enumerate(messages):
        if m.role == ROLE_SYSTEM:
            messages[i] = Message(role=ROLE_SYSTEM, content=f"{m.content}\n\n{COMPRESSED_HISTORY_TAG} {summary}")
            break
    else:
        messages.insert(0, Message(role=ROLE_SYSTEM, content=f"{COMPRESSED_HISTORY_TAG} {summary}"))
    session.messages = messages


class HistoryCompressor:
    """Summarises old turns of a session through a chat backend, in place."""

    def should_compress_by_messages(self, session: DialogSession, threshold: int) -> bool:
        return len(session.dialog_messages()) >= threshold

    def should_compress_by_tokens(self, session: DialogSession, threshold: int) -> bool:
        return session.accumulated_total_tokens >= threshold

    async def compress_by_messages(
        self,
        session: DialogSession,
        backend: ChatBackend,
        model: str,
        threshold: int,
    ) -> Result[CompressionOutcome, DialogError]:
        window = _message_window(session, threshold)
        if not window:
            return Ok(CompressionOutcome())
        return await self._compress(session, backend, model, window)

    async def compress_by_tokens(
        self,
        session: DialogSession,
        backend: ChatBackend,
        model: str,
        threshold: int,
    ) -> Result[CompressionOutcome, DialogError]:
        positions = _dialog_positions(session)
        if len(positions) <= KEEP_LAST_MESSAGES:
            return Ok(CompressionOutcome())
        result = await self._compress(session, backend, model, positions[:-KEEP_LAST_MESSAGES])
        if isinstance(result, Ok):
            spent = result.value.tokens_spent or 0
            session.accumulated_total_tokens = max(
                0, session.accumulated_total_tokens - spent - threshold // 2
            )
        return result

    async def _compress(
        self,
        session: DialogSession,
        backend: ChatBackend,
        model: str,
        window: list[int],
    ) -> Result[CompressionOutcome, DialogError]:
        logger.info("Compressing %d message(s) of session %s", len(window), session.session_id)
        prompt = build_summary_prompt([session.messages[i] for i in window])
        reply = await backend.send_message(
            [Message(role=ROLE_USER, content=prompt)],
            model=model,
            max_tokens=session.max_tokens,
            disable_search=True,
            temperature=None,
        )
        if isinstance(reply, Err):
            return Err(DialogError.backend_failure(reply.error))

        summary = reply.value.content.strip()
        if not summary:
            return Err(DialogError.backend_failure(ValueError("empty summary")))

        _apply_summary(session, window, summary)
        usage = reply.value.usage
        logger.info("Session %s compressed: %d message(s) summarised", session.session_id, len(window))
        return Ok(
            CompressionOutcome(
                removed_messages=len(window),
                summary=summary,
                tokens_spent=usage.total_tokens if usage else None,
            )
        )
