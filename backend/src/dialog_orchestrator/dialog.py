"""Multi-round dialog orchestration on top of a chat backend and the session store."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable

from src.llm_core.core import UnknownVendorError, get_backend
from src.llm_core.models import ROLE_ASSISTANT, ROLE_SYSTEM, ROLE_USER, Message
from src.llm_core.providers import ChatBackend

from .config import DEFAULT_DISABLE_SEARCH, DEFAULT_MAX_TOKENS, DEFAULT_MODEL
from .context_summary import HistoryCompressor
from .errors import DialogError, Err, Ok, Result, validate_temperature
from .models import ChatResult, DialogRequest, DialogSession, total_characters
from .prompts import FORMAT_JSON, build_output_format_prompt, build_round_context, join_system_parts
from .session_store import DEFAULT_SESSION_ID, JsonFileSessionStore, SessionStore, is_valid_session_id

logger = logging.getLogger(__name__)

BackendSelector = Callable[[str], ChatBackend]


def validate_dialog_request(request: DialogRequest) -> DialogError | None:
    """Request checks that need no network or session access, in a fixed order."""
    if not request.message or not request.message.strip():
        return DialogError.empty_message()
    if request.max_rounds is not None and request.max_rounds < 1:
        return DialogError.invalid_max_rounds()
    if request.compression_messages_threshold is not None and request.compression_tokens_threshold is not None:
        return DialogError.both_thresholds()
    error = validate_temperature(request.temperature)
    if error is not None:
        return error
    if request.session_id is not None and not is_valid_session_id(request.session_id):
        return DialogError.invalid_request(f"Invalid session id: {request.session_id!r}")
    return None


def check_json_object(content: str) -> DialogError | None:
    try:
        value = json.loads(content.strip())
    except json.JSONDecodeError as exc:
        return DialogError.output_format_violation(str(exc))
    if not isinstance(value, dict):
        return DialogError.output_format_violation(f"top-level value is {type(value).__name__}")
    return None


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class DialogOrchestrator:
    """
    Turns one user message into a reply, either stateless or as one round of
    a bounded multi-round dialog whose state lives in a SessionStore.
    """

    def __init__(
        self,
        store: SessionStore | None = None,
        backend_selector: BackendSelector = get_backend,
        compressor: HistoryCompressor | None = None,
        default_max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> None:
        self.store = store or JsonFileSessionStore()
        self._select_backend = backend_selector
        self._compressor = compressor or HistoryCompressor()
        self._default_max_tokens = default_max_tokens

    async def send(self, request: DialogRequest) -> Result[ChatResult, DialogError]:
        started = time.perf_counter()
        error = validate_dialog_request(request)
        if error is not None:
            return Err(error)
        try:
            backend = self._select_backend(request.vendor)
        except UnknownVendorError as exc:
            return Err(DialogError.unknown_vendor(request.vendor, exc))

        if request.max_rounds is not None and request.max_rounds > 1:
            session_id = request.session_id or DEFAULT_SESSION_ID
            async with self.store.lock(session_id):
                return await self._send_in_session(request, backend, session_id, started)
        return await self._send_single(request, backend, started)

    # ------------------------------------------------------------------
    # Stateless
    # ------------------------------------------------------------------

    async def _send_single(
        self, request: DialogRequest, backend: ChatBackend, started: float
    ) -> Result[ChatResult, DialogError]:
        messages = []
        system = join_system_parts(
            request.system_prompt,
            build_output_format_prompt(request.output_format, request.output_schema),
        )
        if system:
            messages.append(Message(role=ROLE_SYSTEM, content=system))
        messages.append(Message(role=ROLE_USER, content=request.message))

        reply = await backend.send_message(
            messages,
            model=request.model or DEFAULT_MODEL or backend.default_model,
            max_tokens=request.max_tokens or self._default_max_tokens,
            disable_search=DEFAULT_DISABLE_SEARCH if request.disable_search is None else request.disable_search,
            temperature=request.temperature,
        )
        if isinstance(reply, Err):
            return Err(DialogError.backend_failure(reply.error))
        completion = reply.value
        if (request.output_format or "").lower() == FORMAT_JSON:
            error = check_json_object(completion.content)
            if error is not None:
                return Err(error)

        return Ok(
            ChatResult(
                content=completion.content,
                model=completion.model,
                is_complete=True,
                round=1,
                max_rounds=1,
                execution_time_ms=_elapsed_ms(started),
                usage=completion.usage,
                total_characters_count=total_characters(messages),
            )
        )

    # ------------------------------------------------------------------
    # Multi-round
    # ------------------------------------------------------------------

    def _open_session(self, request: DialogRequest, backend: ChatBackend, session_id: str) -> DialogSession:
        """
        Load the session to continue. Without an explicit session id a missing
        or completed session is replaced by a fresh one; an explicit id keeps a
        completed session so the caller is told the dialog is over.
        """
        session = self.store.get_session(session_id)
        if session is None or (session.is_complete and request.session_id is None):
            session = self.store.create_or_reset_session(
                system_prompt=request.system_prompt,
                model=request.model or DEFAULT_MODEL or backend.default_model,
                max_tokens=request.max_tokens or self._default_max_tokens,
                disable_search=DEFAULT_DISABLE_SEARCH if request.disable_search is None else request.disable_search,
                max_rounds=request.max_rounds,
                initial_user_message=request.message,
                session_id=session_id,
            )
        return session

    async def _maybe_compress(self, request: DialogRequest, backend: ChatBackend, session: DialogSession) -> bool:
        model = request.model or session.model
        if request.compression_messages_threshold is not None:
            threshold = request.compression_messages_threshold
            if not self._compressor.should_compress_by_messages(session, threshold):
                return False
            outcome = await self._compressor.compress_by_messages(session, backend, model, threshold)
        elif request.compression_tokens_threshold is not None:
            threshold = request.compression_tokens_threshold
            if not self._compressor.should_compress_by_tokens(session, threshold):
                return False
            outcome = await self._compressor.compress_by_tokens(session, backend, model, threshold)
        else:
            return False

        if isinstance(outcome, Err):
            logger.warning("History compression failed for session %s: %s", session.session_id, outcome.error.message)
            return False
        if not outcome.value.compressed:
            return False
        self.store.update_session(session)
        return True

    @staticmethod
    def _build_session_messages(request: DialogRequest, session: DialogSession, is_last_round: bool) -> list[Message]:
        system = join_system_parts(
            build_round_context(
                request.system_prompt or session.system_prompt,
                is_last_round=is_last_round,
                initial_user_message=session.initial_user_message,
                current_round=session.current_round,
                max_rounds=session.max_rounds,
            ),
            build_output_format_prompt(request.output_format, request.output_schema),
            *(m.content for m in session.summary_entries()),
        )
        messages = [Message(role=ROLE_SYSTEM, content=system)] if system else []

        history = session.dialog_messages()
        if history and history[0].role == ROLE_ASSISTANT:
            history = history[1:]
        messages.extend(history)
        messages.append(Message(role=ROLE_USER, content=request.message))
        return messages

    async def _send_in_session(
        self, request: DialogRequest, backend: ChatBackend, session_id: str, started: float
    ) -> Result[ChatResult, DialogError]:
        session = self._open_session(request, backend, session_id)
        if session.is_complete:
            return Err(DialogError.dialog_completed())
        if session.current_round >= session.max_rounds:
            session.mark_complete()
            self.store.update_session(session)
            return Err(DialogError.max_rounds_exceeded(session.max_rounds))

        was_compressed = await self._maybe_compress(request, backend, session)

        is_last_round = session.current_round + 1 >= session.max_rounds
        messages = self._build_session_messages(request, session, is_last_round)
        logger.debug(
            "Session %s round %d/%d: sending %d message(s)",
            session_id,
            session.current_round + 1,
            session.max_rounds,
            len(messages),
        )

        reply = await backend.send_message(
            messages,
            model=session.model or request.model or backend.default_model,
            max_tokens=session.max_tokens or request.max_tokens or self._default_max_tokens,
            disable_search=session.disable_search,
            temperature=request.temperature,
        )
        if isinstance(reply, Err):
            return Err(DialogError.backend_failure(reply.error))
        completion = reply.value
        if (request.output_format or "").lower() == FORMAT_JSON:
            error = check_json_object(completion.content)
            if error is not None:
                return Err(error)

        session.add_user_message(request.message)
        session.add_assistant_message(completion.content)
        session.increment_round()
        session.touch()
        if completion.usage and completion.usage.total_tokens:
            session.accumulated_total_tokens += completion.usage.total_tokens
        session.refresh_completion()
        self.store.update_session(session)

        return Ok(
            ChatResult(
                content=completion.content,
                model=completion.model,
                is_complete=session.is_complete,
                round=session.current_round,
                max_rounds=session.max_rounds,
                execution_time_ms=_elapsed_ms(started),
                usage=completion.usage,
                total_characters_count=total_characters(session.messages),
                was_compressed=was_compressed,
            )
        )
