"""Unit tests for history compression (scripted backend)."""
from __future__ import annotations

import unittest

from src.dialog_orchestrator.context_summary import HistoryCompressor
from src.dialog_orchestrator.errors import Err, ErrorCode, Ok
from src.dialog_orchestrator.models import DialogSession, Message
from src.llm_core.models import TokenUsage

from stubs import StubBackend


def _session(turns: list[tuple[str, str]], system: list[str] | None = None) -> DialogSession:
    session = DialogSession(session_id="s", model="m", max_tokens=128, max_rounds=10, initial_user_message="hi")
    for content in system or []:
        session.messages.append(Message(role="system", content=content))
    for role, content in turns:
        session.messages.append(Message(role=role, content=content))
    return session


FOUR_TURNS = [("user", "u1"), ("assistant", "a1"), ("user", "u2"), ("assistant", "a2")]


class TestShouldCompress(unittest.TestCase):
    def test_by_messages_counts_dialog_turns_only(self) -> None:
        session = _session(FOUR_TURNS, system=["[COMPRESSED_HISTORY] old"])
        compressor = HistoryCompressor()
        self.assertTrue(compressor.should_compress_by_messages(session, 4))
        self.assertFalse(compressor.should_compress_by_messages(session, 5))

    def test_by_tokens(self) -> None:
        session = _session([])
        session.accumulated_total_tokens = 1000
        compressor = HistoryCompressor()
        self.assertTrue(compressor.should_compress_by_tokens(session, 1000))
        self.assertFalse(compressor.should_compress_by_tokens(session, 1001))


class TestCompressByMessages(unittest.IsolatedAsyncioTestCase):
    async def test_summarises_oldest_turns_into_new_system_message(self) -> None:
        session = _session(FOUR_TURNS)
        backend = StubBackend(["They talked about u1."])

        result = await HistoryCompressor().compress_by_messages(session, backend, "m", 2)

        self.assertIsInstance(result, Ok)
        self.assertEqual(result.value.removed_messages, 2)
        self.assertEqual(
            [(m.role, m.content) for m in session.messages],
            [
                ("system", "[COMPRESSED_HISTORY] They talked about u1."),
                ("user", "u2"),
                ("assistant", "a2"),
            ],
        )

    async def test_summary_request_shape(self) -> None:
        session = _session(FOUR_TURNS)
        backend = StubBackend(["summary"])
        await HistoryCompressor().compress_by_messages(session, backend, "summarizer", 2)

        call = backend.calls[0]
        self.assertEqual(len(call["messages"]), 1)
        self.assertEqual(call["messages"][0].role, "user")
        self.assertIn("User: u1", call["messages"][0].content)
        self.assertIn("Assistant: a1", call["messages"][0].content)
        self.assertNotIn("u2", call["messages"][0].content)
        self.assertEqual(call["model"], "summarizer")
        self.assertEqual(call["max_tokens"], 128)
        self.assertTrue(call["disable_search"])
        self.assertIsNone(call["temperature"])

    async def test_window_keeps_question_with_answer(self) -> None:
        session = _session(FOUR_TURNS)
        backend = StubBackend(["summary"])
        result = await HistoryCompressor().compress_by_messages(session, backend, "m", 3)

        self.assertEqual(result.value.removed_messages, 4)
        self.assertEqual([m.content for m in session.messages], ["[COMPRESSED_HISTORY] summary"])

    async def test_merges_into_existing_system_message(self) -> None:
        session = _session(FOUR_TURNS, system=["You are helpful."])
        backend = StubBackend(["recap"])
        await HistoryCompressor().compress_by_messages(session, backend, "m", 2)

        self.assertEqual(session.messages[0].content, "You are helpful.\n\n[COMPRESSED_HISTORY] recap")
        self.assertEqual(sum(1 for m in session.messages if m.role == "system"), 1)

    async def test_below_threshold_is_noop(self) -> None:
        session = _session(FOUR_TURNS[:2])
        backend = StubBackend([])
        result = await HistoryCompressor().compress_by_messages(session, backend, "m", 3)
        self.assertFalse(result.value.compressed)
        self.assertEqual(backend.calls, [])

    async def test_backend_failure_leaves_session_untouched(self) -> None:
        session = _session(FOUR_TURNS)
        before = list(session.messages)
        backend = StubBackend([RuntimeError("boom")])
        result = await HistoryCompressor().compress_by_messages(session, backend, "m", 2)

        self.assertIsInstance(result, Err)
        self.assertEqual(result.error.code, ErrorCode.BACKEND_FAILURE)
        self.assertEqual(session.messages, before)

    async def test_duplicate_contents_only_window_removed(self) -> None:
        turns = [("user", "ok"), ("assistant", "fine"), ("user", "ok"), ("assistant", "fine")]
        session = _session(turns)
        await HistoryCompressor().compress_by_messages(session, StubBackend(["s"]), "m", 2)
        self.assertEqual([m.content for m in session.messages[1:]], ["ok", "fine"])


class TestCompressByTokens(unittest.IsolatedAsyncioTestCase):
    async def test_keeps_last_two_and_debits_tokens(self) -> None:
        session = _session(FOUR_TURNS + [("user", "u3"), ("assistant", "a3")])
        session.accumulated_total_tokens = 1000
        backend = StubBackend(["recap"], usage=TokenUsage(total_tokens=100))

        result = await HistoryCompressor().compress_by_tokens(session, backend, "m", 800)

        self.assertEqual(result.value.removed_messages, 4)
        self.assertEqual([m.content for m in session.messages[1:]], ["u3", "a3"])
        self.assertEqual(session.accumulated_total_tokens, 1000 - 100 - 400)

    async def test_debit_floors_at_zero(self) -> None:
        session = _session(FOUR_TURNS)
        session.accumulated_total_tokens = 100
        backend = StubBackend(["recap"], usage=TokenUsage(total_tokens=500))
        await HistoryCompressor().compress_by_tokens(session, backend, "m", 100)
        self.assertEqual(session.accumulated_total_tokens, 0)

    async def test_two_or_fewer_turns_is_noop(self) -> None:
        session = _session(FOUR_TURNS[:2])
        backend = StubBackend([])
        result = await HistoryCompressor().compress_by_tokens(session, backend, "m", 10)
        self.assertFalse(result.value.compressed)
        self.assertEqual(backend.calls, [])


if __name__ == "__main__":
    unittest.main()
