"""
Tests for prompt context assembly.
"""
from datetime import datetime, timedelta, timezone

from apps.chats.store import ConversationTurn
from apps.rag.context import SYSTEM_PROMPT, assemble, render_history
from apps.rag.retrieval import ChunkRecord, RetrievalResult

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def turn(role, text, seconds):
    return ConversationTurn('chat-1', 'u1', role, text, T0 + timedelta(seconds=seconds))


def result(text, score):
    chunk = ChunkRecord(document_id='d1', owner_id='u1', chunk_index=0, text=text, embedding=[1.0])
    return RetrievalResult(chunk=chunk, score=score)


# ============================================================================
# History Block
# ============================================================================

class TestRenderHistory:

    def test_lines_in_created_at_order(self):
        turns = [
            turn('assistant', 'second', 2),
            turn('user', 'first', 1),
            turn('user', 'third', 3),
        ]

        assert render_history(turns) == "user: first\nassistant: second\nuser: third"

    def test_equal_timestamps_keep_load_order(self):
        turns = [turn('user', 'a', 1), turn('assistant', 'b', 1)]

        assert render_history(turns) == "user: a\nassistant: b"

    def test_empty_history(self):
        assert render_history([]) == ""


# ============================================================================
# Assembly
# ============================================================================

class TestAssemble:

    def test_three_blocks(self):
        prompt = assemble(
            "What is X?",
            [turn('user', 'hi', 1), turn('assistant', 'hello', 2)],
            [result('X is a letter.', 0.9), result('Y follows X.', 0.5)],
        )

        assert prompt.history == "user: hi\nassistant: hello"
        assert prompt.context == "X is a letter.\n\nY follows X."
        assert prompt.question == "What is X?"

    def test_context_keeps_given_order(self):
        prompt = assemble("q", [], [result('low', 0.1), result('high', 0.9)])

        assert prompt.context == "low\n\nhigh"

    def test_zero_results_gives_empty_context(self):
        prompt = assemble("q", [turn('user', 'earlier', 1)], [])

        assert prompt.context == ""
        assert prompt.history == "user: earlier"

    def test_same_inputs_same_prompt(self):
        turns = [turn('user', 'a', 1), turn('assistant', 'b', 2)]
        results = [result('c1', 0.8), result('c2', 0.7)]

        assert assemble("q", turns, results) == assemble("q", list(turns), list(results))

    def test_to_messages(self):
        prompt = assemble("What now?", [turn('user', 'hi', 1)], [result('ctx', 0.5)])

        messages = prompt.to_messages()

        assert [m.role for m in messages] == ['system', 'user']
        assert messages[0].content == SYSTEM_PROMPT
        body = messages[1].content
        assert body.index("Chat History:") < body.index("Context:") < body.index("Question:")
        assert "user: hi" in body
        assert "ctx" in body
        assert "What now?" in body
