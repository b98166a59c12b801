from __future__ import annotations

from backend.app.context import ChatMessage, CompressionResult, ContextWindowManager, message_priority, summarize
from backend.app.plans.policy import CompressionStrategy, Plan
from backend.app.plans.tokens import estimate_message_tokens, estimate_tokens_from_text


def _padded(i: int, size: int = 200) -> ChatMessage:
    text = f"{i:03d}"
    return ChatMessage("user", text + "x" * (size - len(text)))


def test_token_heuristics():
    assert estimate_tokens_from_text("") == 0
    assert estimate_tokens_from_text("abc") == 1
    assert estimate_tokens_from_text("abcdefghi") == 3
    assert estimate_message_tokens("user", "abcd") == 2


def test_short_history_passes_through():
    history = [ChatMessage("user", "hi"), ChatMessage("assistant", "hello")]
    result = ContextWindowManager().compress(history, Plan.STARTER)
    assert result.messages == history
    assert result.strategy is None
    assert result.compressed is False
    assert result.compression_ratio == 1.0


def test_empty_result_ratio():
    assert CompressionResult([], 0, 0, None).compression_ratio == 1.0


class TestTruncation:
    def test_keeps_newest_within_budget(self):
        history = [_padded(i, 400) for i in range(30)]
        result = ContextWindowManager().compress(history, Plan.STARTER)
        assert result.strategy == CompressionStrategy.TRUNCATION
        assert len(result.messages) == 19
        assert result.messages[-1] == history[-1]
        assert result.messages_removed == 11
        assert result.compressed_tokens <= 2000
        assert result.original_tokens > result.compressed_tokens

    def test_never_drops_below_minimum(self):
        history = [_padded(i, 10_000) for i in range(3)]
        result = ContextWindowManager().compress(history, Plan.STARTER)
        assert result.messages == history
        assert result.messages_removed == 0


class TestSelective:
    def test_important_older_message_survives(self):
        history = [_padded(i) for i in range(20)]
        history[2] = ChatMessage("user", history[2].content, important=True)
        result = ContextWindowManager().compress(history, Plan.PLUS, max_tokens=400)
        assert result.strategy == CompressionStrategy.SELECTIVE
        assert result.messages[-5:] == history[-5:]
        assert result.messages[0] == history[2]
        assert len(result.messages) == 7


class TestSlidingWindow:
    def test_system_prompt_is_kept(self):
        history = [ChatMessage("system", "You are helpful.")] + [_padded(i) for i in range(20)]
        result = ContextWindowManager().compress(history, Plan.PRO, max_tokens=400)
        assert result.strategy == CompressionStrategy.SLIDING_WINDOW
        assert result.messages[0].role == "system"
        assert result.messages[-5:] == history[-5:]
        assert len(result.messages) == 8


class TestSmartSummary:
    def _history(self, count: int):
        filler = "detail " * 50
        first = ChatMessage("user", "I want to learn python for data analysis. " + filler)
        rest = [ChatMessage("user", f"question {i} about python pandas dataframes? " + filler) for i in range(1, count)]
        return [first] + rest

    def test_older_turns_become_a_digest(self):
        history = self._history(20)
        result = ContextWindowManager().compress(history, Plan.APEX, max_tokens=1000)
        assert result.strategy == CompressionStrategy.SMART_SUMMARY
        assert result.summary is not None
        assert "User's goal: learn python" in result.summary
        assert "Topics discussed:" in result.summary
        digest = result.messages[0]
        assert digest.role == "system"
        assert digest.important is True
        assert digest.content.startswith("[Previous conversation summary]")
        assert result.messages[1:] == history[-5:]

    def test_too_few_older_turns_fall_back_to_window(self):
        history = self._history(12)
        result = ContextWindowManager().compress(history, Plan.APEX, max_tokens=500)
        assert result.summary is None
        assert result.messages[-5:] == history[-5:]


class TestHelpers:
    def test_priority_signals_add_up(self):
        message = ChatMessage("user", "what? `code`", important=True)
        assert message_priority(message, 0, 1) == 65

    def test_summarize_goal_and_questions(self):
        summary = summarize(
            [
                ChatMessage("user", "how do I deploy a flask app?"),
                ChatMessage("assistant", "Use gunicorn behind nginx."),
            ]
        )
        assert "User's goal: Learn how to deploy a flask app?" in summary
        assert "- User asked: how do I deploy a flask app?" in summary

    def test_summarize_empty(self):
        assert summarize([]) == "Previous conversation context available."
