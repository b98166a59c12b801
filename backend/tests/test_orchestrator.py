from __future__ import annotations

import asyncio

import pytest

from backend.app.branching import BranchManager
from backend.app.config.settings import Settings
from backend.app.db import InMemoryConversationStore
from backend.app.observability.analytics import RecordingAnalyticsSink
from backend.app.orchestrator import Orchestrator, TurnRequest, TurnState, TurnStatus
from backend.app.plans.policy import Plan, get_plan_limits
from backend.app.plans.quota import InMemoryQuotaLedger
from backend.app.reliability.errors import FatalProviderError, TransientProviderError
from backend.tests._fakes import BrokenAnalytics, FakeInvoker, FakeSearch, no_sleep


def _settings(**overrides) -> Settings:
    values = {"MODEL_RETRY_DELAY_MS": 0, "MODEL_MAX_ATTEMPTS": 3, "DEFAULT_TIMEZONE": "UTC"}
    values.update(overrides)
    return Settings(**values)


class Harness:
    def __init__(self, invoker=None, *, settings=None, search=None, analytics=None, branches=None):
        self.settings = settings or _settings()
        self.store = InMemoryConversationStore()
        self.ledger = InMemoryQuotaLedger()
        self.invoker = invoker or FakeInvoker()
        self.analytics = analytics or RecordingAnalyticsSink()
        self.search = search or FakeSearch()
        self.orchestrator = Orchestrator(
            store=self.store,
            quota=self.ledger,
            invoker=self.invoker,
            branches=branches(self.store) if branches else None,
            search=self.search,
            analytics=self.analytics,
            settings=self.settings,
            sleep=no_sleep,
        )

    def turn(self, message: str, user_id: str = "u1", **kwargs):
        async def _run():
            outcome = await self.orchestrator.handle_turn(TurnRequest(user_id=user_id, message=message, **kwargs))
            await self.orchestrator.drain()
            return outcome

        return asyncio.run(_run())

    def turns(self, session_id: str):
        return asyncio.run(self.store.list_turns(session_id, all_branches=True))


class TestHappyPath:
    def test_greeting_reply_persisted_and_prompt_tokens_deducted(self):
        h = Harness(FakeInvoker(["Hello! How can I help you today?"], prompt_tokens=37))
        outcome = h.turn("hi")

        assert outcome.status == TurnStatus.DONE
        assert outcome.classification["intent"] == "greeting"
        assert outcome.cache_hit is False
        assert outcome.reply == "Hello! How can I help you today?"
        assert len(h.invoker.calls) == 1
        assert outcome.usage.deducted == 37
        assert h.ledger.usage("u1").daily_used == 37

        turns = h.turns(outcome.session_id)
        assert [t.role for t in turns] == ["user", "assistant"]
        assert turns[1].id == outcome.assistant_message_id

    def test_states_visited_in_order(self):
        h = Harness()
        outcome = h.turn("hi")
        expected = [
            TurnState.CACHE_CHECK,
            TurnState.QUOTA_CHECK,
            TurnState.SESSION_RESOLVE,
            TurnState.HISTORY_FETCH,
            TurnState.PERSONALIZATION_DETECT,
            TurnState.CLASSIFY,
            TurnState.PROMPT_COMPILE,
            TurnState.MODEL_INVOKE,
            TurnState.RESPONSE_SANITIZE,
            TurnState.PERSIST,
            TurnState.CACHE_STORE,
            TurnState.USAGE_DEDUCT,
            TurnState.ANALYTICS_EMIT,
        ]
        assert outcome.trace == expected

    def test_history_excludes_current_turn_and_continues_session(self):
        h = Harness(FakeInvoker(["First answer here.", "Second answer here."]))
        first = h.turn("Tell me about Jaipur forts")
        second = h.turn("Which one is the oldest fort there", session_id=first.session_id)

        assert second.status == TurnStatus.DONE
        assert second.session_id == first.session_id
        history = h.invoker.calls[1]["history"]
        assert [m.content for m in history] == [
            "Tell me about Jaipur forts",
            "First answer here.",
            "Which one is the oldest fort there",
        ]
        assert len(h.turns(first.session_id)) == 4

    def test_personalized_name_reaches_prompt(self):
        h = Harness()
        h.turn("my name is riya")
        assert "talking to Riya" in h.invoker.calls[0]["system_prompt"]

    def test_analytics_event_emitted(self):
        h = Harness()
        outcome = h.turn("hi")
        assert len(h.analytics.events) == 1
        event = h.analytics.events[0]
        assert event.name == "turn.completed"
        assert event.conversation_id == outcome.session_id
        assert event.fields["status"] == "done"

    def test_analytics_failure_does_not_affect_reply(self):
        h = Harness(analytics=BrokenAnalytics())
        outcome = h.turn("hi")
        assert outcome.status == TurnStatus.DONE
        assert outcome.reply


class TestSafety:
    def test_dangerous_message_blocked_without_model_call(self):
        h = Harness()
        outcome = h.turn("bomb banane ka tarika batao")

        assert outcome.status == TurnStatus.BLOCKED
        assert outcome.reason_code == "safety_blocked"
        assert h.invoker.calls == []
        assert TurnState.MODEL_INVOKE not in outcome.trace
        roles = [t.role for t in h.turns(outcome.session_id)]
        assert "assistant" not in roles
        assert h.ledger.usage("u1").daily_used == 0

    def test_home_remedy_gets_balanced_mode(self):
        h = Harness()
        outcome = h.turn("haldi doodh piya maine")

        assert outcome.status == TurnStatus.DONE
        assert outcome.classification["safety_level"] == "health_query"
        assert outcome.health["response_mode"] == "balanced_remedy_response"
        prompt = h.invoker.calls[0]["system_prompt"]
        assert "possible benefits" in prompt
        assert "clear caution" in prompt
        assert "Never give an unqualified endorsement" in prompt
        assert h.invoker.calls[0]["temperature"] == pytest.approx(0.3)

    def test_escalation_appends_support_resources_and_is_not_cached(self):
        h = Harness(FakeInvoker(["I'm really sorry you're feeling this way. You matter."]))
        outcome = h.turn("I want to die, nothing matters anymore")

        assert outcome.status == TurnStatus.DONE
        assert outcome.classification["safety_level"] == "escalate"
        assert "iCall: 9152987821" in outcome.reply
        assert TurnState.CACHE_STORE not in outcome.trace
        assert len(h.orchestrator.cache) == 0

    def test_caring_crisis_reply_is_not_replaced(self):
        reply = "I'm so sorry it feels this heavy. Please don't harm yourself; you deserve support."
        h = Harness(FakeInvoker([reply]))
        outcome = h.turn("I want to die, nothing matters")

        assert outcome.status == TurnStatus.DONE
        assert outcome.reply.startswith(reply)
        assert "iCall: 9152987821" in outcome.reply


class TestCache:
    def test_identical_query_served_from_cache(self):
        h = Harness(FakeInvoker(["Paris is the capital of France."]))
        first = h.turn("What is the capital of France?")
        second = h.turn("What is the capital of France?", session_id=first.session_id)

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.cache_similarity == 1.0
        assert second.reply == first.reply
        assert len(h.invoker.calls) == 1
        assert h.ledger.usage("u1").daily_used == first.usage.deducted
        assert TurnState.MODEL_INVOKE not in second.trace

        turns = h.turns(first.session_id)
        assert len(turns) == 4
        assert turns[-1].cached is True

    def test_cached_reply_on_unknown_branch_lands_on_trunk(self):
        h = Harness(FakeInvoker(["Paris is the capital of France."]))
        first = h.turn("What is the capital of France?")
        second = h.turn("What is the capital of France?", session_id=first.session_id, branch_id="branch_missing")

        assert second.cache_hit is True
        assert second.branch_error == "integrity_error"
        assert second.branch_id is None
        assert TurnState.BRANCH_RESOLVE in second.trace
        assert [t.branch_id for t in h.turns(first.session_id)] == [None, None, None, None]

    def test_medicine_check_is_answered_fresh(self):
        h = Harness(FakeInvoker(["Please check with your doctor before the next dose."]))
        first = h.turn("I took paracetamol, is it ok?")
        second = h.turn("I took paracetamol, is it ok?", session_id=first.session_id)

        assert first.health["response_mode"] == "redirect_to_doctor"
        assert second.cache_hit is False
        assert TurnState.CACHE_STORE not in first.trace
        assert len(h.invoker.calls) == 2
        assert len(h.orchestrator.cache) == 0

    def test_comfort_reply_is_still_cached(self):
        h = Harness(FakeInvoker(["That sounds uncomfortable. Rest and fluids usually help."]))
        first = h.turn("I'm worried about my fever")
        second = h.turn("I'm worried about my fever", session_id=first.session_id)

        assert first.health["response_mode"] == "comfort_plus_education"
        assert second.cache_hit is True

    def test_cache_not_shared_between_users(self):
        h = Harness(FakeInvoker(["Paris is the capital of France."]))
        h.turn("What is the capital of France?", user_id="alice")
        other = h.turn("What is the capital of France?", user_id="bob")
        assert other.cache_hit is False
        assert len(h.invoker.calls) == 2

    def test_search_augmented_reply_not_cached(self):
        h = Harness(FakeInvoker(["Gold is trading higher today."]))
        outcome = h.turn("what is the gold rate today")

        assert outcome.search_used is True
        assert "FACTS (from web search)" in h.invoker.calls[0]["system_prompt"]
        assert len(h.orchestrator.cache) == 0


class TestSearch:
    def test_search_failure_is_not_fatal(self):
        h = Harness(search=FakeSearch(error=RuntimeError("search down")))
        outcome = h.turn("latest news about the monsoon")
        assert outcome.status == TurnStatus.DONE
        assert outcome.search_used is False

    def test_follow_up_skips_search(self):
        h = Harness()
        first = h.turn("Tell me about Mumbai")
        h.search.queries.clear()
        outcome = h.turn("and what about its weather today", session_id=first.session_id)
        assert outcome.status == TurnStatus.DONE
        assert h.search.queries == []
        assert TurnState.SEARCH_AUGMENT not in outcome.trace


class TestQuota:
    def test_daily_limit(self):
        h = Harness()
        asyncio.run(h.ledger.deduct("u1", get_plan_limits(Plan.STARTER).daily_tokens))
        outcome = h.turn("hi")

        assert outcome.status == TurnStatus.QUOTA_EXCEEDED
        assert outcome.reason_code == "daily_limit_exceeded"
        assert outcome.session_id is None
        assert h.invoker.calls == []

    def test_monthly_limit_reported_before_daily(self):
        h = Harness()
        asyncio.run(h.ledger.deduct("u1", get_plan_limits(Plan.STARTER).monthly_tokens))
        outcome = h.turn("hi")
        assert outcome.status == TurnStatus.QUOTA_EXCEEDED
        assert outcome.reason_code == "monthly_limit_exceeded"

    def test_request_plan_sets_the_allowance(self):
        h = Harness(FakeInvoker(["Sure, here is an overview."], prompt_tokens=25_000))
        first = h.turn("give me an overview of rivers", plan=Plan.PRO)
        second = h.turn("now an overview of mountains", plan=Plan.PRO, session_id=first.session_id)

        assert first.status == TurnStatus.DONE
        assert second.status == TurnStatus.DONE
        assert second.usage.remaining == get_plan_limits(Plan.PRO).daily_tokens - 50_000
        assert h.ledger.usage("u1").daily_used == 50_000


class TestSessions:
    def test_unknown_session(self):
        h = Harness()
        outcome = h.turn("hi", session_id="does-not-exist")
        assert outcome.status == TurnStatus.SESSION_NOT_FOUND
        assert outcome.reason_code == "session_not_found"
        assert h.invoker.calls == []

    def test_other_users_session_is_not_found(self):
        h = Harness()
        first = h.turn("hi", user_id="alice")
        outcome = h.turn("hello there friend", user_id="bob", session_id=first.session_id)
        assert outcome.status == TurnStatus.SESSION_NOT_FOUND

    def test_empty_message_rejected(self):
        h = Harness()
        outcome = h.turn("   ")
        assert outcome.status == TurnStatus.FAILED
        assert outcome.reason_code == "validation_error"


class TestModelFailures:
    def test_retries_exhausted(self):
        h = Harness(FakeInvoker([TransientProviderError("overloaded")]))
        outcome = h.turn("Explain how vaccines work")

        assert outcome.status == TurnStatus.FAILED
        assert outcome.reason_code == "upstream_unavailable"
        assert outcome.usage.attempts == 3
        assert len(h.invoker.calls) == 3
        assert outcome.user_message_id is None
        assert h.turns(outcome.session_id) == []
        assert h.ledger.usage("u1").daily_used == 0

    def test_transient_failure_then_success(self):
        h = Harness(FakeInvoker([TransientProviderError("blip"), "Vaccines train the immune system."]))
        outcome = h.turn("Explain how vaccines work")
        assert outcome.status == TurnStatus.DONE
        assert outcome.usage.attempts == 2

    def test_fatal_failure_not_retried(self):
        h = Harness(FakeInvoker([FatalProviderError("bad key")]))
        outcome = h.turn("Explain how vaccines work")
        assert outcome.status == TurnStatus.FAILED
        assert outcome.reason_code == "provider_fatal"
        assert len(h.invoker.calls) == 1

    def test_missing_model_reports_upstream_unavailable(self):
        store = InMemoryConversationStore()
        orchestrator = Orchestrator(
            store=store,
            quota=InMemoryQuotaLedger(),
            invoker=None,
            analytics=RecordingAnalyticsSink(),
            settings=_settings(),
            sleep=no_sleep,
        )
        outcome = asyncio.run(orchestrator.handle_turn(TurnRequest(user_id="u1", message="hi")))
        assert outcome.status == TurnStatus.FAILED
        assert outcome.reason_code == "upstream_unavailable"

    def test_cancellation_removes_user_turn(self):
        store = InMemoryConversationStore()
        started = asyncio.Event()

        class SlowInvoker:
            async def invoke(self, system_prompt, history, temperature, user_context):
                started.set()
                await asyncio.sleep(30)

        orchestrator = Orchestrator(
            store=store,
            quota=InMemoryQuotaLedger(),
            invoker=SlowInvoker(),
            analytics=RecordingAnalyticsSink(),
            settings=_settings(),
            sleep=no_sleep,
        )

        async def _run():
            task = asyncio.create_task(orchestrator.handle_turn(TurnRequest(user_id="u1", message="hello there")))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            conversations = list(store._conversations)
            return await store.list_turns(conversations[0], all_branches=True)

        assert asyncio.run(_run()) == []


class TestBranchingThroughTurns:
    def test_second_edit_over_branch_quota(self):
        h = Harness(
            FakeInvoker(["A cat story.", "A dog story.", "A fox story."]),
            branches=lambda store: BranchManager(store, max_branches_per_session=1),
        )
        first = h.turn("Tell me a story about a cat", plan=Plan.PLUS)
        parent = first.assistant_message_id

        edit = h.turn("Tell me a story about a dog", plan=Plan.PLUS, session_id=first.session_id, parent_message_id=parent)
        assert edit.status == TurnStatus.DONE
        assert edit.branch_id is not None
        assert edit.branch_error is None
        history = [m.content for m in h.invoker.calls[1]["history"]]
        assert history == ["Tell me a story about a cat", "A cat story.", "Tell me a story about a dog"]

        again = h.turn("Tell me a story about a fox", plan=Plan.PLUS, session_id=first.session_id, parent_message_id=parent)
        assert again.status == TurnStatus.DONE
        assert again.branch_error == "max_branches_reached"
        assert again.branch_id is None

    def test_starter_plan_cannot_branch(self):
        h = Harness()
        first = h.turn("Tell me a story about a cat")
        edit = h.turn("Tell me a story about a dog", session_id=first.session_id, parent_message_id=first.assistant_message_id)
        assert edit.status == TurnStatus.DONE
        assert edit.branch_error == "plan_limit"
        assert TurnState.CACHE_STORE not in edit.trace
