"""Per-turn pipeline.

One call to ``Orchestrator.handle_turn`` walks the states in ``TurnState``
order. Collaborators (store, quota ledger, model invoker, search, analytics)
and the shared cache and branch manager are injected at construction, so a
test can build a fresh orchestrator around in-memory fakes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set

from backend.app.branching.manager import BranchManager
from backend.app.cache.semantic import CachedResponse, CacheLookup, SemanticCache
from backend.app.classifier.classifier import Classifier, assess_safety
from backend.app.classifier.personalization import detect_personalization
from backend.app.classifier.types import ClassificationResult, SafetyLevel
from backend.app.config.settings import Settings, get_settings
from backend.app.context.messages import ChatMessage
from backend.app.context.window import CompressionResult, ContextWindowManager
from backend.app.integration.contracts import (
    AnalyticsSink,
    Conversation,
    ConversationStore,
    ModelInvoker,
    ModelResult,
    QuotaLedger,
    SearchAugmenter,
    Turn,
    TurnEvent,
)
from backend.app.observability.analytics import LoggingAnalyticsSink
from backend.app.observability.metrics import build_turn_summary_fields, counter, histogram
from backend.app.orchestrator.states import TurnOutcome, TurnRequest, TurnState, TurnStatus
from backend.app.perf.timeouts import enforce_timeout
from backend.app.plans.policy import get_plan_limits
from backend.app.plans.tokens import estimate_tokens_from_text
from backend.app.prompts.compiler import CompiledPrompt, IdentityFacts, PromptCompiler
from backend.app.reliability.engine import RetryPolicy, invoke_with_retry
from backend.app.reliability.errors import (
    FatalProviderError,
    OrchestrationError,
    QuotaExceeded,
    ReasonCode,
    SafetyBlocked,
    SessionNotFound,
    UpstreamUnavailable,
    ValidationError,
)
from backend.app.research.augment import NullSearchAugmenter, format_search_facts, is_follow_up, needs_search
from backend.app.safety.envelope import sanitize_response
from backend.app.safety.health import HealthVerdict, ResponseMode, assess_health

logger = logging.getLogger(__name__)

TITLE_CHARS = 50

# Health answers in these modes depend on the exact question, so they are never reused.
UNCACHED_HEALTH_MODES = frozenset(
    {ResponseMode.EMERGENCY_OVERRIDE, ResponseMode.REDIRECT_TO_DOCTOR, ResponseMode.EDUCATION_ONLY}
)


@dataclass
class _TurnContext:
    request: TurnRequest
    outcome: TurnOutcome
    started: float
    conversation: Optional[Conversation] = None
    branch_id: Optional[str] = None
    user_turn: Optional[Turn] = None
    history: List[ChatMessage] = field(default_factory=list)
    compression: Optional[CompressionResult] = None
    classification: Optional[ClassificationResult] = None
    health: Optional[HealthVerdict] = None
    estimate: int = 0
    committed: bool = False


class Orchestrator:
    def __init__(
        self,
        *,
        store: ConversationStore,
        quota: QuotaLedger,
        invoker: Optional[ModelInvoker],
        cache: Optional[SemanticCache] = None,
        branches: Optional[BranchManager] = None,
        context: Optional[ContextWindowManager] = None,
        classifier: Optional[Classifier] = None,
        compiler: Optional[PromptCompiler] = None,
        search: Optional[SearchAugmenter] = None,
        analytics: Optional[AnalyticsSink] = None,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        s = self.settings
        self.store = store
        self.quota = quota
        self.invoker = invoker
        self.cache = cache if cache is not None else SemanticCache.from_settings(s)
        self.branches = branches if branches is not None else BranchManager.from_settings(store, s)
        self.context = context or ContextWindowManager()
        self.classifier = classifier or Classifier(
            repetition_window=s.repetition_window,
            repetition_threshold=s.repetition_threshold,
        )
        self.compiler = compiler or PromptCompiler(budget_tokens=s.prompt_budget_tokens)
        self.search = search or NullSearchAugmenter()
        self.analytics = analytics or LoggingAnalyticsSink()
        self.retry_policy = RetryPolicy(
            max_attempts=s.model_max_attempts,
            retry_delay_ms=s.model_retry_delay_ms,
            attempt_timeout_ms=s.model_timeout_seconds * 1000,
        )
        self._sleep = sleep
        self._pending: Set[asyncio.Task] = set()

    async def handle_turn(self, request: TurnRequest) -> TurnOutcome:
        ctx = _TurnContext(
            request=request,
            outcome=TurnOutcome(status=TurnStatus.DONE, session_id=request.session_id),
            started=time.monotonic(),
        )
        try:
            self._validate(request)
        except ValidationError as exc:
            return self._finish(ctx, self._fail(ctx, TurnStatus.FAILED, exc))

        # 1) Cache check
        lookup = self._cache_check(ctx)
        if lookup.hit:
            return await self._serve_cached(ctx, lookup)

        # 2) Quota check and session lookup have no data dependency
        early = await self._quota_and_session(ctx)
        if early is not None:
            return self._finish(ctx, early)

        # 3) Branch
        await self._resolve_branch(ctx)

        # 4) History for this branch, compressed to the plan's window
        await self._fetch_history(ctx)

        ctx.user_turn = await self.store.create_turn(
            ctx.conversation.id,
            request.user_id,
            "user",
            request.message,
            branch_id=ctx.branch_id,
            parent_message_id=request.parent_message_id,
            tokens=estimate_tokens_from_text(request.message),
        )
        ctx.outcome.user_message_id = ctx.user_turn.id

        try:
            outcome = await self._respond(ctx)
        except asyncio.CancelledError:
            await self._compensate(ctx, "cancelled")
            raise
        except Exception:
            await self._compensate(ctx, "error")
            raise
        return self._finish(ctx, outcome)

    # stages

    def _validate(self, request: TurnRequest) -> None:
        if not (request.user_id or "").strip():
            raise ValidationError("user_id is required")
        text = (request.message or "").strip()
        if not text:
            raise ValidationError("message is required", message="Message cannot be empty.")
        if len(text) > self.settings.max_message_chars:
            raise ValidationError(
                "message too long",
                message=f"Message is longer than {self.settings.max_message_chars} characters.",
            )

    def _enter(self, ctx: _TurnContext, state: TurnState) -> None:
        ctx.outcome.trace.append(state)

    def _cache_check(self, ctx: _TurnContext) -> CacheLookup:
        self._enter(ctx, TurnState.CACHE_CHECK)
        request = ctx.request
        if request.parent_message_id:
            return CacheLookup(hit=False)
        # Anything at or above escalate is answered fresh every time.
        level = assess_safety(request.message).level
        if level.rank >= SafetyLevel.ESCALATE.rank:
            return CacheLookup(hit=False)
        if level == SafetyLevel.HEALTH_QUERY and assess_health(request.message).response_mode in UNCACHED_HEALTH_MODES:
            return CacheLookup(hit=False)
        lookup = self.cache.lookup(
            request.user_id,
            request.message,
            session_id=request.session_id if self.settings.cache_session_scoped else None,
        )
        ctx.outcome.cache_similarity = lookup.similarity
        return lookup

    async def _find_session(self, request: TurnRequest) -> Optional[Conversation]:
        if not request.session_id:
            return None
        return await self.store.find_session(request.session_id, request.user_id)

    async def _open_session(self, ctx: _TurnContext, found: Optional[Conversation]) -> Optional[TurnOutcome]:
        request = ctx.request
        if request.session_id and found is None:
            return self._fail(ctx, TurnStatus.SESSION_NOT_FOUND, SessionNotFound(request.session_id))
        if found is None:
            found = await self.store.create_session(request.user_id, request.message.strip()[:TITLE_CHARS])
        ctx.conversation = found
        ctx.outcome.session_id = found.id
        return None

    async def _quota_and_session(self, ctx: _TurnContext) -> Optional[TurnOutcome]:
        request = ctx.request
        self._enter(ctx, TurnState.QUOTA_CHECK)
        self._enter(ctx, TurnState.SESSION_RESOLVE)
        ctx.estimate = estimate_tokens_from_text(request.message) + self.settings.quota_estimate_overhead
        decision, found = await asyncio.gather(
            self.quota.can_afford(request.user_id, ctx.estimate, plan=request.plan),
            self._find_session(request),
        )
        if not decision.allowed:
            reason = decision.reason or ReasonCode.DAILY_LIMIT_EXCEEDED
            ctx.outcome.usage.remaining = decision.remaining
            return self._fail(ctx, TurnStatus.QUOTA_EXCEEDED, QuotaExceeded(reason, remaining=decision.remaining))
        return await self._open_session(ctx, found)

    async def _resolve_branch(self, ctx: _TurnContext) -> None:
        request = ctx.request
        session_id = ctx.conversation.id
        ctx.branch_id = request.branch_id
        if request.parent_message_id:
            self._enter(ctx, TurnState.BRANCH_RESOLVE)
            result = await self.branches.create_branch(
                session_id, request.parent_message_id, request.user_id, plan=request.plan
            )
            if result.success:
                ctx.branch_id = result.branch_id
            else:
                ctx.outcome.branch_error = result.reason.value
                logger.info(
                    "[Turn] continuing without a new branch",
                    extra={"session_id": session_id, "reason": result.reason.value},
                )
        elif ctx.branch_id:
            await self._check_branch(ctx)
        ctx.outcome.branch_id = ctx.branch_id

    async def _check_branch(self, ctx: _TurnContext) -> None:
        self._enter(ctx, TurnState.BRANCH_RESOLVE)
        session_id = ctx.conversation.id
        if await self.store.get_branch(session_id, ctx.branch_id) is None:
            logger.warning("[Turn] unknown branch, using trunk", extra={"session_id": session_id})
            ctx.outcome.branch_error = ReasonCode.INTEGRITY_ERROR.value
            ctx.branch_id = None

    async def _fetch_history(self, ctx: _TurnContext) -> None:
        self._enter(ctx, TurnState.HISTORY_FETCH)
        limit = self.settings.history_fetch_limit
        if ctx.branch_id:
            turns = await self.branches.lineage(ctx.conversation.id, ctx.branch_id)
            turns = turns[-limit:] if limit else []
        else:
            turns = await self.store.list_turns(ctx.conversation.id, limit=limit)
        ctx.compression = self.context.compress([t.as_message() for t in turns], ctx.request.plan)
        ctx.history = ctx.compression.messages
        ctx.outcome.compression = ctx.compression.summary_fields()

    async def _respond(self, ctx: _TurnContext) -> TurnOutcome:
        request = ctx.request
        outcome = ctx.outcome

        # 5) Personalization
        user_name = request.user_name
        if self.settings.personalization_enabled:
            self._enter(ctx, TurnState.PERSONALIZATION_DETECT)
            hint = detect_personalization(request.message)
            if hint.user_name and not user_name:
                user_name = hint.user_name

        # 6) Classify against earlier turns only
        self._enter(ctx, TurnState.CLASSIFY)
        classification = self.classifier.classify(request.message, ctx.history)
        ctx.classification = classification
        outcome.classification = classification.summary()
        if classification.blocked:
            await self.store.update_conversation_counters(ctx.conversation.id, messages_delta=1, tokens_delta=0)
            ctx.committed = True
            blocked = SafetyBlocked("dangerous content", message=classification.block_reason)
            return self._fail(ctx, TurnStatus.BLOCKED, blocked)

        # 7) Health
        if classification.safety_level == SafetyLevel.HEALTH_QUERY:
            self._enter(ctx, TurnState.HEALTH_ASSESS)
            ctx.health = assess_health(request.message)
            outcome.health = ctx.health.summary()

        # 8) Search, unless the answer context is already in history
        search_facts = await self._augment(ctx)

        # 9) Prompt
        self._enter(ctx, TurnState.PROMPT_COMPILE)
        identity = IdentityFacts(
            assistant_name=self.settings.assistant_name,
            user_name=user_name,
            location=request.location,
            timezone_name=request.timezone_name or self.settings.default_timezone,
            now=request.now,
        )
        compiled = self.compiler.compile(identity, classification, ctx.health, search_facts=search_facts)
        outcome.prompt = _prompt_stats(compiled)

        # 10) Model
        self._enter(ctx, TurnState.MODEL_INVOKE)
        try:
            result = await self._invoke_model(ctx, compiled)
        except (UpstreamUnavailable, FatalProviderError) as exc:
            if isinstance(exc, UpstreamUnavailable):
                outcome.usage.attempts = exc.attempts
            await self._compensate(ctx, exc.reason_code.value)
            return self._fail(ctx, TurnStatus.FAILED, exc)

        # 11) Sanitize
        self._enter(ctx, TurnState.RESPONSE_SANITIZE)
        cleaned = sanitize_response(
            result.text,
            classification.language,
            support_resources=classification.support_resources,
        )
        if cleaned.issues:
            counter("turn.response_issues", len(cleaned.issues))
            logger.info("[Turn] response quality issues", extra={"issues": cleaned.issues})

        # 12) Persist
        self._enter(ctx, TurnState.PERSIST)
        reply = await self.store.create_turn(
            ctx.conversation.id,
            request.user_id,
            "assistant",
            cleaned.text,
            branch_id=ctx.branch_id,
            tokens=result.usage.completion_tokens,
            model=result.metadata.get("model"),
        )
        ctx.committed = True
        await self.store.update_conversation_counters(
            ctx.conversation.id,
            messages_delta=2,
            tokens_delta=result.usage.total_tokens,
            last_message_at=reply.created_at,
        )
        outcome.reply = cleaned.text
        outcome.assistant_message_id = reply.id
        outcome.usage.prompt_tokens = result.usage.prompt_tokens
        outcome.usage.completion_tokens = result.usage.completion_tokens

        # 13) Cache
        if self._cacheable(ctx, cleaned.blocked):
            self._enter(ctx, TurnState.CACHE_STORE)
            self.cache.store(
                request.user_id,
                request.message,
                CachedResponse(
                    text=cleaned.text,
                    model=result.metadata.get("model"),
                    prompt_tokens=result.usage.prompt_tokens,
                    completion_tokens=result.usage.completion_tokens,
                ),
                session_id=ctx.conversation.id if self.settings.cache_session_scoped else None,
                plan=request.plan,
            )

        # 14) Usage
        self._enter(ctx, TurnState.USAGE_DEDUCT)
        units = result.usage.prompt_tokens or ctx.estimate
        outcome.usage.deducted = units
        outcome.usage.remaining = await self.quota.deduct(request.user_id, units, plan=request.plan)
        return outcome

    async def _augment(self, ctx: _TurnContext) -> Optional[str]:
        message = ctx.request.message
        if not self.settings.search_enabled or not needs_search(message):
            return None
        if is_follow_up(message, ctx.history):
            logger.info("[Turn] follow-up, search skipped")
            return None
        self._enter(ctx, TurnState.SEARCH_AUGMENT)
        try:
            result = await enforce_timeout(
                lambda: self.search.search(message, ctx.request.location),
                self.settings.search_timeout_seconds * 1000,
                operation="search",
            )
        except Exception as exc:
            logger.warning("[Turn] search failed, continuing without it", extra={"error": type(exc).__name__})
            return None
        facts = format_search_facts(result)
        ctx.outcome.search_used = facts is not None
        return facts

    async def _invoke_model(self, ctx: _TurnContext, compiled: CompiledPrompt) -> ModelResult:
        request = ctx.request
        classification = ctx.classification
        temperature = (
            self.settings.model_low_temperature
            if classification.routing.requires_low_temperature
            else self.settings.model_temperature
        )
        history = list(ctx.history) + [ChatMessage(role="user", content=request.message)]
        user_context = {
            "user_id": request.user_id,
            "session_id": ctx.conversation.id,
            "plan": request.plan.value,
            "language": classification.language.value,
            "max_output_tokens": min(
                get_plan_limits(request.plan).max_output_tokens,
                self.settings.model_max_output_tokens,
            ),
        }

        if self.invoker is None:
            raise UpstreamUnavailable("model provider not configured")

        async def attempt(_idx: int) -> ModelResult:
            return await self.invoker.invoke(compiled.text, history, temperature, user_context)

        retried = await invoke_with_retry(self.retry_policy, attempt, sleep=self._sleep)
        ctx.outcome.usage.attempts = retried.attempts
        return retried.value

    def _cacheable(self, ctx: _TurnContext, reply_blocked: bool) -> bool:
        if ctx.request.parent_message_id or reply_blocked or ctx.outcome.search_used:
            return False
        if ctx.health is not None and ctx.health.response_mode in UNCACHED_HEALTH_MODES:
            return False
        return ctx.classification.safety_level != SafetyLevel.ESCALATE

    async def _serve_cached(self, ctx: _TurnContext, lookup: CacheLookup) -> TurnOutcome:
        request = ctx.request
        outcome = ctx.outcome
        outcome.cache_hit = True

        self._enter(ctx, TurnState.SESSION_RESOLVE)
        failed = await self._open_session(ctx, await self._find_session(request))
        if failed is not None:
            return self._finish(ctx, failed)

        ctx.branch_id = request.branch_id
        if ctx.branch_id:
            await self._check_branch(ctx)

        self._enter(ctx, TurnState.PERSIST)
        session_id = ctx.conversation.id
        user_turn = await self.store.create_turn(
            session_id,
            request.user_id,
            "user",
            request.message,
            branch_id=ctx.branch_id,
            tokens=estimate_tokens_from_text(request.message),
        )
        reply = await self.store.create_turn(
            session_id,
            request.user_id,
            "assistant",
            lookup.response.text,
            branch_id=ctx.branch_id,
            tokens=lookup.response.completion_tokens,
            model=lookup.response.model,
            cached=True,
        )
        await self.store.update_conversation_counters(
            session_id,
            messages_delta=2,
            tokens_delta=0,
            last_message_at=reply.created_at,
        )
        outcome.reply = lookup.response.text
        outcome.user_message_id = user_turn.id
        outcome.assistant_message_id = reply.id
        outcome.branch_id = ctx.branch_id
        counter("cache.hit")
        return self._finish(ctx, outcome)

    async def _compensate(self, ctx: _TurnContext, why: str) -> None:
        """Best-effort removal of a user turn whose reply never landed."""
        if ctx.user_turn is None or ctx.committed:
            return
        try:
            await self.store.delete_turn(ctx.user_turn.id)
        except Exception:
            logger.exception("[Turn] could not remove orphaned user turn", extra={"why": why})
            return
        ctx.outcome.user_message_id = None
        logger.info("[Turn] removed orphaned user turn", extra={"why": why})

    # outcomes

    def _fail(self, ctx: _TurnContext, status: TurnStatus, exc: OrchestrationError) -> TurnOutcome:
        outcome = ctx.outcome
        outcome.status = status
        outcome.reason_code = exc.reason_code.value
        outcome.message = exc.public_message
        logger.info("[Turn] stopped", extra={"status": status.value, "reason_code": outcome.reason_code})
        return outcome

    def _finish(self, ctx: _TurnContext, outcome: TurnOutcome) -> TurnOutcome:
        outcome.latency_ms = int((time.monotonic() - ctx.started) * 1000)
        histogram("turn.latency_ms", outcome.latency_ms, {"status": outcome.status.value})
        counter("turn.completed", labels={"status": outcome.status.value})
        self._enter(ctx, TurnState.ANALYTICS_EMIT)
        fields = build_turn_summary_fields(
            status=outcome.status.value,
            reason_code=outcome.reason_code,
            plan=ctx.request.plan.value,
            latency_ms=outcome.latency_ms,
            cache_hit=outcome.cache_hit,
            attempts=outcome.usage.attempts,
            prompt_tokens=outcome.usage.prompt_tokens,
            completion_tokens=outcome.usage.completion_tokens,
            safety_level=(outcome.classification or {}).get("safety_level"),
            response_mode=(outcome.health or {}).get("response_mode"),
        )
        self._emit(TurnEvent("turn.completed", ctx.request.user_id, outcome.session_id, fields))
        return outcome

    def _emit(self, turn_event: TurnEvent) -> None:
        task = asyncio.get_running_loop().create_task(self._deliver(turn_event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, turn_event: TurnEvent) -> None:
        try:
            await self.analytics.emit(turn_event)
        except Exception:
            logger.warning("[Turn] analytics emit failed", extra={"event": turn_event.name})

    async def drain(self) -> None:
        """Wait for in-flight analytics events."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def _prompt_stats(compiled: CompiledPrompt) -> dict:
    return {
        "tokens": compiled.token_estimate,
        "budget": compiled.budget,
        "stage": compiled.compression_stage,
        "truncated": compiled.truncated,
        "dropped_sections": list(compiled.dropped_sections),
    }


__all__ = ["Orchestrator"]
