from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, Optional

from backend.app.integration.contracts import QuotaDecision
from backend.app.plans.policy import Plan, get_plan_limits
from backend.app.reliability.errors import ReasonCode


@dataclass
class QuotaState:
    day: date
    month: tuple[int, int]
    daily_used: int = 0
    monthly_used: int = 0

    @property
    def daily_reset_at(self) -> datetime:
        return datetime.combine(self.day + timedelta(days=1), time.min, tzinfo=timezone.utc)


def _today() -> date:
    return datetime.now(timezone.utc).date()


class InMemoryQuotaLedger:
    """Token ledger with a UTC daily window and a calendar-month window."""

    def __init__(self, plan_for_user: Optional[Callable[[str], Plan]] = None) -> None:
        self._plan_for_user = plan_for_user or (lambda _user: Plan.STARTER)
        self._plans: Dict[str, Plan] = {}
        self._states: Dict[str, QuotaState] = {}

    def set_plan(self, user_id: str, plan: Plan) -> None:
        self._plans[user_id] = plan

    def plan_of(self, user_id: str, requested: Optional[Plan] = None) -> Plan:
        """A plan pinned with ``set_plan`` wins over the one carried by the request."""
        return self._plans.get(user_id) or requested or self._plan_for_user(user_id)

    def _state(self, user_id: str) -> QuotaState:
        today = _today()
        month = (today.year, today.month)
        state = self._states.get(user_id)
        if state is None:
            state = QuotaState(day=today, month=month)
            self._states[user_id] = state
        if state.month != month:
            state.month, state.monthly_used = month, 0
        if state.day != today:
            state.day, state.daily_used = today, 0
        return state

    def usage(self, user_id: str) -> QuotaState:
        return self._state(user_id)

    async def can_afford(self, user_id: str, estimated_units: int, *, plan: Optional[Plan] = None) -> QuotaDecision:
        limits = get_plan_limits(self.plan_of(user_id, plan))
        state = self._state(user_id)
        units = max(0, estimated_units)
        if state.monthly_used + units > limits.monthly_tokens:
            return QuotaDecision(False, ReasonCode.MONTHLY_LIMIT_EXCEEDED, max(0, limits.monthly_tokens - state.monthly_used))
        if state.daily_used + units > limits.daily_tokens:
            return QuotaDecision(False, ReasonCode.DAILY_LIMIT_EXCEEDED, max(0, limits.daily_tokens - state.daily_used))
        return QuotaDecision(True, None, limits.daily_tokens - state.daily_used)

    async def deduct(self, user_id: str, units: int, *, plan: Optional[Plan] = None) -> int:
        limits = get_plan_limits(self.plan_of(user_id, plan))
        state = self._state(user_id)
        units = max(0, units)
        state.daily_used += units
        state.monthly_used += units
        return max(0, limits.daily_tokens - state.daily_used)


__all__ = ["InMemoryQuotaLedger", "QuotaState"]
