from __future__ import annotations

import asyncio
import logging
import time
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from backend.app.branching.tree import BranchNode, build_branch_tree
from backend.app.integration.contracts import BranchRecord, ConversationStore, Turn, utcnow
from backend.app.plans.policy import Plan, PlanLimits, get_plan_limits
from backend.app.reliability.errors import SessionNotFound

logger = logging.getLogger(__name__)

# Parent-link walks stop here even if stored links loop.
MAX_WALK = 100


class BranchRejection(str, Enum):
    FEATURE_DISABLED = "feature_disabled"
    PLAN_LIMIT = "plan_limit"
    MAX_BRANCHES_REACHED = "max_branches_reached"
    INVALID_PARENT_MESSAGE = "invalid_parent_message"
    MAX_DEPTH_REACHED = "max_depth_reached"


_REJECTION_MESSAGES = {
    BranchRejection.FEATURE_DISABLED: "Conversation branching is turned off.",
    BranchRejection.PLAN_LIMIT: "Your plan does not include conversation branching.",
    BranchRejection.MAX_BRANCHES_REACHED: "This conversation already has the maximum number of branches.",
    BranchRejection.INVALID_PARENT_MESSAGE: "The message to branch from was not found in this conversation.",
    BranchRejection.MAX_DEPTH_REACHED: "Branches cannot be nested any deeper.",
}


@dataclass(frozen=True)
class BranchResult:
    success: bool
    branch_id: Optional[str] = None
    branch_number: Optional[int] = None
    depth: Optional[int] = None
    reason: Optional[BranchRejection] = None

    @property
    def message(self) -> Optional[str]:
        return _REJECTION_MESSAGES.get(self.reason) if self.reason else None


@dataclass(frozen=True)
class BranchComparison:
    branch_a: Optional[str]
    branch_b: Optional[str]
    common_messages: int
    divergence_message_id: Optional[str]
    only_in_a: int
    only_in_b: int


def make_branch_id(session_id: str, number: int) -> str:
    return f"branch_{session_id[:8]}_{number}_{int(time.time() * 1000)}"


class BranchManager:
    """Creates and inspects alternate continuations of a conversation.

    The check-then-create sequence in ``create_branch`` holds a per-session lock,
    so concurrent edits on one conversation cannot both pass the quota check.
    """

    def __init__(
        self,
        store: ConversationStore,
        *,
        enabled: bool = True,
        max_depth: int = 5,
        max_branches_per_session: int = 10,
        retention_days: int = 30,
        plan_limits: Callable[[Plan], PlanLimits] = get_plan_limits,
    ) -> None:
        self.store = store
        self.enabled = enabled
        self.max_depth = max_depth
        self.max_branches_per_session = max_branches_per_session
        self.retention_days = retention_days
        self.plan_limits = plan_limits
        # Entries vanish once no coroutine holds or waits on the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(cls, store: ConversationStore, settings) -> "BranchManager":
        return cls(
            store,
            enabled=settings.branching_enabled,
            max_depth=settings.max_branch_depth,
            max_branches_per_session=settings.max_branches_per_session,
            retention_days=settings.branch_retention_days,
        )

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    def quota_for(self, plan: Plan) -> int:
        return min(self.plan_limits(plan).max_branches, self.max_branches_per_session)

    async def create_branch(self, session_id: str, parent_message_id: str, user_id: str, *, plan: Plan) -> BranchResult:
        if not self.enabled:
            return self._reject(BranchRejection.FEATURE_DISABLED, session_id)
        quota = self.quota_for(plan)
        if quota <= 0:
            return self._reject(BranchRejection.PLAN_LIMIT, session_id)

        async with self._lock_for(session_id):
            existing = await self.store.list_branches(session_id)
            if len(existing) >= quota:
                return self._reject(BranchRejection.MAX_BRANCHES_REACHED, session_id)

            parent = await self.store.get_turn(parent_message_id) if parent_message_id else None
            if parent is None or parent.conversation_id != session_id or parent.user_id != user_id:
                return self._reject(BranchRejection.INVALID_PARENT_MESSAGE, session_id)

            depth = await self.message_depth(parent)
            if depth >= self.max_depth:
                return self._reject(BranchRejection.MAX_DEPTH_REACHED, session_id)

            number = max((r.branch_number for r in existing), default=0) + 1
            record = await self.store.create_branch(
                BranchRecord(
                    id=make_branch_id(session_id, number),
                    conversation_id=session_id,
                    user_id=user_id,
                    parent_message_id=parent_message_id,
                    branch_number=number,
                )
            )

        logger.info("[Branch] created", extra={"session_id": session_id, "branch_number": number, "depth": depth + 1})
        return BranchResult(True, branch_id=record.id, branch_number=number, depth=depth + 1)

    def _reject(self, reason: BranchRejection, session_id: str) -> BranchResult:
        logger.info("[Branch] rejected", extra={"session_id": session_id, "reason": reason.value})
        return BranchResult(False, reason=reason)

    async def message_depth(self, turn: Turn) -> int:
        """Number of branch hops between ``turn`` and the trunk.

        Follows turn -> owning branch -> branch parent message. Hitting the walk
        ceiling or a loop in stored links reports ``MAX_WALK``.
        """
        depth = 0
        current: Optional[Turn] = turn
        seen: Set[str] = set()
        for _ in range(MAX_WALK):
            if current is None or current.branch_id is None:
                return depth
            if current.branch_id in seen:
                break
            seen.add(current.branch_id)
            record = await self.store.get_branch(current.conversation_id, current.branch_id)
            depth += 1
            if record is None:
                return depth
            current = await self.store.get_turn(record.parent_message_id)
        logger.warning("[Branch] parent walk did not reach the trunk", extra={"turn_id": turn.id})
        return MAX_WALK

    async def lineage(self, session_id: str, branch_id: Optional[str]) -> List[Turn]:
        """Turns visible from ``branch_id``: ancestors up to each fork point, then the branch itself."""
        segments: List[List[Turn]] = []
        current = branch_id
        cutoff: Optional[int] = None
        seen: Set[Optional[str]] = set()
        for _ in range(MAX_WALK):
            if current in seen:
                break
            seen.add(current)
            turns = await self.store.list_turns(session_id, branch_id=current)
            if cutoff is not None:
                turns = [t for t in turns if t.seq <= cutoff]
            segments.append(turns)
            if current is None:
                break
            record = await self.store.get_branch(session_id, current)
            parent = await self.store.get_turn(record.parent_message_id) if record else None
            if parent is None:
                break
            current, cutoff = parent.branch_id, parent.seq
        return [turn for segment in reversed(segments) for turn in segment]

    async def _require_session(self, session_id: str, user_id: str) -> None:
        if await self.store.find_session(session_id, user_id) is None:
            raise SessionNotFound(session_id)

    async def get_branch_tree(self, session_id: str, user_id: str) -> List[BranchNode]:
        await self._require_session(session_id, user_id)
        records = await self.store.list_branches(session_id)
        turns = await self.store.list_turns(session_id, all_branches=True)
        return build_branch_tree(records, turns)

    async def compare_branches(self, session_id: str, branch_a: Optional[str], branch_b: Optional[str]) -> BranchComparison:
        left = await self.lineage(session_id, branch_a)
        right = await self.lineage(session_id, branch_b)
        common = 0
        for a, b in zip(left, right):
            if a.id != b.id:
                break
            common += 1
        return BranchComparison(
            branch_a=branch_a,
            branch_b=branch_b,
            common_messages=common,
            divergence_message_id=left[common - 1].id if common else None,
            only_in_a=len(left) - common,
            only_in_b=len(right) - common,
        )

    async def delete_branch(self, session_id: str, branch_id: str, user_id: str) -> int:
        """Remove one branch's turns. Child branches stay and surface as orphan roots."""
        await self._require_session(session_id, user_id)
        async with self._lock_for(session_id):
            removed = await self.store.delete_branch(session_id, branch_id)
        logger.info("[Branch] deleted", extra={"session_id": session_id, "turns_removed": removed})
        return removed

    async def branch_stats(self, session_id: str) -> dict:
        records = await self.store.list_branches(session_id)
        turns = await self.store.list_turns(session_id, all_branches=True)
        per_branch: Dict[str, int] = {r.id: 0 for r in records}
        for turn in turns:
            if turn.branch_id is not None:
                per_branch[turn.branch_id] = per_branch.get(turn.branch_id, 0) + 1
        depths = []
        for record in records:
            parent = await self.store.get_turn(record.parent_message_id)
            depths.append(1 + (await self.message_depth(parent) if parent else 0))
        return {
            "total_branches": len(records),
            "branch_messages": sum(per_branch.values()),
            "trunk_messages": sum(1 for t in turns if t.branch_id is None),
            "max_depth": max(depths, default=0),
            "messages_per_branch": per_branch,
        }

    async def cleanup_old_branches(self, session_id: Optional[str] = None, *, retention_days: Optional[int] = None) -> int:
        """Delete branches older than the retention window.

        Sweeps every conversation that has branches unless ``session_id`` narrows it.
        """
        days = self.retention_days if retention_days is None else retention_days
        cutoff = utcnow() - timedelta(days=days)
        if session_id is None:
            removed = 0
            for sid in await self.store.list_branch_sessions():
                removed += await self._cleanup_session(sid, cutoff)
            return removed
        return await self._cleanup_session(session_id, cutoff)

    async def _cleanup_session(self, session_id: str, cutoff: datetime) -> int:
        removed = 0
        async with self._lock_for(session_id):
            for record in await self.store.list_branches(session_id):
                if record.created_at < cutoff:
                    await self.store.delete_branch(session_id, record.id)
                    removed += 1
        if removed:
            logger.info("[Branch] cleaned up old branches", extra={"session_id": session_id, "count": removed})
        return removed


__all__ = [
    "MAX_WALK",
    "BranchComparison",
    "BranchManager",
    "BranchRejection",
    "BranchResult",
    "make_branch_id",
]
