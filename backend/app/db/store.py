"""In-memory conversation store.

Satisfies ``ConversationStore`` for local runs and tests. Every method body runs
without awaiting, so each call is atomic on the event loop.
"""

from __future__ import annotations

import itertools
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from backend.app.integration.contracts import BranchRecord, Conversation, Turn, utcnow


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._conversations: Dict[str, Conversation] = {}
        self._turns: Dict[str, Turn] = {}
        self._branches: Dict[str, Dict[str, BranchRecord]] = {}
        self._seq = itertools.count(1)

    async def find_session(self, session_id: str, user_id: str) -> Optional[Conversation]:
        convo = self._conversations.get(session_id)
        if convo is None or convo.user_id != user_id:
            return None
        return convo

    async def create_session(self, user_id: str, title: str) -> Conversation:
        convo = Conversation(id=str(uuid.uuid4()), user_id=user_id, title=(title or "New chat")[:80])
        self._conversations[convo.id] = convo
        return convo

    async def create_turn(
        self,
        conversation_id: str,
        user_id: str,
        role: str,
        text: str,
        *,
        branch_id: Optional[str] = None,
        parent_message_id: Optional[str] = None,
        tokens: int = 0,
        model: Optional[str] = None,
        cached: bool = False,
    ) -> Turn:
        turn = Turn(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            text=text,
            created_at=utcnow(),
            seq=next(self._seq),
            branch_id=branch_id,
            parent_message_id=parent_message_id,
            tokens=tokens,
            model=model,
            cached=cached,
        )
        self._turns[turn.id] = turn
        return turn

    async def get_turn(self, turn_id: str) -> Optional[Turn]:
        return self._turns.get(turn_id)

    async def list_turns(
        self,
        conversation_id: str,
        *,
        branch_id: Optional[str] = None,
        all_branches: bool = False,
        limit: Optional[int] = None,
    ) -> List[Turn]:
        turns = [
            t
            for t in self._turns.values()
            if t.conversation_id == conversation_id and (all_branches or t.branch_id == branch_id)
        ]
        turns.sort(key=lambda t: t.seq)
        if limit is not None:
            turns = turns[-limit:] if limit > 0 else []
        return turns

    async def delete_turn(self, turn_id: str) -> bool:
        return self._turns.pop(turn_id, None) is not None

    async def update_conversation_counters(
        self,
        conversation_id: str,
        *,
        messages_delta: int,
        tokens_delta: int,
        last_message_at: Optional[datetime] = None,
    ) -> None:
        convo = self._conversations.get(conversation_id)
        if convo is None:
            return
        self._conversations[conversation_id] = replace(
            convo,
            message_count=convo.message_count + messages_delta,
            total_tokens=convo.total_tokens + tokens_delta,
            last_message_at=last_message_at or utcnow(),
        )

    async def create_branch(self, record: BranchRecord) -> BranchRecord:
        self._branches.setdefault(record.conversation_id, {})[record.id] = record
        return record

    async def get_branch(self, conversation_id: str, branch_id: str) -> Optional[BranchRecord]:
        return self._branches.get(conversation_id, {}).get(branch_id)

    async def list_branches(self, conversation_id: str) -> List[BranchRecord]:
        records = list(self._branches.get(conversation_id, {}).values())
        records.sort(key=lambda r: (r.branch_number, r.created_at))
        return records

    async def list_branch_sessions(self) -> List[str]:
        return [cid for cid, records in self._branches.items() if records]

    async def delete_branch(self, conversation_id: str, branch_id: str) -> int:
        self._branches.get(conversation_id, {}).pop(branch_id, None)
        doomed = [
            t.id for t in self._turns.values() if t.conversation_id == conversation_id and t.branch_id == branch_id
        ]
        for turn_id in doomed:
            self._turns.pop(turn_id, None)
        return len(doomed)


__all__ = ["InMemoryConversationStore"]
