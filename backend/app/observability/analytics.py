from __future__ import annotations

import logging
from typing import List

from backend.app.integration.contracts import TurnEvent
from backend.app.observability.logging import hash_subject
from backend.app.observability.metrics import event

logger = logging.getLogger(__name__)


class LoggingAnalyticsSink:
    """Analytics sink that writes turn events to the structured log."""

    async def emit(self, turn_event: TurnEvent) -> None:
        fields = dict(turn_event.fields)
        fields["subject"] = hash_subject("user", turn_event.user_id)
        fields["conversation_id"] = turn_event.conversation_id
        event(turn_event.name, fields)


class RecordingAnalyticsSink:
    """Keeps events in memory; handy for local inspection."""

    def __init__(self) -> None:
        self.events: List[TurnEvent] = []

    async def emit(self, turn_event: TurnEvent) -> None:
        self.events.append(turn_event)


__all__ = ["LoggingAnalyticsSink", "RecordingAnalyticsSink"]
