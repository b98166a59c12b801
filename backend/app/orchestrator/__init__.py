from .states import TurnOutcome, TurnRequest, TurnState, TurnStatus, TurnUsage
from .turn import Orchestrator

__all__ = [
    "Orchestrator",
    "TurnOutcome",
    "TurnRequest",
    "TurnState",
    "TurnStatus",
    "TurnUsage",
]
