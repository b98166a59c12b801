from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str
    message_id: Optional[str] = None
    important: bool = False

    def as_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


__all__ = ["ChatMessage"]
