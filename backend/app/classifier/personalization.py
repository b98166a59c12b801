from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

_NAME = r"([A-Za-z][A-Za-z'-]{1,29})"

_NAME_PATTERNS = (
    (re.compile(r"\bmy name is " + _NAME, re.IGNORECASE), 0.95),
    (re.compile(r"\bmera naam " + _NAME + r"\b", re.IGNORECASE), 0.95),
    (re.compile(r"\bcall me " + _NAME, re.IGNORECASE), 0.9),
    (re.compile(r"\bi(?:'m| am) " + _NAME + r"\s*[,.!]?\s*$", re.IGNORECASE), 0.6),
)

_NOT_NAMES = frozenset(
    "fine good okay ok tired sad happy busy here back hai hu hoon not very so just a an the".split()
)


@dataclass(frozen=True)
class PersonalizationHint:
    user_name: Optional[str] = None
    confidence: float = 0.0


def detect_personalization(message: str) -> PersonalizationHint:
    """Pick up a self-introduced name from the message, if any."""
    text = (message or "").strip()
    for pattern, confidence in _NAME_PATTERNS:
        found = pattern.search(text)
        if not found:
            continue
        candidate = found.group(1)
        if candidate.lower() in _NOT_NAMES:
            continue
        return PersonalizationHint(user_name=candidate[:1].upper() + candidate[1:], confidence=confidence)
    return PersonalizationHint()


__all__ = ["PersonalizationHint", "detect_personalization"]
