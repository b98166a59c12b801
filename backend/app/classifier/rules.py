"""Ordered rule tables.

A table is a priority-ordered list of (predicate, result) pairs evaluated by one
generic matcher, so the ordering contract lives in data and can be tested on
its own.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, List, Optional, Pattern, Sequence, TypeVar, Union

R = TypeVar("R")

Predicate = Callable[[str], bool]


@dataclass(frozen=True)
class Rule(Generic[R]):
    name: str
    result: R
    patterns: Sequence[Pattern[str]] = field(default_factory=tuple)
    predicate: Optional[Predicate] = None

    def matches(self, text: str) -> bool:
        if self.predicate is not None and not self.predicate(text):
            return False
        if not self.patterns:
            return self.predicate is not None
        return any(p.search(text) for p in self.patterns)


def compile_patterns(*sources: str) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(src, re.IGNORECASE) for src in sources)


def rule(
    name: str,
    result: R,
    *sources: str,
    predicate: Optional[Predicate] = None,
) -> Rule[R]:
    return Rule(name=name, result=result, patterns=compile_patterns(*sources), predicate=predicate)


class RuleTable(Generic[R]):
    def __init__(self, rules: Iterable[Rule[R]]):
        self.rules: List[Rule[R]] = list(rules)

    def first_match(self, text: str) -> Optional[Rule[R]]:
        for item in self.rules:
            if item.matches(text):
                return item
        return None

    def all_matches(self, text: str) -> List[Rule[R]]:
        return [item for item in self.rules if item.matches(text)]

    def results(self, text: str) -> List[R]:
        """Distinct results of every matching rule, in table order."""
        seen: List[R] = []
        for item in self.all_matches(text):
            if item.result not in seen:
                seen.append(item.result)
        return seen

    def __len__(self) -> int:
        return len(self.rules)


def match_any(patterns: Union[Sequence[Pattern[str]], Pattern[str]], text: str) -> bool:
    if isinstance(patterns, re.Pattern):
        return bool(patterns.search(text))
    return any(p.search(text) for p in patterns)


__all__ = ["Rule", "RuleTable", "rule", "compile_patterns", "match_any"]
