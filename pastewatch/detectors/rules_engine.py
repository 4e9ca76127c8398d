from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

from .rules import Rule, RuleSet


@dataclass
class MatchResult:
    rule: Rule
    count: int
    sample: str | None = None

    @property
    def pattern(self) -> str:
        return self.rule.search.pattern

    @property
    def description(self) -> str:
        return self.rule.description


MatchSet = List[MatchResult]


def sanitize_sample(text: str) -> str:
    """Flatten a content slice to one line for syslog-style transport."""
    return text.replace("\r", "").replace("\n", "\\n").replace("\t", "\\t")


class RulesEngine:
    def __init__(self, sample_size: int | None = None) -> None:
        self.sample_size = sample_size if sample_size and sample_size > 0 else None

    @staticmethod
    def _count(pattern: re.Pattern, content: str) -> tuple[int, Optional[re.Match]]:
        first = None
        count = 0
        for match in pattern.finditer(content):
            if first is None:
                first = match
            count += 1
        return count, first

    def _window(self, content: str, match: re.Match) -> str:
        size = self.sample_size or 0
        start = max(0, match.start() - size)
        end = min(len(content), match.end() + size)
        return sanitize_sample(content[start:end])

    def evaluate_rule(self, rule: Rule, content: str) -> MatchResult | None:
        count, first = self._count(rule.search, content)
        if count < rule.min_count or first is None:
            return None
        if rule.include is not None:
            if rule.include.search(content) is None:
                return None
        elif rule.exclude is not None:
            if rule.exclude.search(content) is not None:
                return None
        sample = self._window(content, first) if self.sample_size else None
        return MatchResult(rule=rule, count=count, sample=sample)

    def evaluate(self, content: str, rule_set: RuleSet) -> MatchSet:
        matches: MatchSet = []
        for rule in rule_set:
            result = self.evaluate_rule(rule, content)
            if result is not None:
                matches.append(result)
        return matches


def summarize(matches: MatchSet) -> str:
    return " ".join(f"{match.pattern} ({match.count} times)" for match in matches)


__all__ = ["MatchResult", "MatchSet", "RulesEngine", "sanitize_sample", "summarize"]
