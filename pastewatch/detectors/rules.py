from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)


class RuleLoadError(ValueError):
    """A rule source is unreadable or holds a malformed rule."""


@dataclass(frozen=True)
class Rule:
    search: re.Pattern
    description: str
    include: Optional[re.Pattern] = None
    exclude: Optional[re.Pattern] = None
    min_count: int = 1

    @property
    def name(self) -> str:
        return self.search.pattern

    @property
    def label(self) -> str:
        return self.description or self.search.pattern


@dataclass(frozen=True)
class RuleSet:
    """One generation of rules. Reloads build a new RuleSet, never edit this one."""

    rules: Tuple[Rule, ...]
    ignore_case: bool = False
    source: str | None = None

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def describe(self, pattern: str) -> str | None:
        for rule in self.rules:
            if rule.search.pattern == pattern:
                return rule.description
        return None


def _compile(value: Any, field: str, index: int, flags: int) -> Optional[re.Pattern]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise RuleLoadError(f"rule #{index}: '{field}' must be a string")
    try:
        return re.compile(value.strip(), flags)
    except re.error as exc:
        raise RuleLoadError(f"rule #{index}: invalid {field} pattern {value!r}: {exc}") from exc


def build_rule(record: Dict[str, Any], index: int, ignore_case: bool = False) -> Rule:
    if not isinstance(record, dict):
        raise RuleLoadError(f"rule #{index}: expected a mapping, got {type(record).__name__}")
    flags = re.IGNORECASE if ignore_case else 0
    search = _compile(record.get("search"), "search", index, flags)
    if search is None:
        raise RuleLoadError(f"rule #{index}: 'search' is required")
    include = _compile(record.get("include"), "include", index, flags)
    exclude = _compile(record.get("exclude"), "exclude", index, flags)
    if include is not None and exclude is not None:
        logger.warning(
            "rule-exclude-ignored",
            extra={"rule": search.pattern, "reason": "include takes precedence over exclude"},
        )
        exclude = None
    raw_count = record.get("min_count", record.get("minCount", 1))
    try:
        min_count = int(raw_count)
    except (TypeError, ValueError) as exc:
        raise RuleLoadError(f"rule #{index}: min_count must be an integer") from exc
    if min_count < 1:
        raise RuleLoadError(f"rule #{index}: min_count must be >= 1")
    description = str(record.get("description") or "").strip()
    return Rule(search=search, description=description, include=include, exclude=exclude, min_count=min_count)


def build_rule_set(records: Iterable[Dict[str, Any]], ignore_case: bool = False, source: str | None = None) -> RuleSet:
    rules: List[Rule] = [build_rule(record, idx, ignore_case) for idx, record in enumerate(records, start=1)]
    return RuleSet(rules=tuple(rules), ignore_case=ignore_case, source=source)


def load_rules(path: str | Path, ignore_case: bool = False) -> RuleSet:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RuleLoadError(f"Cannot read rules from {path}: {exc}") from exc
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise RuleLoadError(f"Failed to parse rules {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("rules")
    if not isinstance(data, list):
        raise RuleLoadError(f"{path}: expected a 'rules' list")
    rule_set = build_rule_set(data, ignore_case=ignore_case, source=str(path))
    logger.info("rules-loaded", extra={"path": str(path), "count": len(rule_set), "ignore_case": ignore_case})
    return rule_set


__all__ = ["Rule", "RuleSet", "RuleLoadError", "build_rule", "build_rule_set", "load_rules"]
