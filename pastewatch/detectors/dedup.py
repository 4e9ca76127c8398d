from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Tuple

from rapidfuzz.distance import JaroWinkler

logger = logging.getLogger(__name__)


def similarity(text_a: str, text_b: str) -> float:
    """Jaro-Winkler similarity in [0, 1]; 1.0 means identical."""
    return JaroWinkler.normalized_similarity(text_a, text_b)


@dataclass
class DedupVerdict:
    duplicate: bool
    matched_id: str | None = None
    score: float = 0.0


class DedupIndex:
    """Recently alerted paste contents, newest last.

    The archival dump directory is the durable copy; this index only holds the
    bounded window the filter compares against.
    """

    def __init__(self, max_samples: int = 200) -> None:
        self.max_samples = max_samples
        self._items: Deque[Tuple[str, str]] = deque(maxlen=max_samples)
        self._lock = threading.Lock()

    def remember(self, identifier: str, content: str) -> None:
        with self._lock:
            self._items.append((identifier, content))

    def seed(self, samples: Iterable[Tuple[str, str]]) -> int:
        count = 0
        for identifier, content in samples:
            self.remember(identifier, content)
            count += 1
        return count

    def samples(self) -> List[Tuple[str, str]]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class DedupFilter:
    def __init__(self, threshold: float | None = None, max_size: int = 20000) -> None:
        self.threshold = threshold
        self.max_size = max_size

    @classmethod
    def from_config(cls, config: Dict) -> "DedupFilter":
        dedup_cfg = config.get("dedup", {}) or {}
        threshold = dedup_cfg.get("threshold")
        return cls(
            threshold=float(threshold) if threshold is not None else None,
            max_size=int(dedup_cfg.get("max_size", 20000)),
        )

    @property
    def enabled(self) -> bool:
        return self.threshold is not None

    def check(self, content: str, samples: Iterable[Tuple[str, str]]) -> DedupVerdict:
        if not self.enabled:
            return DedupVerdict(duplicate=False)
        if len(content) > self.max_size:
            logger.debug("dedup-skipped", extra={"size": len(content), "max_size": self.max_size})
            return DedupVerdict(duplicate=False)
        for identifier, prior in samples:
            score = similarity(content, prior)
            if score > self.threshold:
                return DedupVerdict(duplicate=True, matched_id=identifier, score=score)
        return DedupVerdict(duplicate=False)

    def is_duplicate(self, content: str, samples: Iterable[Tuple[str, str]]) -> bool:
        return self.check(content, samples).duplicate


__all__ = ["DedupFilter", "DedupIndex", "DedupVerdict", "similarity"]
