from __future__ import annotations

import json
import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Iterable, List

logger = logging.getLogger(__name__)


class SeenRegistry:
    """Bounded FIFO of processed paste ids, shared by every site poller.

    Ids are stored as ``<site>:<identifier>`` by callers so two sites using the
    same short id do not shadow each other. Insertion past ``capacity`` evicts
    the oldest entry; re-adding a known id does not refresh its position.
    """

    def __init__(self, capacity: int = 500) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()
        self._save_lock = threading.Lock()

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._entries

    __contains__ = contains

    def add(self, key: str) -> None:
        with self._lock:
            if key in self._entries:
                return
            self._entries[key] = None
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def extend(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.add(key)

    def snapshot(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def load(self, path: str | Path) -> int:
        path = Path(path)
        if not path.exists():
            return 0
        try:
            with path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError):
            logger.warning("checkpoint-load-error", extra={"path": str(path)})
            return 0
        if not isinstance(data, list):
            logger.warning("checkpoint-load-error", extra={"path": str(path)})
            return 0
        self.extend(str(item) for item in data)
        logger.info("checkpoint-loaded", extra={"path": str(path), "entries": len(self)})
        return len(self)

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        with self._save_lock:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(self.snapshot(), handle)
            tmp_path.replace(path)


__all__ = ["SeenRegistry"]
