from __future__ import annotations

from typing import Dict, List, Type

from .base import SiteAdapter
from .ghostbin import GhostbinAdapter
from .pastebin import PastebinAdapter
from .slexy import SlexyAdapter

ADAPTERS: Dict[str, Type[SiteAdapter]] = {
    adapter.name: adapter for adapter in (PastebinAdapter, SlexyAdapter, GhostbinAdapter)
}


def get_adapter(name: str) -> SiteAdapter:
    try:
        return ADAPTERS[name]()
    except KeyError:
        raise KeyError(f"No site adapter named {name!r}") from None


def available_sites() -> List[str]:
    return sorted(ADAPTERS)


__all__ = ["ADAPTERS", "SiteAdapter", "available_sites", "get_adapter"]
