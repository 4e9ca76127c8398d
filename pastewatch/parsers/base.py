from __future__ import annotations

import re
from typing import ClassVar, List


class SiteAdapter:
    """Knows one paste site: where its listing lives and how to read it.

    Subclasses set the class attributes; adapters hold no state so a single
    instance is shared by whatever poller watches the site.
    """

    name: ClassVar[str]
    base_url: ClassVar[str]
    listing_path: ClassVar[str]
    listing_pattern: ClassVar[re.Pattern]
    rate_limit_marker: ClassVar[str | None] = None

    @property
    def listing_url(self) -> str:
        return self.base_url + self.listing_path

    def list_pastes(self, body: str) -> List[str]:
        # listing order is kept; repeated links on the same page collapse
        return list(dict.fromkeys(self.listing_pattern.findall(body)))

    def build_content_url(self, identifier: str) -> str:
        raise NotImplementedError

    def paste_url(self, identifier: str) -> str:
        return f"{self.base_url}/{identifier}"

    def extract_content(self, body: str) -> str:
        return body

    @property
    def host(self) -> str:
        return self.base_url.split("://", 1)[-1].rstrip("/")


__all__ = ["SiteAdapter"]
