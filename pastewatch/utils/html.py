from __future__ import annotations

from html.parser import HTMLParser
from typing import List

SKIPPED_TAGS = {"script", "iframe", "style"}


class _PastePageParser(HTMLParser):
    """Collects <pre> blocks verbatim and the rest of the visible page text."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.blocks: List[str] = []
        self.words: List[str] = []
        self._skipped = 0
        self._pre = 0
        self._buffer: List[str] = []

    def handle_starttag(self, tag: str, attrs):  # type: ignore[override]
        tag = tag.lower()
        if tag in SKIPPED_TAGS:
            self._skipped += 1
        elif tag == "pre":
            if not self._pre:
                self._buffer = []
            self._pre += 1

    def handle_endtag(self, tag: str):  # type: ignore[override]
        tag = tag.lower()
        if tag in SKIPPED_TAGS and self._skipped:
            self._skipped -= 1
        elif tag == "pre" and self._pre:
            self._pre -= 1
            if not self._pre:
                self.blocks.append("".join(self._buffer))

    def handle_data(self, data: str) -> None:  # type: ignore[override]
        if self._skipped:
            return
        if self._pre:
            # line breaks inside a paste are content
            self._buffer.append(data)
        elif data.strip():
            self.words.append(data.strip())


def _parse(html: str) -> _PastePageParser:
    parser = _PastePageParser()
    parser.feed(html)
    parser.close()
    return parser


def extract_pre_text(html: str) -> str:
    """Return the text of the first <pre> block, or the page text when none exists."""
    parser = _parse(html)
    if parser.blocks:
        return parser.blocks[0]
    return " ".join(parser.words)


__all__ = ["extract_pre_text"]
