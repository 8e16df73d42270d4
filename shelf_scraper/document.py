"""Queryable view over parsed markup.

Extraction code only needs selector queries, attribute reads and text, so
it talks to :class:`Node` and never to the parser directly."""
from __future__ import annotations

from typing import List, Optional, Protocol

from bs4 import BeautifulSoup
from bs4.element import Tag


class Node(Protocol):
    def select_one(self, selector: str) -> Optional["Node"]:
        ...

    def select(self, selector: str) -> List["Node"]:
        ...

    def attr(self, name: str) -> Optional[str]:
        ...

    def text(self) -> str:
        ...


class SoupNode:
    """:class:`Node` backed by a BeautifulSoup tag (selectors via soupsieve)."""

    __slots__ = ("_tag",)

    def __init__(self, tag: Tag) -> None:
        self._tag = tag

    def select_one(self, selector: str) -> Optional["SoupNode"]:
        found = self._tag.select_one(selector)
        return SoupNode(found) if found is not None else None

    def select(self, selector: str) -> List["SoupNode"]:
        return [SoupNode(tag) for tag in self._tag.select(selector)]

    def attr(self, name: str) -> Optional[str]:
        value = self._tag.get(name)
        if isinstance(value, list):
            return " ".join(value)
        return value

    def text(self) -> str:
        return self._tag.get_text(" ", strip=True)

    def __repr__(self) -> str:
        return f"SoupNode(<{self._tag.name}>)"


def parse_document(markup: str) -> SoupNode:
    return SoupNode(BeautifulSoup(markup or "", "html.parser"))


def text_of(root: Node, selector: str) -> Optional[str]:
    """Trimmed text of the first match, or None when absent or blank."""
    node = root.select_one(selector)
    if node is None:
        return None
    return node.text().strip() or None


def texts_of(root: Node, selector: str) -> List[str]:
    return [t for t in (node.text().strip() for node in root.select(selector)) if t]
