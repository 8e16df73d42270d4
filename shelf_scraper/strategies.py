from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

from .document import Node
from .models import is_empty

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtractionContext:
    """What a field strategy may look at: the page and its merged structured data."""

    document: Node
    structured: Dict[str, Any] = field(default_factory=dict)
    identifier: str = ""


class FieldStrategy(ABC):
    """One way of obtaining a single field from a detail page.

    Strategies for a field are listed in priority order; the first one
    producing a non-empty value wins."""

    @abstractmethod
    def extract(self, context: ExtractionContext) -> Any:
        """Return the field value, or an empty value when unavailable."""
        raise NotImplementedError


class StructuredDataStrategy(FieldStrategy):
    """Reads a key from the page's JSON-LD, optionally coercing it."""

    def __init__(self, key: str, transform: Optional[Callable[[Any], Any]] = None) -> None:
        self.key = key
        self._transform = transform

    def extract(self, context: ExtractionContext) -> Any:
        value = context.structured.get(self.key)
        if value is None:
            return None
        return self._transform(value) if self._transform else value

    def __repr__(self) -> str:
        return f"StructuredDataStrategy({self.key!r})"


class MarkupStrategy(FieldStrategy):
    """Reads a field from the document markup."""

    def __init__(self, reader: Callable[[Node], Any], label: str = "") -> None:
        self._reader = reader
        self.label = label

    def extract(self, context: ExtractionContext) -> Any:
        return self._reader(context.document)

    def __repr__(self) -> str:
        return f"MarkupStrategy({self.label!r})"


def first_non_empty(
    strategies: Iterable[FieldStrategy],
    context: ExtractionContext,
    default: Any = None,
) -> Any:
    """Evaluate strategies in order and return the first non-empty result."""
    for strategy in strategies:
        try:
            value = strategy.extract(context)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.debug("%r failed for %s: %s", strategy, context.identifier, exc)
            continue
        if not is_empty(value):
            return value
    return default
