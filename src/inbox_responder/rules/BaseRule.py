from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence, Tuple


@dataclass(frozen=True)
class RuleMatch:
    """Result of a rule match. `keywords` lists the configured terms found in the text."""
    matched: bool
    keywords: Tuple[str, ...] = ()


class BaseRule(ABC):
    """
    Base class for all keyword rules.

    Design goals:
    - Provide consistent, reusable text matching helpers.
    - Keep rule logic readable and declarative.
    - Let the classifier order rules by priority instead of by code order.
    """

    # Human-/debug-friendly unique name, doubles as the category tag
    name: str = "base_rule"

    # Higher runs earlier
    priority: int = 0

    def __init__(self, keywords: Sequence[str]):
        # Configured spelling is kept for reporting; matching is case-insensitive.
        self.keywords: Tuple[str, ...] = tuple(k.strip() for k in keywords if k and k.strip())

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, priority={self.priority})"

    # --- Helpers (None-safe, case-insensitive) ---

    def norm(self, s: str | None) -> str:
        """Normalize text for matching (None-safe, lowercased)."""
        return (s or "").lower()

    def contains_any(self, text: str | None, needles: Sequence[str]) -> bool:
        """True if any needle is a substring of text (case-insensitive)."""
        t = self.norm(text)
        return any(n.lower() in t for n in needles)

    def matched_terms(self, text: str | None, needles: Sequence[str]) -> Tuple[str, ...]:
        """All needles found in text, in needle order and configured spelling, without duplicates."""
        t = self.norm(text)
        found: list[str] = []
        seen: set[str] = set()
        for needle in needles:
            n = needle.lower()
            if n in t and n not in seen:
                seen.add(n)
                found.append(needle)
        return tuple(found)

    # --- Rule API ---

    @abstractmethod
    def match(self, text: str | None) -> RuleMatch:
        raise NotImplementedError
