from __future__ import annotations

from typing import Sequence

from inbox_responder.models import FAQ, ORDER_STATUS, SENSITIVE, THANK_YOU
from inbox_responder.rules.BaseRule import BaseRule, RuleMatch


class SensitiveRule(BaseRule):
    """Legal threats, refunds, complaints and cancellations. Always wins."""

    name = SENSITIVE
    priority = 100

    def __init__(self, keywords: Sequence[str], cancellation: Sequence[str] = ()):
        super().__init__([*keywords, *cancellation])

    def match(self, text: str | None) -> RuleMatch:
        found = self.matched_terms(text, self.keywords)
        return RuleMatch(matched=bool(found), keywords=found)


class OrderStatusRule(BaseRule):
    name = ORDER_STATUS
    priority = 50

    def match(self, text: str | None) -> RuleMatch:
        return RuleMatch(matched=self.contains_any(text, self.keywords))


class FaqRule(BaseRule):
    name = FAQ
    priority = 30

    def match(self, text: str | None) -> RuleMatch:
        return RuleMatch(matched=self.contains_any(text, self.keywords))


class ThankYouRule(BaseRule):
    name = THANK_YOU
    priority = 10

    def match(self, text: str | None) -> RuleMatch:
        return RuleMatch(matched=self.contains_any(text, self.keywords))
