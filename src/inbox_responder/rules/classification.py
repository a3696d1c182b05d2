from __future__ import annotations

from typing import List, Optional, Tuple

from inbox_responder.config.settings import KeywordSets
from inbox_responder.models import GENERAL, SENSITIVE, ClassificationResult
from inbox_responder.rules.BaseRule import BaseRule
from inbox_responder.rules.rules import FaqRule, OrderStatusRule, SensitiveRule, ThankYouRule


def build_rules(keywords: KeywordSets) -> List[Tuple[str, BaseRule]]:
    """
    Ordered (category, rule) table. Evaluation stops at the first match, so
    this list is the precedence rule: sensitive > order-status > faq > thank-you.
    """
    rules: List[BaseRule] = [
        ThankYouRule(keywords.thank_you),
        FaqRule(keywords.faq),
        OrderStatusRule(keywords.order_status),
        SensitiveRule(keywords.sensitive, keywords.cancellation),
    ]
    # Higher priority rules win when multiple could match.
    rules = sorted(rules, key=lambda r: r.priority, reverse=True)
    return [(rule.name, rule) for rule in rules]


class Classifier:
    def __init__(self, keywords: KeywordSets):
        self.rules = build_rules(keywords)

    def classify(self, body_text: Optional[str]) -> ClassificationResult:
        for category, rule in self.rules:
            result = rule.match(body_text)
            if result.matched:
                keywords = result.keywords if category == SENSITIVE else ()
                return ClassificationResult(category=category, keywords=keywords)
        return ClassificationResult(category=GENERAL)


def classify(body_text: Optional[str], keywords: Optional[KeywordSets] = None) -> ClassificationResult:
    """Lightweight classification with the default or the given keyword sets."""
    return Classifier(keywords or KeywordSets()).classify(body_text)
