from __future__ import annotations

from email.utils import parseaddr
from typing import Optional, Sequence

from inbox_responder.models import (
    NO_REPLY_TAG,
    SENSITIVE,
    ClassificationResult,
    Decision,
    Escalate,
    Message,
    Skip,
)

NO_REPLY_REASON = "no-reply address"
SENSITIVE_REASON = "sensitive keywords"
OWN_ADDRESS_REASON = "own address"


def _normalized_address(value: str) -> str:
    # Parse "Name <mail@domain>" safely and normalize for exact comparisons.
    return parseaddr(value)[1].strip().lower()


def is_no_reply_sender(sender: str, patterns: Sequence[str]) -> bool:
    address = (sender or "").lower()
    return any(p.lower() in address for p in patterns if p)


def pre_decision(
    message: Message,
    classification: ClassificationResult,
    *,
    own_address: str,
    no_reply_patterns: Sequence[str],
) -> Optional[Decision]:
    """
    Decisions that never need a generated reply, in priority order.
    None means the message goes to the reply composer.
    """
    own = _normalized_address(own_address)
    if own and _normalized_address(message.sender) == own:
        return Skip(reason=OWN_ADDRESS_REASON)

    if is_no_reply_sender(message.sender, no_reply_patterns):
        return Escalate(reason=NO_REPLY_REASON, keywords=(NO_REPLY_TAG,))

    if classification.category == SENSITIVE:
        # Sensitive mail never reaches the composer, so there is no draft.
        return Escalate(reason=SENSITIVE_REASON, keywords=tuple(classification.keywords))

    return None
