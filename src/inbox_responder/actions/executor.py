from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from inbox_responder.actions.handlers import (
    DecisionHandler,
    Effect,
    ReplyHandler,
    ReviewHandler,
    SkipHandler,
)
from inbox_responder.gateway.base import OutboundTransport
from inbox_responder.models import AutoReply, Decision, Escalate, Message, Skip
from inbox_responder.storage.ledger import ReviewLedger

logger = logging.getLogger(__name__)


def describe(decision: Decision) -> str:
    if isinstance(decision, AutoReply):
        return f"reply ({len(decision.text)} chars)"
    if isinstance(decision, Escalate):
        return f"escalate reason={decision.reason} keywords={','.join(decision.keywords)}"
    return f"skip reason={decision.reason}"


@dataclass
class DecisionExecutor:
    handlers: Dict[type, DecisionHandler]
    dry_run: bool = False

    async def run(self, message: Message, decision: Decision) -> Effect:
        handler = self.handlers.get(type(decision))
        if not handler:
            raise ValueError(f"No handler registered for decision type: {type(decision).__name__}")

        if self.dry_run:
            logger.info(
                f"[DRY-RUN] would {describe(decision)} message_id={message.message_id} "
                f"from={message.sender} subject={message.subject!r}"
            )
            if isinstance(decision, AutoReply):
                logger.info(f"[DRY-RUN] preview reply to {message.sender}: {decision.text}")
            return Effect(decision=decision, outcome="previewed")

        return await handler.handle(message, decision)


def default_executor(
    transport: OutboundTransport,
    ledger: ReviewLedger,
    *,
    send_timeout: float = 30.0,
    dry_run: bool = False,
    session_lock: Optional[threading.Lock] = None,
) -> DecisionExecutor:
    review = ReviewHandler(ledger)
    return DecisionExecutor(
        handlers={
            AutoReply: ReplyHandler(transport, review, timeout=send_timeout, lock=session_lock),
            Escalate: review,
            Skip: SkipHandler(),
        },
        dry_run=dry_run,
    )
