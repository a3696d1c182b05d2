from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from inbox_responder.compose.composer import as_reply_subject
from inbox_responder.config.logging_setup import log_response
from inbox_responder.gateway.base import OutboundTransport, call_with_timeout
from inbox_responder.models import (
    SEND_FAILURE_TAG,
    AutoReply,
    Decision,
    Escalate,
    Message,
    ReviewRecord,
    Skip,
)
from inbox_responder.storage.ledger import ReviewLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Effect:
    """What a handler actually did; `decision` is the one that took effect."""
    decision: Decision
    outcome: str
    record: Optional[ReviewRecord] = None


class DecisionHandler(ABC):
    @abstractmethod
    async def handle(self, message: Message, decision: Decision) -> Effect:
        """Execute the side effect of one decision."""
        ...


class ReviewHandler(DecisionHandler):
    def __init__(self, ledger: ReviewLedger):
        self.ledger = ledger

    async def handle(self, message: Message, decision: Decision) -> Effect:
        if not isinstance(decision, Escalate):
            raise TypeError(f"{type(self).__name__} cannot handle {type(decision).__name__}")
        record = ReviewRecord.from_escalation(message, decision)
        # LedgerError propagates: the message must stay unseen without a record.
        await asyncio.to_thread(self.ledger.append, record)
        logger.info(
            f"[REVIEW] message_id={message.message_id} from={message.sender} reason={decision.reason}"
        )
        return Effect(decision=decision, outcome="escalated", record=record)


class ReplyHandler(DecisionHandler):
    def __init__(
        self,
        transport: OutboundTransport,
        review: ReviewHandler,
        *,
        timeout: float = 30.0,
        lock: Optional[threading.Lock] = None,
    ):
        self.transport = transport
        self.review = review
        self.timeout = timeout
        # Set when the transport shares its client with the mailbox session.
        self.lock = lock

    async def handle(self, message: Message, decision: Decision) -> Effect:
        if not isinstance(decision, AutoReply):
            raise TypeError(f"{type(self).__name__} cannot handle {type(decision).__name__}")
        subject = as_reply_subject(message.subject)
        result = await call_with_timeout(
            "send",
            self.transport.send,
            message.sender,
            subject,
            decision.text,
            message.reply_to_header,
            timeout=self.timeout,
            lock=self.lock,
        )
        if not result.ok:
            # Never retried inline; the draft goes to the review ledger instead.
            logger.error(
                f"Send failed for message {message.message_id} to {message.sender}: {result.error}"
            )
            fallback = Escalate(
                reason=SEND_FAILURE_TAG,
                keywords=(SEND_FAILURE_TAG,),
                draft_reply=decision.text,
            )
            return await self.review.handle(message, fallback)

        log_response(
            {
                "message_id": message.message_id,
                "to": message.sender,
                "subject": subject,
                "language": message.language,
                "reply": decision.text,
            }
        )
        logger.info(f"[REPLY] message_id={message.message_id} to={message.sender}")
        return Effect(decision=decision, outcome="replied")


class SkipHandler(DecisionHandler):
    async def handle(self, message: Message, decision: Decision) -> Effect:
        if not isinstance(decision, Skip):
            raise TypeError(f"{type(self).__name__} cannot handle {type(decision).__name__}")
        logger.info(f"[SKIP] message_id={message.message_id} reason={decision.reason}")
        return Effect(decision=decision, outcome="skipped")
