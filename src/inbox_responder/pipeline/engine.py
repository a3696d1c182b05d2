"""
Decision Engine: turns each fetched message into exactly one decision and
drives its side effects.

Per message: Fetched -> Classified -> Decided -> Effected -> MarkedRead.
The effect (send or ledger append) always completes before mark-read, so a
crash in between leads to reprocessing, never to a lost message.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import replace
from typing import Deque, Iterable, List, Optional, Sequence, Set, Tuple

from inbox_responder.actions.executor import DecisionExecutor, describe
from inbox_responder.compose.composer import ReplyComposer
from inbox_responder.gateway.base import AsyncMailbox
from inbox_responder.language.detect import LanguageDetector
from inbox_responder.models import (
    ApplyResult,
    AutoReply,
    BatchResult,
    ClassificationResult,
    Decision,
    Message,
    Skip,
)
from inbox_responder.parsing.parser import parse_message
from inbox_responder.pipeline.policy import pre_decision
from inbox_responder.rules.classification import Classifier

logger = logging.getLogger(__name__)

NO_RESPONSE_REASON = "no automated response"


def _id_key(message_id: str) -> Tuple[int, int, str]:
    # Numeric ids (IMAP UIDs) compare as numbers, anything else as text.
    if message_id.isdigit():
        return (0, int(message_id), "")
    return (1, 0, message_id)


def newest_first(messages: Iterable[Message]) -> List[Message]:
    return sorted(
        messages,
        key=lambda m: (m.received_at, _id_key(m.message_id)),
        reverse=True,
    )


class DecisionEngine:
    def __init__(
        self,
        mailbox: AsyncMailbox,
        classifier: Classifier,
        composer: ReplyComposer,
        detector: Optional[LanguageDetector],
        executor: DecisionExecutor,
        *,
        own_address: str,
        no_reply_patterns: Sequence[str],
        max_batch_size: int = 25,
    ):
        self.mailbox = mailbox
        self.classifier = classifier
        self.composer = composer
        self.detector = detector
        self.executor = executor
        self.own_address = own_address
        self.no_reply_patterns = tuple(no_reply_patterns)
        self.max_batch_size = max(1, max_batch_size)
        # Effect done, mark-read failed. Never decided again, only re-marked.
        self.pending_mark_read: Set[str] = set()

    async def decide(self, message: Message, classification: ClassificationResult) -> Decision:
        decision = pre_decision(
            message,
            classification,
            own_address=self.own_address,
            no_reply_patterns=self.no_reply_patterns,
        )
        if decision is not None:
            return decision

        # GenerationError propagates to the cycle; the message stays unseen.
        text = await self.composer.compose(message, classification.category, message.language)
        if text is None:
            return Skip(reason=NO_RESPONSE_REASON)
        return AutoReply(text=text)

    async def apply(self, decision: Decision, message: Message) -> ApplyResult:
        effect = await self.executor.run(message, decision)
        if effect.outcome == "previewed":
            return ApplyResult(
                message_id=message.message_id,
                decision=effect.decision,
                outcome="previewed",
                marked_read=False,
            )

        # Final, unconditional step of every branch.
        result = await self.mailbox.mark_seen(message.message_id)
        if not result.ok:
            logger.error(f"Error marking email {message.message_id} as read: {result.error}")
            self.pending_mark_read.add(message.message_id)

        return ApplyResult(
            message_id=message.message_id,
            decision=effect.decision,
            outcome=effect.outcome,  # type: ignore[arg-type]
            marked_read=result.ok,
            record=effect.record,
        )

    async def process(self, message: Message) -> ApplyResult:
        classification = self.classifier.classify(message.body)
        logger.info(
            f"Classified email {message.message_id} from {message.sender} as {classification.category}"
        )
        decision = await self.decide(message, classification)
        logger.info(f"Decision for {message.message_id}: {describe(decision)}")
        return await self.apply(decision, message)

    async def retry_pending_marks(self) -> int:
        """Re-issue mark-read for already handled messages; returns how many are still pending."""
        for message_id in sorted(self.pending_mark_read, key=_id_key):
            result = await self.mailbox.mark_seen(message_id)
            if result.ok:
                self.pending_mark_read.discard(message_id)
                logger.info(f"Marked previously handled email {message_id} as read")
            else:
                logger.error(f"Retry of mark-read for email {message_id} failed: {result.error}")
        return len(self.pending_mark_read)

    def actionable(self, message_ids: Sequence[str]) -> List[str]:
        """Unseen ids minus those whose decision already took effect."""
        return [mid for mid in message_ids if mid not in self.pending_mark_read]

    async def load(self, message_id: str) -> Message:
        raw = (await self.mailbox.fetch(message_id)).unwrap()
        message = parse_message(message_id, raw)
        if self.detector is not None:
            language = await self.detector.detect(message.body)
            message = replace(message, language=language)
        logger.info(
            f"Fetched email from {message.sender} (Name: {message.sender_name}, "
            f"Date: {message.received_at.isoformat()}, UID: {message_id}, Language: {message.language})"
        )
        return message

    async def load_queue(self, message_ids: Sequence[str]) -> Deque[Message]:
        # Ids arrive oldest first; a backlog is capped to its newest part.
        selected = self.actionable(message_ids)[-self.max_batch_size:]
        messages = [await self.load(mid) for mid in selected]
        return deque(newest_first(messages))

    async def run_batch(self, message_ids: Sequence[str]) -> BatchResult:
        batch = BatchResult()
        queue = await self.load_queue(message_ids)
        batch.fetched = len(queue)

        while queue:
            message = queue.popleft()
            result = await self.process(message)
            batch.add(result)
            if result.outcome != "previewed" and not result.marked_read:
                # The session is suspect; the rest stays unseen for the next cycle.
                logger.error(
                    f"Stopping batch after mark-read failure; {len(queue)} message(s) left unseen"
                )
                break

        logger.info(f"Processed {batch.processed} emails in this cycle")
        return batch
