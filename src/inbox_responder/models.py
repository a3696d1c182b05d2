from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Tuple, Union

Language = Literal["german", "english"]

SENSITIVE = "sensitive"
ORDER_STATUS = "order-status"
FAQ = "faq"
THANK_YOU = "thank-you"
GENERAL = "general"

NO_REPLY_TAG = "no-reply"
SEND_FAILURE_TAG = "send-failure"
NO_DRAFT = "none"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InboxResponderError(Exception):
    """Base class for all errors raised by the pipeline."""


class ConfigError(InboxResponderError):
    """Missing or invalid configuration value."""


class GatewayError(InboxResponderError):
    """Mailbox operation failed or timed out."""


class ConnectionExhaustedError(GatewayError):
    """All connection attempts of one cycle failed."""


class SendError(InboxResponderError):
    """Outbound transport could not deliver a reply."""


class GenerationError(InboxResponderError):
    """Reply generation failed or timed out."""


class LedgerError(InboxResponderError):
    """Review ledger could not be read for appending or written."""


@dataclass(frozen=True)
class Message:
    message_id: str
    sender: str
    subject: str
    body: str
    raw_body: str
    received_at: datetime = EPOCH
    sender_name: Optional[str] = None
    language: Language = "english"
    # Message-ID header of the incoming mail, used for reply threading.
    reply_to_header: Optional[str] = None


@dataclass(frozen=True)
class ClassificationResult:
    category: str
    keywords: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AutoReply:
    text: str


@dataclass(frozen=True)
class Escalate:
    reason: str
    keywords: Tuple[str, ...] = ()
    draft_reply: Optional[str] = None


@dataclass(frozen=True)
class Skip:
    reason: str


Decision = Union[AutoReply, Escalate, Skip]


@dataclass(frozen=True)
class ReviewRecord:
    timestamp: str
    sender: str
    sender_name: str
    subject: str
    body: str
    keywords: Tuple[str, ...]
    reason: str
    draft_reply: str = NO_DRAFT

    @classmethod
    def from_escalation(
        cls, message: Message, decision: Escalate, *, now: Optional[datetime] = None
    ) -> "ReviewRecord":
        stamp = (now or datetime.now(timezone.utc)).isoformat()
        return cls(
            timestamp=stamp,
            sender=message.sender,
            sender_name=message.sender_name or "",
            subject=message.subject,
            body=message.body,
            keywords=tuple(decision.keywords),
            reason=decision.reason,
            draft_reply=decision.draft_reply or NO_DRAFT,
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "sender": self.sender,
            "sender_name": self.sender_name,
            "subject": self.subject,
            "body": self.body,
            "keywords": list(self.keywords),
            "reason": self.reason,
            "draft_reply": self.draft_reply,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewRecord":
        # Keep load resilient to legacy/extra fields.
        return cls(
            timestamp=str(data.get("timestamp") or ""),
            sender=str(data.get("sender") or data.get("from") or ""),
            sender_name=str(data.get("sender_name") or data.get("senderName") or ""),
            subject=str(data.get("subject") or ""),
            body=str(data.get("body") or ""),
            keywords=tuple(str(k) for k in (data.get("keywords") or [])),
            reason=str(data.get("reason") or ""),
            draft_reply=str(data.get("draft_reply") or data.get("draftReply") or NO_DRAFT),
        )


@dataclass(frozen=True)
class ApplyResult:
    message_id: str
    decision: Decision
    outcome: Literal["replied", "escalated", "skipped", "previewed"]
    marked_read: bool
    record: Optional[ReviewRecord] = None


@dataclass
class BatchResult:
    fetched: int = 0
    replied: int = 0
    escalated: int = 0
    skipped: int = 0
    previewed: int = 0
    mark_read_failures: int = 0
    results: list[ApplyResult] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.results)

    def add(self, result: ApplyResult) -> None:
        self.results.append(result)
        if result.outcome == "replied":
            self.replied += 1
        elif result.outcome == "escalated":
            self.escalated += 1
        elif result.outcome == "skipped":
            self.skipped += 1
        else:
            self.previewed += 1
        if result.outcome != "previewed" and not result.marked_read:
            self.mark_read_failures += 1
