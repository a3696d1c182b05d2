from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from email.message import EmailMessage
from email.utils import format_datetime
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional

from inbox_responder.actions.executor import default_executor
from inbox_responder.config.settings import Settings, TimingSettings
from inbox_responder.gateway.base import AsyncMailbox
from inbox_responder.models import GatewayError, LedgerError, Message, ReviewRecord, SendError
from inbox_responder.pipeline.engine import DecisionEngine
from inbox_responder.rules.classification import Classifier

OWN_ADDRESS = "service@shop.example"


def make_settings(tmp_path: Optional[Path] = None, **overrides) -> Settings:
    base = Path(tmp_path) if tmp_path else Path("/tmp/inbox-responder-tests")
    settings = Settings(
        email_address=OWN_ADDRESS,
        openai_api_key="sk-test",
        email_password="secret",
        imap_host="imap.shop.example",
        smtp_host="smtp.shop.example",
        sign_off="Viele Grüße\nDein Shop-Team",
        discount_code="SORRY15",
        timing=TimingSettings(
            idle_interval=120,
            poll_interval=60,
            failure_backoff=60,
            connect_retries=3,
            connect_retry_delay=0,
            operation_timeout=2,
            send_timeout=2,
            generation_timeout=2,
        ),
        state_dir=base / "state",
        logs_dir=base / "logs",
        secrets_dir=base / "secrets",
    )
    return dataclasses.replace(settings, **overrides)


def make_message(
    *,
    message_id: str = "100",
    sender: str = "kunde@example.test",
    sender_name: Optional[str] = "Erika Muster",
    subject: str = "Frage",
    body: str = "Hallo, ich habe eine Frage.",
    received_at: Optional[datetime] = None,
    language: str = "german",
) -> Message:
    return Message(
        message_id=message_id,
        sender=sender,
        sender_name=sender_name,
        subject=subject,
        body=body,
        raw_body=body,
        received_at=received_at or datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
        language=language,  # type: ignore[arg-type]
    )


def raw_email(
    *,
    sender: str = "Erika Muster <kunde@example.test>",
    subject: str = "Frage",
    body: str = "Hallo, ich habe eine Frage.",
    date: Optional[datetime] = None,
    message_id_header: Optional[str] = "<abc@example.test>",
) -> bytes:
    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = OWN_ADDRESS
    msg["Subject"] = subject
    if date is not None:
        msg["Date"] = format_datetime(date)
    if message_id_header:
        msg["Message-ID"] = message_id_header
    msg.set_content(body)
    return msg.as_bytes()


class FakeGateway:
    def __init__(self, messages: Optional[Dict[str, bytes]] = None):
        self.messages: Dict[str, bytes] = dict(messages or {})
        self.unseen: List[str] = list(self.messages)
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.connect_failures = 0
        self.fail_search = False
        self.fail_mark_seen = False
        self.mark_seen_failures = 0
        self.fetched: List[str] = []
        self.marked: List[str] = []

    def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise GatewayError("connection refused")
        self.connected = True

    def is_connected(self) -> bool:
        return self.connected

    def search_unseen(self) -> List[str]:
        if self.fail_search:
            raise GatewayError("search failed")
        return list(self.unseen)

    def fetch(self, message_id: str) -> bytes:
        self.fetched.append(message_id)
        return self.messages[message_id]

    def mark_seen(self, message_id: str) -> None:
        if self.fail_mark_seen:
            raise GatewayError("store failed")
        if self.mark_seen_failures > 0:
            self.mark_seen_failures -= 1
            raise GatewayError("store failed")
        self.marked.append(message_id)
        if message_id in self.unseen:
            self.unseen.remove(message_id)

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False


class FakeTransport:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    def send(self, to_address: str, subject: str, body: str, in_reply_to: Optional[str] = None) -> None:
        if self.fail:
            raise SendError("smtp unavailable")
        self.sent.append({"to": to_address, "subject": subject, "body": body, "in_reply_to": in_reply_to})


class MemoryLedger:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.records: List[ReviewRecord] = []

    def append(self, record: ReviewRecord) -> None:
        if self.fail:
            raise LedgerError("disk full")
        self.records.append(record)

    def read_all(self) -> List[ReviewRecord]:
        return list(self.records)


class FakeComposer:
    def __init__(self, reply: Optional[str] = "Vielen Dank für Ihre Nachricht.", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[tuple] = []

    async def compose(self, message: Message, category: str, language: str) -> Optional[str]:
        self.calls.append((message.message_id, category, language))
        if self.error is not None:
            raise self.error
        return self.reply


class FakeResponses:
    def __init__(self, output_text: str = "", error: Optional[Exception] = None):
        self.output_text = output_text
        self.error = error
        self.requests: List[dict] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(output_text=self.output_text)


class FakeOpenAI:
    def __init__(self, output_text: str = "", error: Optional[Exception] = None):
        self.responses = FakeResponses(output_text, error)


def make_engine(
    gateway: FakeGateway,
    *,
    composer=None,
    transport: Optional[FakeTransport] = None,
    ledger: Optional[MemoryLedger] = None,
    detector=None,
    dry_run: bool = False,
    max_batch_size: int = 25,
    settings: Optional[Settings] = None,
) -> DecisionEngine:
    settings = settings or make_settings()
    mailbox = AsyncMailbox(gateway, timeout=2, retries=3, retry_delay=0)
    return DecisionEngine(
        mailbox,
        Classifier(settings.keywords),
        composer or FakeComposer(),
        detector,
        default_executor(
            transport if transport is not None else FakeTransport(),
            ledger if ledger is not None else MemoryLedger(),
            send_timeout=2,
            dry_run=dry_run,
        ),
        own_address=settings.email_address,
        no_reply_patterns=settings.no_reply_patterns,
        max_batch_size=max_batch_size,
    )
