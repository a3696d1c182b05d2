from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from inbox_responder.compose.composer import ReplyComposer
from inbox_responder.language.detect import LanguageDetector
from inbox_responder.models import (
    SEND_FAILURE_TAG,
    AutoReply,
    Escalate,
    GenerationError,
    LedgerError,
    Skip,
)
from tests.helpers import (
    OWN_ADDRESS,
    FakeComposer,
    FakeGateway,
    FakeOpenAI,
    FakeTransport,
    MemoryLedger,
    make_engine,
    make_settings,
    raw_email,
)

T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _gateway(**bodies: str) -> FakeGateway:
    return FakeGateway({uid: raw_email(body=body, date=T0) for uid, body in bodies.items()})


@pytest.mark.asyncio
async def test_routine_mail_is_answered_and_marked_read() -> None:
    gateway = FakeGateway({"7": raw_email(subject="Frage", body="Habt ihr Gutscheine?", date=T0)})
    transport = FakeTransport()
    composer = FakeComposer(reply="Ja, gibt es.")

    batch = await make_engine(gateway, composer=composer, transport=transport).run_batch(["7"])

    assert batch.replied == 1
    assert gateway.marked == ["7"]
    assert transport.sent == [
        {
            "to": "kunde@example.test",
            "subject": "Re: Frage",
            "body": "Ja, gibt es.",
            "in_reply_to": "<abc@example.test>",
        }
    ]
    assert composer.calls == [("7", "general", "english")]


@pytest.mark.asyncio
async def test_send_failure_becomes_one_review_record_with_the_draft() -> None:
    gateway = _gateway(**{"100": "Habt ihr Gutscheine?"})
    ledger = MemoryLedger()
    composer = FakeComposer(reply="Ja, ab 20 Euro.")

    batch = await make_engine(
        gateway, composer=composer, transport=FakeTransport(fail=True), ledger=ledger
    ).run_batch(["100"])

    assert len(ledger.records) == 1
    record = ledger.records[0]
    assert record.keywords == (SEND_FAILURE_TAG,)
    assert record.draft_reply == "Ja, ab 20 Euro."
    assert record.sender == "kunde@example.test"
    assert gateway.marked == ["100"]
    assert batch.escalated == 1
    assert batch.replied == 0
    assert isinstance(batch.results[0].decision, Escalate)


@pytest.mark.asyncio
async def test_sensitive_mail_is_escalated_without_generation() -> None:
    gateway = _gateway(**{"5": "I want to cancel, this is fraud, contact my lawyer"})
    transport = FakeTransport()
    ledger = MemoryLedger()
    composer = FakeComposer()

    batch = await make_engine(
        gateway, composer=composer, transport=transport, ledger=ledger
    ).run_batch(["5"])

    assert transport.sent == []
    assert composer.calls == []
    assert gateway.marked == ["5"]
    assert batch.escalated == 1
    assert len(ledger.records) == 1
    record = ledger.records[0]
    assert {"cancel", "fraud", "lawyer"} <= set(record.keywords)
    assert record.draft_reply == "none"


@pytest.mark.asyncio
async def test_german_order_status_reply_carries_discount_and_sign_off() -> None:
    settings = make_settings()
    gateway = FakeGateway(
        {
            "42": raw_email(
                subject="Bestellung 4711",
                body="Hallo, wann kommt meine Bestellung? Ich warte schon seit einer Woche auf die Lieferung.",
                date=T0,
            )
        }
    )
    transport = FakeTransport()
    composer = ReplyComposer(
        FakeOpenAI(output_text="Hallo Erika Muster,\n\nIhre Bestellung ist bereits unterwegs."),
        settings,
    )
    detector = LanguageDetector(FakeOpenAI(output_text="german"), "gpt-4o", timeout=2)

    batch = await make_engine(
        gateway, composer=composer, transport=transport, detector=detector, settings=settings
    ).run_batch(["42"])

    assert batch.replied == 1
    assert gateway.marked == ["42"]
    sent = transport.sent[0]
    assert sent["subject"] == "Re: Bestellung 4711"
    assert "SORRY15" in sent["body"]
    assert "Rabattcode" in sent["body"]
    assert sent["body"].endswith("Viele Grüße\nDein Shop-Team")


@pytest.mark.asyncio
async def test_batch_is_processed_newest_first() -> None:
    gateway = FakeGateway(
        {
            "1": raw_email(body="Habt ihr Gutscheine?", date=T0),
            "2": raw_email(body="Habt ihr Gutscheine?", date=T0 + timedelta(hours=1)),
            "3": raw_email(body="Habt ihr Gutscheine?", date=T0 + timedelta(hours=2)),
        }
    )

    await make_engine(gateway).run_batch(["1", "2", "3"])

    assert gateway.marked == ["3", "2", "1"]


@pytest.mark.asyncio
async def test_equal_timestamps_fall_back_to_numeric_id() -> None:
    gateway = FakeGateway(
        {uid: raw_email(body="Habt ihr Gutscheine?", date=T0) for uid in ("9", "10", "2")}
    )

    await make_engine(gateway).run_batch(["2", "9", "10"])

    assert gateway.marked == ["10", "9", "2"]


@pytest.mark.asyncio
async def test_ledger_failure_leaves_message_unseen() -> None:
    gateway = _gateway(**{"8": "Das ist Betrug!"})

    with pytest.raises(LedgerError):
        await make_engine(gateway, ledger=MemoryLedger(fail=True)).run_batch(["8"])

    assert gateway.marked == []
    assert gateway.unseen == ["8"]


@pytest.mark.asyncio
async def test_generation_failure_propagates_and_nothing_is_marked() -> None:
    gateway = _gateway(**{"8": "Habt ihr Gutscheine?"})
    transport = FakeTransport()

    with pytest.raises(GenerationError):
        await make_engine(
            gateway, composer=FakeComposer(error=GenerationError("model down")), transport=transport
        ).run_batch(["8"])

    assert transport.sent == []
    assert gateway.marked == []


@pytest.mark.asyncio
async def test_mark_read_failure_stops_the_batch() -> None:
    gateway = FakeGateway(
        {
            "1": raw_email(body="Habt ihr Gutscheine?", date=T0),
            "2": raw_email(body="Habt ihr Gutscheine?", date=T0 + timedelta(hours=1)),
        }
    )
    gateway.fail_mark_seen = True
    transport = FakeTransport()

    batch = await make_engine(gateway, transport=transport).run_batch(["1", "2"])

    assert batch.processed == 1
    assert batch.mark_read_failures == 1
    assert batch.results[0].message_id == "2"
    assert batch.results[0].marked_read is False
    assert len(transport.sent) == 1


@pytest.mark.asyncio
async def test_dry_run_has_no_side_effects() -> None:
    gateway = FakeGateway(
        {
            "1": raw_email(body="Habt ihr Gutscheine?", date=T0),
            "2": raw_email(body="Das ist Betrug, ich rufe die Polizei.", date=T0),
        }
    )
    transport = FakeTransport()
    ledger = MemoryLedger()

    batch = await make_engine(gateway, transport=transport, ledger=ledger, dry_run=True).run_batch(
        ["1", "2"]
    )

    assert batch.previewed == 2
    assert batch.mark_read_failures == 0
    assert transport.sent == []
    assert ledger.records == []
    assert gateway.marked == []
    decisions = {type(result.decision) for result in batch.results}
    assert decisions == {AutoReply, Escalate}


@pytest.mark.asyncio
async def test_backlog_is_capped_to_newest_ids() -> None:
    gateway = FakeGateway(
        {str(uid): raw_email(body="Habt ihr Gutscheine?", date=T0) for uid in range(1, 6)}
    )

    batch = await make_engine(gateway, max_batch_size=2).run_batch(["1", "2", "3", "4", "5"])

    assert batch.fetched == 2
    assert sorted(gateway.fetched) == ["4", "5"]
    assert gateway.unseen == ["1", "2", "3"]


@pytest.mark.asyncio
async def test_no_automated_response_is_skipped_and_marked_read() -> None:
    gateway = _gateway(**{"3": "Vielen Dank!"})
    transport = FakeTransport()
    ledger = MemoryLedger()

    batch = await make_engine(
        gateway, composer=FakeComposer(reply=None), transport=transport, ledger=ledger
    ).run_batch(["3"])

    assert batch.skipped == 1
    assert isinstance(batch.results[0].decision, Skip)
    assert transport.sent == []
    assert ledger.records == []
    assert gateway.marked == ["3"]


@pytest.mark.asyncio
async def test_own_messages_are_skipped_without_generation() -> None:
    gateway = FakeGateway({"4": raw_email(sender=f"Shop <{OWN_ADDRESS}>", date=T0)})
    composer = FakeComposer()

    batch = await make_engine(gateway, composer=composer).run_batch(["4"])

    assert batch.skipped == 1
    assert composer.calls == []
    assert gateway.marked == ["4"]


@pytest.mark.asyncio
async def test_no_reply_sender_lands_in_the_ledger() -> None:
    gateway = FakeGateway(
        {"6": raw_email(sender="Versand <noreply@carrier.example>", body="Danke für Ihren Einkauf!", date=T0)}
    )
    ledger = MemoryLedger()
    transport = FakeTransport()

    await make_engine(gateway, transport=transport, ledger=ledger).run_batch(["6"])

    assert transport.sent == []
    assert [record.keywords for record in ledger.records] == [("no-reply",)]
    assert gateway.marked == ["6"]


@pytest.mark.asyncio
async def test_failed_mark_read_is_remembered_and_retried_without_a_new_decision() -> None:
    gateway = _gateway(**{"5": "Habt ihr Gutscheine?"})
    gateway.mark_seen_failures = 1
    transport = FakeTransport()
    engine = make_engine(gateway, transport=transport)

    await engine.run_batch(["5"])
    assert engine.pending_mark_read == {"5"}
    assert engine.actionable(["4", "5", "6"]) == ["4", "6"]

    again = await engine.run_batch(["5"])
    assert again.fetched == 0

    assert await engine.retry_pending_marks() == 0
    assert gateway.marked == ["5"]
    assert len(transport.sent) == 1
