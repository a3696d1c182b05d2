from __future__ import annotations

import pytest

from inbox_responder.gateway.base import AsyncMailbox
from scripts.mark_all_read import mark_all_read
from tests.helpers import FakeGateway, raw_email


@pytest.mark.asyncio
async def test_marks_every_unseen_message_in_batches() -> None:
    gateway = FakeGateway({str(uid): raw_email() for uid in range(1, 6)})
    mailbox = AsyncMailbox(gateway, timeout=2, retries=1, retry_delay=0)

    marked = await mark_all_read(mailbox, batch_size=2)

    assert marked == 5
    assert gateway.marked == ["1", "2", "3", "4", "5"]
    assert gateway.disconnect_calls == 1


@pytest.mark.asyncio
async def test_failed_mark_is_counted_out_but_does_not_stop() -> None:
    gateway = FakeGateway({"1": raw_email(), "2": raw_email()})
    gateway.fail_mark_seen = True
    mailbox = AsyncMailbox(gateway, timeout=2, retries=1, retry_delay=0)

    assert await mark_all_read(mailbox) == 0
    assert gateway.fetched == ["1", "2"]
