from __future__ import annotations

import asyncio

import pytest
from openai import OpenAIError

from inbox_responder.compose.composer import (
    NO_RESPONSE,
    ReplyComposer,
    as_reply_subject,
    with_discount_code,
    with_signature,
)
from inbox_responder.models import FAQ, GENERAL, ORDER_STATUS, THANK_YOU, GenerationError
from tests.helpers import FakeOpenAI, make_message, make_settings

SIGN_OFF = "Viele Grüße\nDein Shop-Team"


def test_as_reply_subject_adds_re_prefix() -> None:
    assert as_reply_subject("Wo ist mein Paket") == "Re: Wo ist mein Paket"


def test_as_reply_subject_normalizes_existing_reply_prefixes() -> None:
    assert as_reply_subject("AW: Lieferung") == "Re: Lieferung"
    assert as_reply_subject("Re: Lieferung") == "Re: Lieferung"
    assert as_reply_subject("sv: Lieferung") == "Re: Lieferung"


def test_as_reply_subject_handles_empty_input() -> None:
    assert as_reply_subject("") == "Re: Ihre Anfrage"
    assert as_reply_subject("AW:") == "Re: Ihre Anfrage"


def test_with_signature_appends_once() -> None:
    signed = with_signature("Danke für Ihre Nachricht.", SIGN_OFF)

    assert signed == f"Danke für Ihre Nachricht.\n\n{SIGN_OFF}"
    assert with_signature(signed, SIGN_OFF) == signed


def test_with_discount_code_uses_reply_language() -> None:
    german = with_discount_code("Ihre Bestellung ist unterwegs.", "SORRY15", "german")
    english = with_discount_code("Your order is on its way.", "SORRY15", "english")

    assert "Rabattcode SORRY15" in german
    assert english.endswith("here is your discount code: SORRY15.")
    assert with_discount_code("Code SORRY15 gilt.", "SORRY15", "german") == "Code SORRY15 gilt."


@pytest.mark.asyncio
async def test_order_status_reply_gets_discount_and_sign_off() -> None:
    client = FakeOpenAI(output_text="Hallo Erika Muster,\n\nIhre Bestellung ist unterwegs.")
    composer = ReplyComposer(client, make_settings())

    reply = await composer.compose(make_message(), ORDER_STATUS, "german")

    assert reply is not None
    assert "SORRY15" in reply
    assert reply.endswith(SIGN_OFF)
    request = client.responses.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert "German" in request["input"][1]["content"]
    assert "SORRY15" in request["input"][1]["content"]


@pytest.mark.asyncio
@pytest.mark.parametrize("category", [FAQ, THANK_YOU, GENERAL])
async def test_other_categories_get_no_discount(category: str) -> None:
    composer = ReplyComposer(FakeOpenAI(output_text="Gern geschehen!"), make_settings())

    reply = await composer.compose(make_message(), category, "german")

    assert reply == f"Gern geschehen!\n\n{SIGN_OFF}"


@pytest.mark.asyncio
@pytest.mark.parametrize("output", [NO_RESPONSE, "no_response.", "", "   "])
async def test_no_response_sentinel_means_no_reply(output: str) -> None:
    composer = ReplyComposer(FakeOpenAI(output_text=output), make_settings())

    assert await composer.compose(make_message(), THANK_YOU, "german") is None


@pytest.mark.asyncio
async def test_api_error_becomes_generation_error() -> None:
    composer = ReplyComposer(FakeOpenAI(error=OpenAIError("rate limited")), make_settings())

    with pytest.raises(GenerationError):
        await composer.compose(make_message(), GENERAL, "english")


@pytest.mark.asyncio
async def test_timeout_becomes_generation_error() -> None:
    class SlowResponses:
        async def create(self, **kwargs):
            await asyncio.sleep(10)

    class SlowClient:
        responses = SlowResponses()

    settings = make_settings()
    composer = ReplyComposer(SlowClient(), settings)
    composer.timeout = 0.01

    with pytest.raises(GenerationError):
        await composer.compose(make_message(), GENERAL, "english")
