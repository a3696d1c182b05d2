from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, Optional

from openai import AsyncOpenAI, OpenAIError

from inbox_responder.config.settings import Settings
from inbox_responder.models import (
    FAQ,
    GENERAL,
    ORDER_STATUS,
    THANK_YOU,
    GenerationError,
    Language,
    Message,
)

logger = logging.getLogger(__name__)

NO_RESPONSE = "NO_RESPONSE"

CATEGORY_GUIDANCE: Dict[str, str] = {
    ORDER_STATUS: (
        "The customer asks about the status or delivery of an order. Reassure them that "
        "the order is being processed, explain that tracking details follow by email, and "
        "offer the discount code {discount_code} as a thank-you for their patience."
    ),
    FAQ: (
        "The customer asks a general question about sizes, shipping or delivery times. "
        "Answer helpfully and briefly; do not invent concrete numbers or dates."
    ),
    THANK_YOU: (
        "The customer is thanking us. Reply with a short, warm acknowledgement. "
        f"If the message needs no answer at all, respond with exactly {NO_RESPONSE}."
    ),
    GENERAL: (
        "Answer the customer's message politely and concisely. If it is not a customer "
        f"inquiry at all (spam, automated notice), respond with exactly {NO_RESPONSE}."
    ),
}

DISCOUNT_LINES: Dict[str, str] = {
    "german": "Als kleines Dankeschön für Ihre Geduld schenken wir Ihnen den Rabattcode {code}.",
    "english": "As a small thank-you for your patience, here is your discount code: {code}.",
}

GREETINGS: Dict[str, str] = {"german": "Hallo {name},", "english": "Hi {name},"}


def as_reply_subject(subject: str) -> str:
    cleaned = subject.strip()
    if not cleaned:
        return "Re: Ihre Anfrage"
    match = re.match(r"^(re|aw|sv)\s*:\s*(.*)$", cleaned, flags=re.IGNORECASE)
    if match:
        tail = match.group(2).strip()
        if not tail:
            return "Re: Ihre Anfrage"
        return f"Re: {tail}"
    return f"Re: {cleaned}"


def with_signature(body: str, sign_off: str) -> str:
    text = body.strip()
    if not sign_off or text.endswith(sign_off.strip()):
        return text
    return f"{text}\n\n{sign_off.strip()}"


def with_discount_code(body: str, code: str, language: Language) -> str:
    if not code or code in body:
        return body
    line = DISCOUNT_LINES.get(language, DISCOUNT_LINES["english"]).format(code=code)
    return f"{body.strip()}\n\n{line}"


class ReplyComposer:
    """
    Orchestrates reply generation for one message.

    Generation itself is delegated to the OpenAI Responses API; this wrapper
    owns the prompt, the "no response" sentinel and the post-processing
    (discount code, sign-off).
    """

    def __init__(self, client: Any, settings: Settings):
        self.client = client
        self.model = settings.reply_model
        self.sign_off = settings.sign_off
        self.discount_code = settings.discount_code
        self.shop_name = settings.shop_name
        self.timeout = settings.timing.generation_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReplyComposer":
        client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.timing.generation_timeout)
        return cls(client, settings)

    def _prompt(self, message: Message, category: str, language: Language) -> str:
        guidance = CATEGORY_GUIDANCE.get(category, CATEGORY_GUIDANCE[GENERAL])
        name = message.sender_name or "customer"
        return (
            f"Write the reply in {language.capitalize()}.\n"
            f"Shop: {self.shop_name}\n"
            f"Customer name: {name}\n"
            f"Start with the greeting: {GREETINGS.get(language, GREETINGS['english']).format(name=name)}\n"
            f"Task: {guidance.format(discount_code=self.discount_code)}\n"
            "Do not include a signature; it is added automatically.\n"
            "Never promise refunds, cancellations or anything else that cannot be delivered.\n\n"
            f"SUBJECT:\n{message.subject}\n\n"
            f"MESSAGE:\n{message.body}\n"
        )

    async def compose(self, message: Message, category: str, language: Language) -> Optional[str]:
        """Return the reply text, or None if no automated response should be sent."""
        try:
            resp = await asyncio.wait_for(
                self.client.responses.create(
                    model=self.model,
                    input=[
                        {
                            "role": "system",
                            "content": (
                                "You are a customer service assistant writing polite, "
                                "context-aware email replies for an online shop."
                            ),
                        },
                        {"role": "user", "content": self._prompt(message, category, language)},
                    ],
                    max_output_tokens=400,
                    temperature=0.7,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationError(f"Reply generation timed out after {self.timeout}s") from exc
        except OpenAIError as exc:
            raise GenerationError(f"Reply generation failed: {exc}") from exc

        output_text = (getattr(resp, "output_text", None) or "").strip()
        if not output_text or output_text.upper().startswith(NO_RESPONSE):
            logger.info(f"No automated response for message {message.message_id} ({category})")
            return None

        text = output_text
        if category == ORDER_STATUS:
            text = with_discount_code(text, self.discount_code, language)
        logger.info(f"Generated reply for email from {message.sender}")
        return with_signature(text, self.sign_off)
