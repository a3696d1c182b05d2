from __future__ import annotations

import re
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime
from datetime import datetime, timezone
from typing import Optional

from bs4 import BeautifulSoup

from inbox_responder.models import EPOCH, Message

# Lines that start the quoted/forwarded part of a reply.
_QUOTE_MARKERS = (
    re.compile(r"^\s*>"),
    re.compile(r"^\s*-{2,}\s*(original message|ursprüngliche nachricht|forwarded message|weitergeleitete nachricht)", re.IGNORECASE),
    re.compile(r"^\s*on .+ wrote:\s*$", re.IGNORECASE),
    re.compile(r"^\s*am .+ schrieb .+:\s*$", re.IGNORECASE),
    re.compile(r"^\s*(from|von):\s.+", re.IGNORECASE),
)


def strip_quoted(text: str) -> str:
    """Cut the body at the first line that opens quoted or forwarded content."""
    lines = (text or "").splitlines()
    for idx, line in enumerate(lines):
        if any(marker.match(line) for marker in _QUOTE_MARKERS):
            lines = lines[:idx]
            break
    return "\n".join(lines).strip()


_BLOCK_TAGS = ["p", "div", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote"]


def _html_to_text(markup: str) -> str:
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    # Inline markup stays on one line so phrases like "wann kommt" survive.
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")
    lines = (" ".join(line.split()) for line in soup.get_text().splitlines())
    return "\n".join(line for line in lines if line)


def extract_body(msg: EmailMessage) -> str:
    """
    Extract the plain text body.
    Falls back to HTML (tags stripped) if plain text is unavailable.
    """
    part = msg.get_body(preferencelist=("plain",))
    if part is not None:
        try:
            return part.get_content()
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            return payload.decode("utf-8", errors="replace")

    part = msg.get_body(preferencelist=("html",))
    if part is not None:
        try:
            return _html_to_text(part.get_content())
        except (LookupError, UnicodeDecodeError):
            payload = part.get_payload(decode=True) or b""
            return _html_to_text(payload.decode("utf-8", errors="replace"))

    return ""


def _received_at(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    try:
        parsed = parsedate_to_datetime(str(value))
    except (TypeError, ValueError, IndexError):
        return EPOCH
    if parsed is None:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sender_display_name(from_header: str) -> str:
    # Parse "Name <mail@domain>" safely; fall back to the local part.
    name, address = parseaddr(from_header)
    name = re.sub(r"\s+", " ", name).strip().strip('"').strip()
    if name:
        return name
    return address.split("@", 1)[0] if address else ""


def parse_message(message_id: str, raw: bytes) -> Message:
    msg = BytesParser(policy=policy.default).parsebytes(raw)
    from_header = str(msg.get("From") or "")
    address = parseaddr(from_header)[1].strip()
    body = extract_body(msg)
    reply_to_header = msg.get("Message-ID")
    try:
        date_header = msg.get("Date")
    except (TypeError, ValueError):
        # Older email packages fail while parsing malformed dates.
        date_header = None

    return Message(
        message_id=message_id,
        sender=address,
        sender_name=sender_display_name(from_header) or None,
        subject=str(msg.get("Subject") or ""),
        body=strip_quoted(body),
        raw_body=body,
        received_at=_received_at(date_header),
        reply_to_header=str(reply_to_header).strip() if reply_to_header else None,
    )
