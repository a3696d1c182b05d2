from __future__ import annotations

import imaplib
import logging
import ssl
from typing import List, Optional

from inbox_responder.config.settings import Settings
from inbox_responder.models import GatewayError

logger = logging.getLogger(__name__)


def parse_uid_search_data(data: object) -> list[str]:
    if not isinstance(data, list) or not data or not data[0]:
        return []
    raw = data[0]
    if isinstance(raw, bytes):
        return [uid.decode("ascii", errors="ignore") for uid in raw.split()]
    if isinstance(raw, str):
        return [uid for uid in raw.split() if uid]
    return []


def parse_fetch_message(fetch_data: object) -> bytes:
    # imaplib returns [(b'1 (UID 7 BODY[] {1234}', b'<raw message>'), b')'].
    if not isinstance(fetch_data, list):
        return b""
    for item in fetch_data:
        if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
            return item[1]
    return b""


class ImapGateway:
    """IMAP mailbox addressed by UID. Fetches use BODY.PEEK so they never set \\Seen."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        *,
        mailbox: str = "INBOX",
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.mailbox = mailbox
        self.timeout = timeout
        self._imap: Optional[imaplib.IMAP4_SSL] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ImapGateway":
        return cls(
            host=settings.imap_host or "",
            port=settings.imap_port,
            user=settings.email_address,
            password=settings.email_password or "",
            mailbox=settings.mailbox,
            timeout=settings.timing.operation_timeout,
        )

    @property
    def imap(self) -> imaplib.IMAP4_SSL:
        if self._imap is None:
            raise GatewayError("IMAP session is not connected. Call connect() first.")
        return self._imap

    def connect(self) -> None:
        context = ssl.create_default_context()
        try:
            imap = imaplib.IMAP4_SSL(self.host, self.port, ssl_context=context, timeout=self.timeout)
            imap.login(self.user, self.password)
            status, _ = imap.select(self.mailbox, readonly=False)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise GatewayError(f"IMAP connection error: {exc}") from exc
        if status != "OK":
            imap.logout()
            raise GatewayError(f"IMAP select of {self.mailbox!r} failed: {status}")
        self._imap = imap
        logger.info(f"Connected to IMAP server {self.host}:{self.port} ({self.mailbox})")

    def is_connected(self) -> bool:
        return self._imap is not None and self._imap.state == "SELECTED"

    def search_unseen(self) -> List[str]:
        try:
            status, data = self.imap.uid("SEARCH", None, "UNSEEN")
        except (imaplib.IMAP4.error, OSError) as exc:
            raise GatewayError(f"IMAP search error: {exc}") from exc
        if status != "OK":
            raise GatewayError(f"IMAP search failed: {status}")
        uids = parse_uid_search_data(data)
        logger.info(f"Found {len(uids)} unread email IDs")
        return sorted(uids, key=int)

    def fetch(self, message_id: str) -> bytes:
        try:
            status, data = self.imap.uid("FETCH", message_id, "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as exc:
            raise GatewayError(f"Fetch error for UID {message_id}: {exc}") from exc
        raw = parse_fetch_message(data)
        if status != "OK" or not raw:
            raise GatewayError(f"Fetch of UID {message_id} returned no message ({status})")
        return raw

    def mark_seen(self, message_id: str) -> None:
        try:
            status, _ = self.imap.uid("STORE", message_id, "+FLAGS.SILENT", r"(\Seen)")
        except (imaplib.IMAP4.error, OSError) as exc:
            raise GatewayError(f"Error marking email {message_id} as read: {exc}") from exc
        if status != "OK":
            raise GatewayError(f"Error marking email {message_id} as read: {status}")
        logger.info(f"Marked email {message_id} as read")

    def disconnect(self) -> None:
        imap, self._imap = self._imap, None
        if imap is None:
            return
        try:
            if imap.state == "SELECTED":
                imap.close()
            imap.logout()
        except (imaplib.IMAP4.error, OSError) as exc:
            logger.warning(f"IMAP logout failed: {exc}")
        logger.info("Disconnected from IMAP server")
