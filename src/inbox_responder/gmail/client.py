from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from inbox_responder.config.settings import Settings
from inbox_responder.models import GatewayError, SendError
from inbox_responder.transport.smtp import build_reply

logger = logging.getLogger(__name__)

# modify is needed to drop the UNREAD label, send for outbound replies.
SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]
UNSEEN_QUERY = "is:unread in:inbox -from:me"


@dataclass(frozen=True)
class GmailClientConfig:
    # Path to OAuth client credentials downloaded from Google Cloud Console.
    credentials_path: Path
    # Token cache will be created here after first login.
    token_path: Path
    # Gmail userId, "me" refers to the authenticated user.
    user_id: str = "me"


def gmail_config_from_settings(settings: Settings) -> GmailClientConfig:
    credentials_path = settings.secrets_dir / "credentials.json"
    if not credentials_path.exists():
        raise GatewayError(
            f"Missing Gmail credentials at {credentials_path}. "
            "Did you configure INBOX_RESPONDER_SECRETS_DIR?"
        )
    return GmailClientConfig(
        credentials_path=credentials_path,
        token_path=settings.secrets_dir / "gmail_token.json",
        user_id="me",
    )


class GmailClient:
    def __init__(self, cfg: GmailClientConfig):
        self._cfg = cfg
        self._creds: Optional[Credentials] = None
        self._service = None

    def connect(self) -> None:
        """Create an authenticated Gmail API service client."""
        creds = None

        if self._cfg.token_path.exists():
            creds = Credentials.from_authorized_user_file(str(self._cfg.token_path), SCOPES)

        # If there are no (valid) credentials available, let the user log in.
        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                flow = InstalledAppFlow.from_client_secrets_file(
                    str(self._cfg.credentials_path),
                    SCOPES,
                )
                creds = flow.run_local_server(port=0)

            # Save the credentials for the next run.
            self._cfg.token_path.parent.mkdir(parents=True, exist_ok=True)
            self._cfg.token_path.write_text(creds.to_json(), encoding="utf-8")

        self._creds = creds
        self._service = build("gmail", "v1", credentials=creds)

    def close(self) -> None:
        self._service = None

    @property
    def connected(self) -> bool:
        return self._service is not None

    @property
    def service(self):
        if self._service is None:
            raise RuntimeError("GmailClient is not connected. Call connect() first.")
        return self._service

    def list_messages(self, query: str = "", max_results: int = 100) -> List[str]:
        """
        List message IDs matching a Gmail search query, newest first.
        Example query: 'is:unread in:inbox'
        """
        resp = (
            self.service.users()
            .messages()
            .list(userId=self._cfg.user_id, q=query, maxResults=max_results)
            .execute()
        )
        msgs = resp.get("messages", [])
        return [m["id"] for m in msgs]

    def get_message(self, message_id: str, fmt: str = "full") -> Dict[str, Any]:
        """
        Fetch a message resource.
        fmt: 'full' | 'metadata' | 'minimal' | 'raw'
        """
        return (
            self.service.users()
            .messages()
            .get(userId=self._cfg.user_id, id=message_id, format=fmt)
            .execute()
        )

    def mark_as_read(self, message_id: str) -> None:
        (
            self.service.users()
            .messages()
            .modify(userId=self._cfg.user_id, id=message_id, body={"removeLabelIds": ["UNREAD"]})
            .execute()
        )

    def send_message(self, raw_message: bytes) -> Dict[str, Any]:
        raw = base64.urlsafe_b64encode(raw_message).decode("ascii")
        return (
            self.service.users()
            .messages()
            .send(userId=self._cfg.user_id, body={"raw": raw})
            .execute()
        )


class GmailGateway:
    """MailboxGateway over the Gmail API; "seen" means the UNREAD label is gone."""

    def __init__(self, client: GmailClient, *, max_results: int = 100):
        self.client = client
        self.max_results = max_results

    def connect(self) -> None:
        try:
            self.client.connect()
        except (HttpError, OSError) as exc:
            raise GatewayError(f"Gmail connection error: {exc}") from exc

    def is_connected(self) -> bool:
        return self.client.connected

    def search_unseen(self) -> List[str]:
        try:
            ids = self.client.list_messages(query=UNSEEN_QUERY, max_results=self.max_results)
        except HttpError as exc:
            raise GatewayError(f"Gmail search error: {exc}") from exc
        # Gmail lists newest first; the gateway contract is oldest first.
        return list(reversed(ids))

    def fetch(self, message_id: str) -> bytes:
        try:
            msg = self.client.get_message(message_id, fmt="raw")
        except HttpError as exc:
            raise GatewayError(f"Fetch error for message {message_id}: {exc}") from exc
        raw = msg.get("raw")
        if not raw:
            raise GatewayError(f"Message {message_id} has no raw payload")
        return base64.urlsafe_b64decode(raw)

    def mark_seen(self, message_id: str) -> None:
        try:
            self.client.mark_as_read(message_id)
        except HttpError as exc:
            raise GatewayError(f"Error marking email {message_id} as read: {exc}") from exc
        logger.info(f"Marked email {message_id} as read")

    def disconnect(self) -> None:
        self.client.close()


class GmailTransport:
    def __init__(self, client: GmailClient, from_address: str):
        self.client = client
        self.from_address = from_address

    def send(self, to_address: str, subject: str, body: str, in_reply_to: Optional[str] = None) -> None:
        msg = build_reply(self.from_address, to_address, subject, body, in_reply_to)
        try:
            if not self.client.connected:
                self.client.connect()
            self.client.send_message(msg.as_bytes())
        except (HttpError, OSError, RuntimeError) as exc:
            logger.error(f"Error sending email: {exc}")
            raise SendError(f"Gmail send to {to_address} failed: {exc}") from exc
        logger.info(f"Sent reply to {to_address}")
