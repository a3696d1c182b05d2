# src/inbox_responder/app/run.py
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from inbox_responder.actions.executor import default_executor
from inbox_responder.app.scheduler import CycleScheduler, ProgressCallback
from inbox_responder.compose.composer import ReplyComposer
from inbox_responder.config.logging_setup import configure_logging
from inbox_responder.config.settings import PROVIDER_GMAIL, Settings, load_settings
from inbox_responder.gateway.base import AsyncMailbox, MailboxGateway, OutboundTransport
from inbox_responder.gateway.imap import ImapGateway
from inbox_responder.language.detect import LanguageDetector
from inbox_responder.models import ConfigError
from inbox_responder.pipeline.engine import DecisionEngine
from inbox_responder.rules.classification import Classifier
from inbox_responder.storage.ledger import JsonReviewLedger
from inbox_responder.transport.smtp import SmtpTransport

logger = logging.getLogger(__name__)


@dataclass
class Components:
    settings: Settings
    mailbox: AsyncMailbox
    engine: DecisionEngine
    scheduler: CycleScheduler
    ledger: JsonReviewLedger


def build_mail_clients(settings: Settings) -> Tuple[MailboxGateway, OutboundTransport]:
    if settings.provider == PROVIDER_GMAIL:
        # Imported lazily so IMAP deployments do not need Google credentials.
        from inbox_responder.gmail.client import (
            GmailClient,
            GmailGateway,
            GmailTransport,
            gmail_config_from_settings,
        )

        client = GmailClient(gmail_config_from_settings(settings))
        return GmailGateway(client), GmailTransport(client, settings.email_address)

    return ImapGateway.from_settings(settings), SmtpTransport.from_settings(settings)


def build_components(
    settings: Settings,
    *,
    dry_run: bool = False,
    progress_cb: Optional[ProgressCallback] = None,
) -> Components:
    """Construct every pipeline component from the one Settings value."""
    gateway, transport = build_mail_clients(settings)
    timing = settings.timing
    mailbox = AsyncMailbox(
        gateway,
        timeout=timing.operation_timeout,
        retries=timing.connect_retries,
        retry_delay=timing.connect_retry_delay,
    )
    ledger = JsonReviewLedger(settings.reviews_path)
    engine = DecisionEngine(
        mailbox,
        Classifier(settings.keywords),
        ReplyComposer.from_settings(settings),
        LanguageDetector.from_api_key(
            settings.openai_api_key, settings.language_model, timing.generation_timeout
        ),
        default_executor(
            transport,
            ledger,
            send_timeout=timing.send_timeout,
            dry_run=dry_run,
            # Gmail sends go through the same API client as the mailbox.
            session_lock=mailbox.session_lock if settings.provider == PROVIDER_GMAIL else None,
        ),
        own_address=settings.email_address,
        no_reply_patterns=settings.no_reply_patterns,
        max_batch_size=settings.max_batch_size,
    )
    scheduler = CycleScheduler(mailbox, engine, timing, progress_cb=progress_cb)
    return Components(settings=settings, mailbox=mailbox, engine=engine, scheduler=scheduler, ledger=ledger)


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="inbox-responder",
        description="Poll the mailbox, auto-reply where safe and escalate the rest for review.",
    )
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Decide and log only: no replies, no review records, nothing marked read.",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser.parse_args(argv)


async def run(settings: Settings, *, once: bool = False, dry_run: bool = False) -> int:
    components = build_components(settings, dry_run=dry_run)
    await components.scheduler.run_forever(max_cycles=1 if once else None)
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    configure_logging(settings.logs_dir, args.log_level)
    try:
        return asyncio.run(run(settings, once=args.once, dry_run=args.dry_run))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 130


if __name__ == "__main__":
    sys.exit(main())
