"""
Mark every unseen message in the mailbox as read, in batches.

Maintenance tool for draining a backlog without replying: nothing is
classified, answered or escalated.
"""
import argparse
import asyncio
import logging

from inbox_responder.app.run import build_mail_clients
from inbox_responder.config.logging_setup import configure_logging
from inbox_responder.config.settings import load_settings
from inbox_responder.gateway.base import AsyncMailbox
from inbox_responder.parsing.parser import parse_message

logger = logging.getLogger("mark_all_read")

BATCH_SIZE = 100


async def mark_all_read(mailbox: AsyncMailbox, batch_size: int = BATCH_SIZE) -> int:
    await mailbox.connect()
    try:
        unseen = (await mailbox.search_unseen()).unwrap()
        logger.info(f"Found {len(unseen)} unread email IDs")
        marked = 0
        for start in range(0, len(unseen), batch_size):
            batch = unseen[start:start + batch_size]
            for message_id in batch:
                fetched = await mailbox.fetch(message_id)
                sender = parse_message(message_id, fetched.value).sender if fetched.ok else "unknown"
                result = await mailbox.mark_seen(message_id)
                if not result.ok:
                    logger.error(f"Error marking email {message_id} as read: {result.error}")
                    continue
                marked += 1
                logger.info(f"Marked email from {sender} (UID: {message_id}) as read")
            logger.info(
                f"Processed batch of {len(batch)} emails "
                f"(total processed: {min(start + len(batch), len(unseen))})"
            )
        logger.info(f"Marked {marked} emails as read")
        return marked
    finally:
        await mailbox.disconnect()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE)
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings.logs_dir)
    gateway, _transport = build_mail_clients(settings)
    timing = settings.timing
    mailbox = AsyncMailbox(
        gateway,
        timeout=timing.operation_timeout,
        retries=timing.connect_retries,
        retry_delay=timing.connect_retry_delay,
    )
    asyncio.run(mark_all_read(mailbox, args.batch_size))


if __name__ == "__main__":
    main()
