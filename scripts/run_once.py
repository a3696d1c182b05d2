import argparse
import asyncio
import json
from dataclasses import asdict

from inbox_responder.app.run import build_components
from inbox_responder.config.logging_setup import configure_logging
from inbox_responder.config.settings import load_settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a single mail cycle.")
    parser.add_argument(
        "--live",
        action="store_true",
        help="Send replies and mark messages read (default: preview only).",
    )
    args = parser.parse_args()

    # ------------------------------------------------------------------
    # Settings + logging
    # ------------------------------------------------------------------
    settings = load_settings()
    configure_logging(settings.logs_dir)

    # ------------------------------------------------------------------
    # One cycle, then disconnect
    # ------------------------------------------------------------------
    components = build_components(settings, dry_run=not args.live)

    async def once() -> dict:
        try:
            summary = await components.scheduler.run_cycle()
        finally:
            await components.mailbox.disconnect()
        return asdict(summary)

    summary = asyncio.run(once())
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
