from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
RESPONSES_LOGGER_NAME = "inbox_responder.responses"

responses_logger = logging.getLogger(RESPONSES_LOGGER_NAME)


def configure_logging(logs_dir: Path, level: str = "INFO") -> None:
    """
    Route application logs to logs/mailbot.log and stderr, and sent replies
    to logs/responses.log (one JSON object per line).
    """
    logs_dir.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)

    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    file_handler = logging.FileHandler(logs_dir / "mailbot.log", encoding="utf-8")
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    for handler in list(responses_logger.handlers):
        responses_logger.removeHandler(handler)
    responses_handler = logging.FileHandler(logs_dir / "responses.log", encoding="utf-8")
    responses_handler.setFormatter(logging.Formatter("%(message)s"))
    responses_logger.addHandler(responses_handler)
    responses_logger.setLevel(logging.INFO)
    # Journal entries stay out of the main log.
    responses_logger.propagate = False


def log_response(entry: Dict[str, Any]) -> None:
    payload = {"timestamp": datetime.now(timezone.utc).isoformat(), **entry}
    responses_logger.info(json.dumps(payload, ensure_ascii=False))
