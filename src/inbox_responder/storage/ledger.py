from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Protocol

from inbox_responder.models import LedgerError, ReviewRecord

logger = logging.getLogger(__name__)


class ReviewLedger(Protocol):
    """
    Append-only record of escalated messages.

    Single-writer: only one pipeline may append at a time. Records are never
    mutated or removed here; operators retire them out of band.
    """

    def append(self, record: ReviewRecord) -> None: ...

    def read_all(self) -> List[ReviewRecord]: ...


class JsonReviewLedger:
    """Ledger stored as one JSON list, rewritten atomically on every append."""

    def __init__(self, path: Path):
        self.path = path

    def _read_entries(self) -> list:
        """
        Current list exactly as stored. Raises LedgerError when an existing
        file cannot be read or is not a JSON list, so an append never
        overwrites records it could not see.
        """
        if not self.path.exists():
            return []
        try:
            text = self.path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise LedgerError(f"Review ledger {self.path} is unreadable: {exc}") from exc
        if not text.strip():
            return []
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise LedgerError(f"Review ledger {self.path} is corrupt: {exc}") from exc
        if not isinstance(data, list):
            raise LedgerError(f"Review ledger {self.path} does not hold a JSON list")
        return data

    def _load_raw(self) -> list:
        try:
            data = self._read_entries()
        except LedgerError as exc:
            logger.warning(f"{exc}, treating as empty")
            return []
        return [entry for entry in data if isinstance(entry, dict)]

    def read_all(self) -> List[ReviewRecord]:
        return [ReviewRecord.from_dict(entry) for entry in self._load_raw()]

    def append(self, record: ReviewRecord) -> None:
        entries = self._read_entries()
        entries.append(record.to_dict())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(entries, handle, indent=2, ensure_ascii=False)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise LedgerError(f"Could not write review ledger {self.path}: {exc}") from exc
        logger.info(f"Flagged email from {record.sender} for manual review ({', '.join(record.keywords)})")
