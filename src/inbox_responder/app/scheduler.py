from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from inbox_responder.config.settings import TimingSettings
from inbox_responder.gateway.base import AsyncMailbox
from inbox_responder.pipeline.engine import DecisionEngine

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, Dict[str, Any]], None]


@dataclass
class CycleSummary:
    status: str  # "idle" | "processed" | "failed"
    unseen: int = 0
    fetched: int = 0
    replied: int = 0
    escalated: int = 0
    skipped: int = 0
    previewed: int = 0
    mark_read_failures: int = 0
    error: Optional[str] = None


def next_delay(summary: CycleSummary, timing: TimingSettings) -> float:
    if summary.status == "failed":
        return timing.failure_delay
    if summary.status == "idle":
        return timing.idle_interval
    return timing.poll_interval


class CycleScheduler:
    """
    Drives poll cycles one at a time. A failed cycle never stops the loop:
    it is logged, followed by the long failure backoff, and the next cycle
    starts with a forced reconnect.
    """

    def __init__(
        self,
        mailbox: AsyncMailbox,
        engine: DecisionEngine,
        timing: TimingSettings,
        *,
        progress_cb: Optional[ProgressCallback] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.mailbox = mailbox
        self.engine = engine
        self.timing = timing
        self.progress_cb = progress_cb
        self._sleep = sleep
        self._force_reconnect = False
        self._cycle_lock = asyncio.Lock()
        self._wake = asyncio.Event()
        self._stopping = False
        self.cycles = 0

    def report(self, step: str, *, detail: str | None = None, **extra: Any) -> None:
        if not self.progress_cb:
            return
        payload: Dict[str, Any] = {"detail": detail}
        payload.update(extra)
        self.progress_cb(step, payload)

    async def run_cycle(self) -> CycleSummary:
        async with self._cycle_lock:
            try:
                summary = await self._cycle()
            except Exception as exc:
                logger.error(f"Cycle failed: {type(exc).__name__}: {exc}", exc_info=True)
                self._force_reconnect = True
                summary = CycleSummary(status="failed", error=f"{type(exc).__name__}: {exc}")
                self.report(
                    "error",
                    detail=summary.error,
                    error={"cycle": self.cycles + 1, "error": summary.error},
                )
            self.cycles += 1
            self.report("cycle_done", detail=f"Cycle {summary.status}", metrics=asdict(summary))
            return summary

    async def _cycle(self) -> CycleSummary:
        logger.info("Starting mail bot cycle")
        self.report("connect", detail="Connecting to mailbox")
        force = self._force_reconnect
        await self.mailbox.connect(force=force)
        self._force_reconnect = False

        if self.engine.pending_mark_read:
            self.report("remark", detail="Retrying mark-read for handled messages")
            if await self.engine.retry_pending_marks():
                self._force_reconnect = True

        self.report("search", detail="Searching unseen messages")
        unseen = self.engine.actionable((await self.mailbox.search_unseen()).unwrap())
        if not unseen:
            logger.info("No unread emails found")
            return CycleSummary(status="idle")

        self.report("processing", detail=f"Processing {len(unseen)} unseen message(s)")
        batch = await self.engine.run_batch(unseen)
        if batch.mark_read_failures:
            # Mark-read failures are a connection-health signal only.
            self._force_reconnect = True

        return CycleSummary(
            status="processed",
            unseen=len(unseen),
            fetched=batch.fetched,
            replied=batch.replied,
            escalated=batch.escalated,
            skipped=batch.skipped,
            previewed=batch.previewed,
            mark_read_failures=batch.mark_read_failures,
        )

    def wake(self) -> None:
        """Cut the current sleep short."""
        self._wake.set()

    def stop(self) -> None:
        self._stopping = True
        self._wake.set()

    async def pause(self, delay: float) -> None:
        if self._sleep is not None:
            await self._sleep(delay)
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass
        finally:
            self._wake.clear()

    async def run_forever(self, max_cycles: Optional[int] = None) -> None:
        try:
            while not self._stopping:
                summary = await self.run_cycle()
                if max_cycles is not None and self.cycles >= max_cycles:
                    break
                delay = next_delay(summary, self.timing)
                logger.info(f"Cycle complete ({summary.status}), sleeping for {delay:g} seconds")
                self.report("sleeping", detail=f"Sleeping {delay:g}s", delay=delay)
                await self.pause(delay)
        finally:
            await self.mailbox.disconnect()
            self.report("stopped", detail="Scheduler stopped")
