from __future__ import annotations

from dataclasses import dataclass, field
from threading import Lock
from time import time
from typing import Any, Dict, Optional, List


@dataclass
class RunStatus:
    state: str = "idle"
    step: str = "idle"
    detail: Optional[str] = None
    metrics: Dict[str, Any] = field(default_factory=dict)
    totals: Dict[str, int] = field(default_factory=dict)
    cycles: int = 0
    # Keep a small rolling window of recent errors for UI visibility.
    recent_errors: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: float = field(default_factory=time)


TOTAL_KEYS = ("replied", "escalated", "skipped", "previewed", "mark_read_failures")


class RunStatusStore:
    def __init__(self) -> None:
        self._lock = Lock()
        self._status = RunStatus()

    def update(self, **fields: Any) -> None:
        # Lock ensures UI polling sees consistent snapshots across threads.
        with self._lock:
            for key, value in fields.items():
                if hasattr(self._status, key):
                    setattr(self._status, key, value)
            self._status.updated_at = time()

    def snapshot(self) -> Dict[str, Any]:
        # Return a copy to avoid mutation by callers.
        with self._lock:
            return {
                "state": self._status.state,
                "step": self._status.step,
                "detail": self._status.detail,
                "metrics": dict(self._status.metrics),
                "totals": dict(self._status.totals),
                "cycles": self._status.cycles,
                "recent_errors": list(self._status.recent_errors),
                "updated_at": self._status.updated_at,
            }

    def progress_cb(self, step: str, event: Dict[str, Any]) -> None:
        """Scheduler progress callback: fold one event into the status."""
        current = self.snapshot()
        status_update: Dict[str, Any] = {
            "state": "sleeping" if step == "sleeping" else ("stopped" if step == "stopped" else "running"),
            "step": step,
            "detail": event.get("detail"),
        }

        error = event.get("error")
        if error:
            # Keep most recent errors first, max 50 entries.
            status_update["recent_errors"] = ([error] + current["recent_errors"])[:50]

        if step == "cycle_done":
            metrics = event.get("metrics") or {}
            totals = dict(current["totals"])
            for key in TOTAL_KEYS:
                totals[key] = totals.get(key, 0) + int(metrics.get(key) or 0)
            status_update["metrics"] = metrics
            status_update["totals"] = totals
            status_update["cycles"] = current["cycles"] + 1
        self.update(**status_update)


run_status_store = RunStatusStore()
