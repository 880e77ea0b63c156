"""Observability — engine event log and abort reason codes.

Every aborted action is tagged with one code from ABORT_REASONS; the log
keeps a bounded history plus per-code abort counters for ``stats``.
"""

from __future__ import annotations

import logging
import time
from collections import Counter, deque
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

ABORT_REASONS = frozenset({
    "ACCESS_DENIED",
    "CALLER_NOT_ORIGINATOR",
    "RATE_LIMITED",
    "PAUSED",
    "PRICE_DEVIATION_EXCEEDED",
    "NO_FUNDS_AVAILABLE",
    "INVALID_FEE_SOURCE",
    "VERSION_ALREADY_APPLIED",
    "TRANSFER_FAILED",
    # Raised by a collaborator outside the engine's taxonomy
    "UNEXPECTED_ERROR",
})

EVENT_ACTION_COMMITTED = "ACTION_COMMITTED"
EVENT_ACTION_ABORTED = "ACTION_ABORTED"
EVENT_HARVESTED = "HARVESTED"
EVENT_CONFIG_CHANGED = "CONFIG_CHANGED"

EVENT_HISTORY = 100


class EventLog:
    """In-memory engine events, newest last."""

    def __init__(self, history: int = EVENT_HISTORY) -> None:
        self._events = deque(maxlen=history)  # type: Deque[Dict[str, Any]]
        self._total = 0
        self._aborts = Counter()  # type: Counter[str]

    def log_event(
        self,
        event_type: str,
        action: Optional[str] = None,
        reason_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if reason_code is not None and reason_code not in ABORT_REASONS:
            logger.warning("Unknown abort reason %s; recording as UNEXPECTED_ERROR", reason_code)
            reason_code = "UNEXPECTED_ERROR"

        self._events.append({
            "ts": time.time(),
            "event_type": event_type,
            "action": action,
            "reason_code": reason_code,
            "details": details or {},
        })
        self._total += 1
        if reason_code is not None:
            self._aborts[reason_code] += 1

        logger.info("Event: type=%s action=%s reason=%s", event_type, action or "-", reason_code or "-")

    @property
    def abort_stats(self) -> Dict[str, int]:
        return dict(self._aborts)

    @property
    def recent_events(self) -> List[Dict[str, Any]]:
        return list(self._events)

    @property
    def stats(self) -> Dict[str, Any]:
        return {
            "total_events": self._total,
            "abort_breakdown": self.abort_stats,
            "unique_reasons": len(self._aborts),
        }
