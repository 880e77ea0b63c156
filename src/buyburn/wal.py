"""Action journal — append-only write-ahead log, one fsync'd JSON line per record.

Record shape: ``{"event_id", "record_type", "ts_utc", "payload"}`` serialised
with sorted keys, ASCII only, UTC ISO timestamps.

Every engine action writes ACTION_INTENT before it touches funds and closes
it with exactly one ACTION_RESULT or ACTION_ABORTED (matched on
``payload.action_id``).  CONFIG_CHANGED records owner mutations.  An intent
that is never closed means the process died mid-action; replay surfaces it
as PENDING_UNKNOWN for manual reconciliation.

Any write or fsync failure raises WALSyncError and the caller must stop.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)

ACTION_INTENT = "ACTION_INTENT"
ACTION_RESULT = "ACTION_RESULT"
ACTION_ABORTED = "ACTION_ABORTED"
CONFIG_CHANGED = "CONFIG_CHANGED"

VALID_RECORD_TYPES = frozenset({ACTION_INTENT, ACTION_RESULT, ACTION_ABORTED, CONFIG_CHANGED})
CLOSING_RECORD_TYPES = frozenset({ACTION_RESULT, ACTION_ABORTED})

PENDING_UNKNOWN = "PENDING_UNKNOWN"


class WALSyncError(Exception):
    """The journal could not be written or read back; halt."""


def _canonical(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, ensure_ascii=True)


def record_hash(record: Dict[str, Any]) -> bytes:
    """Content hash of a record, independent of where it sits in the file."""
    body = {k: record[k] for k in ("event_id", "record_type", "payload")}
    return hashlib.sha256(_canonical(body).encode("utf-8")).digest()


class WALWriter:
    """Appends records to the journal file, fsyncing after each one."""

    def __init__(self, wal_path: str) -> None:
        self.path = Path(wal_path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fd = None  # type: Optional[int]

    def open(self) -> None:
        self._fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o640)

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def __enter__(self) -> WALWriter:
        self.open()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def write(self, record_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Append one record; returns it with its ``payload_hash``."""
        if record_type not in VALID_RECORD_TYPES:
            raise ValueError("Invalid WAL record type: {}".format(record_type))
        if self._fd is None:
            raise WALSyncError("WAL not opened: call open() first")

        record = {
            "event_id": str(uuid.uuid4()),
            "record_type": record_type,
            "ts_utc": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }  # type: Dict[str, Any]
        data = (_canonical(record) + "\n").encode("utf-8")

        try:
            os.write(self._fd, data)
            os.fsync(self._fd)
        except OSError as e:
            raise WALSyncError("WAL fsync failed: {}".format(e)) from e

        record["payload_hash"] = record_hash(record).hex()
        logger.debug("WAL %s %s", record_type, record["event_id"])
        return record


class WALReader:
    """Reads journal records back in file order."""

    def __init__(self, wal_path: str) -> None:
        self.path = Path(wal_path)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        if not self.path.is_file():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.error("WAL parse error at line %d: %s", line_num, e)
                    raise WALSyncError("WAL corrupted at line {}: {}".format(line_num, e)) from e
                record["_line_num"] = line_num
                yield record

    def read_all(self) -> List[Dict[str, Any]]:
        return list(self)


def find_open_intents(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """ACTION_INTENT records, by action_id, that were never closed."""
    open_intents = {}  # type: Dict[str, Dict[str, Any]]
    for rec in records:
        action_id = rec.get("payload", {}).get("action_id") or rec.get("event_id", "")
        if rec.get("record_type") == ACTION_INTENT:
            open_intents[action_id] = rec
        elif rec.get("record_type") in CLOSING_RECORD_TYPES:
            open_intents.pop(action_id, None)
    return open_intents


async def _insert_event(pool: Any, rec: Dict[str, Any]) -> bool:
    payload = rec.get("payload", {})
    status = await pool.execute(
        """
        INSERT INTO event_log (event_id, ts_utc, type, action_id, payload, payload_hash)
        VALUES ($1, $2, $3, $4, $5, $6)
        ON CONFLICT (payload_hash) DO NOTHING
        """,
        uuid.UUID(rec["event_id"]),
        datetime.fromisoformat(rec["ts_utc"]),
        rec["record_type"],
        payload.get("action_id"),
        _canonical(payload),
        record_hash(rec),
    )
    return "INSERT 0 1" in status


async def _record_open_intent(pool: Any, action_id: str, intent: Dict[str, Any]) -> None:
    payload = intent.get("payload", {})
    await pool.execute(
        """
        INSERT INTO action_log (action_id, action, status, payload, created_at_utc)
        VALUES ($1, $2, $3, $4, $5)
        ON CONFLICT (action_id) DO NOTHING
        """,
        action_id,
        payload.get("action", "UNKNOWN"),
        PENDING_UNKNOWN,
        _canonical(payload),
        datetime.now(timezone.utc),
    )


async def replay_wal(wal_path: str, pool: Any) -> Dict[str, int]:
    """Copy the journal into event_log and flag open intents in action_log.

    Safe to run repeatedly: rows already present are counted as skipped.
    Any DB failure raises WALSyncError.
    """
    records = WALReader(str(wal_path)).read_all()
    stats = {"inserted": 0, "skipped": 0, "open_intents": 0}

    for rec in records:
        try:
            inserted = await _insert_event(pool, rec)
        except Exception as e:
            raise WALSyncError(
                "WAL replay DB insert failed for event {}: {}".format(rec.get("event_id"), e)
            ) from e
        stats["inserted" if inserted else "skipped"] += 1

    for action_id, intent in find_open_intents(records).items():
        logger.warning("Action %s has no result in the WAL; marking %s", action_id, PENDING_UNKNOWN)
        try:
            await _record_open_intent(pool, action_id, intent)
        except Exception as e:
            raise WALSyncError(
                "WAL open-intent record failed for action {}: {}".format(action_id, e)
            ) from e
        stats["open_intents"] += 1

    logger.info(
        "WAL replay: inserted=%d skipped=%d open_intents=%d",
        stats["inserted"], stats["skipped"], stats["open_intents"],
    )
    return stats
