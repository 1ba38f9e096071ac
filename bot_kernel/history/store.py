"""
Run History Store — append-only record of finished runs.

Behavioral Contract:
- Append-only. No record is ever modified or deleted.
- Each record is hashed and chained to the previous one, so a history
  file that was edited by hand is detectable.
- Fed by `run_finished` events; the orchestrator never writes here directly.
- Queryable by recency and by finish reason.
"""

import hashlib
import json
import logging
import sqlite3
import threading
from typing import Any, List, Optional

from bot_kernel.events.bus import EventBus, EventName
from bot_kernel.models.history import FinishReason, RunRecord

logger = logging.getLogger(__name__)


def _sign(record: RunRecord) -> str:
    record_dict = record.model_dump(mode="json")
    record_dict["signature"] = ""
    record_bytes = json.dumps(record_dict, sort_keys=True, default=str).encode()
    return hashlib.sha256(record_bytes).hexdigest()


class RunHistoryStore:
    """SQLite-backed; ":memory:" by default."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS runs (
                id TEXT PRIMARY KEY,
                session TEXT NOT NULL,
                run_name TEXT NOT NULL,
                reason TEXT NOT NULL,
                duration_seconds REAL NOT NULL,
                signature TEXT NOT NULL,
                prior_record_hash TEXT,
                record_json TEXT NOT NULL,
                created_at TEXT NOT NULL DEFAULT (datetime('now'))
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_runs_session ON runs(session)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_runs_reason ON runs(reason)
        """)
        self._conn.commit()

    def attach(self, events: EventBus) -> None:
        """Record every `run_finished` emitted on `events`."""
        events.subscribe(EventName.RUN_FINISHED, self._on_run_finished)

    def detach(self, events: EventBus) -> None:
        events.unsubscribe(EventName.RUN_FINISHED, self._on_run_finished)

    def _on_run_finished(
        self,
        session: str,
        run_name: str,
        reason: FinishReason,
        duration: float,
        error: Optional[str] = None,
        **_: Any,
    ) -> RunRecord:
        return self.append(RunRecord(
            session=session,
            run_name=run_name,
            reason=reason,
            duration_seconds=duration,
            error=error,
        ))

    def append(self, record: RunRecord) -> RunRecord:
        with self._lock:
            record.prior_record_hash = self._get_latest_hash()
            record.signature = _sign(record)
            full_json = json.dumps(record.model_dump(mode="json"), default=str)

            self._conn.execute(
                """
                INSERT INTO runs (
                    id, session, run_name, reason, duration_seconds,
                    signature, prior_record_hash, record_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.session,
                    record.run_name,
                    record.reason.value,
                    record.duration_seconds,
                    record.signature,
                    record.prior_record_hash,
                    full_json,
                ),
            )
            self._conn.commit()
        logger.debug(
            "Recorded run: session=%s run=%s reason=%s duration=%.1fs",
            record.session, record.run_name, record.reason.value, record.duration_seconds,
        )
        return record

    def _get_latest_hash(self) -> Optional[str]:
        row = self._conn.execute(
            "SELECT signature FROM runs ORDER BY rowid DESC LIMIT 1"
        ).fetchone()
        return row["signature"] if row else None

    def _deserialize(self, row: sqlite3.Row) -> RunRecord:
        return RunRecord.model_validate_json(row["record_json"])

    def recent(self, limit: int = 50) -> List[RunRecord]:
        """Most recent runs, oldest first."""
        rows = self._conn.execute(
            "SELECT record_json FROM runs ORDER BY rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [self._deserialize(r) for r in reversed(rows)]

    def by_reason(self, reason: FinishReason) -> List[RunRecord]:
        rows = self._conn.execute(
            "SELECT record_json FROM runs WHERE reason = ? ORDER BY rowid",
            (FinishReason(reason).value,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def by_session(self, session: str) -> List[RunRecord]:
        rows = self._conn.execute(
            "SELECT record_json FROM runs WHERE session = ? ORDER BY rowid",
            (session,),
        ).fetchall()
        return [self._deserialize(r) for r in rows]

    def verify_chain_integrity(self) -> bool:
        rows = self._conn.execute(
            "SELECT record_json, signature FROM runs ORDER BY rowid"
        ).fetchall()
        previous: Optional[str] = None
        for row in rows:
            record = self._deserialize(row)
            if record.signature != _sign(record) or record.signature != row["signature"]:
                return False
            if record.prior_record_hash != previous:
                return False
            previous = record.signature
        return True

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) as cnt FROM runs").fetchone()
        return row["cnt"]

    def close(self) -> None:
        self._conn.close()
