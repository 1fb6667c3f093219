"""SQLite sink for recovered engine anomalies raised during play sessions."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4


@dataclass(frozen=True)
class StoredAnomaly:
    anomaly_id: str
    created_at_utc: str
    session_id: str
    code: str
    severity: str
    message: str
    details_json: str


class SQLiteAnomalyStore:
    """Append-only engine anomalies (degraded catalogs, misconfigured hatches, storms)."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self._db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def _initialize_schema(self) -> None:
        with self._connect() as connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS engine_anomalies (
                    anomaly_id TEXT PRIMARY KEY,
                    created_at_utc TEXT NOT NULL,
                    session_id TEXT NOT NULL,
                    code TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    message TEXT NOT NULL,
                    details_json TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_engine_anomalies_session
                ON engine_anomalies(session_id, created_at_utc DESC)
                """
            )

    def record(
        self,
        *,
        session_id: str,
        code: str,
        severity: str,
        message: str,
        details: dict[str, object] | None = None,
    ) -> StoredAnomaly:
        anomaly = StoredAnomaly(
            anomaly_id=uuid4().hex,
            created_at_utc=datetime.now(UTC).isoformat(),
            session_id=session_id,
            code=code,
            severity=severity,
            message=message,
            details_json=json.dumps(details or {}, ensure_ascii=False, sort_keys=True),
        )
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO engine_anomalies (
                    anomaly_id, created_at_utc, session_id, code, severity, message, details_json
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    anomaly.anomaly_id,
                    anomaly.created_at_utc,
                    anomaly.session_id,
                    anomaly.code,
                    anomaly.severity,
                    anomaly.message,
                    anomaly.details_json,
                ),
            )
        return anomaly

    def list_recent(
        self, *, session_id: str | None = None, limit: int = 100
    ) -> list[StoredAnomaly]:
        """Newest first, optionally restricted to one session."""
        if limit <= 0:
            raise ValueError("limit must be positive.")
        query = "SELECT * FROM engine_anomalies"
        params: tuple[object, ...] = ()
        if session_id is not None:
            query += " WHERE session_id = ?"
            params = (session_id,)
        query += " ORDER BY created_at_utc DESC LIMIT ?"
        with self._connect() as connection:
            rows = connection.execute(query, (*params, limit)).fetchall()
        return [
            StoredAnomaly(
                anomaly_id=str(row["anomaly_id"]),
                created_at_utc=str(row["created_at_utc"]),
                session_id=str(row["session_id"]),
                code=str(row["code"]),
                severity=str(row["severity"]),
                message=str(row["message"]),
                details_json=str(row["details_json"]),
            )
            for row in rows
        ]

    def prune(self, *, retention_days: int, max_rows: int) -> int:
        """Drop anomalies older than the retention window, then the oldest overflow rows."""
        if retention_days <= 0:
            raise ValueError("retention_days must be positive.")
        if max_rows <= 0:
            raise ValueError("max_rows must be positive.")
        cutoff = (datetime.now(UTC) - timedelta(days=retention_days)).isoformat()
        with self._connect() as connection:
            removed = int(
                connection.execute(
                    "DELETE FROM engine_anomalies WHERE created_at_utc < ?", (cutoff,)
                ).rowcount
            )
            row = connection.execute("SELECT COUNT(*) AS total FROM engine_anomalies").fetchone()
            overflow = max(0, int(row["total"]) - max_rows)
            if overflow:
                removed += int(
                    connection.execute(
                        """
                        DELETE FROM engine_anomalies
                        WHERE anomaly_id IN (
                            SELECT anomaly_id FROM engine_anomalies
                            ORDER BY created_at_utc ASC
                            LIMIT ?
                        )
                        """,
                        (overflow,),
                    ).rowcount
                )
        return removed
