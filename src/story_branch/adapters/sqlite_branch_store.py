"""SQLite-backed persistence for play sessions and their branch state."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from story_branch.core.branch_codec import (
    BRANCH_CODEC_VERSION,
    dump_branch_json,
    dump_catalog_json,
    dump_quantum_json,
    load_branch_json,
    load_catalog_json,
    load_quantum_json,
)
from story_branch.core.quantum_choice import QuantumChoice
from story_branch.domain.models import BranchState, Choice

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredSession:
    """A play session: branch, offered catalog, and any pending quantum choice."""

    session_id: str
    scenario_key: str
    seed: int
    branch: BranchState
    catalog: list[Choice]
    quantum: QuantumChoice | None
    parent_session_id: str | None
    created_at_utc: str
    updated_at_utc: str


class SQLiteBranchStore:
    """Persist sessions in one SQLite database; session id equals branch id."""

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
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    scenario_key TEXT NOT NULL,
                    seed INTEGER NOT NULL,
                    codec_version TEXT NOT NULL,
                    branch_json TEXT NOT NULL,
                    catalog_json TEXT NOT NULL,
                    quantum_json TEXT,
                    parent_session_id TEXT,
                    created_at_utc TEXT NOT NULL,
                    updated_at_utc TEXT NOT NULL
                )
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_sessions_updated
                ON sessions(updated_at_utc DESC)
                """
            )

    def create_session(
        self,
        *,
        scenario_key: str,
        seed: int,
        branch: BranchState,
        catalog: list[Choice],
        quantum: QuantumChoice | None = None,
        parent_session_id: str | None = None,
    ) -> StoredSession | None:
        """Insert a new session keyed by `branch.branch_id`; None when the id is taken."""
        now = datetime.now(UTC).isoformat()
        try:
            with self._connect() as connection:
                connection.execute(
                    """
                    INSERT INTO sessions (
                        session_id, scenario_key, seed, codec_version, branch_json,
                        catalog_json, quantum_json, parent_session_id, created_at_utc,
                        updated_at_utc
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        branch.branch_id,
                        scenario_key,
                        seed,
                        BRANCH_CODEC_VERSION,
                        dump_branch_json(branch),
                        dump_catalog_json(catalog),
                        dump_quantum_json(quantum) if quantum is not None else None,
                        parent_session_id,
                        now,
                        now,
                    ),
                )
        except sqlite3.IntegrityError:
            return None
        logger.info(
            "session.created session_id=%s scenario=%s parent=%s",
            branch.branch_id,
            scenario_key,
            parent_session_id,
        )
        return StoredSession(
            session_id=branch.branch_id,
            scenario_key=scenario_key,
            seed=seed,
            branch=branch,
            catalog=list(catalog),
            quantum=quantum,
            parent_session_id=parent_session_id,
            created_at_utc=now,
            updated_at_utc=now,
        )

    def get_session(self, *, session_id: str) -> StoredSession | None:
        with self._connect() as connection:
            row = connection.execute(
                "SELECT * FROM sessions WHERE session_id = ?", (session_id,)
            ).fetchone()
        if row is None:
            return None
        return _session_from_row(row)

    def save_session(
        self,
        *,
        session_id: str,
        branch: BranchState,
        catalog: list[Choice],
        quantum: QuantumChoice | None,
    ) -> StoredSession | None:
        """Replace branch, catalog and pending quantum choice; None when the session is unknown."""
        if branch.branch_id != session_id:
            raise ValueError(
                f"Branch '{branch.branch_id}' cannot be saved into session '{session_id}'."
            )
        now = datetime.now(UTC).isoformat()
        with self._connect() as connection:
            updated = connection.execute(
                """
                UPDATE sessions
                SET branch_json = ?, catalog_json = ?, quantum_json = ?, codec_version = ?,
                    updated_at_utc = ?
                WHERE session_id = ?
                """,
                (
                    dump_branch_json(branch),
                    dump_catalog_json(catalog),
                    dump_quantum_json(quantum) if quantum is not None else None,
                    BRANCH_CODEC_VERSION,
                    now,
                    session_id,
                ),
            )
            if updated.rowcount == 0:
                return None
        return self.get_session(session_id=session_id)

    def list_sessions(self, *, limit: int = 50) -> list[StoredSession]:
        if limit <= 0:
            raise ValueError("limit must be positive.")
        with self._connect() as connection:
            rows = connection.execute(
                "SELECT * FROM sessions ORDER BY updated_at_utc DESC LIMIT ?", (limit,)
            ).fetchall()
        return [_session_from_row(row) for row in rows]

    def load_branch(self, *, branch_id: str) -> BranchState | None:
        stored = self.get_session(session_id=branch_id)
        return stored.branch if stored is not None else None

    def save_branch(self, branch: BranchState) -> None:
        """Update only the branch of an existing session."""
        now = datetime.now(UTC).isoformat()
        with self._connect() as connection:
            updated = connection.execute(
                """
                UPDATE sessions
                SET branch_json = ?, codec_version = ?, updated_at_utc = ?
                WHERE session_id = ?
                """,
                (dump_branch_json(branch), BRANCH_CODEC_VERSION, now, branch.branch_id),
            )
        if updated.rowcount == 0:
            raise KeyError(f"No session stored for branch '{branch.branch_id}'.")


def _session_from_row(row: sqlite3.Row) -> StoredSession:
    codec_version = str(row["codec_version"])
    if codec_version != BRANCH_CODEC_VERSION:
        raise ValueError(
            f"Session '{row['session_id']}' uses unsupported codec version '{codec_version}'."
        )
    quantum_json = row["quantum_json"]
    return StoredSession(
        session_id=str(row["session_id"]),
        scenario_key=str(row["scenario_key"]),
        seed=int(row["seed"]),
        branch=load_branch_json(str(row["branch_json"])),
        catalog=load_catalog_json(str(row["catalog_json"])),
        quantum=load_quantum_json(str(quantum_json)) if quantum_json is not None else None,
        parent_session_id=(
            str(row["parent_session_id"]) if row["parent_session_id"] is not None else None
        ),
        created_at_utc=str(row["created_at_utc"]),
        updated_at_utc=str(row["updated_at_utc"]),
    )
