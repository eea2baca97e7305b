"""Poll, contributor and contribution storage backed by SQLite."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Set, Tuple

from scoring.errors import StorageError, ValidationError
from scoring.models import (
    Candidate,
    Contribution,
    Contributor,
    Identity,
    Poll,
    Role,
    parse_iso,
    to_iso,
)
from shared.logging.logger import get_logger

log = get_logger("shared.contributions.store")

DEFAULT_DB_PATH = Path("data/scoring.db")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ContributionStore:
    """
    Durable store for the scoring core.

    The UNIQUE (poll_id, candidate_id, contributor_id) constraint on
    contributions is the only concurrency guard for writes: inserts are
    attempted first and a constraint violation means the row already exists.
    """

    def __init__(
        self,
        db_path: Path | str = DEFAULT_DB_PATH,
        *,
        timeout: float = 5.0,
    ) -> None:
        self._db_path = Path(db_path)
        self._timeout = timeout
        self._schema_lock = threading.Lock()

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    # ------------------------------------------------------------------
    # SQLite setup
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=self._timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Short-lived connection; commits on success, always closes."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to open {self._db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as exc:
            log.warning(f"Storage call failed: {exc}")
            raise StorageError(f"Storage call failed: {exc}") from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._schema_lock, self._session() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS polls (
                    poll_id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT,
                    start_at TEXT NOT NULL,
                    end_at TEXT NOT NULL,
                    admin_id TEXT NOT NULL,
                    judge2_id TEXT NOT NULL,
                    judge3_id TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS candidates (
                    candidate_id TEXT NOT NULL,
                    poll_id TEXT NOT NULL REFERENCES polls(poll_id),
                    name TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    description TEXT,
                    PRIMARY KEY (poll_id, candidate_id),
                    UNIQUE (poll_id, position)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contributors (
                    contributor_id TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    email TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS contributions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    poll_id TEXT NOT NULL,
                    candidate_id TEXT NOT NULL,
                    contributor_id TEXT NOT NULL,
                    role TEXT NOT NULL CHECK (role IN ('judge', 'public')),
                    value REAL NOT NULL CHECK (value >= 0 AND value <= 10),
                    created_at TEXT NOT NULL,
                    UNIQUE (poll_id, candidate_id, contributor_id),
                    FOREIGN KEY (poll_id, candidate_id)
                        REFERENCES candidates(poll_id, candidate_id)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_contributions_poll
                ON contributions(poll_id, id)
                """
            )

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_poll(row: sqlite3.Row) -> Poll:
        return Poll(
            poll_id=row["poll_id"],
            title=row["title"],
            description=row["description"],
            start_at=parse_iso(row["start_at"]),
            end_at=parse_iso(row["end_at"]),
            admin_id=row["admin_id"],
            judge_ids=(row["judge2_id"], row["judge3_id"]),
        )

    @staticmethod
    def _row_to_candidate(row: sqlite3.Row) -> Candidate:
        return Candidate(
            candidate_id=row["candidate_id"],
            poll_id=row["poll_id"],
            name=row["name"],
            position=int(row["position"]),
            description=row["description"],
        )

    @staticmethod
    def _row_to_contribution(row: sqlite3.Row) -> Contribution:
        return Contribution(
            poll_id=row["poll_id"],
            candidate_id=row["candidate_id"],
            contributor_id=row["contributor_id"],
            role=Role(row["role"]),
            value=float(row["value"]),
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Polls and candidates (written by the authoring flow)
    # ------------------------------------------------------------------

    def save_poll(self, poll: Poll, candidates: Sequence[Candidate]) -> None:
        try:
            with self._session() as conn:
                conn.execute(
                    """
                    INSERT INTO polls (
                        poll_id, title, description, start_at, end_at,
                        admin_id, judge2_id, judge3_id
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        poll.poll_id,
                        poll.title,
                        poll.description,
                        to_iso(poll.start_at),
                        to_iso(poll.end_at),
                        poll.admin_id,
                        poll.judge_ids[0],
                        poll.judge_ids[1],
                    ),
                )
                conn.executemany(
                    """
                    INSERT INTO candidates (
                        candidate_id, poll_id, name, position, description
                    ) VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (c.candidate_id, poll.poll_id, c.name, c.position, c.description)
                        for c in candidates
                    ],
                )
        except sqlite3.IntegrityError as exc:
            raise ValidationError(
                f"Poll {poll.poll_id} could not be saved: {exc}",
                details={"poll_id": poll.poll_id},
            ) from exc
        log.info(f"[{poll.poll_id}] Poll saved with {len(candidates)} candidate(s)")

    def get_poll(self, poll_id: str) -> Optional[Poll]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM polls WHERE poll_id = ?",
                (poll_id,),
            ).fetchone()
        return self._row_to_poll(row) if row else None

    def list_poll_ids(self) -> List[str]:
        with self._session() as conn:
            rows = conn.execute("SELECT poll_id FROM polls ORDER BY start_at").fetchall()
        return [row["poll_id"] for row in rows]

    def list_candidates(self, poll_id: str) -> List[Candidate]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM candidates WHERE poll_id = ? ORDER BY position",
                (poll_id,),
            ).fetchall()
        return [self._row_to_candidate(row) for row in rows]

    def get_candidate(self, poll_id: str, candidate_id: str) -> Optional[Candidate]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM candidates WHERE poll_id = ? AND candidate_id = ?",
                (poll_id, candidate_id),
            ).fetchone()
        return self._row_to_candidate(row) if row else None

    # ------------------------------------------------------------------
    # Contributors
    # ------------------------------------------------------------------

    def ensure_contributor(self, identity: Identity) -> bool:
        """Provision a contributor record. Returns True if it was created."""
        with self._session() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO contributors (
                    contributor_id, display_name, email, created_at
                ) VALUES (?, ?, ?, ?)
                """,
                (
                    identity.contributor_id,
                    identity.display_name or identity.email or identity.contributor_id,
                    identity.email,
                    _utc_now_iso(),
                ),
            )
            return cursor.rowcount == 1

    def get_contributor(self, contributor_id: str) -> Optional[Contributor]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM contributors WHERE contributor_id = ?",
                (contributor_id,),
            ).fetchone()
        if not row:
            return None
        return Contributor(
            contributor_id=row["contributor_id"],
            display_name=row["display_name"],
            email=row["email"],
            created_at=row["created_at"],
        )

    # ------------------------------------------------------------------
    # Contributions
    # ------------------------------------------------------------------

    def _find_contribution(
        self, conn: sqlite3.Connection, key: Tuple[str, str, str]
    ) -> Optional[Contribution]:
        row = conn.execute(
            """
            SELECT * FROM contributions
            WHERE poll_id = ? AND candidate_id = ? AND contributor_id = ?
            """,
            key,
        ).fetchone()
        return self._row_to_contribution(row) if row else None

    def insert_contribution(self, contribution: Contribution) -> Tuple[bool, Contribution]:
        """
        Insert a contribution row.

        Returns (True, contribution) when the row was written, or
        (False, existing) when a row for the same key is already stored.
        """
        try:
            with self._session() as conn:
                conn.execute(
                    """
                    INSERT INTO contributions (
                        poll_id, candidate_id, contributor_id, role, value, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        contribution.poll_id,
                        contribution.candidate_id,
                        contribution.contributor_id,
                        contribution.role.value,
                        float(contribution.value),
                        contribution.created_at,
                    ),
                )
            return True, contribution
        except sqlite3.IntegrityError as exc:
            integrity_error = exc

        with self._session() as conn:
            existing = self._find_contribution(conn, contribution.key)
        if existing is None:
            raise ValidationError(
                f"Contribution rejected by storage: {integrity_error}",
                details={
                    "poll_id": contribution.poll_id,
                    "candidate_id": contribution.candidate_id,
                },
            )
        return False, existing

    def get_contribution(
        self, poll_id: str, candidate_id: str, contributor_id: str
    ) -> Optional[Contribution]:
        with self._session() as conn:
            return self._find_contribution(conn, (poll_id, candidate_id, contributor_id))

    def contributions_for(self, poll_id: str) -> List[Contribution]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM contributions WHERE poll_id = ? ORDER BY id",
                (poll_id,),
            ).fetchall()
        return [self._row_to_contribution(row) for row in rows]

    def count_contributions(self, poll_id: str) -> int:
        with self._session() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM contributions WHERE poll_id = ?",
                (poll_id,),
            ).fetchone()
        return int(row["n"])

    def candidates_scored_by(self, poll_id: str, contributor_id: str) -> Set[str]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT candidate_id FROM contributions
                WHERE poll_id = ? AND contributor_id = ?
                """,
                (poll_id, contributor_id),
            ).fetchall()
        return {row["candidate_id"] for row in rows}


__all__ = ["ContributionStore", "DEFAULT_DB_PATH"]
