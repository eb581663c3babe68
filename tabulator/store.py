from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from pydantic import ValidationError

from tabulator.errors import (
    EventNotFound,
    LockedEvent,
    MalformedRecord,
    ParticipantNotFound,
    StoreBusy,
    ValidationFailure,
)
from tabulator.models import Event, Participant, Score, User
from tabulator.realtime import ChangeKind, ScoreChange, ScoreFeed

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    type TEXT NOT NULL,
    criteria TEXT NOT NULL DEFAULT '[]',
    rounds TEXT NOT NULL DEFAULT '[]',
    is_locked INTEGER NOT NULL DEFAULT 0,
    event_admin_id TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS participants (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    district TEXT NOT NULL,
    event_id TEXT NOT NULL
);

-- one score per (judge, participant); later submissions replace it in place
CREATE TABLE IF NOT EXISTS scores (
    id TEXT PRIMARY KEY,
    judge_id TEXT NOT NULL,
    participant_id TEXT NOT NULL,
    event_id TEXT NOT NULL,
    entries TEXT NOT NULL DEFAULT '{}',
    deductions REAL NOT NULL DEFAULT 0 CHECK (deductions >= 0),
    total_score REAL NOT NULL DEFAULT 0 CHECK (total_score >= 0),
    critique TEXT,
    updated_at TEXT NOT NULL,
    UNIQUE(judge_id, participant_id)
);

CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    role TEXT NOT NULL,
    assigned_event_id TEXT,
    email TEXT
);

CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def new_id() -> str:
    return uuid.uuid4().hex


def _validated(model, table: str, row: sqlite3.Row, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedRecord(table, row["id"], e.errors()[0]["msg"]) from e


def _load_json(table: str, row: sqlite3.Row, column: str):
    try:
        return json.loads(row[column])
    except (TypeError, ValueError) as e:
        raise MalformedRecord(table, row["id"], f"{column} is not valid JSON") from e


def event_from_row(row: sqlite3.Row) -> Event:
    if row["type"] == "JUDGED":
        fmt = {"type": "JUDGED", "criteria": _load_json("events", row, "criteria")}
    elif row["type"] == "QUIZ":
        fmt = {"type": "QUIZ", "rounds": _load_json("events", row, "rounds")}
    else:
        raise MalformedRecord("events", row["id"], f"unknown event type {row['type']!r}")
    return _validated(Event, "events", row, {
        "id": row["id"],
        "name": row["name"],
        "format": fmt,
        "is_locked": bool(row["is_locked"]),
        "event_admin_id": row["event_admin_id"],
    })


def participant_from_row(row: sqlite3.Row) -> Participant:
    return _validated(Participant, "participants", row, dict(row))


def score_from_row(row: sqlite3.Row) -> Score:
    return _validated(Score, "scores", row, {
        "id": row["id"],
        "judge_id": row["judge_id"],
        "participant_id": row["participant_id"],
        "event_id": row["event_id"],
        "entries": _load_json("scores", row, "entries"),
        "deductions": row["deductions"],
        "total_score": row["total_score"],
        "critique": row["critique"],
    })


def profile_from_row(row: sqlite3.Row) -> User:
    return _validated(User, "profiles", row, dict(row))


class RecordStore:
    """
    sqlite-backed record store for events, participants, scores,
    profiles and settings.

    Every call opens its own connection, so the store can be used from
    worker threads. Score upserts are published on ``feed`` after commit.
    """

    def __init__(self, db_path: str, feed: Optional[ScoreFeed] = None, busy_timeout: float = 10.0):
        self.db_path = db_path
        self.feed = feed or ScoreFeed()
        self.busy_timeout = busy_timeout

    # -----------------------
    # Connections
    # -----------------------
    @contextmanager
    def db(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction holding the database write lock from the first read."""
        conn = sqlite3.connect(self.db_path, timeout=self.busy_timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                logger.warning(f"Write lock not acquired within {self.busy_timeout}s: {e}")
                raise StoreBusy(e) from e
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def init_db(self) -> None:
        with self.db() as conn:
            conn.executescript(SCHEMA)

            # Older databases may predate the uniqueness constraint on scores
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS ux_scores_judge_participant "
                "ON scores(judge_id, participant_id)"
            )
            cols = [r["name"] for r in conn.execute("PRAGMA table_info(scores)").fetchall()]
            if "critique" not in cols:
                conn.execute("ALTER TABLE scores ADD COLUMN critique TEXT")
        logger.info(f"Record store ready at {self.db_path}")

    # -----------------------
    # Events
    # -----------------------
    def list_events(self) -> List[Event]:
        with self.db() as conn:
            rows = conn.execute("SELECT * FROM events ORDER BY rowid").fetchall()
        return [event_from_row(r) for r in rows]

    def get_event(self, event_id: str) -> Event:
        with self.db() as conn:
            row = conn.execute("SELECT * FROM events WHERE id=?", (event_id,)).fetchone()
        if not row:
            raise EventNotFound(event_id)
        return event_from_row(row)

    def insert_event(self, event: Event) -> Event:
        criteria, rounds = self._format_columns(event)
        try:
            with self.db() as conn:
                conn.execute(
                    "INSERT INTO events(id, name, type, criteria, rounds, is_locked, event_admin_id, created_at) "
                    "VALUES(?,?,?,?,?,?,?,?)",
                    (event.id, event.name, event.type.value, criteria, rounds,
                     int(event.is_locked), event.event_admin_id, datetime.utcnow().isoformat()),
                )
        except sqlite3.IntegrityError as e:
            raise ValidationFailure(f"Could not create event {event.id}: {e}") from e
        return event

    def update_event(self, event: Event) -> Event:
        criteria, rounds = self._format_columns(event)
        with self.db() as conn:
            cur = conn.execute(
                "UPDATE events SET name=?, type=?, criteria=?, rounds=?, is_locked=?, event_admin_id=? WHERE id=?",
                (event.name, event.type.value, criteria, rounds,
                 int(event.is_locked), event.event_admin_id, event.id),
            )
            if cur.rowcount == 0:
                raise EventNotFound(event.id)
        return event

    def set_event_lock(self, event_id: str, locked: bool) -> Event:
        with self.db() as conn:
            cur = conn.execute("UPDATE events SET is_locked=? WHERE id=?", (int(locked), event_id))
            if cur.rowcount == 0:
                raise EventNotFound(event_id)
        logger.info(f"Event {event_id} {'locked' if locked else 'unlocked'}")
        return self.get_event(event_id)

    def toggle_event_lock(self, event_id: str) -> Event:
        """Flip the lock in a single statement so concurrent toggles all count."""
        with self.db() as conn:
            cur = conn.execute("UPDATE events SET is_locked = 1 - is_locked WHERE id=?", (event_id,))
            if cur.rowcount == 0:
                raise EventNotFound(event_id)
        event = self.get_event(event_id)
        logger.info(f"Event {event_id} {'locked' if event.is_locked else 'unlocked'}")
        return event

    def delete_event(self, event_id: str) -> None:
        """Delete an event together with its participants and scores."""
        with self.db() as conn:
            cur = conn.execute("DELETE FROM events WHERE id=?", (event_id,))
            if cur.rowcount == 0:
                raise EventNotFound(event_id)
            conn.execute("DELETE FROM scores WHERE event_id=?", (event_id,))
            conn.execute("DELETE FROM participants WHERE event_id=?", (event_id,))
        logger.info(f"Deleted event {event_id} with its participants and scores")

    @staticmethod
    def _format_columns(event: Event):
        fmt = event.format
        criteria = [c.model_dump() for c in getattr(fmt, "criteria", [])]
        rounds = [r.model_dump() for r in getattr(fmt, "rounds", [])]
        return json.dumps(criteria), json.dumps(rounds)

    # -----------------------
    # Participants
    # -----------------------
    def list_participants(self, event_id: Optional[str] = None, search: Optional[str] = None) -> List[Participant]:
        sql = "SELECT * FROM participants WHERE 1=1"
        params: list = []
        if event_id is not None:
            sql += " AND event_id=?"
            params.append(event_id)
        if search and search.strip():
            needle = f"%{search.strip().lower()}%"
            sql += " AND (lower(name) LIKE ? OR lower(district) LIKE ?)"
            params.extend([needle, needle])
        sql += " ORDER BY rowid"
        with self.db() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [participant_from_row(r) for r in rows]

    def get_participant(self, participant_id: str) -> Participant:
        with self.db() as conn:
            row = conn.execute("SELECT * FROM participants WHERE id=?", (participant_id,)).fetchone()
        if not row:
            raise ParticipantNotFound(participant_id)
        return participant_from_row(row)

    def insert_participant(self, participant: Participant) -> Participant:
        with self.db() as conn:
            if not conn.execute("SELECT 1 FROM events WHERE id=?", (participant.event_id,)).fetchone():
                raise EventNotFound(participant.event_id)
            try:
                conn.execute(
                    "INSERT INTO participants(id, name, district, event_id) VALUES(?,?,?,?)",
                    (participant.id, participant.name, participant.district, participant.event_id),
                )
            except sqlite3.IntegrityError as e:
                raise ValidationFailure(f"Could not enroll participant {participant.id}: {e}") from e
        return participant

    # -----------------------
    # Scores
    # -----------------------
    def list_scores(self, event_id: Optional[str] = None) -> List[Score]:
        with self.db() as conn:
            if event_id is None:
                rows = conn.execute("SELECT * FROM scores ORDER BY rowid").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM scores WHERE event_id=? ORDER BY rowid", (event_id,)
                ).fetchall()
        return [score_from_row(r) for r in rows]

    def upsert_score(
        self,
        judge_id: str,
        participant_id: str,
        event_id: str,
        entries: Dict[str, float],
        deductions: float,
        total_score: float,
        critique: Optional[str] = None,
    ) -> Score:
        """
        Insert or replace the score for (judge_id, participant_id).

        The lock check and the write share one IMMEDIATE transaction, and
        the UNIQUE(judge_id, participant_id) conflict target keeps the
        existing id, so concurrent submissions for the same pair converge
        on a single row.
        """
        minted = new_id()
        try:
            with self.transaction() as conn:
                event = conn.execute("SELECT is_locked FROM events WHERE id=?", (event_id,)).fetchone()
                if not event:
                    raise EventNotFound(event_id)
                if event["is_locked"]:
                    raise LockedEvent(event_id)

                conn.execute(
                    """
                    INSERT INTO scores(id, judge_id, participant_id, event_id, entries,
                                       deductions, total_score, critique, updated_at)
                    VALUES(?,?,?,?,?,?,?,?,?)
                    ON CONFLICT(judge_id, participant_id) DO UPDATE SET
                        event_id=excluded.event_id,
                        entries=excluded.entries,
                        deductions=excluded.deductions,
                        total_score=excluded.total_score,
                        critique=excluded.critique,
                        updated_at=excluded.updated_at
                    """,
                    (minted, judge_id, participant_id, event_id, json.dumps(entries),
                     deductions, total_score, critique, datetime.utcnow().isoformat(timespec="seconds")),
                )
                row = conn.execute(
                    "SELECT * FROM scores WHERE judge_id=? AND participant_id=?",
                    (judge_id, participant_id),
                ).fetchone()
        except sqlite3.IntegrityError as e:
            raise ValidationFailure(f"Score rejected by store: {e}") from e

        score = score_from_row(row)
        kind = ChangeKind.INSERTED if score.id == minted else ChangeKind.UPDATED
        self.feed.publish(ScoreChange(kind=kind, score=score))
        return score

    # -----------------------
    # Profiles
    # -----------------------
    def list_profiles(self) -> List[User]:
        with self.db() as conn:
            rows = conn.execute("SELECT * FROM profiles ORDER BY rowid").fetchall()
        return [profile_from_row(r) for r in rows]

    def get_profile(self, user_id: str) -> Optional[User]:
        with self.db() as conn:
            row = conn.execute("SELECT * FROM profiles WHERE id=?", (user_id,)).fetchone()
        return profile_from_row(row) if row else None

    def upsert_profile(self, user: User) -> User:
        with self.db() as conn:
            conn.execute(
                """
                INSERT INTO profiles(id, name, role, assigned_event_id, email)
                VALUES(?,?,?,?,?)
                ON CONFLICT(id) DO UPDATE SET
                    name=excluded.name,
                    role=excluded.role,
                    assigned_event_id=excluded.assigned_event_id,
                    email=excluded.email
                """,
                (user.id, user.name, user.role.value, user.assigned_event_id, user.email),
            )
        return user

    # -----------------------
    # Settings
    # -----------------------
    def list_settings(self) -> Dict[str, Any]:
        with self.db() as conn:
            rows = conn.execute("SELECT key, value FROM settings").fetchall()
        return {r["key"]: json.loads(r["value"]) for r in rows}

    def get_setting(self, key: str, default: Any = None) -> Any:
        with self.db() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        return default if row is None else json.loads(row["value"])

    def put_setting(self, key: str, value: Any) -> None:
        with self.db() as conn:
            conn.execute(
                "INSERT INTO settings(key, value) VALUES(?,?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, json.dumps(value)),
            )
