from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .trials import TrialResult

logger = logging.getLogger(__name__)

OUTCOME_LOG_ENV = "PSICOSE_OUTCOME_LOG_PATH"
TRIAL_DB_ENV = "PSICOSE_DB_PATH"

SCHEMA_VERSION = 1


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


@dataclass(frozen=True, slots=True)
class OutcomeRecord:
    challenge_id: str
    timestamp: str
    success: bool
    time_left_ms: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "challengeId": self.challenge_id,
            "timestamp": self.timestamp,
            "success": bool(self.success),
            "timeLeft": float(self.time_left_ms),
        }

    @classmethod
    def from_dict(cls, data: object) -> "OutcomeRecord | None":
        if not isinstance(data, dict):
            return None
        challenge_id = str(data.get("challengeId", data.get("challenge", ""))).strip()
        if challenge_id == "":
            return None
        try:
            time_left = max(0.0, float(data.get("timeLeft", 0.0)))
        except (TypeError, ValueError):
            time_left = 0.0
        return cls(
            challenge_id=challenge_id,
            timestamp=str(data.get("timestamp", "")),
            success=bool(data.get("success", False)),
            time_left_ms=time_left,
        )

    @classmethod
    def now(cls, *, challenge_id: str, success: bool, time_left_ms: float) -> "OutcomeRecord":
        return cls(
            challenge_id=str(challenge_id),
            timestamp=_utc_now_iso(),
            success=bool(success),
            time_left_ms=max(0.0, float(time_left_ms)),
        )


class OutcomeLog:
    """Append-only challenge outcome list stored as one JSON document.

    The whole list is read, extended and written back on every append. A
    missing or unparseable file reads as empty.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(OUTCOME_LOG_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".juliette_psicose_challenge_results.json"

    @property
    def path(self) -> Path:
        return self._path

    def _read_raw(self) -> list[object]:
        if not self._path.exists():
            return []
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("outcome log %s is unreadable; treating as empty", self._path)
            return []
        if not isinstance(payload, list):
            return []
        return payload

    def records(self) -> list[OutcomeRecord]:
        out: list[OutcomeRecord] = []
        for item in self._read_raw():
            record = OutcomeRecord.from_dict(item)
            if record is not None:
                out.append(record)
        return out

    def append(self, record: OutcomeRecord) -> None:
        payload = self._read_raw()
        payload.append(record.to_dict())
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            logger.warning("could not write outcome log %s", self._path, exc_info=True)


class MemoryOutcomeLog:
    """Outcome log kept in memory (headless runs, tests)."""

    def __init__(self) -> None:
        self._records: list[OutcomeRecord] = []

    def records(self) -> list[OutcomeRecord]:
        return list(self._records)

    def append(self, record: OutcomeRecord) -> None:
        self._records.append(record)


def default_db_path() -> Path:
    explicit = os.environ.get(TRIAL_DB_ENV)
    if explicit:
        return Path(explicit).expanduser()
    return Path.home() / ".juliette_psicose.sqlite3"


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA foreign_keys=ON;")
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        _migrate(conn)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session (
                id INTEGER PRIMARY KEY,
                created_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trial (
                id INTEGER PRIMARY KEY,
                session_id INTEGER NOT NULL REFERENCES session(id) ON DELETE CASCADE,
                trial_uid TEXT NOT NULL UNIQUE,
                archetype TEXT NOT NULL,
                app_version TEXT NOT NULL,
                round_count INTEGER NOT NULL,
                correct_count INTEGER NOT NULL,
                score REAL NOT NULL,
                expected_chance REAL NOT NULL,
                percent_above_chance REAL NOT NULL,
                completed_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS trial_round (
                id INTEGER PRIMARY KEY,
                trial_id INTEGER NOT NULL REFERENCES trial(id) ON DELETE CASCADE,
                seq INTEGER NOT NULL,
                target TEXT NOT NULL,
                response TEXT,
                is_correct INTEGER NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_trial_round_trial_seq ON trial_round(trial_id, seq);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def record_trial_result(*, db_path: Path, result: TrialResult, app_version: str) -> int | None:
    """
    Persist one completed trial:
      session -> trial + trial_round
    Returns the trial row id, or None if this session id was already stored
    or the database could not be written (logged, never raised).
    """
    try:
        conn = open_db(db_path)
    except sqlite3.Error:
        logger.warning("could not open trial database %s", db_path, exc_info=True)
        return None
    try:
        return _insert_trial(conn=conn, result=result, app_version=app_version)
    except sqlite3.Error:
        logger.warning("could not store trial %s in %s", result.session_id, db_path, exc_info=True)
        return None
    finally:
        conn.close()


def _insert_trial(*, conn: sqlite3.Connection, result: TrialResult, app_version: str) -> int | None:
    existing = conn.execute("SELECT id FROM trial WHERE trial_uid = ?", (result.session_id,)).fetchone()
    if existing is not None:
        return None

    with conn:
        cur = conn.execute("INSERT INTO session(created_at_utc) VALUES (?)", (_utc_now_iso(),))
        session_id = int(cur.lastrowid)

        cur = conn.execute(
            """
            INSERT INTO trial(
                session_id, trial_uid, archetype, app_version,
                round_count, correct_count, score, expected_chance,
                percent_above_chance, completed_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                str(result.session_id),
                str(result.archetype),
                app_version,
                int(result.round_count),
                int(result.correct_count),
                float(result.score),
                float(result.expected_chance),
                float(result.percent_above_chance),
                str(result.timestamp),
            ),
        )
        trial_id = int(cur.lastrowid)

        for seq, target in enumerate(result.targets):
            response = result.responses[seq] if seq < len(result.responses) else None
            conn.execute(
                """
                INSERT INTO trial_round(trial_id, seq, target, response, is_correct)
                VALUES (?, ?, ?, ?, ?)
                """,
                (trial_id, seq, str(target), response, 1 if response == target else 0),
            )

    return trial_id


def load_trial_history(db_path: Path) -> list[TrialResult]:
    """Read every stored trial in completion order. Missing or corrupt databases read as empty."""

    if not db_path.exists():
        return []
    try:
        conn = open_db(db_path)
    except sqlite3.Error:
        logger.warning("trial database %s is unreadable; treating as empty", db_path)
        return []
    try:
        rows = conn.execute(
            """
            SELECT id, trial_uid, archetype, round_count, correct_count, score,
                   expected_chance, percent_above_chance, completed_at_utc
            FROM trial ORDER BY id
            """
        ).fetchall()
        history: list[TrialResult] = []
        for row in rows:
            rounds = conn.execute(
                "SELECT target, response FROM trial_round WHERE trial_id = ? ORDER BY seq",
                (int(row[0]),),
            ).fetchall()
            history.append(
                TrialResult(
                    session_id=str(row[1]),
                    archetype=str(row[2]),
                    round_count=int(row[3]),
                    correct_count=int(row[4]),
                    score=float(row[5]),
                    expected_chance=float(row[6]),
                    percent_above_chance=float(row[7]),
                    timestamp=str(row[8]),
                    targets=tuple(str(r[0]) for r in rounds),
                    responses=tuple(None if r[1] is None else str(r[1]) for r in rounds),
                )
            )
        return history
    except sqlite3.Error:
        logger.warning("trial database %s is unreadable; treating as empty", db_path)
        return []
    finally:
        conn.close()
