from __future__ import annotations

import hashlib
import logging
import secrets
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from .models import (
    COMPETITION_FORMATS,
    Competition,
    Judge,
    JudgeStatus,
    Performer,
    Round,
    ScoreInput,
    ScoreRecord,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS competitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL,
    year INTEGER NOT NULL,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'upcoming',
    admin_pw_hash TEXT NOT NULL,
    join_code TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS rounds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    competition_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    round_order INTEGER NOT NULL,
    scoring_type TEXT NOT NULL DEFAULT '100point'
);

CREATE TABLE IF NOT EXISTS performers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    competition_id INTEGER NOT NULL,
    round_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    performance_order INTEGER
);

CREATE TABLE IF NOT EXISTS judges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    token TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS judge_status (
    judge_id INTEGER NOT NULL,
    competition_id INTEGER NOT NULL,
    viewing_mode TEXT NOT NULL DEFAULT 'realtime',
    has_completed_scoring INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    PRIMARY KEY (judge_id, competition_id)
);

-- one row per (judge, performer); a re-score overwrites it
CREATE TABLE IF NOT EXISTS scores (
    judge_id INTEGER NOT NULL,
    performer_id INTEGER NOT NULL,
    round_id INTEGER NOT NULL,
    competition_id INTEGER NOT NULL,
    score INTEGER NOT NULL,
    comment TEXT,
    scored_at TEXT NOT NULL,
    is_realtime INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (judge_id, performer_id)
);
"""


def sha256(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def now() -> datetime:
    return datetime.now(timezone.utc)


class NotFound(LookupError):
    pass


class Forbidden(PermissionError):
    pass


class Store:
    """sqlite-backed store for competitions, rosters, judges and scores."""

    def __init__(self, path: str):
        self.path = path

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        with self.connect() as conn:
            conn.executescript(SCHEMA)
        logger.info("database ready at %s", self.path)

    # -----------------------
    # Competitions / rounds
    # -----------------------
    def create_competition(
        self, type: str, year: int, name: str, admin_password: str
    ) -> Competition:
        fmt = COMPETITION_FORMATS.get(type)
        if fmt is None:
            raise ValueError(f"Unknown competition type: {type!r}")

        join_code = secrets.token_urlsafe(6).replace("-", "").replace("_", "")[:8].upper()
        with self.connect() as conn:
            cur = conn.execute(
                "INSERT INTO competitions(type, year, name, status, admin_pw_hash, join_code, created_at)"
                " VALUES(?,?,?,?,?,?,?)",
                (type, year, name.strip(), "upcoming", sha256(admin_password), join_code, now().isoformat()),
            )
            competition_id = cur.lastrowid
            for order, rf in enumerate(fmt.rounds, start=1):
                conn.execute(
                    "INSERT INTO rounds(competition_id, name, round_order, scoring_type) VALUES(?,?,?,?)",
                    (competition_id, rf.name, order, rf.scoring_type),
                )
        logger.info("created competition %s (%s %s)", competition_id, type, year)
        return self.get_competition(competition_id)

    def get_competition(self, competition_id: int) -> Competition:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM competitions WHERE id=?", (competition_id,)).fetchone()
        if not row:
            raise NotFound("Competition not found.")
        return Competition(**{k: row[k] for k in Competition.model_fields})

    def get_competition_by_join_code(self, join_code: str) -> Competition:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id FROM competitions WHERE join_code=?", (join_code.strip().upper(),)
            ).fetchone()
        if not row:
            raise NotFound("Invalid join code.")
        return self.get_competition(row["id"])

    def require_admin(self, competition_id: int, admin_password: str) -> None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT admin_pw_hash FROM competitions WHERE id=?", (competition_id,)
            ).fetchone()
        if not row:
            raise NotFound("Competition not found.")
        if sha256(admin_password) != row["admin_pw_hash"]:
            raise Forbidden("Invalid admin password.")

    def set_status(self, competition_id: int, status: str) -> Competition:
        self.get_competition(competition_id)
        with self.connect() as conn:
            conn.execute("UPDATE competitions SET status=? WHERE id=?", (status, competition_id))
        return self.get_competition(competition_id)

    def list_rounds(self, competition_id: int) -> List[Round]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM rounds WHERE competition_id=? ORDER BY round_order", (competition_id,)
            ).fetchall()
        return [Round(**dict(r)) for r in rows]

    def get_round(self, round_id: int) -> Round:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM rounds WHERE id=?", (round_id,)).fetchone()
        if not row:
            raise NotFound("Round not found.")
        return Round(**dict(row))

    # -----------------------
    # Performers
    # -----------------------
    def set_performers(self, round_id: int, names: Sequence[str]) -> List[Performer]:
        """Replace a round's roster; list order is performance order."""
        rnd = self.get_round(round_id)
        names = list(dict.fromkeys(n.strip() for n in names if n.strip()))  # dedupe preserve order

        with self.connect() as conn:
            existing = {
                r["name"]: r["id"]
                for r in conn.execute(
                    "SELECT id, name FROM performers WHERE round_id=?", (round_id,)
                ).fetchall()
            }
            for order, name in enumerate(names, start=1):
                if name in existing:
                    conn.execute(
                        "UPDATE performers SET performance_order=? WHERE id=?",
                        (order, existing[name]),
                    )
                else:
                    conn.execute(
                        "INSERT INTO performers(competition_id, round_id, name, performance_order)"
                        " VALUES(?,?,?,?)",
                        (rnd.competition_id, round_id, name, order),
                    )

            # Removed performers take their scores with them
            for name, performer_id in existing.items():
                if name not in names:
                    self._delete_performer(conn, performer_id)

        return self.list_performers(round_id)

    def list_performers(self, round_id: int) -> List[Performer]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM performers WHERE round_id=?"
                " ORDER BY performance_order IS NULL, performance_order, id",
                (round_id,),
            ).fetchall()
        return [Performer(**dict(r)) for r in rows]

    def list_competition_performers(self, competition_id: int) -> List[Performer]:
        """Every round's roster, rounds in order."""
        out: List[Performer] = []
        for rnd in self.list_rounds(competition_id):
            out.extend(self.list_performers(rnd.id))
        return out

    def ensure_final_round_performer(self, competition_id: int, name: str) -> Performer:
        """Enter a first-round act into the last round (no-op if already there)."""
        rounds = self.list_rounds(competition_id)
        if not rounds:
            raise NotFound("Competition has no rounds.")
        final = rounds[-1]

        for p in self.list_performers(final.id):
            if p.name == name:
                return p

        with self.connect() as conn:
            cur = conn.execute(
                "INSERT INTO performers(competition_id, round_id, name, performance_order) VALUES(?,?,?,NULL)",
                (competition_id, final.id, name),
            )
            performer_id = cur.lastrowid
        logger.info("added %r to final round %s", name, final.id)
        return self.get_performer(performer_id)

    def get_performer(self, performer_id: int) -> Performer:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM performers WHERE id=?", (performer_id,)).fetchone()
        if not row:
            raise NotFound("Performer not found.")
        return Performer(**dict(row))

    def delete_performer(self, performer_id: int) -> None:
        self.get_performer(performer_id)
        with self.connect() as conn:
            self._delete_performer(conn, performer_id)

    @staticmethod
    def _delete_performer(conn: sqlite3.Connection, performer_id: int) -> None:
        conn.execute("DELETE FROM scores WHERE performer_id=?", (performer_id,))
        conn.execute("DELETE FROM performers WHERE id=?", (performer_id,))

    # -----------------------
    # Judges / status
    # -----------------------
    def join(self, name: str) -> Tuple[Judge, str]:
        """Returns (judge, token). Re-joining under the same name issues a new token."""
        name = name.strip()
        if not name:
            raise ValueError("Judge name is required.")
        token = secrets.token_urlsafe(16)

        with self.connect() as conn:
            existing = conn.execute("SELECT id FROM judges WHERE name=?", (name,)).fetchone()
            if existing:
                judge_id = existing["id"]
                conn.execute("UPDATE judges SET token=? WHERE id=?", (token, judge_id))
            else:
                cur = conn.execute(
                    "INSERT INTO judges(name, token, created_at) VALUES(?,?,?)",
                    (name, token, now().isoformat()),
                )
                judge_id = cur.lastrowid
        return Judge(id=judge_id, name=name), token

    def require_judge(self, judge_id: int, token: str) -> Judge:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT id, name FROM judges WHERE id=? AND token=?", (judge_id, token)
            ).fetchone()
        if not row:
            raise Forbidden("Invalid judge session.")
        return Judge(id=row["id"], name=row["name"])

    def list_judges(self) -> List[Judge]:
        with self.connect() as conn:
            rows = conn.execute("SELECT id, name FROM judges ORDER BY id").fetchall()
        return [Judge(id=r["id"], name=r["name"]) for r in rows]

    def competition_judges(self, competition_id: int) -> List[Judge]:
        """Judges with a status record for this competition."""
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT j.id, j.name FROM judges j"
                " JOIN judge_status s ON s.judge_id = j.id"
                " WHERE s.competition_id=? ORDER BY j.id",
                (competition_id,),
            ).fetchall()
        return [Judge(id=r["id"], name=r["name"]) for r in rows]

    def ensure_status(self, judge_id: int, competition_id: int) -> JudgeStatus:
        """Put a judge on the competition roster, keeping any existing status."""
        with self.connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO judge_status(judge_id, competition_id) VALUES(?,?)",
                (judge_id, competition_id),
            )
        return self.get_status(judge_id, competition_id)

    def set_viewing_mode(self, judge_id: int, competition_id: int, viewing_mode: str) -> JudgeStatus:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO judge_status(judge_id, competition_id, viewing_mode)
                VALUES(?,?,?)
                ON CONFLICT(judge_id, competition_id) DO UPDATE SET viewing_mode=excluded.viewing_mode
                """,
                (judge_id, competition_id, viewing_mode),
            )
        return self.get_status(judge_id, competition_id)

    def complete_scoring(self, judge_id: int, competition_id: int) -> JudgeStatus:
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO judge_status(judge_id, competition_id, has_completed_scoring, completed_at)
                VALUES(?,?,1,?)
                ON CONFLICT(judge_id, competition_id) DO UPDATE SET
                    has_completed_scoring=1, completed_at=excluded.completed_at
                """,
                (judge_id, competition_id, now().isoformat()),
            )
        return self.get_status(judge_id, competition_id)

    def get_status(self, judge_id: int, competition_id: int) -> Optional[JudgeStatus]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM judge_status WHERE judge_id=? AND competition_id=?",
                (judge_id, competition_id),
            ).fetchone()
        return JudgeStatus(**dict(row)) if row else None

    def list_judge_status(self, competition_id: int) -> List[JudgeStatus]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM judge_status WHERE competition_id=? ORDER BY judge_id",
                (competition_id,),
            ).fetchall()
        return [JudgeStatus(**dict(r)) for r in rows]

    # -----------------------
    # Scores
    # -----------------------
    def upsert_score(self, record: ScoreInput, scored_at: Optional[datetime] = None) -> ScoreRecord:
        """
        Insert or replace the (judge, performer) score; the latest scored_at wins.

        A write older than the stored one leaves the row as it is. Returns the
        row actually stored.
        """
        # fixed-width UTC text so sqlite string comparison matches time order
        stamp = (scored_at or now()).astimezone(timezone.utc).isoformat(timespec="microseconds")
        with self.connect() as conn:
            conn.execute(
                """
                INSERT INTO scores(judge_id, performer_id, round_id, competition_id, score, comment, scored_at, is_realtime)
                VALUES(?,?,?,?,?,?,?,?)
                ON CONFLICT(judge_id, performer_id) DO UPDATE SET
                    round_id=excluded.round_id,
                    competition_id=excluded.competition_id,
                    score=excluded.score,
                    comment=excluded.comment,
                    scored_at=excluded.scored_at,
                    is_realtime=excluded.is_realtime
                WHERE excluded.scored_at >= scores.scored_at
                """,
                (
                    record.judge_id,
                    record.performer_id,
                    record.round_id,
                    record.competition_id,
                    record.score,
                    record.comment,
                    stamp,
                    int(record.is_realtime),
                ),
            )
            row = conn.execute(
                "SELECT * FROM scores WHERE judge_id=? AND performer_id=?",
                (record.judge_id, record.performer_id),
            ).fetchone()
        logger.debug(
            "judge %s scored performer %s: %s (kept %s)",
            record.judge_id, record.performer_id, record.score, row["score"],
        )
        return ScoreRecord(**dict(row))

    def list_scores(self, competition_id: int) -> List[ScoreRecord]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM scores WHERE competition_id=? ORDER BY scored_at, judge_id, performer_id",
                (competition_id,),
            ).fetchall()
        return [ScoreRecord(**dict(r)) for r in rows]
