"""SQLite-backed persistence for profiles, sessions, drinks and badges.

user_badges carries two partial unique indexes, one per award scope, so the
database itself refuses a second award for the same slot:

- (user_id, badge_id) where session_id IS NULL      -> milestone / global
- (user_id, badge_id, session_id) otherwise         -> session / social
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Optional

from bac_badges.criteria import criteria_to_dict, parse_criteria
from bac_badges.drinks import BEER_MAX_PERCENTAGE, WINE_MAX_PERCENTAGE, check_amounts
from bac_badges.errors import PersistenceFailure, UnknownMetric
from bac_badges.models import (
    CATEGORIES,
    GENDERS,
    AwardResult,
    Badge,
    BadgeProgress,
    BadgeStats,
    DrinkEntry,
    Profile,
    Session,
    UserBadge,
    utcnow,
)
from bac_badges.policy import scope_session_id

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS profiles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    display_name TEXT NOT NULL DEFAULT '',
    weight_kg REAL NOT NULL,
    gender TEXT NOT NULL,
    age INTEGER,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL DEFAULT '',
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS session_participants (
    session_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    joined_at TEXT NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (session_id, user_id),
    FOREIGN KEY(session_id) REFERENCES sessions(id),
    FOREIGN KEY(user_id) REFERENCES profiles(id)
);
CREATE TABLE IF NOT EXISTS drink_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    session_id INTEGER NOT NULL,
    volume_ml REAL NOT NULL,
    alcohol_percentage REAL NOT NULL,
    consumed_at TEXT NOT NULL,
    FOREIGN KEY(user_id) REFERENCES profiles(id),
    FOREIGN KEY(session_id) REFERENCES sessions(id)
);
CREATE INDEX IF NOT EXISTS idx_drink_entries_user_session ON drink_entries(user_id, session_id);
CREATE TABLE IF NOT EXISTS friendships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    friend_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'accepted',
    UNIQUE (user_id, friend_id)
);
CREATE TABLE IF NOT EXISTS badges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    code TEXT NOT NULL UNIQUE,
    title TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL,
    criteria_json TEXT NOT NULL,
    is_automatic INTEGER NOT NULL DEFAULT 1,
    is_active INTEGER NOT NULL DEFAULT 1,
    points INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS user_badges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    badge_id INTEGER NOT NULL,
    session_id INTEGER,
    earned_at TEXT NOT NULL,
    metadata_json TEXT NOT NULL DEFAULT '{}',
    FOREIGN KEY(badge_id) REFERENCES badges(id)
);
CREATE UNIQUE INDEX IF NOT EXISTS user_badges_once_per_user
    ON user_badges(user_id, badge_id) WHERE session_id IS NULL;
CREATE UNIQUE INDEX IF NOT EXISTS user_badges_once_per_session
    ON user_badges(user_id, badge_id, session_id) WHERE session_id IS NOT NULL;
CREATE TABLE IF NOT EXISTS badge_progress (
    user_id INTEGER NOT NULL,
    badge_id INTEGER NOT NULL,
    current_value REAL NOT NULL,
    last_updated TEXT NOT NULL,
    PRIMARY KEY (user_id, badge_id)
);
"""

_ALL_TIME_SQL = {
    "total_drinks": "SELECT COUNT(*) FROM drink_entries WHERE user_id = :user_id",
    "session_count": "SELECT COUNT(*) FROM session_participants WHERE user_id = :user_id",
    "total_volume": "SELECT COALESCE(SUM(volume_ml), 0) FROM drink_entries WHERE user_id = :user_id",
    "friend_count": """
        SELECT COUNT(*) FROM friendships
        WHERE status = 'accepted' AND (user_id = :user_id OR friend_id = :user_id)
    """,
}

# 1 if an accepted friend logged a drink of the given strength in the session.
_FRIEND_DRINK_SQL = """
    SELECT EXISTS (
        SELECT 1
        FROM drink_entries d
        JOIN session_participants p
          ON p.session_id = d.session_id AND p.user_id = d.user_id
        JOIN friendships f
          ON f.status = 'accepted'
         AND ((f.user_id = :user_id AND f.friend_id = d.user_id)
              OR (f.friend_id = :user_id AND f.user_id = d.user_id))
        WHERE d.session_id = :session_id AND d.user_id != :user_id AND {strength}
    )
"""

_IN_SESSION_SQL = {
    "session_drink_count": """
        SELECT COUNT(*) FROM drink_entries
        WHERE user_id = :user_id AND session_id = :session_id
    """,
    "unique_friends_in_session": """
        SELECT COUNT(DISTINCT p.user_id)
        FROM session_participants p
        JOIN friendships f
          ON f.status = 'accepted'
         AND ((f.user_id = :user_id AND f.friend_id = p.user_id)
              OR (f.friend_id = :user_id AND f.user_id = p.user_id))
        WHERE p.session_id = :session_id AND p.user_id != :user_id
    """,
    "session_friend_has_beer": _FRIEND_DRINK_SQL.format(strength="d.alcohol_percentage < :beer_max"),
    "session_friend_has_wine": _FRIEND_DRINK_SQL.format(
        strength="d.alcohol_percentage >= :beer_max AND d.alcohol_percentage <= :wine_max"
    ),
}

_STRENGTH_PARAMS = {"beer_max": BEER_MAX_PERCENTAGE, "wine_max": WINE_MAX_PERCENTAGE}


def init_db(db_path: str) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)
        conn.commit()


def _ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_json(raw: Optional[str]) -> dict:
    try:
        return json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}


class SQLiteStore:
    """BadgeStore implementation over a single SQLite file."""

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as exc:
            raise PersistenceFailure(str(exc)) from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceFailure(str(exc)) from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # -- reads used by the engine -------------------------------------------

    def fetch_profile(self, user_id: Any) -> Optional[Profile]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, weight_kg, gender, age FROM profiles WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return Profile(id=row["id"], weight_kg=row["weight_kg"], gender=row["gender"], age=row["age"])

    def fetch_session(self, session_id: Any) -> Optional[Session]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, start_time, end_time FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
        if row is None:
            return None
        return Session(id=row["id"], start_time=_parse_ts(row["start_time"]), end_time=_parse_ts(row["end_time"]))

    def fetch_drinks(self, user_id: Any, session_id: Any = None) -> list[DrinkEntry]:
        with self._connect() as conn:
            if session_id is None:
                rows = conn.execute(
                    "SELECT * FROM drink_entries WHERE user_id = ? ORDER BY consumed_at",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM drink_entries WHERE user_id = ? AND session_id = ? ORDER BY consumed_at",
                    (user_id, session_id),
                ).fetchall()
        return [
            DrinkEntry(
                id=row["id"],
                user_id=row["user_id"],
                session_id=row["session_id"],
                volume_ml=row["volume_ml"],
                alcohol_percentage=row["alcohol_percentage"],
                consumed_at=_parse_ts(row["consumed_at"]),
            )
            for row in rows
        ]

    def count_all_time(self, metric: str, user_id: Any) -> float:
        sql = _ALL_TIME_SQL.get(metric)
        if sql is None:
            raise UnknownMetric(metric)
        with self._connect() as conn:
            return float(conn.execute(sql, {"user_id": user_id}).fetchone()[0])

    def count_in_session(self, metric: str, user_id: Any, session_id: Any) -> float:
        sql = _IN_SESSION_SQL.get(metric)
        if sql is None:
            raise UnknownMetric(metric)
        with self._connect() as conn:
            params = {"user_id": user_id, "session_id": session_id, **_STRENGTH_PARAMS}
            return float(conn.execute(sql, params).fetchone()[0])

    def fetch_active_automatic_badges(self, categories: Iterable[str]) -> list[Badge]:
        categories = sorted(set(categories))
        if not categories:
            return []
        placeholders = ", ".join("?" for _ in categories)
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM badges
                WHERE is_active = 1 AND is_automatic = 1 AND category IN ({placeholders})
                ORDER BY id
                """,
                categories,
            ).fetchall()
        return [self._row_to_badge(row) for row in rows]

    # -- writes used by the engine ------------------------------------------

    def award_if_absent(
        self,
        user_id: Any,
        badge_id: Any,
        session_id: Any,
        metadata: Optional[dict] = None,
    ) -> AwardResult:
        metadata_json = json.dumps(metadata or {}, separators=(",", ":"), ensure_ascii=True, default=str)
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cur = conn.execute(
                """
                INSERT INTO user_badges (user_id, badge_id, session_id, earned_at, metadata_json)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT DO NOTHING
                """,
                (user_id, badge_id, session_id, _ts(utcnow()), metadata_json),
            )
            created = cur.rowcount == 1
            row = conn.execute(
                """
                SELECT id FROM user_badges
                WHERE user_id = ? AND badge_id = ? AND session_id IS ?
                """,
                (user_id, badge_id, session_id),
            ).fetchone()
        if row is None:
            raise PersistenceFailure(f"Award for user {user_id} badge {badge_id} was neither stored nor found")
        return AwardResult(created=created, user_badge_id=row["id"])

    def record_progress(self, user_id: Any, badge_id: Any, current_value: float) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO badge_progress (user_id, badge_id, current_value, last_updated)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(user_id, badge_id) DO UPDATE SET
                    current_value = excluded.current_value,
                    last_updated = excluded.last_updated
                """,
                (user_id, badge_id, float(current_value), _ts(utcnow())),
            )

    # -- app and seeding helpers --------------------------------------------

    def add_profile(self, *, weight_kg: float, gender: str, age: Optional[int] = None, display_name: str = "") -> int:
        if gender not in GENDERS:
            raise ValueError(f"gender must be one of {GENDERS}")
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO profiles (display_name, weight_kg, gender, age) VALUES (?, ?, ?, ?)",
                (display_name.strip(), float(weight_kg), gender, age),
            )
            return int(cur.lastrowid)

    def add_session(self, *, start_time: datetime, end_time: datetime, name: str = "") -> int:
        if end_time < start_time:
            raise ValueError("end_time must not be before start_time")
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO sessions (name, start_time, end_time) VALUES (?, ?, ?)",
                (name.strip(), _ts(start_time), _ts(end_time)),
            )
            return int(cur.lastrowid)

    def join_session(self, *, session_id: Any, user_id: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO session_participants (session_id, user_id) VALUES (?, ?)",
                (session_id, user_id),
            )

    def list_participants(self, session_id: Any) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT user_id FROM session_participants WHERE session_id = ? ORDER BY user_id",
                (session_id,),
            ).fetchall()
        return [row["user_id"] for row in rows]

    def add_drink(
        self,
        *,
        user_id: Any,
        session_id: Any,
        volume_ml: float,
        alcohol_percentage: float,
        consumed_at: datetime,
    ) -> int:
        """Log a drink; the user joins the session if not already in it."""
        check_amounts(volume_ml, alcohol_percentage)
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO session_participants (session_id, user_id) VALUES (?, ?)",
                (session_id, user_id),
            )
            cur = conn.execute(
                """
                INSERT INTO drink_entries (user_id, session_id, volume_ml, alcohol_percentage, consumed_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, session_id, float(volume_ml), float(alcohol_percentage), _ts(consumed_at)),
            )
            return int(cur.lastrowid)

    def add_friendship(self, *, user_id: Any, friend_id: Any, status: str = "accepted") -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO friendships (user_id, friend_id, status) VALUES (?, ?, ?)
                ON CONFLICT(user_id, friend_id) DO UPDATE SET status = excluded.status
                """,
                (user_id, friend_id, status),
            )

    def add_badge(
        self,
        *,
        code: str,
        category: str,
        criteria: Any,
        title: str = "",
        is_automatic: bool = True,
        is_active: bool = True,
        points: int = 0,
    ) -> Optional[int]:
        """Insert a badge definition. Returns None if the code already exists."""
        if category not in CATEGORIES:
            raise ValueError(f"category must be one of {CATEGORIES}")
        criteria_json = json.dumps(criteria_to_dict(parse_criteria(criteria)), separators=(",", ":"))
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO badges (code, title, category, criteria_json, is_automatic, is_active, points)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (code, title, category, criteria_json, int(is_automatic), int(is_active), int(points)),
            )
            return int(cur.lastrowid) if cur.rowcount == 1 else None

    def get_badge(self, badge_id: Any) -> Optional[Badge]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM badges WHERE id = ?", (badge_id,)).fetchone()
        return None if row is None else self._row_to_badge(row)

    def get_badge_by_code(self, code: str) -> Optional[Badge]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM badges WHERE code = ?", (code,)).fetchone()
        return None if row is None else self._row_to_badge(row)

    def list_user_badges(self, user_id: Any, badge_id: Any = None) -> list[UserBadge]:
        with self._connect() as conn:
            if badge_id is None:
                rows = conn.execute(
                    "SELECT * FROM user_badges WHERE user_id = ? ORDER BY id",
                    (user_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM user_badges WHERE user_id = ? AND badge_id = ? ORDER BY id",
                    (user_id, badge_id),
                ).fetchall()
        return [
            UserBadge(
                id=row["id"],
                user_id=row["user_id"],
                badge_id=row["badge_id"],
                session_id=row["session_id"],
                earned_at=_parse_ts(row["earned_at"]),
                metadata=_load_json(row["metadata_json"]),
            )
            for row in rows
        ]

    def award_manual(
        self,
        *,
        user_id: Any,
        badge_id: Any,
        session_id: Any = None,
        metadata: Optional[dict] = None,
    ) -> AwardResult:
        """Hand out a badge regardless of its criteria.

        The badge category decides the slot exactly as for automatic awards, so
        a manual award never duplicates one the user already holds.
        """
        badge = self.get_badge(badge_id)
        if badge is None:
            raise LookupError(f"Badge {badge_id!r} not found")
        scope = scope_session_id(badge, session_id)
        result = self.award_if_absent(user_id, badge.id, scope, {**(metadata or {}), "manual": True})
        if result.created:
            logger.info("Manually awarded badge %s to user %s (session %s)", badge.code, user_id, scope)
        return result

    def revoke(self, user_badge_id: Any) -> bool:
        """Delete one award row. Returns False if there was none."""
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM user_badges WHERE id = ?", (user_badge_id,))
            revoked = cur.rowcount == 1
        if revoked:
            logger.info("Revoked user badge %s", user_badge_id)
        return revoked

    def badge_stats(self, user_id: Any) -> BadgeStats:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT b.category, COUNT(*) AS earned, COALESCE(SUM(b.points), 0) AS points
                FROM user_badges ub
                JOIN badges b ON b.id = ub.badge_id
                WHERE ub.user_id = ?
                GROUP BY b.category
                """,
                (user_id,),
            ).fetchall()
        by_category = {category: 0 for category in CATEGORIES}
        for row in rows:
            by_category[row["category"]] = row["earned"]
        return BadgeStats(
            total_earned=sum(row["earned"] for row in rows),
            total_points=sum(row["points"] for row in rows),
            by_category=by_category,
        )

    def list_progress(self, user_id: Any) -> list[BadgeProgress]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM badge_progress WHERE user_id = ? ORDER BY badge_id",
                (user_id,),
            ).fetchall()
        return [
            BadgeProgress(
                user_id=row["user_id"],
                badge_id=row["badge_id"],
                current_value=row["current_value"],
                last_updated=_parse_ts(row["last_updated"]),
            )
            for row in rows
        ]

    @staticmethod
    def _row_to_badge(row: sqlite3.Row) -> Badge:
        return Badge(
            id=row["id"],
            code=row["code"],
            title=row["title"],
            category=row["category"],
            criteria=_load_json(row["criteria_json"]),
            is_automatic=bool(row["is_automatic"]),
            is_active=bool(row["is_active"]),
            points=row["points"],
        )
