"""
Session persistence, per-session locking and usage bookkeeping.
"""
import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import StorageError
from .models import VerificationSession

logger = logging.getLogger(__name__)


class SessionLocks:
    """
    Per-token mutual exclusion for read-modify-write of a session.

    Locks are created on demand and dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, token: str):
        lock = self._locks.setdefault(token, asyncio.Lock())
        self._users[token] = self._users.get(token, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[token] -= 1
            if self._users[token] == 0:
                del self._users[token]
                del self._locks[token]

    def __len__(self):
        return len(self._locks)


class InMemorySessionRepository:
    def __init__(self):
        self._rows: Dict[str, str] = {}

    async def create(self, session: VerificationSession) -> None:
        if session.token in self._rows:
            raise StorageError(f"duplicate session token {session.token}")
        self._rows[session.token] = session.model_dump_json()

    async def get(self, token: str) -> Optional[VerificationSession]:
        row = self._rows.get(token)
        return VerificationSession.model_validate_json(row) if row else None

    async def save(self, session: VerificationSession) -> None:
        if session.token not in self._rows:
            raise StorageError(f"unknown session token {session.token}")
        self._rows[session.token] = session.model_dump_json()


def _connect(db_path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


class SqliteSessionRepository:
    """One JSON document per session token"""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_db()

    def init_db(self):
        conn = _connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS verification_sessions (
                    session_token TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()
        finally:
            conn.close()

    async def _run(self, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            logger.error("Session storage failure: %s", e)
            raise StorageError(e)

    def _insert(self, session: VerificationSession):
        conn = _connect(self.db_path)
        try:
            conn.execute(
                "INSERT INTO verification_sessions (session_token, data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (session.token, session.model_dump_json(), session.created_at.isoformat(), session.updated_at.isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def _select(self, token: str) -> Optional[str]:
        conn = _connect(self.db_path)
        try:
            row = conn.execute(
                "SELECT data FROM verification_sessions WHERE session_token = ?", (token,)
            ).fetchone()
            return row["data"] if row else None
        finally:
            conn.close()

    def _update(self, session: VerificationSession) -> int:
        conn = _connect(self.db_path)
        try:
            cur = conn.execute(
                "UPDATE verification_sessions SET data = ?, updated_at = ? WHERE session_token = ?",
                (session.model_dump_json(), session.updated_at.isoformat(), session.token),
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    async def create(self, session: VerificationSession) -> None:
        await self._run(self._insert, session)

    async def get(self, token: str) -> Optional[VerificationSession]:
        data = await self._run(self._select, token)
        return VerificationSession.model_validate_json(data) if data else None

    async def save(self, session: VerificationSession) -> None:
        updated = await self._run(self._update, session)
        if not updated:
            raise StorageError(f"unknown session token {session.token}")


class SqliteUsageRecorder:
    """Per-operation cost entries and the daily aggregate counters"""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_db()

    def init_db(self):
        conn = _connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_costs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    operation TEXT NOT NULL,
                    cost_usd REAL NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_stats (
                    date TEXT PRIMARY KEY,
                    total_verifications INTEGER NOT NULL DEFAULT 0,
                    successful_verifications INTEGER NOT NULL DEFAULT 0,
                    total_cost_usd REAL NOT NULL DEFAULT 0
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def _insert_costs(self, token: str, entries: List[Tuple[str, float]]):
        now = datetime.now(timezone.utc).isoformat()
        conn = _connect(self.db_path)
        try:
            conn.executemany(
                "INSERT INTO api_costs (session_id, operation, cost_usd, created_at) VALUES (?, ?, ?, ?)",
                [(token, operation, cost, now) for operation, cost in entries],
            )
            conn.commit()
        finally:
            conn.close()

    def _increment(self, verified: bool, cost: float):
        today = datetime.now(timezone.utc).date().isoformat()
        conn = _connect(self.db_path)
        try:
            conn.execute("""
                INSERT INTO daily_stats (date, total_verifications, successful_verifications, total_cost_usd)
                VALUES (?, 1, ?, ?)
                ON CONFLICT(date) DO UPDATE SET
                    total_verifications = total_verifications + 1,
                    successful_verifications = successful_verifications + excluded.successful_verifications,
                    total_cost_usd = total_cost_usd + excluded.total_cost_usd
            """, (today, 1 if verified else 0, cost))
            conn.commit()
        finally:
            conn.close()

    def daily_stats(self, day: str) -> Optional[dict]:
        conn = _connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM daily_stats WHERE date = ?", (day,)).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    async def record_costs(self, token: str, entries: List[Tuple[str, float]]) -> None:
        await asyncio.to_thread(self._insert_costs, token, entries)

    async def increment_daily_stats(self, verified: bool, cost: float) -> None:
        await asyncio.to_thread(self._increment, verified, cost)
