"""
Database operations for the hunt leaderboard server.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Tuple, Any, Optional

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS admins (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    session_token TEXT UNIQUE,
    session_expires_at INTEGER,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS teams (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    max_members INTEGER NOT NULL DEFAULT 8,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id INTEGER NOT NULL REFERENCES teams(id) ON DELETE CASCADE,
    username TEXT NOT NULL UNIQUE,
    device_token TEXT UNIQUE,
    last_active INTEGER,
    registered_at INTEGER NOT NULL,
    made_final_submission INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS challenges (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    short_name TEXT NOT NULL,
    points INTEGER NOT NULL DEFAULT 100 CHECK (points > 0),
    location_top_left_lat REAL,
    location_top_left_lng REAL,
    location_bottom_right_lat REAL,
    location_bottom_right_lng REAL,
    key_hash TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS solves (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    challenge_id INTEGER NOT NULL REFERENCES challenges(id) ON DELETE CASCADE,
    solved_at INTEGER NOT NULL,
    UNIQUE(user_id, challenge_id)
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    team_id INTEGER REFERENCES teams(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS message_delivery (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id INTEGER NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    delivered INTEGER NOT NULL DEFAULT 0,
    delivered_at INTEGER,
    UNIQUE(message_id, user_id)
);

CREATE INDEX IF NOT EXISTS idx_users_team ON users(team_id);
CREATE INDEX IF NOT EXISTS idx_solves_challenge ON solves(challenge_id);
CREATE INDEX IF NOT EXISTS idx_delivery_user_pending ON message_delivery(user_id, delivered);
"""

# Columns added after the first schema revision: (table, column, ddl)
MIGRATIONS = [
    ("admins", "session_token", "ALTER TABLE admins ADD COLUMN session_token TEXT"),
    ("admins", "session_expires_at", "ALTER TABLE admins ADD COLUMN session_expires_at INTEGER"),
    ("users", "registered_at", "ALTER TABLE users ADD COLUMN registered_at INTEGER NOT NULL DEFAULT 0"),
    (
        "users",
        "made_final_submission",
        "ALTER TABLE users ADD COLUMN made_final_submission INTEGER NOT NULL DEFAULT 0",
    ),
]

SAMPLE_TEAMS = ["Tech Wizards", "Binary Bandits", "Circuit Breakers"]
SAMPLE_TEAM_PASSWORD = "password123"
SAMPLE_CHALLENGES = [
    ("Find the Beacon", "Beacon", 100, 48.8584, 2.2945, 48.8554, 2.2975, "a1b2c3d4e5f6g7h8i9j0"),
    ("Decode the Signal", "Signal", 150, 48.8614, 2.3375, 48.8584, 2.3405, "b2c3d4e5f6g7h8i9j0k1"),
    ("Capture the Flag", "CTF", 200, 48.8744, 2.2945, 48.8714, 2.2975, "c3d4e5f6g7h8i9j0k1l2"),
]


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_iso(value: Optional[int]) -> Optional[str]:
    """Format epoch milliseconds as an ISO 8601 UTC string."""
    if value is None:
        return None
    dt = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class DatabaseManager:
    """Owns the SQLite file: schema, connections, scoped transactions and the read cache."""

    def __init__(
        self,
        db_path: str,
        config: Any,
    ) -> None:
        self.db_path = db_path
        self.config = config
        # Simple in-memory cache with TTL
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self._cache_ttl = config.get("leaderboard", "cache_ttl")
        self._busy_timeout_ms = config.get("database", "busy_timeout_ms")

    def get_cached(
        self,
        cache_key: str,
    ) -> Optional[Any]:
        """
        Get value from cache if valid.

        @param cache_key: String cache key to lookup
        @return: Cached data if valid, None if expired or not found
        """
        if cache_key in self._cache:
            data, timestamp = self._cache[cache_key]

            if time.time() - timestamp < self._cache_ttl:
                return data
            else:
                del self._cache[cache_key]
        return None

    def set_cached(
        self,
        cache_key: str,
        data: Any,
    ) -> None:
        """
        Set value in cache with current timestamp.

        @param cache_key: String cache key to store data under
        @param data: Data to cache
        """
        if self._cache_ttl:
            self._cache[cache_key] = (data, time.time())

    def invalidate_cache(self) -> None:
        """Drop every cached entry."""
        self._cache.clear()

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Open a connection in autocommit mode with foreign keys enforced.

        Transactions are issued explicitly through transaction().
        """
        async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
            db.row_factory = aiosqlite.Row
            await db.execute("PRAGMA foreign_keys=ON")
            await db.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
            yield db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Scoped write transaction.

        BEGIN IMMEDIATE takes the database write lock up front, so two
        transactions never both read a row and then both write it. The
        transaction commits when the block exits normally and rolls back
        on any exception. Committed writes invalidate the read cache.
        """
        async with self.connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
            except BaseException:
                await db.execute("ROLLBACK")
                raise
            await db.execute("COMMIT")
        self.invalidate_cache()

    async def init_db(self) -> None:
        """
        Initialize the SQLite database with schema and indexes.

        Creates tables, indexes, and performs schema migrations if needed.
        """
        async with self.connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")
            await db.executescript(SCHEMA_SQL)
            await self._migrate_schema(db)

    async def _column_exists(
        self,
        db: aiosqlite.Connection,
        table: str,
        column: str,
    ) -> bool:
        cursor = await db.execute(f"PRAGMA table_info({table})")
        columns = await cursor.fetchall()
        return any(row["name"] == column for row in columns)

    async def _migrate_schema(
        self,
        db: aiosqlite.Connection,
    ) -> None:
        """
        Handle database schema migrations.

        @param db: Active database connection
        """
        for table, column, ddl in MIGRATIONS:
            if not await self._column_exists(db, table, column):
                logger.info("Migrating database schema: adding %s.%s", table, column)
                await db.execute(ddl)

    async def seed_defaults(
        self,
        credentials: Any,
    ) -> None:
        """
        Bootstrap the admin account and, if configured, the sample event data.

        @param credentials: CredentialVerifier used to hash seeded passwords
        """
        admin_username = self.config.get("security", "admin_username")
        admin_password = self.config.get("security", "admin_password")
        seed_sample = bool(self.config.get("database", "seed_sample_data"))

        async with self.connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM admins")
            admins_count = (await cursor.fetchone())[0]
            cursor = await db.execute("SELECT COUNT(*) FROM teams")
            teams_count = (await cursor.fetchone())[0]

        admin_hash = None
        if admins_count == 0:
            admin_hash = await credentials.hash_password(admin_password)
        team_hashes = []
        if seed_sample and teams_count == 0:
            for name in SAMPLE_TEAMS:
                team_hashes.append((name, await credentials.hash_password(SAMPLE_TEAM_PASSWORD)))

        if admin_hash is None and not team_hashes:
            return

        created = now_ms()
        default_max = self.config.get("teams", "default_max_members")
        async with self.transaction() as db:
            if admin_hash is not None:
                await db.execute(
                    "INSERT INTO admins (username, password, created_at) VALUES (?, ?, ?)",
                    (admin_username, admin_hash, created),
                )
                logger.info("Created admin account '%s'", admin_username)

            if team_hashes:
                await db.executemany(
                    "INSERT INTO teams (name, password, max_members, created_at) VALUES (?, ?, ?, ?)",
                    [(name, pw_hash, default_max, created) for name, pw_hash in team_hashes],
                )
                await db.executemany(
                    "INSERT INTO challenges (name, short_name, points, "
                    "location_top_left_lat, location_top_left_lng, "
                    "location_bottom_right_lat, location_bottom_right_lng, key_hash, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [row + (created,) for row in SAMPLE_CHALLENGES],
                )
                logger.info(
                    "Sample data inserted: %d teams, %d challenges",
                    len(team_hashes),
                    len(SAMPLE_CHALLENGES),
                )

    async def log_summary(self) -> None:
        """
        Log a one-line summary of the event state.

        Used at startup so the operator can see what the database holds.
        """
        async with self.connect() as db:
            cursor = await db.execute("""
                SELECT
                    (SELECT COUNT(*) FROM teams) AS teams,
                    (SELECT COUNT(*) FROM users) AS devices,
                    (SELECT COUNT(*) FROM users WHERE made_final_submission = 1) AS finalized,
                    (SELECT COUNT(*) FROM challenges) AS challenges,
                    (SELECT COUNT(*) FROM solves) AS solves
            """)
            row = await cursor.fetchone()

        logger.info(
            "Database %s: %d teams, %d devices (%d finalized), %d challenges, %d solves",
            self.db_path,
            row["teams"],
            row["devices"],
            row["finalized"],
            row["challenges"],
            row["solves"],
        )
