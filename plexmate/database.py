import json
from pathlib import Path

import aiosqlite

from plexmate.core.logging import get_logger
from plexmate.models import MediaType, Subscription, SubscriptionKind

logger = get_logger("database")

DB_ERRORS = (aiosqlite.Error, OSError)


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so a title is matched literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SubscriptionStore:
    """
    Persistent subscriptions and the download audit log, backed by SQLite.

    Every subscription operation touches a single row keyed by
    (user_id, media_id). Failures are logged and reported through the
    return value instead of raising.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path

    async def init_db(self):
        """Initialize the database with required tables."""
        db_path = Path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        async with aiosqlite.connect(self.database_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS subscriptions (
                    user_id TEXT NOT NULL,
                    media_id TEXT NOT NULL,
                    media_type TEXT NOT NULL,
                    media_title TEXT NOT NULL,
                    subscription_kind TEXT NOT NULL DEFAULT 'release_only',
                    last_notified_season INTEGER,
                    last_notified_episode INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (user_id, media_id)
                )
            """)

            # Append-only audit log of download-manager events
            await db.execute("""
                CREATE TABLE IF NOT EXISTS download_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    source TEXT NOT NULL,
                    media_type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    quality TEXT,
                    size TEXT,
                    download_client TEXT,
                    timestamp TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    data JSON
                )
            """)

            # Migration: databases created with a boolean episode_subscription flag
            cursor = await db.execute("PRAGMA table_info(subscriptions)")
            columns = [row[1] for row in await cursor.fetchall()]
            if 'subscription_kind' not in columns:
                await db.execute(
                    "ALTER TABLE subscriptions ADD COLUMN subscription_kind TEXT NOT NULL DEFAULT 'release_only'"
                )
                if 'episode_subscription' in columns:
                    await db.execute(
                        "UPDATE subscriptions SET subscription_kind = 'episode' WHERE episode_subscription = 1"
                    )
            await db.execute(
                "UPDATE subscriptions SET media_type = 'show' WHERE media_type = 'tv'"
            )

            await db.commit()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def add(
        self,
        user_id: str | int,
        media_id: str | int,
        media_type: MediaType,
        media_title: str,
        kind: SubscriptionKind = SubscriptionKind.RELEASE_ONLY,
    ) -> bool:
        """Create or update a subscription. The cursor and created_at survive re-subscribing."""
        try:
            async with aiosqlite.connect(self.database_path) as db:
                await db.execute(
                    """
                    INSERT INTO subscriptions
                    (user_id, media_id, media_type, media_title, subscription_kind)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, media_id) DO UPDATE SET
                        media_type = excluded.media_type,
                        media_title = excluded.media_title,
                        subscription_kind = excluded.subscription_kind
                    """,
                    (str(user_id), str(media_id), MediaType(media_type).value,
                     media_title, SubscriptionKind(kind).value)
                )
                await db.commit()
                return True
        except DB_ERRORS:
            logger.exception("Error adding subscription user=%s media=%s", user_id, media_id)
            return False

    async def get(self, user_id: str | int, media_id: str | int) -> Subscription | None:
        try:
            async with aiosqlite.connect(self.database_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM subscriptions WHERE user_id = ? AND media_id = ?",
                    (str(user_id), str(media_id))
                )
                row = await cursor.fetchone()
        except DB_ERRORS:
            logger.exception("Error getting subscription user=%s media=%s", user_id, media_id)
            return None
        return Subscription.from_row(dict(row)) if row else None

    async def list_by_user(self, user_id: str | int) -> list[Subscription]:
        """Get all subscriptions for a user, newest first."""
        return await self._select(
            "SELECT * FROM subscriptions WHERE user_id = ? ORDER BY created_at DESC, media_title",
            (str(user_id),)
        )

    async def find_by_title(self, pattern: str, media_type: MediaType) -> list[Subscription]:
        """
        Case-insensitive LIKE scan over one media type.

        Pass "%" to list every subscription of that type, or an
        escape_like()'d title for an exact match.
        """
        return await self._select(
            """
            SELECT * FROM subscriptions
            WHERE media_title LIKE ? ESCAPE '\\' AND media_type = ?
            """,
            (pattern, MediaType(media_type).value)
        )

    async def remove(self, user_id: str | int, media_id: str | int) -> bool:
        """Delete a subscription. Returns False when there was nothing to delete."""
        try:
            async with aiosqlite.connect(self.database_path) as db:
                cursor = await db.execute(
                    "DELETE FROM subscriptions WHERE user_id = ? AND media_id = ?",
                    (str(user_id), str(media_id))
                )
                await db.commit()
                return cursor.rowcount > 0
        except DB_ERRORS:
            logger.exception("Error removing subscription user=%s media=%s", user_id, media_id)
            return False

    async def advance_cursor(
        self,
        user_id: str | int,
        media_id: str | int,
        season: int,
        episode: int,
    ) -> bool:
        """
        Move the last-notified cursor forward to (season, episode).

        The cursor never moves backwards: an older position leaves the row
        untouched. Returns True when the row exists and is at or past the
        requested position afterwards.
        """
        try:
            async with aiosqlite.connect(self.database_path) as db:
                await db.execute(
                    """
                    UPDATE subscriptions
                    SET last_notified_season = ?, last_notified_episode = ?
                    WHERE user_id = ? AND media_id = ?
                    AND (
                        last_notified_season IS NULL
                        OR last_notified_season < ?
                        OR (last_notified_season = ? AND COALESCE(last_notified_episode, 0) < ?)
                    )
                    """,
                    (season, episode, str(user_id), str(media_id), season, season, episode)
                )
                await db.commit()
                cursor = await db.execute(
                    "SELECT 1 FROM subscriptions WHERE user_id = ? AND media_id = ?",
                    (str(user_id), str(media_id))
                )
                return await cursor.fetchone() is not None
        except DB_ERRORS:
            logger.exception("Error advancing cursor user=%s media=%s", user_id, media_id)
            return False

    async def _select(self, query: str, params: tuple) -> list[Subscription]:
        try:
            async with aiosqlite.connect(self.database_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(query, params)
                rows = await cursor.fetchall()
        except DB_ERRORS:
            logger.exception("Error querying subscriptions")
            return []
        return [Subscription.from_row(dict(row)) for row in rows]

    # =========================================================================
    # Download history
    # =========================================================================

    async def record_download(
        self,
        event_type: str,
        source: str,
        media_type: str,
        title: str,
        quality: str | None = None,
        size: str | None = None,
        download_client: str | None = None,
        data: dict | None = None,
    ) -> bool:
        """Append an event to the download audit log."""
        try:
            async with aiosqlite.connect(self.database_path) as db:
                await db.execute(
                    """
                    INSERT INTO download_history
                    (event_type, source, media_type, title, quality, size, download_client, data)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (event_type, source, media_type, title, quality, size, download_client,
                     json.dumps(data or {}))
                )
                await db.commit()
                return True
        except DB_ERRORS:
            logger.exception("Error recording download event %s for %s", event_type, title)
            return False

    async def recent_downloads(self, limit: int = 10) -> list[dict]:
        try:
            async with aiosqlite.connect(self.database_path) as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(
                    "SELECT * FROM download_history ORDER BY timestamp DESC, id DESC LIMIT ?",
                    (limit,)
                )
                rows = await cursor.fetchall()
        except DB_ERRORS:
            logger.exception("Error reading download history")
            return []

        history = []
        for row in rows:
            item = dict(row)
            try:
                item["data"] = json.loads(item["data"]) if item["data"] else {}
            except (TypeError, ValueError):
                item["data"] = {}
            history.append(item)
        return history
