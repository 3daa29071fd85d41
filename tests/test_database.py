"""Tests for the subscription store."""

import aiosqlite
import pytest

from plexmate.database import SubscriptionStore, escape_like
from plexmate.models import MediaType, SubscriptionKind


class TestSubscriptions:
    """Tests for subscription CRUD."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, store):
        """Should store and return a subscription."""
        assert await store.add("42", 500, MediaType.SHOW, "Foo", SubscriptionKind.EPISODE)

        sub = await store.get("42", "500")
        assert sub.user_id == "42"
        assert sub.media_id == "500"
        assert sub.media_type is MediaType.SHOW
        assert sub.kind is SubscriptionKind.EPISODE
        assert sub.cursor is None
        assert sub.created_at is not None

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("42", "1") is None

    @pytest.mark.asyncio
    async def test_resubscribe_updates_in_place(self, store):
        """Should change the kind without duplicating or resetting the cursor."""
        await store.add("42", "500", MediaType.SHOW, "Foo", SubscriptionKind.EPISODE)
        await store.advance_cursor("42", "500", 1, 4)

        await store.add("42", "500", MediaType.SHOW, "Foo", SubscriptionKind.RELEASE_ONLY)

        subs = await store.list_by_user("42")
        assert len(subs) == 1
        assert subs[0].kind is SubscriptionKind.RELEASE_ONLY
        assert subs[0].cursor == (1, 4)

    @pytest.mark.asyncio
    async def test_list_by_user(self, store):
        await store.add("1", "10", MediaType.MOVIE, "Heat")
        await store.add("1", "11", MediaType.SHOW, "Foo")
        await store.add("2", "10", MediaType.MOVIE, "Heat")

        assert {s.media_id for s in await store.list_by_user("1")} == {"10", "11"}
        assert [s.media_id for s in await store.list_by_user("2")] == ["10"]
        assert await store.list_by_user("3") == []

    @pytest.mark.asyncio
    async def test_remove(self, store):
        """Should delete once and report False afterwards."""
        await store.add("42", "500", MediaType.MOVIE, "Heat")

        assert await store.remove("42", "500") is True
        assert await store.remove("42", "500") is False
        assert await store.get("42", "500") is None


class TestFindByTitle:
    """Tests for title lookups."""

    @pytest.mark.asyncio
    async def test_exact_is_case_insensitive(self, store):
        await store.add("1", "10", MediaType.SHOW, "Foo The Show")

        subs = await store.find_by_title(escape_like("foo the show"), MediaType.SHOW)
        assert [s.media_id for s in subs] == ["10"]

    @pytest.mark.asyncio
    async def test_scoped_to_media_type(self, store):
        await store.add("1", "10", MediaType.SHOW, "Dune")
        await store.add("1", "11", MediaType.MOVIE, "Dune")

        subs = await store.find_by_title("Dune", MediaType.MOVIE)
        assert [s.media_id for s in subs] == ["11"]

    @pytest.mark.asyncio
    async def test_wildcard_lists_everything(self, store):
        await store.add("1", "10", MediaType.SHOW, "Foo")
        await store.add("2", "11", MediaType.SHOW, "Bar")
        await store.add("2", "12", MediaType.MOVIE, "Baz")

        subs = await store.find_by_title("%", MediaType.SHOW)
        assert {s.media_id for s in subs} == {"10", "11"}

    @pytest.mark.asyncio
    async def test_escaped_title_does_not_wildcard(self, store):
        """Should treat % and _ in titles literally."""
        await store.add("1", "10", MediaType.MOVIE, "100% Wolf")
        await store.add("1", "11", MediaType.MOVIE, "100X Wolf")

        subs = await store.find_by_title(escape_like("100% Wolf"), MediaType.MOVIE)
        assert [s.media_id for s in subs] == ["10"]


class TestCursor:
    """Tests for the last-notified cursor."""

    @pytest.mark.asyncio
    async def test_advance(self, store):
        await store.add("42", "500", MediaType.SHOW, "Foo", SubscriptionKind.EPISODE)

        assert await store.advance_cursor("42", "500", 2, 3)
        assert (await store.get("42", "500")).cursor == (2, 3)

    @pytest.mark.asyncio
    async def test_never_moves_backwards(self, store):
        """Should keep the later position when given an earlier one."""
        await store.add("42", "500", MediaType.SHOW, "Foo", SubscriptionKind.EPISODE)
        await store.advance_cursor("42", "500", 2, 3)

        assert await store.advance_cursor("42", "500", 2, 1)
        assert await store.advance_cursor("42", "500", 1, 9)
        assert (await store.get("42", "500")).cursor == (2, 3)

        await store.advance_cursor("42", "500", 3, 1)
        assert (await store.get("42", "500")).cursor == (3, 1)

    @pytest.mark.asyncio
    async def test_missing_subscription(self, store):
        assert await store.advance_cursor("42", "999", 1, 1) is False


class TestDownloadHistory:
    """Tests for the download audit log."""

    @pytest.mark.asyncio
    async def test_record_and_read(self, store):
        await store.record_download("grab", "radarr", "movie", "Heat (1995)", "Bluray-1080p", "8.5 GB",
                                    "qBittorrent", {"movieId": 1})
        await store.record_download("download", "radarr", "movie", "Heat (1995)", data={"movieId": 1})

        history = await store.recent_downloads(10)
        assert [h["event_type"] for h in history] == ["download", "grab"]
        assert history[1]["download_client"] == "qBittorrent"
        assert history[1]["data"] == {"movieId": 1}

    @pytest.mark.asyncio
    async def test_limit(self, store):
        for i in range(5):
            await store.record_download("grab", "sonarr", "episode", f"Foo {i}")
        assert len(await store.recent_downloads(3)) == 3


class TestFailures:
    """Tests for storage failures."""

    @pytest.mark.asyncio
    async def test_uninitialized_database_reports_failure(self, tmp_path):
        """Should return False/None/[] instead of raising when tables are missing."""
        store = SubscriptionStore(str(tmp_path / "empty.db"))

        assert await store.add("1", "1", MediaType.MOVIE, "Heat") is False
        assert await store.get("1", "1") is None
        assert await store.list_by_user("1") == []
        assert await store.remove("1", "1") is False
        assert await store.advance_cursor("1", "1", 1, 1) is False
        assert await store.record_download("grab", "radarr", "movie", "Heat") is False

    @pytest.mark.asyncio
    async def test_unopenable_path_reports_failure(self, tmp_path):
        """Should degrade the same way when the database file cannot be opened at all."""
        store = SubscriptionStore(str(tmp_path / "missing_dir" / "x.db"))

        assert await store.add("1", "1", MediaType.MOVIE, "Heat") is False
        assert await store.get("1", "1") is None
        assert await store.list_by_user("1") == []
        assert await store.find_by_title("%", MediaType.MOVIE) == []
        assert await store.remove("1", "1") is False
        assert await store.advance_cursor("1", "1", 1, 1) is False
        assert await store.record_download("grab", "radarr", "movie", "Heat") is False
        assert await store.recent_downloads() == []


class TestMigration:
    """Tests for upgrading databases that used a boolean episode flag."""

    @pytest.mark.asyncio
    async def test_episode_flag_becomes_kind(self, tmp_path):
        path = str(tmp_path / "bot.db")
        async with aiosqlite.connect(path) as db:
            await db.execute("""
                CREATE TABLE subscriptions (
                    user_id TEXT NOT NULL,
                    media_id TEXT NOT NULL,
                    media_type TEXT NOT NULL,
                    media_title TEXT NOT NULL,
                    episode_subscription BOOLEAN NOT NULL DEFAULT 0,
                    last_notified_season INTEGER,
                    last_notified_episode INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (user_id, media_id)
                )
            """)
            await db.execute(
                "INSERT INTO subscriptions (user_id, media_id, media_type, media_title, episode_subscription) "
                "VALUES ('1', '10', 'tv', 'Foo', 1), ('1', '11', 'movie', 'Heat', 0)"
            )
            await db.commit()

        store = SubscriptionStore(path)
        await store.init_db()

        show = await store.get("1", "10")
        movie = await store.get("1", "11")
        assert show.kind is SubscriptionKind.EPISODE
        assert show.media_type is MediaType.SHOW
        assert movie.kind is SubscriptionKind.RELEASE_ONLY
