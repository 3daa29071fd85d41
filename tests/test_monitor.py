"""Tests for the background pollers."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from plexmate.config import UserMap
from plexmate.core.exceptions import UpstreamError
from plexmate.models import MediaType, SubscriptionKind
from plexmate.monitor import ArrHistoryMonitor, PeriodicWorker, ProcessedIds, RequestWatcher
from plexmate.notifications import EventResult
from plexmate.plex import EpisodeEvent, MovieEvent

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def iso(moment: datetime) -> str:
    return moment.isoformat().replace("+00:00", "Z")


def sonarr_item(item_id, minutes_ago, season=1, episode=1, title="Foo"):
    return {
        "id": item_id,
        "date": iso(NOW - timedelta(minutes=minutes_ago)),
        "series": {"title": title},
        "episode": {"seasonNumber": season, "episodeNumber": episode},
    }


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def engine():
    engine = MagicMock()
    engine.handle_event = AsyncMock(side_effect=lambda event: EventResult(kind="episode", title="Foo", matched=1))
    return engine


def history_client(records):
    client = MagicMock()
    client.configured = True
    client.get_import_history = AsyncMock(return_value=records)
    return client


class TestProcessedIds:
    """Tests for the bounded processed-id set."""

    def test_trims_oldest(self):
        ids = ProcessedIds(limit=4, keep=2)
        for i in range(5):
            ids.add(str(i))

        assert len(ids) == 2
        assert "0" not in ids
        assert "3" in ids and "4" in ids


class TestArrHistoryMonitor:
    """Tests for ArrHistoryMonitor."""

    @pytest.mark.asyncio
    async def test_first_run_only_replays_recent_imports(self, engine):
        """Should ignore imports older than the first-run window."""
        sonarr = history_client([sonarr_item(1, 10, episode=2), sonarr_item(2, 120, episode=1)])
        monitor = ArrHistoryMonitor(engine, sonarr=sonarr, clock=lambda: NOW)

        handled = await monitor.check_history("sonarr", sonarr, monitor._sonarr_event)

        assert handled == 1
        engine.handle_event.assert_awaited_once_with(EpisodeEvent("Foo", 1, 2))
        assert "sonarr-2" in monitor.processed
        assert monitor.last_check["sonarr"] == NOW

    @pytest.mark.asyncio
    async def test_later_runs_only_handle_new_imports(self, engine):
        clock = FakeClock(NOW)
        sonarr = history_client([sonarr_item(1, 5)])
        monitor = ArrHistoryMonitor(engine, sonarr=sonarr, clock=clock)
        await monitor.poll()

        clock.now = NOW + timedelta(minutes=15)
        sonarr.get_import_history.return_value = [
            sonarr_item(2, -10, episode=2),
            sonarr_item(1, 5),
        ]
        await monitor.poll()

        assert engine.handle_event.await_count == 2
        assert engine.handle_event.await_args_list[1].args[0] == EpisodeEvent("Foo", 1, 2)

    @pytest.mark.asyncio
    async def test_radarr_imports_become_movie_events(self, engine):
        radarr = history_client([{"id": 9, "date": iso(NOW), "movie": {"title": "Heat", "year": 1995}}])
        monitor = ArrHistoryMonitor(engine, radarr=radarr, clock=lambda: NOW)

        await monitor.poll()

        engine.handle_event.assert_awaited_once_with(MovieEvent("Heat", 1995))

    @pytest.mark.asyncio
    async def test_items_without_episode_info_are_skipped(self, engine):
        sonarr = history_client([{"id": 3, "date": iso(NOW), "series": {"title": "Foo"}}])
        monitor = ArrHistoryMonitor(engine, sonarr=sonarr, clock=lambda: NOW)

        assert await monitor.check_history("sonarr", sonarr, monitor._sonarr_event) == 0
        engine.handle_event.assert_not_called()
        assert "sonarr-3" in monitor.processed

    @pytest.mark.asyncio
    async def test_upstream_error(self, engine):
        sonarr = history_client([])
        sonarr.get_import_history.side_effect = UpstreamError("sonarr", "HTTP 500")
        monitor = ArrHistoryMonitor(engine, sonarr=sonarr, clock=lambda: NOW)

        assert await monitor.check_history("sonarr", sonarr, monitor._sonarr_event) == 0
        assert monitor.last_check["sonarr"] is None

    @pytest.mark.asyncio
    async def test_unconfigured_clients_are_skipped(self, engine):
        sonarr = history_client([sonarr_item(1, 0)])
        sonarr.configured = False
        monitor = ArrHistoryMonitor(engine, sonarr=sonarr, clock=lambda: NOW)

        await monitor.poll()

        sonarr.get_import_history.assert_not_called()


class TestRequestWatcher:
    """Tests for RequestWatcher."""

    @pytest.fixture
    def overseerr(self):
        client = MagicMock()
        client.configured = True
        client.get_requests = AsyncMock(return_value=[{"id": 4}, {"id": 2}])
        client.get_media_details = AsyncMock(return_value={"name": "Foo"})
        client.created_request_ids = set()
        return client

    @pytest.fixture
    def watcher(self, store, overseerr):
        return RequestWatcher(store, overseerr, UserMap({"3": "42"}))

    @pytest.mark.asyncio
    async def test_first_run_records_highest_id(self, watcher, store):
        """Should not subscribe anyone for requests that existed before startup."""
        assert await watcher.poll() == 0
        assert watcher.last_request_id == 4
        assert await store.list_by_user("42") == []

    @pytest.mark.asyncio
    async def test_new_requests_subscribe_mapped_users(self, watcher, overseerr, store):
        await watcher.poll()
        overseerr.get_requests.return_value = [
            {"id": 6, "type": "tv", "media": {"tmdbId": 1396}, "requestedBy": {"id": 3}},
            {"id": 5, "type": "movie", "media": {"tmdbId": 603, "title": "The Matrix"}, "requestedBy": {"id": 3}},
            {"id": 7, "type": "movie", "media": {"tmdbId": 604}, "requestedBy": {"id": 9}},
            {"id": 4},
        ]

        assert await watcher.poll() == 2
        assert watcher.last_request_id == 7

        subs = {s.media_id: s for s in await store.list_by_user("42")}
        assert subs["603"].media_title == "The Matrix"
        assert subs["1396"].media_type is MediaType.SHOW
        assert subs["1396"].media_title == "Foo"
        assert all(s.kind is SubscriptionKind.RELEASE_ONLY for s in subs.values())
        overseerr.get_media_details.assert_awaited_once_with(MediaType.SHOW, 1396)

    @pytest.mark.asyncio
    async def test_skips_requests_made_by_plexmate(self, watcher, overseerr, store):
        """Should not subscribe the requester again for a request plexmate created."""
        await watcher.poll()
        overseerr.created_request_ids.add(5)
        overseerr.get_requests.return_value = [
            {"id": 5, "type": "movie", "media": {"tmdbId": 603, "title": "The Matrix"}, "requestedBy": {"id": 3}},
        ]

        assert await watcher.poll() == 0
        assert watcher.last_request_id == 5
        assert await store.list_by_user("42") == []

    @pytest.mark.asyncio
    async def test_overseerr_down(self, watcher, overseerr):
        overseerr.get_requests.side_effect = UpstreamError("overseerr", "timeout")
        assert await watcher.poll() == 0
        assert watcher.last_request_id == 0


class TestPeriodicWorker:
    """Tests for the worker loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        class Counter(PeriodicWorker):
            calls = 0

            async def poll(self):
                self.calls += 1
                if self.calls == 1:
                    raise RuntimeError("first poll fails")

        worker = Counter(interval=0.01)
        await worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()

        assert worker.calls >= 2
        assert not worker.running
