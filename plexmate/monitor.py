"""
Background pollers.

ArrHistoryMonitor watches Sonarr/Radarr import history so subscribers are
told about new media even when Plex webhooks are not configured. Imports
are fed through the same NotificationEngine paths as Plex events.

RequestWatcher picks up requests made directly in Overseerr and subscribes
the mapped Discord user to them. Requests plexmate created itself are
skipped; their requester was subscribed when the request was made.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from plexmate.arr import RadarrClient, SonarrClient, parse_timestamp
from plexmate.config import UserMap
from plexmate.core.exceptions import NotConfiguredError, UpstreamError
from plexmate.core.logging import get_logger
from plexmate.database import SubscriptionStore
from plexmate.models import MediaType, SubscriptionKind
from plexmate.notifications import NotificationEngine
from plexmate.overseerr import OverseerrClient, request_title
from plexmate.plex import EpisodeEvent, MovieEvent

logger = get_logger("monitor")

FIRST_RUN_WINDOW = timedelta(minutes=30)
PROCESSED_LIMIT = 1000
PROCESSED_KEEP = 500


class ProcessedIds:
    """Insertion-ordered set that forgets its oldest half once it grows too large."""

    def __init__(self, limit: int = PROCESSED_LIMIT, keep: int = PROCESSED_KEEP):
        self.limit = limit
        self.keep = keep
        self._ids: dict[str, None] = {}

    def __contains__(self, item: str) -> bool:
        return item in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, item: str):
        self._ids[item] = None
        if len(self._ids) > self.limit:
            self._ids = dict.fromkeys(list(self._ids)[-self.keep:])


class PeriodicWorker:
    """Runs poll() every interval seconds until stopped."""

    name = "worker"

    def __init__(self, interval: float):
        self.interval = interval
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll(self):
        raise NotImplementedError

    async def start(self):
        if self.running:
            logger.warning("%s already running", self.name)
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._main_loop())
        logger.info("%s started (every %.0fs)", self.name, self.interval)

    async def stop(self):
        if not self.running:
            return
        self._stop_event.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        logger.info("%s stopped", self.name)

    async def _main_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.poll()
            except Exception:
                logger.exception("%s poll failed", self.name)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue


class ArrHistoryMonitor(PeriodicWorker):
    name = "arr-history-monitor"

    def __init__(
        self,
        engine: NotificationEngine,
        sonarr: Optional[SonarrClient] = None,
        radarr: Optional[RadarrClient] = None,
        interval: float = 15 * 60,
        history_limit: int = 30,
        clock: Callable[[], datetime] | None = None,
    ):
        super().__init__(interval)
        self.engine = engine
        self.sonarr = sonarr
        self.radarr = radarr
        self.history_limit = history_limit
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.processed = ProcessedIds()
        self.last_check: dict[str, Optional[datetime]] = {"sonarr": None, "radarr": None}

    async def poll(self):
        if self.sonarr is not None and self.sonarr.configured:
            await self.check_history("sonarr", self.sonarr, self._sonarr_event)
        if self.radarr is not None and self.radarr.configured:
            await self.check_history("radarr", self.radarr, self._radarr_event)

    @staticmethod
    def _sonarr_event(item: dict):
        series = item.get("series") or {}
        episode = item.get("episode") or {}
        title = series.get("title")
        season = episode.get("seasonNumber", item.get("seasonNumber"))
        number = episode.get("episodeNumber", item.get("episodeNumber"))
        if not title or season is None or number is None:
            return None
        return EpisodeEvent(show_title=title, season=int(season), episode=int(number))

    @staticmethod
    def _radarr_event(item: dict):
        movie = item.get("movie") or {}
        if not movie.get("title"):
            return None
        return MovieEvent(title=movie["title"], year=movie.get("year"))

    async def check_history(self, source: str, client, to_event) -> int:
        """Process new imports from one download manager. Returns how many were handled."""
        now = self.clock()
        try:
            records = await client.get_import_history(self.history_limit)
        except (NotConfiguredError, UpstreamError) as e:
            logger.error("Error checking %s history: %s", source, e)
            return 0

        last_check = self.last_check.get(source)
        handled = 0
        for item in records:
            unique_id = f"{source}-{item.get('id')}"
            if unique_id in self.processed:
                continue

            item_time = parse_timestamp(item.get("date"))
            if item_time is None:
                self.processed.add(unique_id)
                continue

            # Don't replay old imports when the service starts
            if last_check is None and now - item_time > FIRST_RUN_WINDOW:
                self.processed.add(unique_id)
                continue

            if last_check is not None and item_time <= last_check:
                continue

            event = to_event(item)
            if event is None:
                logger.warning("Skipping %s history item %s without title/episode info", source, item.get("id"))
            else:
                result = await self.engine.handle_event(event)
                logger.info("%s import '%s' matched %d subscription(s)", source, result.title, result.matched)
                handled += 1
            self.processed.add(unique_id)

        self.last_check[source] = now
        return handled


class RequestWatcher(PeriodicWorker):
    name = "overseerr-request-watcher"

    def __init__(
        self,
        store: SubscriptionStore,
        overseerr: OverseerrClient,
        user_map: UserMap,
        interval: float = 5 * 60,
        take: int = 20,
    ):
        super().__init__(interval)
        self.store = store
        self.overseerr = overseerr
        self.user_map = user_map
        self.take = take
        self.last_request_id = 0

    async def poll(self) -> int:
        """Subscribe requesters to requests newer than the last one seen."""
        try:
            requests = await self.overseerr.get_requests(self.take)
        except (NotConfiguredError, UpstreamError) as e:
            logger.error("Error fetching Overseerr requests: %s", e)
            return 0
        if not requests:
            return 0

        ordered = sorted(requests, key=lambda r: r.get("id") or 0)
        if self.last_request_id == 0:
            self.last_request_id = max(r.get("id") or 0 for r in ordered)
            logger.info("First run: starting after Overseerr request %s", self.last_request_id)
            return 0

        added = 0
        for request in ordered:
            request_id = request.get("id") or 0
            if request_id <= self.last_request_id:
                continue
            if request_id in self.overseerr.created_request_ids:
                logger.info("Request %s was made by plexmate, skipping", request_id)
            elif await self._subscribe(request):
                added += 1
            self.last_request_id = max(self.last_request_id, request_id)
        return added

    async def _subscribe(self, request: dict) -> bool:
        media = request.get("media") or {}
        media_id = media.get("tmdbId")
        requester = (request.get("requestedBy") or {}).get("id")
        if not media_id or not request.get("type"):
            logger.error("Request %s has no tmdbId or type, cannot subscribe", request.get("id"))
            return False

        user_id = self.user_map.local_id(requester)
        if user_id is None:
            logger.info("No Discord user mapped for Overseerr user %s", requester)
            return False

        media_type = MediaType.parse(request["type"])
        title = request_title(request)
        if not title:
            try:
                details = await self.overseerr.get_media_details(media_type, media_id)
                title = details.get("title") or details.get("name")
            except (NotConfiguredError, UpstreamError) as e:
                logger.warning("Could not fetch title for %s %s: %s", media_type.value, media_id, e)
        title = title or f"Unknown {media_type.value} (ID: {media_id})"

        added = await self.store.add(user_id, media_id, media_type, title, SubscriptionKind.RELEASE_ONLY)
        if added:
            logger.info("Subscribed %s to %s '%s' from Overseerr request %s", user_id, media_type.value, title, request.get("id"))
        return added
