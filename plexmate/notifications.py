"""
Routes classified library events to subscribers.

Movies notify and retire their subscriptions straight away. Episodes go
through the EpisodeBatcher for episode subscriptions; release-only
subscriptions are told once when the show (or a new season) arrives.
"""
import asyncio
from dataclasses import dataclass, field

from plexmate import messages
from plexmate.batching import BatchKey, EpisodeBatcher, PendingBatch, Scheduler
from plexmate.core.exceptions import NotConfiguredError, UpstreamError
from plexmate.core.logging import get_logger
from plexmate.database import SubscriptionStore
from plexmate.matching import TitleMatcher
from plexmate.models import MediaType, Subscription, SubscriptionKind
from plexmate.notifier import Notifier
from plexmate.plex import EpisodeEvent, LibraryEvent, MovieEvent, SeasonBundleEvent, UnknownEvent
from plexmate.tmdb import TMDBClient

logger = get_logger("notifications")

NOTIFIED = "notified"
BATCHED = "batched"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class EventResult:
    kind: str
    title: str | None = None
    matched: int = 0
    outcomes: dict[str, int] = field(default_factory=dict)

    def count(self, outcome: str) -> int:
        return self.outcomes.get(outcome, 0)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "title": self.title,
            "matched": self.matched,
            **{k: v for k, v in sorted(self.outcomes.items())},
        }


class NotificationEngine:
    def __init__(
        self,
        store: SubscriptionStore,
        notifier: Notifier,
        catalog: TMDBClient | None = None,
        scheduler: Scheduler | None = None,
        episode_delay: float = 300.0,
        bundle_delay: float = 1.0,
        matcher: TitleMatcher | None = None,
    ):
        self.store = store
        self.notifier = notifier
        self.catalog = catalog
        self.matcher = matcher or TitleMatcher(store)
        self.episode_delay = episode_delay
        self.bundle_delay = bundle_delay
        self.batcher = EpisodeBatcher(self._deliver_batch, scheduler)

    async def handle_event(self, event: LibraryEvent) -> EventResult:
        if isinstance(event, MovieEvent):
            return await self._handle_movie(event)
        if isinstance(event, EpisodeEvent):
            return await self._handle_episode(event)
        if isinstance(event, SeasonBundleEvent):
            return await self._handle_bundle(event)
        if isinstance(event, UnknownEvent):
            logger.info("Ignoring library event: %s", event.reason)
        return EventResult(kind="unknown")

    async def _lookup_poster(self, title: str, media_type: MediaType) -> str | None:
        if self.catalog is None:
            return None
        try:
            return await self.catalog.find_poster(title, media_type)
        except (NotConfiguredError, UpstreamError) as e:
            logger.info("No poster for '%s': %s", title, e)
            return None

    async def _fan_out(self, result: EventResult, subscriptions: list[Subscription], handler) -> EventResult:
        """Run handler per subscriber concurrently; one failure never stops the rest."""
        result.matched = len(subscriptions)
        outcomes = await asyncio.gather(
            *(self._guarded(handler, sub) for sub in subscriptions)
        )
        for outcome in outcomes:
            result.outcomes[outcome] = result.outcomes.get(outcome, 0) + 1
        return result

    async def _guarded(self, handler, sub: Subscription) -> str:
        try:
            return await handler(sub)
        except Exception:
            logger.exception("Error processing subscription user=%s media=%s", sub.user_id, sub.media_id)
            return FAILED

    async def _send(self, sub: Subscription, notification: messages.Notification) -> bool:
        try:
            return bool(await self.notifier.send(sub.user_id, notification))
        except Exception:
            logger.exception("Notifier raised for user %s", sub.user_id)
            return False

    async def _notify(self, sub: Subscription, notification: messages.Notification, retire: bool) -> str:
        if not await self._send(sub, notification):
            return FAILED
        if retire:
            if await self.store.remove(sub.user_id, sub.media_id):
                logger.info("Removed subscription user=%s media=%s after notification", sub.user_id, sub.media_id)
            else:
                logger.error("Error removing subscription user=%s media=%s", sub.user_id, sub.media_id)
        return NOTIFIED

    # =========================================================================
    # Movies
    # =========================================================================

    async def _handle_movie(self, event: MovieEvent) -> EventResult:
        result = EventResult(kind="movie", title=event.title)
        subscriptions = await self.matcher.match(event.title, MediaType.MOVIE)
        if not subscriptions:
            return result

        poster = await self._lookup_poster(event.title, MediaType.MOVIE)
        notification = messages.movie_available(event.title, poster)

        async def handle(sub: Subscription) -> str:
            return await self._notify(sub, notification, retire=True)

        return await self._fan_out(result, subscriptions, handle)

    # =========================================================================
    # Episodes
    # =========================================================================

    async def _handle_episode(self, event: EpisodeEvent) -> EventResult:
        result = EventResult(kind="episode", title=event.show_title)
        subscriptions = await self.matcher.match(event.show_title, MediaType.SHOW)
        if not subscriptions:
            return result

        poster = await self._lookup_poster(event.show_title, MediaType.SHOW)
        is_pilot = event.season == 1 and event.episode == 1

        async def handle(sub: Subscription) -> str:
            if sub.kind is SubscriptionKind.EPISODE:
                self.batcher.add(
                    BatchKey(sub.user_id, sub.media_id),
                    [(event.season, event.episode)],
                    self.episode_delay,
                    title=sub.media_title,
                    poster_path=poster,
                )
                return BATCHED
            if is_pilot:
                return await self._notify(sub, messages.show_available(event.show_title, poster), retire=True)
            logger.info(
                "Skipping release notification for %s: '%s' S%sE%s, only S1E1 announces a release",
                sub.user_id, event.show_title, event.season, event.episode
            )
            return SKIPPED

        return await self._fan_out(result, subscriptions, handle)

    async def _handle_bundle(self, event: SeasonBundleEvent) -> EventResult:
        result = EventResult(kind="season", title=event.show_title)
        subscriptions = await self.matcher.match(event.show_title, MediaType.SHOW)
        if not subscriptions:
            return result

        poster = await self._lookup_poster(event.show_title, MediaType.SHOW)
        is_first_season = event.season == 1
        should_announce = (1 in event.episodes) if is_first_season else True

        async def handle(sub: Subscription) -> str:
            if sub.kind is SubscriptionKind.EPISODE:
                self.batcher.add(
                    BatchKey(sub.user_id, sub.media_id),
                    [(event.season, episode) for episode in event.episodes],
                    self.bundle_delay,
                    title=sub.media_title,
                    poster_path=poster,
                )
                return BATCHED
            if not should_announce:
                logger.info(
                    "Skipping season 1 notification for %s: '%s' bundle has no episode 1",
                    sub.user_id, event.show_title
                )
                return SKIPPED
            # Later seasons keep the subscription so the next season is announced too
            return await self._notify(
                sub,
                messages.season_available(event.show_title, event.season, poster),
                retire=is_first_season,
            )

        return await self._fan_out(result, subscriptions, handle)

    async def _deliver_batch(self, key: BatchKey, batch: PendingBatch) -> bool:
        sub = await self.store.get(key.user_id, key.media_id)
        if sub is None:
            logger.info("Dropping batch for %s/%s: subscription no longer exists", key.user_id, key.media_id)
            return True

        notification = messages.new_episodes(sub.media_title, batch.by_season(), batch.poster_path)
        if not await self._send(sub, notification):
            return False

        season, episode = batch.highest
        if not await self.store.advance_cursor(sub.user_id, sub.media_id, season, episode):
            logger.error("Failed to update subscription cursor user=%s media=%s", sub.user_id, sub.media_id)
        return True

    async def shutdown(self):
        """Deliver whatever is still pending."""
        self.batcher.cancel_all()
        await self.batcher.flush_all()
