"""
Debounced per-(user, show) episode batching.

Each key owns at most one pending batch and one single-fire timer. Adding
episodes merges them into the batch and replaces the timer, so a burst of
imports produces one notification once the burst has been quiet for the
batch delay. Timers go through a Scheduler so tests can drive time by hand.
"""
import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, NamedTuple, Optional, Protocol

from plexmate.core.logging import get_logger

logger = get_logger("batching")


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> TimerHandle: ...


class LoopScheduler:
    """Runs callbacks on the running asyncio loop."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], Awaitable[None]]) -> TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(delay, 0), self._spawn, callback)

    def _spawn(self, callback: Callable[[], Awaitable[None]]):
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """Wait for callbacks that have already fired."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class BatchKey(NamedTuple):
    user_id: str
    media_id: str


@dataclass
class PendingBatch:
    title: str
    poster_path: Optional[str] = None
    episodes: set[tuple[int, int]] = field(default_factory=set)
    handle: Optional[TimerHandle] = None
    due_at: Optional[float] = None
    generation: int = 0

    def by_season(self) -> dict[int, list[int]]:
        seasons: dict[int, list[int]] = {}
        for season, episode in sorted(self.episodes):
            seasons.setdefault(season, []).append(episode)
        return seasons

    @property
    def highest(self) -> tuple[int, int]:
        return max(self.episodes)


DeliverFn = Callable[[BatchKey, PendingBatch], Awaitable[bool]]


class EpisodeBatcher:
    def __init__(self, deliver: DeliverFn, scheduler: Scheduler | None = None):
        self.deliver = deliver
        self.scheduler = scheduler or LoopScheduler()
        self._batches: dict[BatchKey, PendingBatch] = {}
        self._generations = itertools.count(1)

    def __len__(self) -> int:
        return len(self._batches)

    def __contains__(self, key) -> bool:
        return key in self._batches

    def pending(self, key: BatchKey) -> Optional[PendingBatch]:
        return self._batches.get(key)

    def add(
        self,
        key: BatchKey,
        episodes: Iterable[tuple[int, int]],
        delay: float,
        title: str,
        poster_path: str | None = None,
    ) -> PendingBatch:
        """Merge episodes into the key's batch and restart its flush timer."""
        batch = self._batches.get(key)
        if batch is None:
            batch = PendingBatch(title=title, poster_path=poster_path)
            self._batches[key] = batch
        elif poster_path and not batch.poster_path:
            batch.poster_path = poster_path

        batch.episodes.update((int(s), int(e)) for s, e in episodes)

        if batch.handle is not None:
            batch.handle.cancel()
        generation = next(self._generations)
        batch.generation = generation
        batch.due_at = self.scheduler.now() + delay
        batch.handle = self.scheduler.call_later(delay, lambda: self._on_timer(key, generation))

        logger.debug(
            "Batch %s/%s now holds %d episode(s), flushing in %.0fs",
            key.user_id, key.media_id, len(batch.episodes), delay
        )
        return batch

    async def _on_timer(self, key: BatchKey, generation: int):
        batch = self._batches.get(key)
        if batch is None or batch.generation != generation:
            return
        await self.flush(key)

    async def flush(self, key: BatchKey) -> bool:
        """
        Deliver the key's batch now.

        Returns True when something was delivered. Flushing a key with
        nothing pending is a no-op. When delivery fails the episodes go back
        into the pending batch so the next event for the key retries them.
        """
        batch = self._batches.pop(key, None)
        if batch is None:
            return False
        if batch.handle is not None:
            batch.handle.cancel()
            batch.handle = None
        if not batch.episodes:
            return False

        try:
            delivered = await self.deliver(key, batch)
        except Exception:
            logger.exception("Batch delivery raised for %s/%s", key.user_id, key.media_id)
            delivered = False

        if not delivered:
            current = self._batches.get(key)
            if current is None:
                batch.due_at = None
                self._batches[key] = batch
            else:
                current.episodes.update(batch.episodes)
            logger.warning(
                "Keeping %d undelivered episode(s) for %s/%s",
                len(batch.episodes), key.user_id, key.media_id
            )
        return delivered

    def cancel(self, key: BatchKey):
        """Stop the key's timer. Pending episodes stay until the next add or flush."""
        batch = self._batches.get(key)
        if batch is not None and batch.handle is not None:
            batch.handle.cancel()
            batch.handle = None
            batch.due_at = None

    def cancel_all(self):
        for key in list(self._batches):
            self.cancel(key)

    async def flush_all(self) -> int:
        """Flush every pending batch, e.g. on shutdown. Returns how many were delivered."""
        delivered = 0
        for key in list(self._batches):
            if await self.flush(key):
                delivered += 1
        return delivered
