"""Pytest fixtures."""

import asyncio

import pytest

from plexmate.database import SubscriptionStore


class _ManualTimer:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when advance() is awaited."""

    def __init__(self):
        self.time = 0.0
        self.timers: list[_ManualTimer] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay, callback):
        timer = _ManualTimer(self.time + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[_ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    async def advance(self, seconds: float):
        self.time += seconds
        while True:
            due = sorted(
                (t for t in self.timers if not t.cancelled and t.due <= self.time),
                key=lambda t: t.due,
            )
            if not due:
                return
            timer = due[0]
            self.timers.remove(timer)
            await timer.callback()


class FakeNotifier:
    """Records notifications; users in fail_for get a failed delivery."""

    def __init__(self):
        self.sent = []
        self.fail_for: set[str] = set()

    async def send(self, user_id, notification):
        if str(user_id) in self.fail_for:
            return False
        self.sent.append((str(user_id), notification))
        return True

    def sent_to(self, user_id) -> list:
        return [n for uid, n in self.sent if uid == str(user_id)]


class FakeCatalog:
    def __init__(self, poster="/poster.jpg"):
        self.poster = poster
        self.lookups = []

    async def find_poster(self, title, media_type):
        self.lookups.append((title, media_type))
        return self.poster


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "data" / "plexmate.db")


@pytest.fixture
def store(db_path):
    """Initialized subscription store on a temporary database."""
    subscription_store = SubscriptionStore(db_path)
    asyncio.run(subscription_store.init_db())
    return subscription_store


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def catalog():
    return FakeCatalog()
