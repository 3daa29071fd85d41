"""Tests for the subscribe/unsubscribe flow."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from plexmate.database import SubscriptionStore
from plexmate.models import AvailabilityRecord, MediaType, Reason, SubscriptionKind
from plexmate.subscriptions import SubscribeStatus, subscribe, unsubscribe


def resolver_returning(**fields):
    record = AvailabilityRecord(media_id=1396, media_type=MediaType.SHOW, **fields)
    resolver = MagicMock()
    resolver.resolve = AsyncMock(return_value=record)
    return resolver


class TestSubscribe:
    """Tests for subscribe()."""

    @pytest.mark.asyncio
    async def test_movie(self, store):
        resolver = resolver_returning()

        result = await subscribe(store, resolver, "42", 603, MediaType.MOVIE, "The Matrix")

        assert result.status is SubscribeStatus.CREATED
        assert result.subscription.kind is SubscriptionKind.RELEASE_ONLY
        resolver.resolve.assert_not_called()

    @pytest.mark.asyncio
    async def test_movie_episode_request_is_release_only(self, store):
        result = await subscribe(store, resolver_returning(), "42", 603, MediaType.MOVIE, "The Matrix",
                                 SubscriptionKind.EPISODE)
        assert result.subscription.kind is SubscriptionKind.RELEASE_ONLY

    @pytest.mark.asyncio
    async def test_episode_subscription_to_available_show(self, store):
        resolver = resolver_returning(is_available=True, has_pilot=True, reason=Reason.AVAILABLE)

        result = await subscribe(store, resolver, "42", 1396, MediaType.SHOW, "Breaking Bad", SubscriptionKind.EPISODE)

        assert result.status is SubscribeStatus.CREATED
        assert result.subscription.kind is SubscriptionKind.EPISODE
        assert result.availability.is_available

    @pytest.mark.asyncio
    async def test_needs_confirmation_without_pilot(self, store):
        """Should ask before subscribing to episodes of a show with nothing available."""
        resolver = resolver_returning(reason=Reason.UPCOMING)

        result = await subscribe(store, resolver, "42", 1396, MediaType.SHOW, "Foo", SubscriptionKind.EPISODE)

        assert result.status is SubscribeStatus.NEEDS_CONFIRMATION
        assert await store.get("42", "1396") is None

    @pytest.mark.asyncio
    async def test_confirmed_release_only(self, store):
        result = await subscribe(store, resolver_returning(), "42", 1396, MediaType.SHOW, "Foo",
                                 SubscriptionKind.EPISODE, accept_release_only=True)

        assert result.status is SubscribeStatus.CREATED
        assert (await store.get("42", "1396")).kind is SubscriptionKind.RELEASE_ONLY

    @pytest.mark.asyncio
    async def test_declined(self, store):
        result = await subscribe(store, resolver_returning(), "42", 1396, MediaType.SHOW, "Foo",
                                 SubscriptionKind.EPISODE, accept_release_only=False)

        assert result.status is SubscribeStatus.CANCELLED
        assert await store.get("42", "1396") is None

    @pytest.mark.asyncio
    async def test_resubscribe_updates(self, store):
        resolver = resolver_returning(is_available=True)
        await subscribe(store, resolver, "42", 1396, MediaType.SHOW, "Foo")

        result = await subscribe(store, resolver, "42", 1396, MediaType.SHOW, "Foo", SubscriptionKind.EPISODE)

        assert result.status is SubscribeStatus.UPDATED
        assert len(await store.list_by_user("42")) == 1

    @pytest.mark.asyncio
    async def test_storage_failure(self, tmp_path):
        broken = SubscriptionStore(str(tmp_path / "missing.db"))
        result = await subscribe(broken, resolver_returning(), "42", 603, MediaType.MOVIE, "Heat")

        assert result.status is SubscribeStatus.FAILED


class TestUnsubscribe:
    """Tests for unsubscribe()."""

    @pytest.mark.asyncio
    async def test_remove(self, store):
        await store.add("42", "603", MediaType.MOVIE, "Heat")

        assert await unsubscribe(store, "42", 603)
        assert not await unsubscribe(store, "42", 603)
