"""
Subscribe/unsubscribe flow used by the chat front end.

Episode subscriptions rely on episodes of the show arriving in the
library. When the show has nothing available yet the user is asked to
confirm a release-only subscription instead.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from plexmate.availability import AvailabilityResolver
from plexmate.core.logging import get_logger
from plexmate.database import SubscriptionStore
from plexmate.models import AvailabilityRecord, MediaType, Subscription, SubscriptionKind

logger = get_logger("subscriptions")


class SubscribeStatus(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    NEEDS_CONFIRMATION = "needs_confirmation"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class SubscribeResult:
    status: SubscribeStatus
    subscription: Optional[Subscription] = None
    availability: Optional[AvailabilityRecord] = None
    message: str = ""

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "subscription": self.subscription.to_dict() if self.subscription else None,
            "availability": self.availability.to_dict() if self.availability else None,
            "message": self.message,
        }


async def subscribe(
    store: SubscriptionStore,
    resolver: AvailabilityResolver,
    user_id: str,
    media_id: str | int,
    media_type: MediaType,
    title: str,
    kind: SubscriptionKind = SubscriptionKind.RELEASE_ONLY,
    accept_release_only: bool | None = None,
) -> SubscribeResult:
    """
    Create or update a subscription.

    accept_release_only answers the confirmation step for episode
    subscriptions to shows with no available episodes: None asks for
    confirmation, True falls back to a release-only subscription, False
    cancels.
    """
    if media_type is MediaType.MOVIE and kind is SubscriptionKind.EPISODE:
        kind = SubscriptionKind.RELEASE_ONLY

    availability = None
    if media_type is MediaType.SHOW and kind is SubscriptionKind.EPISODE:
        availability = await resolver.resolve(MediaType.SHOW, int(media_id))
        if not availability.has_pilot and not availability.is_available:
            if accept_release_only is None:
                return SubscribeResult(
                    status=SubscribeStatus.NEEDS_CONFIRMATION,
                    availability=availability,
                    message=(
                        f"{title} doesn't have season 1 episode 1 available yet. "
                        "Episode notifications may not work until the show is added. "
                        "Subscribe to the release instead?"
                    ),
                )
            if not accept_release_only:
                return SubscribeResult(status=SubscribeStatus.CANCELLED, availability=availability,
                                       message="Subscription cancelled")
            kind = SubscriptionKind.RELEASE_ONLY

    existing = await store.get(user_id, media_id)
    if not await store.add(user_id, media_id, media_type, title, kind):
        return SubscribeResult(status=SubscribeStatus.FAILED, availability=availability,
                               message="Failed to save subscription")

    subscription = await store.get(user_id, media_id)
    status = SubscribeStatus.UPDATED if existing else SubscribeStatus.CREATED
    logger.info("Subscription %s: user=%s %s '%s' (%s)", status.value, user_id, media_type.value, title, kind.value)

    if kind is SubscriptionKind.EPISODE:
        message = f"You will receive episode notifications for \"{title}\""
    else:
        message = f"You will be notified when \"{title}\" is available"
    return SubscribeResult(status=status, subscription=subscription, availability=availability, message=message)


async def unsubscribe(store: SubscriptionStore, user_id: str, media_id: str | int) -> bool:
    removed = await store.remove(user_id, media_id)
    if removed:
        logger.info("Unsubscribed user=%s media=%s", user_id, media_id)
    return removed
