"""
Match incoming media titles against stored subscription titles.

Library events carry no identifier shared with the subscription store, only
a display title, so matching is done in two passes: an exact
(case-insensitive) lookup, then a containment check on normalized titles.
"""
import re

from plexmate.core.logging import get_logger
from plexmate.database import SubscriptionStore, escape_like
from plexmate.models import MediaType, Subscription

logger = get_logger("matching")

_PUNCTUATION = re.compile(r"[:;.,\-_!?'\"&()\[\]/]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str | None) -> str:
    """
    Lower-case, replace punctuation with spaces and collapse whitespace.

    "Foo: The Show" -> "foo the show"
    """
    if not title:
        return ""
    text = _PUNCTUATION.sub(" ", title.lower())
    return _WHITESPACE.sub(" ", text).strip()


def titles_match(a: str | None, b: str | None) -> bool:
    """True when the normalized titles are equal or one contains the other."""
    norm_a = normalize_title(a)
    norm_b = normalize_title(b)
    if not norm_a or not norm_b:
        return False
    return norm_a == norm_b or norm_a in norm_b or norm_b in norm_a


class TitleMatcher:
    def __init__(self, store: SubscriptionStore):
        self.store = store

    async def match(self, title: str, media_type: MediaType) -> list[Subscription]:
        """Return every subscription whose title refers to the given media."""
        if not title:
            return []

        exact = await self.store.find_by_title(escape_like(title), media_type)
        if exact:
            logger.debug("Exact title match for '%s': %d subscription(s)", title, len(exact))
            return exact

        candidates = await self.store.find_by_title("%", media_type)
        matches = [sub for sub in candidates if titles_match(title, sub.media_title)]

        if matches:
            logger.info(
                "Normalized title match for '%s': %s",
                title, ", ".join(sorted({sub.media_title for sub in matches}))
            )
        else:
            logger.info("No %s subscriptions match '%s'", media_type.value, title)
        return matches
