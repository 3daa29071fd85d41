"""
Plex webhook payload classification.

A `library.new` payload is turned into exactly one of MovieEvent,
EpisodeEvent, SeasonBundleEvent or UnknownEvent before any type-specific
field is read. Downstream code only ever sees these dataclasses.
"""
from dataclasses import dataclass, field
from typing import Optional, Union

from plexmate.core.exceptions import MalformedEventError
from plexmate.core.logging import get_logger

logger = get_logger("plex")

MOVIE_TYPES = ("1", "movie")
SHOW_TYPES = ("2", "show")
EPISODE_TYPES = ("3", "4", "episode", "{type}")

# Widest single range that is expanded
MAX_RANGE_SPAN = 5000


@dataclass(frozen=True)
class MovieEvent:
    title: str
    year: Optional[int] = None


@dataclass(frozen=True)
class EpisodeEvent:
    show_title: str
    season: int
    episode: int


@dataclass(frozen=True)
class SeasonBundleEvent:
    """Several episodes of one season added at once (index like "1-6,18,20")."""
    show_title: str
    season: int
    episodes: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class UnknownEvent:
    reason: str


LibraryEvent = Union[MovieEvent, EpisodeEvent, SeasonBundleEvent, UnknownEvent]


def parse_episode_ranges(range_string) -> list[int]:
    """
    Expand an episode range string.

    "1-3,7" -> [1, 2, 3, 7]. Parts that are not numbers, and ranges wider
    than MAX_RANGE_SPAN, are skipped. An empty string gives an empty list.
    """
    if range_string is None:
        return []

    episodes: list[int] = []
    for part in str(range_string).split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_str, _, end_str = part.partition("-")
            try:
                start, end = int(start_str), int(end_str)
            except ValueError:
                continue
            if end - start + 1 > MAX_RANGE_SPAN:
                logger.warning("Skipping oversized episode range '%s'", part)
                continue
            episodes.extend(range(start, end + 1))
        else:
            try:
                episodes.append(int(part))
            except ValueError:
                continue
    return episodes


def _season_number(metadata: dict) -> int:
    try:
        return int(metadata.get("parentIndex"))
    except (TypeError, ValueError):
        return 1


def _content_type(metadata: dict) -> str:
    plex_type = str(metadata.get("type", ""))
    guid = metadata.get("guid") or ""
    index = str(metadata.get("index") or "")

    if "movie" in guid:
        return "movie"
    if metadata.get("librarySectionType") == "movie":
        return "movie"
    if plex_type in MOVIE_TYPES:
        return "movie"

    if plex_type in SHOW_TYPES:
        # Movies carry neither a parent nor a grandparent title
        if not metadata.get("grandparentTitle") and not metadata.get("parentTitle") and metadata.get("year"):
            return "movie"
        if metadata.get("parentTitle"):
            return "season"
        return "show"

    if plex_type in EPISODE_TYPES:
        if metadata.get("grandparentTitle"):
            return "episode"
        if "-" in index or "," in index:
            return "season"

    return "unknown"


def validate_payload(payload) -> dict:
    """Reject payloads without an event name or Metadata block."""
    if not isinstance(payload, dict):
        raise MalformedEventError("Webhook payload must be a JSON object")
    if not payload.get("event") or not isinstance(payload.get("Metadata"), dict):
        raise MalformedEventError(
            "Invalid webhook payload",
            details={"missing": [k for k in ("event", "Metadata") if not payload.get(k)]},
        )
    return payload


def classify(metadata: dict) -> LibraryEvent:
    """Classify the Metadata block of a library.new payload."""
    content_type = _content_type(metadata)
    logger.debug("Plex type=%r classified as %s", metadata.get("type"), content_type)

    if content_type == "movie":
        title = metadata.get("title")
        if not title:
            return UnknownEvent("movie without a title")
        year = metadata.get("year")
        try:
            year = int(year) if year is not None else None
        except (TypeError, ValueError):
            year = None
        return MovieEvent(title=title, year=year)

    if content_type not in ("episode", "season"):
        return UnknownEvent(f"unsupported content type '{content_type}'")

    show_title = metadata.get("grandparentTitle") or metadata.get("parentTitle") or metadata.get("title")
    if not show_title:
        return UnknownEvent("could not determine show title")

    season = _season_number(metadata)

    if content_type == "episode":
        try:
            episode = int(metadata.get("index"))
        except (TypeError, ValueError):
            return UnknownEvent(f"invalid episode number {metadata.get('index')!r}")
        return EpisodeEvent(show_title=show_title, season=season, episode=episode)

    episodes = parse_episode_ranges(metadata.get("index"))
    if not episodes:
        return UnknownEvent(f"no valid episodes in range {metadata.get('index')!r}")
    return SeasonBundleEvent(show_title=show_title, season=season, episodes=tuple(episodes))
