"""
Domain types shared by the store, resolver and notification engine.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class MediaType(str, Enum):
    MOVIE = "movie"
    SHOW = "show"

    @classmethod
    def parse(cls, value: str) -> "MediaType":
        """Accept the Overseerr/TMDB spelling ("tv") as well as our own."""
        value = (value or "").strip().lower()
        if value in ("tv", "series", "show"):
            return cls.SHOW
        return cls(value)

    @property
    def api_path(self) -> str:
        """Path segment used by TMDB and Overseerr."""
        return "tv" if self is MediaType.SHOW else "movie"


class SubscriptionKind(str, Enum):
    RELEASE_ONLY = "release_only"
    EPISODE = "episode"


class Reason(str, Enum):
    """Why an item is or is not watchable right now."""
    AVAILABLE = "available"
    DOWNLOADING = "downloading"
    AWAITING_RELEASE = "awaiting_release"
    IN_DOWNLOAD_MANAGER = "in_download_manager"
    NOT_IN_DOWNLOAD_MANAGER = "not_in_download_manager"
    UPCOMING = "upcoming"
    PARTIALLY_AVAILABLE = "partially_available"
    UNKNOWN = "unknown"
    NOT_CONFIGURED = "not_configured"


@dataclass
class Subscription:
    user_id: str
    media_id: str
    media_type: MediaType
    media_title: str
    kind: SubscriptionKind
    last_notified_season: Optional[int] = None
    last_notified_episode: Optional[int] = None
    created_at: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.user_id, self.media_id)

    @property
    def cursor(self) -> Optional[tuple[int, int]]:
        if self.last_notified_season is None:
            return None
        return (self.last_notified_season, self.last_notified_episode or 0)

    @classmethod
    def from_row(cls, row: dict) -> "Subscription":
        return cls(
            user_id=row["user_id"],
            media_id=row["media_id"],
            media_type=MediaType.parse(row["media_type"]),
            media_title=row["media_title"],
            kind=SubscriptionKind(row["subscription_kind"]),
            last_notified_season=row["last_notified_season"],
            last_notified_episode=row["last_notified_episode"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "media_id": self.media_id,
            "media_type": self.media_type.value,
            "media_title": self.media_title,
            "subscription_kind": self.kind.value,
            "last_notified_season": self.last_notified_season,
            "last_notified_episode": self.last_notified_episode,
            "created_at": self.created_at,
        }


@dataclass
class AvailabilityRecord:
    """Reconciled answer to "can this be watched now?"."""
    media_id: int
    media_type: MediaType
    is_available: bool = False
    reason: Reason = Reason.UNKNOWN
    season: Optional[int] = None
    in_download_manager: bool = False
    has_file: bool = False           # Movies: file on disk
    has_episodes: bool = False       # Shows: at least one downloaded episode
    has_pilot: bool = False          # Shows: S1E1 downloaded
    is_released: Optional[bool] = None
    is_upcoming: bool = False
    is_downloading: bool = False
    request_status: Optional[int] = None
    complete_seasons: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "media_id": self.media_id,
            "media_type": self.media_type.value,
            "season": self.season,
            "is_available": self.is_available,
            "reason": self.reason.value,
            "in_download_manager": self.in_download_manager,
            "has_file": self.has_file,
            "has_episodes": self.has_episodes,
            "has_pilot": self.has_pilot,
            "is_released": self.is_released,
            "is_upcoming": self.is_upcoming,
            "is_downloading": self.is_downloading,
            "request_status": self.request_status,
            "complete_seasons": self.complete_seasons,
        }
