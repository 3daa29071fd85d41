"""
Availability resolution.

Overseerr, Radarr/Sonarr and TMDB each know part of the answer to "can I
watch this now?" and any of them may be unconfigured or unreachable. The
resolver queries what it can and folds the results into a single
AvailabilityRecord. Overseerr's terminal "available" status always wins
over whatever the download managers report.
"""
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from plexmate import overseerr as overseerr_status
from plexmate.arr import RadarrClient, SonarrClient
from plexmate.core.exceptions import NotConfiguredError, UpstreamError
from plexmate.core.logging import get_logger
from plexmate.models import AvailabilityRecord, MediaType, Reason
from plexmate.overseerr import OverseerrClient
from plexmate.tmdb import TMDBClient, episode_counts

logger = get_logger("availability")

T = TypeVar("T")

SPECIALS_SEASON = 0


def season_complete(available: set[int], declared_count: int | None) -> bool:
    """Every episode 1..declared_count is on disk."""
    if not declared_count or declared_count <= 0:
        return False
    return set(range(1, declared_count + 1)) <= available


def complete_seasons(available: dict[int, set[int]], counts: dict[int, int]) -> list[int]:
    return sorted(
        season for season, episodes in available.items()
        if season != SPECIALS_SEASON and season_complete(episodes, counts.get(season))
    )


class AvailabilityResolver:
    def __init__(
        self,
        overseerr: Optional[OverseerrClient] = None,
        radarr: Optional[RadarrClient] = None,
        sonarr: Optional[SonarrClient] = None,
        tmdb: Optional[TMDBClient] = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.overseerr = overseerr
        self.radarr = radarr
        self.sonarr = sonarr
        self.tmdb = tmdb
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def _fetch(self, service: str, client, call: Callable[[], Awaitable[T]]) -> tuple[Optional[T], Optional[Reason]]:
        """Run one upstream call, turning any failure into a degraded-signal reason."""
        if client is None or not client.configured:
            return None, Reason.NOT_CONFIGURED
        try:
            return await call(), None
        except NotConfiguredError:
            return None, Reason.NOT_CONFIGURED
        except UpstreamError as e:
            logger.warning("Availability signal from %s unavailable: %s", service, e)
            return None, Reason.UNKNOWN
        except Exception:
            logger.exception("Unexpected error querying %s", service)
            return None, Reason.UNKNOWN

    @staticmethod
    def _degraded(*failures: Optional[Reason]) -> Reason:
        if Reason.UNKNOWN in failures:
            return Reason.UNKNOWN
        return Reason.NOT_CONFIGURED

    async def resolve(
        self,
        media_type: MediaType | str,
        media_id: int,
        season: int | None = None,
    ) -> AvailabilityRecord:
        """Best-effort availability for a movie, a show, or one season of a show."""
        media_type = MediaType.parse(media_type) if isinstance(media_type, str) else media_type
        media_id = int(media_id)
        try:
            if media_type is MediaType.MOVIE:
                return await self._resolve_movie(media_id)
            return await self._resolve_show(media_id, season)
        except Exception:
            logger.exception("Availability resolution failed for %s %s", media_type.value, media_id)
            return AvailabilityRecord(media_id=media_id, media_type=media_type, season=season)

    async def _resolve_movie(self, media_id: int) -> AvailabilityRecord:
        record = AvailabilityRecord(media_id=media_id, media_type=MediaType.MOVIE)

        details, overseerr_failure = await self._fetch(
            "overseerr", self.overseerr,
            lambda: self.overseerr.get_media_details(MediaType.MOVIE, media_id)
        )
        record.request_status = overseerr_status.media_status(details)
        if record.request_status == overseerr_status.STATUS_AVAILABLE:
            record.is_available = True
            record.reason = Reason.AVAILABLE
            return record

        radarr, radarr_failure = await self._fetch(
            "radarr", self.radarr, lambda: self.radarr.movie_status(media_id)
        )
        release, _ = await self._fetch(
            "tmdb", self.tmdb, lambda: self.tmdb.get_release_info(media_id)
        )

        if radarr is not None:
            record.in_download_manager = radarr.exists
            record.has_file = radarr.has_file
            record.is_downloading = radarr.downloading
        if release is not None:
            record.is_released = release.is_released(self.clock())
            record.is_upcoming = not record.is_released

        if record.has_file:
            record.is_available = True
            record.reason = Reason.AVAILABLE
        elif record.is_released is False:
            record.reason = Reason.AWAITING_RELEASE
        elif record.is_downloading:
            record.reason = Reason.DOWNLOADING
        elif radarr is not None:
            record.reason = Reason.IN_DOWNLOAD_MANAGER if radarr.exists else Reason.NOT_IN_DOWNLOAD_MANAGER
        else:
            record.reason = self._degraded(overseerr_failure, radarr_failure)

        logger.debug("Movie %s availability: %s (%s)", media_id, record.is_available, record.reason.value)
        return record

    async def _resolve_show(self, media_id: int, season: int | None) -> AvailabilityRecord:
        record = AvailabilityRecord(media_id=media_id, media_type=MediaType.SHOW, season=season)

        details, overseerr_failure = await self._fetch(
            "overseerr", self.overseerr,
            lambda: self.overseerr.get_media_details(MediaType.SHOW, media_id)
        )
        record.request_status = overseerr_status.media_status(details)
        record.has_pilot = overseerr_status.has_pilot(details)

        request_available = record.request_status == overseerr_status.STATUS_AVAILABLE
        if season is not None and not request_available:
            request_available = (
                overseerr_status.season_status(details, season) == overseerr_status.STATUS_AVAILABLE
            )
        if request_available:
            record.is_available = True
            record.reason = Reason.AVAILABLE
            return record

        tmdb_show, _ = await self._fetch(
            "tmdb", self.tmdb, lambda: self.tmdb.get_tv(media_id)
        )
        tvdb = overseerr_status.tvdb_id(details)
        if tvdb is None and tmdb_show:
            tvdb = (tmdb_show.get("external_ids") or {}).get("tvdb_id")

        sonarr, sonarr_failure = None, None
        if tvdb:
            sonarr, sonarr_failure = await self._fetch(
                "sonarr", self.sonarr, lambda: self.sonarr.series_status(int(tvdb), self.clock())
            )
        elif self.sonarr is None or not self.sonarr.configured:
            sonarr_failure = Reason.NOT_CONFIGURED
        else:
            sonarr_failure = Reason.UNKNOWN

        counts = episode_counts(tmdb_show)

        if sonarr is not None:
            record.in_download_manager = sonarr.exists
            record.has_episodes = sonarr.has_episodes
            record.has_pilot = record.has_pilot or sonarr.has_pilot
            record.is_upcoming = sonarr.is_upcoming
            record.is_released = not sonarr.is_upcoming if sonarr.exists else None
            record.complete_seasons = complete_seasons(sonarr.available, counts)

        if season is None:
            record.is_available = record.has_episodes or record.has_pilot
        else:
            record.is_available = season in record.complete_seasons

        if record.is_available:
            record.reason = Reason.AVAILABLE
        elif sonarr is not None and sonarr.available.get(season if season is not None else -1):
            record.reason = Reason.PARTIALLY_AVAILABLE
        elif sonarr is not None and sonarr.exists:
            record.reason = Reason.UPCOMING if sonarr.is_upcoming else Reason.IN_DOWNLOAD_MANAGER
        elif sonarr is not None:
            record.reason = Reason.NOT_IN_DOWNLOAD_MANAGER
        else:
            record.reason = self._degraded(overseerr_failure, sonarr_failure)

        logger.debug(
            "Show %s%s availability: %s (%s)",
            media_id, f" season {season}" if season is not None else "",
            record.is_available, record.reason.value
        )
        return record
