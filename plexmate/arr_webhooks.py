"""
Sonarr/Radarr "Connect" webhook handling.

Every grab, import and delete is appended to the download history. These
events are bookkeeping only: new-media notifications come from Plex and
from the history poll in plexmate.monitor.
"""
from plexmate.arr import format_bytes
from plexmate.core.exceptions import MalformedEventError
from plexmate.core.logging import get_logger
from plexmate.database import SubscriptionStore

logger = get_logger("arr_webhooks")


def episode_codes(episodes: list[dict]) -> str:
    """'S01E02 S01E03'"""
    return " ".join(
        f"S{int(ep.get('seasonNumber') or 0):02d}E{int(ep.get('episodeNumber') or 0):02d}"
        for ep in episodes
    )


def _file_quality(file_info: dict | None) -> str:
    return ((file_info or {}).get("quality") or {}).get("quality", {}).get("name") or "Unknown"


def _size(value) -> str:
    return format_bytes(value) if value else "Unknown"


def _movie_title(movie: dict) -> str:
    title = movie.get("title") or "Unknown Movie"
    return f"{title} ({movie['year']})" if movie.get("year") else title


class ArrWebhookRecorder:
    def __init__(self, store: SubscriptionStore):
        self.store = store

    @staticmethod
    def _event_type(payload) -> str:
        if not isinstance(payload, dict) or not payload.get("eventType"):
            raise MalformedEventError("Invalid webhook payload: missing eventType")
        return payload["eventType"]

    async def process_sonarr(self, payload: dict) -> bool:
        event_type = self._event_type(payload)
        logger.info("Processing Sonarr webhook: %s", event_type)

        handlers = {
            "Grab": self._sonarr_grab,
            "Download": self._sonarr_download,
            "EpisodeFileDelete": self._sonarr_file_delete,
            "SeriesDelete": self._sonarr_series_delete,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Sonarr event type: %s", event_type)
            return True
        return await handler(payload)

    async def process_radarr(self, payload: dict) -> bool:
        event_type = self._event_type(payload)
        logger.info("Processing Radarr webhook: %s", event_type)

        handlers = {
            "Grab": self._radarr_grab,
            "Download": self._radarr_download,
            "MovieFileDelete": self._radarr_file_delete,
            "MovieDelete": self._radarr_movie_delete,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Radarr event type: %s", event_type)
            return True
        return await handler(payload)

    # =========================================================================
    # Sonarr
    # =========================================================================

    async def _sonarr_grab(self, payload: dict) -> bool:
        series = payload.get("series")
        episodes = payload.get("episodes") or []
        if not series or not episodes:
            logger.error("Invalid Sonarr grab payload structure")
            return False

        release = payload.get("release") or {}
        title = f"{series.get('title', 'Unknown Series')} - {episode_codes(episodes)}"
        recorded = await self.store.record_download(
            "grab", "sonarr", "episode", title,
            quality=release.get("quality") or "Unknown",
            size=_size(release.get("size")),
            download_client=release.get("downloadClient") or "Unknown",
            data={
                "seriesId": series.get("id"),
                "episodeIds": [ep.get("id") for ep in episodes],
                "releaseData": release,
            },
        )
        logger.info("Recorded Sonarr grab: %s", title)
        return recorded

    async def _sonarr_download(self, payload: dict) -> bool:
        series = payload.get("series")
        episodes = payload.get("episodes") or []
        if not series or not episodes:
            logger.error("Invalid Sonarr download payload structure")
            return False

        episode_file = payload.get("episodeFile") or {}
        is_upgrade = bool(payload.get("isUpgrade"))
        title = f"{series.get('title', 'Unknown Series')} - {episode_codes(episodes)}"
        recorded = await self.store.record_download(
            "upgrade" if is_upgrade else "download", "sonarr", "episode", title,
            quality=_file_quality(episode_file),
            size=_size(episode_file.get("size")),
            download_client="completed",
            data={
                "seriesId": series.get("id"),
                "episodeIds": [ep.get("id") for ep in episodes],
                "episodeFileId": episode_file.get("id"),
                "isUpgrade": is_upgrade,
            },
        )
        logger.info("Recorded Sonarr download: %s", title)
        return recorded

    async def _sonarr_file_delete(self, payload: dict) -> bool:
        series = payload.get("series")
        if not series:
            logger.error("Invalid Sonarr delete payload structure")
            return False

        episode_file = payload.get("episodeFile") or {}
        title = series.get("title", "Unknown Series")
        if episode_file:
            title += f" - Episode File {episode_file.get('id')}"
        return await self.store.record_download(
            "delete", "sonarr", "episode", title,
            quality=_file_quality(episode_file),
            size=_size(episode_file.get("size")),
            download_client="deleted",
            data={"seriesId": series.get("id"), "episodeFileId": episode_file.get("id")},
        )

    async def _sonarr_series_delete(self, payload: dict) -> bool:
        series = payload.get("series")
        if not series:
            logger.error("Invalid Sonarr series delete payload structure")
            return False
        return await self.store.record_download(
            "delete", "sonarr", "series", series.get("title", "Unknown Series"),
            quality="N/A", size="N/A", download_client="deleted",
            data={"seriesId": series.get("id")},
        )

    # =========================================================================
    # Radarr
    # =========================================================================

    async def _radarr_grab(self, payload: dict) -> bool:
        movie = payload.get("movie")
        if not movie:
            logger.error("Invalid Radarr grab payload structure")
            return False

        release = payload.get("release") or {}
        title = _movie_title(movie)
        recorded = await self.store.record_download(
            "grab", "radarr", "movie", title,
            quality=release.get("quality") or "Unknown",
            size=_size(release.get("size")),
            download_client=release.get("downloadClient") or "Unknown",
            data={
                "movieId": movie.get("id"),
                "tmdbId": movie.get("tmdbId"),
                "imdbId": (payload.get("remoteMovie") or {}).get("imdbId"),
                "releaseData": release,
            },
        )
        logger.info("Recorded Radarr grab: %s", title)
        return recorded

    async def _radarr_download(self, payload: dict) -> bool:
        movie = payload.get("movie")
        if not movie:
            logger.error("Invalid Radarr download payload structure")
            return False

        movie_file = payload.get("movieFile") or {}
        is_upgrade = bool(payload.get("isUpgrade"))
        title = _movie_title(movie)
        recorded = await self.store.record_download(
            "upgrade" if is_upgrade else "download", "radarr", "movie", title,
            quality=_file_quality(movie_file),
            size=_size(movie_file.get("size")),
            download_client="completed",
            data={
                "movieId": movie.get("id"),
                "tmdbId": movie.get("tmdbId"),
                "imdbId": (payload.get("remoteMovie") or {}).get("imdbId"),
                "movieFileId": movie_file.get("id"),
                "isUpgrade": is_upgrade,
            },
        )
        logger.info("Recorded Radarr download: %s", title)
        return recorded

    async def _radarr_file_delete(self, payload: dict) -> bool:
        movie = payload.get("movie")
        if not movie:
            logger.error("Invalid Radarr delete payload structure")
            return False

        movie_file = payload.get("movieFile") or {}
        return await self.store.record_download(
            "delete", "radarr", "movie", _movie_title(movie),
            quality=_file_quality(movie_file),
            size=_size(movie_file.get("size")),
            download_client="deleted",
            data={"movieId": movie.get("id"), "movieFileId": movie_file.get("id")},
        )

    async def _radarr_movie_delete(self, payload: dict) -> bool:
        movie = payload.get("movie")
        if not movie:
            logger.error("Invalid Radarr movie delete payload structure")
            return False
        return await self.store.record_download(
            "delete", "radarr", "movie", _movie_title(movie),
            quality="N/A", size="N/A", download_client="deleted",
            data={"movieId": movie.get("id"), "tmdbId": movie.get("tmdbId")},
        )
