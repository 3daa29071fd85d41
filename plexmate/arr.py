"""
Sonarr and Radarr API clients.

Both expose the same v3 API shape (X-Api-Key header, /api/v3 prefix,
paged history and queue), so they share ArrClient and only add the
library lookups each resolver path needs.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from plexmate.client import ServiceClient

IMPORT_EVENT = "downloadFolderImported"


def format_bytes(size) -> str:
    """Human readable size: 1536 -> '1.5 KB'."""
    try:
        size = float(size)
    except (TypeError, ValueError):
        return "Unknown"
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    i = 0
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{round(size, 2):g} {units[i]}"


def parse_timestamp(value: str | None) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class MovieStatus:
    exists: bool = False
    monitored: bool = False
    has_file: bool = False
    downloading: bool = False
    radarr_id: Optional[int] = None
    title: Optional[str] = None


@dataclass
class SeriesStatus:
    exists: bool = False
    monitored: bool = False
    is_upcoming: bool = False
    sonarr_id: Optional[int] = None
    title: Optional[str] = None
    # season number -> episode numbers with a file on disk
    available: dict[int, set[int]] = field(default_factory=dict)

    @property
    def has_episodes(self) -> bool:
        return any(episodes for season, episodes in self.available.items() if season != 0)

    @property
    def has_pilot(self) -> bool:
        return 1 in self.available.get(1, set())


class ArrClient(ServiceClient):
    api_prefix = "/api/v3"

    def _headers(self) -> dict:
        return {"X-Api-Key": self.api_key}

    async def _api(self, endpoint: str, params: dict | None = None):
        return await self._request(f"{self.api_prefix}/{endpoint}", params)

    async def get_queue(self, **params) -> list[dict]:
        data = await self._api("queue", {"pageSize": 100, **params})
        if isinstance(data, dict):
            return data.get("records", [])
        return data or []

    async def get_import_history(self, page_size: int = 30) -> list[dict]:
        """Newest-first completed imports."""
        data = await self._api("history", self._history_params(page_size))
        records = data.get("records", []) if isinstance(data, dict) else (data or [])
        return [r for r in records if r.get("eventType", IMPORT_EVENT) == IMPORT_EVENT]

    def _history_params(self, page_size: int) -> dict:
        return {
            "page": 1,
            "pageSize": page_size,
            "sortKey": "date",
            "sortDirection": "descending",
            "eventType": IMPORT_EVENT,
        }


class RadarrClient(ArrClient):
    service = "radarr"

    def _history_params(self, page_size: int) -> dict:
        params = super()._history_params(page_size)
        params["includeMovie"] = "true"
        return params

    async def movie_status(self, tmdb_id: int) -> MovieStatus:
        """Library state of a movie: present, monitored, downloaded, queued."""
        movies = await self._api("movie", {"tmdbId": tmdb_id})
        movie = next((m for m in movies or [] if m.get("tmdbId") == int(tmdb_id)), None)
        if movie is None:
            return MovieStatus()

        status = MovieStatus(
            exists=True,
            monitored=bool(movie.get("monitored")),
            has_file=bool(movie.get("hasFile")),
            radarr_id=movie.get("id"),
            title=movie.get("title"),
        )
        if not status.has_file and status.monitored:
            queue = await self.get_queue(movieId=status.radarr_id)
            status.downloading = any(item.get("movieId") == status.radarr_id for item in queue)
        return status


class SonarrClient(ArrClient):
    service = "sonarr"

    def _history_params(self, page_size: int) -> dict:
        params = super()._history_params(page_size)
        params["includeSeries"] = "true"
        params["includeEpisode"] = "true"
        return params

    async def series_status(self, tvdb_id: int, now: datetime | None = None) -> SeriesStatus:
        """Library state of a series and which episodes are on disk."""
        now = now or datetime.now(timezone.utc)
        series_list = await self._api("series", {"tvdbId": tvdb_id})
        series = next((s for s in series_list or [] if s.get("tvdbId") == int(tvdb_id)), None)
        if series is None:
            return SeriesStatus()

        first_aired = parse_timestamp(series.get("firstAired"))
        status = SeriesStatus(
            exists=True,
            monitored=bool(series.get("monitored")),
            is_upcoming=series.get("status") == "upcoming" or bool(first_aired and first_aired > now),
            sonarr_id=series.get("id"),
            title=series.get("title"),
        )

        file_count = (series.get("statistics") or {}).get("episodeFileCount", 0)
        if file_count:
            episodes = await self._api("episode", {"seriesId": status.sonarr_id})
            for episode in episodes or []:
                if not episode.get("hasFile"):
                    continue
                season = episode.get("seasonNumber")
                number = episode.get("episodeNumber")
                if season is None or number is None:
                    continue
                status.available.setdefault(int(season), set()).add(int(number))
        return status
