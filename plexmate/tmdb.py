from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from plexmate.client import ServiceClient
from plexmate.models import MediaType

POSTER_BASE_URL = "https://image.tmdb.org/t/p/w500"

RELEASE_THEATRICAL = 3
RELEASE_DIGITAL = 4
RELEASE_PHYSICAL = 5


def poster_url(poster_path: str | None) -> str | None:
    if not poster_path:
        return None
    return f"{POSTER_BASE_URL}{poster_path}"


def episode_counts(show: dict | None) -> dict[int, int]:
    """Declared episode count per season from a /tv/{id} response."""
    counts = {}
    for season in (show or {}).get("seasons") or []:
        number = season.get("season_number")
        if number is None:
            continue
        counts[int(number)] = int(season.get("episode_count") or 0)
    return counts


def _parse_date(value: str | None) -> Optional[datetime]:
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
class ReleaseInfo:
    theatrical: Optional[datetime] = None
    digital: Optional[datetime] = None
    physical: Optional[datetime] = None

    def is_digital_released(self, now: datetime) -> bool:
        return self.digital is not None and self.digital <= now

    def is_physical_released(self, now: datetime) -> bool:
        return self.physical is not None and self.physical <= now

    def is_released(self, now: datetime | None = None) -> bool:
        """Watchable at home: a digital or physical release date has passed."""
        now = now or datetime.now(timezone.utc)
        return self.is_digital_released(now) or self.is_physical_released(now)

    @classmethod
    def from_response(cls, data: dict) -> "ReleaseInfo":
        """
        Pick the US release dates, or the first country listed when the US
        has none.
        """
        countries = data.get("results") or []
        chosen = next(
            (c for c in countries if c.get("iso_3166_1") == "US" and c.get("release_dates")),
            None
        )
        if chosen is None and countries:
            chosen = countries[0]
        if not chosen or not chosen.get("release_dates"):
            return cls()

        def first_of(release_type: int) -> Optional[datetime]:
            for release in chosen["release_dates"]:
                if release.get("type") == release_type:
                    return _parse_date(release.get("release_date"))
            return None

        return cls(
            theatrical=first_of(RELEASE_THEATRICAL),
            digital=first_of(RELEASE_DIGITAL),
            physical=first_of(RELEASE_PHYSICAL),
        )


class TMDBClient(ServiceClient):
    service = "tmdb"

    def __init__(self, api_key: str, base_url: str = "https://api.themoviedb.org/3", transport=None):
        super().__init__(base_url, api_key, transport)

    def _params(self, params: dict) -> dict:
        params["api_key"] = self.api_key
        return params

    async def search(self, query: str, media_type: MediaType) -> list[dict]:
        """Search for movies or TV shows by title."""
        data = await self._request(f"/search/{media_type.api_path}", {
            "query": query,
            "include_adult": "false"
        })
        return data.get("results", []) if data else []

    async def get_movie(self, movie_id: int) -> dict:
        """Get movie details including external IDs."""
        return await self._request(f"/movie/{movie_id}", {
            "append_to_response": "external_ids"
        })

    async def get_tv(self, tv_id: int) -> dict:
        """Get TV show details including external IDs and the season list."""
        return await self._request(f"/tv/{tv_id}", {
            "append_to_response": "external_ids"
        })

    async def get_release_info(self, movie_id: int) -> ReleaseInfo:
        data = await self._request(f"/movie/{movie_id}/release_dates")
        return ReleaseInfo.from_response(data or {})

    async def find_poster(self, title: str, media_type: MediaType) -> str | None:
        """Poster path of the best search hit for a title."""
        results = await self.search(title, media_type)
        if not results:
            return None
        return results[0].get("poster_path")
