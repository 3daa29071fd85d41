from dataclasses import dataclass
from typing import Optional

from plexmate.tmdb import poster_url

COLOUR_AVAILABLE = 0x00FF00

# Above this many episodes in one season the numbers are left out
EPISODE_LIST_LIMIT = 10


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    colour: int = COLOUR_AVAILABLE
    thumbnail_url: Optional[str] = None

    def to_embed(self) -> dict:
        embed = {
            "title": self.title,
            "description": self.description,
            "color": self.colour,
        }
        if self.thumbnail_url:
            embed["thumbnail"] = {"url": self.thumbnail_url}
        return embed


def _plural(count: int, word: str) -> str:
    return word if count == 1 else f"{word}s"


def movie_available(title: str, poster_path: str | None = None) -> Notification:
    return Notification(
        title="New Movie Available!",
        description=f"**{title}** is now available on Plex!",
        thumbnail_url=poster_url(poster_path),
    )


def show_available(title: str, poster_path: str | None = None) -> Notification:
    return Notification(
        title="New Show Available!",
        description=f"**{title}** is now available on Plex!",
        thumbnail_url=poster_url(poster_path),
    )


def season_available(title: str, season: int, poster_path: str | None = None) -> Notification:
    return Notification(
        title="New Season Available!",
        description=f"**{title} - Season {season}** is now available on Plex!",
        thumbnail_url=poster_url(poster_path),
    )


def season_summary(season: int, episodes: list[int]) -> str:
    """'**Season 2**: 3 new episodes (Episodes 1, 2, 3)'"""
    count = len(episodes)
    line = f"**Season {season}**: {count} new {_plural(count, 'episode')}"
    if count <= EPISODE_LIST_LIMIT:
        numbers = ", ".join(str(e) for e in sorted(episodes))
        line += f" ({_plural(count, 'Episode')} {numbers})"
    return line


def new_episodes(title: str, seasons: dict[int, list[int]], poster_path: str | None = None) -> Notification:
    return Notification(
        title=f"New Episodes Available: {title}",
        description="\n".join(
            season_summary(season, seasons[season]) for season in sorted(seasons)
        ),
        thumbnail_url=poster_url(poster_path),
    )
