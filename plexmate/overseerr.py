from plexmate.client import ServiceClient
from plexmate.core.exceptions import UpstreamError
from plexmate.core.logging import get_logger
from plexmate.models import MediaType

logger = get_logger("overseerr")

# Overseerr MediaStatus values
STATUS_UNKNOWN = 1
STATUS_PENDING = 2
STATUS_PROCESSING = 3
STATUS_PARTIALLY_AVAILABLE = 4
STATUS_AVAILABLE = 5


def media_status(details: dict | None) -> int | None:
    """Fulfilment status of an item, or None when Overseerr has no record of it."""
    if not details:
        return None
    info = details.get("mediaInfo") or {}
    return info.get("status")


def season_status(details: dict | None, season: int) -> int | None:
    if not details:
        return None
    for entry in (details.get("mediaInfo") or {}).get("seasons") or []:
        if entry.get("seasonNumber") == season:
            return entry.get("status")
    return None


def has_pilot(details: dict | None) -> bool:
    """True when Overseerr reports season 1 (or its first episode) available."""
    if not details:
        return False
    for entry in (details.get("mediaInfo") or {}).get("seasons") or []:
        if entry.get("seasonNumber") != 1:
            continue
        if entry.get("status") == STATUS_AVAILABLE:
            return True
        return any(
            ep.get("episodeNumber") == 1 and ep.get("status") == STATUS_AVAILABLE
            for ep in entry.get("episodes") or []
        )
    return False


def tvdb_id(details: dict | None) -> int | None:
    if not details:
        return None
    ids = details.get("externalIds") or {}
    value = ids.get("tvdbId") or (details.get("mediaInfo") or {}).get("tvdbId")
    return int(value) if value else None


def request_title(request: dict) -> str | None:
    media = request.get("media") or {}
    return (
        media.get("title")
        or media.get("name")
        or media.get("originalTitle")
        or media.get("originalName")
    )


class OverseerrClient(ServiceClient):
    service = "overseerr"

    def __init__(self, base_url: str, api_key: str, transport=None):
        super().__init__(base_url, api_key, transport)
        # Requests made through create_request(), so the watcher does not
        # subscribe their requester a second time
        self.created_request_ids: set[int] = set()

    def _headers(self) -> dict:
        return {"X-Api-Key": self.api_key}

    async def get_media_details(self, media_type: MediaType, media_id: int) -> dict:
        """Get Overseerr's view of a movie or show, including mediaInfo."""
        return await self._request(f"/api/v1/{media_type.api_path}/{media_id}")

    async def get_requests(self, take: int = 20) -> list[dict]:
        """Most recently added requests."""
        data = await self._request("/api/v1/request", {
            "take": take,
            "skip": 0,
            "sort": "added"
        })
        return data.get("results", []) if data else []

    async def get_default_server(self, media_type: MediaType) -> dict:
        """The default Radarr (movies) or Sonarr (shows) server Overseerr routes requests to."""
        arr = "sonarr" if media_type is MediaType.SHOW else "radarr"
        servers = await self._request(f"/api/v1/settings/{arr}") or []
        if not servers:
            raise UpstreamError(self.service, f"No {arr} server configured")
        return next((s for s in servers if s.get("isDefault")), servers[0])

    async def create_request(
        self,
        media_type: MediaType,
        media_id: int,
        user_id: int,
        seasons: list[int] | None = None,
    ) -> dict:
        """
        Request a movie or show on behalf of an Overseerr user.

        Shows are requested for the given seasons, season 1 when none are
        given. The new request id is remembered in created_request_ids.
        """
        server = await self.get_default_server(media_type)
        body = {
            "mediaType": media_type.api_path,
            "mediaId": int(media_id),
            "userId": int(user_id),
            "is4k": False,
            "serverId": server.get("id"),
            "profileId": server.get("activeProfileId"),
            "rootFolder": server.get("activeDirectory"),
        }
        if media_type is MediaType.SHOW:
            body["seasons"] = list(seasons or [1])
            body["languageProfileId"] = server.get("activeLanguageProfileId")

        data = await self._request("/api/v1/request", method="POST", json=body) or {}
        if data.get("id"):
            self.created_request_ids.add(data["id"])
        logger.info(
            "Created Overseerr request %s for %s %s (user %s)",
            data.get("id"), media_type.value, media_id, user_id
        )
        return data
