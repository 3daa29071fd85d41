import json
from functools import lru_cache

from pydantic_settings import BaseSettings

from plexmate.core.logging import get_logger

logger = get_logger("config")


class Settings(BaseSettings):
    database_path: str = "data/plexmate.db"
    log_level: str = "INFO"
    webhook_port: int = 5000
    webhook_token: str = ""  # Optional ?token= check on the Plex webhook

    # Chat delivery
    discord_token: str = ""

    # TMDB
    tmdb_api_key: str = ""
    tmdb_base_url: str = "https://api.themoviedb.org/3"

    # Overseerr
    overseerr_url: str = ""
    overseerr_api_key: str = ""
    overseerr_user_map: str = ""  # JSON: {"overseerr_id": "discord_id"}
    overseerr_fallback_id: int = 1

    # Download managers
    sonarr_url: str = ""
    sonarr_api_key: str = ""
    radarr_url: str = ""
    radarr_api_key: str = ""

    # Poll path (minutes)
    monitor_interval: int = 15
    request_check_interval: int = 5
    history_limit: int = 30

    # Batching delays (seconds)
    episode_batch_delay: float = 300.0
    bundle_batch_delay: float = 1.0

    class Config:
        env_file = ".env"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


class UserMap:
    """
    Bidirectional mapping between Overseerr user ids and Discord user ids.

    Built from the OVERSEERR_USER_MAP setting, e.g. {"3": "123456789012345678"}.
    Local users without an entry fall back to the configured Overseerr id.
    """

    def __init__(self, mapping: dict[str, str], fallback_id: int = 1):
        self._to_local = {str(k): str(v) for k, v in mapping.items()}
        self._to_remote = {v: k for k, v in self._to_local.items()}
        self.fallback_id = fallback_id

    @classmethod
    def from_settings(cls, settings: Settings) -> "UserMap":
        raw = settings.overseerr_user_map.strip()
        mapping: dict[str, str] = {}
        if raw:
            try:
                parsed = json.loads(raw)
            except json.JSONDecodeError as e:
                logger.error("Failed to parse OVERSEERR_USER_MAP: %s", e)
                parsed = {}
            if isinstance(parsed, dict):
                mapping = parsed
            else:
                logger.error("OVERSEERR_USER_MAP must be a JSON object, got %s", type(parsed).__name__)
        else:
            logger.warning("OVERSEERR_USER_MAP is empty; requests will use the fallback user")
        return cls(mapping, settings.overseerr_fallback_id)

    def local_id(self, overseerr_id: int | str | None) -> str | None:
        """Discord id for an Overseerr user, or None when unmapped."""
        if overseerr_id is None:
            return None
        return self._to_local.get(str(overseerr_id))

    def overseerr_id(self, local_id: int | str) -> int:
        """Overseerr id for a Discord user, falling back to the configured id."""
        remote = self._to_remote.get(str(local_id))
        if remote is None:
            return self.fallback_id
        try:
            return int(remote)
        except ValueError:
            return self.fallback_id

    def __len__(self) -> int:
        return len(self._to_local)
