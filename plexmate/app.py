"""
FastAPI application for plexmate.

Routes are thin: they validate the inbound payload and hand it to the
service objects held in the `services` registry. Services are built from
Settings on startup unless something (tests, a custom launcher) has
configured the registry beforehand.
"""
import json
import os
import resource
import secrets
import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from plexmate import __version__
from plexmate.arr import RadarrClient, SonarrClient
from plexmate.arr_webhooks import ArrWebhookRecorder
from plexmate.availability import AvailabilityResolver
from plexmate.config import Settings, UserMap, get_settings
from plexmate.core.exceptions import MalformedEventError, PlexmateError
from plexmate.core.logging import get_logger, setup_logging
from plexmate.database import SubscriptionStore
from plexmate.models import MediaType, SubscriptionKind
from plexmate.monitor import ArrHistoryMonitor, RequestWatcher
from plexmate.notifications import NotificationEngine
from plexmate.notifier import DiscordNotifier
from plexmate.overseerr import OverseerrClient
from plexmate.plex import classify, validate_payload
from plexmate.subscriptions import SubscribeStatus, subscribe, unsubscribe
from plexmate.tmdb import TMDBClient

logger = get_logger("app")

STARTED_AT = time.time()


# =============================================================================
# Service Registry
# =============================================================================

class _ServiceRegistry:
    """Registry for the service objects the routes depend on."""

    def __init__(self):
        self._settings_fn = None  # callable() -> Settings
        self._store = None        # SubscriptionStore
        self._resolver = None     # AvailabilityResolver
        self._engine = None       # NotificationEngine
        self._recorder = None     # ArrWebhookRecorder
        self._overseerr = None    # OverseerrClient
        self._user_map = None     # UserMap
        self.workers = []         # PeriodicWorker instances started with the app

    def configure(
        self,
        settings_fn=None,
        store=None,
        resolver=None,
        engine=None,
        recorder=None,
        workers=None,
        overseerr=None,
        user_map=None,
    ):
        """Register implementations. Only sets non-None values."""
        if settings_fn is not None:
            self._settings_fn = settings_fn
        if store is not None:
            self._store = store
        if resolver is not None:
            self._resolver = resolver
        if engine is not None:
            self._engine = engine
        if recorder is not None:
            self._recorder = recorder
        if workers is not None:
            self.workers = list(workers)
        if overseerr is not None:
            self._overseerr = overseerr
        if user_map is not None:
            self._user_map = user_map

    def reset(self):
        self.__init__()

    @property
    def configured(self) -> bool:
        return self._store is not None and self._engine is not None

    @property
    def settings(self) -> Settings:
        if self._settings_fn is None:
            return get_settings()
        return self._settings_fn()

    @property
    def store(self) -> SubscriptionStore:
        if self._store is None:
            raise RuntimeError("Subscription store not configured")
        return self._store

    @property
    def resolver(self) -> AvailabilityResolver:
        if self._resolver is None:
            raise RuntimeError("Availability resolver not configured")
        return self._resolver

    @property
    def engine(self) -> NotificationEngine:
        if self._engine is None:
            raise RuntimeError("Notification engine not configured")
        return self._engine

    @property
    def recorder(self) -> ArrWebhookRecorder:
        if self._recorder is None:
            raise RuntimeError("Webhook recorder not configured")
        return self._recorder

    @property
    def overseerr(self) -> OverseerrClient:
        if self._overseerr is None:
            raise RuntimeError("Overseerr client not configured")
        return self._overseerr

    @property
    def user_map(self) -> UserMap:
        if self._user_map is None:
            return UserMap.from_settings(self.settings)
        return self._user_map


services = _ServiceRegistry()


def configure_from_settings(settings: Settings):
    """Build every service from Settings and register them."""
    store = SubscriptionStore(settings.database_path)
    tmdb = TMDBClient(settings.tmdb_api_key, settings.tmdb_base_url)
    overseerr = OverseerrClient(settings.overseerr_url, settings.overseerr_api_key)
    user_map = UserMap.from_settings(settings)
    sonarr = SonarrClient(settings.sonarr_url, settings.sonarr_api_key)
    radarr = RadarrClient(settings.radarr_url, settings.radarr_api_key)

    engine = NotificationEngine(
        store,
        DiscordNotifier(settings.discord_token),
        catalog=tmdb,
        episode_delay=settings.episode_batch_delay,
        bundle_delay=settings.bundle_batch_delay,
    )

    workers = []
    if sonarr.configured or radarr.configured:
        workers.append(ArrHistoryMonitor(
            engine,
            sonarr=sonarr,
            radarr=radarr,
            interval=settings.monitor_interval * 60,
            history_limit=settings.history_limit,
        ))
    if overseerr.configured:
        workers.append(RequestWatcher(
            store,
            overseerr,
            user_map,
            interval=settings.request_check_interval * 60,
        ))

    services.configure(
        settings_fn=lambda: settings,
        store=store,
        resolver=AvailabilityResolver(overseerr=overseerr, radarr=radarr, sonarr=sonarr, tmdb=tmdb),
        engine=engine,
        recorder=ArrWebhookRecorder(store),
        workers=workers,
        overseerr=overseerr,
        user_map=user_map,
    )


# =============================================================================
# Auth
# =============================================================================

def verify_webhook_token(token: str | None = Query(None, alias="token")):
    """Check ?token= against WEBHOOK_TOKEN when one is configured."""
    expected = services.settings.webhook_token
    if not expected:
        return True

    if not token:
        raise HTTPException(
            status_code=401,
            detail="Webhook token required. Add ?token=YOUR_TOKEN to the URL."
        )

    if not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=401, detail="Invalid webhook token")

    return True


# =============================================================================
# FastAPI App
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    if not services.configured:
        settings = get_settings()
        setup_logging(settings.log_level)
        configure_from_settings(settings)

    await services.store.init_db()
    for worker in services.workers:
        await worker.start()
    logger.info("plexmate %s started", __version__)

    yield

    for worker in services.workers:
        await worker.stop()
    await services.engine.shutdown()


app = FastAPI(
    title="plexmate",
    description="Availability tracking and new-media notifications for Plex",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PlexmateError)
async def handle_app_error(request: Request, error: PlexmateError):
    logger.warning("%s on %s %s: %s", type(error).__name__, request.method, request.url.path, error.message)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        raise
    logger.debug(
        "%s %s -> %s (%.2fs)",
        request.method, request.url.path, response.status_code, time.time() - start_time
    )
    return response


# =============================================================================
# Request/Response Models
# =============================================================================

class SubscribeRequest(BaseModel):
    user_id: str
    media_id: int
    media_type: str
    title: str
    episodes: bool = False
    accept_release_only: bool | None = None


class MediaRequestBody(BaseModel):
    user_id: str
    media_id: int
    media_type: str
    title: str
    seasons: list[int] | None = None


# =============================================================================
# Health
# =============================================================================

def _memory_usage() -> dict:
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports KiB, macOS reports bytes
    max_rss = usage if sys.platform == "darwin" else usage * 1024
    return {"max_rss_bytes": max_rss, "pid": os.getpid()}


def _health() -> dict:
    return {
        "status": "online",
        "version": __version__,
        "uptime": round(time.time() - STARTED_AT, 1),
        "memory": _memory_usage(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/status")
def status():
    return _health()


@app.get("/api/health")
@app.get("/api/webhooks/health")
def health_check():
    """Liveness check with uptime and memory usage."""
    return _health()


# =============================================================================
# Plex Webhook
# =============================================================================

async def _read_plex_payload(request: Request) -> dict:
    """Plex posts multipart form data with a JSON 'payload' field; plain JSON is accepted too."""
    content_type = request.headers.get("content-type", "")
    try:
        if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
            form = await request.form()
            raw = form.get("payload")
            if raw is None:
                raise MalformedEventError("Missing 'payload' form field")
            if not isinstance(raw, str):
                raise MalformedEventError("'payload' must be a text form field")
            return json.loads(raw)
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedEventError("Invalid JSON payload")


@app.post("/webhook")
async def plex_webhook(request: Request, _: bool = Depends(verify_webhook_token)):
    """Handle Plex library notifications."""
    data = validate_payload(await _read_plex_payload(request))

    event_name = data["event"]
    metadata = data["Metadata"]
    logger.info(
        "Plex webhook: event='%s' type='%s' title='%s'",
        event_name, metadata.get("type"), metadata.get("grandparentTitle") or metadata.get("title")
    )

    if event_name != "library.new":
        return {"status": "ignored", "reason": f"Event type '{event_name}' not processed"}

    event = classify(metadata)
    result = await services.engine.handle_event(event)
    return {"status": "ok", **result.to_dict()}


# =============================================================================
# Sonarr / Radarr Webhooks
# =============================================================================

async def _read_json(request: Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise MalformedEventError("Invalid JSON payload")


@app.post("/api/webhooks/sonarr")
async def sonarr_webhook(request: Request):
    if not await services.recorder.process_sonarr(await _read_json(request)):
        raise HTTPException(status_code=500, detail="Error processing webhook")
    return {"success": True}


@app.post("/api/webhooks/radarr")
async def radarr_webhook(request: Request):
    if not await services.recorder.process_radarr(await _read_json(request)):
        raise HTTPException(status_code=500, detail="Error processing webhook")
    return {"success": True}


# =============================================================================
# Availability / Subscriptions
# =============================================================================

def _media_type(value: str) -> MediaType:
    try:
        return MediaType.parse(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid media type")


@app.get("/api/availability/{media_type}/{media_id}")
async def get_availability(media_type: str, media_id: int, season: int | None = None):
    record = await services.resolver.resolve(_media_type(media_type), media_id, season)
    return record.to_dict()


@app.get("/api/subscriptions/{user_id}")
async def list_subscriptions(user_id: str):
    subscriptions = await services.store.list_by_user(user_id)
    return {"subscriptions": [s.to_dict() for s in subscriptions]}


@app.post("/api/subscriptions")
async def create_subscription(data: SubscribeRequest):
    result = await subscribe(
        services.store,
        services.resolver,
        user_id=data.user_id,
        media_id=data.media_id,
        media_type=_media_type(data.media_type),
        title=data.title,
        kind=SubscriptionKind.EPISODE if data.episodes else SubscriptionKind.RELEASE_ONLY,
        accept_release_only=data.accept_release_only,
    )
    if result.status is SubscribeStatus.FAILED:
        raise HTTPException(status_code=500, detail=result.message)
    return result.to_dict()


@app.delete("/api/subscriptions/{user_id}/{media_id}")
async def delete_subscription(user_id: str, media_id: str):
    if not await unsubscribe(services.store, user_id, media_id):
        raise HTTPException(status_code=404, detail="Subscription not found")
    return {"success": True}


# =============================================================================
# Overseerr Requests
# =============================================================================

@app.post("/api/requests")
async def create_media_request(data: MediaRequestBody):
    """
    Request a movie or show in Overseerr for a Discord user and subscribe them to it.

    The request is made as the user's mapped Overseerr account (or the
    fallback account). Shows get an episode subscription, movies a
    release-only one.
    """
    media_type = _media_type(data.media_type)
    requester = services.user_map.overseerr_id(data.user_id)
    created = await services.overseerr.create_request(media_type, data.media_id, requester, data.seasons)

    kind = SubscriptionKind.EPISODE if media_type is MediaType.SHOW else SubscriptionKind.RELEASE_ONLY
    if not await services.store.add(data.user_id, data.media_id, media_type, data.title, kind):
        raise HTTPException(status_code=500, detail="Request created but the subscription could not be saved")
    return {"status": "requested", "request_id": created.get("id"), "kind": kind.value}
