# main.py
"""
FastAPI application for TrackShip.

- Token registration endpoints for push notifications
- Health, stats and debug endpoints
- Ship checker (APScheduler) started in the lifespan handler
"""
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Optional
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
import time

import shared
from shared import registered_tokens, configure_logging
from config import (
    BASE_COORDS, ZONES, CHECK_INTERVAL, SHIP_MEMORY_DURATION, WARMUP_DELAY,
    EURIS_CONFIG, NOTIFICATION_CONFIG, FIREBASE_CONFIG, SERVER_CONFIG, IDENTITY_KEY
)
from geo import GeoPoint
from euris_api import EurisClient
from notifications import NotificationGateway, send_registration_confirmation
from push_channels import (
    ExpoPushChannel, FcmPushChannel, initialize_firebase, is_expo_token, is_valid_expo_token
)
from ship_checker import ShipChecker
from ship_config import classify_zone
from loguru import logger

configure_logging()

# Services (initialized in lifespan)
euris_client: Optional[EurisClient] = None
notification_gateway: Optional[NotificationGateway] = None
ship_checker: Optional[ShipChecker] = None

MIN_FCM_TOKEN_LENGTH = 20
DEBUG_SHIPS_RADIUS = 5000


# === Request / Response Models ===

class TokenRequest(BaseModel):
    """Push token registration payload."""
    token: Optional[str] = Field(default=None, description="Expo push token or native FCM token",
                                 examples=["ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]"])


class TokenResponse(BaseModel):
    success: bool
    message: str
    total_tokens: int = Field(description="Number of registered tokens")


class EndpointsInfo(BaseModel):
    health: str = "/health"
    register_token: str = "/register-token"
    unregister_token: str = "/unregister-token"
    ships: str = "/ships"
    stats: str = "/stats"


class RootResponse(BaseModel):
    """API root response with endpoint discovery."""
    name: str = "TrackShip API"
    description: str = "Push notifications when a ship approaches"
    endpoints: EndpointsInfo


class EurisStatus(BaseModel):
    """EuRIS fetch status."""
    ok: bool = Field(description="Last fetch succeeded")
    last_fetch: Optional[str] = Field(description="Last fetch timestamp")
    last_error: Optional[str] = Field(description="Last error message if any")
    failure_count: int = Field(description="Consecutive failures")


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="API status: ok, warning, or error", examples=["ok"])
    status_message: str = Field(description="Human-readable status explanation")
    timestamp: str
    uptime: float = Field(description="Process uptime in seconds")
    registered_tokens: int
    ship_checker_running: bool
    known_ships: int
    euris: Optional[EurisStatus] = None


class ShipPosition(BaseModel):
    lat: float
    lon: float


class Ship(BaseModel):
    """Ship as reported by EuRIS."""
    identity: str = Field(description="Tracking key (track id or MMSI)")
    mmsi: Optional[str] = None
    name: str
    position: ShipPosition
    course: Optional[float] = Field(default=None, description="Course over ground in degrees")
    speed: Optional[float] = Field(default=None, description="Speed over ground in knots")
    heading: Optional[float] = None
    distance: int = Field(description="Distance from the watch point in meters")
    zone: str = Field(description="Detection zone", examples=["zone1", "zone3", "beyond"])
    timestamp: Optional[str] = None


class ShipsResponse(BaseModel):
    success: bool
    count: int
    error: Optional[str] = None
    ships: list[Ship]


class KnownShip(BaseModel):
    identity: str
    mmsi: Optional[str] = None
    name: str
    distance: int
    zone: str
    first_seen: Optional[str]
    last_seen: Optional[str]


class CycleStats(BaseModel):
    last_run: Optional[str]
    total_checks: int
    last_ships_found: int
    total_notifications_sent: int = Field(description="Notification attempts (not confirmed deliveries)")


class StatsResponse(BaseModel):
    is_running: bool
    known_ships_count: int
    known_ships: list[KnownShip]
    statistics: CycleStats


class TokenCountResponse(BaseModel):
    count: int
    tokens: list[str] = Field(description="Truncated tokens")


def build_services():
    """Create the EuRIS client, notification gateway and ship checker from config."""
    client = EurisClient(
        EURIS_CONFIG['api_url'],
        timeout=EURIS_CONFIG['timeout'],
        retry_attempts=EURIS_CONFIG['retry_attempts'],
        retry_delay=EURIS_CONFIG['retry_delay'],
        identity_key=IDENTITY_KEY,
    )
    gateway = NotificationGateway(
        expo=ExpoPushChannel(
            NOTIFICATION_CONFIG['expo_push_url'],
            chunk_size=NOTIFICATION_CONFIG['max_tokens_per_request'],
            timeout=NOTIFICATION_CONFIG['timeout'],
            sound=NOTIFICATION_CONFIG['sound'],
            priority=NOTIFICATION_CONFIG['priority'],
            channel_id=NOTIFICATION_CONFIG['channel_id'],
        ),
        fcm=FcmPushChannel(
            available=initialize_firebase(**FIREBASE_CONFIG),
            sound=NOTIFICATION_CONFIG['sound'],
            channel_id=NOTIFICATION_CONFIG['channel_id'],
        ),
    )
    checker = ShipChecker(
        client, gateway, BASE_COORDS, ZONES,
        check_interval=CHECK_INTERVAL / 1000,
        grace_period=timedelta(seconds=SHIP_MEMORY_DURATION),
        warmup_delay=WARMUP_DELAY,
        prune_invalid_recipients=NOTIFICATION_CONFIG['prune_invalid_tokens'],
    )
    return client, gateway, checker


def validate_token(token: Optional[str]) -> str:
    """
    Check a push token's format.

    Raises:
        HTTPException: 400 if missing or malformed
    """
    token = (token or "").strip()
    if not token:
        raise HTTPException(status_code=400, detail="Token is required")
    if is_expo_token(token):
        if not is_valid_expo_token(token):
            raise HTTPException(status_code=400, detail="Invalid Expo token format")
    elif len(token) < MIN_FCM_TOKEN_LENGTH or any(c.isspace() for c in token):
        raise HTTPException(status_code=400, detail="Invalid token format")
    return token


def calculate_health_status(checker_running: bool, has_recipients: bool, last_run: Optional[datetime],
                            check_interval_s: float, euris_failures: int, now: Optional[datetime] = None):
    """
    Calculate health status from ship checker and EuRIS state.

    Returns:
        Tuple of (status, status_message)
    """
    if now is None:
        now = datetime.now(timezone.utc)

    if not checker_running:
        return "error", "Ship checker is not running"

    # Cycles only record stats when someone is registered
    stale_after = max(timedelta(minutes=5), timedelta(seconds=check_interval_s * 5))
    if has_recipients and last_run and now - last_run > stale_after:
        minutes_ago = int((now - last_run).total_seconds() / 60)
        return "error", f"Ship checker has not completed a cycle in {minutes_ago} minutes, may be stuck"

    if euris_failures > 0:
        return "warning", f"EuRIS fetch failing ({euris_failures} consecutive failures)"

    return "ok", "All systems operational"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan handler for startup and shutdown.
    """
    global euris_client, notification_gateway, ship_checker

    # Startup
    logger.info(f"Base coordinates: {BASE_COORDS.lat}, {BASE_COORDS.lon}")
    euris_client, notification_gateway, ship_checker = build_services()
    ship_checker.start(registered_tokens)

    yield

    # Shutdown
    logger.info("Shutting down...")
    if ship_checker:
        ship_checker.stop()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="TrackShip API",
    description="Push notifications when a ship approaches",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=SERVER_CONFIG['cors_origins'],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every request with status and duration."""
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = int((time.perf_counter() - start) * 1000)

    level = "INFO"
    if response.status_code >= 500:
        level = "ERROR"
    elif response.status_code >= 400:
        level = "WARNING"
    logger.log(level, f"{request.method} {request.url.path} {response.status_code} - {duration_ms}ms")
    return response


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {str(exc)[:100]}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.get("/", response_model=RootResponse)
def root():
    """
    API root - returns available endpoints.
    """
    return {"endpoints": EndpointsInfo()}


@app.get("/health", response_model=HealthResponse)
def health():
    """
    Health check endpoint for monitoring.

    Status levels:
        - "ok": All systems operational
        - "warning": EuRIS fetches failing
        - "error": Ship checker stopped or stalled
    """
    running = ship_checker.is_running if ship_checker else False
    last_run = ship_checker.statistics.last_run if ship_checker else None
    euris = euris_client.status() if euris_client else None

    status, status_message = calculate_health_status(
        running, bool(registered_tokens), last_run, CHECK_INTERVAL / 1000,
        euris["failure_count"] if euris else 0
    )

    return {
        "status": status,
        "status_message": status_message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - shared.started_at, 1),
        "registered_tokens": len(registered_tokens),
        "ship_checker_running": running,
        "known_ships": len(ship_checker.registry) if ship_checker else 0,
        "euris": euris,
    }


@app.post("/register-token", response_model=TokenResponse)
async def register_token(payload: TokenRequest):
    """
    Register a push token. Sends a confirmation notification to it.
    """
    token = validate_token(payload.token)

    registered_tokens.add(token)
    logger.info(f"Token registered: {token[:30]}... ({len(registered_tokens)} total)")

    if notification_gateway:
        await send_registration_confirmation(notification_gateway, token, ZONES.boundary)

    return {
        "success": True,
        "message": "Token registered successfully",
        "total_tokens": len(registered_tokens),
    }


@app.post("/unregister-token", response_model=TokenResponse)
def unregister_token(payload: TokenRequest):
    """
    Unregister a push token.
    """
    token = (payload.token or "").strip()
    if not token:
        raise HTTPException(status_code=400, detail="Token is required")

    was_registered = token in registered_tokens
    registered_tokens.discard(token)

    if was_registered:
        logger.info(f"Token unregistered: {token[:30]}... ({len(registered_tokens)} total)")
    else:
        logger.warning(f"Attempted to unregister unknown token: {token[:30]}...")

    return {
        "success": True,
        "message": "Token unregistered successfully" if was_registered else "Token was not registered",
        "total_tokens": len(registered_tokens),
    }


@app.get("/ships", response_model=ShipsResponse)
async def get_ships(lat: Optional[float] = Query(default=None), lon: Optional[float] = Query(default=None),
                    radius: int = Query(default=DEBUG_SHIPS_RADIUS, gt=0)):
    """
    Debug proxy to EuRIS - ships around a point, closest first.

    Defaults to the watch point with a 5 km radius.
    """
    if euris_client is None:
        raise HTTPException(status_code=503, detail="EuRIS client not initialized")

    center = GeoPoint(
        lat if lat is not None else BASE_COORDS.lat,
        lon if lon is not None else BASE_COORDS.lon,
    )
    result = await euris_client.fetch(center, radius)

    ships = [{
        "identity": s.identity,
        "mmsi": s.mmsi,
        "name": s.name,
        "position": {"lat": s.lat, "lon": s.lon},
        "course": s.course,
        "speed": s.speed,
        "heading": s.heading,
        "distance": s.distance,
        "zone": classify_zone(s.distance, ZONES),
        "timestamp": s.timestamp,
    } for s in result.ships]

    return {"success": result.ok, "count": len(ships), "error": result.error, "ships": ships}


@app.get("/tokens/count", response_model=TokenCountResponse)
def tokens_count():
    """Registered token count (debug)."""
    return {
        "count": len(registered_tokens),
        "tokens": [t[:20] + "..." for t in registered_tokens],
    }


@app.get("/stats", response_model=StatsResponse)
def stats():
    """
    Ship checker diagnostics: known ships and cycle counters.
    """
    if ship_checker is None:
        raise HTTPException(status_code=503, detail="Ship checker not initialized")
    return {**ship_checker.get_stats(), "statistics": ship_checker.statistics.as_dict()}


__all__ = ['app', 'build_services', 'calculate_health_status']
