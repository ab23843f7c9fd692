import logging
import uuid
from typing import List, Literal, Optional, Union

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from .config import LOG_LEVEL
from .errors import CatalogLoadFailure
from .models import TideEvent
from .station_catalog import StationResolver
from .tide_curve import estimate_now, sample_curve, tidal_coefficient
from .tide_service import TideNowService

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        return response


class TideEventIn(BaseModel):
    time: Union[float, str] = Field(..., description='Local time as "HH:MM" or decimal hours')
    height: float = Field(..., description="Height in meters")
    type: Literal["HIGH", "LOW", "high", "low"]


class CurveRequest(BaseModel):
    tides: List[TideEventIn]
    step_minutes: Literal[15, 30, 60] = 15
    at: Optional[float] = Field(None, ge=0, lt=24, description="Decimal hour for the current-state estimate")


app = FastAPI(
    title="Tide Now API",
    description="Today's tide curve for any coastal place, from official predictions down to an astronomical approximation",
    version="1.0.0",
)

# Set up rate limiter
limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add security headers middleware
app.add_middleware(SecurityHeadersMiddleware)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed requests are client errors (400), not 422."""
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

# Initialize services
tide_now_service = TideNowService()


@app.get("/api/v1/tide-now")
@limiter.limit("30/minute")
async def get_tide_now(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200, description='Place name or "lat, lon"'),
):
    """
    Get today's tides for a place.

    The query is geocoded, matched to a tide station and served from the
    first provider with data. When no station or provider can be used the
    tides are an astronomical approximation and `location.is_approximate`
    is true; `location.disclaimer` explains any substitution.

    Rate limited to 30 requests per minute per IP.
    """
    try:
        snapshot = await tide_now_service.forecast(q)
        return snapshot.to_dict()
    except Exception:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in get_tide_now")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")


@app.get("/api/v1/stations")
async def get_stations():
    """List the tide stations of the bundled catalog."""
    try:
        stations = tide_now_service.stations()
    except CatalogLoadFailure as e:
        logger.error(f"Station catalog unavailable: {e}")
        raise HTTPException(503, detail="Station catalog unavailable")
    return [station.to_dict() for station in stations]


@app.get("/api/v1/stations/nearest")
async def get_nearest_station(
    lat: float = Query(..., ge=-90, le=90, description="Latitude in degrees"),
    lon: float = Query(..., ge=-180, le=180, description="Longitude in degrees"),
):
    """Nearest catalog station to a point, with its distance in km."""
    try:
        resolver = StationResolver(tide_now_service.stations(), max_distance_km=None)
    except CatalogLoadFailure as e:
        logger.error(f"Station catalog unavailable: {e}")
        raise HTTPException(503, detail="Station catalog unavailable")

    match = resolver.nearest(lat, lon)
    if match is None:
        raise HTTPException(404, detail="No stations in catalog")
    return {
        "station": match.station.to_dict(),
        "distance_km": round(match.distance_km, 1),
    }


@app.post("/api/v1/curve")
async def post_curve(body: CurveRequest):
    """
    Synthesize a tide curve from a list of high/low events.

    Returns the curve sampled over the day at `step_minutes`, the tidal
    coefficient and, if `at` is given, the height and direction at that hour.
    """
    try:
        tides = sorted(
            (TideEvent(time=tide.time, height=tide.height, type=tide.type) for tide in body.tides),
            key=lambda e: e.time,
        )
        if len(tides) < 2:
            raise ValueError("At least two tide events are required")

        result = {
            "tides": [tide.to_dict() for tide in tides],
            "curve": [point.to_dict() for point in sample_curve(tides, step_hours=body.step_minutes / 60)],
            "coefficient": tidal_coefficient(tides),
        }
        if body.at is not None:
            state = estimate_now(tides, body.at)
            result["current"] = {
                "time": body.at,
                "height": state.height,
                "is_rising": state.is_rising,
            }
        return result
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    except Exception:
        error_id = uuid.uuid4().hex[:8]
        logger.exception(f"Error {error_id} in post_curve")
        raise HTTPException(500, detail=f"Internal error (ref: {error_id})")


@app.get("/health")
async def health():
    return {"status": "healthy", "providers": [provider.key for provider in tide_now_service.providers]}
