"""
FastAPI application factory.

* Registers routes for rides, bookings and admin.
* Maps every ``BookingError`` to ``{"detail", "code", "context"}`` JSON.
* Closes the Redis notification pool via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from src.api.middleware import limiter
from src.api.routes import admin, bookings, rides
from src.config import settings
from src.domain.errors import BookingError
from src.infrastructure.redis_client import close_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Release the shared Redis pool on shutdown."""
    yield
    await close_redis()


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    logger.info(
        "%s %s -> %d %s %s",
        request.method,
        request.url.path,
        exc.status_code,
        exc.code,
        exc.context,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(
        title="LANE Carpool Booking API",
        description=(
            "Riders post trips, passengers book seats.  Bookings move "
            "through OTP-verified pickup and dropoff to payment "
            "settlement, with seat inventory and ride completion kept "
            "consistent under concurrent requests."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(BookingError, booking_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
