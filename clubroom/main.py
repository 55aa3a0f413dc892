from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.middleware import SlowAPIMiddleware
from slowapi.errors import RateLimitExceeded

from .config import RATE_LIMIT, RATE_LIMIT_ENABLED
from .database import Base, engine
from .error_handlers import register_exception_handlers
from .logging_config import configure_logging
from .routers import bookings, jobs, payments, plans, rooms, transactions, users

configure_logging()

# -----------------------------------------
# Create DB tables
# -----------------------------------------
Base.metadata.create_all(bind=engine)

# -----------------------------------------
# Rate Limiter (per client IP)
# -----------------------------------------
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[RATE_LIMIT],
    enabled=RATE_LIMIT_ENABLED,
)

app = FastAPI(
    title="Clubroom Booking Backend",
    version="0.1.0",
    description="Room bookings, plan quotas and billing for a tabletop-gaming association.",
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

register_exception_handlers(app)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded. Please try again later.",
            "error": "too_many_requests",
            "path": str(request.url.path),
        },
    )


# -----------------------------------------
# Routers (normal + versioned /api/v1)
# -----------------------------------------
ROUTERS = (users, plans, rooms, bookings, transactions, payments, jobs)

for module in ROUTERS:
    app.include_router(module.router)

for module in ROUTERS:
    app.include_router(module.router, prefix="/api/v1")


# -----------------------------------------
# Health check endpoint
# -----------------------------------------
@app.get("/health", tags=["health"])
def health_check():
    return {"status": "ok"}
