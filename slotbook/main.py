# slotbook/main.py
import os
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import settings
from .database import init_db
from .errors import BookingError, DeadlineExceeded, Forbidden, InvalidTransition
from .jobs.scheduler import start_scheduler

# Routers
from .routers.slots import router as slots_router
from .routers.appointments import router as appointments_router
from .routers.calendar import router as calendar_router
from .routers.notifications import router as notifications_router
from .routers.admin import router as admin_router

# ──────────────────────────────────────────────────────────────────────────────
# LOGGING
# Levels come from environment variables:
#   LOG_LEVEL, SQLA_LOG_LEVEL, UVICORN_LOG_LEVEL, APSCHEDULER_LOG_LEVEL
# ──────────────────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

logging.getLogger("sqlalchemy.engine").setLevel(
    getattr(logging, os.getenv("SQLA_LOG_LEVEL", "WARNING"), logging.WARNING)
)
logging.getLogger("uvicorn.error").setLevel(
    getattr(logging, os.getenv("UVICORN_LOG_LEVEL", "INFO"), logging.INFO)
)
logging.getLogger("apscheduler").setLevel(
    getattr(logging, os.getenv("APSCHEDULER_LOG_LEVEL", "WARNING"), logging.WARNING)
)

logger = logging.getLogger(__name__)

# ──────────────────────────────────────────────────────────────────────────────
# FastAPI App
# ──────────────────────────────────────────────────────────────────────────────
app = FastAPI(title=settings.APP_NAME)

app.include_router(slots_router)
app.include_router(appointments_router)
app.include_router(calendar_router)
app.include_router(notifications_router)
app.include_router(admin_router, prefix="/admin")  # admin.py does not repeat /admin


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    """
    Protocol errors as {"detail", "code"}. Conflicts are routine (client
    refreshes and re-selects); deadline misses are logged apart because they
    point at a late sweep or a client racing an expired window.
    """
    if isinstance(exc, DeadlineExceeded):
        logger.warning("Deadline exceeded on %s %s: %s", request.method, request.url.path, exc.message)
    elif isinstance(exc, (Forbidden, InvalidTransition)):
        logger.warning("Client/state desync on %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


# ──────────────────────────────────────────────────────────────────────────────
# Lifecycle
# ──────────────────────────────────────────────────────────────────────────────
@app.on_event("startup")
def on_startup():
    init_db()
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler = start_scheduler()
    logger.info("Startup complete: %s (%s)", settings.APP_NAME, settings.ENV)


@app.on_event("shutdown")
def on_shutdown():
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)


@app.get("/")
def root():
    return {"ok": True, "app": settings.APP_NAME, "env": settings.ENV}
