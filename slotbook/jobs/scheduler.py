import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..config import settings
from ..database import SessionLocal
from ..services.notifications import deliver, sweep_messages
from ..services.sweeper import sweep

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "deadline_sweep"

# Heartbeat for /admin/health. A sweep that stops running silently leaks
# HELD slots and stuck REQUESTED/APPROVED appointments.
_SWEEP_STATE = {
    "last_run": None,
    "last_success": None,
    "last_error": None,
    "runs": 0,
    "failures": 0,
    "missed": 0,
}
_state_lock = threading.Lock()


def _record(**changes) -> None:
    with _state_lock:
        for key, value in changes.items():
            if key in ("runs", "failures", "missed"):
                _SWEEP_STATE[key] += value
            else:
                _SWEEP_STATE[key] = value


def sweep_job(db: Optional[Session] = None, now: Optional[datetime] = None) -> dict:
    """One scheduled sweep pass. Opens its own session unless one is given."""
    now = now or utcnow()
    _record(last_run=now, runs=1)
    own_session = db is None
    if own_session:
        db = SessionLocal()
    try:
        try:
            summary = sweep(db, now)
        except Exception as e:
            _record(last_error=f"{now.isoformat()} {e!r}", failures=1)
            logger.exception("Deadline sweep failed")
            raise
        _record(last_success=now)
        # Transitions are committed at this point; messages are best effort
        try:
            messages = sweep_messages(db, summary)
        except Exception:
            logger.exception("Sweep messages could not be composed")
            messages = []
    finally:
        if own_session:
            db.close()
    if messages:
        deliver(*messages)
    return summary


def sweep_health(now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    with _state_lock:
        state = dict(_SWEEP_STATE)
    last_success = state["last_success"]
    stale_after = timedelta(seconds=settings.SWEEP_STALE_AFTER_SECONDS)
    state["enabled"] = settings.SCHEDULER_ENABLED
    state["stale"] = settings.SCHEDULER_ENABLED and (last_success is None or now - last_success > stale_after)
    return state


def reset_sweep_state() -> None:
    with _state_lock:
        _SWEEP_STATE.update(last_run=None, last_success=None, last_error=None, runs=0, failures=0, missed=0)


def _on_job_event(event) -> None:
    if event.job_id != SWEEP_JOB_ID:
        return
    if event.code == EVENT_JOB_MISSED:
        _record(missed=1)
        logger.error("Deadline sweep missed its run time (scheduled %s)", event.scheduled_run_time)
    elif event.exception is not None:
        logger.error("Deadline sweep raised: %r", event.exception)


def start_scheduler():
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        sweep_job,
        IntervalTrigger(seconds=settings.SWEEP_INTERVAL_SECONDS),
        id=SWEEP_JOB_ID,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(timezone.utc),
    )
    scheduler.add_listener(_on_job_event, EVENT_JOB_ERROR | EVENT_JOB_MISSED)
    scheduler.start()
    logger.info("Deadline sweep scheduled every %ss", settings.SWEEP_INTERVAL_SECONDS)
    return scheduler
