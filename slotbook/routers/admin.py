# slotbook/routers/admin.py
from __future__ import annotations
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..config import settings
from ..database import get_db
from ..deps import require_admin
from ..jobs.scheduler import sweep_health, sweep_job

router = APIRouter(tags=["admin"])


# ──────────────────────────────────────────────────────────────────────────────
# Basics
# (main.py mounts this router with prefix="/admin")
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/ping")
def admin_ping():
    return {"ok": True, "ts": utcnow().isoformat()}


@router.get("/health")
def admin_health():
    """
    Service + deadline sweep health. Returns 503 when the sweep has not
    succeeded within SWEEP_STALE_AFTER_SECONDS, so monitors page on it.
    """
    now = utcnow()
    sweep = sweep_health(now)
    body = {
        "ok": not sweep["stale"],
        "app": settings.APP_NAME,
        "env": settings.ENV,
        "ts": now.isoformat(),
        "sweep": {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in sweep.items()},
    }
    return JSONResponse(status_code=503 if sweep["stale"] else 200, content=body)


# ──────────────────────────────────────────────────────────────────────────────
# Sweep
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/sweep")
def admin_run_sweep(_: None = Depends(require_admin), db: Session = Depends(get_db)):
    """Run one deadline sweep now (same code path as the scheduled job)."""
    summary = sweep_job(db)
    return {"ok": True, **summary}
