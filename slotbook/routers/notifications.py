# slotbook/routers/notifications.py
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..database import get_db
from .. import schemas
from ..services import badges, lifecycle

router = APIRouter(prefix="", tags=["notifications"])


def _actor(role: str, x_doctor_id: Optional[int], x_patient_id: Optional[int]) -> int:
    actor = x_doctor_id if role == "doctor" else x_patient_id
    if actor is None:
        raise HTTPException(status_code=401, detail=f"Missing X-{role.capitalize()}-Id")
    return actor


def _summary(db: Session, role: str, actor_id: int, now) -> badges.NotificationSummary:
    return badges.evaluate(role, lifecycle.all_for_role(db, role, actor_id), now)


@router.get("/notifications", response_model=schemas.NotificationResponse)
def get_notifications(
    role: Literal["doctor", "patient"] = Query(...),
    x_doctor_id: Optional[int] = Header(None),
    x_patient_id: Optional[int] = Header(None),
    x_session_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    """Badge / toast signal, recomputed on every call and never stored."""
    now = utcnow()
    summary = _summary(db, role, _actor(role, x_doctor_id, x_patient_id), now)
    return schemas.NotificationResponse(
        status=summary.status,
        counts=schemas.NotificationCounts(**summary.counts),
        message=summary.message,
        role=role,
        show=badges.seen_registry.should_show(role, x_session_id, summary, now),
    )


@router.post("/notifications/seen")
def mark_seen(
    req: schemas.NotificationSeenIn,
    x_doctor_id: Optional[int] = Header(None),
    x_patient_id: Optional[int] = Header(None),
    x_session_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    if not x_session_id:
        raise HTTPException(status_code=400, detail="Missing X-Session-Id")
    now = utcnow()
    summary = _summary(db, req.role, _actor(req.role, x_doctor_id, x_patient_id), now)
    badges.seen_registry.mark_seen(req.role, x_session_id, summary, now)
    return {"ok": True}
