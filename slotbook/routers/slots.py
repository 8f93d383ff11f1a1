# slotbook/routers/slots.py
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session
from datetime import date, timedelta
from dateutil import parser as dtparser

from ..clock import utcnow
from ..database import get_db
from ..deps import require_patient
from .. import schemas
from ..models import SlotStatus
from ..services import inventory, reservations

router = APIRouter(prefix="", tags=["slots"])

MAX_RANGE_DAYS = 62


def parse_day(value: str, name: str = "date") -> date:
    try:
        return dtparser.parse(value).date()
    except (ValueError, OverflowError):
        raise HTTPException(status_code=400, detail=f"Invalid '{name}'. Use YYYY-MM-DD.")


def parse_range(start_date: str, end_date: str) -> tuple[date, date]:
    start, end = parse_day(start_date, "start_date"), parse_day(end_date, "end_date")
    if end < start:
        raise HTTPException(status_code=400, detail="end_date must be on or after start_date")
    if end - start > timedelta(days=MAX_RANGE_DAYS):
        raise HTTPException(status_code=400, detail=f"Date range cannot exceed {MAX_RANGE_DAYS} days")
    return start, end


def slots_out(slots, now, patient_id: Optional[int] = None) -> schemas.SlotsResponse:
    out = []
    for s in slots:
        item = schemas.SlotOut.model_validate(s)
        # Lapsed holds read as FREE until the sweep catches up
        item.status = s.effective_status(now)
        if item.status != s.status:
            item.held_until = None
        if patient_id is not None:
            # Tells a patient their own hold apart; never who else holds a slot
            item.held_by_current_user = item.status == SlotStatus.HELD and s.held_by == patient_id
        out.append(item)
    return schemas.SlotsResponse(total=len(out), slots=out)


@router.get("/doctors/{doctor_id}/slots/free", response_model=schemas.SlotsResponse)
def free_slots(
    doctor_id: int,
    start_date: str = Query(..., description="YYYY-MM-DD"),
    end_date: str = Query(..., description="YYYY-MM-DD"),
    x_patient_id: Optional[int] = Header(None),
    db: Session = Depends(get_db),
):
    start, end = parse_range(start_date, end_date)
    now = utcnow()
    return slots_out(inventory.list_free(db, doctor_id, start, end, now=now), now, x_patient_id)


@router.get("/doctors/{doctor_id}/slots", response_model=schemas.SlotsResponse)
def slots_by_date(
    doctor_id: int,
    date_str: str = Query(..., alias="date", description="YYYY-MM-DD"),
    x_patient_id: Optional[int] = Header(None),
    db: Session = Depends(get_db),
):
    """All statuses; used to refresh the patient view after a conflict."""
    day = parse_day(date_str)
    return slots_out(inventory.list_by_date(db, doctor_id, day), utcnow(), x_patient_id)


@router.post("/patient/slots/{slot_id}/hold", response_model=schemas.HoldResponse)
def hold_slot(slot_id: int, patient_id: int = Depends(require_patient), db: Session = Depends(get_db)):
    now = utcnow()
    held_until = reservations.hold(db, slot_id, patient_id, now=now)
    remaining = max(0, int((held_until - now).total_seconds()))
    return schemas.HoldResponse(slot_id=slot_id, held_until=held_until, time_remaining_seconds=remaining)


@router.post("/patient/slots/{slot_id}/release", response_model=schemas.ReleaseResponse)
def release_slot(slot_id: int, patient_id: int = Depends(require_patient), db: Session = Depends(get_db)):
    reservations.release(db, slot_id, patient_id)
    return schemas.ReleaseResponse(slot_id=slot_id)
