# slotbook/routers/calendar.py
"""
Doctor calendar management: block/unblock, days off, leave, recurring
Sundays off, and slot generation. Only dates from tomorrow onwards are editable.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..database import get_db
from ..deps import require_doctor
from .. import schemas
from ..services import inventory
from .slots import parse_day, parse_range, slots_out

router = APIRouter(prefix="/doctor", tags=["calendar"])


@router.get("/availability/slots", response_model=schemas.SlotsResponse)
def calendar_slots(
    start_date: str = Query(..., description="YYYY-MM-DD"),
    end_date: str = Query(..., description="YYYY-MM-DD"),
    doctor_id: int = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    start, end = parse_range(start_date, end_date)
    return slots_out(inventory.list_range(db, doctor_id, start, end), utcnow())


@router.post("/availability/slots/{slot_id}/block", response_model=schemas.SlotOut)
def block_slot(slot_id: int, doctor_id: int = Depends(require_doctor), db: Session = Depends(get_db)):
    return inventory.mark_blocked(db, slot_id, doctor_id)


@router.post("/availability/slots/{slot_id}/unblock", response_model=schemas.SlotOut)
def unblock_slot(slot_id: int, doctor_id: int = Depends(require_doctor), db: Session = Depends(get_db)):
    return inventory.mark_unblocked(db, slot_id, doctor_id)


@router.post("/calendar/date-off", response_model=schemas.CalendarActionResponse)
def date_off(req: schemas.DateIn, doctor_id: int = Depends(require_doctor), db: Session = Depends(get_db)):
    blocked = inventory.mark_day_off(db, doctor_id, req.date)
    return schemas.CalendarActionResponse(message="Date marked off", dates=[req.date], affected=blocked)


@router.delete("/calendar/date-off/{day}", response_model=schemas.CalendarActionResponse)
def remove_date_off(day: str, doctor_id: int = Depends(require_doctor), db: Session = Depends(get_db)):
    d = parse_day(day)
    unblocked = inventory.remove_day_off(db, doctor_id, d)
    return schemas.CalendarActionResponse(message="Day off removed", dates=[d], affected=unblocked)


@router.post("/calendar/leave-range", response_model=schemas.CalendarActionResponse)
def leave_range(req: schemas.LeaveRangeIn, doctor_id: int = Depends(require_doctor), db: Session = Depends(get_db)):
    dates = inventory.set_leave_range(db, doctor_id, req.start_date, req.end_date)
    return schemas.CalendarActionResponse(message="Leave range applied", dates=dates, affected=len(dates))


@router.post("/calendar/recurring-sundays-off", response_model=schemas.CalendarActionResponse)
def recurring_sundays_off(req: schemas.SundaysOffIn, doctor_id: int = Depends(require_doctor),
                          db: Session = Depends(get_db)):
    dates = inventory.set_recurring_sundays_off(db, doctor_id, req.start_date, req.weeks)
    return schemas.CalendarActionResponse(message="Recurring Sundays off applied", dates=dates, affected=len(dates))


@router.post("/availability/date-slots/create", response_model=schemas.SlotsResponse, status_code=201)
def create_slots(req: schemas.CreateSlotsIn, doctor_id: int = Depends(require_doctor), db: Session = Depends(get_db)):
    slots = inventory.create_slots(db, doctor_id, req.date, req.start_time, req.end_time, req.slot_duration)
    return slots_out(slots, utcnow())
