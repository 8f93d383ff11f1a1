# slotbook/services/inventory.py
"""
Slot inventory: existence and status of a doctor's bookable slots.

Calendar edits (block/unblock, day off, leave, Sundays off, slot creation)
only ever touch FREE/BLOCKED slots, and an unexpired HELD slot only through
a day off. A BOOKED slot is never changed here: appointments in flight are
owned by the lifecycle.
"""
from __future__ import annotations
import logging
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from ..clock import clinic_now, first_editable_date, utcnow
from ..config import settings
from ..errors import Forbidden, InvalidInput, InvalidTransition, NotEditable, NotFound, Overlap
from ..models import DayOff, DayOffReason, Doctor, Slot, SlotStatus

logger = logging.getLogger(__name__)


# ====== Helpers ======
def _overlaps(a_start, a_end, b_start, b_end):
    return not (a_end <= b_start or b_end <= a_start)


def _expired_hold(now: datetime):
    return and_(Slot.status == SlotStatus.HELD, Slot.held_until <= now)


def _effectively_free(now: datetime):
    """SQL predicate: FREE, or HELD with a lapsed TTL."""
    return or_(Slot.status == SlotStatus.FREE, _expired_hold(now))


def _not_started(now: datetime):
    """SQL predicate: the slot starts after `now` (clinic wall clock)."""
    local = clinic_now(now)
    return or_(
        Slot.date > local.date(),
        and_(Slot.date == local.date(), Slot.start_time > local.time()),
    )


def get_doctor(db: Session, doctor_id: int) -> Doctor:
    doctor = db.get(Doctor, doctor_id)
    if doctor is None:
        raise NotFound("Doctor not found")
    return doctor


def get_slot(db: Session, slot_id: int) -> Slot:
    slot = db.get(Slot, slot_id)
    if slot is None:
        raise NotFound("Slot not found")
    return slot


def _require_editable(day: date, now: datetime) -> None:
    if day < first_editable_date(now):
        raise NotEditable(f"Editing is disabled for dates earlier than tomorrow ({day.isoformat()}).")


def _owned_slot(db: Session, slot_id: int, doctor_id: int) -> Slot:
    slot = get_slot(db, slot_id)
    if slot.doctor_id != doctor_id:
        raise Forbidden("Slot belongs to another doctor")
    return slot


# ====== Reads ======
def list_free(db: Session, doctor_id: int, start_date: date, end_date: date,
              now: Optional[datetime] = None) -> List[Slot]:
    """Bookable slots for the patient date/time picker. Slots that already started are left out."""
    now = now or utcnow()
    get_doctor(db, doctor_id)
    stmt = (
        select(Slot)
        .where(Slot.doctor_id == doctor_id)
        .where(Slot.date >= start_date)
        .where(Slot.date <= end_date)
        .where(_effectively_free(now))
        .where(_not_started(now))
        .order_by(Slot.date, Slot.start_time)
    )
    return list(db.scalars(stmt))


def list_range(db: Session, doctor_id: int, start_date: date, end_date: date) -> List[Slot]:
    """All statuses; the calendar view fetches a whole month grid."""
    get_doctor(db, doctor_id)
    stmt = (
        select(Slot)
        .where(Slot.doctor_id == doctor_id)
        .where(Slot.date >= start_date)
        .where(Slot.date <= end_date)
        .order_by(Slot.date, Slot.start_time)
    )
    return list(db.scalars(stmt))


def list_by_date(db: Session, doctor_id: int, day: date) -> List[Slot]:
    return list_range(db, doctor_id, day, day)


# ====== Block / unblock ======
def mark_blocked(db: Session, slot_id: int, doctor_id: int, now: Optional[datetime] = None) -> Slot:
    now = now or utcnow()
    slot = _owned_slot(db, slot_id, doctor_id)
    _require_editable(slot.date, now)

    if slot.status == SlotStatus.BLOCKED:
        return slot

    res = db.execute(
        update(Slot)
        .where(Slot.id == slot_id)
        .where(_effectively_free(now))
        .values(status=SlotStatus.BLOCKED, held_by=None, held_until=None)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        db.refresh(slot)
        raise InvalidTransition(f"Cannot block a {slot.status.value} slot")
    db.commit()
    db.refresh(slot)
    logger.info("Slot blocked: slot_id=%s doctor_id=%s", slot_id, doctor_id)
    return slot


def mark_unblocked(db: Session, slot_id: int, doctor_id: int, now: Optional[datetime] = None) -> Slot:
    now = now or utcnow()
    slot = _owned_slot(db, slot_id, doctor_id)
    _require_editable(slot.date, now)

    if slot.effective_status(now) == SlotStatus.FREE:
        return slot

    res = db.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.status == SlotStatus.BLOCKED)
        .values(status=SlotStatus.FREE)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        db.refresh(slot)
        raise InvalidTransition(f"Cannot unblock a {slot.status.value} slot")
    db.commit()
    db.refresh(slot)
    logger.info("Slot unblocked: slot_id=%s doctor_id=%s", slot_id, doctor_id)
    return slot


# ====== Days off ======
def _apply_day_off(db: Session, doctor_id: int, day: date, reason: DayOffReason) -> int:
    """Blocks every non-BOOKED slot on `day` and records the marker. No commit."""
    marker = db.scalar(select(DayOff).where(DayOff.doctor_id == doctor_id, DayOff.date == day))
    if marker is None:
        db.add(DayOff(doctor_id=doctor_id, date=day, reason=reason))

    res = db.execute(
        update(Slot)
        .where(Slot.doctor_id == doctor_id, Slot.date == day)
        .where(Slot.status.in_([SlotStatus.FREE, SlotStatus.HELD]))
        .values(status=SlotStatus.BLOCKED, held_by=None, held_until=None)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def mark_day_off(db: Session, doctor_id: int, day: date, now: Optional[datetime] = None,
                 reason: DayOffReason = DayOffReason.day_off) -> int:
    """Block a whole day. BOOKED slots stay as they are. Returns how many slots were blocked."""
    now = now or utcnow()
    get_doctor(db, doctor_id)
    _require_editable(day, now)

    blocked = _apply_day_off(db, doctor_id, day, reason)
    db.commit()
    logger.info("Day off: doctor_id=%s date=%s blocked=%s", doctor_id, day, blocked)
    return blocked


def remove_day_off(db: Session, doctor_id: int, day: date, now: Optional[datetime] = None) -> int:
    """Clear a day-off marker and unblock the day's BLOCKED slots."""
    now = now or utcnow()
    get_doctor(db, doctor_id)
    _require_editable(day, now)

    marker = db.scalar(select(DayOff).where(DayOff.doctor_id == doctor_id, DayOff.date == day))
    if marker is None:
        raise NotFound("Date is not marked off")
    db.delete(marker)
    res = db.execute(
        update(Slot)
        .where(Slot.doctor_id == doctor_id, Slot.date == day, Slot.status == SlotStatus.BLOCKED)
        .values(status=SlotStatus.FREE)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    logger.info("Day off removed: doctor_id=%s date=%s unblocked=%s", doctor_id, day, res.rowcount)
    return res.rowcount


def set_leave_range(db: Session, doctor_id: int, start_date: date, end_date: date,
                    now: Optional[datetime] = None) -> List[date]:
    now = now or utcnow()
    get_doctor(db, doctor_id)
    if end_date < start_date:
        raise InvalidInput("end_date must be on or after start_date")
    days = (end_date - start_date).days + 1
    if days > settings.MAX_LEAVE_DAYS:
        raise InvalidInput(f"Leave range cannot exceed {settings.MAX_LEAVE_DAYS} days")
    _require_editable(start_date, now)

    dates = [start_date + timedelta(days=i) for i in range(days)]
    blocked = 0
    for d in dates:
        blocked += _apply_day_off(db, doctor_id, d, DayOffReason.leave)
    db.commit()
    logger.info("Leave range: doctor_id=%s %s..%s blocked=%s", doctor_id, start_date, end_date, blocked)
    return dates


def set_recurring_sundays_off(db: Session, doctor_id: int, start_date: date, weeks: int,
                              now: Optional[datetime] = None) -> List[date]:
    """Marks the next `weeks` Sundays on/after start_date as off."""
    now = now or utcnow()
    get_doctor(db, doctor_id)
    if weeks < 1 or weeks > settings.MAX_SUNDAY_WEEKS:
        raise InvalidInput(f"weeks must be between 1 and {settings.MAX_SUNDAY_WEEKS}")
    _require_editable(start_date, now)

    # date.weekday(): Monday=0 .. Sunday=6
    first_sunday = start_date + timedelta(days=(6 - start_date.weekday()) % 7)
    sundays = [first_sunday + timedelta(weeks=i) for i in range(weeks)]
    for d in sundays:
        _apply_day_off(db, doctor_id, d, DayOffReason.sunday)
    db.commit()
    logger.info("Recurring Sundays off: doctor_id=%s from=%s weeks=%s", doctor_id, first_sunday, weeks)
    return sundays


# ====== Slot generation ======
def create_slots(db: Session, doctor_id: int, day: date, start_time: time, end_time: time,
                 slot_duration: Optional[int] = None, now: Optional[datetime] = None) -> List[Slot]:
    """
    Generates contiguous slots of `slot_duration` minutes (default: the doctor's
    minimum slot duration) between start_time and end_time. Fails with Overlap
    if any generated slot overlaps an existing slot for that date. On a date
    marked off the slots are created BLOCKED.
    """
    now = now or utcnow()
    doctor = get_doctor(db, doctor_id)
    _require_editable(day, now)

    minimum = doctor.minimum_slot_duration or settings.DEFAULT_SLOT_MINUTES
    duration = slot_duration or minimum
    if duration < minimum:
        raise InvalidInput(f"Slot duration cannot be shorter than {minimum} minutes")

    start_dt = datetime.combine(day, start_time)
    end_dt = datetime.combine(day, end_time)
    delta = timedelta(minutes=duration)

    windows = []
    cur = start_dt
    while cur + delta <= end_dt:
        windows.append((cur, cur + delta))
        cur += delta
    if not windows:
        raise InvalidInput(f"No {duration}-minute slot fits between {start_time} and {end_time}")

    existing = db.scalars(select(Slot).where(Slot.doctor_id == doctor_id, Slot.date == day)).all()
    for s in existing:
        s_start = datetime.combine(day, s.start_time)
        s_end = datetime.combine(day, s.end_time)
        if any(_overlaps(w0, w1, s_start, s_end) for (w0, w1) in windows):
            raise Overlap(f"Generated slots overlap existing slot {s.start_time}-{s.end_time} on {day.isoformat()}")

    day_off = db.scalar(select(DayOff).where(DayOff.doctor_id == doctor_id, DayOff.date == day))
    status = SlotStatus.BLOCKED if day_off is not None else SlotStatus.FREE

    slots = [
        Slot(doctor_id=doctor_id, date=day, start_time=w0.time(), end_time=w1.time(), status=status)
        for (w0, w1) in windows
    ]
    db.add_all(slots)
    db.commit()
    for s in slots:
        db.refresh(s)
    logger.info("Slots created: doctor_id=%s date=%s count=%s duration=%s status=%s",
                doctor_id, day, len(slots), duration, status.value)
    return slots
