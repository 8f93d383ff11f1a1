# slotbook/services/reservations.py
"""
Time-boxed exclusive holds on FREE slots.

Every state change here is a single conditional UPDATE on the slot row
(`... WHERE id = :slot AND status = ...`), never a read followed by a write:
the row count of the UPDATE is what decides who won the slot.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..clock import clinic_now, utcnow
from ..config import settings
from ..errors import HoldExpired, NotFound, SlotUnavailable
from ..models import Appointment, AppointmentStatus, Patient, Slot, SlotStatus
from .inventory import _effectively_free, get_slot

logger = logging.getLogger(__name__)


def hold_ttl() -> timedelta:
    return timedelta(minutes=settings.HOLD_TTL_MINUTES)


def approval_window() -> timedelta:
    return timedelta(hours=settings.APPROVAL_WINDOW_HOURS)


def _get_patient(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise NotFound("Patient not found")
    return patient


def _require_not_started(slot: Slot, patient_id: int, now: datetime) -> None:
    if slot.has_started(clinic_now(now)):
        logger.info("Slot already started: slot_id=%s patient_id=%s", slot.id, patient_id)
        raise SlotUnavailable("This slot has already started. Please choose another slot.")


def hold(db: Session, slot_id: int, patient_id: int, now: Optional[datetime] = None) -> datetime:
    """
    Grant `patient_id` a hold on `slot_id` until now + HOLD_TTL_MINUTES.

    A patient holds at most one slot: any other live hold of the same
    patient is released in the same transaction. If the slot cannot be
    taken the transaction is rolled back and the previous hold is kept.
    """
    now = now or utcnow()
    _get_patient(db, patient_id)
    slot = get_slot(db, slot_id)
    _require_not_started(slot, patient_id, now)

    # Same patient re-selecting the slot they already hold
    if slot.status == SlotStatus.HELD and slot.held_by == patient_id and slot.held_until > now:
        return slot.held_until

    held_until = now + hold_ttl()
    try:
        # The patient's own rows are locked before the contended one
        released = db.execute(
            update(Slot)
            .where(Slot.id != slot_id)
            .where(Slot.status == SlotStatus.HELD, Slot.held_by == patient_id)
            .values(status=SlotStatus.FREE, held_by=None, held_until=None)
            .execution_options(synchronize_session=False)
        )
        res = db.execute(
            update(Slot)
            .where(Slot.id == slot_id)
            .where(_effectively_free(now))
            .values(status=SlotStatus.HELD, held_by=patient_id, held_until=held_until)
            .execution_options(synchronize_session=False)
        )
    except OperationalError as e:
        db.rollback()
        logger.warning("Hold aborted by the database: slot_id=%s patient_id=%s err=%s", slot_id, patient_id, e.orig)
        raise SlotUnavailable("Slot is no longer available. Please choose another slot.") from e
    if res.rowcount != 1:
        db.rollback()
        logger.info("Hold rejected: slot_id=%s patient_id=%s (not free)", slot_id, patient_id)
        raise SlotUnavailable("Slot is no longer available. Please choose another slot.")

    db.commit()
    if released.rowcount:
        logger.info("Previous hold released: patient_id=%s count=%s", patient_id, released.rowcount)
    logger.info("Slot held: slot_id=%s patient_id=%s held_until=%s", slot_id, patient_id, held_until.isoformat())
    return held_until


def release(db: Session, slot_id: int, patient_id: int) -> bool:
    """
    Drop the caller's hold. Releasing a slot the caller does not hold is a
    silent no-op so that holder identity never leaks. Returns whether a
    hold was actually released.
    """
    res = db.execute(
        update(Slot)
        .where(Slot.id == slot_id)
        .where(Slot.status == SlotStatus.HELD, Slot.held_by == patient_id)
        .values(status=SlotStatus.FREE, held_by=None, held_until=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if res.rowcount:
        logger.info("Slot released: slot_id=%s patient_id=%s", slot_id, patient_id)
    return bool(res.rowcount)


def confirm_booking(db: Session, slot_id: int, patient_id: int, now: Optional[datetime] = None,
                    report_url: Optional[str] = None) -> Appointment:
    """
    Turn the caller's live hold into a booking: slot HELD -> BOOKED and a
    REQUESTED appointment bound to it, in one transaction.
    """
    now = now or utcnow()
    _get_patient(db, patient_id)
    slot = get_slot(db, slot_id)
    _require_not_started(slot, patient_id, now)
    doctor_id = slot.doctor_id

    res = db.execute(
        update(Slot)
        .where(Slot.id == slot_id)
        .where(and_(
            Slot.status == SlotStatus.HELD,
            Slot.held_by == patient_id,
            Slot.held_until > now,
        ))
        .values(status=SlotStatus.BOOKED, held_by=None, held_until=None)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.rollback()
        db.refresh(slot)
        if slot.status == SlotStatus.FREE or (
            slot.status == SlotStatus.HELD and slot.held_by == patient_id
        ):
            logger.info("Booking rejected: slot_id=%s patient_id=%s (hold expired)", slot_id, patient_id)
            raise HoldExpired()
        logger.info("Booking rejected: slot_id=%s patient_id=%s (slot %s)", slot_id, patient_id, slot.status.value)
        raise SlotUnavailable("Slot is no longer available. Please choose another slot.")

    appt = Appointment(
        slot_id=slot_id,
        patient_id=patient_id,
        doctor_id=doctor_id,
        status=AppointmentStatus.REQUESTED,
        created_at=now,
        updated_at=now,
        approval_deadline=now + approval_window(),
        report_url=report_url,
    )
    db.add(appt)
    db.commit()
    db.refresh(appt)
    logger.info("Appointment requested: appointment_id=%s slot_id=%s patient_id=%s approval_deadline=%s",
                appt.id, slot_id, patient_id, appt.approval_deadline.isoformat())
    return appt
