# slotbook/services/lifecycle.py
"""
Appointment state machine after a slot has been booked.

    REQUESTED --approve--> APPROVED --confirm_payment--> PAID
    REQUESTED --reject / approval deadline--> REJECTED
    APPROVED  --payment deadline--> CANCELLED
    REQUESTED|APPROVED --patient cancels--> CANCELLED

Each transition is a conditional UPDATE on (id, status[, deadline]) so a
doctor action racing the sweep applies exactly one outcome. Leaving an
in-flight state for a terminal one frees the bound slot in the same
transaction.
"""
from __future__ import annotations
import logging
import math
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..config import settings
from ..errors import DeadlineExceeded, Forbidden, InvalidTransition, NotFound
from ..models import Appointment, AppointmentStatus, Doctor, Patient, Slot, SlotStatus

logger = logging.getLogger(__name__)

IN_FLIGHT = (AppointmentStatus.REQUESTED, AppointmentStatus.APPROVED)


def payment_window() -> timedelta:
    return timedelta(minutes=settings.PAYMENT_WINDOW_MINUTES)


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appt = db.get(Appointment, appointment_id)
    if appt is None:
        raise NotFound("Appointment not found")
    return appt


def free_bound_slot(db: Session, slot_id: int) -> int:
    """BOOKED -> FREE for the slot of an appointment that just went terminal. No commit."""
    res = db.execute(
        update(Slot)
        .where(Slot.id == slot_id, Slot.status == SlotStatus.BOOKED)
        .values(status=SlotStatus.FREE, held_by=None, held_until=None)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def _transition(db: Session, appt: Appointment, expected: AppointmentStatus, deadline_col, now: datetime,
                **values) -> bool:
    """Conditional UPDATE; False when the row was no longer in `expected` (or its deadline passed)."""
    stmt = (
        update(Appointment)
        .where(Appointment.id == appt.id, Appointment.status == expected)
        .values(updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    if deadline_col is not None:
        stmt = stmt.where(deadline_col > now)
    return db.execute(stmt).rowcount == 1


def _guard_doctor(appt: Appointment, doctor_id: int, now: datetime) -> None:
    if appt.doctor_id != doctor_id:
        raise Forbidden("Appointment belongs to another doctor")
    if appt.status != AppointmentStatus.REQUESTED:
        raise InvalidTransition(f"Appointment is {appt.status.value}, expected REQUESTED")
    if now >= appt.approval_deadline:
        logger.warning("Doctor action after approval deadline: appointment_id=%s deadline=%s now=%s",
                       appt.id, appt.approval_deadline.isoformat(), now.isoformat())
        raise DeadlineExceeded("The approval window for this appointment has closed")


def _lost_race(db: Session, appt: Appointment, now: datetime, deadline_attr: str):
    """Re-read after a conditional update matched nothing and raise the matching error."""
    db.rollback()
    db.refresh(appt)
    deadline = getattr(appt, deadline_attr)
    if appt.status in IN_FLIGHT and deadline is not None and now >= deadline:
        logger.warning("Transition after deadline: appointment_id=%s %s=%s", appt.id, deadline_attr, deadline)
        raise DeadlineExceeded()
    raise InvalidTransition(f"Appointment is {appt.status.value}")


# ====== Doctor actions ======
def approve(db: Session, appointment_id: int, doctor_id: int, now: Optional[datetime] = None) -> Appointment:
    now = now or utcnow()
    appt = get_appointment(db, appointment_id)
    _guard_doctor(appt, doctor_id, now)

    payment_deadline = now + payment_window()
    if not _transition(db, appt, AppointmentStatus.REQUESTED, Appointment.approval_deadline, now,
                       status=AppointmentStatus.APPROVED, payment_deadline=payment_deadline):
        _lost_race(db, appt, now, "approval_deadline")
    db.commit()
    db.refresh(appt)
    logger.info("Appointment approved: appointment_id=%s payment_deadline=%s", appt.id, payment_deadline.isoformat())
    return appt


def reject(db: Session, appointment_id: int, doctor_id: int, now: Optional[datetime] = None,
           reason: Optional[str] = None) -> Appointment:
    now = now or utcnow()
    appt = get_appointment(db, appointment_id)
    _guard_doctor(appt, doctor_id, now)

    if not _transition(db, appt, AppointmentStatus.REQUESTED, Appointment.approval_deadline, now,
                       status=AppointmentStatus.REJECTED, rejection_reason=reason):
        _lost_race(db, appt, now, "approval_deadline")
    free_bound_slot(db, appt.slot_id)
    db.commit()
    db.refresh(appt)
    logger.info("Appointment rejected: appointment_id=%s slot_id=%s freed", appt.id, appt.slot_id)
    return appt


# ====== Payment collaborator ======
def confirm_payment(db: Session, appointment_id: int, external_session_id: Optional[str] = None,
                    now: Optional[datetime] = None) -> Appointment:
    """
    Payment-completed event. Replaying the event for an already PAID
    appointment succeeds without side effects; a payment for any other
    non-APPROVED state, or one arriving after the payment deadline, is refused.
    """
    now = now or utcnow()
    appt = get_appointment(db, appointment_id)

    if appt.status == AppointmentStatus.PAID:
        if external_session_id is None or appt.payment_session_id in (None, external_session_id):
            logger.info("Payment replay ignored: appointment_id=%s", appt.id)
            return appt
        raise InvalidTransition("Appointment is already paid")
    if appt.status != AppointmentStatus.APPROVED:
        raise InvalidTransition(f"Appointment is {appt.status.value}, expected APPROVED")
    if appt.payment_deadline is None or now >= appt.payment_deadline:
        logger.warning("Late payment refused: appointment_id=%s payment_deadline=%s now=%s",
                       appt.id, appt.payment_deadline, now.isoformat())
        raise DeadlineExceeded("The payment window for this appointment has closed")

    if not _transition(db, appt, AppointmentStatus.APPROVED, Appointment.payment_deadline, now,
                       status=AppointmentStatus.PAID, payment_session_id=external_session_id):
        _lost_race(db, appt, now, "payment_deadline")
    db.commit()
    db.refresh(appt)
    logger.info("Appointment paid: appointment_id=%s session=%s", appt.id, external_session_id)
    return appt


# ====== Patient actions ======
def cancel_by_patient(db: Session, appointment_id: int, patient_id: int, now: Optional[datetime] = None) -> Appointment:
    now = now or utcnow()
    appt = get_appointment(db, appointment_id)
    if appt.patient_id != patient_id:
        raise Forbidden("Appointment belongs to another patient")
    if appt.status not in IN_FLIGHT:
        raise InvalidTransition(f"Appointment is {appt.status.value}")

    if not _transition(db, appt, appt.status, None, now,
                       status=AppointmentStatus.CANCELLED, cancelled_by="patient"):
        _lost_race(db, appt, now, "approval_deadline")
    free_bound_slot(db, appt.slot_id)
    db.commit()
    db.refresh(appt)
    logger.info("Appointment cancelled by patient: appointment_id=%s slot_id=%s freed", appt.id, appt.slot_id)
    return appt


# ====== Read side ======
def time_remaining(deadline: Optional[datetime], now: datetime) -> Optional[dict]:
    """
    Countdown mirror of a server deadline for display. Advisory only: no
    action is ever gated on this value.
    """
    if deadline is None:
        return None
    total = max(0, math.floor((deadline - now).total_seconds()))
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return {"hours": hours, "minutes": minutes, "seconds": seconds, "expires_at": deadline}


def _list(db: Session, *criteria, status: Optional[AppointmentStatus] = None, search: Optional[str] = None,
          page: int = 1, page_size: int = 20) -> Tuple[List[Appointment], int]:
    stmt = (
        select(Appointment)
        .join(Doctor, Doctor.id == Appointment.doctor_id)
        .join(Patient, Patient.id == Appointment.patient_id)
        .where(*criteria)
    )
    if status is not None:
        stmt = stmt.where(Appointment.status == status)
    if search:
        like = f"%{search.strip()}%"
        stmt = stmt.where(or_(Doctor.name.ilike(like), Patient.name.ilike(like), Doctor.specialization.ilike(like)))

    total = db.scalar(select(func.count()).select_from(stmt.subquery()))
    rows = db.scalars(
        stmt.order_by(Appointment.created_at.desc(), Appointment.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return list(rows), total or 0


def list_for_patient(db: Session, patient_id: int, **filters) -> Tuple[List[Appointment], int]:
    return _list(db, Appointment.patient_id == patient_id, **filters)


def list_for_doctor(db: Session, doctor_id: int, **filters) -> Tuple[List[Appointment], int]:
    return _list(db, Appointment.doctor_id == doctor_id, **filters)


def all_for_role(db: Session, role: str, actor_id: int) -> List[Appointment]:
    col = Appointment.doctor_id if role == "doctor" else Appointment.patient_id
    return list(db.scalars(select(Appointment).where(col == actor_id)))


def payment_details(db: Session, appointment_id: int, patient_id: int, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    appt = get_appointment(db, appointment_id)
    if appt.patient_id != patient_id:
        raise Forbidden("Appointment belongs to another patient")
    if appt.status != AppointmentStatus.APPROVED:
        raise InvalidTransition(f"Appointment is {appt.status.value}, nothing to pay")
    return {
        "appointment_id": appt.id,
        "doctor_name": appt.doctor.name,
        "specialization": appt.doctor.specialization,
        "opd_fees": appt.doctor.opd_fees,
        "slot_date": appt.slot.date,
        "slot_time": appt.slot.start_time,
        "time_remaining": time_remaining(appt.payment_deadline, now),
        "payment_expires_at": appt.payment_deadline,
    }
