# slotbook/services/sweeper.py
"""
Deadline sweep: applies the time-boxed transitions no client is around for.

    HELD slot,             held_until        <= now -> FREE
    REQUESTED appointment, approval_deadline <= now -> REJECTED + slot FREE
    APPROVED appointment,  payment_deadline  <= now -> CANCELLED + slot FREE

Each row is flipped with a conditional UPDATE that re-checks status and
deadline, so running the sweep twice (or alongside a doctor action) never
applies a transition twice.
"""
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..models import Appointment, AppointmentStatus, Slot, SlotStatus
from .lifecycle import free_bound_slot

logger = logging.getLogger(__name__)

AUTO_REJECT_REASON = "Approval window elapsed without a response from the doctor"


def release_expired_holds(db: Session, now: datetime) -> int:
    res = db.execute(
        update(Slot)
        .where(Slot.status == SlotStatus.HELD, Slot.held_until <= now)
        .values(status=SlotStatus.FREE, held_by=None, held_until=None)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount


def _expire(db: Session, from_status: AppointmentStatus, deadline_col, now: datetime, **values) -> list:
    """Moves every overdue appointment in `from_status` to a terminal state; returns the ones this call moved."""
    overdue = db.execute(
        select(Appointment.id, Appointment.slot_id)
        .where(Appointment.status == from_status, deadline_col <= now)
    ).all()

    moved = []
    for appt_id, slot_id in overdue:
        res = db.execute(
            update(Appointment)
            .where(Appointment.id == appt_id, Appointment.status == from_status, deadline_col <= now)
            .values(updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            # somebody else (doctor, payment, another sweep) got there first
            continue
        free_bound_slot(db, slot_id)
        moved.append(appt_id)
    return moved


def sweep(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Run one sweep pass and commit it.

    Returns:
        dict: Summary of transitions applied, including the ids of the
        appointments that were expired (used for outbound messages).
    """
    now = now or utcnow()
    summary = {
        "holds_released": 0,
        "auto_rejected": [],
        "auto_cancelled": [],
        "total_updated": 0,
    }

    try:
        summary["holds_released"] = release_expired_holds(db, now)
        summary["auto_rejected"] = _expire(
            db, AppointmentStatus.REQUESTED, Appointment.approval_deadline, now,
            status=AppointmentStatus.REJECTED, rejection_reason=AUTO_REJECT_REASON,
        )
        summary["auto_cancelled"] = _expire(
            db, AppointmentStatus.APPROVED, Appointment.payment_deadline, now,
            status=AppointmentStatus.CANCELLED, cancelled_by="system",
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    summary["total_updated"] = (
        summary["holds_released"] + len(summary["auto_rejected"]) + len(summary["auto_cancelled"])
    )
    if summary["total_updated"]:
        logger.info(
            "Sweep at %s: holds_released=%s auto_rejected=%s auto_cancelled=%s",
            now.isoformat(), summary["holds_released"], summary["auto_rejected"], summary["auto_cancelled"],
        )
    return summary
