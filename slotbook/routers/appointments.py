# slotbook/routers/appointments.py
import math
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ..clock import utcnow
from ..database import get_db
from ..deps import require_doctor, require_patient, require_payment_collaborator
from .. import models, schemas
from ..services import lifecycle, reservations
from ..services import notifications

router = APIRouter(prefix="", tags=["appointments"])


def appointment_out(appt: models.Appointment, now) -> schemas.AppointmentOut:
    out = schemas.AppointmentOut(
        id=appt.id,
        slot_id=appt.slot_id,
        doctor_id=appt.doctor_id,
        patient_id=appt.patient_id,
        status=appt.status,
        doctor_name=appt.doctor.name,
        specialization=appt.doctor.specialization,
        patient_name=appt.patient.name,
        slot_date=appt.slot.date,
        slot_time=appt.slot.start_time,
        opd_fees=appt.doctor.opd_fees,
        created_at=appt.created_at,
        updated_at=appt.updated_at,
        approval_deadline=appt.approval_deadline,
        payment_deadline=appt.payment_deadline,
        report=appt.report_url,
        rejection_reason=appt.rejection_reason,
        cancelled_by=appt.cancelled_by,
    )
    if appt.status == models.AppointmentStatus.REQUESTED:
        out.approval_time_remaining = lifecycle.time_remaining(appt.approval_deadline, now)
    elif appt.status == models.AppointmentStatus.APPROVED:
        out.payment_time_remaining = lifecycle.time_remaining(appt.payment_deadline, now)
    return out


def page_out(rows, total, page, page_size) -> schemas.AppointmentsResponse:
    now = utcnow()
    return schemas.AppointmentsResponse(
        total=total,
        appointments=[appointment_out(a, now) for a in rows],
        page=page,
        page_size=page_size,
        total_pages=max(1, math.ceil(total / page_size)),
    )


# ──────────────────────────────────────────────────────────────────────────────
# Patient
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/appointments/request", response_model=schemas.AppointmentOut, status_code=201)
def submit_request(
    req: schemas.AppointmentRequestIn,
    background: BackgroundTasks,
    patient_id: int = Depends(require_patient),
    db: Session = Depends(get_db),
):
    appt = reservations.confirm_booking(db, req.slot_id, patient_id, report_url=req.report_url)
    background.add_task(notifications.deliver, notifications.requested_message(appt))
    return appointment_out(appt, utcnow())


@router.get("/appointments/my-appointments", response_model=schemas.AppointmentsResponse)
def my_appointments(
    status: Optional[models.AppointmentStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    patient_id: int = Depends(require_patient),
    db: Session = Depends(get_db),
):
    rows, total = lifecycle.list_for_patient(db, patient_id, status=status, search=search,
                                             page=page, page_size=page_size)
    return page_out(rows, total, page, page_size)


@router.post("/appointments/{appointment_id}/cancel-patient", response_model=schemas.AppointmentActionResponse)
def cancel_patient(appointment_id: int, patient_id: int = Depends(require_patient), db: Session = Depends(get_db)):
    appt = lifecycle.cancel_by_patient(db, appointment_id, patient_id)
    return schemas.AppointmentActionResponse(
        appointment_id=appt.id, status=appt.status, message="Appointment cancelled; the slot is free again.",
    )


@router.get("/appointments/{appointment_id}/payment-details", response_model=schemas.PaymentDetailsResponse)
def payment_details(appointment_id: int, patient_id: int = Depends(require_patient), db: Session = Depends(get_db)):
    return lifecycle.payment_details(db, appointment_id, patient_id)


# ──────────────────────────────────────────────────────────────────────────────
# Doctor
# ──────────────────────────────────────────────────────────────────────────────
@router.get("/appointments/doctor-appointments", response_model=schemas.AppointmentsResponse)
def doctor_appointments(
    status: Optional[models.AppointmentStatus] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    doctor_id: int = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    rows, total = lifecycle.list_for_doctor(db, doctor_id, status=status, search=search,
                                            page=page, page_size=page_size)
    return page_out(rows, total, page, page_size)


@router.post("/appointments/{appointment_id}/approve", response_model=schemas.AppointmentActionResponse)
def approve(
    appointment_id: int,
    background: BackgroundTasks,
    doctor_id: int = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    appt = lifecycle.approve(db, appointment_id, doctor_id)
    background.add_task(notifications.deliver, notifications.approved_message(appt))
    return schemas.AppointmentActionResponse(
        appointment_id=appt.id,
        status=appt.status,
        message="Appointment approved. The patient has been asked to pay.",
        payment_deadline=appt.payment_deadline,
    )


@router.post("/appointments/{appointment_id}/reject", response_model=schemas.AppointmentActionResponse)
def reject(
    appointment_id: int,
    background: BackgroundTasks,
    body: Optional[schemas.RejectIn] = None,
    doctor_id: int = Depends(require_doctor),
    db: Session = Depends(get_db),
):
    reason = body.reason if body else None
    appt = lifecycle.reject(db, appointment_id, doctor_id, reason=reason)
    background.add_task(notifications.deliver, notifications.rejected_message(appt))
    return schemas.AppointmentActionResponse(
        appointment_id=appt.id, status=appt.status, message="Appointment rejected.", reason=reason,
    )


# ──────────────────────────────────────────────────────────────────────────────
# Payment collaborator
# ──────────────────────────────────────────────────────────────────────────────
@router.post("/payments/confirm", response_model=schemas.AppointmentActionResponse)
def confirm_payment(
    req: schemas.PaymentConfirmIn,
    _: None = Depends(require_payment_collaborator),
    db: Session = Depends(get_db),
):
    appt = lifecycle.confirm_payment(db, req.appointment_id, req.external_session_id)
    return schemas.AppointmentActionResponse(
        appointment_id=appt.id, status=appt.status, message="Payment confirmed.",
    )
