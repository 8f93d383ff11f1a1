from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, datetime, time
from typing import Literal, Optional

from .models import AppointmentStatus, SlotStatus


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    date: date
    start_time: time
    end_time: time
    status: SlotStatus
    held_until: Optional[datetime] = None
    # Only set when the caller identifies as a patient
    held_by_current_user: Optional[bool] = None


class SlotsResponse(BaseModel):
    total: int
    slots: list[SlotOut]


class HoldResponse(BaseModel):
    slot_id: int
    held_until: datetime
    # Countdown for display; the server deadline is held_until
    time_remaining_seconds: int


class ReleaseResponse(BaseModel):
    ok: bool = True
    slot_id: int


# ====== Appointments ======

class AppointmentRequestIn(BaseModel):
    slot_id: int
    # Attachment already uploaded by the file-storage collaborator
    report_url: Optional[str] = Field(default=None, max_length=500)


class RejectIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class PaymentConfirmIn(BaseModel):
    appointment_id: int
    external_session_id: str = Field(min_length=1, max_length=200)


class TimeRemaining(BaseModel):
    hours: int
    minutes: int
    seconds: int
    expires_at: datetime


class AppointmentOut(BaseModel):
    id: int
    slot_id: int
    doctor_id: int
    patient_id: int
    status: AppointmentStatus
    doctor_name: str
    specialization: Optional[str] = None
    patient_name: str
    slot_date: date
    slot_time: time
    opd_fees: int
    created_at: datetime
    updated_at: datetime
    approval_deadline: datetime
    payment_deadline: Optional[datetime] = None
    approval_time_remaining: Optional[TimeRemaining] = None
    payment_time_remaining: Optional[TimeRemaining] = None
    report: Optional[str] = None
    rejection_reason: Optional[str] = None
    cancelled_by: Optional[str] = None


class AppointmentsResponse(BaseModel):
    total: int
    appointments: list[AppointmentOut]
    page: int
    page_size: int
    total_pages: int


class AppointmentActionResponse(BaseModel):
    appointment_id: int
    status: AppointmentStatus
    message: str
    payment_deadline: Optional[datetime] = None
    reason: Optional[str] = None


class PaymentDetailsResponse(BaseModel):
    appointment_id: int
    doctor_name: str
    specialization: Optional[str] = None
    opd_fees: int
    slot_date: date
    slot_time: time
    time_remaining: Optional[TimeRemaining] = None
    payment_expires_at: Optional[datetime] = None


# ====== Notifications ======

class NotificationCounts(BaseModel):
    rejected: int = 0
    requested: int = 0
    approved: int = 0
    paid: int = 0


class NotificationResponse(BaseModel):
    status: Literal["none", "red", "yellow", "green"]
    counts: NotificationCounts
    message: str
    role: Literal["doctor", "patient"]
    show: bool = True


class NotificationSeenIn(BaseModel):
    role: Literal["doctor", "patient"]


# ====== Calendar management ======

class DateIn(BaseModel):
    date: date


class LeaveRangeIn(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_order(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class SundaysOffIn(BaseModel):
    start_date: date
    weeks: int = Field(default=8, ge=1)


class CreateSlotsIn(BaseModel):
    date: date
    start_time: time
    end_time: time
    slot_duration: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_times(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class CalendarActionResponse(BaseModel):
    ok: bool = True
    message: str
    dates: list[date] = []
    affected: int = 0
