# slotbook/models.py
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Date, Time, DateTime, Enum, ForeignKey, Text, UniqueConstraint, Index
import datetime as dt
import enum
from .database import Base
from .clock import utcnow


class SlotStatus(str, enum.Enum):
    FREE = "FREE"
    HELD = "HELD"
    BOOKED = "BOOKED"
    BLOCKED = "BLOCKED"


class AppointmentStatus(str, enum.Enum):
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class DayOffReason(str, enum.Enum):
    day_off = "day_off"
    leave = "leave"
    sunday = "sunday"


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    specialization: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    contact: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    minimum_slot_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    opd_fees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    slots = relationship("Slot", back_populates="doctor", passive_deletes=True)


class Patient(Base):
    __tablename__ = "patients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    contact: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    appointments = relationship("Appointment", back_populates="patient")


class Slot(Base):
    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", "start_time", "end_time", name="uq_slots_doctor_time"),
        Index("ix_slots_doctor_date_status", "doctor_id", "date", "status"),
        Index("ix_slots_status_held_until", "status", "held_until"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    doctor_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    status: Mapped[SlotStatus] = mapped_column(Enum(SlotStatus, name="slot_status"), default=SlotStatus.FREE, nullable=False)
    # Set iff status == HELD
    held_until: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)
    held_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    doctor = relationship("Doctor", back_populates="slots")

    def has_started(self, clinic_now: dt.datetime) -> bool:
        return dt.datetime.combine(self.date, self.start_time) <= clinic_now

    def effective_status(self, now: dt.datetime) -> SlotStatus:
        """A hold past its TTL reads as FREE even before the sweep resets it."""
        if self.status == SlotStatus.HELD and self.held_until is not None and self.held_until <= now:
            return SlotStatus.FREE
        return self.status


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_status_approval", "status", "approval_deadline"),
        Index("ix_appointments_status_payment", "status", "payment_deadline"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    slot_id: Mapped[int] = mapped_column(Integer, ForeignKey("slots.id"), nullable=False, index=True)
    patient_id: Mapped[int] = mapped_column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_id: Mapped[int] = mapped_column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.REQUESTED,
        nullable=False,
    )
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    approval_deadline: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    payment_deadline: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True)

    report_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # patient/system
    payment_session_id: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    slot = relationship("Slot")
    patient = relationship("Patient", back_populates="appointments")
    doctor = relationship("Doctor")


class DayOff(Base):
    __tablename__ = "days_off"
    __table_args__ = (
        UniqueConstraint("doctor_id", "date", name="uq_days_off_doctor_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    doctor_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("doctors.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False)
    reason: Mapped[DayOffReason] = mapped_column(Enum(DayOffReason, name="day_off_reason"), default=DayOffReason.day_off, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
