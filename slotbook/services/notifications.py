# slotbook/services/notifications.py
"""
Outbound WhatsApp messages for appointment lifecycle events.

Messages are composed while the request still has its DB session and
delivered afterwards (background task / sweep thread). Delivery is best
effort: a failed send is logged and never affects appointment or slot state.
"""
import logging
from typing import Iterable, List, NamedTuple, Optional

from sqlalchemy.orm import Session

from ..models import Appointment
from .twilio_client import send_whatsapp

logger = logging.getLogger(__name__)


class OutboundMessage(NamedTuple):
    to: Optional[str]
    body: str


def _when(appt: Appointment) -> str:
    slot = appt.slot
    return f"{slot.date.isoformat()} {slot.start_time.strftime('%H:%M')}"


def requested_message(appt: Appointment) -> OutboundMessage:
    """New request -> doctor."""
    body = (
        "🩺 *New appointment request*\n"
        f"Patient: {appt.patient.name}\n"
        f"Slot: {_when(appt)}\n"
        f"Please approve or reject before {appt.approval_deadline.strftime('%Y-%m-%d %H:%M')} UTC."
    )
    return OutboundMessage(appt.doctor.contact, body)


def approved_message(appt: Appointment) -> OutboundMessage:
    body = (
        "✅ *Appointment approved*\n"
        f"Dr. {appt.doctor.name} · {_when(appt)}\n"
        f"Complete the payment before {appt.payment_deadline.strftime('%H:%M')} UTC to confirm it."
    )
    return OutboundMessage(appt.patient.contact, body)


def rejected_message(appt: Appointment) -> OutboundMessage:
    body = (
        "❌ *Appointment not confirmed*\n"
        f"Dr. {appt.doctor.name} · {_when(appt)}\n"
        + (f"Reason: {appt.rejection_reason}\n" if appt.rejection_reason else "")
        + "You can pick another slot from the doctor's calendar."
    )
    return OutboundMessage(appt.patient.contact, body)


def payment_expired_message(appt: Appointment) -> OutboundMessage:
    body = (
        "⌛ *Payment window closed*\n"
        f"Your appointment with Dr. {appt.doctor.name} ({_when(appt)}) was cancelled.\n"
        "The slot has been released; you can book again."
    )
    return OutboundMessage(appt.patient.contact, body)


def sweep_messages(db: Session, summary: dict) -> List[OutboundMessage]:
    """Messages for the appointments a sweep expired."""
    out = [rejected_message(a) for a in _load(db, summary.get("auto_rejected", []))]
    out += [payment_expired_message(a) for a in _load(db, summary.get("auto_cancelled", []))]
    return out


def deliver(*messages: OutboundMessage) -> int:
    """Send each message; returns how many were handed to Twilio (or its dry-run/mock)."""
    sent = 0
    for msg in messages:
        if not msg.to:
            logger.debug("No contact on file; message skipped")
            continue
        result = send_whatsapp(msg.to, msg.body)
        if "error" in result:
            logger.warning("Lifecycle message not delivered: to=%s err=%s", msg.to, result["error"])
            continue
        sent += 1
    return sent


# ------------------ internals ------------------

def _load(db: Session, ids: Iterable[int]):
    for appt_id in ids:
        appt = db.get(Appointment, appt_id)
        if appt is not None:
            yield appt
