"""Tests for outbound WhatsApp messages."""

from datetime import timedelta

from conftest import T0
from slotbook.config import settings
from slotbook.services import lifecycle, notifications, reservations
from slotbook.services.notifications import OutboundMessage
from slotbook.services.twilio_client import _normalize_wa


class TestMessages:
    """Message composition."""

    def test_requested_goes_to_doctor(self, db, doctor, slot, alice):
        reservations.hold(db, slot.id, alice.id, now=T0)
        appt = reservations.confirm_booking(db, slot.id, alice.id, now=T0)
        msg = notifications.requested_message(appt)
        assert msg.to == doctor.contact
        assert "Alice" in msg.body
        assert "2030-01-20 09:00" in msg.body

    def test_rejected_includes_reason(self, db, doctor, slot, alice):
        reservations.hold(db, slot.id, alice.id, now=T0)
        appt = reservations.confirm_booking(db, slot.id, alice.id, now=T0)
        appt = lifecycle.reject(db, appt.id, doctor.id, now=T0 + timedelta(minutes=1), reason="On call")
        msg = notifications.rejected_message(appt)
        assert msg.to == alice.contact
        assert "Reason: On call" in msg.body


class TestDeliver:
    """Tests for deliver()."""

    def test_skips_missing_contact_and_errors(self, monkeypatch):
        calls = []

        def fake_send(to, body):
            calls.append(to)
            return {"error": "boom"} if to == "+2" else {"sid": "SM1", "to": to}

        monkeypatch.setattr(notifications, "send_whatsapp", fake_send)
        sent = notifications.deliver(
            OutboundMessage("+1", "a"),
            OutboundMessage(None, "b"),
            OutboundMessage("+2", "c"),
        )
        assert sent == 1
        assert calls == ["+1", "+2"]

    def test_dry_run(self, monkeypatch):
        monkeypatch.setattr(settings, "DRY_RUN", True)
        assert notifications.deliver(OutboundMessage("+919999999999", "hello")) == 1


def test_normalize_wa():
    assert _normalize_wa("+919999999999") == "whatsapp:+919999999999"
    assert _normalize_wa("whatsapp: +15551234") == "whatsapp:+15551234"
    assert _normalize_wa("15551234") == "whatsapp:+15551234"
