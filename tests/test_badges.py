"""Tests for the dashboard notification badge."""

from datetime import timedelta
from types import SimpleNamespace

import pytest

from conftest import T0
from slotbook.models import AppointmentStatus
from slotbook.services.badges import SeenRegistry, evaluate, is_recently_updated


def apt(status, age=timedelta(hours=1)):
    return SimpleNamespace(status=status, updated_at=T0 - age)


class TestRecency:
    """Tests for is_recently_updated."""

    @pytest.mark.parametrize("offset, expected", [
        (-timedelta(hours=168, seconds=1), False),
        (-timedelta(hours=167), True),
        (timedelta(minutes=30), True),
        (timedelta(minutes=90), False),
    ])
    def test_window(self, offset, expected):
        """One week back, one hour of tolerated future skew."""
        assert is_recently_updated(T0 + offset, T0) is expected

    def test_missing_timestamp(self):
        assert is_recently_updated(None, T0) is False


class TestEvaluate:
    """Tests for evaluate()."""

    def test_no_appointments(self):
        summary = evaluate("patient", [], now=T0)
        assert summary.status == "none"
        assert summary.message == ""

    def test_rejected_wins_for_patient(self):
        summary = evaluate("patient", [
            apt(AppointmentStatus.REJECTED),
            apt(AppointmentStatus.APPROVED),
            apt(AppointmentStatus.PAID),
        ], now=T0)
        assert summary.status == "red"
        assert summary.message == "1 appointment was rejected"
        assert summary.counts == {"rejected": 1, "requested": 0, "approved": 1, "paid": 1}

    def test_rejected_wins_for_doctor(self):
        summary = evaluate("doctor", [
            apt(AppointmentStatus.REJECTED),
            apt(AppointmentStatus.REJECTED),
            apt(AppointmentStatus.REQUESTED),
        ], now=T0)
        assert summary.status == "red"
        assert summary.message == "2 appointments rejected"

    def test_old_rejection_ignored(self):
        summary = evaluate("patient", [apt(AppointmentStatus.REJECTED, age=timedelta(days=8))], now=T0)
        assert summary.status == "none"

    def test_doctor_pending_regardless_of_age(self):
        summary = evaluate("doctor", [
            apt(AppointmentStatus.REQUESTED, age=timedelta(days=30)),
            apt(AppointmentStatus.REQUESTED),
            apt(AppointmentStatus.PAID),
        ], now=T0)
        assert summary.status == "yellow"
        assert summary.message == "2 appointments pending approval"

    def test_patient_ignores_requested(self):
        summary = evaluate("patient", [apt(AppointmentStatus.REQUESTED)], now=T0)
        assert summary.status == "none"
        assert summary.counts["requested"] == 0

    def test_patient_awaiting_payment(self):
        summary = evaluate("patient", [apt(AppointmentStatus.APPROVED, age=timedelta(days=30))], now=T0)
        assert summary.status == "yellow"
        assert summary.message == "1 appointment awaiting payment"

    def test_doctor_ignores_approved(self):
        summary = evaluate("doctor", [apt(AppointmentStatus.APPROVED)], now=T0)
        assert summary.status == "none"

    def test_paid_is_green(self):
        paid = [apt(AppointmentStatus.PAID), apt(AppointmentStatus.PAID)]
        assert evaluate("doctor", paid, now=T0).message == "2 new paid appointments"
        patient = evaluate("patient", paid[:1], now=T0)
        assert patient.status == "green"
        assert patient.message == "1 appointment confirmed"

    def test_cancelled_not_counted(self):
        assert evaluate("patient", [apt(AppointmentStatus.CANCELLED)], now=T0).status == "none"

    def test_unknown_role(self):
        with pytest.raises(ValueError):
            evaluate("admin", [], now=T0)


class TestSeenRegistry:
    """Tests for the show-once-per-session registry."""

    def test_show_once_until_counts_change(self):
        registry = SeenRegistry(ttl=timedelta(hours=1))
        summary = evaluate("patient", [apt(AppointmentStatus.APPROVED)], now=T0)

        assert registry.should_show("patient", "s1", summary, now=T0) is True
        registry.mark_seen("patient", "s1", summary, now=T0)
        assert registry.should_show("patient", "s1", summary, now=T0) is False
        # another session, or the other role, still sees it
        assert registry.should_show("patient", "s2", summary, now=T0) is True
        assert registry.should_show("doctor", "s1", summary, now=T0) is True

        changed = evaluate("patient", [apt(AppointmentStatus.APPROVED)] * 2, now=T0)
        assert registry.should_show("patient", "s1", changed, now=T0) is True

    def test_entries_expire(self):
        registry = SeenRegistry(ttl=timedelta(minutes=30))
        summary = evaluate("doctor", [apt(AppointmentStatus.REQUESTED)], now=T0)
        registry.mark_seen("doctor", "s1", summary, now=T0)
        assert registry.should_show("doctor", "s1", summary, now=T0 + timedelta(minutes=31)) is True

    def test_nothing_to_show(self):
        registry = SeenRegistry()
        assert registry.should_show("patient", None, evaluate("patient", [], now=T0), now=T0) is False

    def test_no_session_always_shows(self):
        registry = SeenRegistry()
        summary = evaluate("doctor", [apt(AppointmentStatus.REQUESTED)], now=T0)
        assert registry.should_show("doctor", None, summary, now=T0) is True
