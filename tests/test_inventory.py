"""Tests for the slot inventory (calendar management + listings)."""

from datetime import date, datetime, time, timedelta

import pytest

from conftest import DAY, T0
from slotbook.errors import Forbidden, InvalidInput, InvalidTransition, NotEditable, NotFound, Overlap
from slotbook.models import DayOff, SlotStatus
from slotbook.services import inventory, reservations


class TestCreateSlots:
    """Tests for create_slots."""

    def test_generates_contiguous_free_slots(self, db, doctor):
        """Uses the doctor's minimum slot duration by default."""
        slots = inventory.create_slots(db, doctor.id, DAY, time(9, 0), time(10, 30), now=T0)
        assert [(s.start_time, s.end_time) for s in slots] == [
            (time(9, 0), time(9, 30)),
            (time(9, 30), time(10, 0)),
            (time(10, 0), time(10, 30)),
        ]
        assert all(s.status == SlotStatus.FREE for s in slots)
        assert all(s.held_until is None and s.held_by is None for s in slots)

    def test_partial_tail_is_dropped(self, db, doctor):
        slots = inventory.create_slots(db, doctor.id, DAY, time(9, 0), time(10, 10), now=T0)
        assert len(slots) == 2
        assert slots[-1].end_time == time(10, 0)

    def test_explicit_duration(self, db, doctor):
        slots = inventory.create_slots(db, doctor.id, DAY, time(9, 0), time(11, 0), slot_duration=60, now=T0)
        assert len(slots) == 2

    def test_duration_below_minimum_rejected(self, db, doctor):
        with pytest.raises(InvalidInput):
            inventory.create_slots(db, doctor.id, DAY, time(9, 0), time(11, 0), slot_duration=15, now=T0)

    def test_range_shorter_than_one_slot(self, db, doctor):
        with pytest.raises(InvalidInput):
            inventory.create_slots(db, doctor.id, DAY, time(9, 0), time(9, 20), now=T0)

    def test_overlap_with_existing_slot(self, db, doctor, slots):
        """09:00-11:00 already exists; 10:45-11:45 overlaps the last slot."""
        with pytest.raises(Overlap):
            inventory.create_slots(db, doctor.id, DAY, time(10, 45), time(11, 45), now=T0)
        assert len(inventory.list_by_date(db, doctor.id, DAY)) == len(slots)

    def test_adjacent_range_is_not_overlap(self, db, doctor, slots):
        created = inventory.create_slots(db, doctor.id, DAY, time(11, 0), time(12, 0), now=T0)
        assert len(created) == 2

    def test_same_times_other_doctor_allowed(self, db, doctor, other_doctor, slots):
        created = inventory.create_slots(db, other_doctor.id, DAY, time(9, 0), time(9, 30), now=T0)
        assert len(created) == 2  # 15-minute minimum

    def test_today_not_editable(self, db, doctor):
        with pytest.raises(NotEditable):
            inventory.create_slots(db, doctor.id, T0.date(), time(9, 0), time(10, 0), now=T0)

    def test_tomorrow_is_editable(self, db, doctor):
        tomorrow = T0.date() + timedelta(days=1)
        assert inventory.create_slots(db, doctor.id, tomorrow, time(9, 0), time(10, 0), now=T0)

    def test_on_day_off_slots_are_blocked(self, db, doctor):
        inventory.mark_day_off(db, doctor.id, DAY, now=T0)
        slots = inventory.create_slots(db, doctor.id, DAY, time(9, 0), time(10, 0), now=T0)
        assert all(s.status == SlotStatus.BLOCKED for s in slots)

    def test_unknown_doctor(self, db):
        with pytest.raises(NotFound):
            inventory.create_slots(db, 999, DAY, time(9, 0), time(10, 0), now=T0)


class TestListings:
    """Tests for list_free / list_by_date."""

    def test_list_free_excludes_non_free(self, db, doctor, slots, alice):
        reservations.hold(db, slots[0].id, alice.id, now=T0)
        inventory.mark_blocked(db, slots[1].id, doctor.id, now=T0)
        free = inventory.list_free(db, doctor.id, DAY, DAY, now=T0)
        assert [s.id for s in free] == [slots[2].id, slots[3].id]

    def test_list_free_includes_lapsed_hold(self, db, doctor, slots, alice):
        """A hold past its TTL is bookable again even before a sweep."""
        reservations.hold(db, slots[0].id, alice.id, now=T0)
        later = T0 + timedelta(minutes=10)
        free_ids = [s.id for s in inventory.list_free(db, doctor.id, DAY, DAY, now=later)]
        assert slots[0].id in free_ids

    def test_list_free_date_range(self, db, doctor, slots):
        inventory.create_slots(db, doctor.id, DAY + timedelta(days=1), time(9, 0), time(9, 30), now=T0)
        assert len(inventory.list_free(db, doctor.id, DAY, DAY, now=T0)) == 4
        assert len(inventory.list_free(db, doctor.id, DAY, DAY + timedelta(days=1), now=T0)) == 5

    def test_list_free_skips_past_days(self, db, doctor, slots):
        assert inventory.list_free(db, doctor.id, DAY, DAY, now=T0 + timedelta(days=12)) == []

    def test_list_free_skips_started_slots(self, db, doctor, slots):
        """Slot times are clinic wall clock (UTC+05:30); 04:00 UTC is 09:30 at the clinic."""
        before_opening = datetime.combine(DAY, time(3, 0))
        assert len(inventory.list_free(db, doctor.id, DAY, DAY, now=before_opening)) == 4

        mid_morning = datetime.combine(DAY, time(4, 0))
        free = inventory.list_free(db, doctor.id, DAY, DAY, now=mid_morning)
        assert [s.start_time for s in free] == [time(10, 0), time(10, 30)]

    def test_list_by_date_returns_all_statuses(self, db, doctor, slots, alice):
        reservations.hold(db, slots[0].id, alice.id, now=T0)
        statuses = [s.status for s in inventory.list_by_date(db, doctor.id, DAY)]
        assert statuses[0] == SlotStatus.HELD
        assert len(statuses) == 4


class TestBlockUnblock:
    """Tests for mark_blocked / mark_unblocked."""

    def test_block_and_unblock(self, db, doctor, slot):
        assert inventory.mark_blocked(db, slot.id, doctor.id, now=T0).status == SlotStatus.BLOCKED
        assert inventory.mark_unblocked(db, slot.id, doctor.id, now=T0).status == SlotStatus.FREE

    def test_block_is_idempotent(self, db, doctor, slot):
        inventory.mark_blocked(db, slot.id, doctor.id, now=T0)
        assert inventory.mark_blocked(db, slot.id, doctor.id, now=T0).status == SlotStatus.BLOCKED

    def test_block_held_slot_fails(self, db, doctor, slot, alice):
        reservations.hold(db, slot.id, alice.id, now=T0)
        with pytest.raises(InvalidTransition):
            inventory.mark_blocked(db, slot.id, doctor.id, now=T0)
        db.refresh(slot)
        assert slot.status == SlotStatus.HELD

    def test_block_booked_slot_fails(self, db, doctor, slot, alice):
        reservations.hold(db, slot.id, alice.id, now=T0)
        reservations.confirm_booking(db, slot.id, alice.id, now=T0)
        with pytest.raises(InvalidTransition):
            inventory.mark_blocked(db, slot.id, doctor.id, now=T0)

    def test_unblock_booked_slot_fails(self, db, doctor, slot, alice):
        reservations.hold(db, slot.id, alice.id, now=T0)
        reservations.confirm_booking(db, slot.id, alice.id, now=T0)
        with pytest.raises(InvalidTransition):
            inventory.mark_unblocked(db, slot.id, doctor.id, now=T0)

    def test_block_lapsed_hold_succeeds(self, db, doctor, slot, alice):
        reservations.hold(db, slot.id, alice.id, now=T0)
        blocked = inventory.mark_blocked(db, slot.id, doctor.id, now=T0 + timedelta(minutes=11))
        assert blocked.status == SlotStatus.BLOCKED
        assert blocked.held_until is None and blocked.held_by is None

    def test_other_doctor_forbidden(self, db, other_doctor, slot):
        with pytest.raises(Forbidden):
            inventory.mark_blocked(db, slot.id, other_doctor.id, now=T0)

    def test_past_date_not_editable(self, db, doctor, slot):
        with pytest.raises(NotEditable):
            inventory.mark_blocked(db, slot.id, doctor.id, now=T0 + timedelta(days=30))


class TestDaysOff:
    """Tests for day off, leave range and recurring Sundays."""

    def test_day_off_blocks_everything_but_booked(self, db, doctor, slots, alice, bob):
        reservations.hold(db, slots[0].id, alice.id, now=T0)
        reservations.confirm_booking(db, slots[0].id, alice.id, now=T0)
        reservations.hold(db, slots[1].id, bob.id, now=T0)

        blocked = inventory.mark_day_off(db, doctor.id, DAY, now=T0)

        assert blocked == 3
        statuses = [s.status for s in inventory.list_by_date(db, doctor.id, DAY)]
        assert statuses == [SlotStatus.BOOKED, SlotStatus.BLOCKED, SlotStatus.BLOCKED, SlotStatus.BLOCKED]
        db.refresh(slots[1])
        assert slots[1].held_by is None and slots[1].held_until is None

    def test_day_off_is_idempotent(self, db, doctor, slots):
        inventory.mark_day_off(db, doctor.id, DAY, now=T0)
        assert inventory.mark_day_off(db, doctor.id, DAY, now=T0) == 0
        assert db.query(DayOff).count() == 1

    def test_remove_day_off(self, db, doctor, slots):
        inventory.mark_day_off(db, doctor.id, DAY, now=T0)
        assert inventory.remove_day_off(db, doctor.id, DAY, now=T0) == 4
        assert len(inventory.list_free(db, doctor.id, DAY, DAY, now=T0)) == 4
        with pytest.raises(NotFound):
            inventory.remove_day_off(db, doctor.id, DAY, now=T0)

    def test_leave_range(self, db, doctor, slots):
        dates = inventory.set_leave_range(db, doctor.id, DAY - timedelta(days=1), DAY + timedelta(days=1), now=T0)
        assert dates == [DAY - timedelta(days=1), DAY, DAY + timedelta(days=1)]
        assert inventory.list_free(db, doctor.id, DAY, DAY, now=T0) == []

    def test_leave_range_validation(self, db, doctor):
        with pytest.raises(InvalidInput):
            inventory.set_leave_range(db, doctor.id, DAY, DAY - timedelta(days=1), now=T0)
        with pytest.raises(InvalidInput):
            inventory.set_leave_range(db, doctor.id, DAY, DAY + timedelta(days=200), now=T0)
        with pytest.raises(NotEditable):
            inventory.set_leave_range(db, doctor.id, T0.date(), DAY, now=T0)

    def test_recurring_sundays(self, db, doctor):
        start = date(2030, 1, 15)  # Tuesday
        sundays = inventory.set_recurring_sundays_off(db, doctor.id, start, 3, now=T0)
        assert sundays == [date(2030, 1, 20), date(2030, 1, 27), date(2030, 2, 3)]
        assert all(d.weekday() == 6 for d in sundays)

    def test_recurring_sundays_starting_on_sunday(self, db, doctor):
        sundays = inventory.set_recurring_sundays_off(db, doctor.id, date(2030, 1, 20), 1, now=T0)
        assert sundays == [date(2030, 1, 20)]

    def test_recurring_sundays_weeks_bounds(self, db, doctor):
        with pytest.raises(InvalidInput):
            inventory.set_recurring_sundays_off(db, doctor.id, DAY, 0, now=T0)
