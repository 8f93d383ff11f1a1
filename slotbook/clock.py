# slotbook/clock.py
from datetime import date, datetime, timedelta, timezone

import pytz

from .config import settings


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored timestamp and deadline uses this form."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def server_today(now: datetime | None = None) -> date:
    """Calendar date at the clinic for a naive-UTC instant."""
    now = now or utcnow()
    return clinic_now(now).date()


def first_editable_date(now: datetime | None = None) -> date:
    return server_today(now) + timedelta(days=1)


def clinic_now(now: datetime | None = None) -> datetime:
    """Naive wall-clock time at the clinic; slot dates and start times are stored in this frame."""
    now = now or utcnow()
    return pytz.UTC.localize(now).astimezone(pytz.timezone(settings.TIMEZONE)).replace(tzinfo=None)
