# slotbook/services/badges.py
"""
Notification badge for the doctor / patient dashboards.

Logic:
- REJECTED: counted when recently updated, both roles -> red (highest priority)
- REQUESTED: doctors only, regardless of age (they need to approve) -> yellow
- APPROVED: patients only, regardless of age (they need to pay) -> yellow
- PAID: counted when recently updated, both roles (informational) -> green

"Recent" tolerates timestamps up to one hour in the future (clock skew) and
drops anything older than a week. Read-only projection: nothing here touches
appointment or slot state.
"""
from __future__ import annotations
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from ..clock import utcnow
from ..config import settings
from ..models import AppointmentStatus

logger = logging.getLogger(__name__)

ROLES = ("doctor", "patient")


@dataclass
class NotificationSummary:
    status: str = "none"  # none | red | yellow | green
    counts: Dict[str, int] = field(default_factory=lambda: {"rejected": 0, "requested": 0, "approved": 0, "paid": 0})
    message: str = ""
    role: str = "patient"

    def fingerprint(self) -> Tuple:
        return (self.status, tuple(sorted(self.counts.items())))


def is_recently_updated(updated_at: Optional[datetime], now: datetime) -> bool:
    if updated_at is None:
        return False
    diff_hours = (now - updated_at).total_seconds() / 3600
    return -settings.NOTIFICATION_FUTURE_TOLERANCE_HOURS <= diff_hours <= settings.NOTIFICATION_RECENT_HOURS


def _plural(n: int, one: str, many: str) -> str:
    return one if n == 1 else many


def evaluate(role: str, appointments: Iterable, now: Optional[datetime] = None) -> NotificationSummary:
    """
    Fold the role's appointments into one badge. `appointments` only needs
    `status` and `updated_at` attributes.
    """
    if role not in ROLES:
        raise ValueError(f"unknown role: {role}")
    now = now or utcnow()
    summary = NotificationSummary(role=role)
    counts = summary.counts

    for apt in appointments:
        status = AppointmentStatus(apt.status)
        if status == AppointmentStatus.REJECTED:
            if is_recently_updated(apt.updated_at, now):
                counts["rejected"] += 1
        elif status == AppointmentStatus.REQUESTED:
            if role == "doctor":
                counts["requested"] += 1
        elif status == AppointmentStatus.APPROVED:
            if role == "patient":
                counts["approved"] += 1
        elif status == AppointmentStatus.PAID:
            if is_recently_updated(apt.updated_at, now):
                counts["paid"] += 1

    if counts["rejected"] > 0:
        n = counts["rejected"]
        summary.status = "red"
        if role == "doctor":
            summary.message = f"{n} {_plural(n, 'appointment', 'appointments')} rejected"
        else:
            summary.message = f"{n} {_plural(n, 'appointment was', 'appointments were')} rejected"
    elif role == "doctor":
        if counts["requested"] > 0:
            n = counts["requested"]
            summary.status = "yellow"
            summary.message = f"{n} {_plural(n, 'appointment', 'appointments')} pending approval"
        elif counts["paid"] > 0:
            n = counts["paid"]
            summary.status = "green"
            summary.message = f"{n} new paid {_plural(n, 'appointment', 'appointments')}"
    else:
        if counts["approved"] > 0:
            n = counts["approved"]
            summary.status = "yellow"
            summary.message = f"{n} {_plural(n, 'appointment', 'appointments')} awaiting payment"
        elif counts["paid"] > 0:
            n = counts["paid"]
            summary.status = "green"
            summary.message = f"{n} {_plural(n, 'appointment', 'appointments')} confirmed"

    logger.debug("Badge role=%s counts=%s status=%s", role, counts, summary.status)
    return summary


class SeenRegistry:
    """
    "Show once per session" acknowledgements, keyed by (role, session_id).

    Lives outside the booking protocol: it only decides whether the
    presentation layer should pop the toast again. Entries expire after a TTL.
    """

    def __init__(self, ttl: Optional[timedelta] = None):
        self.ttl = ttl or timedelta(minutes=settings.NOTIFICATION_SEEN_TTL_MINUTES)
        self._seen: Dict[Tuple[str, str], Tuple[Tuple, datetime]] = {}
        self._lock = threading.Lock()

    def _purge(self, now: datetime) -> None:
        stale = [k for k, (_, ts) in self._seen.items() if now - ts > self.ttl]
        for k in stale:
            self._seen.pop(k, None)

    def mark_seen(self, role: str, session_id: str, summary: NotificationSummary,
                  now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        with self._lock:
            self._purge(now)
            self._seen[(role, session_id)] = (summary.fingerprint(), now)

    def should_show(self, role: str, session_id: Optional[str], summary: NotificationSummary,
                    now: Optional[datetime] = None) -> bool:
        if summary.status == "none":
            return False
        if not session_id:
            return True
        now = now or utcnow()
        with self._lock:
            self._purge(now)
            entry = self._seen.get((role, session_id))
        # A changed badge (new counts) is shown again
        return entry is None or entry[0] != summary.fingerprint()

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()


seen_registry = SeenRegistry()
