from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

from app.climbclub.constants import SESSION_DURATION_HOURS
from app.climbclub.utils import parse_datetime_utc

from .models import ClubSession

CALENDAR_CONTENT_TYPE = "text/calendar; charset=utf-8"
BOOKED_FILENAME = "club_schedule_booked.ics"
ALL_FILENAME = "club_schedule_all.ics"


def format_ical_datetime(dt: datetime) -> str:
    """UTC basic format, e.g. 20261014T190000Z."""
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def build_icalendar(user_id: str, sessions: Iterable[ClubSession], *, uid_domain: str, now: datetime | None = None) -> str:
    """
    Render sessions as an iCalendar document. Sessions whose date does not
    parse are left out rather than failing the export.
    """
    stamp = format_ical_datetime(now or datetime.now(timezone.utc))
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//CLUB//Calendar//EN"]
    for session in sessions:
        start = parse_datetime_utc(session.starts_at)
        if start is None:
            continue
        end = start + timedelta(hours=SESSION_DURATION_HOURS)
        lines.extend(
            [
                "BEGIN:VEVENT",
                f"UID:{session.id}_{user_id}@{uid_domain}",
                f"DTSTAMP:{stamp}",
                f"DTSTART:{format_ical_datetime(start)}",
                f"DTEND:{format_ical_datetime(end)}",
                f"SUMMARY:{session.title} ({session.type})",
                "END:VEVENT",
            ]
        )
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"
