from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from app.climbclub.models import ClubSettings

SETTINGS_ROW_ID = 1


def get_settings(s: Session) -> ClubSettings:
    """Return the settings row, creating it with defaults on first use."""
    row = s.get(ClubSettings, SETTINGS_ROW_ID)
    if row is None:
        row = ClubSettings(id=SETTINGS_ROW_ID, elections_open=False, updated_at=datetime.utcnow())
        s.add(row)
        s.flush()
    return row


def elections_open(s: Session) -> bool:
    return bool(get_settings(s).elections_open)
