import sys
from pathlib import Path
import os
from datetime import datetime

from werkzeug.security import generate_password_hash
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from contextlib import contextmanager

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.climbclub.constants import (
    BASIC_MEMBERSHIP,
    DEFAULT_MEMBERSHIP_TYPES,
    DEFAULT_SESSION_TYPES,
    ROLE_COMMITTEE,
    STATUS_ACTIVE,
)
from app.climbclub.models import ClubSettings, User
from app.climbclub.modules.membership.models import MembershipType, UserMembership
from app.climbclub.modules.sessions.models import SessionType
from app.climbclub.utils import academic_year


@contextmanager
def _session_scope(database_url: str):
    engine = create_engine(database_url, future=True)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed catalogs, the settings row and the root admin in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ROOT_ADMIN_EMAIL") or "admin@climbclub.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///climbclub.db").strip()

    # Direct engine/session so this can run in release without building the app.
    with _session_scope(db_url) as s:
        for type_id, label in DEFAULT_MEMBERSHIP_TYPES:
            if s.get(MembershipType, type_id) is None:
                s.add(MembershipType(id=type_id, label=label))

        for label in DEFAULT_SESSION_TYPES:
            if s.get(SessionType, label) is None:
                s.add(SessionType(id=label, label=label))

        if s.get(ClubSettings, 1) is None:
            s.add(ClubSettings(id=1, elections_open=False, updated_at=datetime.utcnow()))

        year = academic_year()
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                first_name="Root",
                last_name="Admin",
                role=ROLE_COMMITTEE,
                membership_status=STATUS_ACTIVE,
                membership_year=year,
            )
            s.add(user)
            s.flush()
        # Root admin is always active.
        user.role = ROLE_COMMITTEE
        user.membership_status = STATUS_ACTIVE
        row = (
            s.query(UserMembership)
            .filter(
                UserMembership.user_id == user.id,
                UserMembership.membership_type == BASIC_MEMBERSHIP,
                UserMembership.membership_year == year,
            )
            .one_or_none()
        )
        if row is None:
            s.add(UserMembership(user_id=user.id, membership_type=BASIC_MEMBERSHIP, membership_year=year, status=STATUS_ACTIVE))
        else:
            row.status = STATUS_ACTIVE

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
