"""
Membership lifecycle service.

Owns registration, per-type/per-year membership rows and their approval
workflow. A user's top-level ``membership_status`` mirrors their ``basic``
membership row; every write that touches one touches the other in the same
transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from app.climbclub.audit import record_event
from app.climbclub.constants import (
    BASIC_MEMBERSHIP,
    MEMBERSHIP_STATUSES,
    ROLE_COMMITTEE,
    ROLE_MEMBER,
    STATUS_ACTIVE,
    STATUS_PENDING,
    STATUS_PRIORITY,
    STATUS_REJECTED,
)
from app.climbclub.errors import (
    DuplicateEmail,
    InvalidType,
    NotFound,
    ValidationFailed,
    translate_integrity_error,
)
from app.climbclub.models import User
from app.climbclub.notify import notify_member
from app.climbclub.rbac import is_committee, root_admin_email
from app.climbclub.utils import academic_year, clean_str, normalize_type_id, parse_str

from .models import MembershipType, UserMembership

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


# ---------- Catalog ----------
def list_membership_types(s: "Session") -> list[MembershipType]:
    return list(s.scalars(select(MembershipType).order_by(MembershipType.label.asc())))


def membership_type_ids(s: "Session") -> set[str]:
    return set(s.scalars(select(MembershipType.id)))


def require_membership_type(s: "Session", membership_type: str) -> str:
    if membership_type is not None and not isinstance(membership_type, str):
        raise InvalidType("Membership type must be a type id")
    t = (membership_type or "").strip()
    if not t or s.get(MembershipType, t) is None:
        raise InvalidType(f"Invalid membership type: {t or '(empty)'}")
    return t


def requested_types(value) -> list[str]:
    """Type ids from a JSON ``membershipTypes`` value; None means no preference."""
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise InvalidType("membershipTypes must be a list of membership type ids")
    return [t.strip() for t in value if t.strip()]


def create_membership_type(s: "Session", *, label: str, type_id: str | None, actor: User) -> MembershipType:
    label = parse_str(label, field="label")
    if not label:
        raise ValidationFailed("Label is required")
    tid = normalize_type_id(parse_str(type_id, field="id") or label)
    if not tid:
        raise ValidationFailed("Invalid membership type id")

    mt = MembershipType(id=tid, label=label)
    try:
        with s.begin_nested():
            s.add(mt)
            s.flush()
    except IntegrityError as e:
        raise translate_integrity_error(e) from e

    record_event(s, actor=actor, action="membership_type.create", entity_type="MembershipType", entity_id=tid, metadata={"label": label})
    return mt


def update_membership_type(s: "Session", *, type_id: str, label: str, actor: User) -> MembershipType:
    label = parse_str(label, field="label")
    if not label:
        raise ValidationFailed("Label is required")
    mt = s.get(MembershipType, type_id)
    if mt is None:
        raise NotFound("Membership type not found")
    old = mt.label
    mt.label = label
    record_event(
        s,
        actor=actor,
        action="membership_type.edit",
        entity_type="MembershipType",
        entity_id=type_id,
        metadata={"label": {"old": old, "new": label}},
    )
    return mt


def delete_membership_type(s: "Session", *, type_id: str, actor: User) -> None:
    if type_id == BASIC_MEMBERSHIP:
        raise ValidationFailed("The basic membership type cannot be deleted")
    mt = s.get(MembershipType, type_id)
    if mt is None:
        raise NotFound("Membership type not found")
    remaining = s.scalar(select(func.count()).select_from(MembershipType)) or 0
    if remaining <= 1:
        raise ValidationFailed("At least one membership type must remain")
    s.delete(mt)
    record_event(s, actor=actor, action="membership_type.delete", entity_type="MembershipType", entity_id=type_id)


# ---------- Rows ----------
def should_replace_status(stored: str, new: str) -> bool:
    """Priority rule: active > pending > rejected; a rejected row can always be replaced."""
    if stored == STATUS_REJECTED:
        return True
    return STATUS_PRIORITY.get(new, -1) > STATUS_PRIORITY.get(stored, -1)


def _find_membership(s: "Session", user_id: str, membership_type: str, membership_year: str) -> UserMembership | None:
    return s.scalars(
        select(UserMembership).where(
            UserMembership.user_id == user_id,
            UserMembership.membership_type == membership_type,
            UserMembership.membership_year == membership_year,
        )
    ).one_or_none()


def _apply_status(row: UserMembership, status: str, *, force: bool) -> bool:
    if row.status == status:
        return False
    if force or should_replace_status(row.status, status):
        row.status = status
        row.updated_at = datetime.utcnow()
        return True
    return False


def upsert_membership(
    s: "Session",
    *,
    user_id: str,
    membership_type: str,
    membership_year: str,
    status: str,
    force: bool = False,
) -> UserMembership:
    """
    Insert the (user, type, year) row or update the existing one.

    Without ``force`` an existing row only changes when the priority rule
    allows it. A concurrent insert of the same key surfaces as a uniqueness
    violation; the loser re-reads the winner's row and applies the same rule.
    """
    if status not in MEMBERSHIP_STATUSES:
        raise ValidationFailed(f"Invalid membership status: {status}")

    row = _find_membership(s, user_id, membership_type, membership_year)
    if row is not None:
        _apply_status(row, status, force=force)
        return row

    now = datetime.utcnow()
    row = UserMembership(
        user_id=user_id,
        membership_type=membership_type,
        membership_year=membership_year,
        status=status,
        created_at=now,
        updated_at=now,
    )
    try:
        with s.begin_nested():
            s.add(row)
            s.flush()
        return row
    except IntegrityError:
        # Race: another request created the row between lookup and insert.
        existing = _find_membership(s, user_id, membership_type, membership_year)
        if existing is None:
            raise
        _apply_status(existing, status, force=force)
        return existing


def list_user_memberships(s: "Session", user_id: str) -> list[UserMembership]:
    return list(
        s.scalars(
            select(UserMembership)
            .where(UserMembership.user_id == user_id)
            .order_by(UserMembership.membership_year.desc(), UserMembership.membership_type.asc())
        )
    )


def list_membership_rows(s: "Session", *, status: str | None = None) -> list[UserMembership]:
    q = select(UserMembership)
    if status:
        q = q.where(UserMembership.status == status)
    return list(s.scalars(q.order_by(UserMembership.created_at.asc())))


def has_active_membership(s: "Session", user_id: str, membership_type: str) -> bool:
    found = s.scalar(
        select(UserMembership.id)
        .where(
            UserMembership.user_id == user_id,
            UserMembership.membership_type == membership_type,
            UserMembership.status == STATUS_ACTIVE,
        )
        .limit(1)
    )
    return found is not None


# ---------- Registration ----------
def is_committee_email(email: str) -> bool:
    email = (email or "").strip().lower()
    if email == root_admin_email():
        return True
    domain = email.rpartition("@")[2]
    return bool(domain) and domain in (current_app.config.get("COMMITTEE_EMAIL_DOMAINS") or ())


def register_user(
    s: "Session",
    *,
    first_name: str,
    last_name: str,
    email: str,
    password: str,
    registration_number: str | None = None,
    membership_types: list[str] | None = None,
    email_verified: bool = True,
) -> User:
    """
    Create a user plus one membership row per requested type for the current
    academic year. Committee-domain emails start as active committee members.
    With ``email_verified=False`` the account cannot log in until the emailed
    code is confirmed; the root admin is always treated as verified.
    """
    email = parse_str(email, field="email").lower()
    first_name = parse_str(first_name, field="firstName")
    last_name = parse_str(last_name, field="lastName")
    password = parse_str(password, field="password", strip=False)
    if not (first_name and last_name and email and password):
        raise ValidationFailed("Missing required fields")
    if "@" not in email:
        raise ValidationFailed("Invalid email address")

    if s.scalars(select(User.id).where(User.email == email)).first() is not None:
        raise DuplicateEmail()

    known = membership_type_ids(s)
    types = [t for t in requested_types(membership_types) if t in known]
    if not types:
        types = [BASIC_MEMBERSHIP]

    committee = is_committee_email(email)
    status = STATUS_ACTIVE if committee else STATUS_PENDING
    year = academic_year()

    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        password_hash=generate_password_hash(password),
        registration_number=clean_str(registration_number),
        role=ROLE_COMMITTEE if committee else ROLE_MEMBER,
        membership_status=status,
        membership_year=year,
        email_verified=email_verified or email == root_admin_email(),
    )
    try:
        with s.begin_nested():
            s.add(user)
            s.flush()
    except IntegrityError as e:
        raise translate_integrity_error(e) from e

    for t in types:
        upsert_membership(s, user_id=user.id, membership_type=t, membership_year=year, status=status)

    record_event(
        s,
        actor=user,
        action="user.register",
        entity_type="User",
        entity_id=user.id,
        metadata={"role": user.role, "status": status, "membership_types": types, "membership_year": year},
    )
    return user


# ---------- User-level approval ----------
def _get_user(s: "Session", user_id: str) -> User:
    user = s.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _notify_status(user: User, status: str, what: str) -> None:
    if status == STATUS_ACTIVE:
        subject = "Your climbing club membership is active"
        text = f"Hi {user.first_name},\n\nYour {what} has been approved. See you on the wall!"
    else:
        subject = "Your climbing club membership request"
        text = (
            f"Hi {user.first_name},\n\nYour {what} could not be approved. "
            "Please contact the committee or submit a new request from your dashboard."
        )
    notify_member(user.email, subject, text)


def _set_user_status(s: "Session", *, user_id: str, status: str, actor: User) -> User:
    user = _get_user(s, user_id)
    old = user.membership_status
    year = user.membership_year or academic_year()
    user.membership_status = status
    user.membership_year = year
    upsert_membership(
        s,
        user_id=user.id,
        membership_type=BASIC_MEMBERSHIP,
        membership_year=year,
        status=status,
        force=True,
    )
    record_event(
        s,
        actor=actor,
        action=f"user.{'approve' if status == STATUS_ACTIVE else 'reject'}",
        entity_type="User",
        entity_id=user.id,
        metadata={"status": {"old": old, "new": status}, "membership_year": year},
    )
    return user


def approve_user(s: "Session", *, user_id: str, actor: User) -> User:
    user = _set_user_status(s, user_id=user_id, status=STATUS_ACTIVE, actor=actor)
    _notify_status(user, STATUS_ACTIVE, "membership")
    return user


def reject_user(s: "Session", *, user_id: str, actor: User) -> User:
    user = _set_user_status(s, user_id=user_id, status=STATUS_REJECTED, actor=actor)
    _notify_status(user, STATUS_REJECTED, "membership")
    return user


# ---------- Row-level approval ----------
def _get_row(s: "Session", row_id: str) -> UserMembership:
    row = s.get(UserMembership, row_id)
    if row is None:
        raise NotFound("Membership not found")
    return row


def _set_row_status(s: "Session", *, row_id: str, status: str, actor: User) -> UserMembership:
    row = _get_row(s, row_id)
    old = row.status
    row.status = status
    row.updated_at = datetime.utcnow()

    user = _get_user(s, row.user_id)
    if row.membership_type == BASIC_MEMBERSHIP:
        user.membership_status = status
        user.membership_year = row.membership_year

    record_event(
        s,
        actor=actor,
        action=f"membership.{'approve' if status == STATUS_ACTIVE else 'reject'}",
        entity_type="UserMembership",
        entity_id=row.id,
        metadata={
            "user_id": row.user_id,
            "membership_type": row.membership_type,
            "membership_year": row.membership_year,
            "status": {"old": old, "new": status},
        },
    )
    _notify_status(user, status, f"{row.membership_type} membership for {row.membership_year}")
    return row


def approve_membership_row(s: "Session", *, row_id: str, actor: User) -> UserMembership:
    return _set_row_status(s, row_id=row_id, status=STATUS_ACTIVE, actor=actor)


def reject_membership_row(s: "Session", *, row_id: str, actor: User) -> UserMembership:
    return _set_row_status(s, row_id=row_id, status=STATUS_REJECTED, actor=actor)


def delete_membership_row(s: "Session", *, row_id: str, actor: User) -> None:
    """Delete a row; losing the last active basic row drops the user back to pending."""
    row = _get_row(s, row_id)
    user_id = row.user_id
    was_active_basic = row.membership_type == BASIC_MEMBERSHIP and row.status == STATUS_ACTIVE
    meta = {"user_id": user_id, "membership_type": row.membership_type, "membership_year": row.membership_year, "status": row.status}
    s.delete(row)
    s.flush()

    if was_active_basic and not has_active_membership(s, user_id, BASIC_MEMBERSHIP):
        user = s.get(User, user_id)
        if user is not None:
            user.membership_status = STATUS_PENDING
            meta["user_status_reset"] = True

    record_event(s, actor=actor, action="membership.delete", entity_type="UserMembership", entity_id=row_id, metadata=meta)


# ---------- Self-service ----------
def request_additional_membership(
    s: "Session",
    *,
    user: User,
    membership_type: str,
    membership_year: str | None = None,
) -> UserMembership:
    t = require_membership_type(s, membership_type)
    year = parse_str(membership_year, field="membershipYear") or academic_year()
    status = STATUS_ACTIVE if is_committee(user) else STATUS_PENDING
    row = upsert_membership(s, user_id=user.id, membership_type=t, membership_year=year, status=status)
    record_event(
        s,
        actor=user,
        action="membership.request",
        entity_type="UserMembership",
        entity_id=row.id,
        metadata={"membership_type": t, "membership_year": year, "requested_status": status, "status": row.status},
    )
    return row


def renew_membership(
    s: "Session",
    *,
    user: User,
    membership_year: str,
    membership_types: list[str] | None = None,
) -> list[UserMembership]:
    year = parse_str(membership_year, field="membershipYear")
    if not year:
        raise ValidationFailed("Missing membership year")
    types = requested_types(membership_types) or [BASIC_MEMBERSHIP]
    types = [require_membership_type(s, t) for t in dict.fromkeys(types)]

    status = STATUS_ACTIVE if is_committee(user) else STATUS_PENDING
    user.membership_status = status
    user.membership_year = year

    rows = [
        upsert_membership(s, user_id=user.id, membership_type=t, membership_year=year, status=status)
        for t in types
    ]
    record_event(
        s,
        actor=user,
        action="membership.renew",
        entity_type="User",
        entity_id=user.id,
        metadata={"membership_year": year, "membership_types": types, "status": status},
    )
    return rows


def _default_membership_type(s: "Session") -> str:
    types = list_membership_types(s)
    ids = [t.id for t in types]
    if BASIC_MEMBERSHIP in ids or not ids:
        return BASIC_MEMBERSHIP
    return ids[0]


def re_request_membership(s: "Session", *, user: User) -> UserMembership:
    """After a rejection: back to pending for the current academic year."""
    year = academic_year()
    user.membership_status = STATUS_PENDING
    user.membership_year = year
    t = _default_membership_type(s)
    row = upsert_membership(s, user_id=user.id, membership_type=t, membership_year=year, status=STATUS_PENDING)
    record_event(
        s,
        actor=user,
        action="membership.rerequest",
        entity_type="UserMembership",
        entity_id=row.id,
        metadata={"membership_type": t, "membership_year": year},
    )
    return row


def serialize_membership(row: UserMembership) -> dict:
    return {
        "id": row.id,
        "userId": row.user_id,
        "membershipType": row.membership_type,
        "status": row.status,
        "membershipYear": row.membership_year,
    }
