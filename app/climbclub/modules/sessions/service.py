"""
Session booking service.

``booked_slots`` always equals the number of Booking rows for a session.
Booking and cancelling change both in one transaction; the capacity check that
decides a race is the conditional UPDATE, not the advisory pre-check.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError

from app.climbclub.audit import record_event
from app.climbclub.constants import BASIC_MEMBERSHIP, VISIBILITY_ALL, VISIBILITY_COMMITTEE_ONLY
from app.climbclub.errors import (
    AlreadyBooked,
    InvalidType,
    MembershipRequired,
    NotBooked,
    NotFound,
    SessionFull,
    Unauthorized,
    ValidationFailed,
    translate_integrity_error,
)
from app.climbclub.models import User
from app.climbclub.modules.membership.models import MembershipType
from app.climbclub.modules.membership.service import has_active_membership
from app.climbclub.rbac import is_committee, is_root_admin
from app.climbclub.utils import clean_str, parse_int, parse_str

from .models import Booking, ClubSession, SessionType

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


# ---------- Session types ----------
def list_session_types(s: "Session") -> list[SessionType]:
    return list(s.scalars(select(SessionType).order_by(SessionType.label.asc())))


def create_session_type(s: "Session", *, label: str, actor: User) -> SessionType:
    label = parse_str(label, field="label")
    if not label:
        raise ValidationFailed("Label is required")
    st = SessionType(id=label, label=label)
    try:
        with s.begin_nested():
            s.add(st)
            s.flush()
    except IntegrityError as e:
        raise translate_integrity_error(e) from e
    record_event(s, actor=actor, action="session_type.create", entity_type="SessionType", entity_id=st.id)
    return st


def update_session_type(s: "Session", *, type_id: str, label: str, actor: User) -> SessionType:
    label = parse_str(label, field="label")
    if not label:
        raise ValidationFailed("Label is required")
    st = s.get(SessionType, type_id)
    if st is None:
        raise NotFound("Session type not found")
    old = st.label
    st.label = label
    record_event(
        s,
        actor=actor,
        action="session_type.edit",
        entity_type="SessionType",
        entity_id=type_id,
        metadata={"label": {"old": old, "new": label}},
    )
    return st


def delete_session_type(s: "Session", *, type_id: str, actor: User) -> None:
    st = s.get(SessionType, type_id)
    if st is None:
        raise NotFound("Session type not found")
    s.delete(st)
    record_event(s, actor=actor, action="session_type.delete", entity_type="SessionType", entity_id=type_id)


# ---------- Session CRUD ----------
def _validate_session_payload(s: "Session", payload: dict) -> dict:
    title = clean_str(payload.get("title"))
    session_type = clean_str(payload.get("type"))
    starts_at = clean_str(payload.get("date"))
    if not title or not session_type or not starts_at:
        raise ValidationFailed("Title, type and date are required")
    if s.get(SessionType, session_type) is None:
        raise InvalidType(f"Invalid session type: {session_type}")

    capacity = parse_int(payload.get("capacity"), field="capacity")
    if capacity <= 0:
        raise ValidationFailed("capacity must be a positive integer")

    required = clean_str(payload.get("requiredMembership")) or BASIC_MEMBERSHIP
    if s.get(MembershipType, required) is None:
        raise InvalidType(f"Invalid membership type: {required}")

    visibility = VISIBILITY_COMMITTEE_ONLY if payload.get("visibility") == VISIBILITY_COMMITTEE_ONLY else VISIBILITY_ALL
    return {
        "title": title,
        "type": session_type,
        "starts_at": starts_at,
        "capacity": capacity,
        "required_membership": required,
        "visibility": visibility,
    }


def create_session(s: "Session", payload: dict, user: User) -> ClubSession:
    data = _validate_session_payload(s, payload)
    session = ClubSession(booked_slots=0, created_at=datetime.utcnow(), **data)
    s.add(session)
    s.flush()
    record_event(
        s,
        actor=user,
        action="session.create",
        entity_type="Session",
        entity_id=session.id,
        metadata={"title": session.title, "type": session.type, "date": session.starts_at, "capacity": session.capacity},
    )
    return session


def update_session(s: "Session", session_id: str, payload: dict, user: User) -> ClubSession:
    """Committee edit. ``bookedSlots`` is taken as given when supplied."""
    session = get_session(s, session_id)
    data = _validate_session_payload(s, payload)
    if payload.get("bookedSlots") is not None:
        booked = parse_int(payload.get("bookedSlots"), field="bookedSlots")
        if booked < 0 or booked > data["capacity"]:
            raise ValidationFailed("bookedSlots must be between 0 and capacity")
        data["booked_slots"] = booked
    elif session.booked_slots > data["capacity"]:
        raise ValidationFailed("capacity cannot be below the number of booked slots")

    changes = {}
    for attr, val in data.items():
        if getattr(session, attr) != val:
            changes[attr] = {"old": getattr(session, attr), "new": val}
            setattr(session, attr, val)

    record_event(s, actor=user, action="session.edit", entity_type="Session", entity_id=session.id, metadata={"changes": changes})
    return session


def delete_session(s: "Session", session_id: str, user: User) -> None:
    session = get_session(s, session_id)
    s.execute(delete(Booking).where(Booking.session_id == session_id))
    record_event(s, actor=user, action="session.delete", entity_type="Session", entity_id=session_id, metadata={"title": session.title})
    s.delete(session)


def get_session(s: "Session", session_id: str) -> ClubSession:
    session = s.get(ClubSession, session_id)
    if session is None:
        raise NotFound("Session not found")
    return session


def list_sessions(s: "Session", viewer: User | None) -> list[ClubSession]:
    q = select(ClubSession)
    if not is_committee(viewer):
        q = q.where(ClubSession.visibility != VISIBILITY_COMMITTEE_ONLY)
    return list(s.scalars(q.order_by(ClubSession.starts_at.asc())))


# ---------- Booking ----------
def _has_booking(s: "Session", user_id: str, session_id: str) -> bool:
    return s.get(Booking, (user_id, session_id)) is not None


def book(s: "Session", *, user: User, session_id: str) -> ClubSession:
    if _has_booking(s, user.id, session_id):
        raise AlreadyBooked()
    session = get_session(s, session_id)
    if session.booked_slots >= session.capacity:
        raise SessionFull()

    committee_only = session.visibility == VISIBILITY_COMMITTEE_ONLY
    if committee_only and not is_committee(user):
        raise Unauthorized("This session is for committee members only.")

    required = session.required_membership or BASIC_MEMBERSHIP
    if not committee_only and not is_root_admin(user) and not has_active_membership(s, user.id, required):
        mt = s.get(MembershipType, required)
        label = mt.label if mt else required
        raise MembershipRequired(f"This session requires an active {label} membership.")

    try:
        with s.begin_nested():
            s.add(Booking(user_id=user.id, session_id=session_id, created_at=datetime.utcnow()))
            s.flush()
    except IntegrityError as e:
        raise translate_integrity_error(e) from e

    res = s.execute(
        update(ClubSession)
        .where(ClubSession.id == session_id, ClubSession.booked_slots < ClubSession.capacity)
        .values(booked_slots=ClubSession.booked_slots + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        # Lost the race for the last slot; the caller rolls back the booking row.
        raise SessionFull()
    s.refresh(session)

    record_event(s, actor=user, action="session.book", entity_type="Session", entity_id=session_id, metadata={"booked_slots": session.booked_slots})
    return session


def cancel(s: "Session", *, user: User, session_id: str) -> ClubSession:
    if not _has_booking(s, user.id, session_id):
        raise NotBooked()
    session = get_session(s, session_id)

    res = s.execute(delete(Booking).where(Booking.user_id == user.id, Booking.session_id == session_id))
    if res.rowcount != 1:
        raise NotBooked()
    s.execute(
        update(ClubSession)
        .where(ClubSession.id == session_id, ClubSession.booked_slots > 0)
        .values(booked_slots=ClubSession.booked_slots - 1)
        .execution_options(synchronize_session=False)
    )
    s.refresh(session)

    record_event(s, actor=user, action="session.cancel", entity_type="Session", entity_id=session_id, metadata={"booked_slots": session.booked_slots})
    return session


def release_user_bookings(s: "Session", user_id: str) -> int:
    """Drop every booking a user holds, giving the slots back. Returns the count."""
    session_ids = list(s.scalars(select(Booking.session_id).where(Booking.user_id == user_id)))
    if not session_ids:
        return 0
    s.execute(delete(Booking).where(Booking.user_id == user_id))
    s.execute(
        update(ClubSession)
        .where(ClubSession.id.in_(session_ids), ClubSession.booked_slots > 0)
        .values(booked_slots=ClubSession.booked_slots - 1)
        .execution_options(synchronize_session=False)
    )
    return len(session_ids)


def list_my_bookings(s: "Session", user_id: str) -> list[str]:
    return list(s.scalars(select(Booking.session_id).where(Booking.user_id == user_id)))


def booked_sessions(s: "Session", user_id: str) -> list[ClubSession]:
    return list(
        s.scalars(
            select(ClubSession)
            .join(Booking, Booking.session_id == ClubSession.id)
            .where(Booking.user_id == user_id)
            .order_by(ClubSession.starts_at.asc())
        )
    )


def serialize_session(session: ClubSession) -> dict:
    return {
        "id": session.id,
        "type": session.type,
        "title": session.title,
        "date": session.starts_at,
        "capacity": session.capacity,
        "bookedSlots": session.booked_slots,
        "requiredMembership": session.required_membership,
        "visibility": session.visibility,
    }
