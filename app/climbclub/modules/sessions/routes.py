from __future__ import annotations

from flask import Blueprint, Response, current_app, g, jsonify, request
from sqlalchemy import select

from app.climbclub.db import db_session
from app.climbclub.errors import NotFound
from app.climbclub.models import User
from app.climbclub.modules.sessions import ical
from app.climbclub.modules.sessions.service import (
    book,
    booked_sessions,
    cancel,
    create_session,
    create_session_type,
    delete_session,
    delete_session_type,
    list_my_bookings,
    list_session_types,
    list_sessions,
    serialize_session,
    update_session,
    update_session_type,
)
from app.climbclub.rbac import login_required, require_committee

bp = Blueprint("sessions", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _calendar_response(body: str, filename: str) -> Response:
    resp = Response(body, mimetype="text/calendar")
    resp.headers["Content-Type"] = ical.CALENDAR_CONTENT_TYPE
    resp.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return resp


def _user_for_calendar_token(token: str) -> User:
    s = db_session()
    user = s.scalars(select(User).where(User.calendar_token == token)).first()
    if user is None:
        raise NotFound("Calendar not found")
    return user


# ---------- Session types ----------
@bp.get("/session-types")
def session_types_list():
    s = db_session()
    return jsonify([{"id": st.id, "label": st.label} for st in list_session_types(s)])


@bp.post("/session-types")
@require_committee
def session_types_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    st = create_session_type(s, label=payload.get("label") or "", actor=_current_user())
    s.commit()
    return jsonify({"id": st.id, "label": st.label}), 201


@bp.put("/session-types/<type_id>")
@require_committee
def session_types_update(type_id: str):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    st = update_session_type(s, type_id=type_id, label=payload.get("label") or "", actor=_current_user())
    s.commit()
    return jsonify({"id": st.id, "label": st.label})


@bp.delete("/session-types/<type_id>")
@require_committee
def session_types_delete(type_id: str):
    s = db_session()
    delete_session_type(s, type_id=type_id, actor=_current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Sessions ----------
@bp.get("/sessions")
def sessions_list():
    s = db_session()
    viewer = getattr(g, "current_user", None)
    return jsonify([serialize_session(x) for x in list_sessions(s, viewer)])


@bp.post("/sessions")
@require_committee
def sessions_create():
    s = db_session()
    session = create_session(s, request.get_json(silent=True) or {}, _current_user())
    s.commit()
    return jsonify(serialize_session(session)), 201


@bp.put("/sessions/<session_id>")
@require_committee
def sessions_update(session_id: str):
    s = db_session()
    session = update_session(s, session_id, request.get_json(silent=True) or {}, _current_user())
    s.commit()
    return jsonify(serialize_session(session))


@bp.delete("/sessions/<session_id>")
@require_committee
def sessions_delete(session_id: str):
    s = db_session()
    delete_session(s, session_id, _current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Booking ----------
@bp.post("/sessions/<session_id>/book")
@login_required
def sessions_book(session_id: str):
    s = db_session()
    session = book(s, user=_current_user(), session_id=session_id)
    s.commit()
    return jsonify(serialize_session(session))


@bp.post("/sessions/<session_id>/cancel")
@login_required
def sessions_cancel(session_id: str):
    s = db_session()
    session = cancel(s, user=_current_user(), session_id=session_id)
    s.commit()
    return jsonify(serialize_session(session))


@bp.get("/sessions/me/bookings")
@login_required
def sessions_my_bookings():
    s = db_session()
    return jsonify(list_my_bookings(s, _current_user().id))


# ---------- Calendar ----------
@bp.get("/sessions/me/ical")
@login_required
def sessions_my_ical():
    s = db_session()
    user = _current_user()
    body = ical.build_icalendar(user.id, booked_sessions(s, user.id), uid_domain=current_app.config["ICAL_UID_DOMAIN"])
    return _calendar_response(body, ical.BOOKED_FILENAME)


@bp.get("/sessions/ical/<token>")
def sessions_token_ical(token: str):
    s = db_session()
    user = _user_for_calendar_token(token)
    body = ical.build_icalendar(user.id, booked_sessions(s, user.id), uid_domain=current_app.config["ICAL_UID_DOMAIN"])
    return _calendar_response(body, ical.BOOKED_FILENAME)


@bp.get("/sessions/ical/<token>/all")
def sessions_token_ical_all(token: str):
    s = db_session()
    user = _user_for_calendar_token(token)
    body = ical.build_icalendar(user.id, list_sessions(s, user), uid_domain=current_app.config["ICAL_UID_DOMAIN"])
    return _calendar_response(body, ical.ALL_FILENAME)
