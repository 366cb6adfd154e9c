from __future__ import annotations

from flask import Blueprint, g, jsonify, request, session

from app.climbclub.accounts import (
    change_password,
    delete_user,
    list_committee,
    serialize_user,
    update_committee_profile,
    update_profile,
)
from app.climbclub.db import db_session
from app.climbclub.models import User
from app.climbclub.rbac import login_required, require_committee

bp = Blueprint("users", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.put("/users/me")
@login_required
def me_update():
    s = db_session()
    user = update_profile(s, user=_current_user(), payload=request.get_json(silent=True) or {})
    s.commit()
    return jsonify(serialize_user(user))


@bp.post("/users/me/password")
@login_required
def me_password():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    change_password(
        s,
        user=_current_user(),
        current_password=payload.get("currentPassword") or "",
        new_password=payload.get("newPassword") or "",
    )
    s.commit()
    return jsonify({"success": True})


@bp.delete("/users/me")
@login_required
def me_delete():
    s = db_session()
    user = _current_user()
    delete_user(s, user_id=user.id, actor=user)
    s.commit()
    session.pop("user_id", None)
    return jsonify({"success": True})


@bp.get("/committee")
def committee_list():
    s = db_session()
    return jsonify(list_committee(s))


@bp.put("/committee/me")
@require_committee
def committee_profile_update():
    s = db_session()
    user = update_committee_profile(s, user=_current_user(), payload=request.get_json(silent=True) or {})
    s.commit()
    return jsonify(serialize_user(user))
