from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.climbclub.db import db_session
from app.climbclub.models import User
from app.climbclub.modules.gear.service import (
    approve_request,
    create_gear,
    delete_gear,
    list_gear,
    list_my_requests,
    list_requests,
    reject_request,
    request_gear,
    return_gear,
    serialize_gear,
    serialize_request,
    update_gear,
)
from app.climbclub.rbac import login_required, require_kit_sec

bp = Blueprint("gear", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- Catalog ----------
@bp.get("/gear")
@login_required
def gear_list():
    s = db_session()
    return jsonify([serialize_gear(x) for x in list_gear(s)])


@bp.post("/gear")
@require_kit_sec
def gear_create():
    s = db_session()
    item = create_gear(s, request.get_json(silent=True) or {}, _current_user())
    s.commit()
    return jsonify(serialize_gear(item)), 201


@bp.put("/gear/<gear_id>")
@require_kit_sec
def gear_update(gear_id: str):
    s = db_session()
    item = update_gear(s, gear_id, request.get_json(silent=True) or {}, _current_user())
    s.commit()
    return jsonify(serialize_gear(item))


@bp.delete("/gear/<gear_id>")
@require_kit_sec
def gear_delete(gear_id: str):
    s = db_session()
    delete_gear(s, gear_id, _current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Requests ----------
@bp.post("/gear/<gear_id>/request")
@login_required
def gear_request(gear_id: str):
    s = db_session()
    req = request_gear(s, user=_current_user(), gear_id=gear_id)
    s.commit()
    return jsonify(serialize_request(req)), 201


@bp.get("/gear/requests")
@require_kit_sec
def gear_requests_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    rows = list_requests(s, status=status)
    users = {u.id: u for u in s.query(User).filter(User.id.in_({r.user_id for r in rows})).all()} if rows else {}
    return jsonify([serialize_request(r, users.get(r.user_id)) for r in rows])


@bp.get("/gear/requests/me")
@login_required
def gear_requests_mine():
    s = db_session()
    return jsonify([serialize_request(r) for r in list_my_requests(s, _current_user().id)])


@bp.post("/gear/requests/<request_id>/approve")
@require_kit_sec
def gear_request_approve(request_id: str):
    s = db_session()
    req = approve_request(s, request_id=request_id, actor=_current_user())
    s.commit()
    return jsonify(serialize_request(req))


@bp.post("/gear/requests/<request_id>/reject")
@require_kit_sec
def gear_request_reject(request_id: str):
    s = db_session()
    req = reject_request(s, request_id=request_id, actor=_current_user())
    s.commit()
    return jsonify(serialize_request(req))


@bp.post("/gear/requests/<request_id>/return")
@require_kit_sec
def gear_request_return(request_id: str):
    s = db_session()
    req = return_gear(s, request_id=request_id, actor=_current_user())
    s.commit()
    return jsonify(serialize_request(req))
