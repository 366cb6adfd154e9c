from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.climbclub.db import db_session
from app.climbclub.models import User
from app.climbclub.modules.membership.service import (
    approve_membership_row,
    approve_user,
    create_membership_type,
    delete_membership_row,
    delete_membership_type,
    list_membership_rows,
    list_membership_types,
    list_user_memberships,
    re_request_membership,
    reject_membership_row,
    reject_user,
    renew_membership,
    request_additional_membership,
    serialize_membership,
    update_membership_type,
)
from app.climbclub.rbac import login_required, require_committee

bp = Blueprint("membership", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _type_dict(mt) -> dict:
    return {"id": mt.id, "label": mt.label}


# ---------- Membership type catalog ----------
@bp.get("/membership-types")
def membership_types_list():
    s = db_session()
    return jsonify([_type_dict(mt) for mt in list_membership_types(s)])


@bp.post("/membership-types")
@require_committee
def membership_types_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    mt = create_membership_type(s, label=payload.get("label") or "", type_id=payload.get("id"), actor=_current_user())
    s.commit()
    return jsonify(_type_dict(mt)), 201


@bp.put("/membership-types/<type_id>")
@require_committee
def membership_types_update(type_id: str):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    mt = update_membership_type(s, type_id=type_id, label=payload.get("label") or "", actor=_current_user())
    s.commit()
    return jsonify(_type_dict(mt))


@bp.delete("/membership-types/<type_id>")
@require_committee
def membership_types_delete(type_id: str):
    s = db_session()
    delete_membership_type(s, type_id=type_id, actor=_current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Self-service ----------
@bp.get("/users/me/memberships")
@login_required
def my_memberships():
    s = db_session()
    return jsonify([serialize_membership(r) for r in list_user_memberships(s, _current_user().id)])


@bp.post("/users/me/memberships")
@login_required
def my_memberships_request():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    row = request_additional_membership(
        s,
        user=_current_user(),
        membership_type=payload.get("membershipType") or "",
        membership_year=payload.get("membershipYear"),
    )
    s.commit()
    return jsonify(serialize_membership(row)), 201


@bp.post("/users/me/membership-renewal")
@login_required
def my_membership_renewal():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    rows = renew_membership(
        s,
        user=_current_user(),
        membership_year=payload.get("membershipYear") or "",
        membership_types=payload.get("membershipTypes") or None,
    )
    s.commit()
    return jsonify([serialize_membership(r) for r in rows])


@bp.post("/users/me/membership-rerequest")
@login_required
def my_membership_rerequest():
    s = db_session()
    row = re_request_membership(s, user=_current_user())
    s.commit()
    return jsonify(serialize_membership(row))


# ---------- Committee review ----------
@bp.get("/admin/memberships")
@require_committee
def admin_memberships_list():
    s = db_session()
    status = (request.args.get("status") or "").strip() or None
    rows = list_membership_rows(s, status=status)
    users = {u.id: u for u in s.query(User).filter(User.id.in_({r.user_id for r in rows})).all()} if rows else {}
    out = []
    for r in rows:
        d = serialize_membership(r)
        u = users.get(r.user_id)
        d["userName"] = u.name if u else None
        d["userEmail"] = u.email if u else None
        out.append(d)
    return jsonify(out)


@bp.post("/admin/memberships/<row_id>/approve")
@require_committee
def admin_membership_approve(row_id: str):
    s = db_session()
    row = approve_membership_row(s, row_id=row_id, actor=_current_user())
    s.commit()
    return jsonify(serialize_membership(row))


@bp.post("/admin/memberships/<row_id>/reject")
@require_committee
def admin_membership_reject(row_id: str):
    s = db_session()
    row = reject_membership_row(s, row_id=row_id, actor=_current_user())
    s.commit()
    return jsonify(serialize_membership(row))


@bp.delete("/admin/memberships/<row_id>")
@require_committee
def admin_membership_delete(row_id: str):
    s = db_session()
    delete_membership_row(s, row_id=row_id, actor=_current_user())
    s.commit()
    return jsonify({"success": True})


@bp.post("/admin/users/<user_id>/approve")
@require_committee
def admin_user_approve(user_id: str):
    s = db_session()
    user = approve_user(s, user_id=user_id, actor=_current_user())
    s.commit()
    return jsonify({"success": True, "id": user.id, "membershipStatus": user.membership_status})


@bp.post("/admin/users/<user_id>/reject")
@require_committee
def admin_user_reject(user_id: str):
    s = db_session()
    user = reject_user(s, user_id=user_id, actor=_current_user())
    s.commit()
    return jsonify({"success": True, "id": user.id, "membershipStatus": user.membership_status})
