from __future__ import annotations

import json
from datetime import date, datetime, time, timedelta

from flask import Blueprint, g, jsonify, request

from app.climbclub.accounts import (
    delete_user,
    demote_user,
    list_users,
    promote_user,
    serialize_user,
    set_committee_roles,
)
from app.climbclub.db import db_session
from app.climbclub.errors import ValidationFailed
from app.climbclub.models import AuditEvent, User
from app.climbclub.modules.elections.service import set_elections_open
from app.climbclub.rbac import require_committee, require_root_admin
from app.climbclub.settings import get_settings

bp = Blueprint("admin", __name__)


def _parse_date(s: str) -> date | None:
    s = (s or "").strip()
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        return None


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


# ---------- Users ----------
@bp.get("/users")
@require_committee
def users_list():
    s = db_session()
    status = (request.args.get("status") or "").strip()
    users = list_users(s)
    if status:
        users = [u for u in users if u.membership_status == status]
    return jsonify([serialize_user(u) for u in users])


@bp.post("/users/<user_id>/promote")
@require_committee
def users_promote(user_id: str):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    user = promote_user(s, user_id=user_id, actor=_current_user(), roles=payload.get("roles"))
    s.commit()
    return jsonify(serialize_user(user))


@bp.post("/users/<user_id>/demote")
@require_root_admin
def users_demote(user_id: str):
    s = db_session()
    user = demote_user(s, user_id=user_id, actor=_current_user())
    s.commit()
    return jsonify(serialize_user(user))


@bp.put("/users/<user_id>/committee-roles")
@require_committee
def users_committee_roles(user_id: str):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    user = set_committee_roles(s, user_id=user_id, roles=payload.get("roles") or [], actor=_current_user())
    s.commit()
    return jsonify(serialize_user(user))


@bp.delete("/users/<user_id>")
@require_committee
def users_delete(user_id: str):
    s = db_session()
    delete_user(s, user_id=user_id, actor=_current_user())
    s.commit()
    return jsonify({"success": True})


# ---------- Elections switch ----------
@bp.get("/config/elections")
@require_committee
def elections_config_get():
    s = db_session()
    return jsonify({"electionsOpen": bool(get_settings(s).elections_open)})


@bp.post("/config/elections")
@require_committee
def elections_config_set():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    raw = payload.get("electionsOpen")
    if not isinstance(raw, bool):
        raise ValidationFailed("electionsOpen must be true or false")
    is_open = set_elections_open(s, is_open=raw, actor=_current_user())
    s.commit()
    return jsonify({"electionsOpen": is_open})


# ---------- Audit ----------
@bp.get("/audit")
@require_committee
def audit_list():
    """
    Last 200 audit events with simple filters:
    - action (contains)
    - actor_email (contains)
    - date range (YYYY-MM-DD)
    """
    s = db_session()
    action = (request.args.get("action") or "").strip()
    actor_email = (request.args.get("actor_email") or "").strip()
    date_from = _parse_date(request.args.get("date_from") or "")
    date_to = _parse_date(request.args.get("date_to") or "")

    if (request.args.get("date_from") or "").strip() and not date_from:
        raise ValidationFailed("date_from must be YYYY-MM-DD")
    if (request.args.get("date_to") or "").strip() and not date_to:
        raise ValidationFailed("date_to must be YYYY-MM-DD")

    q = s.query(AuditEvent)
    if action:
        q = q.filter(AuditEvent.action.like(f"%{action}%"))
    if actor_email:
        q = q.filter(AuditEvent.actor_user_email.like(f"%{actor_email.lower()}%"))
    if date_from:
        q = q.filter(AuditEvent.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive end-date (treat as whole day)
        q = q.filter(AuditEvent.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    events = q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(200).all()
    return jsonify(
        [
            {
                "id": ev.id,
                "createdAt": ev.created_at.isoformat(),
                "requestId": ev.request_id,
                "actorUserId": ev.actor_user_id,
                "actorEmail": ev.actor_user_email,
                "action": ev.action,
                "entityType": ev.entity_type,
                "entityId": ev.entity_id,
                "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
            }
            for ev in events
        ]
    )
