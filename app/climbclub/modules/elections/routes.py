from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.climbclub.db import db_session
from app.climbclub.models import User
from app.climbclub.modules.elections.service import (
    apply_candidate,
    cast_vote,
    create_referendum,
    delete_referendum,
    get_candidates,
    get_referendums,
    get_status,
    reset_election_cycle,
    vote_referendum,
    withdraw_candidate,
)
from app.climbclub.rbac import login_required, require_committee

bp = Blueprint("voting", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/status")
def voting_status():
    s = db_session()
    return jsonify(get_status(s, getattr(g, "current_user", None)))


@bp.get("/candidates")
def voting_candidates():
    s = db_session()
    return jsonify(get_candidates(s))


@bp.post("/apply")
@login_required
def voting_apply():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    candidate = apply_candidate(
        s,
        user=_current_user(),
        role=payload.get("role") or "",
        manifesto=payload.get("manifesto") or "",
        presentation_link=payload.get("presentationLink"),
    )
    s.commit()
    return jsonify({"success": True, "userId": candidate.user_id}), 201


@bp.post("/withdraw")
@login_required
def voting_withdraw():
    s = db_session()
    removed = withdraw_candidate(s, user=_current_user())
    s.commit()
    return jsonify({"success": True, "withdrawn": removed})


@bp.post("/vote")
@login_required
def voting_vote():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    cast_vote(s, user=_current_user(), candidate_id=payload.get("candidateId") or "")
    s.commit()
    return jsonify({"success": True})


@bp.get("/referendums")
def voting_referendums():
    s = db_session()
    return jsonify(get_referendums(s, getattr(g, "current_user", None)))


@bp.post("/referendums")
@require_committee
def voting_referendum_create():
    s = db_session()
    payload = request.get_json(silent=True) or {}
    ref = create_referendum(s, title=payload.get("title") or "", description=payload.get("description"), actor=_current_user())
    s.commit()
    return jsonify({"id": ref.id, "title": ref.title, "description": ref.description}), 201


@bp.delete("/referendums/<referendum_id>")
@require_committee
def voting_referendum_delete(referendum_id: str):
    s = db_session()
    delete_referendum(s, referendum_id=referendum_id, actor=_current_user())
    s.commit()
    return jsonify({"success": True})


@bp.post("/referendums/<referendum_id>/vote")
@login_required
def voting_referendum_vote(referendum_id: str):
    s = db_session()
    payload = request.get_json(silent=True) or {}
    vote_referendum(s, user=_current_user(), referendum_id=referendum_id, choice=payload.get("choice") or "")
    s.commit()
    return jsonify({"success": True})


@bp.post("/reset")
@require_committee
def voting_reset():
    s = db_session()
    cleared = reset_election_cycle(s, actor=_current_user())
    s.commit()
    return jsonify({"success": True, "cleared": cleared})
