from flask import Blueprint, jsonify

from app.climbclub.accounts import verify_member
from app.climbclub.db import db_session

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/api/verify/<identifier>")
def verify(identifier: str):
    """Public membership check for door staff and partner walls."""
    s = db_session()
    return jsonify(verify_member(s, identifier))
