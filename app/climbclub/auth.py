from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash

from app.climbclub.accounts import (
    issue_verification_code,
    request_password_reset,
    resend_verification_code,
    reset_password,
    send_password_reset,
    send_verification_code,
    send_welcome,
    serialize_user,
    verify_email,
)
from app.climbclub.audit import record_event
from app.climbclub.db import db_session
from app.climbclub.models import User
from app.climbclub.modules.membership.service import register_user
from app.climbclub.rbac import login_required
from app.climbclub.security import ensure_csrf_token
from app.climbclub.utils import parse_str

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(key: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[key] = [t for t in _login_attempts[key] if t > cutoff]
    return len(_login_attempts[key]) >= _LOGIN_RATE_LIMIT


def _record_attempt(key: str) -> None:
    _login_attempts[key].append(datetime.utcnow())


def _rate_limited_response():
    return jsonify({"error": "Too many attempts. Please wait 5 minutes.", "code": "RateLimited"}), 429


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, str(user_id))
        if not user:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


@bp.get("/csrf")
def csrf():
    return jsonify({"csrfToken": ensure_csrf_token()})


@bp.post("/register")
def register():
    payload = request.get_json(silent=True) or {}
    s = db_session()
    verification = bool(current_app.config.get("EMAIL_VERIFICATION_REQUIRED"))
    user = register_user(
        s,
        first_name=payload.get("firstName") or "",
        last_name=payload.get("lastName") or "",
        email=payload.get("email") or "",
        password=payload.get("password") or "",
        registration_number=payload.get("registrationNumber"),
        membership_types=payload.get("membershipTypes") or None,
        email_verified=not verification,
    )
    code = None if user.email_verified else issue_verification_code(s, user=user)
    s.commit()
    current_app.logger.info("Registered user %s (status=%s)", user.email, user.membership_status)

    if code is not None:
        send_verification_code(user, code)
        return jsonify({"pendingVerification": True, "userId": user.id}), 201

    session["user_id"] = user.id
    return jsonify(serialize_user(user)), 201


@bp.post("/login")
def login():
    payload = request.get_json(silent=True) or {}
    email = parse_str(payload.get("email"), field="email").lower()
    password = parse_str(payload.get("password"), field="password", strip=False)
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"error": "Too many login attempts. Please wait 5 minutes.", "code": "RateLimited"}), 429

    _record_attempt(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none()
    if not user or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            metadata={"email": email},
        )
        s.commit()
        return jsonify({"error": "Invalid credentials", "code": "Unauthenticated"}), 401

    if current_app.config.get("EMAIL_VERIFICATION_REQUIRED") and not user.email_verified:
        return (
            jsonify(
                {
                    "error": "Email not verified. Please check your inbox for a verification code.",
                    "code": "EmailNotVerified",
                    "pendingVerification": True,
                    "userId": user.id,
                }
            ),
            403,
        )

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=user.id)
    s.commit()
    return jsonify(serialize_user(user))


@bp.post("/verify-email")
def verify_email_code():
    payload = request.get_json(silent=True) or {}
    key = f"verify:{request.remote_addr or 'unknown'}"
    if _check_rate_limit(key):
        return _rate_limited_response()
    _record_attempt(key)

    s = db_session()
    user = verify_email(s, user_id=payload.get("userId"), code=payload.get("code"))
    s.commit()
    _login_attempts[key].clear()
    session["user_id"] = user.id
    send_welcome(user)
    return jsonify(serialize_user(user))


@bp.post("/request-verification")
def request_verification():
    payload = request.get_json(silent=True) or {}
    s = db_session()
    user, code = resend_verification_code(s, user_id=payload.get("userId"))
    s.commit()
    send_verification_code(user, code)
    return jsonify({"success": True})


@bp.post("/forgot-password")
def forgot_password():
    payload = request.get_json(silent=True) or {}
    s = db_session()
    issued = request_password_reset(s, email=payload.get("email"))
    s.commit()
    if issued is not None:
        send_password_reset(*issued)
    # Same answer for unknown emails.
    return jsonify({"success": True, "message": "If that email is registered, you will receive a reset link shortly."})


@bp.post("/reset-password")
def reset_password_with_token():
    payload = request.get_json(silent=True) or {}
    key = f"reset:{request.remote_addr or 'unknown'}"
    if _check_rate_limit(key):
        return _rate_limited_response()
    _record_attempt(key)

    s = db_session()
    reset_password(s, token=payload.get("token"), new_password=payload.get("newPassword"))
    s.commit()
    _login_attempts[key].clear()
    return jsonify({"success": True})


@bp.post("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
        s.commit()
    session.pop("user_id", None)
    return jsonify({"success": True})


@bp.get("/me")
@login_required
def me():
    return jsonify(serialize_user(g.current_user))
