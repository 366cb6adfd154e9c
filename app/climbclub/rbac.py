from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify

from app.climbclub.constants import KIT_SEC_ROLE
from app.climbclub.models import User


def root_admin_email() -> str:
    return (current_app.config.get("ROOT_ADMIN_EMAIL") or "").strip().lower()


def is_root_admin(user: User | None) -> bool:
    return bool(user) and user.email.lower() == root_admin_email()


def is_committee(user: User | None) -> bool:
    if not user:
        return False
    return is_root_admin(user) or user.is_committee


def is_kit_sec(user: User | None) -> bool:
    if not user:
        return False
    return is_root_admin(user) or KIT_SEC_ROLE in user.committee_role_names


def _guard(check: Callable[[User], bool], message: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated -> 401, authenticated but unauthorized -> 403
            if not user:
                return jsonify({"error": "Authentication required", "code": "Unauthenticated"}), 401
            if not check(user):
                return jsonify({"error": message, "code": "Unauthorized"}), 403
            return fn(*args, **kwargs)

        return wrapped

    return decorator


login_required = _guard(lambda u: True, "Unauthorized")
require_committee = _guard(is_committee, "Requires committee privileges")
require_kit_sec = _guard(is_kit_sec, "Requires Kit & Safety Sec privileges")
require_root_admin = _guard(is_root_admin, "Only Root Admin can perform this action")
