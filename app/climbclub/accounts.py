"""
Account administration: profile edits, passwords, committee roles, deletion
and the public membership check.
"""
from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from flask import current_app
from sqlalchemy import delete, or_, select, update
from werkzeug.security import check_password_hash, generate_password_hash

from app.climbclub.audit import record_event
from app.climbclub.constants import (
    COMMITTEE_ROLES,
    PASSWORD_RESET_TTL_MINUTES,
    ROLE_COMMITTEE,
    ROLE_MEMBER,
    VERIFICATION_CODE_TTL_MINUTES,
)
from app.climbclub.errors import InvalidCode, InvalidToken, NotFound, Unauthorized, ValidationFailed
from app.climbclub.models import CommitteeRole, EmailVerification, PasswordReset, User
from app.climbclub.modules.elections.models import Candidate, Referendum, ReferendumVote, Vote
from app.climbclub.modules.gear.models import GearRequest
from app.climbclub.modules.membership.models import UserMembership
from app.climbclub.modules.sessions.service import release_user_bookings
from app.climbclub.notify import notify_member
from app.climbclub.rbac import is_committee, is_root_admin
from app.climbclub.utils import clean_str, membership_expiry_label, parse_str

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

# JSON key -> User attribute
PROFILE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "registrationNumber": "registration_number",
    "emergencyContactName": "emergency_contact_name",
    "emergencyContactMobile": "emergency_contact_mobile",
    "pronouns": "pronouns",
    "dietaryRequirements": "dietary_requirements",
}
COMMITTEE_PROFILE_FIELDS = {
    "instagram": "instagram",
    "faveCrag": "fave_crag",
    "bio": "bio",
}
REQUIRED_PROFILE_ATTRS = {"first_name", "last_name"}


def get_user(s: "Session", user_id: str) -> User:
    user = s.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def list_users(s: "Session") -> list[User]:
    return list(s.scalars(select(User).order_by(User.created_at.desc())))


def _apply_fields(s: "Session", user: User, payload: dict, fields: dict[str, str], *, action: str) -> User:
    changes = {}
    for key, attr in fields.items():
        if key not in payload:
            continue
        val = clean_str(payload.get(key))
        if attr in REQUIRED_PROFILE_ATTRS and not val:
            raise ValidationFailed(f"{key} is required")
        if val != getattr(user, attr):
            changes[attr] = {"old": getattr(user, attr), "new": val}
            setattr(user, attr, val)
    if changes:
        record_event(s, actor=user, action=action, entity_type="User", entity_id=user.id, metadata={"changes": changes})
    return user


def update_profile(s: "Session", *, user: User, payload: dict) -> User:
    return _apply_fields(s, user, payload, PROFILE_FIELDS, action="user.profile_update")


def update_committee_profile(s: "Session", *, user: User, payload: dict) -> User:
    if not is_committee(user):
        raise Unauthorized("Only committee members have a committee profile")
    return _apply_fields(s, user, payload, COMMITTEE_PROFILE_FIELDS, action="user.committee_profile_update")


def change_password(s: "Session", *, user: User, current_password: str, new_password: str) -> None:
    current_password = parse_str(current_password, field="currentPassword", strip=False)
    new_password = parse_str(new_password, field="newPassword", strip=False)
    if not check_password_hash(user.password_hash, current_password):
        raise ValidationFailed("Current password is incorrect")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    user.password_hash = generate_password_hash(new_password)
    record_event(s, actor=user, action="user.password_change", entity_type="User", entity_id=user.id)


# ---------- Email verification ----------
def issue_verification_code(s: "Session", *, user: User) -> str:
    """Create or replace the user's 6-digit code; valid for 15 minutes."""
    code = str(secrets.randbelow(900000) + 100000)
    expires_at = datetime.utcnow() + timedelta(minutes=VERIFICATION_CODE_TTL_MINUTES)
    row = s.get(EmailVerification, user.id)
    if row is None:
        s.add(EmailVerification(user_id=user.id, code=code, expires_at=expires_at))
    else:
        row.code = code
        row.expires_at = expires_at
        row.created_at = datetime.utcnow()
    record_event(s, actor=user, action="auth.verification_issued", entity_type="User", entity_id=user.id)
    return code


def resend_verification_code(s: "Session", *, user_id: str) -> tuple[User, str]:
    user_id = parse_str(user_id, field="userId")
    if not user_id:
        raise ValidationFailed("Missing userId")
    user = get_user(s, user_id)
    if user.email_verified:
        raise ValidationFailed("Email is already verified")
    return user, issue_verification_code(s, user=user)


def verify_email(s: "Session", *, user_id: str, code: str) -> User:
    user_id = parse_str(user_id, field="userId")
    code = parse_str(code, field="code")
    if not user_id or not code:
        raise ValidationFailed("Missing userId or code")

    row = s.get(EmailVerification, user_id)
    if row is None or row.expires_at < datetime.utcnow() or not secrets.compare_digest(row.code, code):
        raise InvalidCode()

    user = get_user(s, user_id)
    user.email_verified = True
    s.delete(row)
    record_event(s, actor=user, action="auth.email_verified", entity_type="User", entity_id=user.id)
    return user


def send_verification_code(user: User, code: str) -> bool:
    return notify_member(
        user.email,
        "Verify your climbing club email address",
        f"Hi {user.first_name},\n\nYour verification code is: {code}\n\n"
        f"This code expires in {VERIFICATION_CODE_TTL_MINUTES} minutes.\n\n"
        "If you did not register for the climbing club, please ignore this email.",
    )


def send_welcome(user: User) -> bool:
    return notify_member(
        user.email,
        "Welcome to the climbing club!",
        f"Hi {user.first_name},\n\nYour email has been verified and your registration is complete.",
    )


# ---------- Password reset ----------
def _token_hash(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def request_password_reset(s: "Session", *, email: str) -> tuple[User, str] | None:
    """
    Issue a reset token for the account with this email, replacing any earlier
    one. Returns None for unknown emails; callers must answer the same way in
    both cases.
    """
    email = parse_str(email, field="email").lower()
    if not email:
        raise ValidationFailed("Email is required")
    user = s.scalars(select(User).where(User.email == email)).one_or_none()
    if user is None:
        logger.info("Password reset requested for unknown email")
        return None

    s.execute(delete(PasswordReset).where(PasswordReset.user_id == user.id))
    token = secrets.token_urlsafe(32)
    s.add(
        PasswordReset(
            token_hash=_token_hash(token),
            user_id=user.id,
            expires_at=datetime.utcnow() + timedelta(minutes=PASSWORD_RESET_TTL_MINUTES),
        )
    )
    record_event(s, actor=user, action="auth.password_reset_requested", entity_type="User", entity_id=user.id)
    return user, token


def reset_password(s: "Session", *, token: str, new_password: str) -> User:
    token = parse_str(token, field="token")
    new_password = parse_str(new_password, field="newPassword", strip=False)
    if not token or not new_password:
        raise ValidationFailed("Token and new password are required")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    token_hash = _token_hash(token)
    row = s.get(PasswordReset, token_hash)
    if row is None or row.expires_at < datetime.utcnow():
        raise InvalidToken()
    user_id = row.user_id

    # The delete decides which of two concurrent uses wins.
    res = s.execute(delete(PasswordReset).where(PasswordReset.token_hash == token_hash))
    if res.rowcount != 1:
        raise InvalidToken()

    user = get_user(s, user_id)
    user.password_hash = generate_password_hash(new_password)
    record_event(s, actor=user, action="auth.password_reset", entity_type="User", entity_id=user.id)
    return user


def send_password_reset(user: User, token: str) -> bool:
    link = f"{current_app.config.get('APP_URL') or ''}/login.html?reset_token={token}"
    return notify_member(
        user.email,
        "Reset your climbing club password",
        f"Hi {user.first_name},\n\nUse the link below to reset your password "
        f"(expires in {PASSWORD_RESET_TTL_MINUTES} minutes):\n\n{link}\n\n"
        "If you did not request a password reset, please ignore this email.",
    )


# ---------- Committee roles ----------
def _validate_roles(roles) -> list[str]:
    if roles is None:
        return []
    if not isinstance(roles, (list, tuple)):
        raise ValidationFailed("roles must be a list")
    unknown = [r for r in roles if r not in COMMITTEE_ROLES]
    if unknown:
        raise ValidationFailed(f"Unknown committee role(s): {', '.join(map(str, unknown))}")
    return [r for r in COMMITTEE_ROLES if r in set(roles)]


def set_committee_roles(s: "Session", *, user_id: str, roles, actor: User) -> User:
    """Replace the user's committee role set. A non-empty set implies committee."""
    user = get_user(s, user_id)
    wanted = _validate_roles(roles)
    old = user.committee_role_names

    user.committee_roles = [r for r in user.committee_roles if r.role in wanted]
    held = {r.role for r in user.committee_roles}
    for role in wanted:
        if role not in held:
            user.committee_roles.append(CommitteeRole(role=role))
    if wanted:
        user.role = ROLE_COMMITTEE

    record_event(
        s,
        actor=actor,
        action="user.committee_roles",
        entity_type="User",
        entity_id=user.id,
        metadata={"roles": {"old": old, "new": wanted}},
    )
    return user


def promote_user(s: "Session", *, user_id: str, actor: User, roles=None) -> User:
    user = get_user(s, user_id)
    old = user.role
    user.role = ROLE_COMMITTEE
    record_event(s, actor=actor, action="user.promote", entity_type="User", entity_id=user.id, metadata={"role": {"old": old, "new": user.role}})
    if roles:
        set_committee_roles(s, user_id=user.id, roles=roles, actor=actor)
    return user


def demote_user(s: "Session", *, user_id: str, actor: User) -> User:
    if not is_root_admin(actor):
        raise Unauthorized("Only Root Admin can demote committee members")
    user = get_user(s, user_id)
    if is_root_admin(user):
        raise Unauthorized("The root admin cannot be demoted")
    old_roles = user.committee_role_names
    user.committee_roles = []
    user.role = ROLE_MEMBER
    record_event(s, actor=actor, action="user.demote", entity_type="User", entity_id=user.id, metadata={"roles": old_roles})
    return user


# ---------- Deletion ----------
def delete_user(s: "Session", *, user_id: str, actor: User) -> None:
    """
    Remove a user and everything hanging off it in the current transaction:
    bookings (slots are given back), votes cast by or for the user, referendum
    votes, candidacy, gear requests, committee roles and memberships.
    """
    user = get_user(s, user_id)
    if is_root_admin(user):
        raise Unauthorized("The root admin account cannot be deleted")
    if actor.id != user.id:
        if not is_committee(actor):
            raise Unauthorized()
        if is_committee(user) and not is_root_admin(actor):
            raise Unauthorized("Only Root Admin can delete committee members")

    released = release_user_bookings(s, user.id)
    s.execute(delete(Vote).where(or_(Vote.user_id == user.id, Vote.candidate_id == user.id)))
    s.execute(delete(ReferendumVote).where(ReferendumVote.user_id == user.id))
    s.execute(delete(Candidate).where(Candidate.user_id == user.id))
    # Outstanding loans are dropped without restocking.
    s.execute(delete(GearRequest).where(GearRequest.user_id == user.id))
    s.execute(delete(UserMembership).where(UserMembership.user_id == user.id))
    s.execute(delete(EmailVerification).where(EmailVerification.user_id == user.id))
    s.execute(delete(PasswordReset).where(PasswordReset.user_id == user.id))
    s.execute(
        update(Referendum)
        .where(Referendum.created_by_user_id == user.id)
        .values(created_by_user_id=None)
        .execution_options(synchronize_session=False)
    )

    record_event(
        s,
        actor=actor,
        action="user.delete",
        entity_type="User",
        entity_id=user.id,
        metadata={"email": user.email, "released_bookings": released},
    )
    logger.info("User %s deleted by %s", user.email, actor.email)
    s.delete(user)


# ---------- Read models ----------
def verify_member(s: "Session", identifier: str) -> dict:
    """Public membership check by user id or registration number."""
    ident = (identifier or "").strip()
    if not ident:
        raise NotFound("Member not found")
    user = s.get(User, ident) or s.scalars(select(User).where(User.registration_number == ident)).first()
    if user is None:
        raise NotFound("Member not found")
    return {
        "name": user.name,
        "membershipStatus": user.membership_status,
        "membershipYear": user.membership_year,
        "expiry": membership_expiry_label(user.membership_year),
    }


def list_committee(s: "Session") -> list[dict]:
    users = [u for u in s.scalars(select(User).order_by(User.last_name.asc())) if u.committee_role_names]
    users.sort(key=lambda u: COMMITTEE_ROLES.index(u.primary_committee_role))
    return [
        {
            "id": u.id,
            "name": u.name,
            "roles": u.committee_role_names,
            "primaryRole": u.primary_committee_role,
            "pronouns": u.pronouns,
            "instagram": u.instagram,
            "faveCrag": u.fave_crag,
            "bio": u.bio,
        }
        for u in users
    ]


def serialize_user(user: User, *, include_private: bool = True) -> dict:
    out = {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "name": user.name,
        "role": ROLE_COMMITTEE if is_committee(user) else user.role,
        "committeeRoles": user.committee_role_names,
        "committeeRole": user.primary_committee_role,
        "membershipStatus": user.membership_status,
        "membershipYear": user.membership_year,
        "isRootAdmin": is_root_admin(user),
        "emailVerified": bool(user.email_verified),
    }
    if include_private:
        out.update(
            {
                "registrationNumber": user.registration_number,
                "emergencyContactName": user.emergency_contact_name,
                "emergencyContactMobile": user.emergency_contact_mobile,
                "pronouns": user.pronouns,
                "dietaryRequirements": user.dietary_requirements,
                "instagram": user.instagram,
                "faveCrag": user.fave_crag,
                "bio": user.bio,
                "calendarToken": user.calendar_token,
            }
        )
    return out
