"""Tests for email verification and password reset."""
import re
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select
from werkzeug.security import generate_password_hash

from app.climbclub import accounts, auth, create_app
from app.climbclub.db import session_scope
from app.climbclub.models import Base, EmailVerification, PasswordReset, User
from app.climbclub.modules.membership.models import MembershipType

ADMIN = "admin@club.test"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    monkeypatch.setenv("EMAIL_VERIFICATION_REQUIRED", "1")
    monkeypatch.setenv("ROOT_ADMIN_EMAIL", ADMIN)
    monkeypatch.setenv("APP_URL", "https://club.test")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(MembershipType(id="basic", label="Basic"))
        s.add(
            User(
                email="bob@club.test",
                password_hash=generate_password_hash("old-password"),
                first_name="Bob",
                last_name="Tester",
                membership_status="active",
            )
        )
    yield app
    auth._login_attempts.clear()


@pytest.fixture()
def outbox(monkeypatch):
    sent = []

    def _capture(to, subject, text, html=None):
        sent.append({"to": to, "subject": subject, "text": text})
        return True

    monkeypatch.setattr(accounts, "notify_member", _capture)
    return sent


def _register(client, email="alice@club.test"):
    return client.post(
        "/api/auth/register",
        json={"firstName": "Alice", "lastName": "Tester", "email": email, "password": "pw123456"},
    )


def _code(outbox):
    return re.search(r"code is: (\d{6})", outbox[-1]["text"]).group(1)


def _reset_token(outbox):
    return re.search(r"reset_token=(\S+)", outbox[-1]["text"]).group(1)


def _expire(app, model, **where):
    with session_scope(app) as s:
        for row in s.scalars(select(model).filter_by(**where)):
            row.expires_at = datetime.utcnow() - timedelta(minutes=1)


def test_registration_waits_for_email_code(app, outbox):
    c = app.test_client()
    r = _register(c)
    assert r.status_code == 201
    assert r.json["pendingVerification"] is True
    user_id = r.json["userId"]
    assert outbox[-1]["to"] == "alice@club.test"
    assert c.get("/api/auth/me").status_code == 401

    r = c.post("/api/auth/login", json={"email": "alice@club.test", "password": "pw123456"})
    assert r.status_code == 403
    assert r.json["code"] == "EmailNotVerified"
    assert r.json["userId"] == user_id

    code = _code(outbox)
    wrong = "000000" if code != "000000" else "111111"
    r = c.post("/api/auth/verify-email", json={"userId": user_id, "code": wrong})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidCode"

    r = c.post("/api/auth/verify-email", json={"userId": user_id, "code": code})
    assert r.status_code == 200
    assert r.json["email"] == "alice@club.test"
    assert c.get("/api/auth/me").status_code == 200
    assert "Welcome" in outbox[-1]["subject"]

    r = app.test_client().post("/api/auth/login", json={"email": "alice@club.test", "password": "pw123456"})
    assert r.status_code == 200

    # A code works once.
    r = c.post("/api/auth/verify-email", json={"userId": user_id, "code": code})
    assert r.json["code"] == "InvalidCode"


def test_expired_code_and_resend(app, outbox):
    c = app.test_client()
    user_id = _register(c).json["userId"]
    code = _code(outbox)
    _expire(app, EmailVerification, user_id=user_id)

    r = c.post("/api/auth/verify-email", json={"userId": user_id, "code": code})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidCode"

    r = c.post("/api/auth/request-verification", json={"userId": user_id})
    assert r.status_code == 200
    with session_scope(app) as s:
        assert s.get(EmailVerification, user_id).expires_at > datetime.utcnow()

    r = c.post("/api/auth/verify-email", json={"userId": user_id, "code": _code(outbox)})
    assert r.status_code == 200

    r = c.post("/api/auth/request-verification", json={"userId": user_id})
    assert r.status_code == 400
    assert c.post("/api/auth/request-verification", json={"userId": "user_missing"}).status_code == 404


def test_verify_rejects_non_text_fields(app, outbox):
    r = app.test_client().post("/api/auth/verify-email", json={"userId": 5, "code": 123456})
    assert r.status_code == 400
    assert r.json["code"] == "ValidationFailed"


def test_root_admin_is_verified_on_registration(app, outbox):
    c = app.test_client()
    r = _register(c, email=ADMIN)
    assert r.status_code == 201
    assert r.json["isRootAdmin"] is True
    assert c.get("/api/auth/me").status_code == 200
    assert outbox == []


def test_forgot_password_does_not_reveal_accounts(app, outbox):
    c = app.test_client()
    unknown = c.post("/api/auth/forgot-password", json={"email": "nobody@club.test"})
    known = c.post("/api/auth/forgot-password", json={"email": "BOB@club.test"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.json == known.json
    assert [m["to"] for m in outbox] == ["bob@club.test"]
    assert "https://club.test/login.html?reset_token=" in outbox[0]["text"]

    assert c.post("/api/auth/forgot-password", json={}).status_code == 400


def test_reset_token_is_single_use(app, outbox):
    c = app.test_client()
    c.post("/api/auth/forgot-password", json={"email": "bob@club.test"})
    token = _reset_token(outbox)

    r = c.post("/api/auth/reset-password", json={"token": token, "newPassword": "short"})
    assert r.status_code == 400
    assert r.json["code"] == "ValidationFailed"

    r = c.post("/api/auth/reset-password", json={"token": token, "newPassword": "new-password"})
    assert r.status_code == 200

    r = c.post("/api/auth/reset-password", json={"token": token, "newPassword": "another-password"})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidToken"

    assert c.post("/api/auth/login", json={"email": "bob@club.test", "password": "old-password"}).status_code == 401
    assert c.post("/api/auth/login", json={"email": "bob@club.test", "password": "new-password"}).status_code == 200


def test_expired_and_superseded_reset_tokens(app, outbox):
    c = app.test_client()
    c.post("/api/auth/forgot-password", json={"email": "bob@club.test"})
    first = _reset_token(outbox)
    c.post("/api/auth/forgot-password", json={"email": "bob@club.test"})
    second = _reset_token(outbox)

    r = c.post("/api/auth/reset-password", json={"token": first, "newPassword": "new-password"})
    assert r.json["code"] == "InvalidToken"

    with session_scope(app) as s:
        bob_id = s.scalars(select(User.id).where(User.email == "bob@club.test")).one()
        assert len(list(s.scalars(select(PasswordReset).where(PasswordReset.user_id == bob_id)))) == 1
    _expire(app, PasswordReset, user_id=bob_id)

    r = c.post("/api/auth/reset-password", json={"token": second, "newPassword": "new-password"})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidToken"


def test_deleting_account_clears_outstanding_codes(app, outbox):
    c = app.test_client()
    c.post("/api/auth/forgot-password", json={"email": "bob@club.test"})
    bob = app.test_client()
    assert bob.post("/api/auth/login", json={"email": "bob@club.test", "password": "old-password"}).status_code == 200
    assert bob.delete("/api/users/me").status_code == 200

    with session_scope(app) as s:
        assert s.scalars(select(PasswordReset)).first() is None
