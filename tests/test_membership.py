"""Tests for the membership lifecycle."""
import pytest
from sqlalchemy import func, select
from werkzeug.security import generate_password_hash

from app.climbclub import create_app
from app.climbclub.db import session_scope
from app.climbclub.models import Base, CommitteeRole, User
from app.climbclub.modules.membership import service as membership_service
from app.climbclub.modules.membership.models import MembershipType, UserMembership
from app.climbclub.modules.membership.service import should_replace_status, upsert_membership
from app.climbclub.utils import academic_year


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    monkeypatch.setenv("ROOT_ADMIN_EMAIL", "admin@club.test")
    monkeypatch.setenv("COMMITTEE_EMAIL_DOMAINS", "committee.club.test")
    monkeypatch.delenv("SMTP_SERVER", raising=False)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add_all(
            [
                MembershipType(id="basic", label="Basic"),
                MembershipType(id="bouldering", label="Bouldering"),
                MembershipType(id="comp_team", label="Comp Team"),
            ]
        )
        chair = User(
            email="chair@club.test",
            password_hash=generate_password_hash("pw"),
            first_name="Chair",
            last_name="Person",
            role="committee",
            membership_status="active",
        )
        chair.committee_roles.append(CommitteeRole(role="Chair"))
        s.add(chair)
    return app


def _register(client, email="alice@club.test", **extra):
    payload = {"firstName": "Alice", "lastName": "Tester", "email": email, "password": "pw123456"}
    payload.update(extra)
    return client.post("/api/auth/register", json=payload)


def _login(app, email, password="pw"):
    c = app.test_client()
    r = c.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return c


def _rows(app, email):
    with session_scope(app) as s:
        user = s.scalars(select(User).where(User.email == email)).one()
        return [(r.membership_type, r.membership_year, r.status) for r in s.scalars(select(UserMembership).where(UserMembership.user_id == user.id))]


def test_register_creates_pending_basic_row(app):
    r = _register(app.test_client())
    assert r.status_code == 201
    assert r.json["membershipStatus"] == "pending"
    assert r.json["role"] == "member"
    assert _rows(app, "alice@club.test") == [("basic", academic_year(), "pending")]


def test_register_with_selected_types(app):
    r = _register(app.test_client(), membershipTypes=["bouldering", "nonsense"])
    assert r.status_code == 201
    assert _rows(app, "alice@club.test") == [("bouldering", academic_year(), "pending")]


def test_committee_domain_registration_is_active(app):
    r = _register(app.test_client(), email="sec@committee.club.test")
    assert r.status_code == 201
    assert r.json["role"] == "committee"
    assert r.json["membershipStatus"] == "active"
    assert _rows(app, "sec@committee.club.test") == [("basic", academic_year(), "active")]


def test_duplicate_email(app):
    assert _register(app.test_client()).status_code == 201
    r = _register(app.test_client(), email="ALICE@club.test")
    assert r.status_code == 400
    assert r.json["code"] == "DuplicateEmail"


def test_approve_and_reject_user(app):
    user_id = _register(app.test_client()).json["id"]
    chair = _login(app, "chair@club.test")

    r = chair.post(f"/api/admin/users/{user_id}/approve")
    assert r.status_code == 200
    assert r.json["membershipStatus"] == "active"
    assert _rows(app, "alice@club.test") == [("basic", academic_year(), "active")]

    r = chair.post(f"/api/admin/users/{user_id}/reject")
    assert r.json["membershipStatus"] == "rejected"
    assert _rows(app, "alice@club.test") == [("basic", academic_year(), "rejected")]

    assert chair.post("/api/admin/users/user_missing/approve").status_code == 404


def test_member_cannot_approve(app):
    user_id = _register(app.test_client()).json["id"]
    r = _login(app, "alice@club.test", "pw123456").post(f"/api/admin/users/{user_id}/approve")
    assert r.status_code == 403


def test_row_approval_mirrors_basic_onto_user(app):
    _register(app.test_client())
    alice = _login(app, "alice@club.test", "pw123456")
    chair = _login(app, "chair@club.test")

    rows = chair.get("/api/admin/memberships?status=pending").json
    basic = next(r for r in rows if r["membershipType"] == "basic")
    assert basic["userEmail"] == "alice@club.test"

    assert chair.post(f"/api/admin/memberships/{basic['id']}/approve").status_code == 200
    assert alice.get("/api/auth/me").json["membershipStatus"] == "active"

    extra = alice.post("/api/users/me/memberships", json={"membershipType": "bouldering"}).json
    assert chair.post(f"/api/admin/memberships/{extra['id']}/reject").status_code == 200
    assert alice.get("/api/auth/me").json["membershipStatus"] == "active"

    assert chair.post("/api/admin/memberships/umem_missing/approve").status_code == 404


def test_deleting_only_active_basic_row_reverts_user(app):
    _register(app.test_client())
    chair = _login(app, "chair@club.test")
    basic = chair.get("/api/admin/memberships").json[0]
    chair.post(f"/api/admin/memberships/{basic['id']}/approve")

    assert chair.delete(f"/api/admin/memberships/{basic['id']}").status_code == 200
    me = _login(app, "alice@club.test", "pw123456").get("/api/auth/me").json
    assert me["membershipStatus"] == "pending"
    assert _rows(app, "alice@club.test") == []


def test_request_additional_membership(app):
    _register(app.test_client())
    alice = _login(app, "alice@club.test", "pw123456")

    r = alice.post("/api/users/me/memberships", json={"membershipType": "yoga"})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidType"

    r = alice.post("/api/users/me/memberships", json={"membershipType": "comp_team"})
    assert r.status_code == 201
    assert r.json["status"] == "pending"

    # Committee requests resolve to active
    r = _login(app, "chair@club.test").post("/api/users/me/memberships", json={"membershipType": "comp_team"})
    assert r.json["status"] == "active"


def test_priority_rule():
    assert should_replace_status("pending", "active")
    assert not should_replace_status("active", "pending")
    assert should_replace_status("rejected", "pending")
    assert not should_replace_status("pending", "rejected")
    assert not should_replace_status("active", "rejected")


def test_duplicate_request_collapses_to_one_row(app):
    _register(app.test_client())
    chair = _login(app, "chair@club.test")
    alice = _login(app, "alice@club.test", "pw123456")

    row = alice.post("/api/users/me/memberships", json={"membershipType": "comp_team"}).json
    chair.post(f"/api/admin/memberships/{row['id']}/approve")

    again = alice.post("/api/users/me/memberships", json={"membershipType": "comp_team"}).json
    assert again["id"] == row["id"]
    assert again["status"] == "active"
    assert _rows(app, "alice@club.test").count(("comp_team", academic_year(), "active")) == 1


def test_upsert_race_loser_applies_priority_rule(app, monkeypatch):
    _register(app.test_client())
    year = academic_year()
    with session_scope(app) as s:
        user_id = s.scalars(select(User.id).where(User.email == "alice@club.test")).one()
        s.add(UserMembership(user_id=user_id, membership_type="comp_team", membership_year=year, status="pending"))

    real_find = membership_service._find_membership
    calls = []

    def _miss_first(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            return None
        return real_find(*args, **kwargs)

    monkeypatch.setattr(membership_service, "_find_membership", _miss_first)

    with app.app_context(), session_scope(app) as s:
        row = upsert_membership(s, user_id=user_id, membership_type="comp_team", membership_year=year, status="active")
        assert row.status == "active"

    with session_scope(app) as s:
        n = s.scalar(
            select(func.count()).select_from(UserMembership).where(
                UserMembership.user_id == user_id, UserMembership.membership_type == "comp_team"
            )
        )
        assert n == 1


def test_renew_and_rerequest(app):
    _register(app.test_client())
    alice = _login(app, "alice@club.test", "pw123456")

    r = alice.post("/api/users/me/membership-renewal", json={})
    assert r.status_code == 400

    r = alice.post("/api/users/me/membership-renewal", json={"membershipYear": "2099/2100", "membershipTypes": ["basic", "bouldering"]})
    assert r.status_code == 200
    assert sorted(x["membershipType"] for x in r.json) == ["basic", "bouldering"]
    assert all(x["status"] == "pending" and x["membershipYear"] == "2099/2100" for x in r.json)
    assert alice.get("/api/auth/me").json["membershipYear"] == "2099/2100"

    r = alice.post("/api/users/me/membership-rerequest")
    assert r.status_code == 200
    assert r.json["membershipType"] == "basic"
    assert r.json["membershipYear"] == academic_year()
    me = alice.get("/api/auth/me").json
    assert me["membershipStatus"] == "pending"
    assert me["membershipYear"] == academic_year()


def test_membership_type_catalog(app):
    chair = _login(app, "chair@club.test")

    r = chair.post("/api/membership-types", json={"label": "Social Only"})
    assert r.status_code == 201
    assert r.json["id"] == "social_only"

    r = chair.post("/api/membership-types", json={"label": "Social only"})
    assert r.status_code == 400
    assert r.json["code"] == "AlreadyExists"

    r = chair.delete("/api/membership-types/basic")
    assert r.status_code == 400

    assert chair.put("/api/membership-types/social_only", json={"label": "Socials"}).status_code == 200
    assert chair.delete("/api/membership-types/social_only").status_code == 200
    ids = [t["id"] for t in app.test_client().get("/api/membership-types").json]
    assert "social_only" not in ids and "basic" in ids


def test_non_text_membership_types_are_rejected(app):
    r = _register(app.test_client(), membershipTypes=[{"id": "basic"}])
    assert r.status_code == 400
    assert r.json["code"] == "InvalidType"
    r = _register(app.test_client(), membershipTypes="basic")
    assert r.status_code == 400
    assert r.json["code"] == "InvalidType"

    r = _register(app.test_client(), firstName=5)
    assert r.status_code == 400
    assert r.json["code"] == "ValidationFailed"

    assert _register(app.test_client()).status_code == 201
    alice = _login(app, "alice@club.test", "pw123456")

    r = alice.post("/api/users/me/memberships", json={"membershipType": 7})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidType"

    r = alice.post("/api/users/me/membership-renewal", json={"membershipYear": "2099/2100", "membershipTypes": ["basic", 3]})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidType"

    r = alice.post("/api/users/me/membership-renewal", json={"membershipYear": 2099})
    assert r.status_code == 400
    assert r.json["code"] == "ValidationFailed"

    r = _login(app, "chair@club.test").post("/api/membership-types", json={"label": ["Trad"]})
    assert r.status_code == 400

    assert _rows(app, "alice@club.test") == [("basic", academic_year(), "pending")]


def test_basic_row_approval_sets_membership_year(app):
    user_id = _register(app.test_client()).json["id"]
    with session_scope(app) as s:
        old = UserMembership(user_id=user_id, membership_type="basic", membership_year="2020/2021", status="pending")
        s.add(old)
        s.flush()
        old_id = old.id

    chair = _login(app, "chair@club.test")
    r = chair.post(f"/api/admin/memberships/{old_id}/approve")
    assert r.status_code == 200

    me = _login(app, "alice@club.test", "pw123456").get("/api/auth/me").json
    assert me["membershipStatus"] == "active"
    assert me["membershipYear"] == "2020/2021"
