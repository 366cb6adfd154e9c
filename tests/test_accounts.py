"""Tests for account administration."""
import pytest
from sqlalchemy import func, select
from werkzeug.security import generate_password_hash

from app.climbclub import create_app
from app.climbclub.db import session_scope
from app.climbclub.models import Base, CommitteeRole, User
from app.climbclub.modules.elections.models import Candidate, Vote
from app.climbclub.modules.gear.models import GearItem, GearRequest
from app.climbclub.modules.membership.models import MembershipType, UserMembership
from app.climbclub.modules.sessions.models import Booking, ClubSession, SessionType
from app.climbclub.utils import academic_year

ADMIN = "admin@club.test"


def _user(s, email, *, roles=(), registration_number=None):
    u = User(
        email=email,
        password_hash=generate_password_hash("pw"),
        first_name=email.split("@")[0].title(),
        last_name="Tester",
        role="committee" if roles else "member",
        membership_status="active",
        membership_year="2026/2027",
        registration_number=registration_number,
    )
    for r in roles:
        u.committee_roles.append(CommitteeRole(role=r))
    s.add(u)
    s.flush()
    s.add(UserMembership(user_id=u.id, membership_type="basic", membership_year=academic_year(), status="active"))
    return u


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    monkeypatch.setenv("ROOT_ADMIN_EMAIL", ADMIN)

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(MembershipType(id="basic", label="Basic"))
        s.add(SessionType(id="Social", label="Social"))
        _user(s, ADMIN)
        _user(s, "chair@club.test", roles=("Chair",))
        _user(s, "kit@club.test", roles=("Kit & Safety Sec", "Publicity"))
        _user(s, "alice@club.test", registration_number="R-1001")
        _user(s, "bob@club.test")
    return app


def _login(app, email, password="pw"):
    c = app.test_client()
    r = c.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.json
    return c


def _uid(app, email):
    with session_scope(app) as s:
        return s.scalars(select(User.id).where(User.email == email)).one()


def test_promote_and_set_roles(app):
    bob_id = _uid(app, "bob@club.test")
    chair = _login(app, "chair@club.test")

    r = chair.post(f"/api/admin/users/{bob_id}/promote", json={"roles": ["Treasurer"]})
    assert r.status_code == 200
    assert r.json["role"] == "committee"
    assert r.json["committeeRoles"] == ["Treasurer"]

    r = chair.put(f"/api/admin/users/{bob_id}/committee-roles", json={"roles": ["Social Sec", "Secretary"]})
    assert r.json["committeeRoles"] == ["Secretary", "Social Sec"]
    assert r.json["committeeRole"] == "Secretary"

    r = chair.put(f"/api/admin/users/{bob_id}/committee-roles", json={"roles": ["Wizard"]})
    assert r.status_code == 400


def test_only_root_admin_demotes(app):
    kit_id = _uid(app, "kit@club.test")
    assert _login(app, "chair@club.test").post(f"/api/admin/users/{kit_id}/demote").status_code == 403

    admin = _login(app, ADMIN)
    r = admin.post(f"/api/admin/users/{kit_id}/demote")
    assert r.status_code == 200
    assert r.json["role"] == "member"
    assert r.json["committeeRoles"] == []

    r = admin.post(f"/api/admin/users/{_uid(app, ADMIN)}/demote")
    assert r.status_code == 403


def test_delete_user_cascades_and_releases_slots(app):
    alice_id = _uid(app, "alice@club.test")
    bob_id = _uid(app, "bob@club.test")
    with session_scope(app) as s:
        s.add(ClubSession(id="sess_1", type="Social", title="Social", starts_at="2026-10-20T18:00:00", capacity=3))
        s.add(GearItem(id="gear_1", name="Rope", total_quantity=1, available_quantity=1))

    alice = _login(app, "alice@club.test")
    assert alice.post("/api/sessions/sess_1/book").status_code == 200
    assert alice.post("/api/gear/gear_1/request").status_code == 201
    with session_scope(app) as s:
        s.add(Candidate(user_id=alice_id, role="Chair", manifesto="Vote me"))
        s.flush()
        s.add(Vote(user_id=bob_id, candidate_id=alice_id))

    r = alice.delete("/api/users/me")
    assert r.status_code == 200

    with session_scope(app) as s:
        assert s.get(User, alice_id) is None
        assert s.get(ClubSession, "sess_1").booked_slots == 0
        for model, col in ((Booking, Booking.user_id), (GearRequest, GearRequest.user_id), (UserMembership, UserMembership.user_id)):
            assert s.scalar(select(func.count()).select_from(model).where(col == alice_id)) == 0
        assert s.scalar(select(func.count()).select_from(Vote)) == 0
        assert s.get(Candidate, alice_id) is None

    assert alice.get("/api/auth/me").status_code == 401


def test_delete_permissions(app):
    chair = _login(app, "chair@club.test")
    assert chair.delete(f"/api/admin/users/{_uid(app, 'kit@club.test')}").status_code == 403
    assert chair.delete(f"/api/admin/users/{_uid(app, ADMIN)}").status_code == 403
    assert chair.delete(f"/api/admin/users/{_uid(app, 'bob@club.test')}").status_code == 200

    admin = _login(app, ADMIN)
    assert admin.delete(f"/api/admin/users/{_uid(app, 'kit@club.test')}").status_code == 200
    assert admin.delete("/api/users/me").status_code == 403


def test_profile_and_password(app):
    alice = _login(app, "alice@club.test")
    r = alice.put("/api/users/me", json={"pronouns": "she/her", "emergencyContactName": "Mum", "email": "ignored@x.test"})
    assert r.status_code == 200
    assert r.json["pronouns"] == "she/her"
    assert r.json["email"] == "alice@club.test"

    assert alice.put("/api/users/me", json={"firstName": " "}).status_code == 400

    r = alice.post("/api/users/me/password", json={"currentPassword": "wrong", "newPassword": "longenough"})
    assert r.status_code == 400
    r = alice.post("/api/users/me/password", json={"currentPassword": "pw", "newPassword": "short"})
    assert r.status_code == 400
    r = alice.post("/api/users/me/password", json={"currentPassword": "pw", "newPassword": "longenough"})
    assert r.status_code == 200
    _login(app, "alice@club.test", "longenough")


def test_verify_member(app):
    c = app.test_client()
    r = c.get("/api/verify/R-1001")
    assert r.status_code == 200
    assert r.json == {
        "name": "Alice Tester",
        "membershipStatus": "active",
        "membershipYear": "2026/2027",
        "expiry": "31 Aug 2027",
    }
    assert c.get(f"/api/verify/{_uid(app, 'bob@club.test')}").json["name"] == "Bob Tester"
    assert c.get("/api/verify/unknown").status_code == 404


def test_committee_listing_and_profile(app):
    c = app.test_client()
    listing = c.get("/api/committee").json
    assert [m["primaryRole"] for m in listing] == ["Chair", "Publicity"]
    assert listing[1]["roles"] == ["Publicity", "Kit & Safety Sec"]

    kit = _login(app, "kit@club.test")
    r = kit.put("/api/committee/me", json={"faveCrag": "Stanage", "bio": "Knots."})
    assert r.status_code == 200
    assert r.json["faveCrag"] == "Stanage"

    assert _login(app, "alice@club.test").put("/api/committee/me", json={"bio": "x"}).status_code == 403
