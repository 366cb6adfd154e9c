"""Tests for gear lending."""
import pytest
from werkzeug.security import generate_password_hash

from app.climbclub import create_app
from app.climbclub.db import session_scope
from app.climbclub.models import Base, CommitteeRole, User
from app.climbclub.modules.gear.models import GearItem


def _user(s, email, *, roles=()):
    u = User(
        email=email,
        password_hash=generate_password_hash("pw"),
        first_name=email.split("@")[0].title(),
        last_name="Tester",
        role="committee" if roles else "member",
        membership_status="active",
    )
    for r in roles:
        u.committee_roles.append(CommitteeRole(role=r))
    s.add(u)
    return u


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ROOT_ADMIN_EMAIL", "admin@club.test")
    monkeypatch.setenv("CSRF_ENABLED", "0")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        _user(s, "kit@club.test", roles=("Kit & Safety Sec",))
        _user(s, "chair@club.test", roles=("Chair",))
        for name in ("alice", "bob", "carol"):
            _user(s, f"{name}@club.test")
        s.add(GearItem(id="gear_rope", name="60m rope", total_quantity=2, available_quantity=2))
    return app


def _login(app, email):
    c = app.test_client()
    r = c.post("/api/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200, r.json
    return c


def _stock(app, gear_id="gear_rope"):
    with session_scope(app) as s:
        return s.get(GearItem, gear_id).available_quantity


def test_stock_scenario(app):
    kit = _login(app, "kit@club.test")

    r = _login(app, "alice@club.test").post("/api/gear/gear_rope/request")
    assert r.status_code == 201
    assert r.json["status"] == "pending"
    assert _stock(app) == 2

    assert kit.post(f"/api/gear/requests/{r.json['id']}/approve").status_code == 200
    assert _stock(app) == 1

    r = _login(app, "bob@club.test").post("/api/gear/gear_rope/request")
    assert r.status_code == 201
    assert _stock(app) == 1
    assert kit.post(f"/api/gear/requests/{r.json['id']}/approve").status_code == 200
    assert _stock(app) == 0

    r = _login(app, "carol@club.test").post("/api/gear/gear_rope/request")
    assert r.status_code == 400
    assert r.json["code"] == "OutOfStock"


def test_approve_then_return_restores_stock(app):
    kit = _login(app, "kit@club.test")
    alice = _login(app, "alice@club.test")
    req_id = alice.post("/api/gear/gear_rope/request").json["id"]

    assert kit.post(f"/api/gear/requests/{req_id}/approve").status_code == 200
    r = kit.post(f"/api/gear/requests/{req_id}/return")
    assert r.status_code == 200
    assert r.json["status"] == "returned"
    assert r.json["returnDate"]
    assert _stock(app) == 2

    mine = alice.get("/api/gear/requests/me").json
    assert [x["status"] for x in mine] == ["returned"]


def test_invalid_transitions(app):
    kit = _login(app, "kit@club.test")
    req_id = _login(app, "alice@club.test").post("/api/gear/gear_rope/request").json["id"]

    r = kit.post(f"/api/gear/requests/{req_id}/return")
    assert r.status_code == 400
    assert r.json["code"] == "NotApproved"

    assert kit.post(f"/api/gear/requests/{req_id}/reject").status_code == 200
    assert _stock(app) == 2

    r = kit.post(f"/api/gear/requests/{req_id}/approve")
    assert r.status_code == 400
    assert r.json["code"] == "NotPending"

    r = kit.post("/api/gear/requests/req_missing/approve")
    assert r.status_code == 404


def test_approve_with_no_stock_left(app):
    kit = _login(app, "kit@club.test")
    first = _login(app, "alice@club.test").post("/api/gear/gear_rope/request").json["id"]
    second = _login(app, "bob@club.test").post("/api/gear/gear_rope/request").json["id"]
    third = _login(app, "carol@club.test").post("/api/gear/gear_rope/request").json["id"]

    assert kit.post(f"/api/gear/requests/{first}/approve").status_code == 200
    assert kit.post(f"/api/gear/requests/{second}/approve").status_code == 200
    r = kit.post(f"/api/gear/requests/{third}/approve")
    assert r.status_code == 400
    assert r.json["code"] == "OutOfStock"
    assert _stock(app) == 0

    pending = kit.get("/api/gear/requests?status=pending").json
    assert [x["id"] for x in pending] == [third]


def test_gear_crud_requires_kit_sec(app):
    chair = _login(app, "chair@club.test")
    r = chair.post("/api/gear", json={"name": "Harness", "totalQuantity": 4})
    assert r.status_code == 403

    kit = _login(app, "kit@club.test")
    r = kit.post("/api/gear", json={"name": "Harness", "description": "Size M", "totalQuantity": 4})
    assert r.status_code == 201
    gear_id = r.json["id"]
    assert r.json["availableQuantity"] == 4

    r = kit.put(f"/api/gear/{gear_id}", json={"availableQuantity": 1})
    assert r.status_code == 200
    assert r.json["availableQuantity"] == 1

    r = kit.put(f"/api/gear/{gear_id}", json={"availableQuantity": 5})
    assert r.status_code == 400

    assert kit.delete(f"/api/gear/{gear_id}").status_code == 200
    names = [g["name"] for g in _login(app, "alice@club.test").get("/api/gear").json]
    assert names == ["60m rope"]


def test_root_admin_counts_as_kit_sec(app):
    with session_scope(app) as s:
        _user(s, "admin@club.test")
    r = _login(app, "admin@club.test").post("/api/gear", json={"name": "Quickdraws", "totalQuantity": 10})
    assert r.status_code == 201
