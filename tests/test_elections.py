"""Tests for elections and referendums."""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from app.climbclub import create_app
from app.climbclub.db import session_scope
from app.climbclub.errors import AlreadyVoted, translate_integrity_error
from app.climbclub.models import Base, ClubSettings, CommitteeRole, User
from app.climbclub.modules.elections.models import Candidate, Vote


def _user(s, email, *, committee=False):
    u = User(
        email=email,
        password_hash=generate_password_hash("pw"),
        first_name=email.split("@")[0].title(),
        last_name="Tester",
        role="committee" if committee else "member",
        membership_status="active",
    )
    if committee:
        u.committee_roles.append(CommitteeRole(role="Chair"))
    s.add(u)
    return u


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")

    app = create_app()
    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)

    with session_scope(app) as s:
        s.add(ClubSettings(id=1, elections_open=False))
        _user(s, "chair@club.test", committee=True)
        for name in ("alice", "bob", "carol"):
            _user(s, f"{name}@club.test")
    return app


def _login(app, email):
    c = app.test_client()
    r = c.post("/api/auth/login", json={"email": email, "password": "pw"})
    assert r.status_code == 200, r.json
    return c


def _user_id(app, email):
    with session_scope(app) as s:
        return s.scalars(select(User.id).where(User.email == email)).one()


def _open(app):
    r = _login(app, "chair@club.test").post("/api/admin/config/elections", json={"electionsOpen": True})
    assert r.status_code == 200
    assert r.json["electionsOpen"] is True


APPLY = {"role": "Treasurer", "manifesto": "Balanced books, more rope."}


def test_apply_gated_then_reset(app):
    alice = _login(app, "alice@club.test")

    r = alice.post("/api/voting/apply", json=APPLY)
    assert r.status_code == 403
    assert r.json["code"] == "ElectionsClosed"

    _open(app)
    assert alice.post("/api/voting/apply", json=APPLY).status_code == 201
    assert alice.get("/api/voting/status").json == {
        "electionsOpen": True,
        "isCandidate": True,
        "candidateRole": "Treasurer",
        "hasVoted": False,
        "votedFor": None,
    }

    r = _login(app, "chair@club.test").post("/api/voting/reset")
    assert r.status_code == 200
    assert r.json["cleared"]["candidates"] == 1

    status = alice.get("/api/voting/status").json
    assert status["electionsOpen"] is False
    assert status["isCandidate"] is False


def test_apply_twice(app):
    _open(app)
    alice = _login(app, "alice@club.test")
    assert alice.post("/api/voting/apply", json=APPLY).status_code == 201
    r = alice.post("/api/voting/apply", json=APPLY)
    assert r.status_code == 400
    assert r.json["code"] == "AlreadyCandidate"


def test_single_vote_per_user(app):
    _open(app)
    assert _login(app, "alice@club.test").post("/api/voting/apply", json=APPLY).status_code == 201
    alice_id = _user_id(app, "alice@club.test")

    bob = _login(app, "bob@club.test")
    assert bob.post("/api/voting/vote", json={"candidateId": alice_id}).status_code == 200
    status = bob.get("/api/voting/status").json
    assert status["hasVoted"] is True
    assert status["votedFor"] == alice_id
    assert status["candidateRole"] is None
    r = bob.post("/api/voting/vote", json={"candidateId": alice_id})
    assert r.status_code == 400
    assert r.json["code"] == "AlreadyVoted"

    assert _login(app, "carol@club.test").post("/api/voting/vote", json={"candidateId": alice_id}).status_code == 200

    candidates = app.test_client().get("/api/voting/candidates").json
    assert candidates[0]["votes"] == 2
    with session_scope(app) as s:
        assert s.scalar(select(func.count()).select_from(Vote)) == 2

    assert _login(app, "chair@club.test").post("/api/voting/reset").status_code == 200
    with session_scope(app) as s:
        assert s.scalar(select(func.count()).select_from(Vote)) == 0
        assert s.scalar(select(func.count()).select_from(Candidate)) == 0


def test_vote_for_unknown_candidate(app):
    _open(app)
    r = _login(app, "bob@club.test").post("/api/voting/vote", json={"candidateId": "user_nobody"})
    assert r.status_code == 404


def test_vote_requires_candidate_id_text(app):
    _open(app)
    bob = _login(app, "bob@club.test")
    r = bob.post("/api/voting/vote", json={"candidateId": {"id": "x"}})
    assert r.status_code == 404
    assert r.json["code"] == "NotFound"
    assert bob.get("/api/voting/status").json["hasVoted"] is False


def test_duplicate_vote_insert_maps_to_already_voted(app):
    bob_id = _user_id(app, "bob@club.test")
    alice_id = _user_id(app, "alice@club.test")
    with session_scope(app) as s:
        s.add(Vote(user_id=bob_id, candidate_id=alice_id))

    sm = app.extensions["sqlalchemy_sessionmaker"]
    s = sm()
    try:
        s.add(Vote(user_id=bob_id, candidate_id=alice_id))
        with pytest.raises(IntegrityError) as exc_info:
            s.flush()
        assert isinstance(translate_integrity_error(exc_info.value), AlreadyVoted)
    finally:
        s.rollback()
        s.close()


def test_withdraw(app):
    alice = _login(app, "alice@club.test")
    _open(app)
    assert alice.post("/api/voting/apply", json=APPLY).status_code == 201
    r = alice.post("/api/voting/withdraw")
    assert r.json == {"success": True, "withdrawn": True}
    r = alice.post("/api/voting/withdraw")
    assert r.json == {"success": True, "withdrawn": False}


def test_referendums(app):
    chair = _login(app, "chair@club.test")
    r = chair.post("/api/voting/referendums", json={"title": "Buy a new bouldering mat?"})
    assert r.status_code == 201
    ref_id = r.json["id"]

    alice = _login(app, "alice@club.test")
    r = alice.post(f"/api/voting/referendums/{ref_id}/vote", json={"choice": "yes"})
    assert r.status_code == 403

    _open(app)
    r = alice.post(f"/api/voting/referendums/{ref_id}/vote", json={"choice": "maybe"})
    assert r.status_code == 400
    assert r.json["code"] == "InvalidChoice"

    assert alice.post(f"/api/voting/referendums/{ref_id}/vote", json={"choice": "yes"}).status_code == 200
    r = alice.post(f"/api/voting/referendums/{ref_id}/vote", json={"choice": "no"})
    assert r.status_code == 400
    assert r.json["code"] == "AlreadyVoted"

    assert _login(app, "bob@club.test").post(f"/api/voting/referendums/{ref_id}/vote", json={"choice": "abstain"}).status_code == 200

    refs = alice.get("/api/voting/referendums").json
    assert refs[0]["counts"] == {"yes": 1, "no": 0, "abstain": 1}
    assert refs[0]["myChoice"] == "yes"

    assert chair.post("/api/voting/reset").status_code == 200
    assert alice.get("/api/voting/referendums").json == []


def test_reset_requires_committee(app):
    assert _login(app, "alice@club.test").post("/api/voting/reset").status_code == 403


def test_referendum_choice_must_be_text(app):
    ref_id = _login(app, "chair@club.test").post("/api/voting/referendums", json={"title": "New chalk bags?"}).json["id"]
    _open(app)
    alice = _login(app, "alice@club.test")

    for bad in (1, ["yes"], {"choice": "yes"}, True):
        r = alice.post(f"/api/voting/referendums/{ref_id}/vote", json={"choice": bad})
        assert r.status_code == 400, bad
        assert r.json["code"] == "InvalidChoice"

    assert alice.post(f"/api/voting/referendums/{ref_id}/vote", json={"choice": " Yes "}).status_code == 200
