"""
Committee elections and referendums.

Member writes (apply, withdraw, vote, referendum vote) require the
``elections_open`` switch. One vote per user per cycle and one candidacy per
user are primary keys; a losing concurrent insert surfaces as the same error
the pre-check raises.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from app.climbclub.audit import record_event
from app.climbclub.constants import REFERENDUM_CHOICES
from app.climbclub.errors import (
    AlreadyCandidate,
    AlreadyVoted,
    ElectionsClosed,
    InvalidChoice,
    NotFound,
    ValidationFailed,
    translate_integrity_error,
)
from app.climbclub.models import User
from app.climbclub.settings import elections_open, get_settings
from app.climbclub.utils import clean_str

from .models import Candidate, Referendum, ReferendumVote, Vote

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _require_open(s: "Session") -> None:
    if not elections_open(s):
        raise ElectionsClosed()


def _insert(s: "Session", row) -> None:
    try:
        with s.begin_nested():
            s.add(row)
            s.flush()
    except IntegrityError as e:
        raise translate_integrity_error(e) from e


# ---------- Status / switch ----------
def get_status(s: "Session", user: User | None) -> dict:
    out = {
        "electionsOpen": elections_open(s),
        "isCandidate": False,
        "candidateRole": None,
        "hasVoted": False,
        "votedFor": None,
    }
    if user is not None:
        candidate = s.get(Candidate, user.id)
        vote = s.get(Vote, user.id)
        out["isCandidate"] = candidate is not None
        out["candidateRole"] = candidate.role if candidate is not None else None
        out["hasVoted"] = vote is not None
        out["votedFor"] = vote.candidate_id if vote is not None else None
    return out


def set_elections_open(s: "Session", *, is_open: bool, actor: User) -> bool:
    row = get_settings(s)
    old = row.elections_open
    row.elections_open = bool(is_open)
    row.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=actor,
        action="elections.toggle",
        entity_type="ClubSettings",
        entity_id=str(row.id),
        metadata={"elections_open": {"old": old, "new": row.elections_open}},
    )
    return row.elections_open


# ---------- Candidates ----------
def get_candidates(s: "Session") -> list[dict]:
    counts = dict(s.execute(select(Vote.candidate_id, func.count()).group_by(Vote.candidate_id)).all())
    rows = s.execute(select(Candidate, User).join(User, User.id == Candidate.user_id).order_by(Candidate.created_at.asc())).all()
    return [
        {
            "userId": c.user_id,
            "name": u.name,
            "role": c.role,
            "manifesto": c.manifesto,
            "presentationLink": c.presentation_link,
            "votes": int(counts.get(c.user_id, 0)),
        }
        for c, u in rows
    ]


def apply_candidate(s: "Session", *, user: User, role: str, manifesto: str, presentation_link: str | None = None) -> Candidate:
    _require_open(s)
    role = clean_str(role)
    manifesto = clean_str(manifesto)
    if not role or not manifesto:
        raise ValidationFailed("Role and manifesto are required")
    if s.get(Candidate, user.id) is not None:
        raise AlreadyCandidate()

    candidate = Candidate(
        user_id=user.id,
        role=role,
        manifesto=manifesto,
        presentation_link=clean_str(presentation_link),
        created_at=datetime.utcnow(),
    )
    _insert(s, candidate)
    record_event(s, actor=user, action="election.apply", entity_type="Candidate", entity_id=user.id, metadata={"role": role})
    return candidate


def withdraw_candidate(s: "Session", *, user: User) -> bool:
    """Remove the caller's candidacy. Returns False when there was none."""
    _require_open(s)
    res = s.execute(delete(Candidate).where(Candidate.user_id == user.id))
    if res.rowcount == 0:
        return False
    record_event(s, actor=user, action="election.withdraw", entity_type="Candidate", entity_id=user.id)
    return True


def cast_vote(s: "Session", *, user: User, candidate_id: str) -> Vote:
    _require_open(s)
    if not isinstance(candidate_id, str) or not candidate_id:
        raise NotFound("Candidate not found")
    if s.get(Vote, user.id) is not None:
        raise AlreadyVoted()
    if s.get(Candidate, candidate_id) is None:
        raise NotFound("Candidate not found")

    vote = Vote(user_id=user.id, candidate_id=candidate_id, created_at=datetime.utcnow())
    _insert(s, vote)
    # No candidate id in the audit row.
    record_event(s, actor=user, action="election.vote", entity_type="Vote", entity_id=user.id)
    return vote


# ---------- Referendums ----------
def create_referendum(s: "Session", *, title: str, description: str | None, actor: User) -> Referendum:
    title = clean_str(title)
    if not title:
        raise ValidationFailed("Title is required")
    ref = Referendum(title=title, description=clean_str(description), created_at=datetime.utcnow(), created_by_user_id=actor.id)
    s.add(ref)
    s.flush()
    record_event(s, actor=actor, action="referendum.create", entity_type="Referendum", entity_id=ref.id, metadata={"title": title})
    return ref


def delete_referendum(s: "Session", *, referendum_id: str, actor: User) -> None:
    ref = s.get(Referendum, referendum_id)
    if ref is None:
        raise NotFound("Referendum not found")
    s.execute(delete(ReferendumVote).where(ReferendumVote.referendum_id == referendum_id))
    record_event(s, actor=actor, action="referendum.delete", entity_type="Referendum", entity_id=referendum_id, metadata={"title": ref.title})
    s.delete(ref)


def get_referendums(s: "Session", user: User | None) -> list[dict]:
    tallies: dict[str, dict[str, int]] = {}
    for ref_id, choice, n in s.execute(
        select(ReferendumVote.referendum_id, ReferendumVote.choice, func.count()).group_by(
            ReferendumVote.referendum_id, ReferendumVote.choice
        )
    ).all():
        tallies.setdefault(ref_id, {})[choice] = int(n)

    mine: dict[str, str] = {}
    if user is not None:
        mine = dict(s.execute(select(ReferendumVote.referendum_id, ReferendumVote.choice).where(ReferendumVote.user_id == user.id)).all())

    out = []
    for ref in s.scalars(select(Referendum).order_by(Referendum.created_at.desc())):
        counts = tallies.get(ref.id, {})
        out.append(
            {
                "id": ref.id,
                "title": ref.title,
                "description": ref.description,
                "createdAt": ref.created_at.isoformat() if ref.created_at else None,
                "counts": {c: counts.get(c, 0) for c in REFERENDUM_CHOICES},
                "myChoice": mine.get(ref.id),
            }
        )
    return out


def vote_referendum(s: "Session", *, user: User, referendum_id: str, choice: str) -> ReferendumVote:
    _require_open(s)
    if not isinstance(choice, str):
        raise InvalidChoice()
    choice = choice.strip().lower()
    if choice not in REFERENDUM_CHOICES:
        raise InvalidChoice()
    if s.get(Referendum, referendum_id) is None:
        raise NotFound("Referendum not found")
    if s.get(ReferendumVote, (user.id, referendum_id)) is not None:
        raise AlreadyVoted("You have already voted on this referendum")

    row = ReferendumVote(user_id=user.id, referendum_id=referendum_id, choice=choice, created_at=datetime.utcnow())
    _insert(s, row)
    record_event(s, actor=user, action="referendum.vote", entity_type="Referendum", entity_id=referendum_id)
    return row


# ---------- Reset ----------
def reset_election_cycle(s: "Session", *, actor: User) -> dict:
    """Clear votes, candidates and referendums and close elections, in one transaction."""
    cleared = {
        "votes": s.execute(delete(Vote)).rowcount,
        "referendumVotes": s.execute(delete(ReferendumVote)).rowcount,
        "referendums": s.execute(delete(Referendum)).rowcount,
        "candidates": s.execute(delete(Candidate)).rowcount,
    }
    row = get_settings(s)
    row.elections_open = False
    row.updated_at = datetime.utcnow()
    logger.info("Election cycle reset by %s: %s", actor.email, cleared)
    record_event(s, actor=actor, action="elections.reset", entity_type="ClubSettings", entity_id=str(row.id), metadata=cleared)
    return cleared
