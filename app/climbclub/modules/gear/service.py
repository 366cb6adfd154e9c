"""
Gear lending service.

A request reserves nothing; stock moves only on approve (-1) and return (+1).
Both are conditional UPDATEs so concurrent approvals cannot drive
``available_quantity`` below zero or returns above ``total_quantity``.
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update

from app.climbclub.audit import record_event
from app.climbclub.constants import GEAR_APPROVED, GEAR_PENDING, GEAR_REJECTED, GEAR_RETURNED
from app.climbclub.errors import NotApproved, NotFound, NotPending, OutOfStock, ValidationFailed
from app.climbclub.models import User
from app.climbclub.utils import clean_str, parse_int

from .models import GearItem, GearRequest

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


# ---------- Catalog ----------
def list_gear(s: "Session") -> list[GearItem]:
    return list(s.scalars(select(GearItem).order_by(GearItem.name.asc())))


def get_gear(s: "Session", gear_id: str) -> GearItem:
    item = s.get(GearItem, gear_id)
    if item is None:
        raise NotFound("Gear not found")
    return item


def create_gear(s: "Session", payload: dict, user: User) -> GearItem:
    name = clean_str(payload.get("name"))
    if not name:
        raise ValidationFailed("Name is required")
    total = parse_int(payload.get("totalQuantity", 1), field="totalQuantity")
    if total < 0:
        raise ValidationFailed("totalQuantity must not be negative")

    item = GearItem(
        name=name,
        description=clean_str(payload.get("description")),
        total_quantity=total,
        available_quantity=total,
    )
    s.add(item)
    s.flush()
    record_event(
        s,
        actor=user,
        action="gear.create",
        entity_type="Gear",
        entity_id=item.id,
        metadata={"name": item.name, "total_quantity": total},
    )
    return item


def update_gear(s: "Session", gear_id: str, payload: dict, user: User) -> GearItem:
    """Kit-sec edit. ``availableQuantity`` is taken as given when supplied."""
    item = get_gear(s, gear_id)
    changes = {}

    def _set(attr: str, val):
        if val != getattr(item, attr):
            changes[attr] = {"old": getattr(item, attr), "new": val}
            setattr(item, attr, val)

    if "name" in payload:
        name = clean_str(payload.get("name"))
        if not name:
            raise ValidationFailed("Name is required")
        _set("name", name)
    if "description" in payload:
        _set("description", clean_str(payload.get("description")))

    total = item.total_quantity
    if payload.get("totalQuantity") is not None:
        total = parse_int(payload.get("totalQuantity"), field="totalQuantity")
        if total < 0:
            raise ValidationFailed("totalQuantity must not be negative")
    available = item.available_quantity
    if payload.get("availableQuantity") is not None:
        available = parse_int(payload.get("availableQuantity"), field="availableQuantity")
    if available < 0 or available > total:
        raise ValidationFailed("availableQuantity must be between 0 and totalQuantity")
    _set("total_quantity", total)
    _set("available_quantity", available)

    record_event(s, actor=user, action="gear.edit", entity_type="Gear", entity_id=item.id, metadata={"changes": changes})
    return item


def delete_gear(s: "Session", gear_id: str, user: User) -> None:
    item = get_gear(s, gear_id)
    s.execute(delete(GearRequest).where(GearRequest.gear_id == gear_id))
    record_event(s, actor=user, action="gear.delete", entity_type="Gear", entity_id=gear_id, metadata={"name": item.name})
    s.delete(item)


# ---------- Requests ----------
def get_request(s: "Session", request_id: str) -> GearRequest:
    req = s.get(GearRequest, request_id)
    if req is None:
        raise NotFound("Request not found")
    return req


def request_gear(s: "Session", *, user: User, gear_id: str) -> GearRequest:
    item = get_gear(s, gear_id)
    if item.available_quantity <= 0:
        raise OutOfStock()
    req = GearRequest(user_id=user.id, gear_id=gear_id, status=GEAR_PENDING, request_date=datetime.utcnow())
    s.add(req)
    s.flush()
    record_event(s, actor=user, action="gear.request", entity_type="GearRequest", entity_id=req.id, metadata={"gear_id": gear_id})
    return req


def _transition(s: "Session", req: GearRequest, *, from_status: str, to_status: str, **values) -> bool:
    res = s.execute(
        update(GearRequest)
        .where(GearRequest.id == req.id, GearRequest.status == from_status)
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def approve_request(s: "Session", *, request_id: str, actor: User) -> GearRequest:
    req = get_request(s, request_id)
    if req.status != GEAR_PENDING:
        raise NotPending()
    if not _transition(s, req, from_status=GEAR_PENDING, to_status=GEAR_APPROVED):
        raise NotPending()

    res = s.execute(
        update(GearItem)
        .where(GearItem.id == req.gear_id, GearItem.available_quantity > 0)
        .values(available_quantity=GearItem.available_quantity - 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise OutOfStock()
    s.refresh(req)
    s.refresh(req.gear)

    record_event(
        s,
        actor=actor,
        action="gear.approve",
        entity_type="GearRequest",
        entity_id=req.id,
        metadata={"gear_id": req.gear_id, "available_quantity": req.gear.available_quantity},
    )
    return req


def reject_request(s: "Session", *, request_id: str, actor: User) -> GearRequest:
    req = get_request(s, request_id)
    if req.status != GEAR_PENDING:
        raise NotPending()
    if not _transition(s, req, from_status=GEAR_PENDING, to_status=GEAR_REJECTED):
        raise NotPending()
    s.refresh(req)
    record_event(s, actor=actor, action="gear.reject", entity_type="GearRequest", entity_id=req.id, metadata={"gear_id": req.gear_id})
    return req


def return_gear(s: "Session", *, request_id: str, actor: User) -> GearRequest:
    req = get_request(s, request_id)
    if req.status != GEAR_APPROVED:
        raise NotApproved()
    if not _transition(s, req, from_status=GEAR_APPROVED, to_status=GEAR_RETURNED, return_date=datetime.utcnow()):
        raise NotApproved()

    s.execute(
        update(GearItem)
        .where(GearItem.id == req.gear_id, GearItem.available_quantity < GearItem.total_quantity)
        .values(available_quantity=GearItem.available_quantity + 1)
        .execution_options(synchronize_session=False)
    )
    s.refresh(req)
    s.refresh(req.gear)

    record_event(
        s,
        actor=actor,
        action="gear.return",
        entity_type="GearRequest",
        entity_id=req.id,
        metadata={"gear_id": req.gear_id, "available_quantity": req.gear.available_quantity},
    )
    return req


def list_requests(s: "Session", *, status: str | None = None) -> list[GearRequest]:
    q = select(GearRequest)
    if status:
        q = q.where(GearRequest.status == status)
    return list(s.scalars(q.order_by(GearRequest.request_date.desc())))


def list_my_requests(s: "Session", user_id: str) -> list[GearRequest]:
    return list(
        s.scalars(select(GearRequest).where(GearRequest.user_id == user_id).order_by(GearRequest.request_date.desc()))
    )


def serialize_gear(item: GearItem) -> dict:
    return {
        "id": item.id,
        "name": item.name,
        "description": item.description,
        "totalQuantity": item.total_quantity,
        "availableQuantity": item.available_quantity,
    }


def serialize_request(req: GearRequest, user: User | None = None) -> dict:
    out = {
        "id": req.id,
        "userId": req.user_id,
        "gearId": req.gear_id,
        "gearName": req.gear.name if req.gear else None,
        "status": req.status,
        "requestDate": req.request_date.isoformat() if req.request_date else None,
        "returnDate": req.return_date.isoformat() if req.return_date else None,
    }
    if user is not None:
        out["userName"] = user.name
        out["userEmail"] = user.email
    return out
