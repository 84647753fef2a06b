# Overview: Service-layer operations for the order audit log; append-only writes and filtered reads.

"""
Order Audit Log Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- Exactly one event per successful order transition, never for a failed one.
- Events are written inside the same DB transaction as the transition they
  record. record_event() flushes but never commits; the transition commits.
- actor_user_id is mandatory.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderAuditEvent, User
from ..validation import ValidationError
from .pagination import paginate
from fuelops.time_utils import utcnow


ACTION_PAYMENT_CONFIRMATION = "payment_confirmation"
ACTION_RELEASE = "release"
ACTION_TRUCK_EXIT = "truck_exit"
ACTION_CANCEL = "cancel"
ACTION_PFI_ASSIGNMENT = "pfi_assignment"

VALID_ACTIONS = {
    ACTION_PAYMENT_CONFIRMATION,
    ACTION_RELEASE,
    ACTION_TRUCK_EXIT,
    ACTION_CANCEL,
    ACTION_PFI_ASSIGNMENT,
}


def record_event(
    *,
    order_id: int,
    action: str,
    actor_user_id: int,
    occurred_at: Optional[datetime] = None,
    narration: Optional[str] = None,
    payload: Optional[dict] = None,
) -> OrderAuditEvent:
    """
    Append one audit event to the current transaction.

    - No domain logic here.
    - occurred_at defaults to server-side now (UTC) when omitted.
    """
    if action not in VALID_ACTIONS:
        raise ValueError(f"Unknown audit action: {action}")
    if actor_user_id is None:
        raise ValueError("Audit events require an actor")

    ev = OrderAuditEvent(
        order_id=order_id,
        action=action,
        actor_user_id=actor_user_id,
        occurred_at=occurred_at or utcnow(),
        narration=narration,
        payload=payload or None,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def order_history(order_id: int) -> list[OrderAuditEvent]:
    """All events for one order, oldest first."""
    return (
        db.session.query(OrderAuditEvent)
        .filter(OrderAuditEvent.order_id == order_id)
        .order_by(OrderAuditEvent.occurred_at.asc(), OrderAuditEvent.id.asc())
        .all()
    )


def count_events(order_id: int, action: str | None = None) -> int:
    q = db.session.query(func.count(OrderAuditEvent.id)).filter(OrderAuditEvent.order_id == order_id)
    if action:
        q = q.filter(OrderAuditEvent.action == action)
    return q.scalar() or 0


def list_events(
    *,
    user_email: str | None = None,
    action: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    location_id: int | None = None,
    order_id: int | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """
    Paged audit listing, newest first, each event joined with its order summary.

    Date bounds are inclusive. location filtering goes through the order.
    """
    if action and action not in VALID_ACTIONS:
        raise ValidationError(
            f"Unknown action '{action}'. Must be one of: {', '.join(sorted(VALID_ACTIONS))}",
            fields={"action": ["Unknown action."]},
        )
    if start and end and start > end:
        raise ValidationError("start must be before end")

    q = (
        db.session.query(OrderAuditEvent)
        .join(Order, Order.id == OrderAuditEvent.order_id)
        .join(User, User.id == OrderAuditEvent.actor_user_id)
    )

    if user_email:
        q = q.filter(func.lower(User.email) == user_email.strip().lower())
    if action:
        q = q.filter(OrderAuditEvent.action == action)
    if start is not None:
        q = q.filter(OrderAuditEvent.occurred_at >= start)
    if end is not None:
        q = q.filter(OrderAuditEvent.occurred_at <= end)
    if location_id is not None:
        q = q.filter(Order.location_id == location_id)
    if order_id is not None:
        q = q.filter(OrderAuditEvent.order_id == order_id)

    q = q.order_by(OrderAuditEvent.occurred_at.desc(), OrderAuditEvent.id.desc())

    return paginate(
        q,
        page=page,
        page_size=page_size,
        serialize=lambda rows: [ev.to_dict(include_order=True) for ev in rows],
    )
