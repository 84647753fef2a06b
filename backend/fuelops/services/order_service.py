# Overview: Service-layer operations for orders; the single authority over Order.status.

"""
Order Fulfillment State Machine

================================================================================
PURPOSE: Move orders through payment, release and gate exit exactly once each
================================================================================

STATE MACHINE:
    pending  --confirm_payment-->     paid
    pending  --cancel-->              canceled
    paid     --release-->             released
    released --confirm_truck_exit-->  truck_exited

RULES (NON-NEGOTIABLE):
1. No other edges exist. released, truck_exited and canceled never go back.
2. Every transition is compare-and-swap: the order is re-read under lock,
   the expected current status is checked, and the write is guarded by
   Order.version_id. Of two racing identical requests exactly one wins; the
   loser re-reads and gets a ConflictError carrying the real status.
3. The status change, any PFI reservation and the audit event commit in ONE
   transaction. Any failure rolls all of them back.
4. The actor is always an explicit argument; nothing here reads request state.
5. A retried request after a timeout deterministically gets ConflictError,
   never a second application.

LOCK ORDER (when a PFI is involved): pfi_lock(pfi_id) -> PFI row -> order row(s).
release_order, assign_orders_to_pfi and finish_pfi all take them in this order.
================================================================================
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Location, Order, OrderLine, Product, ReleaseTicket, User
from ..validation import (
    RELEASE_TYPES,
    ConflictError,
    NotFoundError,
    ValidationError,
    validate_order_lines,
    validate_release_details,
)
from . import audit_service, bank_account_service, pfi_service
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_order_reference
from .pagination import paginate
from fuelops.time_utils import hours_ago, utcnow


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_RELEASED = "released"
ORDER_STATUS_TRUCK_EXITED = "truck_exited"
ORDER_STATUS_CANCELED = "canceled"

VALID_ORDER_STATUSES = {
    ORDER_STATUS_PENDING,
    ORDER_STATUS_PAID,
    ORDER_STATUS_RELEASED,
    ORDER_STATUS_TRUCK_EXITED,
    ORDER_STATUS_CANCELED,
}

VALID_TRANSITIONS = {
    (ORDER_STATUS_PENDING, ORDER_STATUS_PAID),
    (ORDER_STATUS_PENDING, ORDER_STATUS_CANCELED),
    (ORDER_STATUS_PAID, ORDER_STATUS_RELEASED),
    (ORDER_STATUS_RELEASED, ORDER_STATUS_TRUCK_EXITED),
}


def can_transition(from_status: str, to_status: str) -> bool:
    """True only for the four edges of the order lifecycle."""
    return (from_status, to_status) in VALID_TRANSITIONS


# =============================================================================
# HELPERS
# =============================================================================

def _require_actor(actor_user_id: int | None) -> User:
    if actor_user_id is None:
        raise ValidationError("actor is required")
    actor = db.session.get(User, actor_user_id)
    if actor is None or not actor.is_active:
        raise ValidationError(f"User {actor_user_id} is not an active user")
    return actor


def _load_order(order_id: int, *, for_update: bool = True) -> Order:
    q = db.session.query(Order).filter(Order.id == order_id)
    if for_update:
        q = lock_for_update(q)
    order = q.first()
    if order is None:
        raise NotFoundError("order", order_id)
    return order


def _require_status(order: Order, expected: str, *, action: str) -> None:
    if order.status != expected:
        current_app.logger.warning(
            "Rejected %s on order %s: status is %s", action, order.reference, order.status,
        )
        raise ConflictError(
            f"Cannot {action} order {order.reference}: "
            f"current status is '{order.status}', must be '{expected}'",
            entity="order",
            entity_id=order.id,
            current_status=order.status,
        )


def _log_transition(order: Order, actor_user_id: int) -> None:
    current_app.logger.info("Order %s -> %s by user %s", order.reference, order.status, actor_user_id)


# =============================================================================
# ORDER PLACEMENT
# =============================================================================

def create_order(
    *,
    location_id: int,
    lines: list[dict],
    actor_user_id: int,
    customer_name: str | None = None,
    company_name: str | None = None,
    customer_phone: str | None = None,
    release_type: str = "pickup",
) -> Order:
    """
    Place a new order in `pending`.

    Lines are priced from each product's current unit price; quantity and
    total are fixed here and never recomputed. The reference is allocated
    once from the order sequence.
    """
    _require_actor(actor_user_id)
    cleaned = validate_order_lines(lines)

    if release_type not in RELEASE_TYPES:
        raise ValidationError(
            f"release_type must be one of: {', '.join(sorted(RELEASE_TYPES))}",
            fields={"release_type": ["Invalid choice."]},
        )

    location = db.session.get(Location, location_id)
    if location is None or not location.is_active:
        raise ValidationError(f"Location {location_id} not found or inactive", fields={"location": ["Unknown location."]})

    products = {}
    for line in cleaned:
        product = db.session.get(Product, line["product_id"])
        if product is None or not product.is_active:
            raise ValidationError(f"Product {line['product_id']} not found or inactive")
        products[product.id] = product

    prefix = current_app.config.get("ORDER_REFERENCE_PREFIX", "ORD")

    def _op() -> Order:
        order = Order(
            reference=next_order_reference(prefix),
            status=ORDER_STATUS_PENDING,
            location_id=location_id,
            customer_name=customer_name,
            company_name=company_name,
            customer_phone=customer_phone,
            release_type=release_type,
            created_at=utcnow(),
            created_by_user_id=actor_user_id,
        )
        total_litres = 0
        total_kobo = 0
        for line in cleaned:
            product = products[line["product_id"]]
            qty = line["quantity_litres"]
            line_total = qty * product.unit_price_kobo
            order.lines.append(OrderLine(
                product_id=product.id,
                quantity_litres=qty,
                unit_price_kobo=product.unit_price_kobo,
                line_total_kobo=line_total,
            ))
            total_litres += qty
            total_kobo += line_total
        order.quantity_litres = total_litres
        order.total_price_kobo = total_kobo

        db.session.add(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    current_app.logger.info(
        "Order %s placed at location %s for %s litres by user %s",
        order.reference, location_id, order.quantity_litres, actor_user_id,
    )
    return order


# =============================================================================
# TRANSITIONS
# =============================================================================

def confirm_payment(
    order_id: int,
    *,
    actor_user_id: int,
    narration: str | None = None,
    bank_account_id: int | None = None,
) -> Order:
    """
    pending -> paid.

    Snapshots the settlement account onto the order so later edits to the
    bank account never change what the order says it was paid into.

    Raises:
        NotFoundError: order (or bank account) does not exist
        ConflictError: order is not pending
        ValidationError: bank account inactive or for another location
    """
    _require_actor(actor_user_id)
    narration = (narration or "").strip()[:500] or None

    def _op() -> Order:
        order = _load_order(order_id)
        _require_status(order, ORDER_STATUS_PENDING, action="confirm payment for")

        account = None
        if bank_account_id is not None:
            account = bank_account_service.resolve_for_payment(bank_account_id, location_id=order.location_id)

        now = utcnow()
        order.status = ORDER_STATUS_PAID
        order.payment_user_id = actor_user_id
        order.payment_confirmed_at = now
        order.payment_narration = narration
        payload = {}
        if account is not None:
            order.paid_into_bank_account_id = account.id
            order.paid_into_acct_no = account.acct_no
            order.paid_into_bank_name = account.bank_name
            order.paid_into_account_name = account.account_name
            payload = {
                "bank_account_id": account.id,
                "acct_no": account.acct_no,
                "bank_name": account.bank_name,
            }

        audit_service.record_event(
            order_id=order.id,
            action=audit_service.ACTION_PAYMENT_CONFIRMATION,
            actor_user_id=actor_user_id,
            occurred_at=now,
            narration=narration,
            payload=payload,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    _log_transition(order, actor_user_id)
    return order


def _apply_release(order: Order, ticket_fields: dict, *, actor_user_id: int, pfi_id: int | None) -> datetime:
    now = utcnow()
    order.status = ORDER_STATUS_RELEASED
    order.release_user_id = actor_user_id
    order.released_at = now
    db.session.add(ReleaseTicket(
        order_id=order.id,
        truck_number=ticket_fields["truck_number"],
        driver_name=ticket_fields["driver_name"],
        driver_phone=ticket_fields["driver_phone"],
        loading_datetime=ticket_fields["loading_datetime"] or now,
        compartments=ticket_fields["compartments"],
        delivery_address=ticket_fields["delivery_address"],
        pfi_id=pfi_id,
    ))
    return now


def release_order(
    order_id: int,
    *,
    actor_user_id: int,
    details: dict,
    pfi_id: int | None = None,
) -> Order:
    """
    paid -> released, optionally drawing the litres from a PFI.

    With a pfi_id the PFI capacity check, the status change, the release
    ticket and the audit event commit together under the PFI lock. If the
    PFI rejects the order (finished, mismatch, not enough litres) the order
    stays `paid` and nothing is written.

    Raises:
        NotFoundError: order or PFI does not exist
        ConflictError: order not paid, order tied to another PFI, PFI finished
        CapacityExceededError: PFI has fewer remaining litres than the order
        ValidationError: missing/malformed release details
    """
    _require_actor(actor_user_id)

    def _transition(order: Order) -> None:
        _require_status(order, ORDER_STATUS_PAID, action="release")
        ticket_fields = validate_release_details(details, release_type=order.release_type)

        if pfi_id is not None:
            if order.pfi_id is not None and order.pfi_id != pfi_id:
                raise ConflictError(
                    f"Order {order.reference} already draws on PFI {order.pfi_id}",
                    entity="order",
                    entity_id=order.id,
                    current_status=order.status,
                    code="pfi_already_assigned",
                )
            pfi_service.attach_locked(pfi_id, [order])

        now = _apply_release(order, ticket_fields, actor_user_id=actor_user_id, pfi_id=order.pfi_id)
        audit_service.record_event(
            order_id=order.id,
            action=audit_service.ACTION_RELEASE,
            actor_user_id=actor_user_id,
            occurred_at=now,
            payload={
                "pfi_id": order.pfi_id,
                "truck_number": ticket_fields["truck_number"],
            },
        )

    def _op() -> Order:
        if pfi_id is None:
            order = _load_order(order_id)
            _transition(order)
            db.session.commit()
            return order

        with pfi_service.pfi_lock(pfi_id):
            pfi_service._load_pfi(pfi_id, for_update=True)
            order = _load_order(order_id)
            _transition(order)
            db.session.commit()
            return order

    order = run_with_retry(_op)
    _log_transition(order, actor_user_id)
    return order


def confirm_truck_exit(order_id: int, *, actor_user_id: int) -> Order:
    """
    released -> truck_exited.

    The gate needs to tell "not yet permitted to exit" apart from "already
    exited", so the two conflicts carry different codes.
    """
    _require_actor(actor_user_id)

    def _op() -> Order:
        order = _load_order(order_id)
        if order.status == ORDER_STATUS_TRUCK_EXITED:
            current_app.logger.warning("Rejected truck exit on order %s: already exited", order.reference)
            raise ConflictError(
                f"Truck for order {order.reference} has already exited",
                entity="order",
                entity_id=order.id,
                current_status=order.status,
                code="order_already_exited",
            )
        if order.status != ORDER_STATUS_RELEASED:
            current_app.logger.warning(
                "Rejected truck exit on order %s: status is %s", order.reference, order.status,
            )
            raise ConflictError(
                f"Order {order.reference} is not yet permitted to exit: current status is '{order.status}'",
                entity="order",
                entity_id=order.id,
                current_status=order.status,
                code="order_not_released",
            )

        now = utcnow()
        order.status = ORDER_STATUS_TRUCK_EXITED
        order.truck_exited = True
        order.truck_exit_user_id = actor_user_id
        order.truck_exit_at = now
        truck_number = order.release_ticket.truck_number if order.release_ticket else None

        audit_service.record_event(
            order_id=order.id,
            action=audit_service.ACTION_TRUCK_EXIT,
            actor_user_id=actor_user_id,
            occurred_at=now,
            payload={"truck_number": truck_number} if truck_number else None,
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    _log_transition(order, actor_user_id)
    return order


def _cancel_locked(order: Order, *, actor_user_id: int, reason: str | None, payload: dict | None = None) -> None:
    _require_status(order, ORDER_STATUS_PENDING, action="cancel")
    now = utcnow()
    order.status = ORDER_STATUS_CANCELED
    order.canceled_by_user_id = actor_user_id
    order.canceled_at = now
    order.cancel_reason = reason
    audit_service.record_event(
        order_id=order.id,
        action=audit_service.ACTION_CANCEL,
        actor_user_id=actor_user_id,
        occurred_at=now,
        narration=reason,
        payload=payload,
    )


def cancel_order(order_id: int, *, actor_user_id: int, reason: str | None = None) -> Order:
    """
    pending -> canceled.

    Paid or later orders cannot be canceled: there is no refund/unwind path.
    """
    _require_actor(actor_user_id)
    reason = (reason or "").strip()[:255] or None

    def _op() -> Order:
        order = _load_order(order_id)
        _cancel_locked(order, actor_user_id=actor_user_id, reason=reason)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    _log_transition(order, actor_user_id)
    return order


def cancel_stale_orders(
    *,
    actor_user_id: int,
    older_than_hours: int | None = None,
    now: datetime | None = None,
) -> list[int]:
    """
    Cancel pending orders older than the configured threshold.

    Each order is canceled in its own transaction through the same
    compare-and-swap as cancel_order; an order that was paid in the meantime
    is skipped, never touched. Returns the ids actually canceled.
    """
    _require_actor(actor_user_id)
    if older_than_hours is None:
        older_than_hours = current_app.config.get("ORDER_AUTO_CANCEL_HOURS", 12)
    if older_than_hours <= 0:
        raise ValidationError("older_than_hours must be > 0")

    cutoff = hours_ago(older_than_hours, now=now)
    reason = f"Auto-canceled: unpaid after {older_than_hours} hours"
    sweep_payload = {"auto_cancel": True, "older_than_hours": older_than_hours}
    candidate_ids = [
        row[0]
        for row in db.session.query(Order.id)
        .filter(Order.status == ORDER_STATUS_PENDING, Order.created_at <= cutoff)
        .order_by(Order.id.asc())
        .all()
    ]

    canceled = []
    for order_id in candidate_ids:
        def _op(order_id=order_id) -> Order:
            order = _load_order(order_id)
            _cancel_locked(order, actor_user_id=actor_user_id, reason=reason, payload=sweep_payload)
            db.session.commit()
            return order

        try:
            order = run_with_retry(_op)
        except ConflictError as exc:
            current_app.logger.info("Skipping auto-cancel of order %s: now %s", order_id, exc.current_status)
            continue
        canceled.append(order.id)

    current_app.logger.info("Auto-cancel sweep canceled %s of %s stale orders", len(canceled), len(candidate_ids))
    return canceled


# =============================================================================
# RETROACTIVE PFI ASSIGNMENT
# =============================================================================

def assign_orders_to_pfi(order_ids: list[int], pfi_id: int, *, actor_user_id: int) -> dict:
    """
    Attach already-released orders to a PFI for reporting.

    Orders that cannot be attached (missing, not released/exited, already on
    a PFI, other location/product) are reported in `rejected`. Capacity is
    checked for the accepted orders as a whole: if together they exceed the
    PFI's remaining litres, CapacityExceededError is raised and nothing is
    assigned.

    Raises:
        NotFoundError: PFI does not exist
        ConflictError: PFI is finished
        CapacityExceededError: accepted orders would oversell the PFI
    """
    _require_actor(actor_user_id)
    order_ids = list(dict.fromkeys(order_ids or ()))
    if not order_ids:
        raise ValidationError("order_ids must be a non-empty list")

    def _op() -> dict:
        with pfi_service.pfi_lock(pfi_id):
            pfi = pfi_service._load_pfi(pfi_id, for_update=True)
            if pfi.status != pfi_service.PFI_STATUS_ACTIVE:
                raise ConflictError(
                    f"PFI {pfi.pfi_number} is {pfi.status}; no further orders may be attached",
                    entity="pfi",
                    entity_id=pfi.id,
                    current_status=pfi.status,
                    code="pfi_not_active",
                )

            found = {
                o.id: o
                for o in lock_for_update(db.session.query(Order).filter(Order.id.in_(order_ids))).all()
            }

            rejected = []
            accepted = []
            for oid in order_ids:
                order = found.get(oid)
                if order is None:
                    rejected.append({"order_id": oid, "code": "not_found", "error": f"Order {oid} not found"})
                elif order.status not in pfi_service.ELIGIBLE_ORDER_STATUSES:
                    rejected.append({
                        "order_id": oid,
                        "code": "invalid_order_status",
                        "current_status": order.status,
                        "error": f"Order {order.reference} is {order.status}; only released orders can be assigned",
                    })
                elif order.pfi_id is not None:
                    rejected.append({
                        "order_id": oid,
                        "code": "pfi_already_assigned",
                        "current_status": order.status,
                        "pfi_id": order.pfi_id,
                        "error": f"Order {order.reference} already draws on PFI {order.pfi_id}",
                    })
                elif order.location_id != pfi.location_id or {l.product_id for l in order.lines} != {pfi.product_id}:
                    rejected.append({
                        "order_id": oid,
                        "code": "pfi_mismatch",
                        "current_status": order.status,
                        "error": f"Order {order.reference} location/product does not match PFI {pfi.pfi_number}",
                    })
                else:
                    accepted.append(order)

            if accepted:
                pfi_service.attach_locked(pfi_id, accepted)
                now = utcnow()
                for order in accepted:
                    audit_service.record_event(
                        order_id=order.id,
                        action=audit_service.ACTION_PFI_ASSIGNMENT,
                        actor_user_id=actor_user_id,
                        occurred_at=now,
                        payload={"pfi_id": pfi.id, "pfi_number": pfi.pfi_number},
                    )

            db.session.commit()
            return {
                "pfi_id": pfi.id,
                "assigned": [o.id for o in accepted],
                "rejected": rejected,
            }

    result = run_with_retry(_op)
    current_app.logger.info(
        "Assigned %s orders to PFI %s by user %s (%s rejected)",
        len(result["assigned"]), pfi_id, actor_user_id, len(result["rejected"]),
    )
    return result


# =============================================================================
# QUERIES
# =============================================================================

def get_order(order_id: int) -> Order:
    return _load_order(order_id, for_update=False)


def list_orders(
    *,
    status: str | None = None,
    location_id: int | None = None,
    pfi_id: int | None = None,
    truck_exited: bool | None = None,
    search: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """Paged order listing, newest first."""
    if status and status not in VALID_ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_ORDER_STATUSES))}",
            fields={"status": ["Invalid status."]},
        )

    q = db.session.query(Order)
    if status:
        q = q.filter(Order.status == status)
    if location_id is not None:
        q = q.filter(Order.location_id == location_id)
    if pfi_id is not None:
        q = q.filter(Order.pfi_id == pfi_id)
    if truck_exited is not None:
        q = q.filter(Order.truck_exited.is_(truck_exited))
    if search:
        term = f"%{search.strip()}%"
        q = q.filter(
            db.or_(
                Order.reference.ilike(term),
                Order.customer_name.ilike(term),
                Order.company_name.ilike(term),
            )
        )
    if created_from is not None:
        q = q.filter(Order.created_at >= created_from)
    if created_to is not None:
        q = q.filter(Order.created_at <= created_to)

    q = q.order_by(Order.created_at.desc(), Order.id.desc())
    return paginate(q, page=page, page_size=page_size)
