# Overview: Service-layer operations for PFIs; capacity accounting and the no-oversell guarantee.

"""
PFI Ledger Service

================================================================================
PURPOSE: Own PFI capacity accounting and stop orders from overselling a PFI
================================================================================

A PFI (proforma invoice) is a finite allocation of litres for one product at
one location. Orders draw against it when they are released, or when
already-released orders are assigned to it after the fact.

DERIVED TOTALS (never stored):
    sold_qty_litres      = SUM(order.quantity_litres) over eligible orders
    remaining_qty_litres = max(0, starting_qty_litres - sold_qty_litres)
    orders_count         = COUNT(eligible orders)
    total_amount_kobo    = SUM(order.total_price_kobo) over eligible orders

    eligible = attached to the PFI AND status in {released, truck_exited}

RULES:
1. At most one ACTIVE PFI per (location, product). Finished ones may pile up.
2. sold_qty_litres never exceeds starting_qty_litres. An attach that would
   overshoot is rejected (CapacityExceededError), never clamped.
3. A FINISHED PFI accepts no attachments regardless of remaining litres.
4. A PFI reaching remaining == 0 stays ACTIVE; only finish_pfi() closes it.

LOCKING:
    Every check-and-reserve runs under pfi_lock(pfi_id), which serializes
    per PFI inside the process and takes SELECT ... FOR UPDATE on the PFI row.
    The caller keeps the lock until it commits, so the next attach against
    the same PFI always sees the litres the previous one reserved. Attaches
    against different PFIs never wait on each other.
================================================================================
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Location, Order, Pfi, Product
from ..validation import CapacityExceededError, ConflictError, NotFoundError, ValidationError
from .concurrency import keyed_lock, lock_for_update, run_with_retry
from .pagination import paginate
from fuelops.time_utils import utcnow


PFI_STATUS_ACTIVE = "active"
PFI_STATUS_FINISHED = "finished"
VALID_PFI_STATUSES = {PFI_STATUS_ACTIVE, PFI_STATUS_FINISHED}

# Orders in these states count against a PFI
ELIGIBLE_ORDER_STATUSES = ("released", "truck_exited")


@dataclass(frozen=True)
class PfiTotals:
    starting_qty_litres: int
    orders_count: int
    sold_qty_litres: int
    total_amount_kobo: int

    @property
    def remaining_qty_litres(self) -> int:
        return max(0, self.starting_qty_litres - self.sold_qty_litres)

    def to_dict(self) -> dict:
        return {
            "orders_count": self.orders_count,
            "sold_qty_litres": self.sold_qty_litres,
            "total_quantity_litres": self.sold_qty_litres,
            "remaining_qty_litres": self.remaining_qty_litres,
            "total_amount_kobo": self.total_amount_kobo,
        }


@contextmanager
def pfi_lock(pfi_id: int):
    """
    Per-PFI critical section; hold it until the attaching transaction commits.

    Unknown ids raise NotFoundError before any lock is registered.
    """
    if db.session.query(Pfi.id).filter(Pfi.id == pfi_id).first() is None:
        raise NotFoundError("pfi", pfi_id)
    with keyed_lock("pfi", pfi_id):
        yield


def _eligible_orders_query():
    return db.session.query(Order).filter(Order.status.in_(ELIGIBLE_ORDER_STATUSES))


def _load_pfi(pfi_id: int, *, for_update: bool = False) -> Pfi:
    q = db.session.query(Pfi).filter(Pfi.id == pfi_id)
    if for_update:
        q = lock_for_update(q)
    pfi = q.first()
    if pfi is None:
        raise NotFoundError("pfi", pfi_id)
    return pfi


# =============================================================================
# TOTALS
# =============================================================================

def compute_totals(pfi_id: int) -> PfiTotals:
    """
    Aggregate a PFI's totals from the live order set.

    Read-only. Always recomputed; nothing is cached between calls.
    """
    pfi = _load_pfi(pfi_id)
    return _totals_for(pfi)


def _totals_for(pfi: Pfi) -> PfiTotals:
    row = (
        db.session.query(
            func.count(Order.id),
            func.coalesce(func.sum(Order.quantity_litres), 0),
            func.coalesce(func.sum(Order.total_price_kobo), 0),
        )
        .filter(Order.pfi_id == pfi.id, Order.status.in_(ELIGIBLE_ORDER_STATUSES))
        .one()
    )
    return PfiTotals(
        starting_qty_litres=pfi.starting_qty_litres,
        orders_count=int(row[0] or 0),
        sold_qty_litres=int(row[1] or 0),
        total_amount_kobo=int(row[2] or 0),
    )


def totals_for_many(pfis: list[Pfi]) -> dict[int, PfiTotals]:
    """Totals for a page of PFIs with a single grouped query."""
    if not pfis:
        return {}
    rows = (
        db.session.query(
            Order.pfi_id,
            func.count(Order.id),
            func.coalesce(func.sum(Order.quantity_litres), 0),
            func.coalesce(func.sum(Order.total_price_kobo), 0),
        )
        .filter(Order.pfi_id.in_([p.id for p in pfis]), Order.status.in_(ELIGIBLE_ORDER_STATUSES))
        .group_by(Order.pfi_id)
        .all()
    )
    by_id = {r[0]: r for r in rows}
    totals = {}
    for pfi in pfis:
        r = by_id.get(pfi.id)
        totals[pfi.id] = PfiTotals(
            starting_qty_litres=pfi.starting_qty_litres,
            orders_count=int(r[1]) if r else 0,
            sold_qty_litres=int(r[2]) if r else 0,
            total_amount_kobo=int(r[3]) if r else 0,
        )
    return totals


# =============================================================================
# CREATE / FINISH
# =============================================================================

def create_pfi(
    *,
    pfi_number: str,
    location_id: int,
    product_id: int,
    starting_qty_litres: int,
    actor_user_id: int,
    notes: str | None = None,
) -> Pfi:
    """
    Open a new active PFI for a (location, product) pair.

    Raises:
        ValidationError: bad quantity, unknown/inactive location or product
        ConflictError: an active PFI already exists for the pair
    """
    if actor_user_id is None:
        raise ValidationError("actor is required")
    if starting_qty_litres is None or starting_qty_litres <= 0:
        raise ValidationError("starting_qty_litres must be > 0", fields={"starting_qty_litres": ["Must be greater than zero."]})

    location = db.session.get(Location, location_id)
    if location is None or not location.is_active:
        raise ValidationError(f"Location {location_id} not found or inactive", fields={"location": ["Unknown location."]})
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise ValidationError(f"Product {product_id} not found or inactive", fields={"product": ["Unknown product."]})

    def _active_conflict(existing: Pfi) -> ConflictError:
        return ConflictError(
            f"Active PFI {existing.pfi_number} already exists for {location.name} / {product.name}",
            entity="pfi",
            entity_id=existing.id,
            current_status=existing.status,
            code="active_pfi_exists",
        )

    def _op() -> Pfi:
        existing = (
            db.session.query(Pfi)
            .filter_by(location_id=location_id, product_id=product_id, status=PFI_STATUS_ACTIVE)
            .first()
        )
        if existing is not None:
            raise _active_conflict(existing)

        pfi = Pfi(
            pfi_number=pfi_number,
            location_id=location_id,
            product_id=product_id,
            starting_qty_litres=starting_qty_litres,
            status=PFI_STATUS_ACTIVE,
            notes=notes,
            created_at=utcnow(),
            created_by_user_id=actor_user_id,
        )
        db.session.add(pfi)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race against a concurrent create for the same pair
            db.session.rollback()
            winner = (
                db.session.query(Pfi)
                .filter_by(location_id=location_id, product_id=product_id, status=PFI_STATUS_ACTIVE)
                .first()
            )
            if winner is None:
                raise
            raise _active_conflict(winner)
        return pfi

    pfi = run_with_retry(_op)
    current_app.logger.info(
        "PFI %s opened for location=%s product=%s with %s litres by user %s",
        pfi.pfi_number, location_id, product_id, starting_qty_litres, actor_user_id,
    )
    return pfi


def finish_pfi(pfi_id: int, *, actor_user_id: int) -> Pfi:
    """
    Close an active PFI (active -> finished). No attach succeeds afterwards.

    Takes the same per-PFI lock as attach, so a finish never interleaves with
    an in-flight release against the PFI.
    """
    if actor_user_id is None:
        raise ValidationError("actor is required")

    def _op() -> Pfi:
        with pfi_lock(pfi_id):
            pfi = _load_pfi(pfi_id, for_update=True)
            if pfi.status != PFI_STATUS_ACTIVE:
                raise ConflictError(
                    f"PFI {pfi.pfi_number} is already {pfi.status}",
                    entity="pfi",
                    entity_id=pfi.id,
                    current_status=pfi.status,
                    code="pfi_not_active",
                )
            pfi.status = PFI_STATUS_FINISHED
            pfi.finished_at = utcnow()
            pfi.finished_by_user_id = actor_user_id
            db.session.commit()
            return pfi

    pfi = run_with_retry(_op)
    current_app.logger.info("PFI %s finished by user %s", pfi.pfi_number, actor_user_id)
    return pfi


# =============================================================================
# ATTACH (caller holds pfi_lock and owns the transaction)
# =============================================================================

def _require_attachable(pfi: Pfi, order: Order) -> None:
    if pfi.status != PFI_STATUS_ACTIVE:
        raise ConflictError(
            f"PFI {pfi.pfi_number} is {pfi.status}; no further orders may be attached",
            entity="pfi",
            entity_id=pfi.id,
            current_status=pfi.status,
            code="pfi_not_active",
        )
    if order.location_id != pfi.location_id:
        raise ValidationError(
            f"Order {order.reference} is for a different location than PFI {pfi.pfi_number}",
            fields={"pfi_id": ["PFI location does not match the order."]},
        )
    product_ids = {line.product_id for line in order.lines}
    if product_ids != {pfi.product_id}:
        raise ValidationError(
            f"Order {order.reference} product does not match PFI {pfi.pfi_number}",
            fields={"pfi_id": ["PFI product does not match the order."]},
        )


def attach_locked(pfi_id: int, orders: list[Order]) -> PfiTotals:
    """
    Check capacity and reserve litres for one or more orders against a PFI.

    Must run inside pfi_lock(pfi_id) and inside the caller's transaction;
    the caller commits together with the order transition and audit event.
    Either every order is attached or none is.

    Returns the totals as they stood before this attachment.

    Raises:
        NotFoundError: PFI does not exist
        ConflictError: PFI is finished
        ValidationError: location/product mismatch
        CapacityExceededError: the batch would oversell the PFI
    """
    pfi = _load_pfi(pfi_id, for_update=True)
    for order in orders:
        _require_attachable(pfi, order)

    totals = _totals_for(pfi)
    # Orders already counted (eligible and already on this PFI) are not re-reserved
    requested = sum(
        o.quantity_litres for o in orders
        if not (o.pfi_id == pfi.id and o.status in ELIGIBLE_ORDER_STATUSES)
    )
    if requested > totals.remaining_qty_litres:
        current_app.logger.warning(
            "PFI %s capacity exceeded: requested=%s remaining=%s",
            pfi.pfi_number, requested, totals.remaining_qty_litres,
        )
        raise CapacityExceededError(
            pfi_id=pfi.id,
            pfi_number=pfi.pfi_number,
            requested_litres=requested,
            remaining_litres=totals.remaining_qty_litres,
        )

    for order in orders:
        order.pfi_id = pfi.id
    return totals


# =============================================================================
# QUERIES
# =============================================================================

def get_pfi(pfi_id: int) -> tuple[Pfi, PfiTotals]:
    pfi = _load_pfi(pfi_id)
    return pfi, _totals_for(pfi)


def list_pfis(
    *,
    status: str | None = None,
    location_id: int | None = None,
    product_id: int | None = None,
    search: str | None = None,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """Paged PFI listing, newest first, each row with live-computed totals."""
    if status and status not in VALID_PFI_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_PFI_STATUSES))}",
            fields={"status": ["Invalid status."]},
        )

    q = db.session.query(Pfi)
    if status:
        q = q.filter(Pfi.status == status)
    if location_id is not None:
        q = q.filter(Pfi.location_id == location_id)
    if product_id is not None:
        q = q.filter(Pfi.product_id == product_id)
    if search:
        q = q.filter(Pfi.pfi_number.ilike(f"%{search.strip()}%"))
    q = q.order_by(Pfi.created_at.desc(), Pfi.id.desc())

    def _serialize(rows: list[Pfi]) -> list[dict]:
        totals = totals_for_many(rows)
        return [p.to_dict(totals[p.id]) for p in rows]

    return paginate(q, page=page, page_size=page_size, serialize=_serialize)


def list_pfi_orders(pfi_id: int, *, page: int | None = None, page_size: int | None = None) -> dict:
    """Drill-down: eligible orders drawing on a PFI, most recently released first."""
    _load_pfi(pfi_id)
    q = (
        _eligible_orders_query()
        .filter(Order.pfi_id == pfi_id)
        .order_by(Order.released_at.desc(), Order.id.desc())
    )
    return paginate(
        q,
        page=page,
        page_size=page_size,
        serialize=lambda rows: [o.summary_dict() for o in rows],
    )
