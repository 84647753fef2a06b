# Overview: Flask API routes for orders; parses input and returns JSON responses.

"""
Order API Routes

These routes drive the order lifecycle:
- POST /api/orders                           - Place an order (pending)
- POST /api/orders/:id/confirm-payment       - pending -> paid
- POST /api/orders/:id/release               - paid -> released
- POST /api/orders/:id/confirm-truck-exit    - released -> truck_exited
- POST /api/orders/:id/cancel                - pending -> canceled
- POST /api/orders/assign-pfi                - Attach released orders to a PFI
- GET  /api/orders, /api/orders/:id, /api/orders/:id/audit

SECURITY:
- All routes require an authenticated actor
- The actor is taken from the request context (g.actor_user_id), NOT from
  the request body, so the audit trail cannot be spoofed

CONFLICTS:
- A transition whose precondition no longer holds returns 409 with the
  order's actual current_status. Clients refresh from it instead of retrying.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import audit_service, order_service
from ..validation import (
    CapacityExceededError,
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    validate_id_list,
)
from ..decorators import require_auth, require_permission
from fuelops.time_utils import parse_range_bound


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _bool_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    lowered = raw.strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    raise ValidationError(f"{name} must be true or false")


def _range_arg(name: str, *, end: bool = False):
    try:
        return parse_range_bound(request.args.get(name), end=end)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime", fields={name: ["Invalid date."]})


# =============================================================================
# ORDER PLACEMENT
# =============================================================================

@orders_bp.post("")
@require_auth
@require_permission("CREATE_ORDER")
def create_order_route():
    """
    Place a new order.

    Request body:
    {
        "location": 1,
        "products": [{"product_id": 2, "quantity": 33000}],
        "customer_name": "...", "company_name": "...", "customer_phone": "...",
        "release_type": "pickup" | "delivery"
    }

    Returns:
        201: Order created (status=pending)
        400: Invalid input
    """
    try:
        data = _json_body()
        location_raw = data.get("location_id", data.get("location"))
        if location_raw in (None, ""):
            raise ValidationError("location is required", fields={"location": ["This field is required."]})

        order = order_service.create_order(
            location_id=coerce_int(location_raw, "location"),
            lines=data.get("products", data.get("lines")),
            actor_user_id=g.actor_user_id,
            customer_name=(data.get("customer_name") or None),
            company_name=(data.get("company_name") or None),
            customer_phone=(data.get("customer_phone") or None),
            release_type=(data.get("release_type") or "pickup"),
        )
        return jsonify({"order": order.to_dict()}), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRANSITIONS
# =============================================================================

@orders_bp.post("/<int:order_id>/confirm-payment")
@require_auth
@require_permission("CONFIRM_PAYMENT")
def confirm_payment_route(order_id: int):
    """
    Confirm payment (pending -> paid).

    Request body (all optional):
    {
        "narration": "Teller 0042, First Bank",
        "bank_account_id": 3
    }

    Returns:
        200: Order now paid
        404: Order or bank account not found
        409: Order is not pending (body carries current_status)
    """
    try:
        data = _json_body()
        bank_account_raw = data.get("bank_account_id", data.get("bank_account"))
        order = order_service.confirm_payment(
            order_id,
            actor_user_id=g.actor_user_id,
            narration=data.get("narration"),
            bank_account_id=coerce_int(bank_account_raw, "bank_account_id") if bank_account_raw not in (None, "") else None,
        )
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/release")
@require_auth
@require_permission("RELEASE_ORDER")
def release_order_route(order_id: int):
    """
    Release a paid order for loading (paid -> released).

    Request body:
    {
        "release_details": {
            "truck_number": "ABC-123XY",
            "driver_name": "...",
            "driver_phone": "...",
            "loading_datetime": "2026-10-19T08:00:00Z",  (optional, defaults to now)
            "compartments": [{"qty": 11000, "ullage": 120}],  (optional, max 5)
            "delivery_address": "..."  (required for delivery orders)
        },
        "pfi_id": 7  (optional)
    }

    With pfi_id the PFI capacity is checked and reserved in the same commit
    as the release. An over-capacity release leaves the order paid.

    Returns:
        200: Order now released
        400: Missing/invalid release details, PFI location/product mismatch
        404: Order or PFI not found
        409: Order not paid, PFI finished, or PFI capacity exceeded
    """
    try:
        data = _json_body()
        details = data.get("release_details")
        if details is None:
            details = {k: v for k, v in data.items() if k != "pfi_id"}
        pfi_raw = data.get("pfi_id", data.get("pfi"))

        order = order_service.release_order(
            order_id,
            actor_user_id=g.actor_user_id,
            details=details,
            pfi_id=coerce_int(pfi_raw, "pfi_id") if pfi_raw not in (None, "") else None,
        )
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except (ConflictError, CapacityExceededError) as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to release order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/confirm-truck-exit")
@require_auth
@require_permission("CONFIRM_TRUCK_EXIT")
def confirm_truck_exit_route(order_id: int):
    """
    Clear a released truck at the gate (released -> truck_exited).

    Returns:
        200: Truck exit recorded
        404: Order not found
        409: order_not_released or order_already_exited
    """
    try:
        order = order_service.confirm_truck_exit(order_id, actor_user_id=g.actor_user_id)
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to confirm truck exit")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_permission("CANCEL_ORDER")
def cancel_order_route(order_id: int):
    """
    Cancel a pending order (pending -> canceled).

    Request body (optional): {"reason": "..."}
    """
    try:
        data = _json_body()
        order = order_service.cancel_order(order_id, actor_user_id=g.actor_user_id, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/assign-pfi")
@require_auth
@require_permission("MANAGE_PFIS")
def assign_pfi_route():
    """
    Attach already-released orders to a PFI.

    Request body:
    {
        "order_ids": [12, 13, 14],
        "pfi_id": 7
    }

    Response:
        {
            "pfi_id": 7,
            "assigned": [12, 14],
            "rejected": [{"order_id": 13, "code": "...", "error": "..."}]
        }

    Returns:
        200: Assignment processed (see rejected for per-order failures)
        404: PFI not found
        409: PFI finished, or accepted orders exceed remaining litres
    """
    try:
        data = _json_body()
        order_ids = validate_id_list(data.get("order_ids"), "order_ids")
        pfi_raw = data.get("pfi_id", data.get("pfi"))
        if pfi_raw in (None, ""):
            raise ValidationError("pfi_id is required", fields={"pfi_id": ["This field is required."]})

        result = order_service.assign_orders_to_pfi(
            order_ids,
            coerce_int(pfi_raw, "pfi_id"),
            actor_user_id=g.actor_user_id,
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except (ConflictError, CapacityExceededError) as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to assign orders to PFI")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@orders_bp.get("")
@require_auth
@require_permission("VIEW_ORDERS")
def list_orders_route():
    """
    List orders, newest first.

    Query parameters:
        status, location_id, pfi_id, truck_exited (true/false), search,
        created_from, created_to (date or datetime), page, page_size
    """
    try:
        result = order_service.list_orders(
            status=request.args.get("status") or None,
            location_id=request.args.get("location_id", type=int),
            pfi_id=request.args.get("pfi_id", type=int),
            truck_exited=_bool_arg("truck_exited"),
            search=request.args.get("search") or None,
            created_from=_range_arg("created_from"),
            created_to=_range_arg("created_to", end=True),
            page=request.args.get("page", type=int),
            page_size=request.args.get("page_size", type=int),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
@require_permission("VIEW_ORDERS")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict()}), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/audit")
@require_auth
@require_permission("VIEW_ORDERS")
def get_order_history_route(order_id: int):
    """Audit trail for one order, oldest first."""
    try:
        order = order_service.get_order(order_id)
        events = audit_service.order_history(order.id)
        return jsonify({
            "order": order.summary_dict(),
            "events": [ev.to_dict() for ev in events],
            "count": len(events),
        }), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception:
        current_app.logger.exception("Failed to get order history")
        return jsonify({"error": "Internal server error"}), 500
