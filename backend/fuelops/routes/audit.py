# Overview: Flask API routes for the order audit log; read-only.

"""
Order Audit Log API Routes

- GET /api/order-audit - Search audit events across orders

The log is append-only and has no write endpoint. Events are
only produced by successful order transitions.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import audit_service
from ..validation import ValidationError
from ..decorators import require_auth, require_permission
from fuelops.time_utils import parse_range_bound


audit_bp = Blueprint("audit", __name__, url_prefix="/api/order-audit")


@audit_bp.get("")
@require_auth
@require_permission("VIEW_AUDIT_LOG")
def list_audit_events_route():
    """
    Search the audit log, newest first.

    Query parameters:
        user_email  (optional): Actor's email, case-insensitive
        action      (optional): payment_confirmation, release, truck_exit, cancel, pfi_assignment
        start, end  (optional): Inclusive bounds; a bare date covers the whole day
        location_id (optional): Location of the order
        order_id    (optional): One order
        page, page_size

    USAGE EXAMPLE:
        GET /api/order-audit?action=release&start=2026-10-01&end=2026-10-19
    """
    try:
        try:
            start = parse_range_bound(request.args.get("start"))
            end = parse_range_bound(request.args.get("end"), end=True)
        except ValueError:
            raise ValidationError("start/end must be ISO-8601 dates or datetimes")

        result = audit_service.list_events(
            user_email=request.args.get("user_email") or None,
            action=request.args.get("action") or None,
            start=start,
            end=end,
            location_id=request.args.get("location_id", type=int),
            order_id=request.args.get("order_id", type=int),
            page=request.args.get("page", type=int),
            page_size=request.args.get("page_size", type=int),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to list audit events")
        return jsonify({"error": "Internal server error"}), 500
