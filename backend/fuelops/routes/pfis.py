# Overview: Flask API routes for PFIs; parses input and returns JSON responses.

"""
PFI API Routes

- POST /api/pfis                 - Open an active PFI for a (location, product)
- GET  /api/pfis                 - List PFIs with live totals
- GET  /api/pfis/:id             - One PFI with live totals
- GET  /api/pfis/:id/orders      - Orders drawing on the PFI
- POST /api/pfis/:id/finish      - Close the PFI (active -> finished)

Totals (sold, remaining, order count, amount) are computed on every read
from the orders attached to the PFI; nothing here writes them.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import pfi_service
from ..validation import ConflictError, NotFoundError, ValidationError, validate_pfi_create
from ..decorators import require_auth, require_permission


pfis_bp = Blueprint("pfis", __name__, url_prefix="/api/pfis")


@pfis_bp.post("")
@require_auth
@require_permission("MANAGE_PFIS")
def create_pfi_route():
    """
    Open a PFI.

    Request body:
    {
        "pfi_number": "PFI-2026-014",
        "location": 1,
        "product": 2,
        "starting_qty_litres": 500000,
        "notes": "..."  (optional)
    }

    Returns:
        201: PFI created (status=active)
        400: Invalid input
        409: An active PFI already exists for the location/product
    """
    try:
        data = validate_pfi_create(request.get_json(silent=True))
        pfi = pfi_service.create_pfi(actor_user_id=g.actor_user_id, **data)
        return jsonify({"pfi": pfi.to_dict(pfi_service.compute_totals(pfi.id))}), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to create PFI")
        return jsonify({"error": "Internal server error"}), 500


@pfis_bp.get("")
@require_auth
@require_permission("VIEW_PFIS")
def list_pfis_route():
    """
    List PFIs, newest first.

    Query parameters: status, location_id, product_id, search, page, page_size
    """
    try:
        result = pfi_service.list_pfis(
            status=request.args.get("status") or None,
            location_id=request.args.get("location_id", type=int),
            product_id=request.args.get("product_id", type=int),
            search=request.args.get("search") or None,
            page=request.args.get("page", type=int),
            page_size=request.args.get("page_size", type=int),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to list PFIs")
        return jsonify({"error": "Internal server error"}), 500


@pfis_bp.get("/<int:pfi_id>")
@require_auth
@require_permission("VIEW_PFIS")
def get_pfi_route(pfi_id: int):
    try:
        pfi, totals = pfi_service.get_pfi(pfi_id)
        return jsonify({"pfi": pfi.to_dict(totals)}), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception:
        current_app.logger.exception("Failed to get PFI")
        return jsonify({"error": "Internal server error"}), 500


@pfis_bp.get("/<int:pfi_id>/orders")
@require_auth
@require_permission("VIEW_PFIS")
def list_pfi_orders_route(pfi_id: int):
    """Released and exited orders counted against the PFI."""
    try:
        result = pfi_service.list_pfi_orders(
            pfi_id,
            page=request.args.get("page", type=int),
            page_size=request.args.get("page_size", type=int),
        )
        return jsonify(result), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception:
        current_app.logger.exception("Failed to list PFI orders")
        return jsonify({"error": "Internal server error"}), 500


@pfis_bp.post("/<int:pfi_id>/finish")
@require_auth
@require_permission("MANAGE_PFIS")
def finish_pfi_route(pfi_id: int):
    """
    Close a PFI. Remaining litres are forfeited; no further orders attach.

    Returns:
        200: PFI finished
        404: PFI not found
        409: PFI already finished
    """
    try:
        pfi = pfi_service.finish_pfi(pfi_id, actor_user_id=g.actor_user_id)
        return jsonify({"pfi": pfi.to_dict(pfi_service.compute_totals(pfi.id))}), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to finish PFI")
        return jsonify({"error": "Internal server error"}), 500
