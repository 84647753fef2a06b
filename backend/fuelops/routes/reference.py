# Overview: Flask API routes for reference data (locations, products) and product pricing.

"""
Reference Data API Routes

- GET   /api/locations        - Depots for console pickers
- GET   /api/products         - Products with their current list price
- POST  /api/products         - Add a product (SYSTEM_ADMIN)
- PATCH /api/products/:id     - Edit a product or change its price (SYSTEM_ADMIN)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import Location
from ..services import product_service
from ..validation import NotFoundError, ValidationError
from ..decorators import require_auth, require_permission


reference_bp = Blueprint("reference", __name__, url_prefix="/api")


def _include_inactive() -> bool:
    return (request.args.get("include_inactive") or "").lower() in {"true", "1", "yes"}


@reference_bp.get("/locations")
@require_auth
def list_locations_route():
    try:
        q = db.session.query(Location)
        if not _include_inactive():
            q = q.filter(Location.is_active.is_(True))
        locations = q.order_by(Location.name.asc()).all()
        return jsonify({"locations": [loc.to_dict() for loc in locations]}), 200
    except Exception:
        current_app.logger.exception("Failed to list locations")
        return jsonify({"error": "Internal server error"}), 500


@reference_bp.get("/products")
@require_auth
def list_products_route():
    try:
        products = product_service.list_products(include_inactive=_include_inactive())
        return jsonify({"products": [p.to_dict() for p in products]}), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@reference_bp.post("/products")
@require_auth
@require_permission("SYSTEM_ADMIN")
def create_product_route():
    """
    Request body:
    {
        "name": "Premium Motor Spirit",
        "abbreviation": "PMS",
        "unit_price_kobo": 61700,
        "description": "..."  (optional)
    }
    """
    try:
        product = product_service.create_product(
            request.get_json(silent=True) or {},
            actor_user_id=g.actor_user_id,
        )
        return jsonify({"product": product.to_dict()}), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@reference_bp.patch("/products/<int:product_id>")
@require_auth
@require_permission("SYSTEM_ADMIN")
def update_product_route(product_id: int):
    try:
        product = product_service.update_product(
            product_id,
            request.get_json(silent=True) or {},
            actor_user_id=g.actor_user_id,
        )
        return jsonify({"product": product.to_dict()}), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
