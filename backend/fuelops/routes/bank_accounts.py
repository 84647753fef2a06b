# Overview: Flask API routes for the bank account directory.

"""
Bank Account API Routes

- GET   /api/bank-accounts                  - List accounts (active by default)
- POST  /api/bank-accounts                  - Register an account
- PATCH /api/bank-accounts/:id              - Edit an account
- POST  /api/bank-accounts/:id/deactivate   - Retire an account

Accounts are never deleted: paid orders keep a snapshot of the account they
were confirmed into, and the id stays resolvable for history screens.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import bank_account_service
from ..validation import ConflictError, NotFoundError, ValidationError
from ..decorators import require_auth, require_permission


bank_accounts_bp = Blueprint("bank_accounts", __name__, url_prefix="/api/bank-accounts")


@bank_accounts_bp.get("")
@require_auth
@require_permission("VIEW_BANK_ACCOUNTS")
def list_bank_accounts_route():
    """
    Query parameters:
        location_id (optional): That location's accounts plus general ones
        include_inactive (optional): "true" to include deactivated accounts
        page, page_size
    """
    try:
        include_inactive = (request.args.get("include_inactive") or "").lower() in {"true", "1", "yes"}
        result = bank_account_service.list_accounts(
            location_id=request.args.get("location_id", type=int),
            active_only=not include_inactive,
            page=request.args.get("page", type=int),
            page_size=request.args.get("page_size", type=int),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to list bank accounts")
        return jsonify({"error": "Internal server error"}), 500


@bank_accounts_bp.post("")
@require_auth
@require_permission("MANAGE_BANK_ACCOUNTS")
def create_bank_account_route():
    """
    Request body:
    {
        "acct_no": "0123456789",
        "bank_name": "First Bank",
        "account_name": "Depot Collections",
        "location_id": 1  (optional; omit for a general account)
    }
    """
    try:
        account = bank_account_service.create_account(
            request.get_json(silent=True) or {},
            actor_user_id=g.actor_user_id,
        )
        return jsonify({"bank_account": account.to_dict()}), 201

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except Exception:
        current_app.logger.exception("Failed to create bank account")
        return jsonify({"error": "Internal server error"}), 500


@bank_accounts_bp.patch("/<int:account_id>")
@require_auth
@require_permission("MANAGE_BANK_ACCOUNTS")
def update_bank_account_route(account_id: int):
    try:
        account = bank_account_service.update_account(
            account_id,
            request.get_json(silent=True) or {},
            actor_user_id=g.actor_user_id,
        )
        return jsonify({"bank_account": account.to_dict()}), 200

    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except Exception:
        current_app.logger.exception("Failed to update bank account")
        return jsonify({"error": "Internal server error"}), 500


@bank_accounts_bp.post("/<int:account_id>/deactivate")
@require_auth
@require_permission("MANAGE_BANK_ACCOUNTS")
def deactivate_bank_account_route(account_id: int):
    try:
        account = bank_account_service.deactivate_account(account_id, actor_user_id=g.actor_user_id)
        return jsonify({"bank_account": account.to_dict()}), 200

    except NotFoundError as e:
        return jsonify(e.to_dict()), 404
    except ConflictError as e:
        return jsonify(e.to_dict()), 409
    except Exception:
        current_app.logger.exception("Failed to deactivate bank account")
        return jsonify({"error": "Internal server error"}), 500
