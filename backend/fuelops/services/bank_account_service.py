# Overview: Service-layer operations for the bank account directory.

"""
Bank Account Directory

WHY: Payment confirmation records which settlement account the customer paid
into. Finance maintains the list; accounts are deactivated, never deleted,
because historical orders reference them.

RULES:
- (bank_name, acct_no) is unique.
- location_id NULL = general account usable from any location.
- An order can only be confirmed into an active account that is general or
  belongs to the order's location.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import BankAccount, Location
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from .pagination import paginate


BANK_ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields={"acct_no", "bank_name", "account_name", "location_id"},
    required_on_create={"acct_no", "bank_name", "account_name"},
)


def _check_location(location_id: int | None) -> None:
    if location_id is None:
        return
    location = db.session.get(Location, location_id)
    if location is None:
        raise ValidationError(f"Location {location_id} not found", fields={"location_id": ["Unknown location."]})


def _duplicate(patch: dict, account: BankAccount | None = None) -> ValidationError:
    bank_name = patch.get("bank_name", account.bank_name if account else None)
    acct_no = patch.get("acct_no", account.acct_no if account else None)
    return ValidationError(
        f"Account {acct_no} at {bank_name} already exists",
        fields={"acct_no": ["Already registered for this bank."]},
    )


def get_account(account_id: int) -> BankAccount:
    account = db.session.get(BankAccount, account_id)
    if account is None:
        raise NotFoundError("bank_account", account_id)
    return account


def create_account(payload: dict, *, actor_user_id: int) -> BankAccount:
    patch = validate_payload(model=BankAccount, payload=payload, policy=BANK_ACCOUNT_POLICY, partial=False)
    if not patch.get("acct_no") or not str(patch["acct_no"]).isdigit():
        raise ValidationError("acct_no must contain digits only", fields={"acct_no": ["Digits only."]})
    _check_location(patch.get("location_id"))

    account = BankAccount(**patch)
    db.session.add(account)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise _duplicate(patch)

    current_app.logger.info(
        "Bank account %s (%s) created by user %s", account.id, account.bank_name, actor_user_id,
    )
    return account


def update_account(account_id: int, payload: dict, *, actor_user_id: int) -> BankAccount:
    account = get_account(account_id)
    patch = validate_payload(model=BankAccount, payload=payload, policy=BANK_ACCOUNT_POLICY, partial=True)
    if "acct_no" in patch and not str(patch["acct_no"] or "").isdigit():
        raise ValidationError("acct_no must contain digits only", fields={"acct_no": ["Digits only."]})
    if "location_id" in patch:
        _check_location(patch["location_id"])

    for key, value in patch.items():
        setattr(account, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise _duplicate(patch, account)

    current_app.logger.info("Bank account %s updated by user %s: %s", account.id, actor_user_id, sorted(patch))
    return account


def deactivate_account(account_id: int, *, actor_user_id: int) -> BankAccount:
    account = get_account(account_id)
    if not account.is_active:
        raise ConflictError(
            f"Bank account {account.id} is already inactive",
            entity="bank_account",
            entity_id=account.id,
            current_status="inactive",
            code="bank_account_inactive",
        )
    account.is_active = False
    db.session.commit()
    current_app.logger.info("Bank account %s deactivated by user %s", account.id, actor_user_id)
    return account


def list_accounts(
    *,
    location_id: int | None = None,
    include_general: bool = True,
    active_only: bool = True,
    page: int | None = None,
    page_size: int | None = None,
) -> dict:
    """
    Paged account listing.

    With a location_id, returns that location's accounts plus the general
    ones (unless include_general is False).
    """
    q = db.session.query(BankAccount)
    if active_only:
        q = q.filter(BankAccount.is_active.is_(True))
    if location_id is not None:
        if include_general:
            q = q.filter(db.or_(BankAccount.location_id == location_id, BankAccount.location_id.is_(None)))
        else:
            q = q.filter(BankAccount.location_id == location_id)
    q = q.order_by(BankAccount.bank_name.asc(), BankAccount.acct_no.asc())
    return paginate(q, page=page, page_size=page_size)


def resolve_for_payment(account_id: int, *, location_id: int) -> BankAccount:
    """
    Return the account an order at `location_id` may be confirmed into.

    Called inside the payment transaction; never commits.
    """
    account = get_account(account_id)
    if not account.is_active:
        raise ValidationError(
            f"Bank account {account.id} is inactive",
            fields={"bank_account_id": ["Account is inactive."]},
        )
    if account.location_id is not None and account.location_id != location_id:
        raise ValidationError(
            f"Bank account {account.id} does not belong to location {location_id}",
            fields={"bank_account_id": ["Account belongs to another location."]},
        )
    return account
