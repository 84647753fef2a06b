# Overview: Service-layer operations for the product catalog and list prices.

"""
Product Catalog Service

Products carry the current list price per litre in kobo. Orders copy the
price onto their lines when placed, so a price change only affects orders
created afterwards.

Products are deactivated, never deleted; PFIs and historical orders keep
pointing at them.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..validation import ModelValidationPolicy, NotFoundError, ValidationError, validate_payload


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"name", "abbreviation", "description", "unit_price_kobo", "is_active"},
    required_on_create={"name", "abbreviation", "unit_price_kobo"},
)


def _check_price(patch: dict) -> None:
    if "unit_price_kobo" not in patch:
        return
    price = patch["unit_price_kobo"]
    if price is None or price < 0:
        raise ValidationError(
            "unit_price_kobo must be zero or more",
            fields={"unit_price_kobo": ["Must be zero or more."]},
        )


def _normalize(patch: dict) -> dict:
    if patch.get("abbreviation"):
        patch["abbreviation"] = patch["abbreviation"].upper()
    _check_price(patch)
    return patch


def _duplicate(abbreviation: str | None) -> ValidationError:
    return ValidationError(
        f"Product {abbreviation} already exists",
        fields={"abbreviation": ["Already in use."]},
    )


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("product", product_id)
    return product


def get_product_by_abbreviation(abbreviation: str) -> Product:
    product = (
        db.session.query(Product)
        .filter(Product.abbreviation == (abbreviation or "").strip().upper())
        .first()
    )
    if product is None:
        raise NotFoundError("product", abbreviation)
    return product


def list_products(*, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc()).all()


def create_product(payload: dict, *, actor_user_id: int) -> Product:
    patch = _normalize(validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False))

    product = Product(**patch)
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise _duplicate(patch.get("abbreviation"))

    current_app.logger.info(
        "Product %s created at %s kobo/litre by user %s",
        product.abbreviation, product.unit_price_kobo, actor_user_id,
    )
    return product


def update_product(product_id: int, payload: dict, *, actor_user_id: int) -> Product:
    """Edit a product; a new unit_price_kobo applies to orders placed from now on."""
    product = get_product(product_id)
    patch = _normalize(validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True))

    old_price = product.unit_price_kobo
    for key, value in patch.items():
        setattr(product, key, value)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise _duplicate(patch.get("abbreviation"))

    if "unit_price_kobo" in patch and patch["unit_price_kobo"] != old_price:
        current_app.logger.info(
            "Product %s price changed %s -> %s kobo/litre by user %s",
            product.abbreviation, old_price, product.unit_price_kobo, actor_user_id,
        )
    else:
        current_app.logger.info("Product %s updated by user %s: %s", product.abbreviation, actor_user_id, sorted(patch))
    return product


def set_price(product_id: int, unit_price_kobo, *, actor_user_id: int) -> Product:
    return update_product(product_id, {"unit_price_kobo": unit_price_kobo}, actor_user_id=actor_user_id)
