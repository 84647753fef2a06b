from __future__ import annotations
from datetime import datetime
from fuelops.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Largest single order or PFI allocation we accept (litres).
MAX_QUANTITY_LITRES = 10_000_000

# A road tanker has at most five compartments.
MAX_COMPARTMENTS = 5

RELEASE_TYPES = {"pickup", "delivery"}


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, *, fields: dict[str, list[str]] | None = None):
        super().__init__(message)
        self.fields = fields or {}

    def to_dict(self) -> dict:
        body = {"error": str(self), "code": "validation_error"}
        if self.fields:
            body["fields"] = self.fields
        return body


class NotFoundError(LookupError):
    """404-level: referenced order, PFI, product or bank account does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity.replace('_', ' ').capitalize()} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict:
        return {"error": str(self), "code": "not_found", "entity": self.entity, "id": self.entity_id}


class ConflictError(ValueError):
    """
    409-level state precondition failure.

    Always carries the entity's actual current status so callers can
    reconcile without a follow-up read.
    """

    def __init__(
        self,
        message: str,
        *,
        entity: str,
        entity_id: Any,
        current_status: str | None,
        code: str = "invalid_order_status",
    ):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.code = code

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": self.code,
            "entity": self.entity,
            "id": self.entity_id,
            "current_status": self.current_status,
        }


class CapacityExceededError(ValueError):
    """409-level: attaching litres to a PFI would oversell it."""

    def __init__(self, *, pfi_id: int, pfi_number: str, requested_litres: int, remaining_litres: int):
        super().__init__(
            f"PFI {pfi_number} has {remaining_litres} litres remaining; "
            f"{requested_litres} litres requested"
        )
        self.pfi_id = pfi_id
        self.pfi_number = pfi_number
        self.requested_litres = requested_litres
        self.remaining_litres = remaining_litres

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "code": "pfi_capacity_exceeded",
            "pfi_id": self.pfi_id,
            "pfi_number": self.pfi_number,
            "requested_litres": self.requested_litres,
            "remaining_litres": self.remaining_litres,
        }


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false", "1", "0"}:
            return value.strip().lower() in {"true", "1"}
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings (thousands separators allowed, as
    operators paste "12,000"). Rejects bools, floats with a fractional part,
    and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", fields={field: ["Must be an integer."]})
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValidationError(f"{field} must be a whole number", fields={field: ["Must be a whole number."]})
    if isinstance(value, str):
        stripped = value.replace(",", "").strip()
        if stripped.endswith(".00"):
            stripped = stripped[:-3]
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be an integer", fields={field: ["Must be an integer."]})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", fields={field: ["Must be an integer."]})
    raise ValidationError(f"{field} must be an integer", fields={field: ["Must be an integer."]})


def coerce_positive_litres(value: Any, field: str) -> int:
    qty = coerce_int(value, field)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0", fields={field: ["Must be greater than zero."]})
    if qty > MAX_QUANTITY_LITRES:
        raise ValidationError(
            f"{field} cannot exceed {MAX_QUANTITY_LITRES:,} litres",
            fields={field: [f"Cannot exceed {MAX_QUANTITY_LITRES:,} litres."]},
        )
    return qty


def coerce_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is not None:
            return dt
    raise ValidationError(f"{field} must be an ISO-8601 datetime")


def _optional_text(payload: dict, key: str, max_len: int) -> str | None:
    raw = payload.get(key)
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    if len(text) > max_len:
        raise ValidationError(f"{key} exceeds max length {max_len}", fields={key: [f"Max {max_len} characters."]})
    return text


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                fields={f: ["This field is required."] for f in missing},
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", fields={k: ["May not be null."]})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", fields={k: ["May not be blank."]})

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def validate_order_lines(lines: Any) -> list[dict]:
    """Normalize the `products` list of a new order into [{product_id, quantity_litres}]."""
    if not isinstance(lines, list) or not lines:
        raise ValidationError("At least one product line is required", fields={"products": ["At least one line is required."]})

    cleaned = []
    for idx, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError(f"products[{idx}] must be an object")
        product_raw = line.get("product_id", line.get("product"))
        if product_raw is None:
            raise ValidationError(f"products[{idx}].product_id is required")
        cleaned.append({
            "product_id": coerce_int(product_raw, f"products[{idx}].product_id"),
            "quantity_litres": coerce_positive_litres(line.get("quantity", line.get("quantity_litres")), f"products[{idx}].quantity"),
        })
    return cleaned


def validate_release_details(details: Any, *, release_type: str) -> dict:
    """
    Validate and normalize release ticket details before the transaction starts.

    Required: truck_number, driver_name, driver_phone.
    delivery_address is required for delivery orders.
    compartments: up to MAX_COMPARTMENTS entries of {qty, ullage}.
    """
    if not isinstance(details, dict):
        raise ValidationError("release_details must be an object")

    fields: dict[str, list[str]] = {}
    required = ("truck_number", "driver_name", "driver_phone")
    for key in required:
        if not str(details.get(key) or "").strip():
            fields[key] = ["This field is required."]

    delivery_address = _optional_text(details, "delivery_address", 255)
    if release_type == "delivery" and not delivery_address:
        fields["delivery_address"] = ["Required for delivery orders."]

    if fields:
        raise ValidationError(
            f"Missing release details: {', '.join(sorted(fields))}",
            fields=fields,
        )

    loading_raw = details.get("loading_datetime")
    loading_datetime = coerce_datetime(loading_raw, "loading_datetime") if loading_raw else None

    compartments_raw = details.get("compartments") or []
    if not isinstance(compartments_raw, list):
        raise ValidationError("compartments must be a list")
    if len(compartments_raw) > MAX_COMPARTMENTS:
        raise ValidationError(f"A truck has at most {MAX_COMPARTMENTS} compartments")

    compartments = []
    for idx, comp in enumerate(compartments_raw, start=1):
        if not isinstance(comp, dict):
            raise ValidationError(f"compartments[{idx}] must be an object")
        qty = coerce_positive_litres(comp.get("qty"), f"compartment_{idx}_qty")
        ullage_raw = comp.get("ullage")
        ullage = None
        if ullage_raw not in (None, ""):
            ullage = coerce_int(ullage_raw, f"compartment_{idx}_ullage")
            if ullage < 0:
                raise ValidationError(f"compartment_{idx}_ullage must be >= 0")
        compartments.append({"compartment": idx, "qty": qty, "ullage": ullage})

    return {
        "truck_number": str(details["truck_number"]).strip()[:32],
        "driver_name": str(details["driver_name"]).strip()[:128],
        "driver_phone": str(details["driver_phone"]).strip()[:32],
        "loading_datetime": loading_datetime,
        "compartments": compartments,
        "delivery_address": delivery_address,
    }


def _either(payload: dict, *keys: str) -> Any:
    """First of `keys` carrying a non-blank value; `location_id: null` falls back to `location`."""
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def validate_pfi_create(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    fields: dict[str, list[str]] = {}
    pfi_number = str(payload.get("pfi_number") or "").strip()
    if not pfi_number:
        fields["pfi_number"] = ["This field is required."]
    for key in ("location", "product", "starting_qty_litres"):
        alt = f"{key}_id" if key != "starting_qty_litres" else key
        if payload.get(key) in (None, "") and payload.get(alt) in (None, ""):
            fields[key] = ["This field is required."]
    if fields:
        raise ValidationError(f"Missing required fields: {', '.join(sorted(fields))}", fields=fields)

    if len(pfi_number) > 64:
        raise ValidationError("pfi_number exceeds max length 64", fields={"pfi_number": ["Max 64 characters."]})

    return {
        "pfi_number": pfi_number,
        "location_id": coerce_int(_either(payload, "location_id", "location"), "location"),
        "product_id": coerce_int(_either(payload, "product_id", "product"), "product"),
        "starting_qty_litres": coerce_positive_litres(payload.get("starting_qty_litres"), "starting_qty_litres"),
        "notes": _optional_text(payload, "notes", 500),
    }


def validate_id_list(raw: Any, field: str) -> list[int]:
    if not isinstance(raw, list) or not raw:
        raise ValidationError(f"{field} must be a non-empty list", fields={field: ["Provide at least one id."]})
    ids = []
    for value in raw:
        parsed = coerce_int(value, field)
        if parsed not in ids:
            ids.append(parsed)
    return ids
