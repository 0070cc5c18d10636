from __future__ import annotations
from datetime import datetime
from decimal import Decimal, InvalidOperation
from sareeflow.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Maximum quantity on a single line or stock adjustment
MAX_QUANTITY = 1_000_000

_CENT = Decimal("0.01")


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(ValueError):
    """404-level: a referenced record does not exist."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU, insufficient stock)."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class DeadlineExceededError(RuntimeError):
    """The unit of work ran past its deadline and was rolled back."""


# =============================================================================
# Money: integer cents inside, two-place decimal strings at the boundary
# =============================================================================

def parse_money(value: Any, field_name: str = "amount") -> int:
    """
    Parse a monetary amount into integer cents.

    Accepts "250", "250.5", "250.00", Decimal and int. Floats are only
    accepted when they round-trip through str() to at most two places.
    Rejects negatives, NaN/inf and sub-cent precision.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a decimal amount")

    if isinstance(value, (int, Decimal)):
        raw = value
    elif isinstance(value, float):
        raw = str(value)
    elif isinstance(value, str):
        raw = value.strip()
        if not raw:
            raise ValidationError(f"{field_name} must be a decimal amount")
        if "e" in raw.lower():
            raise ValidationError(f"{field_name} must be a plain decimal (scientific notation not allowed)")
    else:
        raise ValidationError(f"{field_name} must be a decimal amount")

    try:
        amount = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{field_name} must be a decimal amount")

    if not amount.is_finite():
        raise ValidationError(f"{field_name} must be a finite amount")
    if amount < 0:
        raise ValidationError(f"{field_name} must be >= 0")
    if amount != amount.quantize(_CENT):
        raise ValidationError(f"{field_name} cannot have more than two decimal places")

    cents = int(amount.quantize(_CENT) * 100)
    if cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field_name} cannot exceed {format_cents(MAX_PRICE_CENTS)}")
    return cents


def format_cents(cents: int | None) -> str | None:
    """Render integer cents as a two-place decimal string ("250.00")."""
    if cents is None:
        return None
    return str((Decimal(cents) / 100).quantize(_CENT))


def parse_quantity(value: Any, field_name: str = "quantity", *, allow_zero: bool = False) -> int:
    """Strict integer quantity: no bools, floats, or numeric strings with decimals."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field_name} must be an integer")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValidationError(f"{field_name} must be {'>= 0' if allow_zero else '> 0'}")
    if value > MAX_QUANTITY:
        raise ValidationError(f"{field_name} cannot exceed {MAX_QUANTITY}")
    return value


# =============================================================================
# Payload validation against model metadata
# =============================================================================

@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - money_fields: API field -> *_cents column, parsed with parse_money
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    money_fields: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationError(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


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
    Returns a cleaned patch dict keyed by column name.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols and k not in policy.money_fields:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        if k in policy.money_fields:
            column_key = policy.money_fields[k]
            if raw is None:
                if not cols[column_key].nullable:
                    raise ValidationError(f"{k} cannot be null")
                patch[column_key] = None
            else:
                patch[column_key] = parse_money(raw, k)
            continue

        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("stock_quantity", "min_stock_level"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")
    if "sku" in patch and patch["sku"]:
        patch["sku"] = patch["sku"].upper()


def enforce_rules_contact(patch: dict) -> None:
    """Shared rules for customers and suppliers."""
    phone = patch.get("phone")
    if phone is not None:
        digits = [c for c in phone if c.isdigit()]
        if len(digits) < 10:
            raise ValidationError("phone must contain at least 10 digits")
    email = patch.get("email")
    if email:
        local, _, domain = email.partition("@")
        if not local or "." not in domain:
            raise ValidationError("email must be a valid address")
