from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from faturacao.time_utils import parse_iso_date, parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationFailure


# Maximum unit price: 9,999,999.99 Kz (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# Percentages are stored in basis points; 10000 bps == 100%
MAX_BPS = 10_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


# Engine-owned columns (number, hash, status, paid_cents, effects_*) are
# never writable from a payload.
DOCUMENT_HEADER_POLICY = ModelValidationPolicy(
    writable_fields={
        "flow",
        "document_type",
        "series_id",
        "number",
        "issue_date",
        "due_date",
        "accounting_date",
        "currency",
        "exchange_rate",
        "party_ref",
        "party_name",
        "party_tax_id",
        "global_discount_bps",
        "withholding_cents",
        "payment_method",
        "cash_register_id",
        "warehouse_ref",
        "notes",
        "source",
        "operator_ref",
        "source_document_id",
    },
    required_on_create={"document_type"},
)

DOCUMENT_LINE_POLICY = ModelValidationPolicy(
    writable_fields={
        "item_type",
        "product_ref",
        "description",
        "quantity",
        "unit_price_cents",
        "discount_bps",
        "tax_rate_bps",
    },
    required_on_create={"description", "quantity", "unit_price_cents"},
)


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
                raise ValidationFailure(f"{col.key} must be an integer")
            if 'e' in stripped.lower():
                raise ValidationFailure(f"{col.key} must be a plain integer (scientific notation not allowed)")
            if '.' in stripped:
                raise ValidationFailure(f"{col.key} must be an integer (no decimals)")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationFailure(f"{col.key} must be an integer")
        if isinstance(value, float):
            raise ValidationFailure(f"{col.key} must be an integer, not a decimal")
        raise ValidationFailure(f"{col.key} must be an integer")

    # Quantities and exchange rates; floats go through str() to avoid binary noise
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationFailure(f"{col.key} must be a number")
        try:
            return Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationFailure(f"{col.key} must be a number")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationFailure(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationFailure(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationFailure(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, (date, str)):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationFailure(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
            if d is None:
                raise ValidationFailure(f"{col.key} must be an ISO-8601 date (YYYY-MM-DD)")
            return d
        raise ValidationFailure(f"{col.key} must be a date")

    # Strings / Text
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
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailure("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationFailure(f"Missing required fields: {', '.join(missing)}", details={"missing": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationFailure(f"Field not allowed: {k}", details={"field": k})
        if k not in cols:
            raise ValidationFailure(f"Unknown field: {k}", details={"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable and col.default is None:
                raise ValidationFailure(f"{k} cannot be null")
            if not col.nullable:
                continue
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationFailure(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationFailure(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_bps(patch: dict, key: str) -> None:
    value = patch.get(key)
    if value is None:
        return
    if value < 0 or value > MAX_BPS:
        raise ValidationFailure(f"{key} must be between 0 and {MAX_BPS}", details={key: value})


def enforce_rules_document_header(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_bps(patch, "global_discount_bps")
    if patch.get("withholding_cents") is not None and patch["withholding_cents"] < 0:
        raise ValidationFailure("withholding_cents must be >= 0")
    if patch.get("exchange_rate") is not None and patch["exchange_rate"] <= 0:
        raise ValidationFailure("exchange_rate must be > 0")
    if patch.get("currency") is not None and len(patch["currency"]) != 3:
        raise ValidationFailure("currency must be a 3-letter ISO code")
    issue_date, due_date = patch.get("issue_date"), patch.get("due_date")
    if issue_date and due_date and due_date < issue_date:
        raise ValidationFailure("due_date cannot be earlier than issue_date")


def enforce_rules_document_line(patch: dict) -> None:
    quantity = patch.get("quantity")
    if quantity is None or quantity <= 0:
        raise ValidationFailure("quantity must be > 0", details={"quantity": str(quantity)})

    price = patch.get("unit_price_cents")
    if price is None:
        raise ValidationFailure("unit_price_cents is required")
    if price < 0:
        raise ValidationFailure("unit_price_cents must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationFailure(f"unit_price_cents cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f} Kz)")

    _check_bps(patch, "discount_bps")
    _check_bps(patch, "tax_rate_bps")
