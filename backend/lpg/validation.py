from __future__ import annotations
from datetime import date, datetime
from lpg.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import Boolean, Date, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationFailed


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999

# Basis points: 10000 = 100%
MAX_RATE_BPS = 10_000


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


def _coerce_int(key: str, value: Any) -> int:
    # bool is a subclass of int
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationFailed(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15") and decimals
        if 'e' in stripped.lower():
            raise ValidationFailed(f"{key} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationFailed(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationFailed(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationFailed(f"{key} must be an integer, not a decimal")
    raise ValidationFailed(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
            return value.strip().lower() == "true"
        raise ValidationFailed(f"{col.key} must be a boolean")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationFailed(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationFailed(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationFailed(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationFailed(f"{col.key} must be an ISO-8601 date")
            if d is None:
                raise ValidationFailed(f"{col.key} must be an ISO-8601 date")
            return d
        raise ValidationFailed(f"{col.key} must be a date")

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

    Unknown keys are rejected rather than ignored so typos surface as 400s.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationFailed(f"Missing required fields: {', '.join(missing)}",
                                   details={"missing": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationFailed(f"Field not allowed: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationFailed(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationFailed(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationFailed(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_choice(key: str, value: Any, choices: Iterable[str], *, upper: bool = True) -> str:
    if value is None:
        raise ValidationFailed(f"{key} is required")
    s = str(value).strip()
    if upper:
        s = s.upper().replace("-", "_").replace(" ", "_")
    allowed = tuple(choices)
    if s not in allowed:
        raise ValidationFailed(f"{key} must be one of: {', '.join(allowed)}")
    return s


def require_int(key: str, value: Any, *, minimum: int | None = None, maximum: int | None = None,
                default: int | None = None) -> int:
    if value is None or value == "":
        if default is not None:
            return default
        raise ValidationFailed(f"{key} is required")
    n = _coerce_int(key, value)
    if minimum is not None and n < minimum:
        raise ValidationFailed(f"{key} must be >= {minimum}")
    if maximum is not None and n > maximum:
        raise ValidationFailed(f"{key} must be <= {maximum}")
    return n


def require_str(key: str, value: Any, *, max_length: int | None = None, required: bool = False) -> str | None:
    """Optional free-text field: a string (stripped) or None. Blank becomes None."""
    if value is None:
        if required:
            raise ValidationFailed(f"{key} is required")
        return None
    if not isinstance(value, str):
        raise ValidationFailed(f"{key} must be a string")
    s = value.strip()
    if not s:
        if required:
            raise ValidationFailed(f"{key} cannot be blank")
        return None
    if max_length is not None and len(s) > max_length:
        raise ValidationFailed(f"{key} exceeds max length {max_length}")
    return s


def require_bool(key: str, value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ValidationFailed(f"{key} must be a boolean")


def enforce_money_fields(patch: dict, *fields: str) -> None:
    for name in fields:
        amount = patch.get(name)
        if amount is None:
            continue
        if amount < 0:
            raise ValidationFailed(f"{name} must be >= 0")
        if amount > MAX_AMOUNT_CENTS:
            raise ValidationFailed(f"{name} cannot exceed {MAX_AMOUNT_CENTS}")


def enforce_rules_product(patch: dict, *, existing=None) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    `existing` is the current Product on update (None on create).
    """
    enforce_money_fields(patch, "price_cents", "cost_price_cents", "deposit_cents")

    for name in ("stock", "empty_count", "filled_count", "sold_count", "min_stock", "max_stock"):
        if patch.get(name) is not None and patch[name] < 0:
            raise ValidationFailed(f"{name} must be >= 0")

    def current(name):
        if name in patch:
            return patch[name]
        return getattr(existing, name, None) if existing is not None else None

    min_stock = current("min_stock")
    max_stock = current("max_stock")
    if min_stock is not None and max_stock is not None and min_stock > max_stock:
        raise ValidationFailed("min_stock cannot exceed max_stock")

    if current("product_type") == "CYLINDER" and not current("cylinder_type"):
        raise ValidationFailed("cylinder_type is required for cylinder products")
