from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Quantities are stored as NUMERIC(18, 4)
QUANTITY_PLACES = Decimal("0.0001")
QUANTITY_LIMIT = Decimal(10) ** 14
ZERO = Decimal("0")


def to_decimal(value: Any, field: str = "quantity") -> Decimal:
    """
    Coerce an API or service input to a Decimal quantity.

    Accepts Decimal, int and numeric strings. Floats are converted through
    their string form so 0.1 stays 0.1. Booleans are rejected even though
    they are ints.
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number")
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    try:
        result = result.quantize(QUANTITY_PLACES)
    except InvalidOperation:
        raise ValidationError(f"{field} is too large")
    if abs(result) >= QUANTITY_LIMIT:
        raise ValidationError(f"{field} is too large")
    return result


def positive_decimal(value: Any, field: str = "quantity") -> Decimal:
    result = to_decimal(value, field)
    if result <= ZERO:
        raise ValidationError(f"{field} must be greater than zero")
    return result


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def require_int(value: Any, field: str) -> int:
    result = optional_int(value, field)
    if result is None:
        raise ValidationError(f"{field} is required")
    return result


def optional_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def require_fields(data: dict | None, fields: Iterable[str]) -> dict:
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return data


def require_list(data: dict, field: str) -> list:
    value = data.get(field)
    if not isinstance(value, list) or not value:
        raise ValidationError(f"{field} must be a non-empty list")
    return value


def format_quantity(value: Decimal | None) -> str | None:
    """Serialize a quantity for JSON without float rounding."""
    if value is None:
        return None
    return format(Decimal(value).quantize(QUANTITY_PLACES).normalize(), "f")
