from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from retailpos.services.errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
# Payment, discount and paid amounts share the price ceiling
MAX_AMOUNT_CENTS = MAX_PRICE_CENTS
# Per operation and per location row
MAX_QUANTITY = 10_000_000
# Width of an Integer column on every supported backend
MAX_INTEGER = 2_147_483_647


def require_fields(data: Any, *fields: str) -> dict:
    """Reject a missing/non-object JSON body or one that lacks any of `fields`."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [f for f in fields if data.get(f) is None]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details={"missing": missing},
        )
    return data


def optional_body(data: Any) -> dict:
    """Body of an endpoint whose fields are all optional."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion for request payloads.

    Accepts ints and plain digit strings; rejects bools, floats, decimals
    and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(
                f"{field} must be a plain integer (scientific notation not allowed)",
                details={"field": field},
            )
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", details={"field": field})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", details={"field": field})
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if abs(result) > MAX_INTEGER:
        raise ValidationError(f"{field} is out of range", details={"field": field})
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={"field": field})
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={"field": field})
    return result


def coerce_optional_int(value: Any, field: str, **kwargs) -> int | None:
    if value is None:
        return None
    return coerce_int(value, field, **kwargs)


def coerce_optional_str(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    """Free-text fields: None passes through, anything but a string is rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", details={"field": field})
    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field} must be at most {max_length} characters",
            details={"field": field, "max_length": max_length},
        )
    return value


def coerce_str(value: Any, field: str, *, max_length: int | None = None) -> str:
    result = coerce_optional_str(value, field, max_length=max_length)
    if result is None or not result.strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    return result.strip()


def coerce_bool(value: Any, field: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false", details={"field": field})
    return value


def coerce_decimal(value: Any, field: str, *, minimum: Decimal | None = None, maximum: Decimal | None = None) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", details={"field": field})
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if not result.is_finite():
        raise ValidationError(f"{field} must be a number", details={"field": field})
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={"field": field})
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={"field": field})
    return result


def coerce_basket(items: Any) -> list[dict]:
    """Normalize the `items` array of a checkout payload."""
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty array", details={"field": "items"})

    basket = []
    for index, entry in enumerate(items):
        if not isinstance(entry, dict):
            raise ValidationError(f"items[{index}] must be an object", details={"index": index})
        line = {
            "item_id": coerce_int(entry.get("item_id"), f"items[{index}].item_id", minimum=1),
            "quantity": coerce_int(
                entry.get("quantity"), f"items[{index}].quantity", minimum=1, maximum=MAX_QUANTITY
            ),
        }
        price = coerce_optional_int(
            entry.get("unit_price_cents"),
            f"items[{index}].unit_price_cents",
            minimum=0,
            maximum=MAX_PRICE_CENTS,
        )
        if price is not None:
            line["unit_price_cents"] = price
        basket.append(line)
    return basket
