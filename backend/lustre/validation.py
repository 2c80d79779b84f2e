from __future__ import annotations

from decimal import Decimal

from .money import MONEY_QUANT, to_decimal


# Maximum money amount: £9,999,999,999.99 fits NUMERIC(12, 2)
MAX_AMOUNT = Decimal("9999999999.99")
MAX_TAX_RATE = Decimal("100")


class ValidationError(ValueError):
    """
    400-level input problem.

    fields maps a field path (e.g. "lines[0].quantity") to a message so the
    caller can show errors next to the offending input.
    """
    def __init__(self, message: str, fields: dict[str, str] | None = None):
        super().__init__(message)
        self.fields = fields or {}


class FieldErrors:
    """Collects per-field problems and raises them together."""

    def __init__(self):
        self.errors: dict[str, str] = {}

    def add(self, field: str, message: str) -> None:
        self.errors.setdefault(field, message)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_if_any(self, message: str = "Validation failed") -> None:
        if self.errors:
            raise ValidationError(message, fields=dict(self.errors))


def has_cent_precision(amount: Decimal) -> bool:
    return amount.normalize().as_tuple().exponent >= MONEY_QUANT.as_tuple().exponent


def coerce_int(value, field: str, errors: FieldErrors, *, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion: rejects bools, floats, decimals and scientific
    notation rather than silently truncating.
    """
    if value is None:
        errors.add(field, f"{field} is required")
        return None
    if isinstance(value, bool):
        errors.add(field, f"{field} must be an integer")
        return None
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            errors.add(field, f"{field} must be a plain integer")
            return None
        try:
            result = int(stripped)
        except ValueError:
            errors.add(field, f"{field} must be an integer")
            return None
    else:
        errors.add(field, f"{field} must be an integer")
        return None

    if minimum is not None and result < minimum:
        errors.add(field, f"{field} must be >= {minimum}")
        return None
    return result


def coerce_amount(
    value,
    field: str,
    errors: FieldErrors,
    *,
    required: bool = True,
    positive: bool = False,
    maximum: Decimal = MAX_AMOUNT,
) -> Decimal | None:
    """
    Decimal money coercion with range checks (>= 0, or > 0 when positive).
    Amounts are stored as NUMERIC(_, 2), so more than two decimal places is
    an error rather than a silent rounding.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            errors.add(field, f"{field} is required")
        return None
    if isinstance(value, bool):
        errors.add(field, f"{field} must be a number")
        return None
    try:
        amount = to_decimal(value)
    except ValueError:
        errors.add(field, f"{field} must be a number")
        return None
    if not amount.is_finite():
        errors.add(field, f"{field} must be a number")
        return None

    if positive and amount <= 0:
        errors.add(field, f"{field} must be > 0")
        return None
    if amount < 0:
        errors.add(field, f"{field} must be >= 0")
        return None
    if amount > maximum:
        errors.add(field, f"{field} cannot exceed {maximum}")
        return None
    if not has_cent_precision(amount):
        errors.add(field, f"{field} must have at most 2 decimal places")
        return None
    return amount


def clean_text(value, field: str, errors: FieldErrors, *, required: bool = False, max_length: int | None = 255) -> str | None:
    if value is None:
        if required:
            errors.add(field, f"{field} is required")
        return None
    text = str(value).strip()
    if not text:
        if required:
            errors.add(field, f"{field} cannot be blank")
        return None
    if max_length is not None and len(text) > max_length:
        errors.add(field, f"{field} exceeds max length {max_length}")
        return None
    return text


def require_reason(reason, field: str = "reason") -> str:
    """Single-field helper for operations that demand a justification."""
    errors = FieldErrors()
    text = clean_text(reason, field, errors, required=True)
    errors.raise_if_any(f"{field} is required")
    return text
