from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from .time_utils import business_today, parse_iso_date


# Maximum amount: 9,999,999.99 (999,999,999 cents)
# Keeps amounts inside a 32-bit integer column on every backend
MAX_AMOUNT_CENTS = 999_999_999


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class LedgerError(ValueError):
    """
    Base class for every typed failure the ledger core returns to callers.

    Subclasses set `code` (stable machine-readable name) and `http_status`.
    `details()` carries the structured values a caller needs to correct its
    input (remaining balance, shortfall, ...).
    """
    code = "ledger_error"
    http_status = 400

    def details(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        payload = {"error": self.code, "message": str(self)}
        payload.update(self.details())
        return payload


class LedgerValidationError(LedgerError):
    """400-level input problem (missing field, unknown choice, bad format)."""
    code = "invalid_input"


class InvalidAmountError(LedgerValidationError):
    """Non-positive, fractional where whole required, or over a hard cap."""
    code = "invalid_amount"


class InvalidDateError(LedgerValidationError):
    """Future-dated payment."""
    code = "invalid_date"


class NotFoundError(LedgerError):
    code = "not_found"
    http_status = 404


class OverpaymentRejectedError(LedgerError):
    """Payment would push the paid total past the payable's total amount."""
    code = "overpayment_rejected"
    http_status = 409

    def __init__(self, remaining_cents: int, requested_cents: int):
        self.remaining_cents = remaining_cents
        self.requested_cents = requested_cents
        super().__init__(
            f"Payment amount exceeds remaining balance. "
            f"Requested: {requested_cents}, Remaining: {remaining_cents}"
        )

    def details(self) -> dict:
        return {
            "remaining_cents": self.remaining_cents,
            "requested_cents": self.requested_cents,
        }


class InsufficientBalanceError(LedgerError):
    """Redemption or removal exceeds the wallet's available coins."""
    code = "insufficient_balance"
    http_status = 409

    def __init__(self, available: int, requested: int):
        self.available = available
        self.requested = requested
        self.shortfall = requested - available
        super().__init__(
            f"Insufficient coins. Available: {available}, Requested: {requested}"
        )

    def details(self) -> dict:
        return {
            "available": self.available,
            "requested": self.requested,
            "shortfall": self.shortfall,
        }


class LoyaltyDisabledError(LedgerError):
    code = "loyalty_disabled"
    http_status = 409


class ConcurrencyConflictError(LedgerError):
    """Retries exhausted under contention; the caller may try again later."""
    code = "concurrency_conflict"
    http_status = 409


# =============================================================================
# INPUT HELPERS
# =============================================================================

def coerce_int(value: Any, field: str, *, error_cls: type[LedgerError] = LedgerValidationError) -> int:
    """
    Strict integer coercion for JSON / form input.

    Rejects bools, floats with a fractional part, decimals in strings and
    scientific notation. 12.0 is accepted as 12.
    """
    if isinstance(value, bool) or value is None:
        raise error_cls(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise error_cls(f"{field} must be a whole number")
        return int(value)
    if isinstance(value, Decimal):
        if value != value.to_integral_value():
            raise error_cls(f"{field} must be a whole number")
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise error_cls(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise error_cls(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise error_cls(f"{field} must be a whole number")
        try:
            return int(stripped)
        except ValueError:
            raise error_cls(f"{field} must be an integer")
    raise error_cls(f"{field} must be an integer")


def require_positive_cents(value: Any, field: str = "amount_cents") -> int:
    amount = coerce_int(value, field, error_cls=InvalidAmountError)
    if amount <= 0:
        raise InvalidAmountError(f"{field} must be positive")
    if amount > MAX_AMOUNT_CENTS:
        raise InvalidAmountError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS}")
    return amount


def require_non_negative_cents(value: Any, field: str) -> int:
    amount = coerce_int(value, field, error_cls=InvalidAmountError)
    if amount < 0:
        raise InvalidAmountError(f"{field} cannot be negative")
    if amount > MAX_AMOUNT_CENTS:
        raise InvalidAmountError(f"{field} exceeds maximum of {MAX_AMOUNT_CENTS}")
    return amount


def require_whole_coins(value: Any, field: str = "coins") -> int:
    """Coins are whole numbers greater than zero."""
    coins = coerce_int(value, field, error_cls=InvalidAmountError)
    if coins <= 0:
        raise InvalidAmountError(f"{field} must be greater than 0")
    return coins


def require_non_empty(value: Any, field: str) -> str:
    if value is None or not str(value).strip():
        raise LedgerValidationError(f"{field} is required")
    return str(value).strip()


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = list(choices)
    if value not in allowed:
        raise LedgerValidationError(f"Invalid {field}: {value}. Must be one of {allowed}")
    return value


def parse_payment_date(value: Any) -> date:
    """Accepts a date or "YYYY-MM-DD"; rejects dates after business today."""
    if isinstance(value, datetime):
        parsed = value.date()
    elif isinstance(value, date):
        parsed = value
    else:
        try:
            parsed = parse_iso_date(value) if isinstance(value, str) else None
        except ValueError:
            raise LedgerValidationError("payment_date must be YYYY-MM-DD")
        if parsed is None:
            raise LedgerValidationError("payment_date is required")

    if parsed > business_today():
        raise InvalidDateError("Payment date cannot be in the future")
    return parsed


def parse_decimal(value: Any, field: str, *, minimum: Decimal | None = None) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise LedgerValidationError(f"{field} must be a number")
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        raise LedgerValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise LedgerValidationError(f"{field} must be a number")
    if minimum is not None and result < minimum:
        raise LedgerValidationError(f"{field} must be at least {minimum}")
    return result
