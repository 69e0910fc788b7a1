"""
Module: ownership_kernel.db.types
Responsibility: Numeric conventions and helpers for minor-unit money,
    basis points and currency codes.  Centralizes the numeric conventions so
    every model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the ledger.  Money is an integer count of the
      currency's smallest unit; ownership is an integer count of basis points
      out of BASIS_POINTS_PER_WHOLE.
    - validate_currency() is the canonical currency check.
"""

from datetime import UTC, datetime

from ownership_kernel.exceptions import InvalidCurrencyError

BASIS_POINTS_PER_WHOLE = 10_000

# ISO 4217 codes accepted for settlement, with their minor-unit exponent.
CURRENCY_EXPONENTS: dict[str, int] = {
    "NGN": 2,
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "GHS": 2,
    "KES": 2,
    "ZAR": 2,
    "XOF": 0,
    "XAF": 0,
    "JPY": 0,
    "KWD": 3,
}


def validate_currency(currency: str) -> str:
    """
    Validate and normalize a currency code.

    Returns:
        The uppercase, trimmed code.

    Raises:
        InvalidCurrencyError: If the code is not supported.
    """
    if not currency or not isinstance(currency, str):
        raise InvalidCurrencyError(str(currency))

    normalized = currency.upper().strip()
    if normalized not in CURRENCY_EXPONENTS:
        raise InvalidCurrencyError(currency)
    return normalized


def format_minor_units(amount: int, currency: str) -> str:
    """
    Render an integer minor-unit amount for humans, e.g. 150000 NGN -> "NGN 1,500.00".

    Pure integer arithmetic; never goes through float.
    """
    exponent = CURRENCY_EXPONENTS.get(currency, 2)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**exponent)
    if exponent == 0:
        return f"{currency} {sign}{whole:,}"
    return f"{currency} {sign}{whole:,}.{frac:0{exponent}d}"


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
