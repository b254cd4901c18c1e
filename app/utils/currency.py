"""Money helpers: cents <-> Decimal and display formatting."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def quantize(value: Decimal | int | float | str) -> Decimal:
    """Round to cents, half-up (commercial rounding)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def from_cents(value) -> Decimal | None:
    """Parse an integer amount in cents (int or numeric string) into Decimal units. None if unparseable."""
    if value is None or value == "":
        return None
    try:
        cents = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return (Decimal(cents) / 100).quantize(CENT)


def format_amount(amount: Decimal | int | float, currency: str = "EUR") -> str:
    """Return a string like "29.99 EUR"."""
    try:
        return f"{quantize(amount)} {currency}"
    except InvalidOperation:
        return f"{amount} {currency}"
