"""Fixed-point money helpers.

All amounts inside the ledger are integer cents. Decimal currency units only
appear at the edges: user input, the exchanged JSON records and display.
"""

from decimal import ROUND_HALF_UP, Decimal, localcontext

CENT = Decimal("0.01")

# Largest cent amount a JSON number carries exactly
MAX_CENTS = 2**53 - 1

# Working precision ceiling; larger magnitudes count as garbage
_MAX_DIGITS = 64


def to_cents(value: object) -> int:
    """
    Convert a currency value to integer cents.

    Floats go through their shortest repr so that ``1.005`` rounds like the
    decimal literal it was typed as. Halves round away from zero.

    Args:
        value: int, float, Decimal or numeric string in currency units

    Returns:
        Amount in cents; 0 for None, booleans, garbage and non-finite input
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        if not amount.is_finite():
            return 0
        with localcontext() as ctx:
            needed = max(amount.adjusted(), len(amount.as_tuple().digits)) + 4
            ctx.prec = max(ctx.prec, min(needed, _MAX_DIGITS))
            cents = (amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    except (ArithmeticError, ValueError):
        return 0
    return int(cents)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a two-place Decimal."""
    cents = int(cents)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, len(str(abs(cents))) + 2)
        return (Decimal(cents) * CENT).quantize(CENT)


def round_to_cents(value: object) -> Decimal:
    """Round a currency value to two decimal places."""
    return from_cents(to_cents(value))


def cents_to_float(cents: int) -> float:
    """Convert cents to a float for JSON output."""
    return float(from_cents(cents))


def format_cents(cents: int, symbol: str = "€") -> str:
    """
    Format cents as a currency string.

    The output never depends on the runtime locale: ``-€1,234.56``.
    """
    cents = int(cents)
    sign = "-" if cents < 0 else ""
    return f"{sign}{symbol}{from_cents(abs(cents)):,.2f}"


def format_amount(value: object, symbol: str = "€") -> str:
    """Format a currency value given in units (not cents)."""
    return format_cents(to_cents(value), symbol=symbol)
