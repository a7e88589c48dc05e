# backoffice/money.py
from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

# Absolute difference under which two amounts are treated as equal
TOLERANCE = Decimal("0.01")


def to_money(value):
    """Quantize to the 2 fraction digits every persisted amount carries."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def money_sum(amounts):
    return sum((Decimal(a) for a in amounts), ZERO)


def is_settled(amount):
    return abs(amount) < TOLERANCE


def amounts_match(a, b):
    return abs(a - b) <= TOLERANCE


def exceeds(amount, limit):
    """True when ``amount`` is above ``limit`` by more than the tolerance."""
    return amount > limit + TOLERANCE
