from decimal import Decimal, ROUND_HALF_UP

MONEY_QUANT = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")
MINOR_UNITS_PER_MAJOR = 100


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def to_minor_units(value: Decimal | int | float | str) -> int:
    """9.99 -> 999. Rounds half up at the cent before converting."""
    return int(to_money(value) * MINOR_UNITS_PER_MAJOR)


def from_minor_units(amount: int) -> Decimal:
    return to_money(Decimal(amount) / MINOR_UNITS_PER_MAJOR)
