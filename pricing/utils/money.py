# pricing/utils/money.py

from decimal import Decimal, ROUND_HALF_UP

Money = Decimal

MONEY = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))

def round_money(x: Money) -> Money:
    return D(x).quantize(MONEY, rounding=ROUND_HALF_UP)

def clamp_money(x: Money, base: Money) -> Money:
    """Round to cents and keep the amount inside [0, base]."""
    base = max(ZERO, round_money(base))
    amount = round_money(x)
    if amount < 0:
        return round_money(ZERO)
    if amount > base:
        return base
    return amount

def percent_of(base: Money, pct: Money) -> Money:
    return D(base) * D(pct) / HUNDRED

def to_float(x) -> float:
    return float(round_money(x))
