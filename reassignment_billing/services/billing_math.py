# reassignment_billing/services/billing_math.py
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, List

Q2 = Decimal("0.01")
ZERO = Decimal("0")


def D(x) -> Decimal:
    try:
        return Decimal(str(x or 0))
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def money2(x) -> Decimal:
    return D(x).quantize(Q2, rounding=ROUND_HALF_UP)


def is_whole_paise(x) -> bool:
    d = D(x)
    return d == d.quantize(Q2)


def money_sum(values: Iterable) -> Decimal:
    return money2(sum((D(v) for v in values), ZERO))


def percent_of(base, pct) -> Decimal:
    return money2(D(base) * D(pct) / Decimal("100"))


def allocate_proportionally(amount, weights: List[Decimal]) -> List[Decimal]:
    """
    Split `amount` across `weights` in proportion, in whole paise.

    Largest-remainder rounding: the shares always add back up to the
    (quantized) amount when at least one weight is positive.
    """
    amount = money2(amount)
    weights = [max(D(w), ZERO) for w in weights]
    total_w = sum(weights, ZERO)
    if not weights or total_w <= 0 or amount == 0:
        return [ZERO.quantize(Q2) for _ in weights]

    cents = int(amount * 100)
    raw = [Decimal(cents) * w / total_w for w in weights]
    floors = [int(r) for r in raw]
    leftover = cents - sum(floors)

    # hand out remaining paise to the largest fractional parts (stable order)
    order = sorted(range(len(raw)),
                   key=lambda i: (raw[i] - floors[i], -i),
                   reverse=True)
    for i in order[:leftover]:
        floors[i] += 1

    return [(Decimal(c) / 100).quantize(Q2) for c in floors]
