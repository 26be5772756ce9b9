"""Platform commission calculator.

Pure function: the commission type is derived from which subtotal components
are non-zero, never chosen by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

COMMISSION_RATE = Decimal("0.08")
CENTAVO = Decimal("0.01")
ZERO = Decimal("0")


def to_money(value: Decimal | int | str) -> Decimal:
    """Quantize an amount to centavos (half-up)."""
    return Decimal(value).quantize(CENTAVO, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Commission:
    rate: Decimal
    amount: Decimal
    type: str


def calculate_commission(
    product_subtotal: Decimal = ZERO,
    design_subtotal: Decimal = ZERO,
    customization_design_fee: Decimal = ZERO,
) -> Commission:
    """Compute the platform commission for a set of subtotal components.

    >>> calculate_commission(product_subtotal=Decimal("100"))
    Commission(rate=Decimal('0.08'), amount=Decimal('8.00'), type='product')
    """
    parts = (product_subtotal, design_subtotal, customization_design_fee)
    if any(part < 0 for part in parts):
        raise ValueError("Commission components must be non-negative")

    total = sum(parts, ZERO)
    if total == 0:
        return Commission(rate=ZERO, amount=ZERO, type="product")

    if customization_design_fee > 0:
        kind = "customization"
    elif product_subtotal > 0 and design_subtotal > 0:
        kind = "mixed"
    elif design_subtotal > 0:
        kind = "design"
    else:
        kind = "product"

    return Commission(
        rate=COMMISSION_RATE,
        amount=to_money(total * COMMISSION_RATE),
        type=kind,
    )
