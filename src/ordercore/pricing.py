"""
Money arithmetic and order reference generation.

All amounts are ``Decimal`` quantized to cents with half-up rounding.
Provider calls take integer minor units.
"""

from __future__ import annotations

import secrets
import string
from collections.abc import Iterable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from ordercore.models import Product

CENT = Decimal("0.01")

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_SUFFIX_LENGTH = 6


def quantize_money(amount: Decimal | int | str) -> Decimal:
    """Round an amount to cents (half-up)."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """
    Convert a major-unit amount to integer minor units.

    Example:
        >>> to_minor_units(Decimal("19.995"))
        2000
    """
    return int((Decimal(amount) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def effective_price(product: Product) -> Decimal:
    """Sale price if the product has one, otherwise its list price."""
    if product.sale_price is not None:
        return quantize_money(product.sale_price)
    return quantize_money(product.price)


def order_total(lines: Iterable[tuple[Decimal, int]]) -> Decimal:
    """Sum of ``unit_price * quantity`` over ``(unit_price, quantity)`` pairs."""
    return quantize_money(sum((price * quantity for price, quantity in lines), Decimal(0)))


def generate_order_reference(prefix: str, now: datetime | None = None) -> str:
    """
    Generate a human-readable order reference.

    Shape: ``<PREFIX>-<YYYYMMDD>-<6 uppercase alphanumerics>``.

    Args:
        prefix: Reference prefix (e.g. ``NM``)
        now: Timestamp for the date part (defaults to the current UTC time)

    Returns:
        The order reference string
    """
    moment = now or datetime.now(UTC)
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH))
    return f"{prefix}-{moment:%Y%m%d}-{suffix}"


__all__ = [
    "CENT",
    "quantize_money",
    "to_minor_units",
    "effective_price",
    "order_total",
    "generate_order_reference",
]
