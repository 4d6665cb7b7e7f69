from __future__ import annotations

from decimal import Decimal


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_currency(value: Decimal) -> str:
    cents = value.quantize(Decimal("0.01"))
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents):,.2f}"


def format_signed_currency(value: Decimal) -> str:
    return f"+{format_currency(value)}" if value > 0 else format_currency(value)


def format_percent(value: Decimal) -> str:
    rounded = value.quantize(Decimal("0.01"))
    return f"{'+' if rounded > 0 else ''}{rounded:.2f}%"


def format_shares(value: Decimal) -> str:
    return format_decimal(value)
