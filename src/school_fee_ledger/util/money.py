from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union


_CURRENCY_MARKERS = ("₹", "$", "Rs.", "Rs", "INR")

PAISE = Decimal("0.01")


def quantize(value: Union[Decimal, int, float, str]) -> Decimal:
    return Decimal(value).quantize(PAISE, rounding=ROUND_HALF_UP)


def parse_amount(value: str) -> Decimal:
    """
    Parse values like:
    - "₹20,000"
    - "20000.50"
    - "Rs. 1,500"
    - "(250)" (negative)
    """
    if value is None:
        raise ValueError("parse_amount: value is None")

    s = value.strip()
    if not s:
        raise ValueError("parse_amount: empty string")

    for marker in _CURRENCY_MARKERS:
        s = s.replace(marker, "")
    s = s.replace(",", "").strip()

    # Handle parentheses as negative
    if s.startswith("(") and s.endswith(")"):
        s = "-" + s[1:-1].strip()

    try:
        return quantize(s)
    except InvalidOperation as e:
        raise ValueError(f"parse_amount: not a number: {value!r}") from e


def format_amount(amount: Decimal, symbol: str = "₹") -> str:
    dec = quantize(amount)
    sign = "-" if dec < 0 else ""
    return f"{sign}{symbol}{abs(dec):,.2f}"
