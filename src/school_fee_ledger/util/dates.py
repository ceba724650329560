from __future__ import annotations

from datetime import date

from dateutil import parser as date_parser


def parse_date(value: str) -> date:
    """
    Parse dates like:
    - "2025-06-14"
    - "14/06/2025"
    - "14 Jun 2025"

    Ambiguous numeric dates are read day-first, as written on school receipts.
    """
    if value is None:
        raise ValueError("parse_date: value is None")
    s = value.strip()
    if not s:
        raise ValueError("parse_date: empty string")
    # ISO dates are never day-first.
    try:
        return date.fromisoformat(s)
    except ValueError:
        pass
    dt = date_parser.parse(s, dayfirst=True, yearfirst=False)
    return dt.date()
