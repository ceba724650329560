from .dates import parse_date
from .money import format_amount, parse_amount, quantize

__all__ = ["parse_date", "parse_amount", "format_amount", "quantize"]
