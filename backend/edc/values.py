"""
Parsing helpers shared by the schema model and the validation engine.

Raw form values arrive as text or JSON primitives. These helpers turn them
into Python numbers, dates and times, raising ``ValueError`` when a value
cannot be read.
"""

import datetime
import math
import re
from decimal import Decimal
from typing import Any, Union

from django.utils import timezone
from django.utils.dateparse import parse_date as _parse_date
from django.utils.dateparse import parse_datetime as _parse_datetime
from django.utils.dateparse import parse_time as _parse_time

Number = Union[int, float]

# Plain decimal notation only: no digit separators, no non-ASCII digits
NUMBER_RE = re.compile(r"[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", re.ASCII)


def is_blank(value: Any) -> bool:
    """Missing values: None, whitespace-only strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value) == 0
    return False


def parse_number(value: Any) -> Number:
    """Parse an int where the text is integral, otherwise a finite float."""
    if isinstance(value, bool):
        raise ValueError("booleans are not numbers")
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not NUMBER_RE.fullmatch(text):
            raise ValueError(f"not a number: {value!r}")
        try:
            return int(text)
        except ValueError:
            number = float(text)
    else:
        raise ValueError(f"unsupported numeric value {value!r}")
    if math.isnan(number) or math.isinf(number):
        raise ValueError("number must be finite")
    return number


def parse_date(value: Any) -> datetime.date:
    """Parse an ISO ``YYYY-MM-DD`` date."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported date value {value!r}")
    parsed = _parse_date(value.strip())
    if parsed is None:
        raise ValueError(f"not an ISO date: {value!r}")
    return parsed


def parse_time(value: Any) -> datetime.time:
    """Parse ``HH:MM`` or ``HH:MM:SS[.ffffff]``."""
    if isinstance(value, datetime.time):
        return value
    if not isinstance(value, str):
        raise ValueError(f"unsupported time value {value!r}")
    parsed = _parse_time(value.strip())
    if parsed is None:
        raise ValueError(f"not an ISO time: {value!r}")
    return parsed


def parse_datetime(value: Any) -> datetime.datetime:
    """Parse an ISO 8601 datetime; naive values are read in the current time zone."""
    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = _parse_datetime(value.strip())
        if parsed is None:
            raise ValueError(f"not an ISO datetime: {value!r}")
    else:
        raise ValueError(f"unsupported datetime value {value!r}")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def format_bound(bound: Any) -> str:
    """Render a range bound for error messages: ``18`` not ``18.0``."""
    if bound is None:
        return ""
    if isinstance(bound, float) and bound.is_integer():
        return str(int(bound))
    if isinstance(bound, (datetime.date, datetime.time)):
        return bound.isoformat()
    return str(bound)
