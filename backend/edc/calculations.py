"""
Clinical formulas available to calculated fields.

These are registered as expression functions, so a field definition can
carry ``calculation = "bmi(weight, height)"`` and get its value derived from
other fields. Invalid inputs raise ``ValueError``/``TypeError``; the
validation engine treats that as "could not be calculated".
"""

import datetime
import math
from typing import Any

DAYS_PER_UNIT = {
    "days": 1.0,
    "weeks": 7.0,
    "months": 30.44,
    "years": 365.25,
}


def _positive(value: Any, name: str) -> float:
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{name} is required")
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        raise ValueError(f"{name} must be positive")
    return number


def _as_date(value: Any, name: str) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        return datetime.date.fromisoformat(value.strip())
    raise ValueError(f"{name} must be a date")


def bmi(weight_kg, height_cm, places=2) -> float:
    """Body mass index from kilograms and centimetres."""
    weight = _positive(weight_kg, "weight")
    height_m = _positive(height_cm, "height") / 100
    return round(weight / height_m**2, int(places))


def bsa(weight_kg, height_cm, formula="dubois") -> float:
    """Body surface area in m², DuBois or Mosteller."""
    weight = _positive(weight_kg, "weight")
    height = _positive(height_cm, "height")
    formula = str(formula).lower()
    if formula == "dubois":
        area = 0.007184 * weight**0.425 * height**0.725
    elif formula == "mosteller":
        area = math.sqrt(height * weight / 3600)
    else:
        raise ValueError(f"unknown BSA formula {formula!r}")
    return round(area, 4)


def age_years(birth_date, reference_date) -> int:
    """Completed years between two dates, using 365.25-day years."""
    birth = _as_date(birth_date, "birth_date")
    reference = _as_date(reference_date, "reference_date")
    if birth > reference:
        raise ValueError("birth_date cannot be after reference_date")
    return math.floor((reference - birth).days / 365.25)


def date_diff(start_date, end_date, unit="days") -> float:
    """Signed difference ``end - start`` in days, weeks, months or years."""
    start = _as_date(start_date, "start_date")
    end = _as_date(end_date, "end_date")
    if unit not in DAYS_PER_UNIT:
        raise ValueError(f"unknown unit {unit!r}")
    days = (end - start).days
    if unit == "days":
        return days
    return round(days / DAYS_PER_UNIT[unit], 2)


def score_sum(*values):
    """Sum of item scores, skipping unanswered (None) items."""
    if len(values) == 1 and isinstance(values[0], (list, tuple)):
        values = tuple(values[0])
    answered = [v for v in values if v is not None]
    if not answered:
        raise ValueError("no scores to sum")
    if any(isinstance(v, bool) for v in answered):
        raise TypeError("scores must be numbers")
    return sum(answered)


CALCULATION_FUNCTIONS = {
    "bmi": bmi,
    "bsa": bsa,
    "age_years": age_years,
    "date_diff": date_diff,
    "score_sum": score_sum,
}
