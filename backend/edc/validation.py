"""
Schema-driven validation of submitted records.

``validate(schema, record)`` walks the schema's fields in order. For each
field it decides applicability from ``condition``, enforces ``required``,
coerces the raw value by kind, checks inclusive bounds, then runs the
cross-field ``validity_expression``. Fields evaluated earlier are visible to
later expressions by their cleaned value.

A field with a ``calculation`` ignores the submitted value and takes the
expression's result instead, which then goes through the same coercion and
checks. A calculation that cannot be evaluated leaves the field blank.

The engine holds no state; the only side effect is a warning log line when an
expression fails to evaluate.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import EmailValidator

from edc import values
from edc.expressions import ExpressionEvaluator, default_evaluator
from edc.schema import FieldKind, FieldSpec, FormSchema

MSG_REQUIRED = "field is required"
MSG_NUMERIC = "must be numeric"
MSG_DATETIME = "must be a valid date/time"
MSG_EMAIL = "must be a valid email address"
MSG_SELECTION = "invalid selection"
MSG_FORMAT = "invalid format"
MSG_VALIDITY = "validation failed"
MSG_CALCULATION = "could not be calculated"

_TRUE_STRINGS = frozenset({"true", "yes", "y", "1", "on", "t"})
_FALSE_STRINGS = frozenset({"false", "no", "n", "0", "off", "f"})

# No bare domains: "user@localhost" is not a deliverable address
_email_validator = EmailValidator(allowlist=[])


class CoercionError(ValueError):
    """A raw value cannot be read as its field's kind. Carries the user-facing message."""


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one validate() call. Mappings are read-only."""

    valid: bool
    errors: Mapping[str, Tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    cleaned_data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": {name: list(messages) for name, messages in self.errors.items()},
            "cleaned_data": dict(self.cleaned_data),
        }


def _coerce_number(spec: FieldSpec, raw: Any):
    try:
        return values.parse_number(raw)
    except (TypeError, ValueError):
        raise CoercionError(MSG_NUMERIC)


def _temporal(parse: Callable[[Any], Any]):
    def coerce(spec: FieldSpec, raw: Any):
        try:
            return parse(raw)
        except (TypeError, ValueError):
            raise CoercionError(MSG_DATETIME)

    return coerce


def _coerce_email(spec: FieldSpec, raw: Any) -> str:
    if not isinstance(raw, str):
        raise CoercionError(MSG_EMAIL)
    address = raw.strip().lower()
    try:
        _email_validator(address)
    except DjangoValidationError:
        raise CoercionError(MSG_EMAIL)
    return address


def _coerce_choice(spec: FieldSpec, raw: Any) -> str:
    if isinstance(raw, (list, tuple, set, dict, bool)):
        raise CoercionError(MSG_SELECTION)
    choice = str(raw).strip()
    if choice not in spec.choices:
        raise CoercionError(MSG_SELECTION)
    return choice


def _coerce_choice_group(spec: FieldSpec, raw: Any) -> List[str]:
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = raw
    else:
        raise CoercionError(MSG_SELECTION)

    selected: List[str] = []
    for item in items:
        if isinstance(item, (list, tuple, set, dict, bool)) or item is None:
            raise CoercionError(MSG_SELECTION)
        choice = str(item).strip()
        if not choice:
            continue
        if choice not in spec.choices:
            raise CoercionError(MSG_SELECTION)
        if choice not in selected:
            selected.append(choice)
    if not selected:
        raise CoercionError(MSG_SELECTION)
    return selected


def _is_blank_for(spec: FieldSpec, raw: Any) -> bool:
    if values.is_blank(raw):
        return True
    if spec.kind is FieldKind.CHECKBOX_GROUP:
        items = raw.split(",") if isinstance(raw, str) else raw
        if isinstance(items, (list, tuple)):
            return all(item is None or (isinstance(item, str) and not item.strip()) for item in items)
    return False


def _coerce_checkbox(spec: FieldSpec, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        text = raw.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise CoercionError(MSG_SELECTION)


def _coerce_text(spec: FieldSpec, raw: Any) -> str:
    if isinstance(raw, (list, tuple, set, dict)):
        raise CoercionError(MSG_FORMAT)
    text = str(raw).strip()
    if spec.max_length is not None and len(text) > spec.max_length:
        raise CoercionError(f"must be at most {spec.max_length} characters")
    if spec.pattern and not re.search(spec.pattern, text):
        raise CoercionError(spec.pattern_message or MSG_FORMAT)
    return text


def _coerce_reference(spec: FieldSpec, raw: Any) -> str:
    # file and signature fields carry an upload reference or encoded image
    if not isinstance(raw, str) or not raw.strip():
        raise CoercionError(MSG_FORMAT)
    return raw.strip()


COERCERS: Dict[FieldKind, Callable[[FieldSpec, Any], Any]] = {
    FieldKind.TEXT: _coerce_text,
    FieldKind.TEXTAREA: _coerce_text,
    FieldKind.NUMERIC: _coerce_number,
    FieldKind.SLIDER: _coerce_number,
    FieldKind.DATE: _temporal(values.parse_date),
    FieldKind.TIME: _temporal(values.parse_time),
    FieldKind.DATETIME: _temporal(values.parse_datetime),
    FieldKind.EMAIL: _coerce_email,
    FieldKind.SELECT: _coerce_choice,
    FieldKind.RADIO: _coerce_choice,
    FieldKind.CHECKBOX_GROUP: _coerce_choice_group,
    FieldKind.CHECKBOX: _coerce_checkbox,
    FieldKind.FILE: _coerce_reference,
    FieldKind.SIGNATURE: _coerce_reference,
}


def coerce_value(spec: FieldSpec, raw: Any) -> Any:
    """Coerce a non-blank raw value for ``spec``; raises CoercionError."""
    return COERCERS[spec.kind](spec, raw)


def range_error(spec: FieldSpec, value: Any) -> Optional[str]:
    """Message for a value outside the field's inclusive bounds, else None."""
    if spec.min is None and spec.max is None:
        return None
    if (spec.min is not None and value < spec.min) or (spec.max is not None and value > spec.max):
        return f"value out of range [{values.format_bound(spec.min)},{values.format_bound(spec.max)}]"
    return None


def validate(
    schema: FormSchema,
    record: Optional[Mapping[str, Any]],
    evaluator: ExpressionEvaluator = default_evaluator,
) -> ValidationResult:
    """
    Validate a submitted record against a form schema.

    Args:
        schema: The form's FormSchema
        record: Mapping of field name to raw value; keys not in the schema are ignored
        evaluator: Expression evaluator for conditions and validity expressions

    Returns:
        ValidationResult with per-field errors and cleaned, typed values
    """
    if record is None:
        record = {}
    elif not isinstance(record, Mapping):
        raise TypeError(f"record must be a mapping of field names to values, got {type(record).__name__}")
    # Calculated fields ignore whatever the client sent for them
    raw_values = {
        spec.name: (None if spec.calculation is not None else record.get(spec.name)) for spec in schema
    }

    # Unprocessed fields expose their raw value, processed ones their cleaned value
    namespace: Dict[str, Any] = {
        spec.name: (None if _is_blank_for(spec, raw_values[spec.name]) else raw_values[spec.name])
        for spec in schema
    }
    errors: Dict[str, Tuple[str, ...]] = {}
    cleaned: Dict[str, Any] = {}

    for spec in schema:
        raw = raw_values[spec.name]
        namespace[spec.name] = None

        if spec.condition is not None:
            applies, _ = evaluator.evaluate(spec.condition, namespace)
            if not applies:
                continue

        if spec.calculation is not None:
            raw, _ = evaluator.compute(spec.calculation, namespace)

        if _is_blank_for(spec, raw):
            if spec.required:
                errors[spec.name] = (MSG_CALCULATION if spec.calculation is not None else MSG_REQUIRED,)
            continue

        try:
            value = coerce_value(spec, raw)
        except CoercionError as e:
            errors[spec.name] = (str(e),)
            continue

        message = range_error(spec, value)
        if message:
            errors[spec.name] = (message,)
            continue

        if spec.validity_expression is not None:
            passed, _ = evaluator.evaluate(spec.validity_expression, {**namespace, spec.name: value})
            if not passed:
                errors[spec.name] = (spec.error_message or MSG_VALIDITY,)
                continue

        cleaned[spec.name] = value
        namespace[spec.name] = value

    return ValidationResult(
        valid=not errors,
        errors=MappingProxyType(errors),
        cleaned_data=MappingProxyType(cleaned),
    )
