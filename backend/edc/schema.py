"""
Declarative form schema model.

A FormSchema is an ordered tuple of FieldSpec entries; order is both display
and evaluation order. Both types are immutable and check their own structure
on construction, so a malformed schema fails when it is loaded rather than
when the first submission arrives.
"""

import keyword
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, Optional, Tuple

from edc import values
from edc.exceptions import SchemaError
from edc.expressions import ExpressionSyntaxError, parse_expression, referenced_names


class FieldKind(str, Enum):
    TEXT = "text"
    NUMERIC = "numeric"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    EMAIL = "email"
    SELECT = "select"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    CHECKBOX_GROUP = "checkbox_group"
    TEXTAREA = "textarea"
    SLIDER = "slider"
    FILE = "file"
    SIGNATURE = "signature"

    @property
    def is_enumerated(self) -> bool:
        return self in ENUMERATED_KINDS

    @property
    def is_ordered(self) -> bool:
        return self in ORDERED_KINDS


ENUMERATED_KINDS = frozenset({FieldKind.SELECT, FieldKind.RADIO, FieldKind.CHECKBOX_GROUP})
ORDERED_KINDS = frozenset(
    {FieldKind.NUMERIC, FieldKind.SLIDER, FieldKind.DATE, FieldKind.TIME, FieldKind.DATETIME}
)
TEXT_KINDS = frozenset({FieldKind.TEXT, FieldKind.TEXTAREA})

_BOUND_PARSERS = {
    FieldKind.NUMERIC: values.parse_number,
    FieldKind.SLIDER: values.parse_number,
    FieldKind.DATE: values.parse_date,
    FieldKind.TIME: values.parse_time,
    FieldKind.DATETIME: values.parse_datetime,
}


@dataclass(frozen=True)
class FieldSpec:
    """One form field's type and validation rules."""

    name: str
    kind: FieldKind = FieldKind.TEXT
    required: bool = False
    min: Any = None
    max: Any = None
    choices: Tuple[str, ...] = ()
    condition: Optional[str] = None
    validity_expression: Optional[str] = None
    error_message: str = ""
    label: str = ""
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    pattern_message: str = ""
    calculation: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.isidentifier() or keyword.iskeyword(self.name):
            raise SchemaError(f"field name {self.name!r} is not a valid identifier", field=str(self.name))

        try:
            kind = FieldKind(self.kind)
        except ValueError:
            raise SchemaError(f"unknown field kind {self.kind!r}", field=self.name)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "required", bool(self.required))

        choices = tuple(str(c) for c in (self.choices or ()))
        if len(set(choices)) != len(choices):
            raise SchemaError("choices must be unique", field=self.name)
        if kind.is_enumerated and not choices:
            raise SchemaError(f"{kind.value} field requires non-empty choices", field=self.name)
        object.__setattr__(self, "choices", choices)

        self._init_bounds(kind)

        if self.max_length is not None:
            if kind not in TEXT_KINDS:
                raise SchemaError("max_length applies to text fields only", field=self.name)
            if isinstance(self.max_length, bool) or int(self.max_length) <= 0:
                raise SchemaError("max_length must be a positive integer", field=self.name)
            object.__setattr__(self, "max_length", int(self.max_length))

        if self.pattern:
            if kind not in TEXT_KINDS:
                raise SchemaError("pattern applies to text fields only", field=self.name)
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise SchemaError(f"invalid pattern: {e}", field=self.name)

        for attr in ("condition", "validity_expression", "calculation"):
            expression = getattr(self, attr)
            if expression is None or (isinstance(expression, str) and not expression.strip()):
                object.__setattr__(self, attr, None)
                continue
            try:
                parse_expression(expression)
            except ExpressionSyntaxError as e:
                raise SchemaError(f"{attr}: {e}", field=self.name)

        if self.calculation is not None:
            if kind in (FieldKind.FILE, FieldKind.SIGNATURE):
                raise SchemaError(f"{kind.value} fields cannot be calculated", field=self.name)
            if self.name in referenced_names(self.calculation):
                raise SchemaError("calculation cannot reference its own field", field=self.name)

    def _init_bounds(self, kind: FieldKind) -> None:
        if self.min is None and self.max is None:
            return
        if not kind.is_ordered:
            raise SchemaError(f"min/max are not supported for {kind.value} fields", field=self.name)
        parse = _BOUND_PARSERS[kind]
        bounds = {}
        for attr in ("min", "max"):
            raw = getattr(self, attr)
            if raw is None:
                continue
            try:
                bounds[attr] = parse(raw)
            except ValueError as e:
                raise SchemaError(f"invalid {attr} bound {raw!r}: {e}", field=self.name)
            object.__setattr__(self, attr, bounds[attr])
        if len(bounds) == 2 and bounds["min"] > bounds["max"]:
            raise SchemaError(
                f"min {values.format_bound(bounds['min'])} exceeds max {values.format_bound(bounds['max'])}",
                field=self.name,
            )

    @property
    def display_label(self) -> str:
        return self.label or self.name

    def describe(self) -> Dict[str, Any]:
        """JSON-friendly description used by the forms API."""
        return {
            "name": self.name,
            "label": self.display_label,
            "kind": self.kind.value,
            "required": self.required,
            "min": values.format_bound(self.min) if self.min is not None else None,
            "max": values.format_bound(self.max) if self.max is not None else None,
            "choices": list(self.choices),
            "condition": self.condition,
            "validity_expression": self.validity_expression,
            "error_message": self.error_message,
            "max_length": self.max_length,
            "pattern": self.pattern,
            "calculation": self.calculation,
        }


@dataclass(frozen=True)
class FormSchema:
    """Named, ordered collection of FieldSpecs defining a form."""

    name: str
    fields: Tuple[FieldSpec, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.name:
            raise SchemaError("form name is required")
        object.__setattr__(self, "fields", tuple(self.fields))

        seen = set()
        for spec in self.fields:
            if not isinstance(spec, FieldSpec):
                raise SchemaError(f"expected FieldSpec, got {type(spec).__name__}", form=self.name)
            if spec.name in seen:
                raise SchemaError("duplicate field name", form=self.name, field=spec.name)
            seen.add(spec.name)

        for spec in self.fields:
            for attr in ("condition", "validity_expression", "calculation"):
                expression = getattr(spec, attr)
                if expression is None:
                    continue
                unknown = referenced_names(expression) - seen
                if unknown:
                    raise SchemaError(
                        f"{attr} references unknown field(s): {', '.join(sorted(unknown))}",
                        form=self.name,
                        field=spec.name,
                    )

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.fields)

    def get_field(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise KeyError(name)

    def describe(self) -> Dict[str, Any]:
        return {"name": self.name, "fields": [spec.describe() for spec in self.fields]}
