"""
Build FormSchema instances from data-dictionary sources.

Two sources are supported:

- a data-dictionary CSV, one row per field, using either the long column
  names (``name``, ``label``, ``kind``, ``required``, ``choices``, ...) or the
  short spreadsheet ones (``field``, ``prompt``, ``type``, ``layout``, ``req``,
  ``values``, ``cond``, ``valid``, ``validmsg``, ``length``)
- the FormDefinition / FieldDefinition tables

Either way the result goes through FieldSpec/FormSchema construction, so a
malformed dictionary raises SchemaError before any record is validated.
"""

import csv
import json
import re
from typing import Any, Dict, Iterable, List, Mapping, TextIO, Union

import structlog
from django.db import transaction

from edc.audit import log_audit, require_recorded
from edc.exceptions import SchemaError
from edc.schema import FieldKind, FieldSpec, FormSchema

logger = structlog.get_logger(__name__)

COLUMN_ALIASES = {
    "field": "name",
    "prompt": "label",
    "layout": "layout",
    "type": "type",
    "req": "required",
    "values": "choices",
    "cond": "condition",
    "valid": "validity_expression",
    "validmsg": "error_message",
    "length": "max_length",
    "calc": "calculation",
}

# Spreadsheet storage type codes
TYPE_CODES = {
    "C": FieldKind.TEXT,
    "N": FieldKind.NUMERIC,
    "D": FieldKind.DATE,
    "L": FieldKind.CHECKBOX,
}

LAYOUT_ALIASES = {
    "dropdown": FieldKind.SELECT,
    "checkboxes": FieldKind.CHECKBOX_GROUP,
    "number": FieldKind.NUMERIC,
    "range": FieldKind.SLIDER,
}

DEFAULT_RADIO_CHOICES = ("Yes", "No")

_TRUE_FLAGS = {"1", "true", "yes", "y", "t"}

# "sex=F" style shorthand; "==", "<=", ">=" and "!=" are left alone
_EQUALITY_SHORTHAND = re.compile(r"^\s*([A-Za-z_]\w*)\s*=(?!=)\s*(.*?)\s*$")


def expand_condition(condition: str) -> str:
    """Rewrite ``field=value`` shorthand as ``field == "value"``."""
    match = _EQUALITY_SHORTHAND.match(condition)
    if not match:
        return condition
    name, value = match.groups()
    value = value.strip("'\"")
    return f"{name} == {json.dumps(value)}"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return _text(value).lower() in _TRUE_FLAGS


def _choices(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = _text(value).split(",")
    return [str(item).strip() for item in items if str(item).strip()]


def _resolve_kind(row: Mapping[str, Any], name: str) -> FieldKind:
    for column in ("kind", "layout"):
        value = _text(row.get(column)).lower()
        if not value:
            continue
        if value in LAYOUT_ALIASES:
            return LAYOUT_ALIASES[value]
        try:
            kind = FieldKind(value)
        except ValueError:
            raise SchemaError(f"unknown field kind {value!r}", field=name)
        # A plain text layout defers to the storage type code
        if not (column == "layout" and kind is FieldKind.TEXT and row.get("type")):
            return kind

    code = _text(row.get("type")).upper() or "C"
    if code not in TYPE_CODES:
        raise SchemaError(f"unknown type code {code!r}", field=name)
    return TYPE_CODES[code]


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Map one data-dictionary row onto FieldSpec keyword arguments."""
    row = {COLUMN_ALIASES.get(_text(k).lower(), _text(k).lower()): v for k, v in row.items() if k}
    name = _text(row.get("name"))
    kind = _resolve_kind(row, name)

    choices = _choices(row.get("choices"))
    if kind is FieldKind.RADIO and not choices:
        choices = list(DEFAULT_RADIO_CHOICES)

    condition = _text(row.get("condition"))
    max_length = _text(row.get("max_length"))
    try:
        max_length = int(max_length) if max_length else None
    except ValueError:
        raise SchemaError(f"invalid length {max_length!r}", field=name)

    return {
        "name": name,
        "kind": kind,
        "label": _text(row.get("label")),
        "required": _flag(row.get("required")),
        "min": _text(row.get("min")) or None,
        "max": _text(row.get("max")) or None,
        "choices": tuple(choices),
        "condition": expand_condition(condition) if condition else None,
        "validity_expression": _text(row.get("validity_expression")) or None,
        "error_message": _text(row.get("error_message")),
        "max_length": max_length if kind in (FieldKind.TEXT, FieldKind.TEXTAREA) else None,
        "pattern": _text(row.get("pattern")) or None,
        "pattern_message": _text(row.get("pattern_message")),
        "calculation": _text(row.get("calculation")) or None,
    }


def schema_from_rows(name: str, rows: Iterable[Mapping[str, Any]]) -> FormSchema:
    """Build a FormSchema from data-dictionary rows; blank rows are skipped."""
    specs = []
    for row in rows:
        if not any(_text(v) for v in row.values()):
            continue
        try:
            specs.append(FieldSpec(**normalize_row(row)))
        except SchemaError as e:
            raise SchemaError(e.message, form=name, field=e.field) from e
    return FormSchema(name=name, fields=tuple(specs))


def schema_from_csv(source: Union[str, TextIO], name: str) -> FormSchema:
    """
    Read a data-dictionary CSV.

    Args:
        source: Path to the file or an open text stream
        name: Form name for the resulting schema
    """
    if isinstance(source, str):
        with open(source, newline="", encoding="utf-8-sig") as handle:
            return schema_from_rows(name, list(csv.DictReader(handle)))
    return schema_from_rows(name, list(csv.DictReader(source)))


def load_form_schema(name: str) -> FormSchema:
    """
    Build the schema of an active form from the definition tables.

    Raises:
        FormDefinition.DoesNotExist: If no active form has that name
        SchemaError: If the stored definition is malformed
    """
    from edc.models import FormDefinition

    form = FormDefinition.objects.get(name=name, is_active=True)
    specs = []
    for definition in form.fields.order_by("position", "id"):
        try:
            specs.append(
                FieldSpec(
                    name=definition.name,
                    kind=definition.kind,
                    label=definition.label,
                    required=definition.required,
                    min=definition.min_value or None,
                    max=definition.max_value or None,
                    choices=tuple(definition.choices or ()),
                    condition=definition.condition or None,
                    validity_expression=definition.validity_expression or None,
                    error_message=definition.error_message,
                    max_length=definition.max_length,
                    pattern=definition.pattern or None,
                    pattern_message=definition.pattern_message,
                    calculation=definition.calculation or None,
                )
            )
        except SchemaError as e:
            raise SchemaError(e.message, form=name, field=e.field) from e
    return FormSchema(name=form.name, fields=tuple(specs))


def _bound_text(value) -> str:
    if value is None:
        return ""
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


@transaction.atomic
def import_schema(schema: FormSchema, user_id: str, title: str = "", description: str = ""):
    """
    Store a schema in the definition tables, replacing any previous version.

    The import is audited; if the audit event cannot be recorded the import
    is rolled back.

    Returns:
        The saved FormDefinition
    """
    from edc.models import FieldDefinition, FormDefinition

    form, created = FormDefinition.objects.select_for_update().get_or_create(
        name=schema.name, defaults={"title": title or schema.name, "description": description}
    )
    if not created:
        form.version += 1
        form.is_active = True
        if title:
            form.title = title
        if description:
            form.description = description
        form.save()
        form.fields.all().delete()

    FieldDefinition.objects.bulk_create(
        [
            FieldDefinition(
                form=form,
                position=position,
                name=spec.name,
                label=spec.label,
                kind=spec.kind.value,
                required=spec.required,
                min_value=_bound_text(spec.min),
                max_value=_bound_text(spec.max),
                choices=list(spec.choices),
                condition=spec.condition or "",
                validity_expression=spec.validity_expression or "",
                error_message=spec.error_message,
                max_length=spec.max_length,
                pattern=spec.pattern or "",
                pattern_message=spec.pattern_message,
                calculation=spec.calculation or "",
            )
            for position, spec in enumerate(schema.fields)
        ]
    )

    require_recorded(
        log_audit(
            "SCHEMA_IMPORT",
            f"form:{form.name}",
            detail=f"version={form.version} fields={len(schema)}",
            user_id=user_id,
        )
    )
    logger.info("form_schema_imported", form=form.name, version=form.version, fields=len(schema))
    return form
