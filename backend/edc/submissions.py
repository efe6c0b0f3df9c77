"""
Form submission: validate, persist the cleaned record, audit.

The record write and its FORM_SUBMISSION audit event share one database
transaction, so a submission whose audit event cannot be recorded is not
stored either.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import structlog
from django.db import transaction

from edc.audit import AuditEntry, log_audit, require_recorded
from edc.schema_loader import load_form_schema
from edc.validation import ValidationResult, validate

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubmissionOutcome:
    result: ValidationResult
    record: Optional[Any] = None
    audit_entry: Optional[AuditEntry] = None

    @property
    def accepted(self) -> bool:
        return self.record is not None


def submit_form(
    form_name: str,
    raw_values: Mapping[str, Any],
    user_id: str,
    subject_id: str = "",
) -> SubmissionOutcome:
    """
    Validate a submission against the named form and store it when valid.

    Returns:
        SubmissionOutcome; ``record`` is None when validation failed

    Raises:
        FormDefinition.DoesNotExist: If the form is unknown or inactive
        AuditTrailUnavailable: If the submission could not be audited (nothing is stored)
    """
    from edc.models import CaseRecord, FormDefinition

    schema = load_form_schema(form_name)
    result = validate(schema, raw_values)

    if not result.valid:
        logger.info(
            "form_submission_rejected",
            form=form_name,
            error_fields=sorted(result.errors),
        )
        return SubmissionOutcome(result=result)

    with transaction.atomic():
        record = CaseRecord.objects.create(
            form=FormDefinition.objects.get(name=schema.name),
            subject_id=subject_id,
            data=dict(result.cleaned_data),
            created_by=user_id,
        )
        entry = require_recorded(
            log_audit(
                "FORM_SUBMISSION",
                f"form:{schema.name}/record:{record.pk}",
                detail=f"subject={subject_id} fields={len(result.cleaned_data)}",
                user_id=user_id,
            )
        )

    logger.info(
        "form_submission_stored",
        form=form_name,
        record_id=str(record.pk),
        audit_sequence=entry.sequence_number,
    )
    return SubmissionOutcome(result=result, record=record, audit_entry=entry)
