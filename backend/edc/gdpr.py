"""
GDPR data-subject request (DSAR) workflow.

Requests are validated with the same schema engine as clinical forms, and
every creation and status change is written to the audit chain in the same
transaction as the row change.

Status flow::

    received -> identity_verified -> in_progress -> completed

Any open request may be rejected, or extended once; an extended request
resumes at identity_verified, in_progress or completed.
"""

import datetime
import secrets
from typing import Any, Mapping, Optional, Tuple

import structlog
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from edc.audit import log_audit, require_recorded
from edc.exceptions import InvalidTransition
from edc.models import DataSubjectRequest
from edc.schema import FieldKind, FieldSpec, FormSchema
from edc.validation import ValidationResult, validate

logger = structlog.get_logger(__name__)

Status = DataSubjectRequest.Status
RequestType = DataSubjectRequest.RequestType

REQUEST_PREFIXES = {
    RequestType.ACCESS: "DSAR-ACC",
    RequestType.RECTIFICATION: "DSAR-REC",
    RequestType.ERASURE: "DSAR-ERA",
    RequestType.RESTRICTION: "DSAR-RES",
    RequestType.PORTABILITY: "DSAR-POR",
    RequestType.OBJECTION: "DSAR-OBJ",
}

ALLOWED_TRANSITIONS = {
    Status.RECEIVED: {Status.IDENTITY_VERIFIED, Status.EXTENDED, Status.REJECTED},
    Status.IDENTITY_VERIFIED: {Status.IN_PROGRESS, Status.EXTENDED, Status.REJECTED},
    Status.IN_PROGRESS: {Status.COMPLETED, Status.EXTENDED, Status.REJECTED},
    Status.EXTENDED: {Status.IDENTITY_VERIFIED, Status.IN_PROGRESS, Status.COMPLETED, Status.REJECTED},
    Status.COMPLETED: set(),
    Status.REJECTED: set(),
}

CLOSED_STATUSES = {Status.COMPLETED, Status.REJECTED}

MIN_REASON_LENGTH = 10

DSAR_SCHEMA = FormSchema(
    name="dsar_request",
    fields=(
        FieldSpec(
            name="request_type",
            kind=FieldKind.SELECT,
            required=True,
            choices=tuple(RequestType.values),
        ),
        FieldSpec(name="subject_id", kind=FieldKind.TEXT, required=True, max_length=64),
        FieldSpec(name="requester_email", kind=FieldKind.EMAIL, required=True),
        FieldSpec(name="details", kind=FieldKind.TEXTAREA, max_length=5000),
    ),
)


def generate_request_number(request_type: str, now: Optional[datetime.datetime] = None) -> str:
    """``DSAR-ACC-20240131120000-0421`` style reference."""
    now = now or timezone.now()
    prefix = REQUEST_PREFIXES[RequestType(request_type)]
    return f"{prefix}-{now:%Y%m%d%H%M%S}-{secrets.randbelow(10000):04d}"


def response_due_date(received_at: datetime.datetime) -> datetime.date:
    return received_at.date() + datetime.timedelta(days=settings.DSAR_RESPONSE_DAYS)


def create_request(
    values: Mapping[str, Any], user_id: str
) -> Tuple[ValidationResult, Optional[DataSubjectRequest]]:
    """
    Validate and log a new data-subject request.

    Returns:
        (ValidationResult, request); request is None when validation failed

    Raises:
        AuditTrailUnavailable: If the request could not be audited (nothing is stored)
    """
    result = validate(DSAR_SCHEMA, values)
    if not result.valid:
        return result, None

    cleaned = result.cleaned_data
    received_at = timezone.now()
    with transaction.atomic():
        dsar = DataSubjectRequest.objects.create(
            request_number=generate_request_number(cleaned["request_type"], received_at),
            request_type=cleaned["request_type"],
            subject_id=cleaned["subject_id"],
            requester_email=cleaned["requester_email"],
            details=cleaned.get("details", ""),
            received_at=received_at,
            due_date=response_due_date(received_at),
            created_by=user_id,
        )
        require_recorded(
            log_audit(
                "DSAR_CREATED",
                f"dsar:{dsar.request_number}",
                detail=f"type={dsar.request_type} due={dsar.due_date.isoformat()}",
                user_id=user_id,
            )
        )

    logger.info("dsar_created", request_number=dsar.request_number, request_type=dsar.request_type)
    return result, dsar


def transition_request(
    request_number: str,
    new_status: str,
    user_id: str,
    note: str = "",
    extension_days: Optional[int] = None,
) -> DataSubjectRequest:
    """
    Move a request to ``new_status``.

    Extending needs a reason in ``note`` and ``extension_days`` within
    DSAR_MAX_EXTENSION_DAYS, and is allowed once. Completing or rejecting
    records ``note`` as the resolution; rejection requires one.

    Raises:
        DataSubjectRequest.DoesNotExist: Unknown request number
        InvalidTransition: The move is not allowed from the current status
        AuditTrailUnavailable: If the change could not be audited (nothing is changed)
    """
    try:
        target = Status(new_status)
    except ValueError:
        raise InvalidTransition(f"unknown status {new_status!r}")

    with transaction.atomic():
        dsar = DataSubjectRequest.objects.select_for_update().get(request_number=request_number)
        current = Status(dsar.status)
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(f"cannot move request from {current.value} to {target.value}")

        detail = f"from={current.value} to={target.value}"
        if target is Status.EXTENDED:
            if dsar.extension_reason:
                raise InvalidTransition("request has already been extended")
            if len(note.strip()) < MIN_REASON_LENGTH:
                raise InvalidTransition(
                    f"extension reason must be at least {MIN_REASON_LENGTH} characters"
                )
            max_days = settings.DSAR_MAX_EXTENSION_DAYS
            if extension_days is None or not 1 <= extension_days <= max_days:
                raise InvalidTransition(f"extension must be between 1 and {max_days} days")
            dsar.due_date = dsar.due_date + datetime.timedelta(days=extension_days)
            dsar.extension_reason = note.strip()
            detail += f" due={dsar.due_date.isoformat()}"
        elif target in CLOSED_STATUSES:
            if target is Status.REJECTED and not note.strip():
                raise InvalidTransition("a rejection needs a documented reason")
            dsar.resolution_note = note.strip()
            dsar.completed_at = timezone.now()

        dsar.status = target.value
        dsar.save()
        require_recorded(
            log_audit(
                f"DSAR_{target.name}",
                f"dsar:{dsar.request_number}",
                detail=detail,
                user_id=user_id,
            )
        )

    logger.info(
        "dsar_status_changed",
        request_number=dsar.request_number,
        from_status=current.value,
        to_status=target.value,
    )
    return dsar


def overdue_requests(today: Optional[datetime.date] = None):
    """Open requests whose (possibly extended) due date has passed."""
    today = today or timezone.localdate()
    return DataSubjectRequest.objects.exclude(
        status__in=[s.value for s in CLOSED_STATUSES]
    ).filter(due_date__lt=today)
