import uuid

from django.db import models
from django.utils import timezone

from edc.encryption import EncryptedEmailField, EncryptedJSONField, EncryptedTextField
from edc.schema import FieldKind


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class FormDefinition(TimeStampedModel):
    """A data-collection form; its fields are FieldDefinition rows."""

    name = models.SlugField(max_length=100, unique=True)
    title = models.CharField(max_length=255, blank=True)
    description = models.TextField(blank=True)
    version = models.PositiveIntegerField(default=1)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:  # pragma: no cover
        return f"FormDefinition<{self.name} v{self.version}>"


class FieldDefinition(models.Model):
    """One row of a form's data dictionary."""

    KIND_CHOICES = [(kind.value, kind.value.replace("_", " ").title()) for kind in FieldKind]

    form = models.ForeignKey(FormDefinition, on_delete=models.CASCADE, related_name="fields")
    position = models.PositiveIntegerField(default=0)
    name = models.CharField(max_length=100)
    label = models.CharField(max_length=255, blank=True)
    kind = models.CharField(max_length=32, choices=KIND_CHOICES, default=FieldKind.TEXT.value)
    required = models.BooleanField(default=False)
    # Bounds are kept as text and parsed per kind when the schema is built
    min_value = models.CharField(max_length=64, blank=True)
    max_value = models.CharField(max_length=64, blank=True)
    choices = models.JSONField(default=list, blank=True)
    condition = models.TextField(blank=True)
    validity_expression = models.TextField(blank=True)
    error_message = models.CharField(max_length=255, blank=True)
    max_length = models.PositiveIntegerField(null=True, blank=True)
    pattern = models.CharField(max_length=255, blank=True)
    pattern_message = models.CharField(max_length=255, blank=True)
    calculation = models.TextField(blank=True)

    class Meta:
        ordering = ["form", "position", "id"]
        constraints = [
            models.UniqueConstraint(fields=["form", "name"], name="edc_field_unique_name_per_form"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"FieldDefinition<{self.form_id}.{self.name}>"


class CaseRecord(TimeStampedModel):
    """A validated submission. The cleaned values are encrypted at rest."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    form = models.ForeignKey(FormDefinition, on_delete=models.PROTECT, related_name="records")
    subject_id = models.CharField(max_length=64, blank=True, db_index=True)
    data = EncryptedJSONField()
    created_by = models.CharField(max_length=255)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["form", "subject_id"], name="edc_case_form_subject_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"CaseRecord<{self.form_id}:{self.id}>"


class DataSubjectRequest(TimeStampedModel):
    """GDPR data-subject rights request (Articles 15-21)."""

    class RequestType(models.TextChoices):
        ACCESS = "access", "Access"
        RECTIFICATION = "rectification", "Rectification"
        ERASURE = "erasure", "Erasure"
        RESTRICTION = "restriction", "Restriction"
        PORTABILITY = "portability", "Portability"
        OBJECTION = "objection", "Objection"

    class Status(models.TextChoices):
        RECEIVED = "received", "Received"
        IDENTITY_VERIFIED = "identity_verified", "Identity verified"
        IN_PROGRESS = "in_progress", "In progress"
        EXTENDED = "extended", "Extended"
        COMPLETED = "completed", "Completed"
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request_number = models.CharField(max_length=40, unique=True)
    request_type = models.CharField(max_length=32, choices=RequestType.choices)
    subject_id = models.CharField(max_length=64, db_index=True)
    requester_email = EncryptedEmailField()
    details = EncryptedTextField(blank=True)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.RECEIVED)
    received_at = models.DateTimeField(default=timezone.now)
    due_date = models.DateField()
    extension_reason = models.TextField(blank=True)
    resolution_note = EncryptedTextField(blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_by = models.CharField(max_length=255)

    class Meta:
        ordering = ["-received_at"]
        indexes = [
            models.Index(fields=["status", "due_date"], name="edc_datasub_status_due_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"DataSubjectRequest<{self.request_number} {self.status}>"


class AuditLogRecord(models.Model):
    """
    Persisted audit entry. Rows are written once by DatabaseAuditStore.

    The hash columns commit to every other column, so edits made outside the
    ORM are caught by chain verification.
    """

    sequence_number = models.PositiveBigIntegerField(unique=True)
    timestamp = models.DateTimeField(db_index=True)
    user_id = models.CharField(max_length=255, db_index=True)
    action = models.CharField(max_length=64, db_index=True)
    resource = models.CharField(max_length=255)
    status = models.CharField(max_length=32)
    detail = models.TextField(blank=True, default="")
    record_hash = models.CharField(max_length=64)
    previous_hash = models.CharField(max_length=64)
    signature = models.CharField(
        max_length=64, blank=True, help_text="HMAC-SHA256 of record_hash"
    )

    class Meta:
        db_table = "edc_audit_log_record"
        ordering = ["sequence_number"]
        indexes = [
            models.Index(fields=["action", "timestamp"], name="edc_audit_action_ts_idx"),
            models.Index(fields=["user_id", "timestamp"], name="edc_audit_user_ts_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"AuditLogRecord<{self.sequence_number} {self.action} {self.resource}>"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("audit log records are append-only")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("audit log records are append-only")

    def to_entry(self):
        from edc.audit import AuditEntry

        return AuditEntry(
            sequence_number=self.sequence_number,
            timestamp=self.timestamp,
            user_id=self.user_id,
            action=self.action,
            resource=self.resource,
            status=self.status,
            detail=self.detail,
            record_hash=self.record_hash,
            previous_hash=self.previous_hash,
            signature=self.signature,
        )


class AuditChainHead(models.Model):
    """
    Single row pointing at the last appended audit entry.

    Appends lock this row, which serializes writers across processes, and
    verification compares the log's tail against it to detect truncation.
    """

    id = models.PositiveSmallIntegerField(primary_key=True, default=1)
    sequence_number = models.PositiveBigIntegerField(default=0)
    record_hash = models.CharField(max_length=64, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "edc_audit_chain_head"

    def __str__(self) -> str:  # pragma: no cover
        return f"AuditChainHead<{self.sequence_number}>"
