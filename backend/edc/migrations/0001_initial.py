# Initial schema: form definitions, case records, data-subject requests
# and the hash-chained audit log with its chain-head row.

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

import edc.encryption

FIELD_KIND_CHOICES = [
    ("text", "Text"),
    ("numeric", "Numeric"),
    ("date", "Date"),
    ("time", "Time"),
    ("datetime", "Datetime"),
    ("email", "Email"),
    ("select", "Select"),
    ("radio", "Radio"),
    ("checkbox", "Checkbox"),
    ("checkbox_group", "Checkbox Group"),
    ("textarea", "Textarea"),
    ("slider", "Slider"),
    ("file", "File"),
    ("signature", "Signature"),
]


def create_chain_head(apps, schema_editor):
    AuditChainHead = apps.get_model("edc", "AuditChainHead")
    AuditChainHead.objects.get_or_create(pk=1, defaults={"sequence_number": 0, "record_hash": ""})


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="FormDefinition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.SlugField(max_length=100, unique=True)),
                ("title", models.CharField(blank=True, max_length=255)),
                ("description", models.TextField(blank=True)),
                ("version", models.PositiveIntegerField(default=1)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="FieldDefinition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("position", models.PositiveIntegerField(default=0)),
                ("name", models.CharField(max_length=100)),
                ("label", models.CharField(blank=True, max_length=255)),
                ("kind", models.CharField(choices=FIELD_KIND_CHOICES, default="text", max_length=32)),
                ("required", models.BooleanField(default=False)),
                ("min_value", models.CharField(blank=True, max_length=64)),
                ("max_value", models.CharField(blank=True, max_length=64)),
                ("choices", models.JSONField(blank=True, default=list)),
                ("condition", models.TextField(blank=True)),
                ("validity_expression", models.TextField(blank=True)),
                ("error_message", models.CharField(blank=True, max_length=255)),
                ("max_length", models.PositiveIntegerField(blank=True, null=True)),
                ("pattern", models.CharField(blank=True, max_length=255)),
                ("pattern_message", models.CharField(blank=True, max_length=255)),
                (
                    "form",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="fields",
                        to="edc.formdefinition",
                    ),
                ),
            ],
            options={
                "ordering": ["form", "position", "id"],
            },
        ),
        migrations.AddConstraint(
            model_name="fielddefinition",
            constraint=models.UniqueConstraint(fields=("form", "name"), name="edc_field_unique_name_per_form"),
        ),
        migrations.CreateModel(
            name="CaseRecord",
            fields=[
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("subject_id", models.CharField(blank=True, db_index=True, max_length=64)),
                ("data", edc.encryption.EncryptedJSONField()),
                ("created_by", models.CharField(max_length=255)),
                (
                    "form",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="records",
                        to="edc.formdefinition",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [models.Index(fields=["form", "subject_id"], name="edc_case_form_subject_idx")],
            },
        ),
        migrations.CreateModel(
            name="DataSubjectRequest",
            fields=[
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("request_number", models.CharField(max_length=40, unique=True)),
                (
                    "request_type",
                    models.CharField(
                        choices=[
                            ("access", "Access"),
                            ("rectification", "Rectification"),
                            ("erasure", "Erasure"),
                            ("restriction", "Restriction"),
                            ("portability", "Portability"),
                            ("objection", "Objection"),
                        ],
                        max_length=32,
                    ),
                ),
                ("subject_id", models.CharField(db_index=True, max_length=64)),
                ("requester_email", edc.encryption.EncryptedEmailField(max_length=254)),
                ("details", edc.encryption.EncryptedTextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("identity_verified", "Identity verified"),
                            ("in_progress", "In progress"),
                            ("extended", "Extended"),
                            ("completed", "Completed"),
                            ("rejected", "Rejected"),
                        ],
                        default="received",
                        max_length=32,
                    ),
                ),
                ("received_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("due_date", models.DateField()),
                ("extension_reason", models.TextField(blank=True)),
                ("resolution_note", edc.encryption.EncryptedTextField(blank=True)),
                ("completed_at", models.DateTimeField(blank=True, null=True)),
                ("created_by", models.CharField(max_length=255)),
            ],
            options={
                "ordering": ["-received_at"],
                "indexes": [models.Index(fields=["status", "due_date"], name="edc_datasub_status_due_idx")],
            },
        ),
        migrations.CreateModel(
            name="AuditLogRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sequence_number", models.PositiveBigIntegerField(unique=True)),
                ("timestamp", models.DateTimeField(db_index=True)),
                ("user_id", models.CharField(db_index=True, max_length=255)),
                ("action", models.CharField(db_index=True, max_length=64)),
                ("resource", models.CharField(max_length=255)),
                ("status", models.CharField(max_length=32)),
                ("detail", models.TextField(blank=True, default="")),
                ("record_hash", models.CharField(max_length=64)),
                ("previous_hash", models.CharField(max_length=64)),
                ("signature", models.CharField(blank=True, help_text="HMAC-SHA256 of record_hash", max_length=64)),
            ],
            options={
                "db_table": "edc_audit_log_record",
                "ordering": ["sequence_number"],
                "indexes": [
                    models.Index(fields=["action", "timestamp"], name="edc_audit_action_ts_idx"),
                    models.Index(fields=["user_id", "timestamp"], name="edc_audit_user_ts_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditChainHead",
            fields=[
                ("id", models.PositiveSmallIntegerField(default=1, primary_key=True, serialize=False)),
                ("sequence_number", models.PositiveBigIntegerField(default=0)),
                ("record_hash", models.CharField(blank=True, max_length=64)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "db_table": "edc_audit_chain_head",
            },
        ),
        migrations.RunPython(create_chain_head, migrations.RunPython.noop),
    ]
