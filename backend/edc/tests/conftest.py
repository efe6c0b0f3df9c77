from dataclasses import replace

import pytest
from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from rest_framework.test import APIClient

from edc.audit import AuditLog, DatabaseAuditStore, InMemoryAuditStore
from edc.schema import FieldKind, FieldSpec, FormSchema

User = get_user_model()

TEST_SIGNING_KEY = b"test-signing-key-for-audit-logs"


class TamperableAuditStore(InMemoryAuditStore):
    """In-memory store that lets tests rewrite or drop committed entries."""

    def replace_entry(self, index, **changes):
        with self._lock:
            self._entries[index] = replace(self._entries[index], **changes)

    def truncate(self, count):
        with self._lock:
            del self._entries[count:]


@pytest.fixture
def memory_log():
    """Signed audit log over a fresh in-memory store."""
    return AuditLog(TamperableAuditStore(), signing_key=TEST_SIGNING_KEY, lock_timeout=5)


@pytest.fixture
def db_log(db):
    return AuditLog(DatabaseAuditStore())


@pytest.fixture
def screening_schema():
    return FormSchema(
        name="screening",
        fields=(
            FieldSpec(name="age", kind=FieldKind.NUMERIC, required=True, min=18, max=120),
            FieldSpec(name="email", kind=FieldKind.EMAIL),
            FieldSpec(name="sex", kind=FieldKind.RADIO, required=True, choices=("M", "F")),
            FieldSpec(
                name="pregnant",
                kind=FieldKind.CHECKBOX,
                required=True,
                condition='sex == "F"',
            ),
            FieldSpec(name="consent_date", kind=FieldKind.DATE, required=True),
            FieldSpec(
                name="visit_date",
                kind=FieldKind.DATE,
                required=True,
                validity_expression="visit_date >= consent_date",
                error_message="visit must not precede consent",
            ),
        ),
    )


@pytest.fixture
def screening_form(db, screening_schema):
    from edc.schema_loader import import_schema

    return import_schema(screening_schema, user_id="setup", title="Screening")


@pytest.fixture
def user(db):
    return User.objects.create_user(username="coordinator", password="secret-pass-123")


@pytest.fixture
def auditor(db):
    auditor = User.objects.create_user(username="auditor", password="secret-pass-123")
    group, _ = Group.objects.get_or_create(name="audit_viewer")
    auditor.groups.add(group)
    return auditor


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(username="dpo", password="secret-pass-123", is_staff=True)


@pytest.fixture
def api_client():
    return APIClient()
