"""
Tests for encryption at rest.

Tests cover:
- EncryptionManager round-trip and key handling
- Encrypted model fields store ciphertext, not plaintext
- Case record data survives the encrypt/decrypt round-trip
"""

import datetime

import pytest
from cryptography.fernet import Fernet, InvalidToken
from django.db import connection

from edc.encryption import EncryptedCharField, EncryptedEmailField, EncryptionManager
from edc.models import CaseRecord, DataSubjectRequest


@pytest.fixture
def encryption_keys():
    return [Fernet.generate_key().decode(), Fernet.generate_key().decode()]


@pytest.fixture
def configure_encryption(settings, encryption_keys):
    settings.FIELD_ENCRYPTION_KEYS = encryption_keys
    EncryptionManager.reset()
    return encryption_keys


class TestEncryptionManager:
    def test_singleton(self, configure_encryption):
        assert EncryptionManager() is EncryptionManager()

    def test_roundtrip(self, configure_encryption):
        manager = EncryptionManager()
        token = manager.encrypt("Subject NYC-001, DOB 1980-02-01")
        assert token != "Subject NYC-001, DOB 1980-02-01"
        assert manager.decrypt(token) == "Subject NYC-001, DOB 1980-02-01"

    def test_ciphertext_is_randomized(self, configure_encryption):
        manager = EncryptionManager()
        assert manager.encrypt("same") != manager.encrypt("same")

    def test_empty_values_pass_through(self, configure_encryption):
        manager = EncryptionManager()
        assert manager.encrypt("") == ""
        assert manager.encrypt(None) is None
        assert manager.decrypt(None) is None

    def test_old_key_still_decrypts(self, settings, encryption_keys):
        settings.FIELD_ENCRYPTION_KEYS = [encryption_keys[1]]
        EncryptionManager.reset()
        token = EncryptionManager().encrypt("legacy")

        settings.FIELD_ENCRYPTION_KEYS = encryption_keys
        EncryptionManager.reset()
        assert EncryptionManager().decrypt(token) == "legacy"

    def test_unknown_key_fails(self, settings, configure_encryption):
        token = EncryptionManager().encrypt("secret")
        settings.FIELD_ENCRYPTION_KEYS = [Fernet.generate_key().decode()]
        EncryptionManager.reset()
        with pytest.raises(InvalidToken):
            EncryptionManager().decrypt(token)

    def test_comma_separated_keys(self, settings, encryption_keys):
        settings.FIELD_ENCRYPTION_KEYS = ",".join(encryption_keys)
        EncryptionManager.reset()
        assert EncryptionManager().configured

    def test_missing_keys(self, settings):
        settings.FIELD_ENCRYPTION_KEYS = []
        EncryptionManager.reset()
        manager = EncryptionManager()
        assert manager.configured is False
        with pytest.raises(ValueError, match="FIELD_ENCRYPTION_KEYS not configured"):
            manager.encrypt("x")


class TestEncryptedFields:
    def test_char_field_widens_column(self):
        field = EncryptedCharField(max_length=100)
        assert field.max_length > 100
        assert field.deconstruct()[3]["max_length"] == 100

    def test_email_field_default_length(self):
        assert EncryptedEmailField().plaintext_max_length == 254

    def test_char_field_rejects_long_plaintext(self, configure_encryption):
        with pytest.raises(ValueError, match="exceeds maximum length"):
            EncryptedCharField(max_length=5).get_prep_value("too long")


@pytest.mark.django_db
class TestEncryptedStorage:
    def _raw_column(self, table, column, pk):
        with connection.cursor() as cursor:
            cursor.execute(f"SELECT {column} FROM {table} WHERE id = %s", [pk.hex])
            return cursor.fetchone()[0]

    def test_case_record_data_encrypted(self, screening_form):
        record = CaseRecord.objects.create(
            form=screening_form,
            subject_id="NYC-001",
            data={"age": 25, "visit_date": datetime.date(2024, 3, 1), "email": "p@example.org"},
            created_by="coordinator",
        )
        raw = self._raw_column(CaseRecord._meta.db_table, "data", record.pk)
        assert "p@example.org" not in raw
        assert "visit_date" not in raw

        stored = CaseRecord.objects.get(pk=record.pk)
        assert stored.data == {"age": 25, "visit_date": "2024-03-01", "email": "p@example.org"}

    def test_dsar_contact_encrypted(self):
        dsar = DataSubjectRequest.objects.create(
            request_number="DSAR-ACC-20240101000000-0001",
            request_type="access",
            subject_id="NYC-001",
            requester_email="jane@example.org",
            details="Please send me my data",
            due_date=datetime.date(2024, 1, 31),
            created_by="coordinator",
        )
        raw = self._raw_column(DataSubjectRequest._meta.db_table, "requester_email", dsar.pk)
        assert raw != "jane@example.org"
        assert DataSubjectRequest.objects.get(pk=dsar.pk).requester_email == "jane@example.org"
