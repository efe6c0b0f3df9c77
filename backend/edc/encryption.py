"""
Encryption at rest for captured clinical data.

Values are encrypted with Fernet (AES-128-CBC with HMAC-SHA256). Keys come
from FIELD_ENCRYPTION_KEYS: the first key encrypts, every key decrypts, so a
new key can be prepended while older ciphertext stays readable.
"""

import json
from typing import Any, Optional

from cryptography.fernet import Fernet, MultiFernet
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class EncryptionManager:
    """Process-wide holder of the Fernet keyring."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            instance = super().__new__(cls)
            instance._load_keys()
            cls._instance = instance
        return cls._instance

    @classmethod
    def reset(cls):
        """Drop the cached keyring so the next use rereads settings."""
        cls._instance = None

    def _load_keys(self):
        keys = getattr(settings, "FIELD_ENCRYPTION_KEYS", []) or []
        if isinstance(keys, str):
            keys = [k.strip() for k in keys.split(",") if k.strip()]
        self._fernet: Optional[MultiFernet] = None
        if keys:
            self._fernet = MultiFernet(
                [Fernet(k.encode() if isinstance(k, str) else k) for k in keys]
            )

    @property
    def configured(self) -> bool:
        return self._fernet is not None

    def _require(self) -> MultiFernet:
        if self._fernet is None:
            raise ValueError(
                "FIELD_ENCRYPTION_KEYS not configured. Cannot encrypt or decrypt data."
            )
        return self._fernet

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """
        Encrypt a string value.

        Returns:
            Fernet token as text; None and "" pass through unchanged

        Raises:
            ValueError: If no encryption keys are configured
        """
        fernet = self._require()
        if plaintext is None or plaintext == "":
            return plaintext
        return fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """
        Decrypt a Fernet token.

        Raises:
            ValueError: If no encryption keys are configured
            cryptography.fernet.InvalidToken: If no key can decrypt the token
        """
        fernet = self._require()
        if ciphertext is None or ciphertext == "":
            return ciphertext
        return fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")


class EncryptedCharField(models.CharField):
    """
    A CharField stored as Fernet ciphertext.

    max_length applies to the plaintext; the column is widened for the token.
    Encrypted columns cannot be filtered or indexed meaningfully.
    """

    description = "An encrypted CharField"

    def __init__(self, *args, **kwargs):
        self.plaintext_max_length = kwargs.get("max_length", 255)
        # Fernet token overhead plus base64 expansion
        kwargs["max_length"] = self.plaintext_max_length * 2 + 200
        super().__init__(*args, **kwargs)

    def get_prep_value(self, value):
        if value is None or value == "":
            return value
        value = str(value)
        if len(value) > self.plaintext_max_length:
            raise ValueError(
                f"Value exceeds maximum length of {self.plaintext_max_length} characters"
            )
        return EncryptionManager().encrypt(value)

    def from_db_value(self, value, expression, connection):
        if value is None or value == "":
            return value
        return EncryptionManager().decrypt(value)

    def to_python(self, value):
        if isinstance(value, str) or value is None:
            return value
        return str(value)

    def deconstruct(self):
        name, path, args, kwargs = super().deconstruct()
        kwargs["max_length"] = self.plaintext_max_length
        return name, path, args, kwargs


class EncryptedEmailField(EncryptedCharField):
    """An encrypted email address. Lookups by address need a separate hash column."""

    description = "An encrypted email field"

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("max_length", 254)
        super().__init__(*args, **kwargs)


class EncryptedTextField(models.TextField):
    """An encrypted TextField for free-text content."""

    description = "An encrypted TextField"

    def get_prep_value(self, value):
        if value is None or value == "":
            return value
        return EncryptionManager().encrypt(str(value))

    def from_db_value(self, value, expression, connection):
        if value is None or value == "":
            return value
        return EncryptionManager().decrypt(value)

    def to_python(self, value):
        if isinstance(value, str) or value is None:
            return value
        return str(value)


class EncryptedJSONField(models.TextField):
    """
    Structured data serialized to JSON, then encrypted.

    Backed by a text column: the stored token is opaque, so JSON lookups are
    not available. Dates and decimals are written in their ISO/str forms.
    """

    description = "An encrypted JSON document"

    def get_prep_value(self, value: Any):
        if value is None:
            return value
        document = json.dumps(value, cls=DjangoJSONEncoder, ensure_ascii=False, separators=(",", ":"))
        return EncryptionManager().encrypt(document)

    def from_db_value(self, value, expression, connection):
        if value is None or value == "":
            return None
        return json.loads(EncryptionManager().decrypt(value))

    def to_python(self, value):
        if value is None or isinstance(value, (dict, list)):
            return value
        if isinstance(value, str):
            return json.loads(value)
        return value

    def value_to_string(self, obj):
        return json.dumps(self.value_from_object(obj), cls=DjangoJSONEncoder)
