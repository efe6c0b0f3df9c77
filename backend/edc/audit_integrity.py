"""
Audit log integrity and tamper-evidence utilities.

Implements:
- Canonical serialization and SHA-256 hashing of audit entries
- Hash-chaining to link entries (each commits to its predecessor)
- Optional HMAC-SHA256 signing of entry hashes
- Chain integrity verification

Canonical form
--------------
An entry's ``record_hash`` is the lowercase hex SHA-256 digest of the UTF-8
encoding of the JSON array::

    [sequence_number, timestamp, user_id, action, resource, status, detail, previous_hash]

serialized with ``json.dumps(..., separators=(",", ":"), ensure_ascii=False)``.
``timestamp`` is rendered in UTC as ``YYYY-MM-DDTHH:MM:SS.ffffff+00:00``;
``detail`` is the empty string when absent. The first entry chains off
GENESIS_HASH. Changing any of this breaks verification of existing chains.
"""

import datetime
import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import structlog
from django.conf import settings

from edc.exceptions import IntegrityViolation

logger = structlog.get_logger(__name__)

GENESIS_HASH = "0" * 64


def get_signing_key() -> bytes:
    """
    Get the HMAC signing key from settings.

    Returns:
        bytes: The signing key, or b"" when AUDIT_SIGNING_KEY is not configured
    """
    key = getattr(settings, "AUDIT_SIGNING_KEY", "")
    if not key:
        return b""
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


def format_timestamp(timestamp: datetime.datetime) -> str:
    """Render a timestamp as UTC ISO-8601 with microseconds."""
    if timestamp.tzinfo is None:
        raise ValueError("audit timestamps must be timezone-aware")
    return timestamp.astimezone(datetime.timezone.utc).isoformat(timespec="microseconds")


def canonical_bytes(
    sequence_number: int,
    timestamp: datetime.datetime,
    user_id: str,
    action: str,
    resource: str,
    status: str,
    detail: Optional[str],
    previous_hash: str,
) -> bytes:
    """Canonical serialization hashed into ``record_hash``."""
    content = [
        int(sequence_number),
        format_timestamp(timestamp),
        str(user_id),
        str(action),
        str(resource),
        str(status),
        detail or "",
        str(previous_hash),
    ]
    return json.dumps(content, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_entry_hash(entry) -> str:
    """
    Compute the SHA-256 hash of an audit entry's canonical fields.

    Args:
        entry: Any object with the audit entry attributes (AuditEntry, model instance)

    Returns:
        str: SHA-256 hash as hex string
    """
    content = canonical_bytes(
        entry.sequence_number,
        entry.timestamp,
        entry.user_id,
        entry.action,
        entry.resource,
        entry.status,
        entry.detail,
        entry.previous_hash,
    )
    return hashlib.sha256(content).hexdigest()


def sign_hash(record_hash: str, key: bytes) -> str:
    """HMAC-SHA256 of a record hash; empty string when no key is configured."""
    if not key:
        return ""
    return hmac.new(key, record_hash.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(entry, key: bytes) -> bool:
    """
    Verify the HMAC signature of an audit entry against its recomputed hash.

    Returns:
        bool: True if signature is valid, False otherwise
    """
    if not entry.signature:
        return False
    expected = sign_hash(compute_entry_hash(entry), key)
    # Constant-time comparison
    return hmac.compare_digest(entry.signature, expected)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a chain walk. ``first_break_sequence`` is None when ok."""

    ok: bool
    first_break_sequence: Optional[int] = None
    entries_checked: int = 0
    errors: List[str] = field(default_factory=list)

    def raise_for_status(self) -> "VerificationResult":
        if not self.ok:
            raise IntegrityViolation(self.first_break_sequence, self.errors)
        return self

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "first_break_sequence": self.first_break_sequence,
            "entries_checked": self.entries_checked,
            "errors": list(self.errors),
        }


def verify_chain(entries: Iterable, signing_key: bytes = b"", head=None) -> VerificationResult:
    """
    Verify the integrity of a chain of audit entries.

    Checks, walking entries in ascending order:
    1. Sequence numbers are contiguous from 1
    2. Each stored record_hash matches the hash recomputed from its fields
    3. Each previous_hash matches the recomputed hash of the predecessor
       (GENESIS_HASH for the first entry)
    4. Signatures are valid, when a signing key is configured
    5. The last entry matches the stored chain head, when one is given

    Args:
        entries: Entries ordered by sequence_number
        signing_key: HMAC key; signatures are not checked when empty
        head: Optional (sequence_number, record_hash) of the chain head

    Returns:
        VerificationResult. first_break_sequence is the sequence number
        expected at the first offending position.
    """
    errors: List[str] = []
    first_break = None
    entries_checked = 0
    previous_hash = GENESIS_HASH
    last_hash = None

    def fail(position: int, message: str):
        nonlocal first_break
        errors.append(message)
        if first_break is None:
            first_break = position

    for position, entry in enumerate(entries, start=1):
        entries_checked += 1
        recomputed = compute_entry_hash(entry)

        if entry.sequence_number != position:
            fail(position, f"sequence gap: expected {position}, got {entry.sequence_number}")
        if entry.previous_hash != previous_hash:
            fail(position, f"broken chain at sequence {entry.sequence_number}: previous_hash mismatch")
        if entry.record_hash != recomputed:
            fail(position, f"hash mismatch at sequence {entry.sequence_number}: entry content altered")
        if signing_key and not verify_signature(entry, signing_key):
            fail(position, f"invalid signature at sequence {entry.sequence_number}")

        previous_hash = recomputed
        last_hash = recomputed

    if head is not None:
        head_sequence, head_hash = head
        if head_sequence != entries_checked:
            fail(
                min(head_sequence, entries_checked) + 1,
                f"chain head mismatch: head at sequence {head_sequence}, "
                f"log ends at sequence {entries_checked}",
            )
        elif entries_checked and head_hash != last_hash:
            fail(entries_checked, f"chain head hash mismatch at sequence {entries_checked}")

    result = VerificationResult(
        ok=not errors,
        first_break_sequence=first_break,
        entries_checked=entries_checked,
        errors=errors,
    )

    log = logger.info if result.ok else logger.error
    log(
        "audit_chain_verified",
        ok=result.ok,
        entries_checked=entries_checked,
        first_break_sequence=first_break,
        errors_found=len(errors),
    )
    return result
