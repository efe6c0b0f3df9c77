"""
Append-only, hash-chained audit log.

This module provides:
- AuditEntry / AppendFailure values returned by AuditLog.append
- AuditStore backends: in-memory and Django ORM
- AuditLog: append, verify, query and CSV export over a store
- log_audit / require_recorded helpers used by business actions

``append`` never raises for store problems. It returns an AppendFailure,
and callers whose action must not proceed unaudited pass the result through
``require_recorded``, which raises AuditTrailUnavailable.
"""

import csv
import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Callable, Iterator, List, Optional, TextIO, Tuple, Union

import structlog
from django.conf import settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from config.observability import get_request_context
from edc.audit_integrity import (
    GENESIS_HASH,
    VerificationResult,
    compute_entry_hash,
    format_timestamp,
    get_signing_key,
    sign_hash,
    verify_chain,
)
from edc.exceptions import AuditTrailUnavailable

logger = structlog.get_logger(__name__)

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"

CSV_COLUMNS = [
    "sequence_number",
    "timestamp",
    "user_id",
    "action",
    "resource",
    "status",
    "detail",
    "record_hash",
    "previous_hash",
    "signature",
]

ChainHead = Tuple[int, str]


@dataclass(frozen=True)
class AuditEntry:
    sequence_number: int
    timestamp: datetime
    user_id: str
    action: str
    resource: str
    status: str
    detail: str
    record_hash: str
    previous_hash: str
    signature: str = ""

    def as_dict(self) -> dict:
        return {
            "sequence_number": self.sequence_number,
            "timestamp": format_timestamp(self.timestamp),
            "user_id": self.user_id,
            "action": self.action,
            "resource": self.resource,
            "status": self.status,
            "detail": self.detail,
            "record_hash": self.record_hash,
            "previous_hash": self.previous_hash,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class AppendFailure:
    """An audit event that could not be recorded, and why."""

    reason: str
    user_id: str
    action: str
    resource: str
    status: str
    detail: str = ""
    error_type: str = ""


AppendResult = Union[AuditEntry, AppendFailure]


class AuditStoreError(Exception):
    """Base class for store-level append failures."""


class AppendLockTimeout(AuditStoreError):
    """The append lock could not be acquired within the configured bound."""


@dataclass(frozen=True)
class AuditQuery:
    """Filters for AuditLog.query. Unset filters match everything; the range is inclusive."""

    user_id: Optional[str] = None
    action: Optional[str] = None
    status: Optional[str] = None
    resource: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    def matches(self, entry: AuditEntry) -> bool:
        if self.user_id is not None and entry.user_id != self.user_id:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.status is not None and entry.status != self.status:
            return False
        if self.resource is not None and entry.resource != self.resource:
            return False
        if self.start is not None and entry.timestamp < self.start:
            return False
        if self.end is not None and entry.timestamp > self.end:
            return False
        return True


class AuditQueryResult:
    """
    Lazy view over the entries matching a query.

    Each iteration reads the store afresh, so the result can be iterated
    more than once. Entries come back in sequence order.
    """

    def __init__(self, store: "AuditStore", query: AuditQuery):
        self._store = store
        self.query = query

    def __iter__(self) -> Iterator[AuditEntry]:
        return self._store.iter_entries(self.query)

    def page(self, offset: int = 0, limit: Optional[int] = None) -> List[AuditEntry]:
        stop = None if limit is None else offset + limit
        return list(itertools.islice(iter(self), offset, stop))


class AuditStore(ABC):
    """
    Storage backend for the audit chain.

    ``append`` is handed a builder that turns the current chain head into the
    next entry; the store must call it and persist the result atomically with
    respect to other appends.
    """

    @abstractmethod
    def append(self, build: Callable[[Optional[ChainHead]], AuditEntry], timeout: float) -> AuditEntry:
        """Build and persist the next entry. Raises AuditStoreError or DatabaseError."""

    @abstractmethod
    def head(self) -> Optional[ChainHead]:
        """(sequence_number, record_hash) of the last committed entry, if tracked."""

    @abstractmethod
    def iter_entries(
        self, query: Optional[AuditQuery] = None, until_sequence: Optional[int] = None
    ) -> Iterator[AuditEntry]:
        """Entries matching ``query`` in ascending sequence order."""


class InMemoryAuditStore(AuditStore):
    """Process-local store, for tests and tooling."""

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._head: Optional[ChainHead] = None
        self._lock = threading.Lock()

    def append(self, build, timeout):
        if not self._lock.acquire(timeout=timeout):
            raise AppendLockTimeout(f"append lock not acquired within {timeout}s")
        try:
            entry = build(self._head)
            self._entries.append(entry)
            self._head = (entry.sequence_number, entry.record_hash)
            return entry
        finally:
            self._lock.release()

    def head(self):
        return self._head

    def iter_entries(self, query=None, until_sequence=None):
        with self._lock:
            snapshot = list(self._entries)
        for entry in snapshot:
            if until_sequence is not None and entry.sequence_number > until_sequence:
                break
            if query is None or query.matches(entry):
                yield entry


class DatabaseAuditStore(AuditStore):
    """
    ORM-backed store over AuditLogRecord and AuditChainHead.

    Writers are serialized by a process-wide lock and, across processes, by
    SELECT ... FOR UPDATE on the chain-head row. The unique constraint on
    sequence_number backs both.
    """

    _process_lock = threading.Lock()

    def append(self, build, timeout):
        from edc.models import AuditChainHead, AuditLogRecord

        if not self._process_lock.acquire(timeout=timeout):
            raise AppendLockTimeout(f"append lock not acquired within {timeout}s")
        try:
            with transaction.atomic():
                chain_head, _ = AuditChainHead.objects.select_for_update().get_or_create(pk=1)
                current = None
                if chain_head.sequence_number:
                    current = (chain_head.sequence_number, chain_head.record_hash)
                entry = build(current)
                AuditLogRecord.objects.create(
                    sequence_number=entry.sequence_number,
                    timestamp=entry.timestamp,
                    user_id=entry.user_id,
                    action=entry.action,
                    resource=entry.resource,
                    status=entry.status,
                    detail=entry.detail,
                    record_hash=entry.record_hash,
                    previous_hash=entry.previous_hash,
                    signature=entry.signature,
                )
                chain_head.sequence_number = entry.sequence_number
                chain_head.record_hash = entry.record_hash
                chain_head.save(update_fields=["sequence_number", "record_hash", "updated_at"])
            return entry
        finally:
            self._process_lock.release()

    def head(self):
        from edc.models import AuditChainHead

        chain_head = AuditChainHead.objects.filter(pk=1).first()
        if chain_head is None:
            return None
        return (chain_head.sequence_number, chain_head.record_hash)

    def iter_entries(self, query=None, until_sequence=None):
        from edc.models import AuditLogRecord

        records = AuditLogRecord.objects.order_by("sequence_number")
        if until_sequence is not None:
            records = records.filter(sequence_number__lte=until_sequence)
        if query is not None:
            if query.user_id is not None:
                records = records.filter(user_id=query.user_id)
            if query.action is not None:
                records = records.filter(action=query.action)
            if query.status is not None:
                records = records.filter(status=query.status)
            if query.resource is not None:
                records = records.filter(resource=query.resource)
            if query.start is not None:
                records = records.filter(timestamp__gte=query.start)
            if query.end is not None:
                records = records.filter(timestamp__lte=query.end)
        for record in records.iterator(chunk_size=500):
            yield record.to_entry()


class AuditLog:
    """
    Hash-chained audit log over an AuditStore.

    Args:
        store: Backend holding the entries
        signing_key: HMAC key for entry signatures; read from settings per call when None
        lock_timeout: Seconds to wait for the append lock; read from settings when None
    """

    def __init__(
        self,
        store: AuditStore,
        signing_key: Optional[bytes] = None,
        lock_timeout: Optional[float] = None,
    ):
        self.store = store
        self._signing_key = signing_key
        self._lock_timeout = lock_timeout

    @property
    def signing_key(self) -> bytes:
        if self._signing_key is not None:
            return self._signing_key
        return get_signing_key()

    @property
    def lock_timeout(self) -> float:
        if self._lock_timeout is not None:
            return self._lock_timeout
        return float(getattr(settings, "AUDIT_APPEND_LOCK_TIMEOUT", 5.0))

    def append(
        self,
        user_id: str,
        action: str,
        resource: str,
        status: str = STATUS_SUCCESS,
        detail: Optional[str] = None,
    ) -> AppendResult:
        """
        Append an event to the chain.

        Returns:
            The recorded AuditEntry, or an AppendFailure describing why the
            event could not be recorded
        """
        user_id, action, resource, status = str(user_id), str(action), str(resource), str(status)
        detail = detail or ""
        key = self.signing_key

        def build(current: Optional[ChainHead]) -> AuditEntry:
            sequence_number, previous_hash = (current[0] + 1, current[1]) if current else (1, GENESIS_HASH)
            entry = AuditEntry(
                sequence_number=sequence_number,
                timestamp=timezone.now(),
                user_id=user_id,
                action=action,
                resource=resource,
                status=status,
                detail=detail,
                record_hash="",
                previous_hash=previous_hash,
            )
            record_hash = compute_entry_hash(entry)
            return replace(entry, record_hash=record_hash, signature=sign_hash(record_hash, key))

        try:
            entry = self.store.append(build, timeout=self.lock_timeout)
        except (AuditStoreError, DatabaseError) as e:
            failure = AppendFailure(
                reason=str(e) or type(e).__name__,
                user_id=user_id,
                action=action,
                resource=resource,
                status=status,
                detail=detail,
                error_type=type(e).__name__,
            )
            logger.error(
                "audit_append_failed",
                action=action,
                resource=resource,
                audit_status=status,
                reason=failure.reason,
                error_type=failure.error_type,
            )
            return failure

        logger.info(
            "audit_entry_appended",
            sequence_number=entry.sequence_number,
            action=action,
            resource=resource,
            audit_status=status,
            has_signature=bool(entry.signature),
        )
        return entry

    def verify(self) -> VerificationResult:
        """Walk the whole chain and report the first break. Never mutates the log."""
        head = self.store.head()
        until = head[0] if head is not None else None
        return verify_chain(
            self.store.iter_entries(None, until_sequence=until),
            signing_key=self.signing_key,
            head=head,
        )

    def query(self, query: Optional[AuditQuery] = None, **filters) -> AuditQueryResult:
        """
        Entries matching the given filters, in original order.

        Accepts an AuditQuery or its fields as keyword arguments.
        """
        if query is None:
            query = AuditQuery(**filters)
        elif filters:
            query = replace(query, **filters)
        return AuditQueryResult(self.store, query)

    def export_csv(
        self,
        stream: TextIO,
        user_id: str,
        query: Optional[AuditQuery] = None,
    ) -> VerificationResult:
        """
        Write entries as CSV with the chain's verification outcome, then
        record an AUDIT_EXPORT event.

        Raises:
            AuditTrailUnavailable: If the export event cannot be recorded
        """
        verification = self.verify()
        export_time = format_timestamp(timezone.now())
        verified = "true" if verification.ok else "false"

        writer = csv.writer(stream)
        writer.writerow(CSV_COLUMNS + ["integrity_verified", "export_time"])
        exported = 0
        for entry in self.query(query):
            row = entry.as_dict()
            writer.writerow([row[column] for column in CSV_COLUMNS] + [verified, export_time])
            exported += 1

        require_recorded(
            self.append(
                user_id,
                "AUDIT_EXPORT",
                "audit_log",
                STATUS_SUCCESS,
                f"entries={exported} integrity_verified={verified}",
            )
        )
        logger.info("audit_log_exported", entries=exported, integrity_verified=verification.ok)
        return verification


def require_recorded(result: AppendResult) -> AuditEntry:
    """
    Return the entry, or raise AuditTrailUnavailable for an AppendFailure.

    Used by actions that must roll back when their audit event is lost.
    """
    if isinstance(result, AppendFailure):
        raise AuditTrailUnavailable(result)
    return result


_default_log: Optional[AuditLog] = None


def get_audit_log() -> AuditLog:
    """The process-wide audit log backed by the database."""
    global _default_log
    if _default_log is None:
        _default_log = AuditLog(DatabaseAuditStore())
    return _default_log


def log_audit(
    action: str,
    resource: str,
    status: str = STATUS_SUCCESS,
    detail: Optional[str] = None,
    user_id: Optional[str] = None,
) -> AppendResult:
    """
    Append an event to the default audit log.

    The actor is taken from the request context when user_id is not given.
    """
    if user_id is None:
        user_id = get_request_context().get("actor") or "system"
    return get_audit_log().append(user_id, action, resource, status, detail)
