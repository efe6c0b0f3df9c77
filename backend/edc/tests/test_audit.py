"""
Tests for the audit log service.

Tests cover:
- Appending, sequence numbering and chaining
- Tamper and truncation detection through AuditLog.verify
- Concurrent appends
- Querying and CSV export
- Append failures surfacing as AppendFailure values
"""

import csv
import datetime
import io
import threading

import pytest
from django.db import DatabaseError
from django.utils import timezone

from edc.audit import (
    CSV_COLUMNS,
    AppendFailure,
    AppendLockTimeout,
    AuditEntry,
    AuditLog,
    AuditQuery,
    InMemoryAuditStore,
    log_audit,
    require_recorded,
)
from edc.audit_integrity import GENESIS_HASH
from edc.exceptions import AuditTrailUnavailable
from edc.models import AuditChainHead, AuditLogRecord


def fill(log, count, action="LOGIN"):
    return [log.append(f"user{i}", action, "session") for i in range(1, count + 1)]


class TestAppend:
    def test_first_entry_chains_off_genesis(self, memory_log):
        entry = memory_log.append("alice", "LOGIN", "session")
        assert isinstance(entry, AuditEntry)
        assert entry.sequence_number == 1
        assert entry.previous_hash == GENESIS_HASH
        assert entry.status == "success"
        assert entry.detail == ""
        assert entry.signature

    def test_entries_link(self, memory_log):
        first, second, third = fill(memory_log, 3)
        assert [e.sequence_number for e in (first, second, third)] == [1, 2, 3]
        assert second.previous_hash == first.record_hash
        assert third.previous_hash == second.record_hash

    def test_unsigned_without_key(self):
        log = AuditLog(InMemoryAuditStore(), signing_key=b"")
        assert log.append("alice", "LOGIN", "session").signature == ""

    def test_values_are_stringified(self, memory_log):
        entry = memory_log.append(42, "LOGIN", "session", detail=None)
        assert entry.user_id == "42"
        assert entry.detail == ""

    def test_lock_timeout_returns_failure(self):
        store = InMemoryAuditStore()
        log = AuditLog(store, signing_key=b"", lock_timeout=0.01)
        store._lock.acquire()
        try:
            result = log.append("alice", "LOGIN", "session")
        finally:
            store._lock.release()
        assert isinstance(result, AppendFailure)
        assert result.error_type == AppendLockTimeout.__name__
        assert result.action == "LOGIN"
        assert list(log.query()) == []

    def test_store_database_error_returns_failure(self, memory_log, monkeypatch):
        def broken(build, timeout):
            raise DatabaseError("disk full")

        monkeypatch.setattr(memory_log.store, "append", broken)
        result = memory_log.append("alice", "LOGIN", "session", detail="path=/login")
        assert result == AppendFailure(
            reason="disk full",
            user_id="alice",
            action="LOGIN",
            resource="session",
            status="success",
            detail="path=/login",
            error_type="DatabaseError",
        )


class TestRequireRecorded:
    def test_passes_entry_through(self, memory_log):
        entry = memory_log.append("alice", "LOGIN", "session")
        assert require_recorded(entry) is entry

    def test_raises_for_failure(self):
        failure = AppendFailure("lock timeout", "alice", "LOGIN", "session", "success")
        with pytest.raises(AuditTrailUnavailable) as exc_info:
            require_recorded(failure)
        assert exc_info.value.failure is failure


class TestVerify:
    def test_empty_log_verifies(self, memory_log):
        assert memory_log.verify().ok is True

    def test_intact_log(self, memory_log):
        fill(memory_log, 5)
        result = memory_log.verify()
        assert result.ok is True
        assert result.entries_checked == 5

    @pytest.mark.parametrize("index", [0, 1, 4])
    def test_tampered_detail(self, memory_log, index):
        fill(memory_log, 5)
        memory_log.store.replace_entry(index, detail="rewritten")
        result = memory_log.verify()
        assert result.ok is False
        assert result.first_break_sequence == index + 1

    def test_tampered_user(self, memory_log):
        fill(memory_log, 4)
        memory_log.store.replace_entry(2, user_id="mallory")
        assert memory_log.verify().first_break_sequence == 3

    def test_truncation(self, memory_log):
        fill(memory_log, 5)
        memory_log.store.truncate(3)
        result = memory_log.verify()
        assert result.ok is False
        assert result.first_break_sequence == 4

    def test_verify_does_not_append(self, memory_log):
        fill(memory_log, 2)
        memory_log.verify()
        assert len(list(memory_log.query())) == 2

    def test_wrong_key_fails(self, memory_log):
        fill(memory_log, 2)
        other = AuditLog(memory_log.store, signing_key=b"another-key")
        assert other.verify().first_break_sequence == 1


class TestConcurrency:
    def test_parallel_appends_are_serialized(self, memory_log):
        workers = 8
        per_worker = 25
        barrier = threading.Barrier(workers)
        failures = []

        def work(n):
            barrier.wait()
            for i in range(per_worker):
                result = memory_log.append(f"worker{n}", "FORM_SUBMISSION", f"record:{n}-{i}")
                if isinstance(result, AppendFailure):
                    failures.append(result)

        threads = [threading.Thread(target=work, args=(n,)) for n in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert failures == []
        sequences = [entry.sequence_number for entry in memory_log.query()]
        assert sequences == list(range(1, workers * per_worker + 1))
        assert memory_log.verify().ok is True


class TestQuery:
    def test_filter_by_action_in_order(self, memory_log):
        memory_log.append("alice", "LOGIN", "session")
        memory_log.append("alice", "FORM_SUBMISSION", "form:screening/record:1")
        memory_log.append("bob", "LOGIN", "session")
        memory_log.append("carol", "LOGIN", "session", status="failure")

        logins = memory_log.query(action="LOGIN")
        assert [e.user_id for e in logins] == ["alice", "bob", "carol"]
        assert [e.sequence_number for e in logins] == [1, 3, 4]

    def test_result_is_restartable(self, memory_log):
        fill(memory_log, 3)
        result = memory_log.query(action="LOGIN")
        assert list(result) == list(result)
        assert len(list(result)) == 3

    def test_result_sees_later_appends(self, memory_log):
        result = memory_log.query()
        assert list(result) == []
        fill(memory_log, 1)
        assert len(list(result)) == 1

    def test_combined_filters(self, memory_log):
        memory_log.append("alice", "LOGIN", "session")
        memory_log.append("alice", "LOGIN", "session", status="failure")
        memory_log.append("bob", "LOGIN", "session", status="failure")
        result = memory_log.query(AuditQuery(user_id="alice"), status="failure")
        assert [e.sequence_number for e in result] == [2]

    def test_time_range_is_inclusive(self, memory_log):
        entries = fill(memory_log, 3)
        middle = entries[1].timestamp
        result = list(memory_log.query(start=middle, end=middle))
        assert 2 in [e.sequence_number for e in result]
        assert all(e.timestamp == middle for e in result)

    def test_page(self, memory_log):
        fill(memory_log, 10)
        page = memory_log.query().page(offset=4, limit=3)
        assert [e.sequence_number for e in page] == [5, 6, 7]

    def test_no_match(self, memory_log):
        fill(memory_log, 2)
        assert list(memory_log.query(user_id="nobody")) == []


class TestExport:
    def test_csv_export(self, memory_log):
        fill(memory_log, 3)
        stream = io.StringIO()
        result = memory_log.export_csv(stream, user_id="auditor")

        assert result.ok is True
        rows = list(csv.reader(io.StringIO(stream.getvalue())))
        assert rows[0] == CSV_COLUMNS + ["integrity_verified", "export_time"]
        assert len(rows) == 4
        assert all(row[-2] == "true" for row in rows[1:])
        assert [row[0] for row in rows[1:]] == ["1", "2", "3"]

    def test_export_is_audited(self, memory_log):
        fill(memory_log, 2)
        memory_log.export_csv(io.StringIO(), user_id="auditor")
        last = list(memory_log.query())[-1]
        assert last.action == "AUDIT_EXPORT"
        assert last.user_id == "auditor"
        assert last.detail == "entries=2 integrity_verified=true"
        assert memory_log.verify().ok is True

    def test_export_flags_broken_chain(self, memory_log):
        fill(memory_log, 3)
        memory_log.store.replace_entry(1, detail="rewritten")
        stream = io.StringIO()
        result = memory_log.export_csv(stream, user_id="auditor")
        assert result.ok is False
        rows = list(csv.reader(io.StringIO(stream.getvalue())))
        assert all(row[-2] == "false" for row in rows[1:])

    def test_export_filtered(self, memory_log):
        memory_log.append("alice", "LOGIN", "session")
        memory_log.append("alice", "LOGOUT", "session")
        stream = io.StringIO()
        memory_log.export_csv(stream, user_id="auditor", query=AuditQuery(action="LOGOUT"))
        rows = list(csv.reader(io.StringIO(stream.getvalue())))
        assert [row[3] for row in rows[1:]] == ["LOGOUT"]

    def test_export_fails_when_unauditable(self, memory_log, monkeypatch):
        fill(memory_log, 1)

        def broken(build, timeout):
            raise AppendLockTimeout("busy")

        monkeypatch.setattr(memory_log.store, "append", broken)
        with pytest.raises(AuditTrailUnavailable):
            memory_log.export_csv(io.StringIO(), user_id="auditor")


@pytest.mark.django_db
class TestDatabaseStore:
    def test_append_persists_row_and_head(self, db_log):
        entry = db_log.append("alice", "LOGIN", "session")
        record = AuditLogRecord.objects.get(sequence_number=entry.sequence_number)
        assert record.record_hash == entry.record_hash
        head = AuditChainHead.objects.get(pk=1)
        assert (head.sequence_number, head.record_hash) == (entry.sequence_number, entry.record_hash)

    def test_roundtrip_verifies(self, db_log):
        fill(db_log, 5)
        result = db_log.verify()
        assert result.ok is True
        assert result.entries_checked == 5
        assert db_log.store.head()[0] == 5

    def test_stored_entry_matches_returned(self, db_log):
        entry = db_log.append("alice", "LOGIN", "session", detail="path=/admin/login/")
        assert AuditLogRecord.objects.get(sequence_number=1).to_entry() == entry

    def test_out_of_band_update_detected(self, db_log):
        fill(db_log, 4)
        AuditLogRecord.objects.filter(sequence_number=2).update(user_id="mallory")
        result = db_log.verify()
        assert result.ok is False
        assert result.first_break_sequence == 2

    def test_deleted_tail_detected(self, db_log):
        fill(db_log, 4)
        AuditLogRecord.objects.filter(sequence_number__gte=3).delete()
        result = db_log.verify()
        assert result.ok is False
        assert result.first_break_sequence == 3

    def test_records_are_append_only(self, db_log):
        fill(db_log, 1)
        record = AuditLogRecord.objects.get(sequence_number=1)
        record.detail = "changed"
        with pytest.raises(ValueError):
            record.save()
        with pytest.raises(ValueError):
            record.delete()

    def test_query_filters(self, db_log):
        db_log.append("alice", "LOGIN", "session")
        db_log.append("bob", "LOGIN", "session", status="failure")
        db_log.append("alice", "LOGOUT", "session")
        assert [e.sequence_number for e in db_log.query(user_id="alice")] == [1, 3]
        assert [e.user_id for e in db_log.query(status="failure")] == ["bob"]
        later = timezone.now() + datetime.timedelta(days=1)
        assert list(db_log.query(start=later)) == []

    def test_database_error_returns_failure(self, db_log, monkeypatch):
        def broken(*args, **kwargs):
            raise DatabaseError("connection lost")

        monkeypatch.setattr(AuditLogRecord.objects, "create", broken)
        result = db_log.append("alice", "LOGIN", "session")
        assert isinstance(result, AppendFailure)
        assert result.error_type == "DatabaseError"
        assert not AuditLogRecord.objects.exists()
        assert AuditChainHead.objects.get(pk=1).sequence_number == 0

    def test_log_audit_uses_request_actor(self, db):
        from config.observability import clear_request_context, set_request_context

        set_request_context(request_id="r1", actor="dr.who")
        try:
            entry = log_audit("FORM_SUBMISSION", "form:x/record:1")
        finally:
            clear_request_context()
        assert entry.user_id == "dr.who"
        assert log_audit("SCHEMA_IMPORT", "form:x").user_id == "system"
