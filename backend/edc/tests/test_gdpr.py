"""
Tests for the GDPR data-subject request workflow.
"""

import datetime

import pytest
from django.utils import timezone

from edc import gdpr
from edc.audit import AppendFailure
from edc.exceptions import AuditTrailUnavailable, InvalidTransition
from edc.gdpr import create_request, generate_request_number, overdue_requests, transition_request
from edc.models import AuditLogRecord, DataSubjectRequest

REQUEST = {
    "request_type": "access",
    "subject_id": "NYC-001",
    "requester_email": "jane@example.org",
    "details": "Copy of all study data held about me",
}


@pytest.fixture
def dsar(db):
    _, dsar = create_request(REQUEST, user_id="coordinator")
    return dsar


class TestRequestNumber:
    def test_format(self):
        now = datetime.datetime(2024, 1, 31, 12, 0, 0, tzinfo=datetime.timezone.utc)
        number = generate_request_number("erasure", now)
        prefix, stamp, suffix = number.rsplit("-", 2)
        assert prefix == "DSAR-ERA"
        assert stamp == "20240131120000"
        assert len(suffix) == 4 and suffix.isdigit()

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            generate_request_number("gossip")


@pytest.mark.django_db
class TestCreateRequest:
    def test_created_and_audited(self, settings):
        result, dsar = create_request(REQUEST, user_id="coordinator")
        assert result.valid
        assert dsar.status == DataSubjectRequest.Status.RECEIVED
        assert dsar.request_number.startswith("DSAR-ACC-")
        assert dsar.due_date == dsar.received_at.date() + datetime.timedelta(days=settings.DSAR_RESPONSE_DAYS)

        entry = AuditLogRecord.objects.get(action="DSAR_CREATED")
        assert entry.resource == f"dsar:{dsar.request_number}"
        assert entry.user_id == "coordinator"
        assert "jane@example.org" not in entry.detail

    def test_invalid_request(self):
        result, dsar = create_request({**REQUEST, "request_type": "gossip", "requester_email": "x"}, "coordinator")
        assert dsar is None
        assert set(result.errors) == {"request_type", "requester_email"}
        assert not DataSubjectRequest.objects.exists()

    def test_missing_fields(self):
        result, dsar = create_request({}, "coordinator")
        assert dsar is None
        assert result.errors["subject_id"] == ("field is required",)

    def test_not_stored_without_audit(self, monkeypatch):
        monkeypatch.setattr(
            gdpr, "log_audit", lambda *a, **k: AppendFailure("down", "coordinator", "DSAR_CREATED", "dsar", "success")
        )
        with pytest.raises(AuditTrailUnavailable):
            create_request(REQUEST, "coordinator")
        assert not DataSubjectRequest.objects.exists()


@pytest.mark.django_db
class TestTransitions:
    def test_happy_path(self, dsar):
        for status in ("identity_verified", "in_progress"):
            transition_request(dsar.request_number, status, user_id="dpo")
        done = transition_request(dsar.request_number, "completed", user_id="dpo", note="Export sent")

        assert done.status == "completed"
        assert done.completed_at is not None
        assert done.resolution_note == "Export sent"
        actions = list(AuditLogRecord.objects.order_by("sequence_number").values_list("action", flat=True))
        assert actions == [
            "DSAR_CREATED",
            "DSAR_IDENTITY_VERIFIED",
            "DSAR_IN_PROGRESS",
            "DSAR_COMPLETED",
        ]
        assert AuditLogRecord.objects.get(action="DSAR_COMPLETED").detail == "from=in_progress to=completed"

    def test_cannot_skip_steps(self, dsar):
        with pytest.raises(InvalidTransition, match="cannot move request from received to completed"):
            transition_request(dsar.request_number, "completed", user_id="dpo")

    def test_closed_request_is_final(self, dsar):
        transition_request(dsar.request_number, "rejected", user_id="dpo", note="Identity not confirmed")
        with pytest.raises(InvalidTransition):
            transition_request(dsar.request_number, "identity_verified", user_id="dpo")

    def test_rejection_needs_reason(self, dsar):
        with pytest.raises(InvalidTransition, match="documented reason"):
            transition_request(dsar.request_number, "rejected", user_id="dpo")

    def test_unknown_status(self, dsar):
        with pytest.raises(InvalidTransition, match="unknown status"):
            transition_request(dsar.request_number, "archived", user_id="dpo")

    def test_unknown_request(self, db):
        with pytest.raises(DataSubjectRequest.DoesNotExist):
            transition_request("DSAR-ACC-0-0", "completed", user_id="dpo")

    def test_extension(self, dsar):
        original_due = dsar.due_date
        extended = transition_request(
            dsar.request_number, "extended", user_id="dpo", note="Large volume of records", extension_days=60
        )
        assert extended.due_date == original_due + datetime.timedelta(days=60)
        assert extended.extension_reason == "Large volume of records"
        assert transition_request(dsar.request_number, "in_progress", user_id="dpo").status == "in_progress"

    def test_extension_only_once(self, dsar):
        transition_request(dsar.request_number, "extended", user_id="dpo", note="Large volume of records", extension_days=30)
        transition_request(dsar.request_number, "identity_verified", user_id="dpo")
        with pytest.raises(InvalidTransition, match="already been extended"):
            transition_request(dsar.request_number, "extended", user_id="dpo", note="Still a lot to do", extension_days=10)

    @pytest.mark.parametrize(
        "note,days,message",
        [
            ("short", 30, "at least 10 characters"),
            ("Large volume of records", None, "between 1 and 60 days"),
            ("Large volume of records", 61, "between 1 and 60 days"),
        ],
    )
    def test_extension_rules(self, dsar, note, days, message):
        with pytest.raises(InvalidTransition, match=message):
            transition_request(dsar.request_number, "extended", user_id="dpo", note=note, extension_days=days)
        assert DataSubjectRequest.objects.get(pk=dsar.pk).status == "received"

    def test_unaudited_transition_rolled_back(self, dsar, monkeypatch):
        monkeypatch.setattr(
            gdpr, "log_audit", lambda *a, **k: AppendFailure("down", "dpo", "DSAR_REJECTED", "dsar", "success")
        )
        with pytest.raises(AuditTrailUnavailable):
            transition_request(dsar.request_number, "identity_verified", user_id="dpo")
        assert DataSubjectRequest.objects.get(pk=dsar.pk).status == "received"


@pytest.mark.django_db
class TestOverdue:
    def test_overdue_excludes_closed(self, dsar):
        later = dsar.due_date + datetime.timedelta(days=1)
        assert list(overdue_requests(today=later)) == [dsar]
        assert list(overdue_requests(today=dsar.due_date)) == []

        transition_request(dsar.request_number, "rejected", user_id="dpo", note="Duplicate of earlier request")
        assert list(overdue_requests(today=later)) == []

    def test_default_today(self, dsar):
        assert list(overdue_requests()) == []
        assert dsar.received_at <= timezone.now()
