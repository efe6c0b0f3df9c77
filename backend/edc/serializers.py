from django.conf import settings
from rest_framework import serializers

from edc.models import DataSubjectRequest


class AuditEntrySerializer(serializers.Serializer):
    """Read-only view of an AuditEntry."""

    sequence_number = serializers.IntegerField()
    timestamp = serializers.DateTimeField()
    user_id = serializers.CharField()
    action = serializers.CharField()
    resource = serializers.CharField()
    status = serializers.CharField()
    detail = serializers.CharField(allow_blank=True)
    record_hash = serializers.CharField()
    previous_hash = serializers.CharField()
    signature = serializers.CharField(allow_blank=True)


class AuditQuerySerializer(serializers.Serializer):
    """Query-string filters for the audit endpoints."""

    user_id = serializers.CharField(required=False)
    action = serializers.CharField(required=False)
    status = serializers.CharField(required=False)
    resource = serializers.CharField(required=False)
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
    limit = serializers.IntegerField(required=False, min_value=1, max_value=1000, default=50)
    offset = serializers.IntegerField(required=False, min_value=0, default=0)

    def validate(self, attrs):
        if attrs.get("start") and attrs.get("end") and attrs["start"] > attrs["end"]:
            raise serializers.ValidationError({"end": "end must not be before start"})
        return attrs


class SubmissionSerializer(serializers.Serializer):
    subject_id = serializers.CharField(required=False, allow_blank=True, max_length=64, default="")
    values = serializers.DictField(child=serializers.JSONField(), allow_empty=True)


class CaseRecordSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    form = serializers.CharField(source="form.name")
    subject_id = serializers.CharField()
    created_by = serializers.CharField()
    created_at = serializers.DateTimeField()


class DataSubjectRequestSerializer(serializers.ModelSerializer):
    class Meta:
        model = DataSubjectRequest
        fields = [
            "request_number",
            "request_type",
            "subject_id",
            "status",
            "received_at",
            "due_date",
            "extension_reason",
            "completed_at",
        ]
        read_only_fields = fields


class DsarTransitionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=DataSubjectRequest.Status.choices)
    note = serializers.CharField(required=False, allow_blank=True, default="", max_length=2000)
    extension_days = serializers.IntegerField(required=False, min_value=1)

    def validate_extension_days(self, value):
        if value > settings.DSAR_MAX_EXTENSION_DAYS:
            raise serializers.ValidationError(
                f"Ensure this value is less than or equal to {settings.DSAR_MAX_EXTENSION_DAYS}."
            )
        return value
