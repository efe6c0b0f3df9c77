"""
REST API views for form schemas and submissions.

GET  /api/v1/forms/<name>              - schema description
POST /api/v1/forms/<name>/submissions  - validate, store and audit a record
"""

import structlog
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from edc.exceptions import AuditTrailUnavailable, SchemaError
from edc.models import FormDefinition
from edc.schema_loader import load_form_schema
from edc.serializers import CaseRecordSerializer, SubmissionSerializer
from edc.submissions import submit_form

logger = structlog.get_logger(__name__)


def _form_not_found(name: str) -> Response:
    return Response({"error": f"Form '{name}' not found"}, status=status.HTTP_404_NOT_FOUND)


def _form_misconfigured(name: str, error: SchemaError) -> Response:
    logger.error("form_schema_invalid", form=name, error=str(error))
    return Response(
        {"error": f"Form '{name}' is misconfigured: {error}"},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


class FormSchemaView(APIView):
    """Describe a form's fields and their validation rules."""

    permission_classes = [IsAuthenticated]

    def get(self, request: Request, name: str) -> Response:
        try:
            schema = load_form_schema(name)
        except FormDefinition.DoesNotExist:
            return _form_not_found(name)
        except SchemaError as e:
            return _form_misconfigured(name, e)
        return Response(schema.describe())


class FormSubmissionView(APIView):
    """
    Submit a record for a form.

    Request body:
        {"subject_id": "SUBJ-001", "values": {"age": "25", ...}}

    Responses:
    - 201: record stored and audited
    - 400: validation errors, per field
    - 503: audit trail unavailable, nothing stored
    """

    permission_classes = [IsAuthenticated]

    def post(self, request: Request, name: str) -> Response:
        serializer = SubmissionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            outcome = submit_form(
                name,
                serializer.validated_data["values"],
                user_id=request.user.get_username(),
                subject_id=serializer.validated_data["subject_id"],
            )
        except FormDefinition.DoesNotExist:
            return _form_not_found(name)
        except SchemaError as e:
            return _form_misconfigured(name, e)
        except AuditTrailUnavailable as e:
            return Response({"error": str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        if not outcome.accepted:
            return Response(outcome.result.as_dict(), status=status.HTTP_400_BAD_REQUEST)

        body = outcome.result.as_dict()
        body["record"] = CaseRecordSerializer(outcome.record).data
        body["audit_sequence"] = outcome.audit_entry.sequence_number
        return Response(body, status=status.HTTP_201_CREATED)
