"""
REST API views for the audit trail.

All endpoints are read-only with respect to existing entries and restricted
to audit viewers. Exporting appends an AUDIT_EXPORT event.
"""

import structlog
from django.http import HttpResponse
from django.utils import timezone
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from edc.audit import AuditQuery, get_audit_log
from edc.exceptions import AuditTrailUnavailable
from edc.permissions import IsAuditViewer
from edc.serializers import AuditEntrySerializer, AuditQuerySerializer

logger = structlog.get_logger(__name__)

_FILTER_FIELDS = ("user_id", "action", "status", "resource", "start", "end")


def _parse_query(request: Request):
    params = AuditQuerySerializer(data=request.query_params)
    params.is_valid(raise_exception=True)
    data = params.validated_data
    query = AuditQuery(**{key: data[key] for key in _FILTER_FIELDS if key in data})
    return query, data


class AuditLogListView(APIView):
    """
    Query audit entries in sequence order.

    GET /api/v1/audit

    Query parameters:
    - user_id, action, status, resource: exact-match filters
    - start, end: inclusive timestamp range (ISO 8601)
    - limit: Number of results to return (default: 50, max: 1000)
    - offset: Number of results to skip (default: 0)
    """

    permission_classes = [IsAuthenticated, IsAuditViewer]

    def get(self, request: Request) -> Response:
        query, params = _parse_query(request)
        logger.info(
            "audit_log_accessed",
            actor_id=request.user.get_username(),
            query_params=dict(request.query_params),
        )

        entries = get_audit_log().query(query).page(params["offset"], params["limit"])
        return Response(
            {
                "limit": params["limit"],
                "offset": params["offset"],
                "results": AuditEntrySerializer(entries, many=True).data,
            }
        )


class AuditChainVerifyView(APIView):
    """
    Verify the hash chain end to end.

    GET /api/v1/audit/verify

    Returns 200 when the chain is intact, 409 with the first broken
    sequence number otherwise.
    """

    permission_classes = [IsAuthenticated, IsAuditViewer]

    def get(self, request: Request) -> Response:
        result = get_audit_log().verify()
        body = result.as_dict()
        body["verified_at"] = timezone.now().isoformat()
        body["verified_by"] = request.user.get_username()

        if not result.ok:
            logger.error(
                "audit_chain_verification_failed",
                first_break_sequence=result.first_break_sequence,
                entries_checked=result.entries_checked,
                actor_id=request.user.get_username(),
            )
            return Response(body, status=status.HTTP_409_CONFLICT)
        return Response(body)


class AuditLogExportView(APIView):
    """
    Export audit entries as CSV with the chain verification outcome.

    GET /api/v1/audit/export

    Accepts the same filters as the list endpoint (limit/offset are ignored).
    """

    permission_classes = [IsAuthenticated, IsAuditViewer]

    def get(self, request: Request):
        query, _ = _parse_query(request)
        response = HttpResponse(content_type="text/csv; charset=utf-8")
        filename = f"audit_log_{timezone.now():%Y%m%d_%H%M%S}.csv"
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        try:
            verification = get_audit_log().export_csv(
                response, user_id=request.user.get_username(), query=query
            )
        except AuditTrailUnavailable as e:
            return Response({"error": str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        response["X-Audit-Integrity-Verified"] = "true" if verification.ok else "false"
        return response
