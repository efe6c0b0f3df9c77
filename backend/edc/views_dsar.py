"""
REST API views for GDPR data-subject requests.

POST /api/v1/dsar                         - log a new request
POST /api/v1/dsar/<number>/transition     - change a request's status (staff)
"""

from collections.abc import Mapping

import structlog
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from edc.exceptions import AuditTrailUnavailable, InvalidTransition
from edc.gdpr import create_request, transition_request
from edc.models import DataSubjectRequest
from edc.serializers import DataSubjectRequestSerializer, DsarTransitionSerializer

logger = structlog.get_logger(__name__)


class DsarCreateView(APIView):
    permission_classes = [IsAuthenticated]

    def post(self, request: Request) -> Response:
        if not isinstance(request.data, Mapping):
            return Response(
                {"valid": False, "errors": {"non_field_errors": ["expected an object of field values"]}},
                status=status.HTTP_400_BAD_REQUEST,
            )
        try:
            result, dsar = create_request(request.data, user_id=request.user.get_username())
        except AuditTrailUnavailable as e:
            return Response({"error": str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        if dsar is None:
            return Response(
                {"valid": False, "errors": result.as_dict()["errors"]},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return Response(DataSubjectRequestSerializer(dsar).data, status=status.HTTP_201_CREATED)


class DsarTransitionView(APIView):
    permission_classes = [IsAuthenticated, IsAdminUser]

    def post(self, request: Request, request_number: str) -> Response:
        serializer = DsarTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            dsar = transition_request(
                request_number,
                data["status"],
                user_id=request.user.get_username(),
                note=data["note"],
                extension_days=data.get("extension_days"),
            )
        except DataSubjectRequest.DoesNotExist:
            return Response(
                {"error": f"Request '{request_number}' not found"},
                status=status.HTTP_404_NOT_FOUND,
            )
        except InvalidTransition as e:
            return Response({"error": str(e)}, status=status.HTTP_409_CONFLICT)
        except AuditTrailUnavailable as e:
            return Response({"error": str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(DataSubjectRequestSerializer(dsar).data)
