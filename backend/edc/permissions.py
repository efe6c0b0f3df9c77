from django.conf import settings
from django.utils.translation import gettext_lazy as _
from rest_framework import permissions


class IsAuditViewer(permissions.BasePermission):
    """
    Permission check for audit log access.

    Allowed:
    - staff users
    - members of the AUDIT_VIEWER_GROUP group (read-only auditors, monitors)
    """

    message = _("You do not have permission to view audit logs.")

    def has_permission(self, request, view):
        user = request.user
        if not user or not user.is_authenticated:
            return False
        if user.is_staff:
            return True
        return user.groups.filter(name=settings.AUDIT_VIEWER_GROUP).exists()
