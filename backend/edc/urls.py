from django.urls import path

from edc.views_audit import AuditChainVerifyView, AuditLogExportView, AuditLogListView
from edc.views_dsar import DsarCreateView, DsarTransitionView
from edc.views_forms import FormSchemaView, FormSubmissionView

urlpatterns = [
    path("forms/<slug:name>", FormSchemaView.as_view(), name="form-schema"),
    path("forms/<slug:name>/submissions", FormSubmissionView.as_view(), name="form-submissions"),
    path("audit", AuditLogListView.as_view(), name="audit-list"),
    path("audit/verify", AuditChainVerifyView.as_view(), name="audit-verify"),
    path("audit/export", AuditLogExportView.as_view(), name="audit-export"),
    path("dsar", DsarCreateView.as_view(), name="dsar-create"),
    path(
        "dsar/<str:request_number>/transition",
        DsarTransitionView.as_view(),
        name="dsar-transition",
    ),
]
