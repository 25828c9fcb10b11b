from django.urls import path

from audit.views import OrganizationAuditEntryListAPIView

urlpatterns = [
    path(
        "organizations/<int:organization_id>/audit/",
        OrganizationAuditEntryListAPIView.as_view(),
        name="organization-audit-list",
    ),
]
