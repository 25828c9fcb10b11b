from django.shortcuts import get_object_or_404
from rest_framework.response import Response
from rest_framework.views import APIView

from audit.models import AuditEntry
from audit.serializers import AuditEntrySerializer
from audit.services import chain_id_for
from fulfillment.actors import Actor
from fulfillment.authz import authorize
from fulfillment.rbac import ACTION_AUDIT_READ
from organizations.models import Organization


class OrganizationAuditEntryListAPIView(APIView):
    def get(self, request, organization_id: int):
        organization = get_object_or_404(Organization, id=organization_id)
        authorize(Actor.from_request(request), organization, ACTION_AUDIT_READ)

        try:
            limit = int(request.query_params.get("limit", "200"))
        except ValueError:
            limit = 200
        limit = max(1, min(limit, 1000))

        entries = AuditEntry.objects.filter(chain_id=chain_id_for(organization))
        resource_label = (request.query_params.get("resource_label") or "").strip()
        if resource_label:
            entries = entries.filter(resource_label=resource_label)
        resource_pk = (request.query_params.get("resource_pk") or "").strip()
        if resource_pk:
            entries = entries.filter(resource_pk=resource_pk)

        entries = entries.order_by("-occurred_at", "-id")[:limit]
        return Response(AuditEntrySerializer(entries, many=True).data)
