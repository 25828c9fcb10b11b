from rest_framework import serializers

from audit.models import AuditEntry


class AuditEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = AuditEntry
        fields = (
            "id",
            "organization_id",
            "actor_username",
            "actor_label",
            "event_type",
            "outcome",
            "reason_code",
            "resource_label",
            "resource_pk",
            "occurred_at",
            "correlation_id",
            "chain_id",
            "prev_hash",
            "entry_hash",
            "data_before",
            "data_after",
            "metadata",
        )
