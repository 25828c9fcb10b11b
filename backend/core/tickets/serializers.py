from rest_framework import serializers

from tickets.models import TicketInstance


class TicketInstanceSerializer(serializers.ModelSerializer):
    ticket_type_name = serializers.CharField(source="ticket_type.name", read_only=True)

    class Meta:
        model = TicketInstance
        fields = (
            "id",
            "event_id",
            "order_id",
            "ticket_type_id",
            "ticket_type_name",
            "sequence_no",
            "status",
            "owner_user_id",
            "owner_email",
            "owner_name",
            "issued_at",
            "checked_in_at",
            "voided_at",
            "void_reason",
        )
        read_only_fields = fields


class VoidTicketSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
