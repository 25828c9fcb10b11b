from rest_framework import serializers


class InitiateTransferSerializer(serializers.Serializer):
    to_email = serializers.EmailField()
    ttl_hours = serializers.IntegerField(required=False, min_value=1, max_value=24 * 30)


class TransferTokenSerializer(serializers.Serializer):
    token = serializers.CharField(max_length=256, trim_whitespace=True)


class CancelTransferSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
