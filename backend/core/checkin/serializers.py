from rest_framework import serializers


class ScanRequestSerializer(serializers.Serializer):
    token = serializers.CharField(max_length=256, trim_whitespace=True)
    device_id = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")


class UndoCheckinSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
