from django.contrib import admin

from checkin.models import CheckinRecord, ScanRecord


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(ScanRecord)
class ScanRecordAdmin(ReadOnlyAdmin):
    list_display = ("id", "event", "ticket", "result", "reason", "device_id", "scanned_by", "scanned_at")
    list_filter = ("result",)
    search_fields = ("device_id", "correlation_id", "ticket__id")
    ordering = ("-scanned_at", "-id")


@admin.register(CheckinRecord)
class CheckinRecordAdmin(ReadOnlyAdmin):
    list_display = ("id", "ticket", "event", "checked_in_by", "checked_in_at", "undone_at", "undone_by")
    list_filter = ("event",)
    search_fields = ("ticket__id", "device_id")
    ordering = ("-checked_in_at", "-id")
