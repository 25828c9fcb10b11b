from django.contrib import admin

from transfers.models import Transfer


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin):
    list_display = ("id", "ticket", "from_email", "to_email", "status", "initiated_at", "expires_at")
    list_filter = ("status",)
    search_fields = ("from_email", "to_email", "ticket__id")
    ordering = ("-initiated_at", "-id")
    exclude = ("token_hash",)
    readonly_fields = [field.name for field in Transfer._meta.fields if field.name != "token_hash"]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
