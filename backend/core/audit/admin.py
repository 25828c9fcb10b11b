from django.contrib import admin

from audit.models import AuditEntry


@admin.register(AuditEntry)
class AuditEntryAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "chain_id",
        "event_type",
        "outcome",
        "reason_code",
        "resource_label",
        "resource_pk",
        "occurred_at",
        "actor_username",
        "actor_label",
    )
    list_filter = ("outcome",)
    search_fields = ("event_type", "resource_label", "resource_pk", "actor_username", "chain_id")
    ordering = ("-occurred_at", "-id")
    readonly_fields = [field.name for field in AuditEntry._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
