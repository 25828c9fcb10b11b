from django.contrib import admin

from tickets.models import TicketInstance, TicketType


@admin.register(TicketType)
class TicketTypeAdmin(admin.ModelAdmin):
    list_display = ("id", "event", "name", "price", "capacity_total", "status", "sales_start", "sales_end")
    list_filter = ("status",)
    search_fields = ("name", "event__name")
    ordering = ("event_id", "id")


@admin.register(TicketInstance)
class TicketInstanceAdmin(admin.ModelAdmin):
    list_display = ("id", "event", "ticket_type", "order", "sequence_no", "status", "owner_email", "issued_at")
    list_filter = ("status",)
    search_fields = ("owner_email", "order__id")
    # Status, ownership and tokens only change through the fulfillment services.
    readonly_fields = [field.name for field in TicketInstance._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
