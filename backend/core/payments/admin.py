from django.contrib import admin

from payments.models import Order, OrderLine, PaymentEvent


class OrderLineInline(admin.TabularInline):
    model = OrderLine
    extra = 0


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "event",
        "status",
        "total",
        "currency",
        "purchaser_email",
        "payment_provider",
        "payment_ref",
        "paid_at",
    )
    list_filter = ("status", "payment_provider")
    search_fields = ("purchaser_email", "payment_ref")
    readonly_fields = ("status", "failure_reason", "paid_at", "cancelled_at", "refunded_at", "created_at", "updated_at")
    inlines = [OrderLineInline]


@admin.register(PaymentEvent)
class PaymentEventAdmin(admin.ModelAdmin):
    list_display = ("id", "provider", "provider_event_id", "payment_ref", "normalized_status", "order", "received_at")
    list_filter = ("provider", "normalized_status")
    search_fields = ("provider_event_id", "payment_ref")
    ordering = ("-received_at", "-id")
    readonly_fields = [field.name for field in PaymentEvent._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
