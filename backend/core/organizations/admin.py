from django.contrib import admin

from organizations.models import Event, EventSetting, Organization, OrganizationMembership


@admin.register(Organization)
class OrganizationAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "slug", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("name", "slug")


@admin.register(OrganizationMembership)
class OrganizationMembershipAdmin(admin.ModelAdmin):
    list_display = ("id", "organization", "user", "role", "is_active")
    list_filter = ("role", "is_active")
    search_fields = ("organization__name", "user__username", "user__email")


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "organization", "starts_at", "is_active")
    list_filter = ("is_active",)
    search_fields = ("name", "slug", "organization__name")


@admin.register(EventSetting)
class EventSettingAdmin(admin.ModelAdmin):
    list_display = ("id", "event", "domain", "updated_at")
    list_filter = ("domain",)
