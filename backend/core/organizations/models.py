from django.conf import settings
from django.db import models

from fulfillment.rbac import (
    ROLE_ADMIN,
    ROLE_FINANCE,
    ROLE_OWNER,
    ROLE_SCANNER,
    ROLE_SUPPORT,
    validate_role_overrides_schema,
)


class Organization(models.Model):
    name = models.CharField(max_length=150)
    slug = models.SlugField(max_length=63, unique=True)
    is_active = models.BooleanField(default=True)
    role_overrides = models.JSONField(
        default=dict,
        blank=True,
        validators=[validate_role_overrides_schema],
        help_text=(
            "Optional RBAC overrides per action. "
            "Example: {'checkin.undo': ['OWNER']}"
        ),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("name",)
        verbose_name = "Organization"
        verbose_name_plural = "Organizations"

    def __str__(self):
        return f"{self.name} ({self.slug})"


class OrganizationMembership(models.Model):
    class Role(models.TextChoices):
        OWNER = ROLE_OWNER, "Owner"
        ADMIN = ROLE_ADMIN, "Admin"
        SUPPORT = ROLE_SUPPORT, "Support"
        FINANCE = ROLE_FINANCE, "Finance"
        SCANNER = ROLE_SCANNER, "Scanner"

    organization = models.ForeignKey(
        Organization,
        on_delete=models.CASCADE,
        related_name="memberships",
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="organization_memberships",
    )
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.SCANNER)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("organization__name", "user__username")
        constraints = [
            models.UniqueConstraint(
                fields=("organization", "user"),
                name="uq_organization_membership_org_user",
            ),
        ]
        verbose_name = "Organization Membership"
        verbose_name_plural = "Organization Memberships"

    def __str__(self):
        return f"{self.user} @ {self.organization} ({self.role})"


class Event(models.Model):
    organization = models.ForeignKey(
        Organization,
        on_delete=models.PROTECT,
        related_name="events",
    )
    name = models.CharField(max_length=200)
    slug = models.SlugField(max_length=80)
    starts_at = models.DateTimeField(null=True, blank=True)
    ends_at = models.DateTimeField(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-starts_at", "id")
        constraints = [
            models.UniqueConstraint(
                fields=("organization", "slug"),
                name="uq_event_slug_per_organization",
            ),
        ]
        verbose_name = "Event"
        verbose_name_plural = "Events"

    def __str__(self):
        return self.name


class EventSetting(models.Model):
    """Per-event, per-domain settings document (ex: `scanning`).

    Stored values are merged over the deployment defaults at read time; see
    `organizations.settings_store`.
    """

    DOMAIN_SCANNING = "scanning"
    DOMAIN_TRANSFERS = "transfers"
    DOMAIN_CHOICES = [
        (DOMAIN_SCANNING, "Scanning"),
        (DOMAIN_TRANSFERS, "Transfers"),
    ]

    event = models.ForeignKey(
        Event,
        on_delete=models.CASCADE,
        related_name="settings_documents",
    )
    domain = models.CharField(max_length=40, choices=DOMAIN_CHOICES)
    values = models.JSONField(default=dict, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("event_id", "domain")
        constraints = [
            models.UniqueConstraint(
                fields=("event", "domain"),
                name="uq_event_setting_domain",
            ),
        ]
        verbose_name = "Event Setting"
        verbose_name_plural = "Event Settings"

    def __str__(self):
        return f"{self.event_id}:{self.domain}"
