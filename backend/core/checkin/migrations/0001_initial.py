# Generated manually. Keep in sync with checkin/models.py.

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("organizations", "0001_initial"),
        ("tickets", "0002_ticketinstance"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="ScanRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("device_id", models.CharField(blank=True, max_length=120)),
                ("token_hash", models.CharField(blank=True, max_length=64)),
                ("result", models.CharField(choices=[("VALID", "Valid"), ("INVALID", "Invalid"), ("ALREADY_USED", "Already used"), ("NOT_IN_EVENT", "Not in event"), ("CANCELLED", "Cancelled"), ("RATE_LIMIT_EXCEEDED", "Rate limit exceeded"), ("UNDO", "Undo")], max_length=30)),
                ("reason", models.CharField(blank=True, max_length=40)),
                ("ip_address", models.GenericIPAddressField(blank=True, null=True)),
                ("user_agent", models.TextField(blank=True)),
                ("correlation_id", models.CharField(blank=True, max_length=64)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("scanned_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("event", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="scan_records", to="organizations.event")),
                ("scanned_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="scan_records", to=settings.AUTH_USER_MODEL)),
                ("ticket", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="scan_records", to="tickets.ticketinstance")),
            ],
            options={
                "verbose_name": "Scan Record",
                "verbose_name_plural": "Scan Records",
                "ordering": ("-scanned_at", "-id"),
            },
        ),
        migrations.CreateModel(
            name="CheckinRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("device_id", models.CharField(blank=True, max_length=120)),
                ("checked_in_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("undone_at", models.DateTimeField(blank=True, null=True)),
                ("undo_reason", models.CharField(blank=True, max_length=255)),
                ("checked_in_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
                ("event", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="checkin_records", to="organizations.event")),
                ("scan", models.OneToOneField(on_delete=django.db.models.deletion.PROTECT, related_name="checkin_record", to="checkin.scanrecord")),
                ("ticket", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="checkin_records", to="tickets.ticketinstance")),
                ("undone_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Check-in Record",
                "verbose_name_plural": "Check-in Records",
                "ordering": ("-checked_in_at", "-id"),
            },
        ),
        migrations.AddIndex(
            model_name="scanrecord",
            index=models.Index(fields=("event", "scanned_at"), name="idx_scan_event_time"),
        ),
        migrations.AddIndex(
            model_name="scanrecord",
            index=models.Index(fields=("scanned_by", "scanned_at"), name="idx_scan_actor_time"),
        ),
        migrations.AddIndex(
            model_name="scanrecord",
            index=models.Index(fields=("device_id", "scanned_at"), name="idx_scan_device_time"),
        ),
        migrations.AddConstraint(
            model_name="checkinrecord",
            constraint=models.UniqueConstraint(condition=models.Q(("undone_at__isnull", True)), fields=("ticket",), name="uq_checkin_standing_per_ticket"),
        ),
    ]
