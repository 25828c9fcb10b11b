# Generated manually. Keep in sync with tickets/models.py.

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    dependencies = [
        ("organizations", "0001_initial"),
        ("payments", "0001_initial"),
        ("tickets", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="TicketInstance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sequence_no", models.PositiveIntegerField()),
                ("owner_email", models.EmailField(blank=True, max_length=254)),
                ("owner_name", models.CharField(blank=True, max_length=200)),
                ("token_hash", models.CharField(max_length=64, unique=True)),
                ("status", models.CharField(choices=[("ISSUED", "Issued"), ("VOID", "Void"), ("CHECKED_IN", "Checked in")], default="ISSUED", max_length=20)),
                ("issued_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("checked_in_at", models.DateTimeField(blank=True, null=True)),
                ("voided_at", models.DateTimeField(blank=True, null=True)),
                ("void_reason", models.CharField(blank=True, max_length=255)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("checked_in_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="checked_in_tickets", to=settings.AUTH_USER_MODEL)),
                ("event", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="ticket_instances", to="organizations.event")),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="ticket_instances", to="payments.order")),
                ("order_line", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="ticket_instances", to="payments.orderline")),
                ("owner_user", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="owned_tickets", to=settings.AUTH_USER_MODEL)),
                ("ticket_type", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="instances", to="tickets.tickettype")),
                ("voided_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="voided_tickets", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "verbose_name": "Ticket",
                "verbose_name_plural": "Tickets",
                "ordering": ("order_id", "order_line_id", "sequence_no"),
            },
        ),
        migrations.AddConstraint(
            model_name="ticketinstance",
            constraint=models.UniqueConstraint(fields=("order_line", "sequence_no"), name="uq_ticket_instance_line_sequence"),
        ),
        migrations.AddConstraint(
            model_name="ticketinstance",
            constraint=models.CheckConstraint(condition=models.Q(("sequence_no__gte", 1)), name="ck_ticket_instance_sequence_positive"),
        ),
        migrations.AddIndex(
            model_name="ticketinstance",
            index=models.Index(fields=("ticket_type", "status"), name="idx_ticket_type_status"),
        ),
        migrations.AddIndex(
            model_name="ticketinstance",
            index=models.Index(fields=("event", "status"), name="idx_ticket_event_status"),
        ),
    ]
