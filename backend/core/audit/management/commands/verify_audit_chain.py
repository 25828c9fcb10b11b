from django.core.management.base import BaseCommand, CommandError

from audit.models import AuditEntry
from audit.services import verify_audit_chain


class Command(BaseCommand):
    help = "Recompute audit hash chains and report the first broken link, if any."

    def add_arguments(self, parser):
        parser.add_argument(
            "--chain",
            default="",
            help="Chain to verify (ex: org:1, platform). Default: every chain.",
        )

    def handle(self, *args, **options):
        chain = (options.get("chain") or "").strip()
        if chain:
            chain_ids = [chain]
        else:
            chain_ids = list(
                AuditEntry.objects.order_by("chain_id")
                .values_list("chain_id", flat=True)
                .distinct()
            )

        broken = []
        for chain_id in chain_ids:
            report = verify_audit_chain(chain_id)
            if report.ok:
                self.stdout.write(
                    self.style.SUCCESS(f"[OK] chain={chain_id} entries={report.checked}")
                )
            else:
                broken.append(chain_id)
                self.stdout.write(
                    self.style.ERROR(
                        f"[BROKEN] chain={chain_id} entry_id={report.broken_entry_id} "
                        f"problem={report.problem}"
                    )
                )

        if broken:
            raise CommandError(f"Broken audit chains: {', '.join(broken)}")
