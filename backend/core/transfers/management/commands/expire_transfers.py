from django.core.management.base import BaseCommand

from transfers.services import expire_stale_transfers


class Command(BaseCommand):
    help = (
        "Mark pending ticket transfers past their expiry as EXPIRED. "
        "Default is dry-run."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--apply",
            action="store_true",
            help="Apply changes. Without this flag, command runs in dry-run mode.",
        )

    def handle(self, *args, **options):
        result = expire_stale_transfers(apply_changes=options.get("apply", False))
        mode = "APPLY" if options.get("apply") else "DRY-RUN"
        self.stdout.write(
            self.style.SUCCESS(
                f"[{mode}] scanned={result['scanned']} expired={result['expired']}"
            )
        )
