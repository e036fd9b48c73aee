# mr_core/records/management/commands/verify_record_integrity.py

from django.core.management.base import BaseCommand, CommandError

from mr_core.records.hashing import verify_integrity
from mr_core.records.models import RecordVersion


class Command(BaseCommand):
    help = "Recompute every version's content hash and report mismatches (read-only)."

    def add_arguments(self, parser):
        parser.add_argument("--record", dest="record_id", help="Only check versions of this record_id.")

    def handle(self, *args, **options):
        qs = RecordVersion.objects.select_related("record").order_by("record_id", "version_number")
        if options.get("record_id"):
            qs = qs.filter(record__record_id=options["record_id"])

        checked = 0
        mismatches = []
        for version in qs.iterator():
            checked += 1
            if not verify_integrity(version):
                mismatches.append(version)
                self.stderr.write(
                    f"MISMATCH {version.record.record_id} v{version.version_number} ({version.version_id})"
                )

        if mismatches:
            raise CommandError(f"{len(mismatches)} of {checked} versions failed the integrity check.")

        self.stdout.write(self.style.SUCCESS(f"Integrity OK. Versions checked: {checked}"))
