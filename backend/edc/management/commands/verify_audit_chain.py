"""
Management command to verify the audit hash chain.

Exits non-zero when the chain is broken, so it can gate scheduled
compliance checks.

Usage:
    python manage.py verify_audit_chain
    python manage.py verify_audit_chain --show-errors
"""

from django.core.management.base import BaseCommand, CommandError

from edc.audit import get_audit_log


class Command(BaseCommand):
    help = "Verify the integrity of the hash-chained audit log"

    def add_arguments(self, parser):
        parser.add_argument(
            "--show-errors",
            action="store_true",
            help="List every integrity error found, not just the first break",
        )

    def handle(self, *args, **options):
        result = get_audit_log().verify()

        if result.ok:
            self.stdout.write(
                self.style.SUCCESS(f"Audit chain intact: {result.entries_checked} entries verified")
            )
            return

        if options["show_errors"]:
            for error in result.errors:
                self.stderr.write(f"  {error}")
        raise CommandError(
            f"Audit chain broken at sequence {result.first_break_sequence} "
            f"({len(result.errors)} error(s) in {result.entries_checked} entries)"
        )
