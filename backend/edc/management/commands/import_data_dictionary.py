"""
Management command to import a form's data dictionary from CSV.

The file is parsed and checked in full before anything is written; a
malformed dictionary leaves the stored form untouched.

Usage:
    python manage.py import_data_dictionary forms/demographics.csv --form demographics
    python manage.py import_data_dictionary dd.csv --form vitals --title "Vital signs" --dry-run
"""

from django.core.management.base import BaseCommand, CommandError

from edc.exceptions import AuditTrailUnavailable, SchemaError
from edc.schema_loader import import_schema, schema_from_csv


class Command(BaseCommand):
    help = "Import a form definition from a data-dictionary CSV"

    def add_arguments(self, parser):
        parser.add_argument("csv_path", type=str, help="Path to the data-dictionary CSV")
        parser.add_argument("--form", type=str, required=True, help="Form name (slug)")
        parser.add_argument("--title", type=str, default="", help="Human-readable form title")
        parser.add_argument(
            "--user",
            type=str,
            default="system",
            help="User recorded in the audit trail (default: system)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Validate the dictionary without storing it",
        )

    def handle(self, *args, **options):
        try:
            schema = schema_from_csv(options["csv_path"], options["form"])
        except FileNotFoundError:
            raise CommandError(f"File not found: {options['csv_path']}")
        except SchemaError as e:
            raise CommandError(f"Invalid data dictionary: {e}")

        if options["dry_run"]:
            self.stdout.write(f"[DRY RUN] {options['form']}: {len(schema)} fields valid")
            return

        try:
            form = import_schema(schema, user_id=options["user"], title=options["title"])
        except AuditTrailUnavailable as e:
            raise CommandError(f"Import aborted: {e}")

        self.stdout.write(
            self.style.SUCCESS(f"Imported {form.name} v{form.version} ({len(schema)} fields)")
        )
