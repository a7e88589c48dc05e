# backoffice/management/commands/mark_overdue_instalments.py
from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_date

from backoffice.payments import mark_overdue_instalments
from backoffice.store import LedgerStore


class Command(BaseCommand):
    help = "Flags pending instalments whose due date has passed as overdue. Run daily."

    def add_arguments(self, parser):
        parser.add_argument("--date", help="Reference day (YYYY-MM-DD). Defaults to today.")

    def handle(self, *args, **options):
        today = None
        if options["date"]:
            today = parse_date(options["date"])
            if today is None:
                raise CommandError("--date must be a YYYY-MM-DD date.")

        overdue = mark_overdue_instalments(LedgerStore(), today)
        for instalment in overdue:
            self.stdout.write(
                f"Instalment {instalment.pk} of booking {instalment.booking_id} "
                f"was due {instalment.due_date}"
            )
        self.stdout.write(self.style.SUCCESS(f"{len(overdue)} instalment(s) marked overdue."))
