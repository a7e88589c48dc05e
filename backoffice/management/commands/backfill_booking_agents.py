# backoffice/management/commands/backfill_booking_agents.py
import logging

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand

from backoffice import services
from backoffice.exceptions import StateConflictError
from backoffice.models import Booking
from backoffice.store import LedgerStore

logger = logging.getLogger(__name__)


def match_agent(name, users):
    """Match a free-text agent name on first name. Ambiguous names match nobody."""
    first_name = (name or "").strip().split(" ")[0].casefold()
    if not first_name:
        return None
    candidates = [u for u in users if u.first_name.strip().casefold() == first_name]
    return candidates[0] if len(candidates) == 1 else None


class Command(BaseCommand):
    help = (
        "Links legacy bookings to their agent user using the stored agent name "
        "and posts the commission they missed."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run", action="store_true", help="Report matches without saving."
        )

    def handle(self, *args, **options):
        store = LedgerStore()
        users = list(get_user_model().objects.filter(is_active=True))
        pending = Booking.objects.filter(agent__isnull=True).exclude(agent_name="").order_by("pk")

        linked, unmatched = 0, []
        for booking in pending:
            agent = match_agent(booking.agent_name, users)
            if agent is None:
                unmatched.append(booking)
                continue
            if not options["dry_run"]:
                try:
                    services.assign_agent(store, booking.pk, agent)
                except StateConflictError as exc:
                    # Linked by someone else since the scan
                    logger.warning("Skipping booking %s: %s", booking.pk, exc.message)
                    continue
            linked += 1

        for booking in unmatched:
            self.stdout.write(
                self.style.WARNING(f"No unique agent for booking {booking.pk} ({booking.agent_name!r})")
            )
        verb = "would be linked" if options["dry_run"] else "linked"
        self.stdout.write(self.style.SUCCESS(f"{linked} booking(s) {verb}, {len(unmatched)} unmatched."))
