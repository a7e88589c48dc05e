# backoffice/management/commands/seed.py
import logging
import os
import secrets
from datetime import date, timedelta
from decimal import Decimal

from django.core.management.base import BaseCommand

from backoffice.cancellation import cancel_booking_chain
from backoffice.models import Booking
from backoffice.services import (
    BookingDraft,
    CostItemInput,
    InitialPaymentInput,
    InstalmentInput,
    SupplierAllocationInput,
    create_booking,
)
from backoffice.store import LedgerStore

logger = logging.getLogger(__name__)


def get_user():
    from django.contrib.auth import get_user_model

    return get_user_model()


class Command(BaseCommand):
    help = "Seeds the database with demo bookings, payments and a cancellation."

    def handle(self, *args, **options):
        self.stdout.write("Starting database seeding...")
        User = get_user()

        # 1. Create Superuser (Admin)
        admin_user, created = User.objects.get_or_create(
            username="admin",
            defaults={"email": "admin@example.com", "is_staff": True, "is_superuser": True},
        )
        if created:
            # Use env var or generate secure random password
            password = os.environ.get("SEED_ADMIN_PASSWORD", secrets.token_urlsafe(16))
            admin_user.set_password(password)
            admin_user.save()
            self.stdout.write(
                self.style.SUCCESS(f'Superuser "admin" created. Password: {password}')
            )
            self.stdout.write(self.style.WARNING("⚠️  Save this password now! It won't be shown again."))
        else:
            self.stdout.write('Superuser "admin" already exists.')

        # 2. Sales agent
        agent, _ = User.objects.get_or_create(
            username="sarah",
            defaults={"first_name": "Sarah", "last_name": "Khan", "is_staff": True},
        )

        if Booking.objects.exists():
            self.stdout.write(self.style.WARNING("Bookings already exist, skipping demo data."))
            return

        store = LedgerStore()
        today = date.today()

        # 3. Confirmed booking on internal instalments
        create_booking(
            store,
            BookingDraft(
                ref_no="BTR-1001",
                pax_name="Ali Hassan",
                agent=agent,
                payment_method="INTERNAL",
                revenue=Decimal("1200.00"),
                description="Return flight LHR-DXB",
                initial_payments=[
                    InitialPaymentInput(Decimal("400.00"), "BANK_TRANSFER", today)
                ],
                cost_items=[
                    CostItemInput(
                        Decimal("900.00"),
                        suppliers=[
                            SupplierAllocationInput(
                                "BTRES",
                                Decimal("900.00"),
                                payment_method="BANK_TRANSFER_AND_CREDIT",
                                first_method_amount=Decimal("500.00"),
                                second_method_amount=Decimal("400.00"),
                            )
                        ],
                    )
                ],
                instalments=[
                    InstalmentInput(today + timedelta(days=30), Decimal("400.00")),
                    InstalmentInput(today + timedelta(days=60), Decimal("400.00")),
                ],
            ),
            actor=admin_user,
            confirm=True,
        )

        # 4. Paid-in-full booking that is then cancelled
        paid = create_booking(
            store,
            BookingDraft(
                ref_no="LYC-2001",
                pax_name="Maria Lopez",
                agent=agent,
                payment_method="FULL",
                revenue=Decimal("1000.00"),
                description="Manila family trip",
                initial_payments=[InitialPaymentInput(Decimal("1000.00"), "STRIPE", today)],
                cost_items=[
                    CostItemInput(
                        Decimal("800.00"),
                        suppliers=[SupplierAllocationInput("LYCA", Decimal("800.00"))],
                    )
                ],
            ),
            actor=admin_user,
            confirm=True,
        )
        cancellation = cancel_booking_chain(
            store,
            paid.pk,
            supplier_cancellation_fee=Decimal("200.00"),
            admin_fee=Decimal("50.00"),
            actor=admin_user,
            description="Passenger cancelled before travel",
        )

        # 5. Pending booking awaiting approval
        create_booking(
            store,
            BookingDraft(
                ref_no="EZY-3001",
                pax_name="Tom Reed",
                agent=agent,
                payment_method="FULL_HUMM",
                revenue=Decimal("450.00"),
                prod_cost=Decimal("380.00"),
            ),
            actor=admin_user,
        )

        logger.info("Seed data created, cancellation %s", cancellation.folder_no)
        self.stdout.write(
            self.style.SUCCESS("Database seeding complete. Go to http://localhost:8000/admin")
        )
