# backoffice/store.py
"""
Explicit data-access handle for the ledger core.

Every core operation receives a ``LedgerStore`` instead of reaching for the
default connection. The store owns the atomic unit, row locks and the
queries that assemble a booking's payment graph.
"""
import logging
from contextlib import contextmanager
from decimal import Decimal

from django.conf import settings
from django.db import DEFAULT_DB_ALIAS, connections, transaction
from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce

from .constants import LOCKED_STATUSES
from .exceptions import RecordNotFoundError
from .finance import PaymentGraph
from .models import (
    Booking,
    BookingAmendment,
    CostItemSupplier,
    CustomerPayableSettlement,
    InitialPayment,
    InstalmentPayment,
    PassengerRefundPayment,
    SupplierPayableSettlement,
)

logger = logging.getLogger(__name__)


class LedgerStore:
    def __init__(self, using=None, timeout_ms=None):
        self.using = using or getattr(settings, "LEDGER_DATABASE_ALIAS", DEFAULT_DB_ALIAS)
        if timeout_ms is None:
            timeout_ms = getattr(settings, "LEDGER_TRANSACTION_TIMEOUT_MS", 15000)
        self.timeout_ms = int(timeout_ms)

    # --- TRANSACTIONS ---
    @contextmanager
    def atomic(self):
        """
        Open the all-or-nothing unit for one ledger operation.

        Nested calls become savepoints of the outer unit. The statement
        timeout is only set on the outermost block, and only where the
        backend supports ``SET LOCAL``.
        """
        connection = connections[self.using]
        outermost = not connection.in_atomic_block
        with transaction.atomic(using=self.using):
            if outermost and connection.vendor == "postgresql" and self.timeout_ms:
                with connection.cursor() as cursor:
                    cursor.execute("SET LOCAL statement_timeout = %s", [self.timeout_ms])
            yield self

    @contextmanager
    def savepoint(self):
        with transaction.atomic(using=self.using):
            yield self

    # --- LOOKUPS ---
    def objects(self, model):
        return model._default_manager.using(self.using)

    def get(self, model, pk, *, lock=False):
        qs = self.objects(model)
        if lock:
            qs = qs.select_for_update()
        try:
            return qs.get(pk=pk)
        except model.DoesNotExist:
            raise RecordNotFoundError(
                f"{model._meta.verbose_name.title()} {pk} not found.",
                model=model.__name__,
                pk=pk,
            )

    def lock(self, model, pk):
        return self.get(model, pk, lock=True)

    def chain(self, booking, *, lock=False):
        """Every booking sharing ``booking``'s chain root, root first."""
        root_id = booking.chain_root_id or booking.pk
        qs = self.objects(Booking).filter(Q(pk=root_id) | Q(chain_root_id=root_id))
        if lock:
            qs = qs.select_for_update()
        return list(qs.order_by("sequence", "pk"))

    def active_chain(self, booking):
        return [b for b in self.chain(booking) if b.status not in LOCKED_STATUSES]

    @staticmethod
    def safe_sum(queryset, field_name):
        """Helper to safely sum decimals."""
        return queryset.aggregate(
            total=Coalesce(Sum(field_name), Value(Decimal("0.00")), output_field=DecimalField())
        )["total"]

    # --- PAYMENT GRAPH ---
    def payment_graph(self, booking_id):
        """Load every money record that feeds a booking's balance and profit."""
        booking = self.get(Booking, booking_id)

        def amounts(model, **filters):
            return tuple(
                self.objects(model).filter(**filters).values_list("amount", flat=True)
            )

        return PaymentGraph(
            revenue=booking.revenue,
            prod_cost=booking.prod_cost,
            trans_fee=booking.trans_fee,
            surcharge=booking.surcharge,
            initial_payments=amounts(InitialPayment, booking_id=booking.pk),
            instalment_payments=amounts(InstalmentPayment, instalment__booking_id=booking.pk),
            customer_payable_settlements=amounts(
                CustomerPayableSettlement, payable__booking_id=booking.pk
            ),
            passenger_refunds=amounts(
                PassengerRefundPayment, cancellation__original_booking_id=booking.pk
            ),
            supplier_payments=tuple(
                self.objects(CostItemSupplier)
                .filter(cost_item__booking_id=booking.pk)
                .values_list("paid_amount", flat=True)
            ),
            supplier_payable_settlements=amounts(
                SupplierPayableSettlement,
                payable__created_from_cancellation__original_booking_id=booking.pk,
            ),
            active_adjustments=tuple(
                self.objects(BookingAmendment)
                .filter(booking_id=booking.pk, is_reversed=False)
                .values_list("difference", flat=True)
            ),
        )
