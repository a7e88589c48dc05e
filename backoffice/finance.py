# backoffice/finance.py
"""
Balance / profit calculator.

Balances are never patched incrementally. After any write that touches a
payment, settlement, refund or amendment the booking is recomputed from its
full payment graph.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from . import audit, commission
from .constants import AUDIT_UPDATE, COMPLETED, CONFIRMED
from .money import ZERO, is_settled, money_sum, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentGraph:
    revenue: Decimal
    prod_cost: Decimal = ZERO
    trans_fee: Decimal = ZERO
    surcharge: Decimal = ZERO
    initial_payments: Sequence[Decimal] = ()
    instalment_payments: Sequence[Decimal] = ()
    customer_payable_settlements: Sequence[Decimal] = ()
    passenger_refunds: Sequence[Decimal] = ()
    # Paid shares of the booking's CostItemSupplier rows
    supplier_payments: Sequence[Decimal] = ()
    supplier_payable_settlements: Sequence[Decimal] = ()
    active_adjustments: Sequence[Decimal] = ()

    @property
    def total_adjustments(self):
        return money_sum(self.active_adjustments)


@dataclass(frozen=True)
class LedgerTotals:
    total_received: Decimal
    total_paid_to_suppliers: Decimal
    balance: Decimal
    profit: Decimal
    total_adjustments: Decimal = ZERO

    @property
    def is_settled(self):
        return is_settled(self.balance)


def calculate_totals(graph: PaymentGraph) -> LedgerTotals:
    total_received = (
        money_sum(graph.initial_payments)
        + money_sum(graph.instalment_payments)
        + money_sum(graph.customer_payable_settlements)
        - money_sum(graph.passenger_refunds)
    )
    paid_to_suppliers = money_sum(graph.supplier_payments) + money_sum(
        graph.supplier_payable_settlements
    )
    # Contracted cost until suppliers have actually been paid more than that
    supplier_cost = max(graph.prod_cost, paid_to_suppliers)
    adjustments = graph.total_adjustments

    return LedgerTotals(
        total_received=total_received,
        total_paid_to_suppliers=paid_to_suppliers,
        balance=graph.revenue - total_received + adjustments,
        profit=graph.revenue - supplier_cost - graph.trans_fee - graph.surcharge + adjustments,
        total_adjustments=adjustments,
    )


def recompute(booking_id, store) -> LedgerTotals:
    return calculate_totals(store.payment_graph(booking_id))


def next_status(current_status, totals: LedgerTotals, *, superseded=False):
    """
    Completion rule: a confirmed booking completes once settled and a
    completed one reopens when its balance does. Bookings replaced by a date
    change stay completed.
    """
    if current_status == CONFIRMED and totals.is_settled:
        return COMPLETED
    if current_status == COMPLETED and not totals.is_settled and not superseded:
        return CONFIRMED
    return current_status


def refresh_booking_financials(store, booking, *, actor=None, action=AUDIT_UPDATE):
    """
    Recompute ``booking`` and persist balance, profit and status.

    ``booking`` must already be locked by the caller. Commission side effects
    run after the core write and can never undo it.
    """
    totals = recompute(booking.pk, store)
    before = {"balance": booking.balance, "profit": booking.profit, "status": booking.status}

    booking.balance = to_money(totals.balance)
    booking.profit = to_money(totals.profit)
    superseded = store.objects(type(booking)).filter(parent_booking=booking).exists()
    booking.status = next_status(booking.status, totals, superseded=superseded)
    booking.save(using=store.using, update_fields=["balance", "profit", "status", "updated_at"])
    audit.log_changes(store, actor, booking, before, action=action)

    if booking.status in (CONFIRMED, COMPLETED) and booking.profit != before["profit"]:
        commission.run_best_effort(store, commission.sync_initial_commission, booking)
    if booking.status == COMPLETED and totals.is_settled:
        commission.run_best_effort(
            store, commission.post_final_reconciliation, booking, totals.total_adjustments
        )
    return totals
