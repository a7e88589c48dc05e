# backoffice/commission.py
"""
Two-phase agent commission.

INITIAL is posted when a booking is confirmed and follows profit until the
booking is reconciled. FINAL_RECONCILIATION is posted once, when the balance
reaches zero, and tops the agent up (or claws back) to the final profit.
"""
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from itertools import groupby
from operator import attrgetter

from django.db.models import OuterRef, Subquery
from django.utils import timezone

from .constants import CANCELLED, COMMISSION_FINAL, COMMISSION_INITIAL, PENDING, VOID
from .models import CommissionEntry
from .money import ZERO, is_settled, money_sum, to_money

logger = logging.getLogger(__name__)


def initial_commission_target(profit, plan):
    if plan.earns_full_commission:
        return to_money(profit)
    return to_money(Decimal(profit) / 2)


def commission_month(today=None):
    today = today or timezone.localdate()
    return today.replace(day=1)


def run_best_effort(store, func, *args):
    """
    Run a commission side effect inside a savepoint.

    A failure rolls back only the savepoint and is logged; the ledger write
    that triggered it still commits.
    """
    try:
        with store.savepoint():
            return func(store, *args)
    except Exception:
        logger.exception(
            "Commission side effect %s failed for %r", func.__name__, args[:1]
        )
        return None


def resolve_agent(booking):
    if booking.agent_id:
        return booking.agent
    logger.warning(
        "Booking %s has no agent (legacy name %r); skipping commission. "
        "Run backfill_booking_agents to link it.",
        booking.pk,
        booking.agent_name,
    )
    return None


def sync_initial_commission(store, booking):
    """Create or re-align the INITIAL entry, unless reconciliation froze it."""
    if booking.status in (PENDING, VOID, CANCELLED):
        return None

    entries = store.objects(CommissionEntry).select_for_update().filter(booking=booking)
    by_type = {entry.entry_type: entry for entry in entries}
    initial = by_type.get(COMMISSION_INITIAL)
    target = initial_commission_target(booking.profit, booking.payment_plan)

    if initial is not None:
        if COMMISSION_FINAL in by_type or initial.amount == target:
            return initial
        initial.amount = target
        initial.save(using=store.using, update_fields=["amount", "updated_at"])
        logger.info("Initial commission for booking %s moved to %s", booking.pk, target)
        return initial

    agent = resolve_agent(booking)
    if agent is None:
        return None
    initial = store.objects(CommissionEntry).create(
        booking=booking,
        agent=agent,
        entry_type=COMMISSION_INITIAL,
        amount=target,
        commission_month=commission_month(),
    )
    logger.info("Initial commission %s posted for booking %s", target, booking.pk)
    return initial


def final_reconciliation_amount(booking, total_adjustments, initial_paid):
    final_profit = (booking.revenue - booking.prod_cost) + total_adjustments
    return final_profit - initial_paid


def post_final_reconciliation(store, booking, total_adjustments=ZERO):
    """Post FINAL_RECONCILIATION at most once per booking."""
    entries = store.objects(CommissionEntry).select_for_update().filter(booking=booking)
    by_type = {entry.entry_type: entry for entry in entries}
    if COMMISSION_FINAL in by_type:
        return None

    initial = by_type.get(COMMISSION_INITIAL)
    initial_paid = initial.amount if initial else ZERO
    amount = to_money(final_reconciliation_amount(booking, total_adjustments, initial_paid))
    if is_settled(amount):
        return None

    agent = resolve_agent(booking)
    if agent is None:
        return None
    entry = store.objects(CommissionEntry).create(
        booking=booking,
        agent=agent,
        entry_type=COMMISSION_FINAL,
        amount=amount,
        commission_month=commission_month(),
    )
    logger.info("Final reconciliation %s posted for booking %s", amount, booking.pk)
    return entry


@dataclass(frozen=True)
class CommissionMonth:
    month: date
    entries: list
    total: Decimal


def agent_statement(store, agent, month=None):
    """
    An agent's commission entries grouped by commission month, newest month
    first. Each entry carries ``initial_paid``: the INITIAL amount already
    paid on its booking.
    """
    initial = store.objects(CommissionEntry).filter(
        booking=OuterRef("booking"), entry_type=COMMISSION_INITIAL
    )
    entries = (
        store.objects(CommissionEntry)
        .filter(agent=agent)
        .select_related("booking")
        .annotate(initial_paid=Subquery(initial.values("amount")[:1]))
        .order_by("-commission_month", "booking_id", "pk")
    )
    if month is not None:
        entries = entries.filter(commission_month=month)

    months = []
    for key, group in groupby(entries, key=attrgetter("commission_month")):
        group = list(group)
        months.append(CommissionMonth(key, group, money_sum(entry.amount for entry in group)))
    return months
