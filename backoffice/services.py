# backoffice/services.py
"""
Booking lifecycle: creation, approval, edits, date changes, void, balance
amendments, invoice numbering and commission month moves. Money movements
live in ``payments``.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from django.db import IntegrityError
from django.db.models import Max
from django.utils import timezone

from . import audit, commission
from .constants import (
    AMENDMENT_CORRECTION,
    AMENDMENT_WRITE_OFF,
    AUDIT_APPROVE,
    AUDIT_COMMISSION_MONTH,
    AUDIT_CORRECTION,
    AUDIT_CREATE,
    AUDIT_DATE_CHANGE,
    AUDIT_INVOICE,
    AUDIT_REVERSE,
    AUDIT_UNVOID,
    AUDIT_UPDATE,
    AUDIT_VOID,
    AUDIT_WRITE_OFF,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    CUSTOMER_CREDIT_NOTE,
    CUSTOMER_PAYMENT_METHODS,
    DATE_CHANGE,
    LOCKED_STATUSES,
    PENDING,
    VOID,
)
from .credit_notes import CreditNoteSelection, apply_credit_notes
from .exceptions import LedgerValidationError, StateConflictError
from .finance import recompute, refresh_booking_financials
from .models import (
    Booking,
    BookingAmendment,
    CommissionEntry,
    CostItem,
    CostItemSupplier,
    CustomerCreditNote,
    InitialPayment,
    Instalment,
    InvoiceCounter,
    SupplierCreditNote,
)
from .money import ZERO, amounts_match, is_settled, money_sum, to_money
from .payment_plans import PaymentPlan, SupplierPaymentPlan

logger = logging.getLogger(__name__)


# --- INPUT RECORDS ---
@dataclass
class InitialPaymentInput:
    amount: Decimal
    transaction_method: str
    payment_date: date
    credit_notes: List[CreditNoteSelection] = field(default_factory=list)


@dataclass
class SupplierAllocationInput:
    supplier: str
    amount: Decimal
    payment_method: str = "BANK_TRANSFER"
    first_method_amount: Optional[Decimal] = None
    second_method_amount: Optional[Decimal] = None
    credit_notes: List[CreditNoteSelection] = field(default_factory=list)


@dataclass
class CostItemInput:
    amount: Decimal
    category: str = "FLIGHT"
    suppliers: List[SupplierAllocationInput] = field(default_factory=list)


@dataclass
class InstalmentInput:
    due_date: date
    amount: Decimal


@dataclass
class BookingDraft:
    ref_no: str
    pax_name: str
    agent: object
    payment_method: str
    revenue: Decimal
    prod_cost: Decimal = ZERO
    trans_fee: Decimal = ZERO
    surcharge: Decimal = ZERO
    team_name: str = ""
    description: str = ""
    pc_date: Optional[date] = None
    travel_date: Optional[date] = None
    initial_payments: List[InitialPaymentInput] = field(default_factory=list)
    cost_items: List[CostItemInput] = field(default_factory=list)
    instalments: List[InstalmentInput] = field(default_factory=list)


@dataclass(frozen=True)
class InvoiceSnapshot:
    invoice_number: str
    folder_no: str
    ref_no: str
    pax_name: str
    revenue: Decimal
    total_received: Decimal
    balance: Decimal
    issued_on: date


EDITABLE_FIELDS = {
    "ref_no",
    "pax_name",
    "team_name",
    "description",
    "pc_date",
    "travel_date",
    "revenue",
    "prod_cost",
    "trans_fee",
    "surcharge",
}
MONEY_FIELDS = {"revenue", "prod_cost", "trans_fee", "surcharge"}


# --- HELPERS ---
def ensure_mutable(booking):
    if booking.status in LOCKED_STATUSES:
        raise StateConflictError(
            f"Booking {booking.folder_no or booking.pk} is {booking.status.lower()}."
        )


def clean_booking_changes(store, booking, changes):
    """Validate field edits against ``booking``; money values come back quantized."""
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise LedgerValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}.")
    ensure_mutable(booking)
    if "prod_cost" in changes and store.objects(CostItem).filter(booking=booking).exists():
        raise LedgerValidationError("Production cost is derived from cost items on this booking.")

    cleaned = {}
    for name, value in changes.items():
        if name in MONEY_FIELDS:
            value = to_money(value)
            if value < ZERO:
                raise LedgerValidationError(f"{name} cannot be negative.")
        cleaned[name] = value
    return cleaned


@contextmanager
def claiming(store, what):
    """Savepoint around a write that takes a unique number. Losing the race is a conflict."""
    try:
        with store.savepoint():
            yield
    except IntegrityError:
        logger.warning("Concurrent request took the same %s", what)
        raise StateConflictError(f"Another request took this {what} first; please retry.")


def next_folder_number(store):
    current = store.objects(Booking).aggregate(top=Max("folder_number"))["top"]
    return (current or 0) + 1


def _persist_graph(store, booking, draft):
    """Cost items, initial payments and instalments of a freshly created booking."""
    for item in draft.cost_items:
        _persist_cost_item(store, booking, item)

    for payment in draft.initial_payments:
        if payment.transaction_method not in CUSTOMER_PAYMENT_METHODS:
            raise LedgerValidationError(
                f"'{payment.transaction_method}' is not a customer payment method."
            )
        amount = to_money(payment.amount)
        if amount <= ZERO:
            raise LedgerValidationError("Initial payment amounts must be positive.")
        record = store.objects(InitialPayment).create(
            booking=booking,
            amount=amount,
            transaction_method=payment.transaction_method,
            payment_date=payment.payment_date,
        )
        if payment.transaction_method == CUSTOMER_CREDIT_NOTE:
            apply_credit_notes(
                store,
                CustomerCreditNote,
                payment.credit_notes,
                counterparty=booking.pax_name,
                amount_required=amount,
                used_on_initial_payment=record,
            )

    for instalment in draft.instalments:
        store.objects(Instalment).create(
            booking=booking, due_date=instalment.due_date, amount=to_money(instalment.amount)
        )


def _persist_cost_item(store, booking, item):
    amount = to_money(item.amount)
    allocated = money_sum(to_money(s.amount) for s in item.suppliers)
    if item.suppliers and not amounts_match(allocated, amount):
        raise LedgerValidationError(
            f"Cost item {amount} does not match its supplier allocations ({allocated})."
        )
    cost_item = store.objects(CostItem).create(
        booking=booking, category=item.category, amount=amount
    )
    for allocation in item.suppliers:
        plan = SupplierPaymentPlan.decode(allocation.payment_method)
        share = to_money(allocation.amount)
        portions = plan.split(
            share, allocation.first_method_amount, allocation.second_method_amount
        )
        pending = plan.pending_portion(
            share, allocation.first_method_amount, allocation.second_method_amount
        )
        supplier_row = store.objects(CostItemSupplier).create(
            cost_item=cost_item,
            supplier=allocation.supplier,
            amount=share,
            payment_primary=plan.primary,
            payment_secondary=plan.secondary,
            first_method_amount=portions[plan.primary],
            second_method_amount=portions.get(plan.secondary, ZERO),
            paid_amount=share - pending,
            pending_amount=pending,
        )
        covered_by_notes = plan.credit_note_portion(
            share, allocation.first_method_amount, allocation.second_method_amount
        )
        if covered_by_notes > ZERO:
            apply_credit_notes(
                store,
                SupplierCreditNote,
                allocation.credit_notes,
                counterparty=allocation.supplier,
                amount_required=covered_by_notes,
                used_on_cost_item_supplier=supplier_row,
            )
    return cost_item


def _confirm(store, booking, actor):
    if booking.folder_number is None:
        booking.folder_number = next_folder_number(store)
    booking.status = CONFIRMED
    with claiming(store, "folder number"):
        booking.save(using=store.using, update_fields=["folder_number", "status", "updated_at"])
    refresh_booking_financials(store, booking, actor=actor)
    commission.run_best_effort(store, commission.sync_initial_commission, booking)


# --- LIFECYCLE ---
def create_booking(store, draft, *, actor=None, confirm=False):
    """Persist a booking with its cost breakdown and payments."""
    if draft.agent is None:
        raise LedgerValidationError("An agent is required for every booking.")
    plan = PaymentPlan.decode(draft.payment_method)

    with store.atomic():
        prod_cost = to_money(draft.prod_cost)
        if draft.cost_items:
            prod_cost = money_sum(to_money(item.amount) for item in draft.cost_items)

        booking = store.objects(Booking).create(
            ref_no=draft.ref_no,
            pax_name=draft.pax_name,
            agent=draft.agent,
            agent_name=draft.agent.get_full_name() or draft.agent.get_username(),
            team_name=draft.team_name,
            description=draft.description,
            payment_primary=plan.primary,
            payment_secondary=plan.secondary,
            revenue=to_money(draft.revenue),
            prod_cost=prod_cost,
            trans_fee=to_money(draft.trans_fee),
            surcharge=to_money(draft.surcharge),
            pc_date=draft.pc_date,
            travel_date=draft.travel_date,
            created_by=actor,
        )
        _persist_graph(store, booking, draft)
        audit.record(store, actor, booking, AUDIT_CREATE)

        if confirm:
            _confirm(store, booking, actor)
        else:
            refresh_booking_financials(store, booking, actor=actor)

    logger.info("Booking %s created (%s) by %s", booking.pk, booking.status, actor)
    return booking


def approve_booking(store, booking_id, *, actor=None):
    with store.atomic():
        booking = store.lock(Booking, booking_id)
        if booking.status != PENDING:
            raise StateConflictError(f"Only pending bookings can be approved ({booking.status}).")
        audit.record(store, actor, booking, AUDIT_APPROVE, [("status", PENDING, CONFIRMED)])
        _confirm(store, booking, actor)
    logger.info("Booking %s approved as folder %s", booking.pk, booking.folder_no)
    return booking


def update_booking(store, booking_id, changes, *, actor=None):
    with store.atomic():
        booking = store.lock(Booking, booking_id)
        changes = clean_booking_changes(store, booking, changes)
        before = {name: getattr(booking, name) for name in changes}
        for name, value in changes.items():
            setattr(booking, name, value)
        booking.save(using=store.using)
        audit.log_changes(store, actor, booking, before)
        refresh_booking_financials(store, booking, actor=actor)
    return booking


def create_date_change_booking(store, booking_id, draft, *, actor=None):
    """Append a date-change booking to the chain of ``booking_id``."""
    if draft.agent is None:
        raise LedgerValidationError("An agent is required for every booking.")
    plan = PaymentPlan.decode(draft.payment_method)

    with store.atomic():
        members = store.chain(store.get(Booking, booking_id), lock=True)
        root, latest = members[0], members[-1]
        if any(member.status == CANCELLED for member in members):
            raise StateConflictError(f"Folder {root.folder_no} is cancelled.")
        if root.folder_number is None:
            raise StateConflictError("Pending bookings cannot be date-changed.")

        prod_cost = to_money(draft.prod_cost)
        if draft.cost_items:
            prod_cost = money_sum(to_money(item.amount) for item in draft.cost_items)

        booking = store.objects(Booking).create(
            folder_number=root.folder_number,
            sequence=latest.sequence + 1,
            record_kind=DATE_CHANGE,
            chain_root=root,
            parent_booking=latest,
            ref_no=draft.ref_no,
            pax_name=draft.pax_name,
            agent=draft.agent,
            agent_name=draft.agent.get_full_name() or draft.agent.get_username(),
            team_name=draft.team_name,
            description=draft.description,
            status=CONFIRMED,
            payment_primary=plan.primary,
            payment_secondary=plan.secondary,
            revenue=to_money(draft.revenue),
            prod_cost=prod_cost,
            trans_fee=to_money(draft.trans_fee),
            surcharge=to_money(draft.surcharge),
            pc_date=draft.pc_date,
            travel_date=draft.travel_date,
            created_by=actor,
        )
        _persist_graph(store, booking, draft)
        audit.record(store, actor, booking, AUDIT_CREATE)

        if latest.status not in LOCKED_STATUSES:
            before = {"status": latest.status}
            latest.status = COMPLETED
            latest.save(using=store.using, update_fields=["status", "updated_at"])
            audit.log_changes(store, actor, latest, before, action=AUDIT_DATE_CHANGE)

        refresh_booking_financials(store, booking, actor=actor)
        commission.run_best_effort(store, commission.sync_initial_commission, booking)

    logger.info("Date change %s created from %s", booking.folder_no, latest.folder_no)
    return booking


def void_booking(store, booking_id, reason, *, actor=None):
    if not reason or not reason.strip():
        raise LedgerValidationError("A reason is required to void a booking.")

    with store.atomic():
        booking = store.lock(Booking, booking_id)
        if booking.status in (VOID, CANCELLED):
            raise StateConflictError(f"A {booking.status.lower()} booking cannot be voided.")
        before = {"status": booking.status}
        booking.status_before_void = booking.status
        booking.status = VOID
        booking.void_reason = reason.strip()
        booking.voided_at = timezone.now()
        booking.voided_by = actor
        booking.save(using=store.using)
        audit.log_changes(store, actor, booking, before, action=AUDIT_VOID)
    logger.info("Booking %s voided: %s", booking.pk, booking.void_reason)
    return booking


def unvoid_booking(store, booking_id, *, actor=None):
    with store.atomic():
        booking = store.lock(Booking, booking_id)
        if booking.status != VOID or not booking.status_before_void:
            raise StateConflictError("Only voided bookings can be restored.")
        before = {"status": booking.status}
        booking.status = booking.status_before_void
        booking.status_before_void = None
        booking.void_reason = ""
        booking.voided_at = None
        booking.voided_by = None
        booking.save(using=store.using)
        audit.log_changes(store, actor, booking, before, action=AUDIT_UNVOID)
        refresh_booking_financials(store, booking, actor=actor)
    logger.info("Booking %s restored to %s", booking.pk, booking.status)
    return booking


def assign_agent(store, booking_id, agent, *, actor=None):
    """Link a legacy booking to its agent and post the commission it missed."""
    with store.atomic():
        booking = store.lock(Booking, booking_id)
        if booking.agent_id is not None:
            raise StateConflictError(f"Booking {booking.pk} is already linked to an agent.")
        booking.agent = agent
        booking.save(using=store.using)
        audit.record(store, actor, booking, AUDIT_UPDATE, [("agent", None, agent.pk)])

        commission.run_best_effort(store, commission.sync_initial_commission, booking)
        totals = recompute(booking.pk, store)
        if booking.status == COMPLETED and totals.is_settled:
            commission.run_best_effort(
                store, commission.post_final_reconciliation, booking, totals.total_adjustments
            )
    logger.info("Booking %s linked to agent %s", booking.pk, agent.pk)
    return booking


# --- AMENDMENTS ---
def _amend_balance(store, booking, amendment_type, old_balance, new_balance, reason, actor):
    amendment = store.objects(BookingAmendment).create(
        booking=booking,
        amendment_type=amendment_type,
        property_name="balance",
        old_value=old_balance,
        new_value=new_balance,
        difference=new_balance - old_balance,
        reason=reason,
        created_by=actor,
    )
    audit.record(store, actor, amendment, AUDIT_CREATE, [("difference", None, amendment.difference)])
    return amendment


def write_off_balance(store, booking_id, reason, *, actor=None):
    """Zero the outstanding balance with a reversible WRITE_OFF amendment."""
    if not reason or not reason.strip():
        raise LedgerValidationError("A reason is required to write off a balance.")

    with store.atomic():
        booking = store.lock(Booking, booking_id)
        ensure_mutable(booking)
        balance = to_money(recompute(booking.pk, store).balance)
        if is_settled(balance):
            raise StateConflictError("There is no outstanding balance to write off.")

        amendment = _amend_balance(
            store, booking, AMENDMENT_WRITE_OFF, balance, ZERO, reason.strip(), actor
        )
        refresh_booking_financials(store, booking, actor=actor, action=AUDIT_WRITE_OFF)
    logger.info("Balance %s written off on booking %s", balance, booking.pk)
    return amendment


def correct_balance(store, booking_id, new_balance, reason, *, actor=None):
    """Move the balance to ``new_balance`` with a reversible CORRECTION amendment."""
    if not reason or not reason.strip():
        raise LedgerValidationError("A reason is required to correct a balance.")
    new_balance = to_money(new_balance)

    with store.atomic():
        booking = store.lock(Booking, booking_id)
        ensure_mutable(booking)
        balance = to_money(recompute(booking.pk, store).balance)
        if amounts_match(balance, new_balance):
            raise StateConflictError(f"The balance is already {balance}.")

        amendment = _amend_balance(
            store, booking, AMENDMENT_CORRECTION, balance, new_balance, reason.strip(), actor
        )
        refresh_booking_financials(store, booking, actor=actor, action=AUDIT_CORRECTION)
    logger.info("Balance of booking %s corrected from %s to %s", booking.pk, balance, new_balance)
    return amendment


def reverse_amendment(store, amendment_id, *, actor=None):
    with store.atomic():
        amendment = store.lock(BookingAmendment, amendment_id)
        if amendment.is_reversed:
            raise StateConflictError(f"Amendment {amendment.pk} is already reversed.")
        booking = store.lock(Booking, amendment.booking_id)
        ensure_mutable(booking)

        amendment.is_reversed = True
        amendment.reversed_at = timezone.now()
        amendment.save(using=store.using, update_fields=["is_reversed", "reversed_at"])
        audit.record(store, actor, amendment, AUDIT_REVERSE, [("is_reversed", False, True)])

        refresh_booking_financials(store, booking, actor=actor, action=AUDIT_REVERSE)
    return amendment


# --- COMMISSION ---
def move_commission_month(store, entry_id, month, *, actor=None):
    """Book a commission entry into another payroll month."""
    if month.day != 1:
        raise LedgerValidationError("Commission months start on the first day of the month.")

    with store.atomic():
        entry = store.lock(CommissionEntry, entry_id)
        before = {"commission_month": entry.commission_month}
        if entry.commission_month != month:
            entry.commission_month = month
            entry.save(using=store.using, update_fields=["commission_month", "updated_at"])
            audit.log_changes(store, actor, entry, before, action=AUDIT_COMMISSION_MONTH)
    logger.info(
        "Commission entry %s moved from %s to %s", entry.pk, before["commission_month"], month
    )
    return entry


# --- DOCUMENTS ---
def generate_invoice(store, booking_id, *, actor=None, today=None):
    """Number the booking's invoice once and return the figures to print."""
    today = today or timezone.localdate()
    with store.atomic():
        booking = store.lock(Booking, booking_id)
        if booking.status in (PENDING, VOID):
            raise StateConflictError(f"Cannot invoice a {booking.status.lower()} booking.")

        if not booking.invoice_number:
            prefix = f"{today.isoformat()}-external"
            with claiming(store, "invoice number"):
                counter, _ = store.objects(InvoiceCounter).select_for_update().get_or_create(
                    prefix=prefix
                )
                counter.last_number += 1
                counter.save(using=store.using, update_fields=["last_number"])
                booking.invoice_number = f"{prefix}-{counter.last_number:03d}"
                booking.save(using=store.using, update_fields=["invoice_number", "updated_at"])
            audit.record(
                store, actor, booking, AUDIT_INVOICE, [("invoice_number", None, booking.invoice_number)]
            )
            logger.info("Invoice %s issued for booking %s", booking.invoice_number, booking.pk)

        adjustments = store.safe_sum(
            store.objects(BookingAmendment).filter(booking=booking, is_reversed=False),
            "difference",
        )
        return InvoiceSnapshot(
            invoice_number=booking.invoice_number,
            folder_no=booking.folder_no,
            ref_no=booking.ref_no,
            pax_name=booking.pax_name,
            revenue=booking.revenue,
            total_received=booking.revenue + adjustments - booking.balance,
            balance=booking.balance,
            issued_on=today,
        )

