# backoffice/cancellation.py
"""
Cancellation of a whole folder chain.

``compute_cancellation`` is the pure money calculation. ``cancel_booking_chain``
locks the chain, feeds the calculation from the ledger and persists the
outcome, all inside one store transaction.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from . import audit
from .constants import (
    AUDIT_CANCELLATION,
    AUDIT_CREATE,
    CANCELLED,
    REFUND_CREDIT_ISSUED,
    REFUND_NOT_APPLICABLE,
    VOID,
)
from .exceptions import LedgerValidationError, StateConflictError
from .finance import refresh_booking_financials
from .models import (
    Booking,
    Cancellation,
    CostItemSupplier,
    CustomerCreditNote,
    CustomerPayable,
    InitialPayment,
    InstalmentPayment,
    SupplierCreditNote,
    SupplierPayable,
)
from .money import ZERO, money_sum, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationInput:
    total_owed_to_supplier: Decimal
    total_received_from_customer: Decimal
    total_paid_to_supplier: Decimal
    supplier_cancellation_fee: Decimal
    admin_fee: Decimal


@dataclass(frozen=True)
class CancellationOutcome:
    customer_total_fee: Decimal
    refund_to_passenger: Decimal
    payable_by_customer: Decimal
    supplier_credit_note_amount: Decimal
    supplier_payable_amount: Decimal
    profit_or_loss: Decimal

    @property
    def refund_status(self):
        return REFUND_CREDIT_ISSUED if self.refund_to_passenger > ZERO else REFUND_NOT_APPLICABLE


def compute_cancellation(data: CancellationInput) -> CancellationOutcome:
    if data.supplier_cancellation_fee < ZERO or data.admin_fee < ZERO:
        raise LedgerValidationError("Cancellation fees cannot be negative.")

    customer_total_fee = data.supplier_cancellation_fee + data.admin_fee

    # Customer side: what was received against the fees charged
    customer_difference = data.total_received_from_customer - customer_total_fee
    refund_to_passenger = max(customer_difference, ZERO)
    payable_by_customer = max(-customer_difference, ZERO)

    # Supplier side: the fee against what was actually paid out
    supplier_difference = data.supplier_cancellation_fee - data.total_paid_to_supplier
    supplier_payable_amount = max(supplier_difference, ZERO)
    supplier_credit_note_amount = max(-supplier_difference, ZERO)

    profit_or_loss = (
        (data.total_received_from_customer - data.total_owed_to_supplier)
        - refund_to_passenger
        + payable_by_customer
    )
    return CancellationOutcome(
        customer_total_fee=to_money(customer_total_fee),
        refund_to_passenger=to_money(refund_to_passenger),
        payable_by_customer=to_money(payable_by_customer),
        supplier_credit_note_amount=to_money(supplier_credit_note_amount),
        supplier_payable_amount=to_money(supplier_payable_amount),
        profit_or_loss=to_money(profit_or_loss),
    )


def chain_cancellation_input(store, members, supplier_cancellation_fee, admin_fee):
    """Sum the chain's active members into a CancellationInput."""
    ids = [b.pk for b in members if b.status not in (CANCELLED, VOID)]
    received = store.safe_sum(
        store.objects(InitialPayment).filter(booking_id__in=ids), "amount"
    ) + store.safe_sum(
        store.objects(InstalmentPayment).filter(instalment__booking_id__in=ids), "amount"
    )
    paid_to_supplier = store.safe_sum(
        store.objects(CostItemSupplier).filter(cost_item__booking_id__in=ids), "paid_amount"
    )
    return CancellationInput(
        total_owed_to_supplier=money_sum(b.prod_cost for b in members if b.pk in ids),
        total_received_from_customer=received,
        total_paid_to_supplier=paid_to_supplier,
        supplier_cancellation_fee=supplier_cancellation_fee,
        admin_fee=admin_fee,
    )


def _chain_supplier(store, members):
    first = (
        store.objects(CostItemSupplier)
        .filter(cost_item__booking_id__in=[b.pk for b in members])
        .order_by("cost_item__booking__sequence", "pk")
        .first()
    )
    return first.supplier if first else None


def cancel_booking_chain(
    store, booking_id, *, supplier_cancellation_fee, admin_fee, actor=None, description=""
):
    """Cancel every booking in ``booking_id``'s chain. Returns the Cancellation."""
    if supplier_cancellation_fee is None or admin_fee is None:
        raise LedgerValidationError("Supplier cancellation fee and admin fee are required.")

    with store.atomic():
        booking = store.get(Booking, booking_id)
        members = store.chain(booking, lock=True)
        root = members[0]

        if any(member.status == CANCELLED for member in members):
            raise StateConflictError(f"Folder {root.folder_no} is already cancelled.")
        if all(member.status == VOID for member in members):
            raise StateConflictError(f"Folder {root.folder_no} is void.")

        data = chain_cancellation_input(
            store, members, to_money(supplier_cancellation_fee), to_money(admin_fee)
        )
        outcome = compute_cancellation(data)

        cancellation = store.objects(Cancellation).create(
            original_booking=root,
            original_revenue=root.revenue,
            original_prod_cost=root.prod_cost,
            supplier_cancellation_fee=data.supplier_cancellation_fee,
            admin_fee=data.admin_fee,
            refund_to_passenger=outcome.refund_to_passenger,
            payable_by_customer=outcome.payable_by_customer,
            refund_status=outcome.refund_status,
            credit_note_amount=outcome.supplier_credit_note_amount,
            supplier_payable_amount=outcome.supplier_payable_amount,
            profit_or_loss=outcome.profit_or_loss,
            description=description,
            created_by=actor,
        )
        audit.record(
            store,
            actor,
            cancellation,
            AUDIT_CANCELLATION,
            [
                ("folder_no", None, cancellation.folder_no),
                ("refund_to_passenger", None, outcome.refund_to_passenger),
                ("payable_by_customer", None, outcome.payable_by_customer),
                ("profit_or_loss", None, outcome.profit_or_loss),
            ],
        )

        _issue_supplier_side(store, actor, cancellation, members, outcome)
        _issue_customer_side(store, actor, cancellation, booking, root, outcome)

        for member in members:
            if member.status == VOID:
                continue
            before = {"status": member.status}
            member.status = CANCELLED
            member.save(using=store.using, update_fields=["status", "updated_at"])
            audit.log_changes(store, actor, member, before)

        refresh_booking_financials(store, root, actor=actor)

    logger.info(
        "Folder %s cancelled: refund %s, customer owes %s, supplier credit %s, owed to supplier %s",
        root.folder_no,
        outcome.refund_to_passenger,
        outcome.payable_by_customer,
        outcome.supplier_credit_note_amount,
        outcome.supplier_payable_amount,
    )
    return cancellation


def _issue_supplier_side(store, actor, cancellation, members, outcome):
    amount = outcome.supplier_credit_note_amount or outcome.supplier_payable_amount
    if not amount:
        return None
    supplier = _chain_supplier(store, members)
    if supplier is None:
        logger.warning(
            "No supplier on folder %s; %s of supplier balance not recorded.",
            cancellation.folder_no,
            amount,
        )
        return None

    if outcome.supplier_credit_note_amount:
        record = store.objects(SupplierCreditNote).create(
            supplier=supplier,
            initial_amount=amount,
            remaining_amount=amount,
            generated_from_cancellation=cancellation,
        )
    else:
        record = store.objects(SupplierPayable).create(
            supplier=supplier,
            total_amount=amount,
            pending_amount=amount,
            reason=f"Cancellation fee shortfall for folder {cancellation.folder_no}",
            created_from_cancellation=cancellation,
        )
    audit.record(store, actor, record, AUDIT_CREATE, [("amount", None, amount)])
    return record


def _issue_customer_side(store, actor, cancellation, booking, root, outcome):
    if outcome.refund_to_passenger:
        record = store.objects(CustomerCreditNote).create(
            customer_name=booking.pax_name,
            initial_amount=outcome.refund_to_passenger,
            remaining_amount=outcome.refund_to_passenger,
            generated_from_cancellation=cancellation,
        )
        amount = outcome.refund_to_passenger
    elif outcome.payable_by_customer:
        record = store.objects(CustomerPayable).create(
            booking=root,
            total_amount=outcome.payable_by_customer,
            pending_amount=outcome.payable_by_customer,
            reason=f"Cancellation fees not covered for folder {cancellation.folder_no}",
            created_from_cancellation=cancellation,
        )
        amount = outcome.payable_by_customer
    else:
        return None
    audit.record(store, actor, record, AUDIT_CREATE, [("amount", None, amount)])
    return record
