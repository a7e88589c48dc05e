# backoffice/payments.py
"""
Money movements against bookings and cancellations.

Each operation locks the booking it touches, validates against the locked
state, writes its settlement record and finishes with a full recompute.
"""
import logging

from django.utils import timezone

from . import audit
from .constants import (
    AUDIT_CREATE,
    AUDIT_REFUND,
    AUDIT_SETTLEMENT,
    CREDIT_NOTES,
    CUSTOMER_CREDIT_NOTE,
    CUSTOMER_PAYMENT_METHODS,
    INSTALMENT_OVERDUE,
    INSTALMENT_PAID,
    INSTALMENT_PENDING,
    INSTALMENT_SETTLEMENT,
    LOCKED_STATUSES,
    PAYABLE_PAID,
    REFUND_METHODS,
    REFUND_PAID,
    REFUND_PENDING,
    SUPPLIER_SETTLEMENT_METHODS,
)
from .credit_notes import CreditNoteSelection, apply_credit_notes
from .exceptions import LedgerValidationError, StateConflictError
from .finance import refresh_booking_financials
from .models import (
    Booking,
    Cancellation,
    CostItemSupplier,
    CustomerCreditNote,
    CustomerPayable,
    CustomerPayableSettlement,
    Instalment,
    InstalmentPayment,
    PassengerRefundPayment,
    SupplierCreditNote,
    SupplierPayable,
    SupplierPayableSettlement,
    SupplierPaymentSettlement,
)
from .money import TOLERANCE, ZERO, exceeds, is_settled, to_money
from .services import ensure_mutable

logger = logging.getLogger(__name__)


def _positive(amount):
    amount = to_money(amount)
    if amount <= ZERO:
        raise LedgerValidationError("Amount must be greater than zero.")
    return amount


def _check_method(method, allowed):
    if method not in allowed:
        raise LedgerValidationError(f"'{method}' is not an accepted transaction method here.")


# --- CUSTOMER ---
def record_instalment_payment(
    store, instalment_id, amount, transaction_method, payment_date, *, actor=None, credit_notes=()
):
    amount = _positive(amount)
    _check_method(transaction_method, CUSTOMER_PAYMENT_METHODS)

    with store.atomic():
        instalment = store.lock(Instalment, instalment_id)
        booking = store.lock(Booking, instalment.booking_id)
        ensure_mutable(booking)
        if instalment.status == INSTALMENT_PAID:
            raise StateConflictError(f"Instalment {instalment.pk} is already paid.")

        payment = store.objects(InstalmentPayment).create(
            instalment=instalment,
            amount=amount,
            transaction_method=transaction_method,
            payment_date=payment_date,
        )
        if transaction_method == CUSTOMER_CREDIT_NOTE:
            apply_credit_notes(
                store,
                CustomerCreditNote,
                list(credit_notes),
                counterparty=booking.pax_name,
                amount_required=amount,
                used_on_instalment_payment=payment,
            )
        audit.record(store, actor, payment, AUDIT_CREATE, [("amount", None, amount)])

        paid = store.safe_sum(store.objects(InstalmentPayment).filter(instalment=instalment), "amount")
        if instalment.status != INSTALMENT_SETTLEMENT and paid >= instalment.amount - TOLERANCE:
            before = {"status": instalment.status}
            instalment.status = INSTALMENT_PAID
            instalment.save(using=store.using, update_fields=["status"])
            audit.log_changes(store, actor, instalment, before)

        refresh_booking_financials(store, booking, actor=actor)

    logger.info("Instalment %s received %s (%s)", instalment.pk, amount, transaction_method)
    return payment


def record_settlement_payment(
    store, booking_id, amount, transaction_method, payment_date, *, actor=None
):
    """Collect money outside the schedule through the booking's settlement instalment."""
    amount = _positive(amount)
    _check_method(transaction_method, CUSTOMER_PAYMENT_METHODS - {CUSTOMER_CREDIT_NOTE})

    with store.atomic():
        booking = store.lock(Booking, booking_id)
        ensure_mutable(booking)
        instalment = (
            store.objects(Instalment)
            .select_for_update()
            .filter(booking=booking, status=INSTALMENT_SETTLEMENT)
            .first()
        )
        if instalment is None:
            instalment = store.objects(Instalment).create(
                booking=booking, due_date=payment_date, amount=amount, status=INSTALMENT_SETTLEMENT
            )
        else:
            instalment.amount += amount
            instalment.save(using=store.using, update_fields=["amount"])

        payment = store.objects(InstalmentPayment).create(
            instalment=instalment,
            amount=amount,
            transaction_method=transaction_method,
            payment_date=payment_date,
        )
        audit.record(store, actor, payment, AUDIT_SETTLEMENT, [("amount", None, amount)])
        refresh_booking_financials(store, booking, actor=actor)

    logger.info("Settlement payment %s recorded on booking %s", amount, booking.pk)
    return payment


def mark_overdue_instalments(store, today=None, *, actor=None):
    """Flag scheduled instalments still unpaid after their due date."""
    today = today or timezone.localdate()
    with store.atomic():
        overdue = list(
            store.objects(Instalment)
            .select_for_update()
            .filter(status=INSTALMENT_PENDING, due_date__lt=today)
            .exclude(booking__status__in=LOCKED_STATUSES)
            .order_by("due_date", "pk")
        )
        for instalment in overdue:
            before = {"status": instalment.status}
            instalment.status = INSTALMENT_OVERDUE
            instalment.save(using=store.using, update_fields=["status"])
            audit.log_changes(store, actor, instalment, before)
    if overdue:
        logger.info("%s instalment(s) overdue as of %s", len(overdue), today)
    return overdue


def settle_customer_payable(
    store, payable_id, amount, transaction_method, payment_date, *, actor=None
):
    amount = _positive(amount)
    _check_method(transaction_method, CUSTOMER_PAYMENT_METHODS - {CUSTOMER_CREDIT_NOTE})

    with store.atomic():
        payable = store.lock(CustomerPayable, payable_id)
        booking = store.lock(Booking, payable.booking_id)
        settlement = _settle_payable(
            store,
            actor,
            payable,
            CustomerPayableSettlement,
            amount,
            transaction_method=transaction_method,
            payment_date=payment_date,
        )
        audit.record(store, actor, booking, AUDIT_SETTLEMENT, [("customer_payable", None, amount)])
        refresh_booking_financials(store, booking, actor=actor)

    logger.info("Customer payable %s settled by %s", payable.pk, amount)
    return settlement


def record_passenger_refund(
    store, cancellation_id, amount, transaction_method, refund_date, *, actor=None
):
    """
    Pay out the cancellation refund, consuming the customer credit note it
    created. A refund paid in parts stays PENDING until the last part.
    """
    amount = _positive(amount)
    _check_method(transaction_method, REFUND_METHODS)

    with store.atomic():
        cancellation = store.lock(Cancellation, cancellation_id)
        booking = store.lock(Booking, cancellation.original_booking_id)
        if cancellation.refund_status == REFUND_PAID:
            raise StateConflictError("The passenger refund has already been paid.")
        if cancellation.refund_to_passenger <= ZERO:
            raise StateConflictError("No refund is due on this cancellation.")
        refunded = store.safe_sum(
            store.objects(PassengerRefundPayment).filter(cancellation=cancellation), "amount"
        )
        outstanding = cancellation.refund_to_passenger - refunded
        if exceeds(amount, outstanding):
            raise LedgerValidationError(f"Refund {amount} exceeds the {outstanding} still due.")

        refund = store.objects(PassengerRefundPayment).create(
            cancellation=cancellation,
            amount=amount,
            transaction_method=transaction_method,
            refund_date=refund_date,
        )
        note = store.objects(CustomerCreditNote).filter(
            generated_from_cancellation=cancellation
        ).first()
        if note is not None:
            # Cashing out the refund spends the credit issued for it
            apply_credit_notes(
                store,
                CustomerCreditNote,
                [CreditNoteSelection(note.pk, amount)],
                counterparty=note.customer_name,
                amount_required=amount,
                used_on_refund=refund,
            )

        before = {"refund_status": cancellation.refund_status}
        cancellation.refund_status = (
            REFUND_PAID if is_settled(outstanding - amount) else REFUND_PENDING
        )
        cancellation.save(using=store.using, update_fields=["refund_status"])
        audit.record(store, actor, refund, AUDIT_REFUND, [("amount", None, amount)])
        audit.log_changes(store, actor, cancellation, before)
        refresh_booking_financials(store, booking, actor=actor)

    logger.info("Passenger refund %s paid for %s", amount, cancellation.folder_no)
    return refund


# --- SUPPLIER ---
def settle_supplier_cost(
    store,
    cost_item_supplier_id,
    amount,
    transaction_method,
    settlement_date,
    *,
    actor=None,
    credit_notes=(),
):
    """Pay down the pending share of a supplier allocation."""
    amount = _positive(amount)
    _check_method(transaction_method, SUPPLIER_SETTLEMENT_METHODS)

    with store.atomic():
        supplier_row = store.lock(CostItemSupplier, cost_item_supplier_id)
        booking = store.lock(Booking, supplier_row.cost_item.booking_id)
        ensure_mutable(booking)
        if supplier_row.pending_amount < TOLERANCE:
            raise StateConflictError(f"{supplier_row.supplier} is already fully paid.")
        if exceeds(amount, supplier_row.pending_amount):
            raise LedgerValidationError(
                f"Payment {amount} exceeds the {supplier_row.pending_amount} pending "
                f"for {supplier_row.supplier}."
            )

        settlement = store.objects(SupplierPaymentSettlement).create(
            cost_item_supplier=supplier_row,
            amount=amount,
            transaction_method=transaction_method,
            settlement_date=settlement_date,
        )
        if transaction_method == CREDIT_NOTES:
            apply_credit_notes(
                store,
                SupplierCreditNote,
                list(credit_notes),
                counterparty=supplier_row.supplier,
                amount_required=amount,
                used_on_cost_item_supplier=supplier_row,
                used_on_settlement=settlement,
            )

        before = {
            "paid_amount": supplier_row.paid_amount,
            "pending_amount": supplier_row.pending_amount,
        }
        supplier_row.paid_amount += amount
        supplier_row.pending_amount = max(supplier_row.amount - supplier_row.paid_amount, ZERO)
        supplier_row.save(using=store.using, update_fields=["paid_amount", "pending_amount"])
        audit.log_changes(store, actor, supplier_row, before, action=AUDIT_SETTLEMENT)
        refresh_booking_financials(store, booking, actor=actor)

    logger.info("Supplier %s paid %s on booking %s", supplier_row.supplier, amount, booking.pk)
    return settlement


def settle_supplier_payable(
    store, payable_id, amount, transaction_method, settlement_date, *, actor=None
):
    amount = _positive(amount)
    _check_method(transaction_method, SUPPLIER_SETTLEMENT_METHODS - {CREDIT_NOTES})

    with store.atomic():
        payable = store.lock(SupplierPayable, payable_id)
        booking = store.lock(Booking, payable.created_from_cancellation.original_booking_id)
        settlement = _settle_payable(
            store,
            actor,
            payable,
            SupplierPayableSettlement,
            amount,
            transaction_method=transaction_method,
            settlement_date=settlement_date,
        )
        audit.record(store, actor, booking, AUDIT_SETTLEMENT, [("supplier_payable", None, amount)])
        refresh_booking_financials(store, booking, actor=actor)

    logger.info("Supplier payable %s settled by %s", payable.pk, amount)
    return settlement


def _settle_payable(store, actor, payable, settlement_model, amount, **details):
    if payable.status == PAYABLE_PAID:
        raise StateConflictError(f"Payable {payable.pk} is already paid.")
    if exceeds(amount, payable.pending_amount):
        raise LedgerValidationError(
            f"Payment {amount} exceeds the {payable.pending_amount} still pending."
        )
    settlement = store.objects(settlement_model).create(payable=payable, amount=amount, **details)

    before = {
        "paid_amount": payable.paid_amount,
        "pending_amount": payable.pending_amount,
        "status": payable.status,
    }
    payable.apply_settlement(amount)
    payable.save(using=store.using, update_fields=["paid_amount", "pending_amount", "status"])
    audit.log_changes(store, actor, payable, before, action=AUDIT_SETTLEMENT)
    return settlement
