from decimal import Decimal

import pytest

from backoffice.constants import NOTE_AVAILABLE, NOTE_PARTIALLY_USED, NOTE_USED
from backoffice.credit_notes import (
    CreditNoteSelection,
    apply_credit_notes,
    available_credit_notes,
    validate_selections,
)
from backoffice.exceptions import LedgerValidationError, RecordNotFoundError, StateConflictError
from backoffice.models import (
    CostItemSupplier,
    CustomerCreditNote,
    CustomerCreditNoteUsage,
    SupplierCreditNote,
    SupplierCreditNoteUsage,
)
from backoffice.payments import record_instalment_payment

from .conftest import TODAY

D = Decimal


def customer_note(amount, name="Maria Lopez"):
    return CustomerCreditNote.objects.create(
        customer_name=name, initial_amount=D(amount), remaining_amount=D(amount)
    )


def assert_conserved(note):
    note.refresh_from_db()
    used = sum((u.amount_used for u in note.usages.all()), D("0.00"))
    assert note.remaining_amount + used == note.initial_amount


# --- SELECTION SHAPE ---
def test_selections_must_cover_the_amount_exactly():
    validate_selections([CreditNoteSelection(1, D("100")), CreditNoteSelection(2, D("50.005"))], D("150"))

    with pytest.raises(LedgerValidationError):
        validate_selections([CreditNoteSelection(1, D("100"))], D("150"))


@pytest.mark.parametrize(
    "selections",
    [
        [],
        [CreditNoteSelection(1, D("0"))],
        [CreditNoteSelection(1, D("-10")), CreditNoteSelection(2, D("110"))],
        [CreditNoteSelection(1, D("50")), CreditNoteSelection(1, D("50"))],
    ],
)
def test_malformed_selections_are_rejected(selections):
    with pytest.raises(LedgerValidationError):
        validate_selections(selections, D("100"))


# --- APPLYING NOTES ---
@pytest.mark.django_db
def test_instalment_paid_with_a_credit_note(store, make_booking):
    booking = make_booking(paid=("500.00",), instalments=("150.00",))
    note = customer_note("150.00")
    instalment = booking.instalments.get()

    payment = record_instalment_payment(
        store,
        instalment.pk,
        D("150.00"),
        "CUSTOMER_CREDIT_NOTE",
        TODAY,
        credit_notes=[CreditNoteSelection(note.pk, D("150.00"))],
    )

    note.refresh_from_db()
    assert note.remaining_amount == D("0.00")
    assert note.status == NOTE_USED
    usage = CustomerCreditNoteUsage.objects.get()
    assert usage.used_on_instalment_payment == payment
    assert usage.amount_used == D("150.00")
    booking.refresh_from_db()
    assert booking.balance == D("350.00")


@pytest.mark.django_db
def test_used_note_cannot_fund_a_second_payment(store, make_booking):
    booking = make_booking(paid=("500.00",), instalments=("150.00", "150.00"))
    note = customer_note("150.00")
    first, second = booking.instalments.order_by("pk")

    record_instalment_payment(
        store,
        first.pk,
        D("150.00"),
        "CUSTOMER_CREDIT_NOTE",
        TODAY,
        credit_notes=[CreditNoteSelection(note.pk, D("150.00"))],
    )
    with pytest.raises(StateConflictError):
        record_instalment_payment(
            store,
            second.pk,
            D("150.00"),
            "CUSTOMER_CREDIT_NOTE",
            TODAY,
            credit_notes=[CreditNoteSelection(note.pk, D("150.00"))],
        )

    assert CustomerCreditNoteUsage.objects.count() == 1
    assert not second.payments.exists()


@pytest.mark.django_db
def test_note_of_another_customer_is_rejected(store):
    note = customer_note("100.00", name="John Smith")
    with pytest.raises(LedgerValidationError):
        apply_credit_notes(
            store,
            CustomerCreditNote,
            [CreditNoteSelection(note.pk, D("100.00"))],
            counterparty="Maria Lopez",
            amount_required=D("100.00"),
        )


@pytest.mark.django_db
def test_customer_names_match_ignoring_case_and_spaces(store):
    note = customer_note("100.00", name="Maria Lopez")
    usages = apply_credit_notes(
        store,
        CustomerCreditNote,
        [CreditNoteSelection(note.pk, D("40.00"))],
        counterparty="  maria lopez ",
        amount_required=D("40.00"),
    )
    assert len(usages) == 1


@pytest.mark.django_db
def test_overdrawing_a_note_changes_nothing(store):
    big = customer_note("200.00")
    small = customer_note("30.00")

    with pytest.raises(StateConflictError):
        apply_credit_notes(
            store,
            CustomerCreditNote,
            [CreditNoteSelection(big.pk, D("100.00")), CreditNoteSelection(small.pk, D("50.00"))],
            counterparty="Maria Lopez",
            amount_required=D("150.00"),
        )

    big.refresh_from_db()
    assert big.remaining_amount == D("200.00")
    assert big.status == NOTE_AVAILABLE
    assert not CustomerCreditNoteUsage.objects.exists()


@pytest.mark.django_db
def test_unknown_note_is_not_found(store):
    with pytest.raises(RecordNotFoundError):
        apply_credit_notes(
            store,
            CustomerCreditNote,
            [CreditNoteSelection(9999, D("10.00"))],
            counterparty="Maria Lopez",
            amount_required=D("10.00"),
        )


@pytest.mark.django_db
def test_partial_use_keeps_the_ledger_conserved(store):
    note = customer_note("300.00")

    for amount in ("100.00", "120.00"):
        apply_credit_notes(
            store,
            CustomerCreditNote,
            [CreditNoteSelection(note.pk, D(amount))],
            counterparty="Maria Lopez",
            amount_required=D(amount),
        )

    note.refresh_from_db()
    assert note.status == NOTE_PARTIALLY_USED
    assert note.remaining_amount == D("80.00")
    assert_conserved(note)


@pytest.mark.django_db
def test_supplier_cost_funded_by_supplier_notes(store, make_booking, allocation):
    note = SupplierCreditNote.objects.create(
        supplier="BTRES", initial_amount=D("250.00"), remaining_amount=D("250.00")
    )

    make_booking(
        suppliers=[
            allocation(
                "BTRES",
                "400.00",
                method="BANK_TRANSFER_AND_CREDIT_NOTES",
                first="200.00",
                second="200.00",
                notes=[CreditNoteSelection(note.pk, D("200.00"))],
            )
        ]
    )

    row = CostItemSupplier.objects.get()
    usage = SupplierCreditNoteUsage.objects.get()
    assert usage.used_on_cost_item_supplier == row
    assert row.paid_amount == D("400.00")
    assert row.pending_amount == D("0.00")
    note.refresh_from_db()
    assert note.status == NOTE_PARTIALLY_USED
    assert_conserved(note)


@pytest.mark.django_db
def test_supplier_note_for_another_supplier_is_rejected(make_booking, allocation):
    note = SupplierCreditNote.objects.create(
        supplier="LYCA", initial_amount=D("400.00"), remaining_amount=D("400.00")
    )
    with pytest.raises(LedgerValidationError):
        make_booking(
            suppliers=[
                allocation(
                    "BTRES", "400.00", method="CREDIT_NOTES", notes=[CreditNoteSelection(note.pk, D("400.00"))]
                )
            ]
        )
    assert not CostItemSupplier.objects.exists()


@pytest.mark.django_db
def test_available_notes_for_a_party(store):
    open_note = customer_note("100.00")
    spent = customer_note("50.00")
    spent.remaining_amount = D("0.00")
    spent.status = NOTE_USED
    spent.save()
    customer_note("75.00", name="John Smith")

    found = list(available_credit_notes(store, CustomerCreditNote, "MARIA LOPEZ"))

    assert found == [open_note]
