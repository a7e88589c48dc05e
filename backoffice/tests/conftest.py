from datetime import date
from decimal import Decimal

import pytest

from backoffice.services import (
    BookingDraft,
    CostItemInput,
    InitialPaymentInput,
    InstalmentInput,
    SupplierAllocationInput,
    create_booking,
)
from backoffice.store import LedgerStore

TODAY = date(2026, 3, 10)


@pytest.fixture
def store():
    return LedgerStore()


@pytest.fixture
def agent(django_user_model):
    return django_user_model.objects.create_user(
        username="sarah", password="pass", first_name="Sarah", is_staff=True
    )


@pytest.fixture
def make_booking(store, agent):
    """Confirmed booking factory. Amounts are strings for readability."""

    def _make(
        revenue="1000.00",
        prod_cost="400.00",
        method="INTERNAL",
        paid=("500.00",),
        instalments=(),
        suppliers=None,
        pax_name="Maria Lopez",
        confirm=True,
        payment_method="BANK_TRANSFER",
    ):
        cost_items = []
        if suppliers:
            cost_items = [
                CostItemInput(
                    sum((Decimal(s.amount) for s in suppliers), Decimal("0.00")),
                    suppliers=list(suppliers),
                )
            ]
        draft = BookingDraft(
            ref_no="REF-1",
            pax_name=pax_name,
            agent=agent,
            payment_method=method,
            revenue=Decimal(revenue),
            prod_cost=Decimal(prod_cost),
            initial_payments=[
                InitialPaymentInput(Decimal(amount), payment_method, TODAY) for amount in paid
            ],
            instalments=[InstalmentInput(TODAY, Decimal(amount)) for amount in instalments],
            cost_items=cost_items,
        )
        return create_booking(store, draft, confirm=confirm)

    return _make


@pytest.fixture
def allocation():
    """Build a supplier allocation for ``make_booking(suppliers=...)``."""

    def _allocation(name, amount, method="BANK_TRANSFER", first=None, second=None, notes=()):
        return SupplierAllocationInput(
            name,
            Decimal(amount),
            payment_method=method,
            first_method_amount=Decimal(first) if first else None,
            second_method_amount=Decimal(second) if second else None,
            credit_notes=list(notes),
        )

    return _allocation
