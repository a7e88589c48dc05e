from decimal import Decimal

import pytest

from backoffice.exceptions import LedgerValidationError
from backoffice.payment_plans import PaymentPlan, SupplierPaymentPlan


@pytest.mark.parametrize(
    "code, primary, secondary, full",
    [
        ("FULL", "FULL", None, True),
        ("FULL_HUMM", "FULL", "HUMM", True),
        ("INTERNAL_HUMM", "INTERNAL", "HUMM", False),
        ("HUMM", "HUMM", None, False),
        ("refund", "REFUND", None, False),
    ],
)
def test_legacy_customer_codes_decode(code, primary, secondary, full):
    plan = PaymentPlan.decode(code)
    assert (plan.primary, plan.secondary) == (primary, secondary)
    assert plan.earns_full_commission is full


def test_customer_plan_rejects_unknown_methods():
    with pytest.raises(LedgerValidationError):
        PaymentPlan.decode("CASH")
    with pytest.raises(LedgerValidationError):
        PaymentPlan.decode("FULL_INTERNAL")


def test_supplier_split_plan_portions():
    plan = SupplierPaymentPlan.decode("BANK_TRANSFER_AND_CREDIT_NOTES")

    assert plan.code == "BANK_TRANSFER_AND_CREDIT_NOTES"
    assert plan.credit_note_portion(Decimal("300"), Decimal("100"), Decimal("200")) == Decimal("200")
    assert plan.pending_portion(Decimal("300"), Decimal("100"), Decimal("200")) == Decimal("0.00")


def test_supplier_credit_terms_stay_pending():
    plan = SupplierPaymentPlan.decode("BANK_TRANSFER_AND_CREDIT")
    assert plan.pending_portion(Decimal("900"), Decimal("500"), Decimal("400")) == Decimal("400.00")


def test_single_method_plan_covers_the_whole_share():
    plan = SupplierPaymentPlan.decode("CREDIT_NOTES")
    assert plan.credit_note_portion(Decimal("250")) == Decimal("250.00")


def test_split_amounts_must_add_up():
    plan = SupplierPaymentPlan.decode("CREDIT_AND_CREDIT_NOTES")
    with pytest.raises(LedgerValidationError):
        plan.split(Decimal("300"), Decimal("100"), Decimal("150"))
    with pytest.raises(LedgerValidationError):
        plan.split(Decimal("300"))
