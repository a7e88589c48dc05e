# backoffice/payment_plans.py
"""
Structured payment plans.

Legacy records store plans as joined strings ("FULL_HUMM",
"BANK_TRANSFER_AND_CREDIT_NOTES"). They are decoded here, once, and the rest
of the code only ever looks at ``primary`` / ``secondary``.
"""
from dataclasses import dataclass
from typing import Optional

from .constants import (
    BANK_TRANSFER,
    CREDIT,
    CREDIT_NOTES,
    PLAN_FULL,
    PLAN_HUMM,
    PLAN_INTERNAL,
    PLAN_REFUND,
)
from .exceptions import LedgerValidationError
from .money import ZERO, amounts_match, to_money

CUSTOMER_PRIMARY = (PLAN_FULL, PLAN_INTERNAL, PLAN_REFUND, PLAN_HUMM)
CUSTOMER_SECONDARY = (PLAN_HUMM,)

SUPPLIER_PRIMARY = (BANK_TRANSFER, CREDIT, CREDIT_NOTES)
SUPPLIER_SECONDARY = (CREDIT, CREDIT_NOTES)


@dataclass(frozen=True)
class PaymentPlan:
    primary: str
    secondary: Optional[str] = None

    def __post_init__(self):
        if self.primary not in CUSTOMER_PRIMARY:
            raise LedgerValidationError(f"Unknown payment method '{self.primary}'.")
        if self.secondary is not None and (
            self.secondary not in CUSTOMER_SECONDARY or self.secondary == self.primary
        ):
            raise LedgerValidationError(
                f"'{self.secondary}' cannot be combined with '{self.primary}'."
            )

    @property
    def earns_full_commission(self):
        return self.primary == PLAN_FULL

    @property
    def code(self):
        """Legacy joined representation, for display and exports."""
        if self.secondary:
            return f"{self.primary}_{self.secondary}"
        return self.primary

    @classmethod
    def decode(cls, value):
        if isinstance(value, cls):
            return value
        if not value:
            raise LedgerValidationError("Payment method is required.")
        value = str(value).strip().upper()
        if value in CUSTOMER_PRIMARY:
            return cls(value)
        primary, _, secondary = value.partition("_")
        return cls(primary, secondary or None)


@dataclass(frozen=True)
class SupplierPaymentPlan:
    primary: str
    secondary: Optional[str] = None

    def __post_init__(self):
        if self.primary not in SUPPLIER_PRIMARY:
            raise LedgerValidationError(
                f"Unknown supplier payment method '{self.primary}'."
            )
        if self.secondary is not None and (
            self.secondary not in SUPPLIER_SECONDARY or self.secondary == self.primary
        ):
            raise LedgerValidationError(
                f"'{self.secondary}' cannot be combined with '{self.primary}'."
            )

    @property
    def is_split(self):
        return self.secondary is not None

    @property
    def code(self):
        if self.secondary:
            return f"{self.primary}_AND_{self.secondary}"
        return self.primary

    @classmethod
    def decode(cls, value):
        if isinstance(value, cls):
            return value
        if not value:
            raise LedgerValidationError("Supplier payment method is required.")
        primary, _, secondary = str(value).strip().upper().partition("_AND_")
        return cls(primary, secondary or None)

    def split(self, total, first_amount=None, second_amount=None):
        """
        Break ``total`` into a {method: amount} mapping.

        Single-method plans put everything on the primary method. Split plans
        need both portions and they must add up to the total.
        """
        total = to_money(total)
        if not self.is_split:
            return {self.primary: total}
        if first_amount is None or second_amount is None:
            raise LedgerValidationError(
                f"{self.code} needs an amount for each payment method."
            )
        first, second = to_money(first_amount), to_money(second_amount)
        if first < ZERO or second < ZERO:
            raise LedgerValidationError("Payment method amounts cannot be negative.")
        if not amounts_match(first + second, total):
            raise LedgerValidationError(
                f"Method amounts ({first} + {second}) must equal the supplier total {total}."
            )
        return {self.primary: first, self.secondary: second}

    def credit_note_portion(self, total, first_amount=None, second_amount=None):
        return self.split(total, first_amount, second_amount).get(CREDIT_NOTES, ZERO)

    def pending_portion(self, total, first_amount=None, second_amount=None):
        """Supplier credit terms are paid later; everything else is paid now."""
        return self.split(total, first_amount, second_amount).get(CREDIT, ZERO)
