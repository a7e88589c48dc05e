# backoffice/models.py
from decimal import Decimal

from django.conf import settings
from django.db import models
from simple_history.models import HistoricalRecords

from .constants import (
    AMENDMENT_TYPES,
    AUDIT_ACTIONS,
    BOOKING_STATUSES,
    CANCELLATION,
    COMMISSION_TYPES,
    COST_CATEGORIES,
    CREDIT_NOTE_STATUSES,
    INSTALMENT_PENDING,
    INSTALMENT_STATUSES,
    LOCKED_STATUSES,
    NOTE_AVAILABLE,
    NOTE_PARTIALLY_USED,
    NOTE_USED,
    ORIGINAL,
    PAYABLE_PAID,
    PAYABLE_PENDING,
    PAYABLE_STATUSES,
    PAYMENT_PLAN_METHODS,
    PENDING,
    RECORD_KINDS,
    REFUND_NOT_APPLICABLE,
    REFUND_STATUSES,
    SUPPLIER_PAYMENT_METHODS,
    SUPPLIERS,
    TRANSACTION_METHODS,
)
from .exceptions import StateConflictError
from .money import TOLERANCE, ZERO
from .payment_plans import PaymentPlan, SupplierPaymentPlan


def money_field(label=None, **kwargs):
    kwargs.setdefault("default", Decimal("0.00"))
    return models.DecimalField(label, max_digits=12, decimal_places=2, **kwargs)


def format_folder_no(folder_number, sequence=0, record_kind=ORIGINAL):
    """Display string for a chain position: "42", "42.1", "42.C"."""
    if folder_number is None:
        return ""
    if record_kind == CANCELLATION:
        return f"{folder_number}.C"
    if sequence:
        return f"{folder_number}.{sequence}"
    return str(folder_number)


# --- THE CORE TRANSACTION MODEL ---
class Booking(models.Model):
    # 1. Chain position
    folder_number = models.PositiveIntegerField(null=True, blank=True, db_index=True)
    sequence = models.PositiveIntegerField(default=0)
    record_kind = models.CharField(max_length=20, choices=RECORD_KINDS, default=ORIGINAL)
    chain_root = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="chain_members",
        help_text="Original booking of the chain (empty on the original itself)",
    )
    parent_booking = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="date_changes",
    )

    # 2. Classification & Status
    ref_no = models.CharField("Ref No", max_length=60, db_index=True)
    pax_name = models.CharField("Passenger", max_length=200)
    agent = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="bookings",
    )
    agent_name = models.CharField(
        max_length=120, blank=True, help_text="Legacy free-text agent, see backfill_booking_agents"
    )
    team_name = models.CharField(max_length=60, blank=True)
    status = models.CharField(max_length=20, choices=BOOKING_STATUSES, default=PENDING)
    payment_primary = models.CharField(max_length=20, choices=PAYMENT_PLAN_METHODS)
    payment_secondary = models.CharField(
        max_length=20, choices=PAYMENT_PLAN_METHODS, null=True, blank=True
    )

    # 3. Financials
    revenue = money_field("Revenue")
    prod_cost = money_field("Production Cost")
    trans_fee = money_field("Transaction Fee")
    surcharge = money_field("Surcharge")
    balance = money_field("Balance", help_text="System computed")
    profit = money_field("Profit", help_text="System computed")

    # 4. Dates
    pc_date = models.DateField("Payment Collection Date", null=True, blank=True)
    travel_date = models.DateField(null=True, blank=True)

    # 5. Void
    status_before_void = models.CharField(
        max_length=20, choices=BOOKING_STATUSES, null=True, blank=True
    )
    void_reason = models.TextField(blank=True)
    voided_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )

    invoice_number = models.CharField(max_length=40, null=True, blank=True, unique=True)
    description = models.TextField(blank=True)

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="bookings_created",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    history = HistoricalRecords()

    class Meta:
        ordering = ["-created_at"]
        permissions = [
            ("cancel_any_booking", "Can cancel any booking"),
            ("manage_financials", "Can manage payments, settlements and write-offs"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["folder_number", "sequence"], name="unique_folder_position"
            )
        ]

    @property
    def folder_no(self):
        return format_folder_no(self.folder_number, self.sequence, self.record_kind)

    @property
    def root(self):
        return self.chain_root if self.chain_root_id else self

    @property
    def payment_plan(self):
        return PaymentPlan(self.payment_primary, self.payment_secondary)

    @payment_plan.setter
    def payment_plan(self, plan):
        plan = PaymentPlan.decode(plan)
        self.payment_primary = plan.primary
        self.payment_secondary = plan.secondary

    @property
    def is_locked(self):
        return self.status in LOCKED_STATUSES

    def __str__(self):
        return f"{self.folder_no or 'pending'} - {self.pax_name}"


class CostItem(models.Model):
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="cost_items")
    category = models.CharField(max_length=20, choices=COST_CATEGORIES, default="FLIGHT")
    amount = money_field()

    def __str__(self):
        return f"{self.get_category_display()} {self.amount}"


class CostItemSupplier(models.Model):
    """One supplier's share of a cost item and how that share is funded."""

    cost_item = models.ForeignKey(CostItem, on_delete=models.CASCADE, related_name="suppliers")
    supplier = models.CharField(max_length=20, choices=SUPPLIERS)
    amount = money_field()
    payment_primary = models.CharField(max_length=20, choices=SUPPLIER_PAYMENT_METHODS)
    payment_secondary = models.CharField(
        max_length=20, choices=SUPPLIER_PAYMENT_METHODS, null=True, blank=True
    )
    first_method_amount = money_field()
    second_method_amount = money_field()
    paid_amount = money_field()
    pending_amount = money_field()

    @property
    def payment_plan(self):
        return SupplierPaymentPlan(self.payment_primary, self.payment_secondary)

    def __str__(self):
        return f"{self.supplier} {self.amount}"


class SupplierPaymentSettlement(models.Model):
    cost_item_supplier = models.ForeignKey(
        CostItemSupplier, on_delete=models.PROTECT, related_name="settlements"
    )
    amount = money_field()
    transaction_method = models.CharField(max_length=30, choices=TRANSACTION_METHODS)
    settlement_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)


# --- CUSTOMER MONEY IN ---
class InitialPayment(models.Model):
    booking = models.ForeignKey(
        Booking, on_delete=models.CASCADE, related_name="initial_payments"
    )
    amount = money_field()
    transaction_method = models.CharField(max_length=30, choices=TRANSACTION_METHODS)
    payment_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)


class Instalment(models.Model):
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="instalments")
    due_date = models.DateField()
    amount = money_field()
    status = models.CharField(
        max_length=20, choices=INSTALMENT_STATUSES, default=INSTALMENT_PENDING
    )

    class Meta:
        ordering = ["due_date", "id"]


class InstalmentPayment(models.Model):
    instalment = models.ForeignKey(
        Instalment, on_delete=models.PROTECT, related_name="payments"
    )
    amount = money_field()
    transaction_method = models.CharField(max_length=30, choices=TRANSACTION_METHODS)
    payment_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)


# --- CANCELLATION ---
class Cancellation(models.Model):
    """Financial settlement of a cancelled chain. One per chain root."""

    original_booking = models.OneToOneField(
        Booking, on_delete=models.PROTECT, related_name="cancellation"
    )
    original_revenue = money_field()
    original_prod_cost = money_field()
    supplier_cancellation_fee = money_field()
    admin_fee = money_field()
    refund_to_passenger = money_field()
    payable_by_customer = money_field()
    refund_status = models.CharField(
        max_length=20, choices=REFUND_STATUSES, default=REFUND_NOT_APPLICABLE
    )
    credit_note_amount = money_field()
    supplier_payable_amount = money_field()
    profit_or_loss = money_field()
    description = models.TextField(blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    history = HistoricalRecords()

    @property
    def folder_no(self):
        return format_folder_no(self.original_booking.folder_number, record_kind=CANCELLATION)

    def __str__(self):
        return f"Cancellation {self.folder_no}"


class PassengerRefundPayment(models.Model):
    cancellation = models.ForeignKey(
        Cancellation, on_delete=models.PROTECT, related_name="refund_payments"
    )
    amount = money_field()
    transaction_method = models.CharField(max_length=30, choices=TRANSACTION_METHODS)
    refund_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)


# --- CREDIT NOTES ---
class CreditNote(models.Model):
    """Stored value spendable against later payments."""

    # Name of the field the paying party must match
    counterparty_field = None

    initial_amount = money_field()
    remaining_amount = money_field()
    status = models.CharField(
        max_length=20, choices=CREDIT_NOTE_STATUSES, default=NOTE_AVAILABLE
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True
        ordering = ["created_at", "id"]

    @property
    def counterparty(self):
        return getattr(self, self.counterparty_field)

    def refresh_status(self):
        if self.remaining_amount <= TOLERANCE:
            self.status = NOTE_USED
        elif self.remaining_amount < self.initial_amount:
            self.status = NOTE_PARTIALLY_USED
        else:
            self.status = NOTE_AVAILABLE
        return self.status


class SupplierCreditNote(CreditNote):
    counterparty_field = "supplier"

    supplier = models.CharField(max_length=20, choices=SUPPLIERS)
    generated_from_cancellation = models.OneToOneField(
        Cancellation,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="supplier_credit_note",
    )
    history = HistoricalRecords()

    def __str__(self):
        return f"{self.supplier} credit {self.remaining_amount}/{self.initial_amount}"


class CustomerCreditNote(CreditNote):
    counterparty_field = "customer_name"

    customer_name = models.CharField(max_length=200, db_index=True)
    generated_from_cancellation = models.OneToOneField(
        Cancellation,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="customer_credit_note",
    )
    history = HistoricalRecords()

    def __str__(self):
        return f"{self.customer_name} credit {self.remaining_amount}/{self.initial_amount}"


class SupplierCreditNoteUsage(models.Model):
    credit_note = models.ForeignKey(
        SupplierCreditNote, on_delete=models.PROTECT, related_name="usages"
    )
    amount_used = money_field()
    used_on_cost_item_supplier = models.ForeignKey(
        CostItemSupplier,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="credit_note_usages",
    )
    used_on_settlement = models.ForeignKey(
        SupplierPaymentSettlement,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="credit_note_usages",
    )
    used_at = models.DateTimeField(auto_now_add=True)


class CustomerCreditNoteUsage(models.Model):
    credit_note = models.ForeignKey(
        CustomerCreditNote, on_delete=models.PROTECT, related_name="usages"
    )
    amount_used = money_field()
    used_on_initial_payment = models.ForeignKey(
        InitialPayment,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="credit_note_usages",
    )
    used_on_instalment_payment = models.ForeignKey(
        InstalmentPayment,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="credit_note_usages",
    )
    used_on_refund = models.ForeignKey(
        PassengerRefundPayment,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="credit_note_usages",
    )
    used_at = models.DateTimeField(auto_now_add=True)


# --- PAYABLES ---
class Payable(models.Model):
    """Shortfall left behind by a cancellation, settled in parts."""

    total_amount = money_field()
    paid_amount = money_field()
    pending_amount = money_field()
    status = models.CharField(max_length=20, choices=PAYABLE_STATUSES, default=PAYABLE_PENDING)
    reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True

    def apply_settlement(self, amount):
        self.paid_amount += amount
        self.pending_amount = max(self.total_amount - self.paid_amount, ZERO)
        if self.pending_amount < TOLERANCE:
            self.status = PAYABLE_PAID


class SupplierPayable(Payable):
    supplier = models.CharField(max_length=20, choices=SUPPLIERS)
    created_from_cancellation = models.OneToOneField(
        Cancellation, on_delete=models.PROTECT, related_name="supplier_payable"
    )
    history = HistoricalRecords()

    def __str__(self):
        return f"Owed to {self.supplier}: {self.pending_amount}"


class CustomerPayable(Payable):
    booking = models.ForeignKey(
        Booking, on_delete=models.PROTECT, related_name="customer_payables"
    )
    created_from_cancellation = models.OneToOneField(
        Cancellation, on_delete=models.PROTECT, related_name="customer_payable"
    )
    history = HistoricalRecords()

    def __str__(self):
        return f"Owed by {self.booking.pax_name}: {self.pending_amount}"


class SupplierPayableSettlement(models.Model):
    payable = models.ForeignKey(
        SupplierPayable, on_delete=models.PROTECT, related_name="settlements"
    )
    amount = money_field()
    transaction_method = models.CharField(max_length=30, choices=TRANSACTION_METHODS)
    settlement_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)


class CustomerPayableSettlement(models.Model):
    payable = models.ForeignKey(
        CustomerPayable, on_delete=models.PROTECT, related_name="settlements"
    )
    amount = money_field()
    transaction_method = models.CharField(max_length=30, choices=TRANSACTION_METHODS)
    payment_date = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)


# --- COMMISSION ---
class CommissionEntry(models.Model):
    booking = models.ForeignKey(
        Booking, on_delete=models.PROTECT, related_name="commission_entries"
    )
    agent = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="commission_entries"
    )
    entry_type = models.CharField(max_length=30, choices=COMMISSION_TYPES)
    amount = money_field()
    commission_month = models.DateField()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = "Commission Entries"
        constraints = [
            models.UniqueConstraint(
                fields=["booking", "entry_type"], name="one_commission_entry_per_type"
            )
        ]

    def __str__(self):
        return f"{self.get_entry_type_display()} {self.amount} ({self.booking.folder_no})"


# --- ADJUSTMENTS & AUDIT ---
class BookingAmendment(models.Model):
    booking = models.ForeignKey(Booking, on_delete=models.PROTECT, related_name="amendments")
    amendment_type = models.CharField(max_length=20, choices=AMENDMENT_TYPES)
    property_name = models.CharField(max_length=50, default="balance")
    old_value = money_field()
    new_value = money_field()
    difference = money_field()
    reason = models.TextField()
    is_reversed = models.BooleanField(default=False)
    reversed_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self):
        return f"{self.get_amendment_type_display()} {self.difference}"


class AuditLogQuerySet(models.QuerySet):
    def update(self, **kwargs):
        raise StateConflictError("Audit entries cannot be modified.")

    def bulk_update(self, objs, fields, batch_size=None):
        raise StateConflictError("Audit entries cannot be modified.")


class AuditLog(models.Model):
    """Append-only trail. Rows are never updated or deleted."""

    model_name = models.CharField(max_length=60, db_index=True)
    record_id = models.CharField(max_length=40, db_index=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    action = models.CharField(max_length=30, choices=AUDIT_ACTIONS)
    field_name = models.CharField(max_length=60, null=True, blank=True)
    old_value = models.TextField(null=True, blank=True)
    new_value = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    objects = AuditLogQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at", "-id"]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise StateConflictError("Audit entries cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise StateConflictError("Audit entries cannot be deleted.")

    def __str__(self):
        return f"{self.action} {self.model_name}#{self.record_id}"


class InvoiceCounter(models.Model):
    prefix = models.CharField(max_length=40, unique=True)
    last_number = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.prefix}-{self.last_number:03d}"
