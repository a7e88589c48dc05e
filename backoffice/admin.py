# backoffice/admin.py
import logging

from django.contrib import admin, messages
from django.http import HttpResponseRedirect
from django.utils.html import format_html
from unfold.admin import ModelAdmin
from unfold.contrib.filters.admin import RangeDateFilter

from . import services
from .exceptions import LedgerError
from .finance import refresh_booking_financials
from .forms import BookingAdminForm
from .models import (
    AuditLog,
    Booking,
    BookingAmendment,
    Cancellation,
    CommissionEntry,
    CostItem,
    CustomerCreditNote,
    CustomerPayable,
    InitialPayment,
    Instalment,
    SupplierCreditNote,
    SupplierPayable,
)
from .money import TOLERANCE
from .permissions import can_manage_financials, is_manager
from .store import LedgerStore

logger = logging.getLogger(__name__)


# --- CUSTOM FILTERS ---
class OutstandingFilter(admin.SimpleListFilter):
    title = "Outstanding Balance"
    parameter_name = "outstanding_status"

    def lookups(self, request, model_admin):
        return (("yes", "Has Outstanding Balance"), ("no", "Fully Paid"))

    def queryset(self, request, queryset):
        if self.value() == "yes":
            return queryset.filter(balance__gte=TOLERANCE)
        if self.value() == "no":
            return queryset.filter(balance__lt=TOLERANCE)
        return queryset


class ReadOnlyMixin:
    """Money records are written by the ledger services only."""

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class FinancialsOnlyMixin(ReadOnlyMixin):
    def has_module_permission(self, request):
        return super().has_module_permission(request) and can_manage_financials(
            request.user
        )

    def has_view_permission(self, request, obj=None):
        return super().has_view_permission(request, obj) and can_manage_financials(
            request.user
        )


# --- INLINES ---
class CostItemInline(ReadOnlyMixin, admin.TabularInline):
    model = CostItem
    fields = ("category", "amount")
    readonly_fields = fields
    extra = 0
    verbose_name_plural = "🧾 Cost Items"


class InitialPaymentInline(ReadOnlyMixin, admin.TabularInline):
    model = InitialPayment
    fields = ("payment_date", "amount", "transaction_method")
    readonly_fields = fields
    extra = 0
    verbose_name_plural = "💷 Initial Payments"


class InstalmentInline(ReadOnlyMixin, admin.TabularInline):
    model = Instalment
    fields = ("due_date", "amount", "status")
    readonly_fields = fields
    extra = 0
    verbose_name_plural = "📅 Instalments"


class CommissionInline(ReadOnlyMixin, admin.TabularInline):
    model = CommissionEntry
    fields = ("entry_type", "agent", "amount", "commission_month")
    readonly_fields = fields
    extra = 0
    verbose_name_plural = "🏅 Commission"


# --- ACTIONS ---
@admin.action(description="✅ Approve pending bookings")
def approve_bookings(modeladmin, request, queryset):
    store = LedgerStore()
    approved = 0
    for booking in queryset:
        try:
            services.approve_booking(store, booking.pk, actor=request.user)
            approved += 1
        except LedgerError as exc:
            messages.warning(request, f"{booking}: {exc.message}")
    if approved:
        messages.success(request, f"✅ {approved} booking(s) approved.")


@admin.action(description="🔄 Recompute balance & profit")
def recompute_financials(modeladmin, request, queryset):
    store = LedgerStore()
    for booking in queryset:
        with store.atomic():
            locked = store.lock(Booking, booking.pk)
            refresh_booking_financials(store, locked, actor=request.user)
    messages.success(request, f"🔄 {queryset.count()} booking(s) recomputed.")


@admin.register(Booking)
class BookingAdmin(ModelAdmin):
    form = BookingAdminForm
    list_display = (
        "folder_display",
        "ref_no",
        "pax_name",
        "agent",
        "status_badge",
        "revenue",
        "balance",
        "profit",
        "created_at",
    )
    list_filter = (
        OutstandingFilter,
        "status",
        "record_kind",
        "agent",
        ("created_at", RangeDateFilter),
    )
    search_fields = ("ref_no", "pax_name", "agent_name", "folder_number")
    readonly_fields = (
        "folder_display",
        "record_kind",
        "agent",
        "payment_primary",
        "payment_secondary",
        "chain_root",
        "parent_booking",
        "status",
        "balance",
        "profit",
        "status_before_void",
        "void_reason",
        "voided_at",
        "voided_by",
        "invoice_number",
        "created_by",
        "created_at",
    )
    fieldsets = (
        (
            "✈️ Trip & Passenger",
            {"fields": (("folder_display", "record_kind"), ("ref_no", "pax_name"), "description")},
        ),
        ("👤 Agent", {"fields": (("agent", "team_name"), "created_by")}),
        (
            "💰 Financials",
            {
                "fields": (
                    ("payment_primary", "payment_secondary"),
                    ("revenue", "prod_cost"),
                    ("trans_fee", "surcharge"),
                    ("balance", "profit"),
                    "invoice_number",
                ),
                "description": "Balance and profit are recomputed by the ledger after every payment.",
            },
        ),
        (
            "🔗 Chain",
            {"fields": (("chain_root", "parent_booking"), "status"), "classes": ("collapse",)},
        ),
        (
            "⛔ Void",
            {
                "fields": (("status_before_void", "voided_at", "voided_by"), "void_reason"),
                "classes": ("collapse",),
            },
        ),
    )
    inlines = [CostItemInline, InitialPaymentInline, InstalmentInline, CommissionInline]
    actions = [approve_bookings, recompute_financials]

    @admin.display(description="Folder", ordering="folder_number")
    def folder_display(self, obj):
        return obj.folder_no or "—"

    @admin.display(description="Status")
    def status_badge(self, obj):
        colors = {
            "PENDING": "orange",
            "CONFIRMED": "blue",
            "COMPLETED": "green",
            "CANCELLED": "red",
            "VOID": "gray",
        }
        return format_html(
            '<span style="color: {};">{}</span>',
            colors.get(obj.status, "black"),
            obj.get_status_display(),
        )

    def has_add_permission(self, request):
        # Bookings are created through the booking flow, not the raw form
        return False

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.is_locked:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        return is_manager(request.user) and super().has_delete_permission(request, obj)

    def save_model(self, request, obj, form, change):
        # Financial edits go through the ledger so balance & commission follow
        changes = {name: form.cleaned_data[name] for name in form.changed_data}
        try:
            services.update_booking(
                LedgerStore(),
                obj.pk,
                {k: v for k, v in changes.items() if k in services.EDITABLE_FIELDS},
                actor=request.user,
            )
        except LedgerError as exc:
            # Booking changed state after the form validated
            obj._ledger_error = exc

    def response_change(self, request, obj):
        error = getattr(obj, "_ledger_error", None)
        if error is not None:
            self.message_user(request, f"⚠️ Not saved: {error.message}", messages.ERROR)
            return HttpResponseRedirect(request.path)
        return super().response_change(request, obj)

    def log_change(self, request, obj, message):
        if getattr(obj, "_ledger_error", None) is None:
            return super().log_change(request, obj, message)
        return None


@admin.register(Cancellation)
class CancellationAdmin(FinancialsOnlyMixin, ModelAdmin):
    list_display = (
        "folder_no",
        "supplier_cancellation_fee",
        "admin_fee",
        "refund_to_passenger",
        "payable_by_customer",
        "refund_status",
        "profit_or_loss",
        "created_at",
    )
    list_filter = ("refund_status", ("created_at", RangeDateFilter))
    search_fields = ("original_booking__pax_name", "original_booking__folder_number")


@admin.register(SupplierCreditNote)
class SupplierCreditNoteAdmin(FinancialsOnlyMixin, ModelAdmin):
    list_display = ("supplier", "initial_amount", "remaining_amount", "status", "created_at")
    list_filter = ("status", "supplier")


@admin.register(CustomerCreditNote)
class CustomerCreditNoteAdmin(FinancialsOnlyMixin, ModelAdmin):
    list_display = ("customer_name", "initial_amount", "remaining_amount", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("customer_name",)


@admin.register(SupplierPayable)
class SupplierPayableAdmin(FinancialsOnlyMixin, ModelAdmin):
    list_display = ("supplier", "total_amount", "paid_amount", "pending_amount", "status")
    list_filter = ("status", "supplier")


@admin.register(CustomerPayable)
class CustomerPayableAdmin(FinancialsOnlyMixin, ModelAdmin):
    list_display = ("booking", "total_amount", "paid_amount", "pending_amount", "status")
    list_filter = ("status",)


@admin.register(CommissionEntry)
class CommissionEntryAdmin(FinancialsOnlyMixin, ModelAdmin):
    list_display = ("booking", "agent", "entry_type", "amount", "commission_month")
    list_filter = ("entry_type", "agent", ("commission_month", RangeDateFilter))


@admin.register(BookingAmendment)
class BookingAmendmentAdmin(FinancialsOnlyMixin, ModelAdmin):
    list_display = ("booking", "amendment_type", "old_value", "new_value", "difference", "is_reversed")
    list_filter = ("amendment_type", "is_reversed")


@admin.register(AuditLog)
class AuditLogAdmin(ReadOnlyMixin, ModelAdmin):
    list_display = ("created_at", "actor", "action", "model_name", "record_id", "field_name", "old_value", "new_value")
    list_filter = ("action", "model_name", ("created_at", RangeDateFilter))
    search_fields = ("record_id", "field_name")

    def has_module_permission(self, request):
        return is_manager(request.user)
