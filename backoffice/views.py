# backoffice/views.py
import json
import logging
from decimal import Decimal, InvalidOperation
from functools import wraps

from django.contrib.admin.views.decorators import staff_member_required
from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied
from django.http import HttpResponse, JsonResponse
from django.utils import timezone
from django.utils.dateparse import parse_date
from django.views.decorators.http import require_GET, require_POST

from . import commission, payments, services
from .cancellation import cancel_booking_chain
from .constants import COMMISSION_FINAL
from .credit_notes import CreditNoteSelection, available_credit_notes
from .exceptions import LedgerError, LedgerValidationError
from .finance import recompute
from .models import Booking, CommissionEntry, CustomerCreditNote, SupplierCreditNote
from .money import ZERO
from .permissions import can_access_booking, can_cancel_any_booking, can_manage_financials
from .store import LedgerStore

logger = logging.getLogger(__name__)


# healthcheck for load balancers
def healthz(request):
    """Simple healthcheck for load balancers."""
    from django.db import connection

    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
        return HttpResponse("OK", status=200)
    except Exception:
        return HttpResponse("DB Error", status=503)


# --- BOUNDARY HELPERS ---
def ledger_endpoint(view):
    """Decode the JSON body and turn ledger errors into JSON error responses."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        payload = {}
        if request.method == "POST" and request.body:
            try:
                payload = json.loads(request.body)
            except json.JSONDecodeError:
                return JsonResponse({"error": "Request body is not valid JSON."}, status=400)
            if not isinstance(payload, dict):
                return JsonResponse({"error": "Request body must be an object."}, status=400)
        try:
            return view(request, payload, LedgerStore(), *args, **kwargs)
        except LedgerError as exc:
            logger.warning("%s rejected (%s): %s", view.__name__, exc.status_code, exc.message)
            return JsonResponse({"error": exc.message}, status=exc.status_code)

    return staff_member_required(wrapper)


def _amount(payload, key="amount"):
    raw = payload.get(key)
    if raw is None or raw == "":
        raise LedgerValidationError(f"'{key}' is required.")
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise LedgerValidationError(f"'{key}' must be a decimal amount.")
    if not value.is_finite() or value < 0:
        raise LedgerValidationError(f"'{key}' must be a non-negative amount.")
    return value


def _date(payload, key):
    raw = payload.get(key)
    if not raw:
        return timezone.localdate()
    try:
        parsed = parse_date(str(raw))
    except ValueError:
        parsed = None
    if parsed is None:
        raise LedgerValidationError(f"'{key}' must be a YYYY-MM-DD date.")
    return parsed


def _month(raw, key):
    """Accept ``YYYY-MM`` or a ``YYYY-MM-DD`` first of month."""
    raw = str(raw).strip()
    try:
        parsed = parse_date(raw) or parse_date(f"{raw}-01")
    except ValueError:
        parsed = None
    if parsed is None:
        raise LedgerValidationError(f"'{key}' must be a YYYY-MM month.")
    return parsed


def _text(payload, key):
    value = payload.get(key)
    if not value or not str(value).strip():
        raise LedgerValidationError(f"'{key}' is required.")
    return str(value).strip()


def _selections(payload):
    selections = []
    for item in payload.get("credit_notes") or []:
        try:
            note_id = int(item["credit_note_id"])
        except (KeyError, TypeError, ValueError):
            raise LedgerValidationError("Each credit note needs a numeric 'credit_note_id'.")
        selections.append(CreditNoteSelection(note_id, _amount(item, "amount_to_use")))
    return selections


def _require_financials(request):
    if not can_manage_financials(request.user):
        raise PermissionDenied("You don't have permission to move money.")


def _money(value):
    return str(value)


def booking_payload(booking, totals=None):
    data = {
        "id": booking.pk,
        "folder_no": booking.folder_no,
        "ref_no": booking.ref_no,
        "status": booking.status,
        "revenue": _money(booking.revenue),
        "balance": _money(booking.balance),
        "profit": _money(booking.profit),
    }
    if totals is not None:
        data["total_received"] = _money(totals.total_received)
        data["total_paid_to_suppliers"] = _money(totals.total_paid_to_suppliers)
    return data


# --- READS ---
@require_GET
@ledger_endpoint
def booking_financials(request, payload, store, booking_id):
    booking = store.get(Booking, booking_id)
    if not can_access_booking(request.user, booking):
        raise PermissionDenied
    data = booking_payload(booking, recompute(booking.pk, store))
    data["commission"] = [
        {"type": entry.entry_type, "amount": _money(entry.amount)}
        for entry in store.objects(CommissionEntry).filter(booking=booking).order_by("pk")
    ]
    return JsonResponse(data)


@require_GET
@ledger_endpoint
def credit_notes(request, payload, store):
    kind = request.GET.get("kind", "customer")
    party = request.GET.get("party", "").strip()
    if not party:
        raise LedgerValidationError("'party' is required.")
    model = SupplierCreditNote if kind == "supplier" else CustomerCreditNote
    notes = available_credit_notes(store, model, party)
    return JsonResponse(
        {
            "results": [
                {
                    "id": note.pk,
                    "party": note.counterparty,
                    "initial_amount": _money(note.initial_amount),
                    "remaining_amount": _money(note.remaining_amount),
                    "status": note.status,
                }
                for note in notes
            ]
        }
    )


# --- COMMISSION ---
@require_GET
@ledger_endpoint
def agent_commissions(request, payload, store, agent_id):
    agent = store.get(get_user_model(), agent_id)
    if agent.pk != request.user.pk and not can_manage_financials(request.user):
        raise PermissionDenied
    month = _month(request.GET["month"], "month") if request.GET.get("month") else None

    months = commission.agent_statement(store, agent, month)
    return JsonResponse(
        {
            "agent": agent.pk,
            "months": [
                {
                    "month": group.month.isoformat(),
                    "total": _money(group.total),
                    "entries": [
                        {
                            "id": entry.pk,
                            "booking_id": entry.booking_id,
                            "folder_no": entry.booking.folder_no,
                            "pax_name": entry.booking.pax_name,
                            "type": entry.entry_type,
                            "amount": _money(entry.amount),
                            "initial_paid": _money(
                                entry.initial_paid if entry.entry_type == COMMISSION_FINAL else ZERO
                            ),
                        }
                        for entry in group.entries
                    ],
                }
                for group in months
            ],
        }
    )


@require_POST
@ledger_endpoint
def move_commission_month(request, payload, store, entry_id):
    _require_financials(request)
    entry = services.move_commission_month(
        store,
        entry_id,
        _month(_text(payload, "commission_month"), "commission_month"),
        actor=request.user,
    )
    return JsonResponse(
        {
            "id": entry.pk,
            "type": entry.entry_type,
            "amount": _money(entry.amount),
            "commission_month": entry.commission_month.isoformat(),
        }
    )


# --- BOOKING LIFECYCLE ---
@require_POST
@ledger_endpoint
def approve_booking(request, payload, store, booking_id):
    booking = services.approve_booking(store, booking_id, actor=request.user)
    return JsonResponse(booking_payload(booking))


@require_POST
@ledger_endpoint
def cancel_booking(request, payload, store, booking_id):
    booking = store.get(Booking, booking_id)
    if not (can_cancel_any_booking(request.user) or can_access_booking(request.user, booking)):
        raise PermissionDenied
    cancellation = cancel_booking_chain(
        store,
        booking_id,
        supplier_cancellation_fee=_amount(payload, "supplier_cancellation_fee"),
        admin_fee=_amount(payload, "admin_fee"),
        description=payload.get("description", ""),
        actor=request.user,
    )
    return JsonResponse(
        {
            "id": cancellation.pk,
            "folder_no": cancellation.folder_no,
            "refund_to_passenger": _money(cancellation.refund_to_passenger),
            "payable_by_customer": _money(cancellation.payable_by_customer),
            "credit_note_amount": _money(cancellation.credit_note_amount),
            "supplier_payable_amount": _money(cancellation.supplier_payable_amount),
            "profit_or_loss": _money(cancellation.profit_or_loss),
            "refund_status": cancellation.refund_status,
        },
        status=201,
    )


@require_POST
@ledger_endpoint
def void_booking(request, payload, store, booking_id):
    booking = services.void_booking(store, booking_id, _text(payload, "reason"), actor=request.user)
    return JsonResponse(booking_payload(booking))


@require_POST
@ledger_endpoint
def unvoid_booking(request, payload, store, booking_id):
    booking = services.unvoid_booking(store, booking_id, actor=request.user)
    return JsonResponse(booking_payload(booking))


@require_POST
@ledger_endpoint
def write_off(request, payload, store, booking_id):
    _require_financials(request)
    amendment = services.write_off_balance(
        store, booking_id, _text(payload, "reason"), actor=request.user
    )
    booking = store.get(Booking, booking_id)
    return JsonResponse(
        {"amendment_id": amendment.pk, "difference": _money(amendment.difference), **booking_payload(booking)},
        status=201,
    )


@require_POST
@ledger_endpoint
def correct_balance(request, payload, store, booking_id):
    _require_financials(request)
    amendment = services.correct_balance(
        store, booking_id, _amount(payload, "balance"), _text(payload, "reason"), actor=request.user
    )
    booking = store.get(Booking, booking_id)
    return JsonResponse(
        {"amendment_id": amendment.pk, "difference": _money(amendment.difference), **booking_payload(booking)},
        status=201,
    )


@require_POST
@ledger_endpoint
def reverse_amendment(request, payload, store, amendment_id):
    _require_financials(request)
    amendment = services.reverse_amendment(store, amendment_id, actor=request.user)
    booking = store.get(Booking, amendment.booking_id)
    return JsonResponse(booking_payload(booking))


@require_POST
@ledger_endpoint
def invoice(request, payload, store, booking_id):
    snapshot = services.generate_invoice(store, booking_id, actor=request.user)
    return JsonResponse(
        {
            "invoice_number": snapshot.invoice_number,
            "folder_no": snapshot.folder_no,
            "ref_no": snapshot.ref_no,
            "pax_name": snapshot.pax_name,
            "revenue": _money(snapshot.revenue),
            "total_received": _money(snapshot.total_received),
            "balance": _money(snapshot.balance),
            "issued_on": snapshot.issued_on.isoformat(),
        }
    )


# --- MONEY MOVEMENTS ---
@require_POST
@ledger_endpoint
def pay_instalment(request, payload, store, instalment_id):
    _require_financials(request)
    payment = payments.record_instalment_payment(
        store,
        instalment_id,
        _amount(payload),
        _text(payload, "transaction_method"),
        _date(payload, "payment_date"),
        credit_notes=_selections(payload),
        actor=request.user,
    )
    booking = store.get(Booking, payment.instalment.booking_id)
    return JsonResponse({"payment_id": payment.pk, **booking_payload(booking)}, status=201)


@require_POST
@ledger_endpoint
def settlement_payment(request, payload, store, booking_id):
    _require_financials(request)
    payment = payments.record_settlement_payment(
        store,
        booking_id,
        _amount(payload),
        _text(payload, "transaction_method"),
        _date(payload, "payment_date"),
        actor=request.user,
    )
    booking = store.get(Booking, booking_id)
    return JsonResponse({"payment_id": payment.pk, **booking_payload(booking)}, status=201)


@require_POST
@ledger_endpoint
def settle_supplier_cost(request, payload, store, cost_item_supplier_id):
    _require_financials(request)
    settlement = payments.settle_supplier_cost(
        store,
        cost_item_supplier_id,
        _amount(payload),
        _text(payload, "transaction_method"),
        _date(payload, "settlement_date"),
        credit_notes=_selections(payload),
        actor=request.user,
    )
    row = settlement.cost_item_supplier
    return JsonResponse(
        {
            "settlement_id": settlement.pk,
            "paid_amount": _money(row.paid_amount),
            "pending_amount": _money(row.pending_amount),
        },
        status=201,
    )


@require_POST
@ledger_endpoint
def settle_supplier_payable(request, payload, store, payable_id):
    _require_financials(request)
    settlement = payments.settle_supplier_payable(
        store,
        payable_id,
        _amount(payload),
        _text(payload, "transaction_method"),
        _date(payload, "settlement_date"),
        actor=request.user,
    )
    return JsonResponse(_payable_payload(settlement), status=201)


@require_POST
@ledger_endpoint
def settle_customer_payable(request, payload, store, payable_id):
    _require_financials(request)
    settlement = payments.settle_customer_payable(
        store,
        payable_id,
        _amount(payload),
        _text(payload, "transaction_method"),
        _date(payload, "payment_date"),
        actor=request.user,
    )
    return JsonResponse(_payable_payload(settlement), status=201)


def _payable_payload(settlement):
    payable = settlement.payable
    return {
        "settlement_id": settlement.pk,
        "paid_amount": _money(payable.paid_amount),
        "pending_amount": _money(payable.pending_amount),
        "status": payable.status,
    }


@require_POST
@ledger_endpoint
def passenger_refund(request, payload, store, cancellation_id):
    _require_financials(request)
    refund = payments.record_passenger_refund(
        store,
        cancellation_id,
        _amount(payload),
        _text(payload, "transaction_method"),
        _date(payload, "refund_date"),
        actor=request.user,
    )
    return JsonResponse(
        {"refund_id": refund.pk, "refund_status": refund.cancellation.refund_status},
        status=201,
    )
