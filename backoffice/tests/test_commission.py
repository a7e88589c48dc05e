from datetime import date
from decimal import Decimal

import pytest

from backoffice import commission
from backoffice.commission import final_reconciliation_amount, initial_commission_target
from backoffice.constants import COMMISSION_FINAL, COMMISSION_INITIAL, COMPLETED
from backoffice.exceptions import LedgerValidationError
from backoffice.models import AuditLog, Booking, CommissionEntry, InstalmentPayment
from backoffice.payment_plans import PaymentPlan
from backoffice.payments import record_instalment_payment
from backoffice.services import (
    approve_booking,
    move_commission_month,
    reverse_amendment,
    update_booking,
    write_off_balance,
)
from backoffice.store import LedgerStore

from .conftest import TODAY

D = Decimal


def entries(booking):
    return {
        entry.entry_type: entry.amount
        for entry in CommissionEntry.objects.filter(booking=booking)
    }


@pytest.mark.parametrize(
    "code, expected",
    [("FULL", D("600.00")), ("FULL_HUMM", D("600.00")), ("INTERNAL", D("300.00")), ("HUMM", D("300.00"))],
)
def test_initial_target_follows_payment_plan(code, expected):
    assert initial_commission_target(D("600"), PaymentPlan.decode(code)) == expected


def test_final_amount_tops_up_to_adjusted_profit():
    booking = Booking(revenue=D("1000"), prod_cost=D("400"))
    assert final_reconciliation_amount(booking, D("-100"), D("300")) == D("200")


@pytest.mark.django_db
def test_confirmation_posts_initial_commission(make_booking, agent):
    booking = make_booking()

    entry = CommissionEntry.objects.get(booking=booking)
    assert entry.entry_type == COMMISSION_INITIAL
    assert entry.agent == agent
    assert entry.amount == D("300.00")
    assert entry.commission_month.day == 1


@pytest.mark.django_db
def test_pending_booking_earns_nothing_until_approved(store, make_booking):
    booking = make_booking(method="FULL", confirm=False)
    assert not CommissionEntry.objects.exists()
    assert booking.folder_number is None

    approve_booking(store, booking.pk)

    booking.refresh_from_db()
    assert booking.folder_number is not None
    assert entries(booking) == {COMMISSION_INITIAL: D("600.00")}


@pytest.mark.django_db
def test_initial_commission_follows_profit_changes(store, make_booking):
    booking = make_booking()

    update_booking(store, booking.pk, {"revenue": D("1200.00")})

    assert entries(booking) == {COMMISSION_INITIAL: D("400.00")}


@pytest.mark.django_db
def test_settled_booking_posts_final_reconciliation(store, make_booking):
    booking = make_booking(paid=("500.00",), instalments=("500.00",))
    instalment = booking.instalments.get()

    record_instalment_payment(store, instalment.pk, D("500.00"), "STRIPE", TODAY)

    booking.refresh_from_db()
    assert booking.status == COMPLETED
    assert entries(booking) == {COMMISSION_INITIAL: D("300.00"), COMMISSION_FINAL: D("300.00")}


@pytest.mark.django_db
def test_final_reconciliation_is_posted_once(store, make_booking):
    booking = make_booking(paid=("912.50",))

    amendment = write_off_balance(store, booking.pk, "goodwill")
    first = entries(booking)
    reverse_amendment(store, amendment.pk)
    write_off_balance(store, booking.pk, "goodwill again")

    assert CommissionEntry.objects.filter(booking=booking, entry_type=COMMISSION_FINAL).count() == 1
    assert entries(booking) == first
    # INITIAL re-aligned to the written-off profit before FINAL froze it
    assert first[COMMISSION_INITIAL] + first[COMMISSION_FINAL] == D("512.50")


@pytest.mark.django_db
def test_missing_agent_skips_commission(store, make_booking, caplog):
    booking = make_booking(confirm=False)
    Booking.objects.filter(pk=booking.pk).update(agent=None, agent_name="Old Agent")

    approve_booking(store, booking.pk)

    assert not CommissionEntry.objects.exists()
    assert "backfill_booking_agents" in caplog.text


@pytest.mark.django_db
def test_commission_failure_does_not_undo_the_payment(store, make_booking, monkeypatch, caplog):
    booking = make_booking(paid=("500.00",), instalments=("500.00",))
    instalment = booking.instalments.get()

    def broken(store, booking, total_adjustments):
        raise RuntimeError("commission ledger offline")

    monkeypatch.setattr(commission, "post_final_reconciliation", broken)
    record_instalment_payment(store, instalment.pk, D("500.00"), "STRIPE", TODAY)

    booking.refresh_from_db()
    assert booking.status == COMPLETED
    assert booking.balance == D("0.00")
    assert COMMISSION_FINAL not in entries(booking)
    assert "commission ledger offline" in caplog.text


@pytest.mark.django_db
def test_core_failure_rolls_back_the_payment(store, make_booking, monkeypatch):
    booking = make_booking(paid=("500.00",), instalments=("500.00",))
    instalment = booking.instalments.get()

    def broken(self, booking_id):
        raise RuntimeError("database gone")

    monkeypatch.setattr(LedgerStore, "payment_graph", broken)
    with pytest.raises(RuntimeError):
        record_instalment_payment(store, instalment.pk, D("500.00"), "STRIPE", TODAY)

    booking.refresh_from_db()
    assert booking.balance == D("500.00")
    assert not InstalmentPayment.objects.exists()


# --- COMMISSION MONTHS ---
@pytest.mark.django_db
def test_commission_entry_moves_to_another_month(store, make_booking, agent):
    booking = make_booking()
    entry = CommissionEntry.objects.get(booking=booking)
    original = entry.commission_month

    move_commission_month(store, entry.pk, date(2026, 4, 1), actor=agent)

    entry.refresh_from_db()
    assert entry.commission_month == date(2026, 4, 1)
    row = AuditLog.objects.get(model_name="CommissionEntry", record_id=str(entry.pk))
    assert (row.field_name, row.old_value, row.new_value) == (
        "commission_month",
        original.isoformat(),
        "2026-04-01",
    )
    assert row.actor == agent

    # Same month again is a no-op
    move_commission_month(store, entry.pk, date(2026, 4, 1))
    assert AuditLog.objects.filter(model_name="CommissionEntry").count() == 1


@pytest.mark.django_db
def test_commission_month_must_start_on_the_first(store, make_booking):
    entry = CommissionEntry.objects.get(booking=make_booking())
    with pytest.raises(LedgerValidationError):
        move_commission_month(store, entry.pk, date(2026, 4, 15))


@pytest.mark.django_db
def test_agent_statement_groups_entries_by_month(store, make_booking, agent):
    open_booking = make_booking()
    settled = make_booking(paid=("1000.00",))
    move_commission_month(
        store, CommissionEntry.objects.get(booking=open_booking).pk, date(2026, 1, 1)
    )
    final = CommissionEntry.objects.get(booking=settled, entry_type=COMMISSION_FINAL)
    move_commission_month(store, final.pk, date(2026, 2, 1))

    months = commission.agent_statement(store, agent)

    assert [group.month for group in months][-2:] == [date(2026, 2, 1), date(2026, 1, 1)]
    february = months[-2]
    assert [entry.pk for entry in february.entries] == [final.pk]
    assert february.entries[0].initial_paid == D("300.00")
    assert months[-1].total == D("300.00")

    [january] = commission.agent_statement(store, agent, date(2026, 1, 1))
    assert january.entries[0].booking == open_booking
