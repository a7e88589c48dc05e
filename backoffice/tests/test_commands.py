from decimal import Decimal
from io import StringIO
from types import SimpleNamespace

import pytest
from django.core.management import CommandError, call_command

from backoffice.constants import (
    AUDIT_UPDATE,
    CANCELLED,
    COMMISSION_FINAL,
    COMMISSION_INITIAL,
    COMPLETED,
    INSTALMENT_OVERDUE,
    PENDING,
)
from backoffice.management.commands.backfill_booking_agents import match_agent
from backoffice.models import AuditLog, Booking, Cancellation, CommissionEntry, SupplierCreditNote
from backoffice.services import approve_booking


@pytest.mark.django_db
def test_seed_builds_demo_ledger_once():
    out = StringIO()
    call_command("seed", stdout=out)

    assert Booking.objects.count() == 3
    assert Booking.objects.filter(status=PENDING).count() == 1
    assert Booking.objects.get(ref_no="LYC-2001").status == CANCELLED
    cancellation = Cancellation.objects.get()
    assert cancellation.refund_to_passenger == Decimal("750.00")
    assert SupplierCreditNote.objects.get().initial_amount == Decimal("600.00")
    assert CommissionEntry.objects.exists()

    call_command("seed", stdout=out)
    assert Booking.objects.count() == 3
    assert "skipping demo data" in out.getvalue()


def test_match_agent_uses_unique_first_names():
    users = [
        SimpleNamespace(first_name="Sarah"),
        SimpleNamespace(first_name="Omar"),
        SimpleNamespace(first_name="omar"),
    ]

    assert match_agent("sarah khan", users) is users[0]
    assert match_agent("Omar", users) is None
    assert match_agent("", users) is None
    assert match_agent("Nadia", users) is None


@pytest.mark.django_db
def test_backfill_links_legacy_bookings(make_booking, agent):
    booking = make_booking(confirm=False)
    orphan = make_booking(confirm=False)
    Booking.objects.filter(pk=booking.pk).update(agent=None, agent_name="Sarah K")
    Booking.objects.filter(pk=orphan.pk).update(agent=None, agent_name="Unknown Person")

    out = StringIO()
    call_command("backfill_booking_agents", "--dry-run", stdout=out)
    assert Booking.objects.get(pk=booking.pk).agent_id is None
    assert "would be linked" in out.getvalue()

    call_command("backfill_booking_agents", stdout=out)
    assert Booking.objects.get(pk=booking.pk).agent_id == agent.pk
    assert Booking.objects.get(pk=orphan.pk).agent_id is None
    assert "1 booking(s) linked, 1 unmatched." in out.getvalue()


@pytest.mark.django_db
def test_backfill_posts_missed_commission_and_audits(store, make_booking, agent):
    confirmed = make_booking(confirm=False)
    completed = make_booking(paid=("1000.00",), confirm=False)
    for booking in (confirmed, completed):
        Booking.objects.filter(pk=booking.pk).update(agent=None, agent_name="Sarah Connor")
        approve_booking(store, booking.pk)
    assert not CommissionEntry.objects.exists()

    call_command("backfill_booking_agents", stdout=StringIO())

    initial = CommissionEntry.objects.get(booking=confirmed)
    assert (initial.entry_type, initial.amount, initial.agent) == (COMMISSION_INITIAL, Decimal("300.00"), agent)
    completed.refresh_from_db()
    assert completed.status == COMPLETED
    amounts = dict(CommissionEntry.objects.filter(booking=completed).values_list("entry_type", "amount"))
    assert amounts == {COMMISSION_INITIAL: Decimal("300.00"), COMMISSION_FINAL: Decimal("300.00")}

    for booking in (confirmed, completed):
        row = AuditLog.objects.get(model_name="Booking", record_id=str(booking.pk), field_name="agent")
        assert (row.action, row.old_value, row.new_value) == (AUDIT_UPDATE, None, str(agent.pk))
        assert Booking.objects.get(pk=booking.pk).history.first().agent_id == agent.pk


@pytest.mark.django_db
def test_mark_overdue_instalments_command(make_booking):
    booking = make_booking(instalments=("500.00",))
    instalment = booking.instalments.get()
    out = StringIO()

    call_command("mark_overdue_instalments", "--date", "2026-03-11", stdout=out)

    instalment.refresh_from_db()
    assert instalment.status == INSTALMENT_OVERDUE
    assert "1 instalment(s) marked overdue." in out.getvalue()
    with pytest.raises(CommandError):
        call_command("mark_overdue_instalments", "--date", "tomorrow")
