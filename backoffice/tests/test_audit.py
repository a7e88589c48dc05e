import pytest
from django.db import transaction

from backoffice import audit
from backoffice.constants import AUDIT_APPROVE, AUDIT_CREATE, AUDIT_UPDATE
from backoffice.exceptions import StateConflictError
from backoffice.models import AuditLog
from backoffice.services import approve_booking


@pytest.mark.django_db
def test_audit_rows_cannot_be_changed_or_deleted(make_booking):
    make_booking()
    entry = AuditLog.objects.first()

    entry.new_value = "tampered"
    with pytest.raises(StateConflictError):
        entry.save()
    with pytest.raises(StateConflictError):
        entry.delete()
    with pytest.raises(StateConflictError), transaction.atomic():
        AuditLog.objects.all().delete()
    with pytest.raises(StateConflictError):
        AuditLog.objects.update(new_value="tampered")
    with pytest.raises(StateConflictError):
        AuditLog.objects.filter(pk=entry.pk).bulk_update([entry], ["new_value"])

    assert not AuditLog.objects.filter(new_value="tampered").exists()


@pytest.mark.django_db
def test_creation_and_approval_are_audited(store, make_booking, agent):
    booking = make_booking(confirm=False)

    approve_booking(store, booking.pk, actor=agent)

    trail = AuditLog.objects.filter(model_name="Booking", record_id=str(booking.pk))
    assert trail.filter(action=AUDIT_CREATE).exists()
    approval = trail.get(action=AUDIT_APPROVE)
    assert approval.actor == agent
    assert (approval.field_name, approval.old_value, approval.new_value) == (
        "status",
        "PENDING",
        "CONFIRMED",
    )


@pytest.mark.django_db
def test_log_changes_only_records_differences(store, make_booking):
    booking = make_booking()
    before = {"pax_name": booking.pax_name, "ref_no": booking.ref_no}
    booking.pax_name = "Maria Lopez Garcia"

    changes = audit.log_changes(store, None, booking, before)

    assert changes == [("pax_name", "Maria Lopez", "Maria Lopez Garcia")]
    row = AuditLog.objects.get(action=AUDIT_UPDATE, field_name="pax_name")
    assert row.old_value == "Maria Lopez"
    assert audit.log_changes(store, None, booking, {"ref_no": booking.ref_no}) == []
