# backoffice/audit.py
"""
Append-only audit trail.

Entries are written on the caller's store, inside the caller's transaction,
so a rolled back operation leaves no audit rows behind.
"""
from .constants import AUDIT_UPDATE
from .models import AuditLog


def _stringify(value):
    if value is None:
        return None
    return str(value)


def record(store, actor, instance, action, changes=None):
    """
    Write one row per ``(field, old, new)`` change, or a single row when the
    action has no field-level detail.
    """
    model_name = type(instance).__name__
    rows = [
        AuditLog(
            model_name=model_name,
            record_id=str(instance.pk),
            actor=actor,
            action=action,
            field_name=field,
            old_value=_stringify(old),
            new_value=_stringify(new),
        )
        for field, old, new in (changes or [(None, None, None)])
    ]
    return store.objects(AuditLog).bulk_create(rows)


def log_changes(store, actor, instance, before, action=AUDIT_UPDATE):
    """Compare ``before`` against the instance's current values and audit the differences."""
    changes = [
        (field, old, getattr(instance, field))
        for field, old in before.items()
        if old != getattr(instance, field)
    ]
    if changes:
        record(store, actor, instance, action, changes)
    return changes
