# backoffice/signals.py

from django.db.models.signals import pre_delete, pre_save
from django.dispatch import receiver

from .exceptions import StateConflictError
from .models import AuditLog


# --- AUDIT TRAIL GUARDS ---
# Model methods cover instance saves and AuditLogQuerySet covers bulk
# updates; these also catch queryset deletes and saves that bypass
# AuditLog.save().


@receiver(pre_save, sender=AuditLog)
def audit_log_is_append_only(sender, instance, raw=False, **kwargs):
    if raw:
        return
    if not instance._state.adding:
        raise StateConflictError("Audit entries cannot be modified.")


@receiver(pre_delete, sender=AuditLog)
def audit_log_cannot_be_deleted(sender, instance, **kwargs):
    raise StateConflictError("Audit entries cannot be deleted.")
