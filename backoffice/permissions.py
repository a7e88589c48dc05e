# backoffice/permissions.py
"""
RBAC Permission Helpers for Managers vs Agents.
"""


def is_manager(user):
    """Check if user is a Manager (superuser or in Managers group)."""
    if not user or not user.is_authenticated:
        return False
    return user.is_superuser or user.groups.filter(name="Managers").exists()


def can_manage_financials(user):
    """Check if user can move money (settlements, refunds, write-offs)."""
    return is_manager(user) or user.has_perm("backoffice.manage_financials")


def can_cancel_any_booking(user):
    """Check if user can cancel any booking chain."""
    return is_manager(user) or user.has_perm("backoffice.cancel_any_booking")


def can_access_booking(user, booking):
    """
    Managers: all bookings
    Agents: only bookings they sell or created
    """
    if is_manager(user):
        return True
    return booking.agent_id == user.pk or booking.created_by_id == user.pk
