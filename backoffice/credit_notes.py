# backoffice/credit_notes.py
"""
Spending credit notes as a funding source.

The same protocol funds customer payments (CustomerCreditNote) and supplier
costs (SupplierCreditNote). Selections are checked against freshly locked
rows inside the consuming operation's transaction, and nothing is written
until every selected note has passed.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from .constants import NOTE_AVAILABLE, NOTE_PARTIALLY_USED, NOTE_USED
from .exceptions import LedgerValidationError, RecordNotFoundError, StateConflictError
from .money import ZERO, amounts_match, exceeds, money_sum, to_money

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditNoteSelection:
    credit_note_id: int
    amount_to_use: Decimal


def validate_selections(selections, amount_required):
    """Shape checks that need no database: positive amounts, no repeats, exact cover."""
    if not selections:
        raise LedgerValidationError("Select at least one credit note.")
    seen = set()
    for selection in selections:
        if selection.amount_to_use <= ZERO:
            raise LedgerValidationError(
                f"Amount to use on credit note {selection.credit_note_id} must be positive."
            )
        if selection.credit_note_id in seen:
            raise LedgerValidationError(
                f"Credit note {selection.credit_note_id} is selected more than once."
            )
        seen.add(selection.credit_note_id)

    selected = money_sum(s.amount_to_use for s in selections)
    if not amounts_match(selected, amount_required):
        raise LedgerValidationError(
            f"Credit notes cover {selected} but {to_money(amount_required)} is required."
        )


def _same_party(a, b):
    return (a or "").strip().casefold() == (b or "").strip().casefold()


def apply_credit_notes(store, note_model, selections, *, counterparty, amount_required, **funded):
    """
    Consume the selected notes and link each usage to the funded record.

    ``funded`` holds the usage foreign keys, e.g.
    ``used_on_instalment_payment=payment``. Returns the created usages.
    """
    validate_selections(selections, amount_required)

    ids = [s.credit_note_id for s in selections]
    notes = {
        note.pk: note
        for note in store.objects(note_model).select_for_update().filter(pk__in=ids)
    }

    # Check every note before touching any of them
    for selection in selections:
        note = notes.get(selection.credit_note_id)
        if note is None:
            raise RecordNotFoundError(f"Credit note {selection.credit_note_id} not found.")
        if not _same_party(note.counterparty, counterparty):
            raise LedgerValidationError(
                f"Credit note {note.pk} belongs to {note.counterparty}, not {counterparty}."
            )
        if note.status == NOTE_USED:
            raise StateConflictError(f"Credit note {note.pk} is already fully used.")
        if exceeds(selection.amount_to_use, note.remaining_amount):
            raise StateConflictError(
                f"Credit note {note.pk} has only {note.remaining_amount} remaining "
                f"({selection.amount_to_use} requested)."
            )

    usage_model = note_model.usages.rel.related_model
    usages = []
    for selection in selections:
        note = notes[selection.credit_note_id]
        amount = min(to_money(selection.amount_to_use), note.remaining_amount)
        note.remaining_amount -= amount
        note.refresh_status()
        note.save(using=store.using, update_fields=["remaining_amount", "status"])
        usages.append(
            store.objects(usage_model).create(credit_note=note, amount_used=amount, **funded)
        )
        logger.info(
            "Credit note %s #%s used for %s (remaining %s)",
            note_model.__name__,
            note.pk,
            amount,
            note.remaining_amount,
        )
    return usages


def available_credit_notes(store, note_model, counterparty):
    lookup = {f"{note_model.counterparty_field}__iexact": counterparty.strip()}
    return store.objects(note_model).filter(
        status__in=[NOTE_AVAILABLE, NOTE_PARTIALLY_USED], **lookup
    )
