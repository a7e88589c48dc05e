# backoffice/forms.py
from django import forms

from . import services
from .exceptions import LedgerError
from .models import Booking
from .store import LedgerStore


# --- BOOKING ADMIN FORM ---
class BookingAdminForm(forms.ModelForm):
    class Meta:
        model = Booking
        fields = "__all__"

    def clean(self):
        cleaned_data = super().clean()
        changes = {
            name: cleaned_data[name]
            for name in self.changed_data
            if name in services.EDITABLE_FIELDS and name in cleaned_data
        }

        # Same rules the ledger applies on save, reported on the form
        if changes and self.instance.pk:
            try:
                services.clean_booking_changes(LedgerStore(), self.instance, changes)
            except LedgerError as exc:
                raise forms.ValidationError(exc.message)

        return cleaned_data
