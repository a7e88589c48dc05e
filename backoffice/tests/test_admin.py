from decimal import Decimal

import pytest
from django.contrib import admin, messages
from django.contrib.messages import get_messages
from django.contrib.messages.storage.cookie import CookieStorage

from backoffice.admin import BookingAdmin
from backoffice.models import Booking
from backoffice.services import void_booking


@pytest.fixture
def booking_admin():
    return BookingAdmin(Booking, admin.site)


@pytest.fixture
def admin_request(rf, admin_user):
    request = rf.post("/admin/backoffice/booking/1/change/")
    request.user = admin_user
    request._messages = CookieStorage(request)
    return request


def form_data(booking, **overrides):
    data = {
        "ref_no": booking.ref_no,
        "pax_name": booking.pax_name,
        "description": booking.description,
        "team_name": booking.team_name,
        "revenue": str(booking.revenue),
        "prod_cost": str(booking.prod_cost),
        "trans_fee": str(booking.trans_fee),
        "surcharge": str(booking.surcharge),
    }
    data.update(overrides)
    return data


@pytest.mark.django_db
def test_form_rejects_edits_the_ledger_would_refuse(
    booking_admin, admin_request, make_booking, allocation
):
    booking = make_booking(suppliers=[allocation("BTRES", "400.00")])
    Form = booking_admin.get_form(admin_request, booking, change=True)

    form = Form(form_data(booking, prod_cost="350.00"), instance=booking)

    assert not form.is_valid()
    assert "derived from cost items" in form.non_field_errors()[0]
    booking.refresh_from_db()
    assert booking.prod_cost == Decimal("400.00")


@pytest.mark.django_db
def test_rejected_save_shows_only_the_error(booking_admin, admin_request, store, make_booking):
    booking = make_booking()
    Form = booking_admin.get_form(admin_request, booking, change=True)
    form = Form(form_data(booking, revenue="1500.00"), instance=booking)
    assert form.is_valid()

    # Voided by someone else before the save lands
    void_booking(store, booking.pk, "Entered twice")
    booking_admin.save_model(admin_request, booking, form, True)
    response = booking_admin.response_change(admin_request, booking)

    assert response.status_code == 302
    assert [m.level for m in get_messages(admin_request)] == [messages.ERROR]
    assert Booking.objects.get(pk=booking.pk).revenue == Decimal("1000.00")


@pytest.mark.django_db
def test_valid_save_goes_through_the_ledger(booking_admin, admin_request, make_booking):
    booking = make_booking()
    Form = booking_admin.get_form(admin_request, booking, change=True)
    form = Form(form_data(booking, revenue="1200.00"), instance=booking)
    assert form.is_valid()

    booking_admin.save_model(admin_request, booking, form, True)

    booking.refresh_from_db()
    assert booking.revenue == Decimal("1200.00")
    assert booking.balance == Decimal("700.00")
