# backoffice/urls.py
from django.urls import path

from . import views

urlpatterns = [
    # --- Healthcheck ---
    path("healthz/", views.healthz, name="healthz"),
    # --- Bookings ---
    path(
        "api/bookings/<int:booking_id>/financials/",
        views.booking_financials,
        name="booking_financials",
    ),
    path("api/bookings/<int:booking_id>/approve/", views.approve_booking, name="approve_booking"),
    path("api/bookings/<int:booking_id>/cancel/", views.cancel_booking, name="cancel_booking"),
    path("api/bookings/<int:booking_id>/void/", views.void_booking, name="void_booking"),
    path("api/bookings/<int:booking_id>/unvoid/", views.unvoid_booking, name="unvoid_booking"),
    path("api/bookings/<int:booking_id>/write-off/", views.write_off, name="write_off"),
    path(
        "api/bookings/<int:booking_id>/correct-balance/",
        views.correct_balance,
        name="correct_balance",
    ),
    path("api/bookings/<int:booking_id>/invoice/", views.invoice, name="invoice"),
    path(
        "api/bookings/<int:booking_id>/settlement/",
        views.settlement_payment,
        name="settlement_payment",
    ),
    path(
        "api/amendments/<int:amendment_id>/reverse/",
        views.reverse_amendment,
        name="reverse_amendment",
    ),
    # --- Money Movements ---
    path("api/instalments/<int:instalment_id>/pay/", views.pay_instalment, name="pay_instalment"),
    path(
        "api/supplier-costs/<int:cost_item_supplier_id>/settle/",
        views.settle_supplier_cost,
        name="settle_supplier_cost",
    ),
    path(
        "api/supplier-payables/<int:payable_id>/settle/",
        views.settle_supplier_payable,
        name="settle_supplier_payable",
    ),
    path(
        "api/customer-payables/<int:payable_id>/settle/",
        views.settle_customer_payable,
        name="settle_customer_payable",
    ),
    path(
        "api/cancellations/<int:cancellation_id>/refund/",
        views.passenger_refund,
        name="passenger_refund",
    ),
    path("api/credit-notes/", views.credit_notes, name="credit_notes"),
    # --- Commission ---
    path(
        "api/agents/<int:agent_id>/commissions/",
        views.agent_commissions,
        name="agent_commissions",
    ),
    path(
        "api/commission-entries/<int:entry_id>/month/",
        views.move_commission_month,
        name="move_commission_month",
    ),
]
