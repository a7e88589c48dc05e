# backoffice/constants.py

# Booking state
PENDING = "PENDING"
CONFIRMED = "CONFIRMED"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"
VOID = "VOID"

BOOKING_STATUSES = [
    (PENDING, "📝 Pending Approval"),
    (CONFIRMED, "✅ Confirmed"),
    (COMPLETED, "🏁 Completed"),
    (CANCELLED, "🚫 Cancelled"),
    (VOID, "⛔ Void"),
]

# Bookings that reject further money movement
LOCKED_STATUSES = (CANCELLED, VOID)

# Position of a record inside its folder chain
ORIGINAL = "ORIGINAL"
DATE_CHANGE = "DATE_CHANGE"
CANCELLATION = "CANCELLATION"

RECORD_KINDS = [
    (ORIGINAL, "Original Booking"),
    (DATE_CHANGE, "Date Change"),
    (CANCELLATION, "Cancellation"),
]

# Customer payment plans (primary, secondary)
PLAN_FULL = "FULL"
PLAN_INTERNAL = "INTERNAL"
PLAN_REFUND = "REFUND"
PLAN_HUMM = "HUMM"

PAYMENT_PLAN_METHODS = [
    (PLAN_FULL, "Full Payment"),
    (PLAN_INTERNAL, "Internal Instalments"),
    (PLAN_REFUND, "Refund"),
    (PLAN_HUMM, "Humm Finance"),
]

# Supplier payment plans (primary, secondary)
BANK_TRANSFER = "BANK_TRANSFER"
CREDIT = "CREDIT"
CREDIT_NOTES = "CREDIT_NOTES"

SUPPLIER_PAYMENT_METHODS = [
    (BANK_TRANSFER, "🏦 Bank Transfer"),
    (CREDIT, "🧾 Supplier Credit"),
    (CREDIT_NOTES, "🎟️ Credit Notes"),
]

# How money actually moved
CUSTOMER_CREDIT_NOTE = "CUSTOMER_CREDIT_NOTE"

TRANSACTION_METHODS = [
    ("LOYDS", "Lloyds"),
    ("STRIPE", "Stripe"),
    ("WISE", "Wise"),
    ("HUMM", "Humm"),
    (CREDIT_NOTES, "Credit Notes"),
    (CREDIT, "Credit"),
    (BANK_TRANSFER, "Bank Transfer"),
    (CUSTOMER_CREDIT_NOTE, "Customer Credit Note"),
]

CUSTOMER_PAYMENT_METHODS = {
    "LOYDS", "STRIPE", "WISE", "HUMM", BANK_TRANSFER, CUSTOMER_CREDIT_NOTE
}
SUPPLIER_SETTLEMENT_METHODS = {
    "LOYDS", "STRIPE", "WISE", "HUMM", CREDIT_NOTES, CREDIT, BANK_TRANSFER
}
REFUND_METHODS = {"LOYDS", "STRIPE", "WISE", BANK_TRANSFER}

SUPPLIERS = [
    ("BTRES", "BTRES"),
    ("LYCA", "LYCA"),
    ("CEBU", "CEBU"),
    ("BTRES_LYCA", "BTRES / LYCA"),
    ("BA", "British Airways"),
    ("TRAINLINE", "Trainline"),
    ("EASYJET", "easyJet"),
    ("FLYDUBAI", "flydubai"),
]

COST_CATEGORIES = [
    ("FLIGHT", "✈️ Flight"),
    ("HOTEL", "🏨 Hotel"),
    ("TRANSFER", "🚖 Transfer"),
    ("INSURANCE", "🛡️ Insurance"),
    ("OTHER", "📦 Other"),
]

# Instalments
INSTALMENT_PENDING = "PENDING"
INSTALMENT_PAID = "PAID"
INSTALMENT_OVERDUE = "OVERDUE"
INSTALMENT_SETTLEMENT = "SETTLEMENT"

INSTALMENT_STATUSES = [
    (INSTALMENT_PENDING, "🟠 Pending"),
    (INSTALMENT_PAID, "🟢 Paid"),
    (INSTALMENT_OVERDUE, "🔴 Overdue"),
    (INSTALMENT_SETTLEMENT, "🧾 Balance Settlement"),
]

# Credit notes
NOTE_AVAILABLE = "AVAILABLE"
NOTE_PARTIALLY_USED = "PARTIALLY_USED"
NOTE_USED = "USED"

CREDIT_NOTE_STATUSES = [
    (NOTE_AVAILABLE, "🟢 Available"),
    (NOTE_PARTIALLY_USED, "🟠 Partially Used"),
    (NOTE_USED, "⚪ Used"),
]

# Payables
PAYABLE_PENDING = "PENDING"
PAYABLE_PAID = "PAID"

PAYABLE_STATUSES = [
    (PAYABLE_PENDING, "🔴 Pending"),
    (PAYABLE_PAID, "🟢 Paid"),
]

# Passenger refund after cancellation
REFUND_NOT_APPLICABLE = "N/A"
REFUND_PENDING = "PENDING"
REFUND_CREDIT_ISSUED = "CREDIT_ISSUED"
REFUND_PAID = "PAID"

REFUND_STATUSES = [
    (REFUND_NOT_APPLICABLE, "N/A"),
    (REFUND_PENDING, "Pending"),
    (REFUND_CREDIT_ISSUED, "Credit Issued"),
    (REFUND_PAID, "Paid"),
]

# Commission
COMMISSION_INITIAL = "INITIAL"
COMMISSION_FINAL = "FINAL_RECONCILIATION"

COMMISSION_TYPES = [
    (COMMISSION_INITIAL, "Initial"),
    (COMMISSION_FINAL, "Final Reconciliation"),
]

# Amendments
AMENDMENT_WRITE_OFF = "WRITE_OFF"
AMENDMENT_CORRECTION = "CORRECTION"

AMENDMENT_TYPES = [
    (AMENDMENT_WRITE_OFF, "Write Off"),
    (AMENDMENT_CORRECTION, "Correction"),
]

# Audit vocabulary
AUDIT_CREATE = "CREATE"
AUDIT_UPDATE = "UPDATE"
AUDIT_APPROVE = "APPROVE_BOOKING"
AUDIT_DATE_CHANGE = "DATE_CHANGE"
AUDIT_CANCELLATION = "CREATE_CANCELLATION"
AUDIT_SETTLEMENT = "SETTLEMENT_PAYMENT"
AUDIT_REFUND = "REFUND_PAYMENT"
AUDIT_VOID = "VOID_BOOKING"
AUDIT_UNVOID = "UNVOID_BOOKING"
AUDIT_INVOICE = "GENERATE_INVOICE"
AUDIT_WRITE_OFF = "WRITE_OFF"
AUDIT_REVERSE = "REVERSE_AMENDMENT"
AUDIT_CORRECTION = "BALANCE_CORRECTION"
AUDIT_COMMISSION_MONTH = "UPDATE_COMMISSION_MONTH"

AUDIT_ACTIONS = [
    (AUDIT_CREATE, "Create"),
    (AUDIT_UPDATE, "Update"),
    (AUDIT_APPROVE, "Approve Booking"),
    (AUDIT_DATE_CHANGE, "Date Change"),
    (AUDIT_CANCELLATION, "Create Cancellation"),
    (AUDIT_SETTLEMENT, "Settlement Payment"),
    (AUDIT_REFUND, "Refund Payment"),
    (AUDIT_VOID, "Void Booking"),
    (AUDIT_UNVOID, "Unvoid Booking"),
    (AUDIT_INVOICE, "Generate Invoice"),
    (AUDIT_WRITE_OFF, "Write Off"),
    (AUDIT_REVERSE, "Reverse Amendment"),
    (AUDIT_CORRECTION, "Balance Correction"),
    (AUDIT_COMMISSION_MONTH, "Update Commission Month"),
]
