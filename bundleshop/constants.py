# bundleshop/constants.py
from decimal import Decimal

# Paid amount may differ from the expected total by at most this much
TAMPER_TOLERANCE = Decimal("0.05")

# Internal service line -> supplier service id
SUPPLIER_SERVICE_MAP = {
    "MTN_UP2U": "datagod",
    "MTN_EXPRESS": "fastnet",
    "AT": "at",
    "TELECEL": "telecel",
}

# Supplier status vocabulary, grouped by family
SUPPLIER_FULFILLED_STATUSES = ("FULFILLED", "SUCCESS", "SUCCESSFUL", "COMPLETED", "DELIVERED")
SUPPLIER_FAILED_STATUSES = ("FAILED", "FAILURE", "CANCELLED", "CANCELED", "REFUNDED", "REJECTED")
SUPPLIER_PROCESSING_STATUSES = ("PENDING", "PROCESSING", "QUEUED", "IN_PROGRESS")

# Error fragments the supplier uses for an empty wallet
INSUFFICIENT_BALANCE_MARKERS = ("insufficient", "low balance", "not enough balance", "top up")

# Reference prefixes
SINGLE_REFERENCE_PREFIX = "PAY"
BULK_REFERENCE_PREFIX = "PAY_BULK"
AUTO_FULFILLED_PREFIX = "AUTO_FULFILLED"

# Payment webhook
PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"
PAYSTACK_SUCCESS_EVENT = "charge.success"

ORDERS_PAGE_SIZE = 20
