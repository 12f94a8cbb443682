"""Global enums: must match DB CHECK constraints exactly.

See alembic/versions/003_create_ledger_entries.py and
005_create_pending_purchases.py.
"""

from enum import Enum


class EntryKind(str, Enum):
    PURCHASE = "purchase"
    DEBIT_USAGE = "debit_usage"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class Feature(str, Enum):
    """Metered features, stored as ledger external_ref on usage debits."""
    OCR_EXTRACT = "ocr_extract"
    TEXT_REFINE = "text_refine"


class PendingPurchaseStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class PaymentStatus(str, Enum):
    """Callback status as reported by the payment provider."""
    SUCCESS = "success"
    FAILURE = "failure"
    CANCEL = "cancel"
