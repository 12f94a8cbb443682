"""Fixed credit cost per metered feature, and the ledger keys of usage entries.

Usage keys are namespaced so a client-chosen request_id can never collide
with the key of a payment or any other ledger event.
"""

from config.settings import settings
from src.cr_common.enums import Feature


def default_costs() -> dict[Feature, int]:
    return {
        Feature.OCR_EXTRACT: settings.CREDIT_COST_OCR_EXTRACT,
        Feature.TEXT_REFINE: settings.CREDIT_COST_TEXT_REFINE,
    }


def usage_key(request_id: str) -> str:
    """Idempotency key of the debit for one feature invocation."""
    return f"usage:{request_id}"


def refund_key(request_id: str) -> str:
    """Idempotency key of the refund that reverses the debit keyed by usage_key(request_id)."""
    return f"refund:{usage_key(request_id)}"
