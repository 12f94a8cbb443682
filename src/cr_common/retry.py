"""Retry policy for ledger calls that failed with LedgerUnavailableError.

Only the retryable storage failure is retried; business errors propagate on
the first attempt. Callers decide whether a retry is safe for them.
"""

import logging

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import settings
from src.cr_common.errors import LedgerUnavailableError

logger = logging.getLogger(__name__)


def ledger_retrying(attempts: int | None = None) -> AsyncRetrying:
    return AsyncRetrying(
        retry=retry_if_exception_type(LedgerUnavailableError),
        stop=stop_after_attempt(attempts or settings.LEDGER_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, max=settings.LEDGER_RETRY_MAX_WAIT_SECONDS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
