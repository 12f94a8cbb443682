"""Per-account ledger consistency check.

For every account:
  balance == SUM(amount) over its entries
  balance == balance_after of its latest entry (0 when it has none)
  version == account_version of its latest entry (0 when it has none)
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.cr_common.errors import AccountNotFoundError
from src.cr_ledger.domain.repository import LedgerRepositoryProtocol

logger = logging.getLogger(__name__)


async def verify_account(
    repo: LedgerRepositoryProtocol, db: AsyncSession, account_id: str
) -> list[str]:
    """Returns a list of violation strings, empty when the account is consistent."""
    account = await repo.get_account(db, account_id)
    if account is None:
        raise AccountNotFoundError(account_id)

    violations: list[str] = []
    total = await repo.sum_amounts(db, account_id)
    latest = await repo.latest_entry(db, account_id)
    last_balance = latest.balance_after if latest else 0
    last_version = latest.account_version if latest else 0

    if account.balance != total:
        violations.append(
            f"balance({account.balance}) != sum of entry amounts({total})"
        )
    if account.balance != last_balance:
        violations.append(
            f"balance({account.balance}) != latest balance_after({last_balance})"
        )
    if account.version != last_version:
        violations.append(
            f"version({account.version}) != latest account_version({last_version})"
        )
    for msg in violations:
        logger.error("ledger invariant violated for %s: %s", account_id, msg)
    return violations
