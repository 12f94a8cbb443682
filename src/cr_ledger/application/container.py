"""Process-wide ledger singletons shared by every router.

One LedgerEngine per process: its per-account locks only serialize callers
that share the instance.
"""

from src.cr_common.redis_client import get_redis
from src.cr_ledger.application.engine import LedgerEngine
from src.cr_ledger.domain.cache import BalanceCache
from src.cr_ledger.domain.events import BalanceEventPublisher

balance_cache = BalanceCache(get_redis)
ledger_engine = LedgerEngine(
    cache=balance_cache,
    publisher=BalanceEventPublisher(get_redis),
)
