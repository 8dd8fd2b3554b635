"""
Async Dispatch Module

Wraps a blocking AccountStore behind an injected executor so that code
running on an asyncio event loop (command handlers, event listeners) can
issue ledger operations without stalling the loop. Every call is submitted
to the executor immediately and returns an asyncio future.
"""

from concurrent.futures import Executor
from typing import Any, Callable, Dict, Optional, Set, Union
import asyncio
import functools
import logging

from .currency import DEFAULT_CURRENCY, CurrencyType, resolve_currency
from .storage import AccountStore, LedgerResult

logger = logging.getLogger(__name__)

CurrencyArg = Union[CurrencyType, str]


class EconomyProvider:
    """
    Async facade over an AccountStore.

    The executor is treated as an opaque scheduling primitive: a thread
    pool, a process-wide worker pool owned by the host, or None for the
    running loop's default executor. Methods must be called from inside a
    running event loop; they never block the calling thread.
    """

    def __init__(self, store: AccountStore, executor: Optional[Executor] = None,
                 default_currency: CurrencyArg = DEFAULT_CURRENCY):
        self.store = store
        self.executor = executor
        self.default_currency = resolve_currency(default_currency)
        self._pending: Set[asyncio.Future] = set()
        self._closing = False
        self._closed = False

    @property
    def is_shut_down(self) -> bool:
        return self._closing

    def _submit(self, func: Callable[..., Any], *args) -> asyncio.Future:
        if self._closing:
            raise RuntimeError("EconomyProvider has been shut down")

        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self.executor, functools.partial(func, *args))
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)
        return future

    def _currency(self, currency: Optional[CurrencyArg]) -> CurrencyArg:
        return self.default_currency if currency is None else currency

    # --- Reads ---

    def get(self, account_id: str, account_type: str,
            currency: Optional[CurrencyArg] = None) -> "asyncio.Future[Optional[int]]":
        """Balance for one tier; resolves to None if storage failed"""
        return self._submit(self.store.get, account_id, account_type, self._currency(currency))

    def get_all(self, account_id: str, account_type: str) -> "asyncio.Future[Optional[Dict[CurrencyType, int]]]":
        return self._submit(self.store.get_all, account_id, account_type)

    def exists(self, account_id: str, account_type: str) -> "asyncio.Future[Optional[bool]]":
        return self._submit(self.store.exists, account_id, account_type)

    # --- Mutations ---

    def set(self, account_id: str, account_type: str, amount: int,
            currency: Optional[CurrencyArg] = None) -> "asyncio.Future[LedgerResult]":
        return self._submit(self.store.set, account_id, account_type, self._currency(currency), amount)

    def add(self, account_id: str, account_type: str, amount: int,
            currency: Optional[CurrencyArg] = None) -> "asyncio.Future[LedgerResult]":
        return self._submit(self.store.add, account_id, account_type, self._currency(currency), amount)

    def subtract(self, account_id: str, account_type: str, amount: int,
                 currency: Optional[CurrencyArg] = None) -> "asyncio.Future[LedgerResult]":
        return self._submit(self.store.subtract, account_id, account_type, self._currency(currency), amount)

    def transfer(self, from_id: str, from_type: str, to_id: str, to_type: str, amount: int,
                 currency: Optional[CurrencyArg] = None) -> "asyncio.Future[LedgerResult]":
        return self._submit(
            self.store.transfer, from_id, from_type, to_id, to_type, self._currency(currency), amount
        )

    def ensure_exists(self, account_id: str, account_type: str) -> "asyncio.Future[LedgerResult]":
        return self._submit(self.store.ensure_exists, account_id, account_type)

    # --- Lifecycle ---

    async def shutdown(self) -> None:
        """
        Stop accepting work, let already-submitted operations finish, then
        close the underlying store. Safe to call more than once.
        """
        self._closing = True
        if self._closed:
            return

        if self._pending:
            logger.info(f"Waiting for {len(self._pending)} pending ledger operation(s)")
            await asyncio.gather(*list(self._pending), return_exceptions=True)

        if self._closed:
            return
        self._closed = True
        self.store.close()
        logger.info("EconomyProvider shut down")


# Process-wide provider handle. Prefer passing the provider explicitly; this
# exists for hosts that can only look services up globally.
_provider: Optional[EconomyProvider] = None


def init_provider(store: AccountStore, executor: Optional[Executor] = None,
                  default_currency: CurrencyArg = DEFAULT_CURRENCY) -> EconomyProvider:
    """Create and register the process-wide provider"""
    global _provider
    if _provider is not None and not _provider.is_shut_down:
        raise RuntimeError("EconomyProvider is already initialized")
    _provider = EconomyProvider(store, executor, default_currency)
    return _provider


def get_provider() -> EconomyProvider:
    """Get the process-wide provider"""
    if _provider is None:
        raise RuntimeError("EconomyProvider is not initialized")
    return _provider


async def shutdown_provider() -> None:
    """Shut down and clear the process-wide provider"""
    global _provider
    provider, _provider = _provider, None
    if provider is not None:
        await provider.shutdown()
