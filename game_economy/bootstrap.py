"""
Startup and shutdown wiring for the ledger.

The host calls bootstrap() once when it starts and teardown() when it
stops; everything in between talks to the returned EconomyProvider.
"""

from concurrent.futures import Executor
from typing import Optional

from .async_storage import EconomyProvider, init_provider, shutdown_provider
from .config import EconomyConfig, get_config
from .logging_config import setup_logging
from .storage import create_account_store


def bootstrap(config: Optional[EconomyConfig] = None,
              executor: Optional[Executor] = None) -> EconomyProvider:
    """Configure logging, open the configured store and register the provider"""
    if config is None:
        config = get_config()

    logger = setup_logging(config.log_level, log_format=config.log_format)
    store = create_account_store(config)
    try:
        provider = init_provider(store, executor, config.default_currency)
    except Exception:
        store.close()
        raise

    logger.info(f"Economy ledger started with {config.db_type} backend")
    return provider


async def teardown() -> None:
    """Drain pending operations and release the store"""
    await shutdown_provider()
