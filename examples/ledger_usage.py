#!/usr/bin/env python3
"""
Example: Driving the ledger from an asyncio host

Shows how a game server wires the ledger at startup, reacts to a player
joining, handles a few economy commands, and drains everything on shutdown.
Set GAME_ECONOMY_DB_TYPE=postgresql (plus the GAME_ECONOMY_DB_* settings) to
run the same flow against PostgreSQL.
"""

import asyncio
import os
import sys
import tempfile
from concurrent.futures import ThreadPoolExecutor

# Add the package root to the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from game_economy.bootstrap import bootstrap, teardown
from game_economy.config import EconomyConfig
from game_economy.currency import CurrencyType, InvalidCurrencyError, PLAYER
from game_economy.storage import LedgerResult


async def on_player_join(provider, player_id: str) -> None:
    result = await provider.ensure_exists(player_id, PLAYER)
    if not result:
        print(f"   Failed to ensure ledger record for {player_id}")


async def send_command(provider, sender: str, target: str, currency_name: str, amount: int) -> None:
    currency = CurrencyType.from_name(currency_name)
    if currency is None:
        print(f"   Unknown currency '{currency_name}'. Try one of: {', '.join(CurrencyType.names())}")
        return

    result = await provider.transfer(sender, PLAYER, target, PLAYER, amount, currency=currency)
    if result is LedgerResult.SUCCESS:
        print(f"   Sent {amount} {currency.value} to {target}")
    elif result is LedgerResult.INSUFFICIENT_FUNDS:
        print(f"   Insufficient funds to send {amount} {currency.value}")
    elif result is LedgerResult.BALANCE_LIMIT:
        print(f"   {target} cannot hold any more {currency.value}")
    elif result is LedgerResult.INVALID_AMOUNT:
        print("   Amount must be positive")
    else:
        print("   The economy is temporarily unavailable")


async def main():
    print("Game Economy Ledger - asyncio host example")
    print("=" * 50)

    with tempfile.TemporaryDirectory() as temp_dir:
        config = EconomyConfig(data_dir=temp_dir, log_format="text")
        executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="economy")

        print(f"\n1. Starting ledger ({config.db_type})")
        provider = bootstrap(config, executor)

        print("\n2. Players join")
        await asyncio.gather(on_player_join(provider, "alice"), on_player_join(provider, "bob"))
        await provider.add("alice", PLAYER, 100)

        print("\n3. Commands")
        await send_command(provider, "alice", "bob", "coin", 150)
        await send_command(provider, "alice", "bob", "coin", 60)
        await send_command(provider, "alice", "bob", "diamond", 1)

        try:
            await provider.get("alice", PLAYER, "diamond")
        except InvalidCurrencyError as e:
            print(f"   Rejected: {e}")

        print("\n4. Balances")
        for player in ("alice", "bob"):
            balances = await provider.get_all(player, PLAYER)
            print(f"   {player}: " + ", ".join(f"{c.value}={v}" for c, v in balances.items()))

        print("\n5. Shutdown")
        await teardown()
        executor.shutdown(wait=True)


if __name__ == "__main__":
    asyncio.run(main())
