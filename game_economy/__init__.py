"""
Game Economy Ledger

Per-account currency balances for a game server: never-negative balances,
atomic transfers, and SQLite or PostgreSQL persistence behind an async
dispatch layer.
"""

__version__ = "1.0.0"
