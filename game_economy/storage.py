"""
Account Store Module

Provides the abstract ledger store interface and two implementations:
SQLite (single embedded connection, serialized by a lock) and PostgreSQL
(pooled connections, database transactions). Balances are non-negative
integers, one column per currency tier.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union
import logging
import sqlite3
import threading
import time

from .config import EconomyConfig, get_config
from .currency import AccountKey, CurrencyType, resolve_currency
from .logging_config import log_action

logger = logging.getLogger(__name__)

TABLE_NAME = "economy_accounts"

# Largest balance or amount either engine can hold in a signed 64-bit column
MAX_AMOUNT = 2 ** 63 - 1

CurrencyArg = Union[CurrencyType, str]


class LedgerResult(Enum):
    """Outcome of a ledger mutation. Only SUCCESS is truthy."""
    SUCCESS = "success"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_AMOUNT = "invalid_amount"
    BALANCE_LIMIT = "balance_limit"  # credit would push a balance past MAX_AMOUNT
    STORAGE_ERROR = "storage_error"

    @property
    def ok(self) -> bool:
        return self is LedgerResult.SUCCESS

    def __bool__(self) -> bool:
        return self.ok


class StorageUnavailableError(RuntimeError):
    """Raised inside a store when no connection could be obtained in time"""
    pass


def _check_amount(amount: int, allow_zero: bool) -> bool:
    """Validate an amount; False means the caller should report INVALID_AMOUNT"""
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise TypeError(f"amount must be an int, got {type(amount).__name__}")
    if amount > MAX_AMOUNT:
        return False
    return amount >= 0 if allow_zero else amount > 0


class AccountStore(ABC):
    """Abstract interface for ledger backends. All calls block."""

    @abstractmethod
    def get(self, account_id: str, account_type: str, currency: CurrencyArg) -> Optional[int]:
        """
        Return one balance, creating a zero-balance account first if needed.

        Returns None when the backing engine fails, so a storage outage is
        never mistaken for an empty wallet.
        """
        pass

    @abstractmethod
    def set(self, account_id: str, account_type: str, currency: CurrencyArg,
            amount: int) -> LedgerResult:
        """Overwrite one balance; negative targets are rejected"""
        pass

    @abstractmethod
    def add(self, account_id: str, account_type: str, currency: CurrencyArg,
            amount: int) -> LedgerResult:
        """Atomically increment one balance; BALANCE_LIMIT if it would exceed MAX_AMOUNT"""
        pass

    @abstractmethod
    def subtract(self, account_id: str, account_type: str, currency: CurrencyArg,
                 amount: int) -> LedgerResult:
        """Atomically decrement one balance if it covers the amount"""
        pass

    @abstractmethod
    def transfer(self, from_id: str, from_type: str, to_id: str, to_type: str,
                 currency: CurrencyArg, amount: int) -> LedgerResult:
        """Move funds between two accounts, all or nothing; BALANCE_LIMIT if the recipient is full"""
        pass

    @abstractmethod
    def ensure_exists(self, account_id: str, account_type: str) -> LedgerResult:
        """Create a zero-balance account if absent"""
        pass

    @abstractmethod
    def exists(self, account_id: str, account_type: str) -> Optional[bool]:
        """Check for an account without creating it; None on storage failure"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release all connections"""
        pass

    def get_all(self, account_id: str, account_type: str) -> Optional[Dict[CurrencyType, int]]:
        """Return every tier's balance, or None if any read failed"""
        balances = {}
        for currency in CurrencyType:
            balance = self.get(account_id, account_type, currency)
            if balance is None:
                return None
            balances[currency] = balance
        return balances

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class SQLiteAccountStore(AccountStore):
    """
    SQLite ledger on a single connection.

    SQLite cannot safely run concurrent statements on one connection, so
    every operation holds the store lock for its whole read-decide-write
    sequence. The engine does not enforce signedness; balances are kept
    non-negative by the conditional updates below.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # Autocommit mode: single statements commit on their own, transfers
        # open an explicit transaction.
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._lock = threading.RLock()

        with self._lock:
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._create_table()

        logger.info(f"SQLite account store opened at {self.db_path}")

    def _create_table(self) -> None:
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                account_uuid TEXT NOT NULL,
                account_type TEXT NOT NULL,
                coin INTEGER NOT NULL DEFAULT 0,
                copper INTEGER NOT NULL DEFAULT 0,
                silver INTEGER NOT NULL DEFAULT 0,
                gold INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (account_uuid, account_type)
            )
        """)

    def _insert_if_absent(self, key: AccountKey) -> None:
        self._connection.execute(f"""
            INSERT OR IGNORE INTO {TABLE_NAME} (account_uuid, account_type)
            VALUES (?, ?)
        """, (key.account_id, key.account_type))

    def _storage_failure(self, action: str, key: AccountKey) -> None:
        logger.error(f"SQLite {action} failed for {key}", exc_info=True)

    def get(self, account_id: str, account_type: str, currency: CurrencyArg) -> Optional[int]:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        with self._lock:
            try:
                self._insert_if_absent(key)
                row = self._connection.execute(f"""
                    SELECT {currency.column} FROM {TABLE_NAME}
                    WHERE account_uuid = ? AND account_type = ?
                """, (key.account_id, key.account_type)).fetchone()
            except sqlite3.Error:
                self._storage_failure("get", key)
                return None
        return int(row[0]) if row else 0

    def set(self, account_id: str, account_type: str, currency: CurrencyArg,
            amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        if not _check_amount(amount, allow_zero=True):
            return LedgerResult.INVALID_AMOUNT

        with self._lock:
            try:
                self._insert_if_absent(key)
                self._connection.execute(f"""
                    UPDATE {TABLE_NAME} SET {currency.column} = ?
                    WHERE account_uuid = ? AND account_type = ?
                """, (amount, key.account_id, key.account_type))
            except sqlite3.Error:
                self._storage_failure("set", key)
                return LedgerResult.STORAGE_ERROR

        log_action(logger, "debug", f"Set {currency.value} to {amount}",
                   action="set", resource=str(key))
        return LedgerResult.SUCCESS

    def add(self, account_id: str, account_type: str, currency: CurrencyArg,
            amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        if not _check_amount(amount, allow_zero=False):
            return LedgerResult.INVALID_AMOUNT

        col = currency.column
        with self._lock:
            try:
                self._insert_if_absent(key)
                cursor = self._connection.execute(f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} + ?
                    WHERE account_uuid = ? AND account_type = ? AND {col} <= ?
                """, (amount, key.account_id, key.account_type, MAX_AMOUNT - amount))
            except sqlite3.Error:
                self._storage_failure("add", key)
                return LedgerResult.STORAGE_ERROR

        if cursor.rowcount == 0:
            return LedgerResult.BALANCE_LIMIT

        log_action(logger, "debug", f"Added {amount} {col}",
                   action="add", resource=str(key))
        return LedgerResult.SUCCESS

    def subtract(self, account_id: str, account_type: str, currency: CurrencyArg,
                 amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        if not _check_amount(amount, allow_zero=False):
            return LedgerResult.INVALID_AMOUNT

        col = currency.column
        with self._lock:
            try:
                self._insert_if_absent(key)
                cursor = self._connection.execute(f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} - ?
                    WHERE account_uuid = ? AND account_type = ? AND {col} >= ?
                """, (amount, key.account_id, key.account_type, amount))
            except sqlite3.Error:
                self._storage_failure("subtract", key)
                return LedgerResult.STORAGE_ERROR

        if cursor.rowcount == 0:
            return LedgerResult.INSUFFICIENT_FUNDS

        log_action(logger, "debug", f"Subtracted {amount} {col}",
                   action="subtract", resource=str(key))
        return LedgerResult.SUCCESS

    def transfer(self, from_id: str, from_type: str, to_id: str, to_type: str,
                 currency: CurrencyArg, amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        source = AccountKey(from_id, from_type)
        target = AccountKey(to_id, to_type)
        if not _check_amount(amount, allow_zero=False):
            return LedgerResult.INVALID_AMOUNT

        col = currency.column
        with self._lock:
            try:
                self._connection.execute("BEGIN IMMEDIATE")
                self._insert_if_absent(source)
                self._insert_if_absent(target)

                withdrawn = self._connection.execute(f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} - ?
                    WHERE account_uuid = ? AND account_type = ? AND {col} >= ?
                """, (amount, source.account_id, source.account_type, amount))
                if withdrawn.rowcount == 0:
                    self._connection.execute("ROLLBACK")
                    return LedgerResult.INSUFFICIENT_FUNDS

                deposited = self._connection.execute(f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} + ?
                    WHERE account_uuid = ? AND account_type = ? AND {col} <= ?
                """, (amount, target.account_id, target.account_type, MAX_AMOUNT - amount))
                if deposited.rowcount == 0:
                    self._connection.execute("ROLLBACK")
                    return LedgerResult.BALANCE_LIMIT

                self._connection.execute("COMMIT")
            except sqlite3.Error:
                self._rollback_quietly()
                self._storage_failure("transfer", source)
                return LedgerResult.STORAGE_ERROR

        log_action(logger, "info", f"Transferred {amount} {col}",
                   action="transfer", resource=str(source),
                   extra={"to": str(target), "currency": col, "amount": amount})
        return LedgerResult.SUCCESS

    def _rollback_quietly(self) -> None:
        if not self._connection.in_transaction:
            return
        try:
            self._connection.execute("ROLLBACK")
        except sqlite3.Error:
            logger.error("SQLite rollback failed", exc_info=True)

    def ensure_exists(self, account_id: str, account_type: str) -> LedgerResult:
        key = AccountKey(account_id, account_type)
        with self._lock:
            try:
                self._insert_if_absent(key)
            except sqlite3.Error:
                self._storage_failure("ensure_exists", key)
                return LedgerResult.STORAGE_ERROR
        return LedgerResult.SUCCESS

    def exists(self, account_id: str, account_type: str) -> Optional[bool]:
        key = AccountKey(account_id, account_type)
        with self._lock:
            try:
                row = self._connection.execute(f"""
                    SELECT 1 FROM {TABLE_NAME}
                    WHERE account_uuid = ? AND account_type = ? LIMIT 1
                """, (key.account_id, key.account_type)).fetchone()
            except sqlite3.Error:
                self._storage_failure("exists", key)
                return None
        return row is not None

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info(f"SQLite account store closed ({self.db_path})")


class PostgreSQLAccountStore(AccountStore):
    """
    PostgreSQL ledger behind a thread-safe connection pool.

    Every operation borrows one connection for its own duration. Subtract is
    a single conditional UPDATE; transfer runs withdrawal and deposit in one
    transaction and rolls back on any failure.
    """

    def __init__(self, dsn: Optional[str] = None, pool_size: int = 10, min_idle: int = 2,
                 connection_timeout: float = 30.0, leak_detection_threshold: float = 10.0,
                 pool: Any = None, **connect_kwargs):
        try:
            import psycopg2
            import psycopg2.pool
            self.psycopg2 = psycopg2
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")

        self.pool_size = pool_size
        self.min_idle = min(min_idle, pool_size)
        self.connection_timeout = connection_timeout
        self.leak_detection_threshold = leak_detection_threshold

        if pool is None:
            args = (dsn,) if dsn else ()
            pool = psycopg2.pool.ThreadedConnectionPool(
                self.min_idle, pool_size, *args, **connect_kwargs
            )
        self._pool = pool

        # ThreadedConnectionPool fails fast when exhausted; the semaphore makes
        # borrowers wait up to connection_timeout for a free slot instead.
        self._slots = threading.BoundedSemaphore(pool_size)
        self._closed = False

        try:
            self._create_table()
        except Exception:
            self._closed = True
            self._pool.closeall()
            raise

        logger.info(f"PostgreSQL account store ready (pool_size={pool_size}, min_idle={self.min_idle})")

    @contextmanager
    def _connection(self):
        """Borrow a pooled connection for the duration of one operation"""
        if not self._slots.acquire(timeout=self.connection_timeout):
            raise StorageUnavailableError(
                f"No pooled connection available within {self.connection_timeout}s"
            )
        try:
            conn = self._pool.getconn()
        except Exception:
            self._slots.release()
            raise

        borrowed_at = time.monotonic()
        try:
            yield conn
        except Exception:
            if not conn.closed:
                try:
                    conn.rollback()
                except self.psycopg2.Error:
                    logger.error("PostgreSQL rollback failed", exc_info=True)
            raise
        finally:
            held = time.monotonic() - borrowed_at
            if self.leak_detection_threshold and held > self.leak_detection_threshold:
                logger.warning(
                    f"Connection held for {held:.1f}s (threshold {self.leak_detection_threshold}s); possible leak"
                )
            try:
                self._pool.putconn(conn, close=bool(conn.closed))
            finally:
                self._slots.release()

    def _execute(self, conn, sql: str, params: tuple = ()) -> int:
        """Run one statement and return its rowcount"""
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.rowcount
        finally:
            cursor.close()

    def _fetchone(self, conn, sql: str, params: tuple = ()):
        cursor = conn.cursor()
        try:
            cursor.execute(sql, params)
            return cursor.fetchone()
        finally:
            cursor.close()

    def _create_table(self) -> None:
        with self._connection() as conn:
            self._execute(conn, f"""
                CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                    account_uuid VARCHAR(36) NOT NULL,
                    account_type VARCHAR(32) NOT NULL,
                    coin BIGINT NOT NULL DEFAULT 0 CHECK (coin >= 0),
                    copper BIGINT NOT NULL DEFAULT 0 CHECK (copper >= 0),
                    silver BIGINT NOT NULL DEFAULT 0 CHECK (silver >= 0),
                    gold BIGINT NOT NULL DEFAULT 0 CHECK (gold >= 0),
                    PRIMARY KEY (account_uuid, account_type)
                )
            """)
            conn.commit()

    def _insert_if_absent(self, conn, key: AccountKey) -> None:
        self._execute(conn, f"""
            INSERT INTO {TABLE_NAME} (account_uuid, account_type)
            VALUES (%s, %s)
            ON CONFLICT (account_uuid, account_type) DO NOTHING
        """, (key.account_id, key.account_type))

    def _failures(self) -> tuple:
        return (self.psycopg2.Error, StorageUnavailableError)

    def _storage_failure(self, action: str, key: AccountKey) -> None:
        logger.error(f"PostgreSQL {action} failed for {key}", exc_info=True)

    def get(self, account_id: str, account_type: str, currency: CurrencyArg) -> Optional[int]:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        try:
            with self._connection() as conn:
                self._insert_if_absent(conn, key)
                row = self._fetchone(conn, f"""
                    SELECT {currency.column} FROM {TABLE_NAME}
                    WHERE account_uuid = %s AND account_type = %s
                """, (key.account_id, key.account_type))
                conn.commit()
        except self._failures():
            self._storage_failure("get", key)
            return None
        return int(row[0]) if row else 0

    def set(self, account_id: str, account_type: str, currency: CurrencyArg,
            amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        if not _check_amount(amount, allow_zero=True):
            return LedgerResult.INVALID_AMOUNT

        try:
            with self._connection() as conn:
                self._insert_if_absent(conn, key)
                self._execute(conn, f"""
                    UPDATE {TABLE_NAME} SET {currency.column} = %s
                    WHERE account_uuid = %s AND account_type = %s
                """, (amount, key.account_id, key.account_type))
                conn.commit()
        except self._failures():
            self._storage_failure("set", key)
            return LedgerResult.STORAGE_ERROR

        log_action(logger, "debug", f"Set {currency.value} to {amount}",
                   action="set", resource=str(key))
        return LedgerResult.SUCCESS

    def add(self, account_id: str, account_type: str, currency: CurrencyArg,
            amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        if not _check_amount(amount, allow_zero=False):
            return LedgerResult.INVALID_AMOUNT

        col = currency.column
        try:
            with self._connection() as conn:
                self._insert_if_absent(conn, key)
                updated = self._execute(conn, f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} + %s
                    WHERE account_uuid = %s AND account_type = %s AND {col} <= %s
                """, (amount, key.account_id, key.account_type, MAX_AMOUNT - amount))
                conn.commit()
        except self._failures():
            self._storage_failure("add", key)
            return LedgerResult.STORAGE_ERROR

        if updated == 0:
            return LedgerResult.BALANCE_LIMIT

        log_action(logger, "debug", f"Added {amount} {col}",
                   action="add", resource=str(key))
        return LedgerResult.SUCCESS

    def subtract(self, account_id: str, account_type: str, currency: CurrencyArg,
                 amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        key = AccountKey(account_id, account_type)
        if not _check_amount(amount, allow_zero=False):
            return LedgerResult.INVALID_AMOUNT

        col = currency.column
        try:
            with self._connection() as conn:
                self._insert_if_absent(conn, key)
                updated = self._execute(conn, f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} - %s
                    WHERE account_uuid = %s AND account_type = %s AND {col} >= %s
                """, (amount, key.account_id, key.account_type, amount))
                conn.commit()
        except self._failures():
            self._storage_failure("subtract", key)
            return LedgerResult.STORAGE_ERROR

        if updated == 0:
            return LedgerResult.INSUFFICIENT_FUNDS

        log_action(logger, "debug", f"Subtracted {amount} {col}",
                   action="subtract", resource=str(key))
        return LedgerResult.SUCCESS

    def transfer(self, from_id: str, from_type: str, to_id: str, to_type: str,
                 currency: CurrencyArg, amount: int) -> LedgerResult:
        currency = resolve_currency(currency)
        source = AccountKey(from_id, from_type)
        target = AccountKey(to_id, to_type)
        if not _check_amount(amount, allow_zero=False):
            return LedgerResult.INVALID_AMOUNT

        col = currency.column
        try:
            with self._connection() as conn:
                conn.autocommit = False
                self._insert_if_absent(conn, source)
                self._insert_if_absent(conn, target)

                # Lock both rows in key order so opposing transfers cannot deadlock
                for key in sorted({source, target}, key=lambda k: (k.account_id, k.account_type)):
                    self._fetchone(conn, f"""
                        SELECT 1 FROM {TABLE_NAME}
                        WHERE account_uuid = %s AND account_type = %s FOR UPDATE
                    """, (key.account_id, key.account_type))

                withdrawn = self._execute(conn, f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} - %s
                    WHERE account_uuid = %s AND account_type = %s AND {col} >= %s
                """, (amount, source.account_id, source.account_type, amount))
                if withdrawn == 0:
                    conn.rollback()
                    return LedgerResult.INSUFFICIENT_FUNDS

                deposited = self._execute(conn, f"""
                    UPDATE {TABLE_NAME} SET {col} = {col} + %s
                    WHERE account_uuid = %s AND account_type = %s AND {col} <= %s
                """, (amount, target.account_id, target.account_type, MAX_AMOUNT - amount))
                if deposited == 0:
                    conn.rollback()
                    return LedgerResult.BALANCE_LIMIT

                conn.commit()
        except self._failures():
            self._storage_failure("transfer", source)
            return LedgerResult.STORAGE_ERROR

        log_action(logger, "info", f"Transferred {amount} {col}",
                   action="transfer", resource=str(source),
                   extra={"to": str(target), "currency": col, "amount": amount})
        return LedgerResult.SUCCESS

    def ensure_exists(self, account_id: str, account_type: str) -> LedgerResult:
        key = AccountKey(account_id, account_type)
        try:
            with self._connection() as conn:
                self._insert_if_absent(conn, key)
                conn.commit()
        except self._failures():
            self._storage_failure("ensure_exists", key)
            return LedgerResult.STORAGE_ERROR
        return LedgerResult.SUCCESS

    def exists(self, account_id: str, account_type: str) -> Optional[bool]:
        key = AccountKey(account_id, account_type)
        try:
            with self._connection() as conn:
                row = self._fetchone(conn, f"""
                    SELECT 1 FROM {TABLE_NAME}
                    WHERE account_uuid = %s AND account_type = %s LIMIT 1
                """, (key.account_id, key.account_type))
                conn.commit()
        except self._failures():
            self._storage_failure("exists", key)
            return None
        return row is not None

    def close(self) -> None:
        """Close every pooled connection"""
        if self._closed:
            return
        self._closed = True
        self._pool.closeall()
        logger.info("PostgreSQL account store closed")


def create_account_store(config: Optional[EconomyConfig] = None) -> AccountStore:
    """Build the store selected by db_type; an unset type means SQLite"""
    if config is None:
        config = get_config()

    db_type = (config.db_type or "sqlite").strip().lower()

    if db_type == "sqlite":
        return SQLiteAccountStore(config.resolved_sqlite_path)

    if db_type in ("postgresql", "postgres"):
        return PostgreSQLAccountStore(
            pool_size=config.db_pool_size,
            min_idle=config.db_min_idle,
            connection_timeout=config.db_connection_timeout,
            leak_detection_threshold=config.db_leak_detection_threshold,
            **config.postgresql_connect_kwargs
        )

    if db_type == "mysql":
        raise ValueError(
            "db_type 'mysql' is not supported: the pooled backend is PostgreSQL. "
            "Set db_type to 'postgresql' and point the GAME_ECONOMY_DB_* settings at a PostgreSQL server"
        )

    raise ValueError(f"Unsupported db_type '{config.db_type}'. Expected 'sqlite' or 'postgresql'")
