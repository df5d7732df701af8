"""
Account Store Module

Provides the abstract account store and implementations for in-memory
(testing), SQLite (default persistence) and PostgreSQL. Every backend maps
missing rows to AccountNotFound and driver failures to StorageError.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Set, Union
from datetime import datetime, timezone
import logging
import sqlite3
import threading
from pathlib import Path

from .accounts import Account
from .errors import AccountNotFound, AccountNumberTaken, StorageError

logger = logging.getLogger("bank_api.storage")

# SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


class AccountStore(ABC):
    """Abstract interface for account storage backends"""

    @abstractmethod
    def init(self) -> None:
        """Create the account table if it does not exist"""
        pass

    @abstractmethod
    def create_account(self, account: Account) -> Account:
        """Persist a new account and assign its id"""
        pass

    @abstractmethod
    def delete_account(self, account_id: int) -> None:
        """Delete an account by id; its number stays reserved"""
        pass

    @abstractmethod
    def update_account(self, account: Account) -> None:
        """Persist name and balance changes of an existing account"""
        pass

    @abstractmethod
    def get_accounts(self) -> List[Account]:
        """Load all accounts ordered by id"""
        pass

    @abstractmethod
    def get_account_by_id(self, account_id: int) -> Account:
        """Load an account by its store id"""
        pass

    @abstractmethod
    def get_account_by_number(self, number: int) -> Account:
        """Load an account by its account number"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass


class InMemoryAccountStore(AccountStore):
    """In-memory store implementation for testing"""

    def __init__(self):
        self._rows: Dict[int, Dict[str, Any]] = {}
        # Numbers of deleted accounts stay reserved
        self._retired_numbers: Set[int] = set()
        self._next_id = 1
        self._lock = threading.RLock()

    def init(self) -> None:
        pass

    def create_account(self, account: Account) -> Account:
        with self._lock:
            if (account.number in self._retired_numbers or
                    any(row["number"] == account.number for row in self._rows.values())):
                raise AccountNumberTaken(account.number)
            account.id = self._next_id
            self._next_id += 1
            # Store a copy to prevent external mutation
            self._rows[account.id] = account.to_record()
            return account

    def delete_account(self, account_id: int) -> None:
        with self._lock:
            row = self._rows.pop(account_id, None)
            if row is None:
                raise AccountNotFound("id", account_id)
            self._retired_numbers.add(row["number"])

    def update_account(self, account: Account) -> None:
        with self._lock:
            row = self._rows.get(account.id)
            if row is None:
                raise AccountNotFound("id", account.id)
            row["first_name"] = account.first_name
            row["last_name"] = account.last_name
            row["balance"] = account.balance

    def get_accounts(self) -> List[Account]:
        with self._lock:
            return [Account.from_record(self._rows[key]) for key in sorted(self._rows)]

    def get_account_by_id(self, account_id: int) -> Account:
        with self._lock:
            row = self._rows.get(account_id)
            if row is None:
                raise AccountNotFound("id", account_id)
            return Account.from_record(row)

    def get_account_by_number(self, number: int) -> Account:
        with self._lock:
            for row in self._rows.values():
                if row["number"] == number:
                    return Account.from_record(row)
            raise AccountNotFound("number", number)

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteAccountStore(AccountStore):
    """SQLite store implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        try:
            self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open sqlite database {self.db_path}: {e}") from e
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()

    def _execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        if self._connection is None:
            raise StorageError("sqlite store is closed")
        try:
            cursor = self._connection.execute(query, params)
            self._connection.commit()
            return cursor
        except (sqlite3.Error, OverflowError) as e:
            # OverflowError: integer parameter outside SQLite's 64-bit range
            self._connection.rollback()
            raise StorageError(str(e)) from e

    def init(self) -> None:
        # Deleted rows keep their number so it is never handed out again
        with self._lock:
            self._execute("""
                CREATE TABLE IF NOT EXISTS account (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    number INTEGER NOT NULL UNIQUE,
                    encrypted_password TEXT NOT NULL,
                    balance INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    deleted_at TEXT
                )
            """)
            columns = {row["name"] for row in self._execute("PRAGMA table_info(account)").fetchall()}
            if "deleted_at" not in columns:
                logger.info("Adding deleted_at column to account table")
                self._execute("ALTER TABLE account ADD COLUMN deleted_at TEXT")

    def create_account(self, account: Account) -> Account:
        with self._lock:
            try:
                cursor = self._execute("""
                    INSERT INTO account
                    (first_name, last_name, number, encrypted_password, balance, created_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    account.first_name,
                    account.last_name,
                    account.number,
                    account.encrypted_password,
                    account.balance,
                    account.created_at.isoformat(),
                ))
            except StorageError as e:
                if isinstance(e.__cause__, sqlite3.IntegrityError) and "account.number" in str(e):
                    raise AccountNumberTaken(account.number) from e
                raise
            account.id = cursor.lastrowid
            logger.debug("Inserted account id=%s number=%s", account.id, account.number)
            return account

    def delete_account(self, account_id: int) -> None:
        with self._lock:
            cursor = self._execute(
                "UPDATE account SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (datetime.now(timezone.utc).isoformat(), account_id)
            )
            if cursor.rowcount == 0:
                raise AccountNotFound("id", account_id)

    def update_account(self, account: Account) -> None:
        with self._lock:
            cursor = self._execute("""
                UPDATE account SET first_name = ?, last_name = ?, balance = ?
                WHERE id = ? AND deleted_at IS NULL
            """, (account.first_name, account.last_name, account.balance, account.id))
            if cursor.rowcount == 0:
                raise AccountNotFound("id", account.id)

    def get_accounts(self) -> List[Account]:
        with self._lock:
            cursor = self._execute("SELECT * FROM account WHERE deleted_at IS NULL ORDER BY id")
            return [Account.from_record(dict(row)) for row in cursor.fetchall()]

    def _get_one(self, column: str, value: int) -> Account:
        with self._lock:
            cursor = self._execute(
                f"SELECT * FROM account WHERE {column} = ? AND deleted_at IS NULL", (value,)
            )
            row = cursor.fetchone()
            if row is None:
                raise AccountNotFound(column, value)
            return Account.from_record(dict(row))

    def get_account_by_id(self, account_id: int) -> Account:
        return self._get_one("id", account_id)

    def get_account_by_number(self, number: int) -> Account:
        return self._get_one("number", number)

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLAccountStore(AccountStore):
    """PostgreSQL store backend"""

    def __init__(self, connection_string: str):
        try:
            import psycopg2
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._connection = None
        self._lock = threading.RLock()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            try:
                self._connection = self.psycopg2.connect(
                    self.connection_string,
                    cursor_factory=self.extras.RealDictCursor
                )
            except self.psycopg2.Error as e:
                raise StorageError(f"cannot connect to postgres: {e}") from e

    def _rollback(self) -> None:
        try:
            self._connection.rollback()
        except self.psycopg2.Error as e:
            # A dropped connection cannot roll back; the next query reconnects
            logger.warning("PostgreSQL rollback failed: %s", e)

    def _execute(self, query: str, params: tuple = (), fetch: Optional[str] = None):
        with self._lock:
            if self._connection is None:
                raise StorageError("postgres store is closed")
            if self._connection.closed:
                logger.info("PostgreSQL connection lost, reconnecting")
                self._connect()

            try:
                cursor = self._connection.cursor()
            except self.psycopg2.Error as e:
                raise StorageError(str(e)) from e

            try:
                cursor.execute(query, params)
                if fetch == "one":
                    result = cursor.fetchone()
                elif fetch == "all":
                    result = cursor.fetchall()
                else:
                    result = cursor.rowcount
                self._connection.commit()
                return result
            except self.psycopg2.Error as e:
                self._rollback()
                raise StorageError(str(e)) from e
            finally:
                cursor.close()

    def init(self) -> None:
        with self._lock:
            self._execute("""
                CREATE TABLE IF NOT EXISTS account (
                    id SERIAL PRIMARY KEY,
                    first_name VARCHAR(100) NOT NULL,
                    last_name VARCHAR(100) NOT NULL,
                    number BIGINT NOT NULL UNIQUE,
                    encrypted_password TEXT NOT NULL,
                    balance BIGINT NOT NULL DEFAULT 0,
                    created_at TIMESTAMPTZ NOT NULL,
                    deleted_at TIMESTAMPTZ
                )
            """)
            self._execute("ALTER TABLE account ADD COLUMN IF NOT EXISTS deleted_at TIMESTAMPTZ")

    def create_account(self, account: Account) -> Account:
        with self._lock:
            try:
                row = self._execute("""
                    INSERT INTO account
                    (first_name, last_name, number, encrypted_password, balance, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING id
                """, (
                    account.first_name,
                    account.last_name,
                    account.number,
                    account.encrypted_password,
                    account.balance,
                    account.created_at,
                ), fetch="one")
            except StorageError as e:
                if getattr(e.__cause__, "pgcode", None) == UNIQUE_VIOLATION:
                    raise AccountNumberTaken(account.number) from e
                raise
            account.id = row["id"]
            return account

    def delete_account(self, account_id: int) -> None:
        with self._lock:
            deleted = self._execute(
                "UPDATE account SET deleted_at = now() WHERE id = %s AND deleted_at IS NULL",
                (account_id,)
            )
            if deleted == 0:
                raise AccountNotFound("id", account_id)

    def update_account(self, account: Account) -> None:
        with self._lock:
            updated = self._execute("""
                UPDATE account SET first_name = %s, last_name = %s, balance = %s
                WHERE id = %s AND deleted_at IS NULL
            """, (account.first_name, account.last_name, account.balance, account.id))
            if updated == 0:
                raise AccountNotFound("id", account.id)

    def get_accounts(self) -> List[Account]:
        with self._lock:
            rows = self._execute("SELECT * FROM account WHERE deleted_at IS NULL ORDER BY id", fetch="all")
            return [self._from_row(row) for row in rows]

    def _get_one(self, column: str, value: int) -> Account:
        with self._lock:
            row = self._execute(
                f"SELECT * FROM account WHERE {column} = %s AND deleted_at IS NULL",
                (value,), fetch="one"
            )
            if row is None:
                raise AccountNotFound(column, value)
            return self._from_row(row)

    def _from_row(self, row) -> Account:
        data = dict(row)
        if isinstance(data.get("created_at"), datetime):
            data["created_at"] = data["created_at"].isoformat()
        return Account.from_record(data)

    def get_account_by_id(self, account_id: int) -> Account:
        return self._get_one("id", account_id)

    def get_account_by_number(self, number: int) -> Account:
        return self._get_one("number", number)

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_account_store(database_url: str) -> AccountStore:
    """
    Select a store backend from a database URL.

    ``memory://`` gives an in-memory store, ``sqlite:///path`` (or
    ``sqlite://`` for an in-memory database) a SQLite store, and
    ``postgresql://`` / ``postgres://`` a PostgreSQL store.
    """
    if database_url.startswith("memory://"):
        return InMemoryAccountStore()

    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteAccountStore(path or ":memory:")

    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLAccountStore(database_url)

    raise ValueError(f"Unsupported database URL: {database_url}")
