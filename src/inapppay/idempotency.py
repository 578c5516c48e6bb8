"""
Idempotency key management for purchase transactions.

Each transaction gets exactly one key, generated on first request and
returned unchanged on every later request for the same transaction id, so
every retry of a purchase carries the same key and the backend can
deduplicate it. With a persistent store the key also survives a restart
of the host process.
"""
from __future__ import annotations

import secrets
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .logging import get_logger

logger = get_logger(__name__)


def generate_idempotency_key() -> str:
    """128 random bits as 32 lowercase hex characters, safe for HTTP headers."""
    return secrets.token_hex(16)


def _path_from_dsn(dsn: str) -> Path:
    if not dsn.startswith("sqlite:///"):
        raise ValueError(f"unsupported DSN: {dsn}")
    path = Path(dsn.removeprefix("sqlite:///"))
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


class KeyStore(ABC):
    """Abstract interface for idempotency key storage."""

    @abstractmethod
    def get(self, transaction_id: str) -> Optional[str]:
        """Get the key stored for a transaction, if any."""

    @abstractmethod
    def put_if_absent(self, transaction_id: str, key: str) -> str:
        """
        Store ``key`` unless a key already exists for the transaction.

        Returns the key that is stored after the call, which is the
        existing one if another writer got there first.
        """

    @abstractmethod
    def delete(self, transaction_id: str) -> bool:
        """Delete the key for a transaction. Returns True if one existed."""

    def close(self) -> None:
        pass


class InMemoryKeyStore(KeyStore):
    """Process-local key store. Keys are lost when the process exits."""

    def __init__(self) -> None:
        self._keys: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, transaction_id: str) -> Optional[str]:
        with self._lock:
            return self._keys.get(transaction_id)

    def put_if_absent(self, transaction_id: str, key: str) -> str:
        with self._lock:
            return self._keys.setdefault(transaction_id, key)

    def delete(self, transaction_id: str) -> bool:
        with self._lock:
            return self._keys.pop(transaction_id, None) is not None

    def __len__(self) -> int:
        return len(self._keys)


class SQLiteKeyStore(KeyStore):
    """Key store backed by a local SQLite file (``sqlite:///path/to/keys.db``)."""

    def __init__(self, dsn: str):
        path = _path_from_dsn(dsn)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS idempotency_keys (
                transaction_id TEXT PRIMARY KEY,
                idempotency_key TEXT NOT NULL,
                created_at INTEGER NOT NULL
            )
            """
        )
        self._conn.commit()

    def get(self, transaction_id: str) -> Optional[str]:
        with self._lock:
            row = self._conn.execute(
                "SELECT idempotency_key FROM idempotency_keys WHERE transaction_id = ?",
                (transaction_id,),
            ).fetchone()
        return row[0] if row else None

    def put_if_absent(self, transaction_id: str, key: str) -> str:
        with self._lock:
            self._conn.execute(
                "INSERT OR IGNORE INTO idempotency_keys (transaction_id, idempotency_key, created_at) "
                "VALUES (?, ?, ?)",
                (transaction_id, key, int(time.time())),
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT idempotency_key FROM idempotency_keys WHERE transaction_id = ?",
                (transaction_id,),
            ).fetchone()
        return row[0]

    def delete(self, transaction_id: str) -> bool:
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM idempotency_keys WHERE transaction_id = ?",
                (transaction_id,),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_key_store(dsn: Optional[str] = None) -> KeyStore:
    """Pick a key store from configuration: in-memory unless a sqlite DSN is given."""
    if not dsn:
        return InMemoryKeyStore()
    return SQLiteKeyStore(dsn)


class IdempotencyKeyManager:
    """Issues one stable idempotency key per transaction id.

    Safe to call from any thread or task: the lookup and the insert happen
    under one lock, and the store itself keeps the first key written.
    """

    def __init__(self, store: Optional[KeyStore] = None):
        self.store = store if store is not None else InMemoryKeyStore()
        self._lock = threading.Lock()

    def key_for(self, transaction_id: str) -> str:
        """Return the key for ``transaction_id``, creating it on first use."""
        with self._lock:
            existing = self.store.get(transaction_id)
            if existing is not None:
                return existing
            key = self.store.put_if_absent(transaction_id, generate_idempotency_key())
        logger.debug("Issued idempotency key", transaction_id=transaction_id)
        return key

    def forget(self, transaction_id: str) -> bool:
        """Drop the key once the transaction's outcome has been acknowledged."""
        with self._lock:
            return self.store.delete(transaction_id)

    def close(self) -> None:
        self.store.close()


__all__ = [
    "KeyStore",
    "InMemoryKeyStore",
    "SQLiteKeyStore",
    "IdempotencyKeyManager",
    "create_key_store",
    "generate_idempotency_key",
]
