import re
import random
import sqlite3
import hashlib
import logging
import threading
from typing import Dict, List, Optional, Any

from .errors import (
    IncorrectTransactionHashError,
    LedgerError,
    NodeOutdatedError,
    PoWInterruptedError,
)
from .ledger_api import LedgerGateway, ProofOfWork
from .pow import HashcashPoW

logger = logging.getLogger(__name__)

GENESIS_HASH = "9" * 64
_HASH_RE = re.compile(r"^[0-9a-f]{64}$")


class SQLiteLedger(LedgerGateway):
    """
    SQLite-backed local ledger: an append-only table of records, each one
    attached to two earlier records (trunk and branch) through proof of work.

    This version is made thread-safe by guarding all DB access with an RLock.
    Proof of work runs outside the lock so concurrent sends overlap.
    """

    def __init__(
        self,
        db_path: str = "ledgerstash.db",
        pow_engine: Optional[ProofOfWork] = None,
        min_weight_magnitude: int = 8,
        depth: int = 4,
        message_length: int = 2187,
    ):
        self.db_path = db_path
        self.pow_engine = pow_engine or HashcashPoW()
        self.min_weight_magnitude = min_weight_magnitude
        self.depth = max(1, depth)
        self.message_length = message_length
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        with self._lock:
            self.conn.execute("PRAGMA journal_mode=WAL;")
            self.conn.execute("PRAGMA synchronous=NORMAL;")

        self._init_tables()

    def _init_tables(self) -> None:
        """Initialize database tables."""
        with self._lock:
            cursor = self.conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    hash TEXT NOT NULL UNIQUE,
                    address TEXT NOT NULL,
                    tag TEXT NOT NULL,
                    message TEXT NOT NULL,
                    trunk_hash TEXT NOT NULL,
                    branch_hash TEXT NOT NULL,
                    nonce TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS addresses (
                    seed_digest TEXT PRIMARY KEY,
                    next_index INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            self.conn.commit()

    # ------------------------------------------------------------------

    def new_address(self, seed: str) -> str:
        """Derive the next unused address for seed."""
        seed_digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT next_index FROM addresses WHERE seed_digest = ?",
                (seed_digest,),
            )
            row = cursor.fetchone()
            index = row["next_index"] if row else 0
            cursor.execute(
                "INSERT OR REPLACE INTO addresses (seed_digest, next_index) VALUES (?, ?)",
                (seed_digest, index + 1),
            )
            self.conn.commit()

        return hashlib.sha256(f"{seed}:{index}".encode("utf-8")).hexdigest()

    def _get_transactions_to_approve(self) -> Dict[str, str]:
        """Pick trunk and branch among the latest `depth` records."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(
                "SELECT hash FROM records ORDER BY seq DESC LIMIT ?",
                (self.depth,),
            )
            tips = [row["hash"] for row in cursor.fetchall()]

        if not tips:
            return {"trunk_hash": GENESIS_HASH, "branch_hash": GENESIS_HASH}
        return {
            "trunk_hash": random.choice(tips),
            "branch_hash": random.choice(tips),
        }

    def _check_consistency(self, trunk_hash: str, branch_hash: str) -> None:
        with self._lock:
            cursor = self.conn.cursor()
            for tip in (trunk_hash, branch_hash):
                if tip == GENESIS_HASH:
                    continue
                cursor.execute("SELECT 1 FROM records WHERE hash = ?", (tip,))
                if cursor.fetchone() is None:
                    raise NodeOutdatedError(f"Tip {tip} failed consistency check")

    def send(self, seed: str, address: str, message: str, tag: str) -> Dict[str, str]:
        """Attach message to the ledger as a new record and broadcast it."""
        if len(message) > self.message_length:
            raise LedgerError(
                f"Message of {len(message)} characters exceeds record capacity {self.message_length}"
            )

        tips = self._get_transactions_to_approve()
        trunk_hash = tips["trunk_hash"]
        branch_hash = tips["branch_hash"]

        nonce = self.pow_engine.attach(
            message, self.min_weight_magnitude, trunk_hash, branch_hash
        )
        if not nonce:
            raise PoWInterruptedError("PoW failed!")

        self._check_consistency(trunk_hash, branch_hash)

        record_hash = hashlib.sha256(
            "|".join((address, tag, message, trunk_hash, branch_hash, nonce)).encode("utf-8")
        ).hexdigest()

        with self._lock:
            cursor = self.conn.cursor()
            try:
                cursor.execute(
                    """
                    INSERT INTO records
                    (hash, address, tag, message, trunk_hash, branch_hash, nonce)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (record_hash, address, tag, message, trunk_hash, branch_hash, nonce),
                )
                self.conn.commit()
            except sqlite3.IntegrityError as e:
                self.conn.rollback()
                raise LedgerError(f"Record {record_hash} already broadcast") from e

        logger.debug("Broadcast record %s (%d chars)", record_hash, len(message))
        return {
            "hash": record_hash,
            "trunk_hash": trunk_hash,
            "branch_hash": branch_hash,
        }

    def fetch_record_payload(self, record_hash: str) -> str:
        """Return the message stored under record_hash."""
        if not isinstance(record_hash, str) or not _HASH_RE.match(record_hash):
            raise IncorrectTransactionHashError(f"Invalid inputs provided: {record_hash!r}")

        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute("SELECT message FROM records WHERE hash = ?", (record_hash,))
            row = cursor.fetchone()

        if row is None:
            raise IncorrectTransactionHashError(f"Unknown record {record_hash}")
        return row["message"]

    # ------------------------------------------------------------------

    def count_records(self, tag: Optional[str] = None) -> int:
        with self._lock:
            cursor = self.conn.cursor()
            if tag is None:
                cursor.execute("SELECT COUNT(*) FROM records")
            else:
                cursor.execute("SELECT COUNT(*) FROM records WHERE tag = ?", (tag,))
            return int(cursor.fetchone()[0])

    def list_records(self, tag: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return records oldest-first, optionally filtered by tag."""
        with self._lock:
            cursor = self.conn.cursor()
            if tag is None:
                cursor.execute("SELECT * FROM records ORDER BY seq")
            else:
                cursor.execute(
                    "SELECT * FROM records WHERE tag = ? ORDER BY seq", (tag,)
                )
            return [dict(row) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the DB connection."""
        with self._lock:
            self.conn.close()
