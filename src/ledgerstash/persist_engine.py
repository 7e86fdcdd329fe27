import time
import uuid
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Any

from .bundle import BundleProgress, Chunk, ChunkBundle, backoff_delay, drive_to_completion
from .chunk_table import build_chunk_table, chop_chunk_table, link_fragment
from .codec import chop_into_chunks
from .config import ChunkingConfig, RetryConfig
from .errors import LedgerError, RetriesExhaustedError
from .ledger_api import LedgerGateway
from .protocol import FIRST_FRAGMENT_KEYWORD, make_content_msg

logger = logging.getLogger(__name__)


@dataclass
class SaveState:
    entry_id: str
    total_chunks: int = 0
    bytes_sent: int = 0
    chunks_retried: int = 0
    fragments_persisted: int = 0
    fragment_retries: int = 0
    entry_hash: Optional[str] = None
    completed: bool = False
    started_at: float = 0.0
    finished_at: float = 0.0


class PersistEngine:
    """
    Save path: chunking, concurrent chunk writes with sweep-and-retry,
    then the sequential write of the chunk table fragment chain.
    """

    def __init__(
        self,
        chunking_config: ChunkingConfig,
        retry_config: RetryConfig,
        gateway: LedgerGateway,
        seed: str,
        tag: str,
    ):
        self.chunking_config = chunking_config
        self.retry_config = retry_config
        self.gateway = gateway
        self.seed = seed
        self.tag = tag
        self.saves: Dict[str, SaveState] = {}
        self.last_save: Optional[SaveState] = None

    # ------------------------------------------------------------------

    def persist(self, datastring: str) -> str:
        """Persist an encoded datastring and return its entry hash."""
        entry_id = uuid.uuid4().hex[:16]
        bundle = self._create_chunk_bundle(datastring)

        state = SaveState(
            entry_id=entry_id,
            total_chunks=len(bundle),
            started_at=time.time(),
        )
        self.saves[entry_id] = state
        self.last_save = state

        logger.info(
            "Save %s: persisting %d characters as %d chunks",
            entry_id,
            len(datastring),
            state.total_chunks,
        )

        self._persist_chunk_bundle(bundle, state)

        table = build_chunk_table(bundle)
        entry_hash = self._persist_chunk_table(table, state)

        state.entry_hash = entry_hash
        state.completed = True
        state.finished_at = time.time()
        logger.info(
            "Save %s complete: entry hash %s (%d chunks, %d retries, %d fragments)",
            entry_id,
            entry_hash,
            state.total_chunks,
            state.chunks_retried,
            state.fragments_persisted,
        )
        return entry_hash

    def _create_chunk_bundle(self, datastring: str) -> ChunkBundle:
        contents = chop_into_chunks(datastring, self.chunking_config.chunk_content_length)
        return ChunkBundle.from_contents(contents)

    # ------------------------------------------------------------------

    def _persist_chunk_bundle(self, bundle: ChunkBundle, state: SaveState) -> None:
        """Write every chunk concurrently; returns once all are persisted."""
        progress = BundleProgress(
            len(bundle),
            max_attempts=self.retry_config.max_attempts,
            backoff_base_sec=self.retry_config.backoff_base_sec,
            max_backoff_sec=self.retry_config.max_backoff_sec,
        )

        executor = ThreadPoolExecutor(
            max_workers=self.retry_config.max_workers,
            thread_name_prefix="ledgerstash-save",
        )
        try:
            drive_to_completion(
                progress,
                lambda index: executor.submit(self._persist_chunk, bundle[index], progress),
                self.retry_config.sweep_interval_sec,
            )
        except RetriesExhaustedError as e:
            logger.error("Save %s aborted: %s", state.entry_id, e)
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            state.chunks_retried = progress.retry_count

        state.bytes_sent = sum(len(c.content) for c in bundle)

    def _persist_chunk(self, chunk: Chunk, progress: BundleProgress) -> bool:
        """
        Persist a single chunk.
        Any failure is recorded on progress for a later retry, never raised.
        """
        try:
            message = make_content_msg(chunk.content)
            address = self.gateway.new_address(self.seed)
            transaction = self.gateway.send(self.seed, address, message, self.tag)
            if not transaction or not transaction.get("hash"):
                raise LedgerError("Ledger returned no transaction")
        except Exception as e:
            logger.warning("Chunk %d failed to persist: %s", chunk.index, e)
            progress.mark_failed(chunk.index, e)
            return False

        chunk.hash = transaction["hash"]
        chunk.persisted = True
        progress.mark_success(chunk.index)
        logger.debug("Persisted chunk %d as %s", chunk.index, chunk.hash)
        return True

    # ------------------------------------------------------------------

    def _persist_chunk_table(self, table: List[str], state: SaveState) -> str:
        """
        Chop the chunk table and persist its fragments in order, each one
        pointing at the hash of the fragment before it.
        """
        fragments = chop_chunk_table(
            table,
            state.total_chunks,
            self.chunking_config.message_length,
            self.chunking_config.hash_length,
            self.chunking_config.table_hash_amount,
        )

        previous_hash = FIRST_FRAGMENT_KEYWORD
        for number, entries in enumerate(fragments):
            fragment = link_fragment(entries, previous_hash, state.total_chunks)
            transaction = self._send_with_retry(fragment.to_message(), number, state)
            previous_hash = transaction["hash"]
            state.fragments_persisted += 1
            logger.debug(
                "Persisted chunk table fragment %d (%d entries) as %s",
                number,
                len(entries),
                previous_hash,
            )
        return previous_hash

    def _send_with_retry(self, message: str, number: int, state: SaveState) -> Dict[str, Any]:
        """Send one fragment until the ledger returns a transaction."""
        address = self.gateway.new_address(self.seed)
        max_attempts = self.retry_config.max_attempts
        attempts = 0

        while True:
            attempts += 1
            try:
                transaction = self.gateway.send(self.seed, address, message, self.tag)
                if transaction and transaction.get("hash"):
                    return transaction
                error: LedgerError = LedgerError("Ledger returned no transaction")
            except LedgerError as e:
                error = e

            logger.warning(
                "Chunk table fragment %d failed (attempt %d): %s", number, attempts, error
            )
            if max_attempts is not None and attempts >= max_attempts:
                logger.error("Save %s aborted: fragment %d not persisted", state.entry_id, number)
                raise RetriesExhaustedError(number, attempts, error, kind="fragment")

            state.fragment_retries += 1
            time.sleep(
                backoff_delay(
                    attempts,
                    self.retry_config.backoff_base_sec,
                    self.retry_config.max_backoff_sec,
                )
            )

    # ------------------------------------------------------------------

    def get_save_status(self, entry_id: str) -> Optional[Dict[str, Any]]:
        """Get status of a save operation run by this engine."""
        state = self.saves.get(entry_id)
        if not state:
            return None

        return {
            "entry_id": state.entry_id,
            "entry_hash": state.entry_hash,
            "total_chunks": state.total_chunks,
            "bytes_sent": state.bytes_sent,
            "chunks_retried": state.chunks_retried,
            "fragments_persisted": state.fragments_persisted,
            "fragment_retries": state.fragment_retries,
            "completed": state.completed,
            "duration_sec": (state.finished_at - state.started_at) if state.completed else None,
        }
