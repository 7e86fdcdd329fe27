import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple, Any

from .bundle import BundleProgress, Chunk, ChunkBundle, backoff_delay, drive_to_completion
from .chunk_table import ChunkTableFragment, merge_fragments
from .config import RetryConfig
from .errors import (
    ChunkTableError,
    IncorrectTransactionHashError,
    LedgerError,
    NodeOutdatedError,
    RetriesExhaustedError,
)
from .ledger_api import LedgerGateway
from .protocol import FIRST_FRAGMENT_KEYWORD, parse_content_msg

logger = logging.getLogger(__name__)


@dataclass
class LoadState:
    entry_hash: str
    total_chunks: int = 0
    fragments_walked: int = 0
    bytes_received: int = 0
    chunks_retried: int = 0
    completed: bool = False
    started_at: float = 0.0
    finished_at: float = 0.0


class RetrieveEngine:
    """
    Load path: walk the chunk table fragment chain back to its first
    fragment, fetch every chunk concurrently with sweep-and-retry, and
    reassemble the datastring in index order.
    """

    def __init__(self, retry_config: RetryConfig, gateway: LedgerGateway):
        self.retry_config = retry_config
        self.gateway = gateway
        self.last_load: Optional[LoadState] = None

    # ------------------------------------------------------------------

    def retrieve(self, entry_hash: str) -> str:
        """Return the datastring persisted under entry_hash."""
        state = LoadState(entry_hash=entry_hash, started_at=time.time())
        self.last_load = state

        table, total_chunks = self.rebuild_chunk_table(entry_hash, state)
        state.total_chunks = total_chunks

        logger.info(
            "Load %s: chunk table rebuilt from %d fragments, %d chunks",
            entry_hash,
            state.fragments_walked,
            total_chunks,
        )

        bundle = self._retrieve_chunk_bundle(table, state)
        datastring = bundle.assemble()

        state.bytes_received = len(datastring)
        state.completed = True
        state.finished_at = time.time()
        logger.info(
            "Load %s complete: %d characters (%d retries)",
            entry_hash,
            state.bytes_received,
            state.chunks_retried,
        )
        return datastring

    # ------------------------------------------------------------------

    def rebuild_chunk_table(
        self, entry_hash: str, state: Optional[LoadState] = None
    ) -> Tuple[List[str], int]:
        """
        Walk the fragment chain from entry_hash back to the "1st" keyword
        and merge the fragments in forward order.
        """
        fragments: List[ChunkTableFragment] = []
        seen: Set[str] = set()

        previous_hash = entry_hash
        while previous_hash != FIRST_FRAGMENT_KEYWORD:
            if previous_hash in seen:
                raise ChunkTableError(f"Fragment chain loops back to {previous_hash}")
            seen.add(previous_hash)

            fragment = self._fetch_fragment(previous_hash, len(fragments))
            fragments.insert(0, fragment)
            previous_hash = fragment.previous_hash

        if state is not None:
            state.fragments_walked = len(fragments)
        return merge_fragments(fragments)

    def _fetch_fragment(self, record_hash: str, depth: int) -> ChunkTableFragment:
        """
        Fetch and parse one fragment. Malformed hashes and outdated nodes
        propagate at once; other ledger errors are retried.
        depth counts fragments back from the entry hash (0 is the entry).
        """
        max_attempts = self.retry_config.max_attempts
        attempts = 0

        while True:
            attempts += 1
            try:
                raw = self.gateway.fetch_record_payload(record_hash)
                return ChunkTableFragment.from_message(raw)
            except (IncorrectTransactionHashError, NodeOutdatedError):
                raise
            except LedgerError as e:
                logger.warning(
                    "Fetching fragment %s failed (attempt %d): %s", record_hash, attempts, e
                )
                if max_attempts is not None and attempts >= max_attempts:
                    raise RetriesExhaustedError(depth, attempts, e, kind="fragment") from e

            time.sleep(
                backoff_delay(
                    attempts,
                    self.retry_config.backoff_base_sec,
                    self.retry_config.max_backoff_sec,
                )
            )

    # ------------------------------------------------------------------

    def _retrieve_chunk_bundle(self, table: List[str], state: LoadState) -> ChunkBundle:
        bundle = ChunkBundle.from_table(table)
        progress = BundleProgress(
            len(bundle),
            max_attempts=self.retry_config.max_attempts,
            backoff_base_sec=self.retry_config.backoff_base_sec,
            max_backoff_sec=self.retry_config.max_backoff_sec,
        )

        executor = ThreadPoolExecutor(
            max_workers=self.retry_config.max_workers,
            thread_name_prefix="ledgerstash-load",
        )
        try:
            drive_to_completion(
                progress,
                lambda index: executor.submit(self._retrieve_chunk, bundle[index], progress),
                self.retry_config.sweep_interval_sec,
            )
        except RetriesExhaustedError as e:
            logger.error("Load %s aborted: %s", state.entry_hash, e)
            raise
        finally:
            executor.shutdown(wait=True, cancel_futures=True)
            state.chunks_retried = progress.retry_count

        return bundle

    def _retrieve_chunk(self, chunk: Chunk, progress: BundleProgress) -> bool:
        """
        Retrieve a single chunk via its record hash.
        Any failure is recorded on progress for a later retry, never raised.
        """
        try:
            raw = self.gateway.fetch_record_payload(chunk.hash)
            content = parse_content_msg(raw)
        except Exception as e:
            logger.warning("Chunk %d failed to load from %s: %s", chunk.index, chunk.hash, e)
            progress.mark_failed(chunk.index, e)
            return False

        chunk.content = content
        chunk.retrieved = True
        progress.mark_success(chunk.index)
        logger.debug("Retrieved chunk %d from %s", chunk.index, chunk.hash)
        return True

    # ------------------------------------------------------------------

    def get_load_status(self) -> Optional[Dict[str, Any]]:
        state = self.last_load
        if not state:
            return None
        return {
            "entry_hash": state.entry_hash,
            "total_chunks": state.total_chunks,
            "fragments_walked": state.fragments_walked,
            "bytes_received": state.bytes_received,
            "chunks_retried": state.chunks_retried,
            "completed": state.completed,
            "duration_sec": (state.finished_at - state.started_at) if state.completed else None,
        }
