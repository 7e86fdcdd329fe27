import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Set

from .errors import RetriesExhaustedError

logger = logging.getLogger(__name__)

PENDING = "pending"
IN_FLIGHT = "in_flight"
SUCCESS = "success"
FAILED = "failed"


def backoff_delay(attempts: int, base_sec: float, max_sec: float) -> float:
    """Exponential backoff after `attempts` failed tries."""
    if base_sec <= 0 or attempts <= 0:
        return 0.0
    return min(base_sec * (2 ** (attempts - 1)), max_sec)


@dataclass
class Chunk:
    index: int
    content: Optional[str] = None
    hash: Optional[str] = None
    persisted: bool = False
    retrieved: bool = False


class ChunkBundle:
    """
    Dense, index-ordered collection of chunks for a single save or load.
    Chunk i always sits at position i.
    """

    def __init__(self, chunks: Sequence[Chunk]):
        for position, chunk in enumerate(chunks):
            if chunk.index != position:
                raise ValueError(
                    f"Chunk bundle is not contiguous: position {position} holds index {chunk.index}"
                )
        self.chunks: List[Chunk] = list(chunks)

    @classmethod
    def from_contents(cls, contents: Sequence[str]) -> "ChunkBundle":
        return cls([Chunk(index=i, content=c) for i, c in enumerate(contents)])

    @classmethod
    def from_table(cls, table: Sequence[str]) -> "ChunkBundle":
        return cls([Chunk(index=i, hash=h) for i, h in enumerate(table)])

    def __len__(self) -> int:
        return len(self.chunks)

    def __getitem__(self, index: int) -> Chunk:
        return self.chunks[index]

    def __iter__(self) -> Iterator[Chunk]:
        return iter(self.chunks)

    def assemble(self) -> str:
        """Concatenate chunk contents in index order."""
        missing = [c.index for c in self.chunks if not c.retrieved or c.content is None]
        if missing:
            raise ValueError(f"Chunks not retrieved yet: {missing}")
        return "".join(c.content for c in self.chunks)


class BundleProgress:
    """
    Synchronized success/failure bookkeeping for the chunks of one bundle.

    Every per-chunk task reports through mark_success()/mark_failed(); the
    supervisory sweep blocks in wait() and asks due_for_retry() which
    failed chunks to relaunch.
    """

    def __init__(
        self,
        total_chunks: int,
        max_attempts: Optional[int] = None,
        backoff_base_sec: float = 0.0,
        max_backoff_sec: float = 30.0,
    ):
        self.total_chunks = total_chunks
        self.max_attempts = max_attempts
        self.backoff_base_sec = backoff_base_sec
        self.max_backoff_sec = max_backoff_sec

        self._cond = threading.Condition()
        self._states: List[str] = [PENDING] * total_chunks
        self._attempts: List[int] = [0] * total_chunks
        self._retry_at: List[float] = [0.0] * total_chunks
        self._errors: Dict[int, BaseException] = {}
        self._failed: Set[int] = set()
        self._dirty = False

        self.success_count = 0
        self.retry_count = 0

    # ------------------------------------------------------------------

    def mark_in_flight(self, index: int) -> bool:
        """Claim a chunk for a new attempt. False if it is done or already running."""
        with self._cond:
            state = self._states[index]
            if state in (SUCCESS, IN_FLIGHT):
                return False
            if state == FAILED:
                self.retry_count += 1
            self._states[index] = IN_FLIGHT
            self._attempts[index] += 1
            self._failed.discard(index)
            return True

    def mark_success(self, index: int) -> None:
        with self._cond:
            if self._states[index] == SUCCESS:
                return
            self._states[index] = SUCCESS
            self.success_count += 1
            self._failed.discard(index)
            self._errors.pop(index, None)
            self._cond.notify_all()

    def mark_failed(self, index: int, error: Optional[BaseException] = None) -> None:
        with self._cond:
            if self._states[index] == SUCCESS:
                return
            self._states[index] = FAILED
            self._failed.add(index)
            if error is not None:
                self._errors[index] = error
            self._retry_at[index] = time.monotonic() + self._backoff(self._attempts[index])
            self._dirty = True
            self._cond.notify_all()

    def _backoff(self, attempts: int) -> float:
        return backoff_delay(attempts, self.backoff_base_sec, self.max_backoff_sec)

    # ------------------------------------------------------------------

    def is_complete(self) -> bool:
        with self._cond:
            return self.success_count == self.total_chunks

    def state_of(self, index: int) -> str:
        with self._cond:
            return self._states[index]

    def attempts_of(self, index: int) -> int:
        with self._cond:
            return self._attempts[index]

    def failed_indices(self) -> List[int]:
        with self._cond:
            return sorted(self._failed)

    def due_for_retry(self, now: Optional[float] = None) -> List[int]:
        """
        Failed chunks whose backoff has elapsed.

        Raises RetriesExhaustedError for the first failed chunk that has
        already used up max_attempts.
        """
        if now is None:
            now = time.monotonic()
        with self._cond:
            due: List[int] = []
            for index in sorted(self._failed):
                attempts = self._attempts[index]
                if self.max_attempts is not None and attempts >= self.max_attempts:
                    raise RetriesExhaustedError(index, attempts, self._errors.get(index))
                if self._retry_at[index] <= now:
                    due.append(index)
            return due

    def wait(self, timeout: float) -> bool:
        """
        Block until the bundle completes, a chunk fails, or timeout passes.
        Returns whether the bundle is complete.
        """
        with self._cond:
            self._cond.wait_for(
                lambda: self.success_count == self.total_chunks or self._dirty,
                timeout,
            )
            self._dirty = False
            return self.success_count == self.total_chunks


def drive_to_completion(
    progress: BundleProgress,
    launch: Callable[[int], None],
    sweep_interval_sec: float,
) -> None:
    """
    Launch every chunk once, then sweep: relaunch failed chunks until the
    whole bundle has succeeded. launch(index) must not block on the attempt.
    """
    for index in range(progress.total_chunks):
        if progress.mark_in_flight(index):
            launch(index)

    while not progress.wait(sweep_interval_sec):
        for index in progress.due_for_retry():
            if progress.mark_in_flight(index):
                logger.debug(
                    "Relaunching chunk %d (attempt %d)",
                    index,
                    progress.attempts_of(index),
                )
                launch(index)
