import hashlib
import logging
import threading
from typing import Optional

from .ledger_api import ProofOfWork

logger = logging.getLogger(__name__)


def leading_zero_bits(digest: bytes) -> int:
    bits = 0
    for byte in digest:
        if byte == 0:
            bits += 8
            continue
        bits += 8 - byte.bit_length()
        break
    return bits


def attachment_digest(message: str, trunk_hash: str, branch_hash: str, nonce: int) -> bytes:
    data = f"{trunk_hash}|{branch_hash}|{message}|{nonce}".encode("utf-8")
    return hashlib.sha256(data).digest()


class HashcashPoW(ProofOfWork):
    """
    Local attachment engine: searches for a nonce whose sha256 digest over
    (trunk, branch, message, nonce) has min_weight leading zero bits.

    interrupt() aborts every search in progress; attach() then returns None.
    """

    def __init__(self, max_iterations: Optional[int] = 1 << 24):
        self.max_iterations = max_iterations
        self._interrupted = threading.Event()

    def attach(self, message, min_weight, trunk_hash, branch_hash) -> Optional[str]:
        nonce = 0
        while self.max_iterations is None or nonce < self.max_iterations:
            if self._interrupted.is_set():
                logger.debug("PoW interrupted after %d iterations", nonce)
                return None
            digest = attachment_digest(message, trunk_hash, branch_hash, nonce)
            if leading_zero_bits(digest) >= min_weight:
                return str(nonce)
            nonce += 1

        logger.debug("PoW gave up after %d iterations", nonce)
        return None

    def interrupt(self) -> None:
        self._interrupted.set()

    def reset(self) -> None:
        self._interrupted.clear()

    @staticmethod
    def verify(message: str, min_weight: int, trunk_hash: str, branch_hash: str, nonce: str) -> bool:
        digest = attachment_digest(message, trunk_hash, branch_hash, int(nonce))
        return leading_zero_bits(digest) >= min_weight
