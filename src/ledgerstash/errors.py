"""
Exception types raised by ledgerstash.

StashError covers everything the save/load path can surface to a caller.
LedgerError and its subclasses come from a LedgerGateway; a bare
LedgerError is treated as transient and retried, the subclasses are
structural and propagate when they break the fragment chain.
"""

from typing import Optional


class StashError(Exception):
    pass


class IncorrectPasswordError(StashError):
    """The secret did not decrypt the stored datastring."""


class IncorrectDatatypeError(StashError):
    """Unsupported datatype, or a payload that does not match it."""


class ChunkTableError(StashError):
    """The fragment chain or the merged chunk table is malformed."""


class RetriesExhaustedError(StashError):
    def __init__(
        self,
        index: int,
        attempts: int,
        last_error: Optional[BaseException] = None,
        kind: str = "chunk",
    ):
        self.index = index
        self.attempts = attempts
        self.last_error = last_error
        self.kind = kind
        super().__init__(
            f"{kind.capitalize()} {index} failed after {attempts} attempts: {last_error}"
        )


class LedgerError(StashError):
    pass


class IncorrectTransactionHashError(LedgerError):
    pass


class NodeOutdatedError(LedgerError):
    pass


class PoWInterruptedError(LedgerError):
    pass
