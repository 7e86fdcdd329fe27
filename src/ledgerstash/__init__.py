"""
ledgerstash: persist any payload into an append-only ledger

This package implements chunked ledger storage with support for:
- Splitting a base64 datastring into record-sized chunks
- Concurrent chunk writes and reads with sweep-and-retry
- A backward-linked chunk table whose last hash is the entry hash
- Optional Fernet encryption with a user secret
- SQLite-backed local ledger with proof-of-work attachment
"""

__version__ = "0.1.0"

from .stash import Stash, create_stash
from .config import StashConfig, load_config

__all__ = ['Stash', 'create_stash', 'StashConfig', 'load_config']
