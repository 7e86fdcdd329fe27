import os
import yaml
from dataclasses import dataclass, field
from typing import Optional

@dataclass
class LedgerConfig:
    db_path: str = "ledgerstash.db"
    seed: Optional[str] = None
    tag: str = "LEDGERSTASH99999999999999999"
    min_weight_magnitude: int = 8
    depth: int = 4

@dataclass
class ChunkingConfig:
    message_length: int = 2187
    padding_length: int = 19
    hash_length: int = 64
    previous_hash_length: int = 109
    # Explicit overrides for the two derived capacities below.
    content_length: Optional[int] = None
    hashes_per_fragment: Optional[int] = None

    @property
    def chunk_content_length(self) -> int:
        if self.content_length is not None:
            return min(self.content_length, self.message_length - self.padding_length)
        return self.message_length - self.padding_length

    @property
    def table_hash_amount(self) -> int:
        if self.hashes_per_fragment is not None:
            return self.hashes_per_fragment
        return (self.message_length - self.padding_length) // self.previous_hash_length - 1

@dataclass
class RetryConfig:
    sweep_interval_sec: float = 1.234
    max_attempts: Optional[int] = 10
    backoff_base_sec: float = 0.5
    max_backoff_sec: float = 30.0
    max_workers: int = 8

@dataclass
class PayloadConfig:
    datatype: str = "file"

@dataclass
class StashConfig:
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    payload: PayloadConfig = field(default_factory=PayloadConfig)


def validate_config(config: StashConfig) -> None:
    """Reject capacities that cannot hold a single chunk or table entry."""
    if config.chunking.chunk_content_length <= 0:
        raise ValueError(
            "message_length must exceed padding_length "
            f"({config.chunking.message_length} <= {config.chunking.padding_length})"
        )
    if config.chunking.table_hash_amount <= 0:
        raise ValueError("chunk content too small to hold a chunk table entry")
    if config.retry.max_workers <= 0:
        raise ValueError("max_workers must be positive")
    if config.retry.max_attempts is not None and config.retry.max_attempts <= 0:
        raise ValueError("max_attempts must be positive or null")


def load_config(config_path: Optional[str] = None) -> StashConfig:
    """Load configuration from file or use defaults."""
    if config_path and os.path.exists(config_path):
        with open(config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        ledger_config = LedgerConfig(**config_data.get('ledger', {}))
        chunking_config = ChunkingConfig(**config_data.get('chunking', {}))
        retry_config = RetryConfig(**config_data.get('retry', {}))
        payload_config = PayloadConfig(**config_data.get('payload', {}))
    else:
        ledger_config = LedgerConfig()
        chunking_config = ChunkingConfig()
        retry_config = RetryConfig()
        payload_config = PayloadConfig()

    if not ledger_config.seed:
        from .codec import generate_seed
        ledger_config.seed = generate_seed()

    config = StashConfig(
        ledger=ledger_config,
        chunking=chunking_config,
        retry=retry_config,
        payload=payload_config,
    )
    validate_config(config)
    return config
