import os
import threading

import pytest

from ledgerstash.config import ChunkingConfig, StashConfig, load_config, validate_config
from ledgerstash.errors import (
    IncorrectTransactionHashError,
    LedgerError,
    PoWInterruptedError,
)
from ledgerstash.ledger import GENESIS_HASH, SQLiteLedger
from ledgerstash.pow import HashcashPoW, leading_zero_bits


def test_leading_zero_bits():
    assert leading_zero_bits(b"\x00\x00\xff") == 16
    assert leading_zero_bits(b"\x0f") == 4
    assert leading_zero_bits(b"\x80") == 0
    assert leading_zero_bits(b"\x00\x01") == 15


def test_hashcash_attach_and_verify():
    pow_engine = HashcashPoW()
    nonce = pow_engine.attach("message", 6, "trunk", "branch")
    assert nonce is not None
    assert HashcashPoW.verify("message", 6, "trunk", "branch", nonce)


def test_hashcash_interrupt_returns_none():
    pow_engine = HashcashPoW()
    pow_engine.interrupt()
    assert pow_engine.attach("message", 1, "trunk", "branch") is None

    pow_engine.reset()
    assert pow_engine.attach("message", 1, "trunk", "branch") is not None


def test_ledger_send_and_fetch_roundtrip(tmp_path):
    """
    Records sent to the SQLite ledger can be fetched back by hash and are
    attached to earlier records (or the genesis hash).
    """
    db_path = tmp_path / "ledger.db"
    ledger = SQLiteLedger(str(db_path), min_weight_magnitude=4)

    address = ledger.new_address("SEED")
    first = ledger.send("SEED", address, '{"CC":"abc"}', "TAG")
    assert first["trunk_hash"] == GENESIS_HASH
    assert first["branch_hash"] == GENESIS_HASH

    second = ledger.send("SEED", ledger.new_address("SEED"), '{"CC":"def"}', "TAG")
    assert second["trunk_hash"] == first["hash"]

    assert ledger.fetch_record_payload(first["hash"]) == '{"CC":"abc"}'
    assert ledger.fetch_record_payload(second["hash"]) == '{"CC":"def"}'

    assert ledger.count_records() == 2
    assert ledger.count_records("TAG") == 2
    assert ledger.count_records("OTHER") == 0
    records = ledger.list_records("TAG")
    assert [r["hash"] for r in records] == [first["hash"], second["hash"]]

    ledger.close()
    assert os.path.exists(db_path)


def test_ledger_addresses_are_fresh_per_seed(tmp_path):
    ledger = SQLiteLedger(str(tmp_path / "addr.db"))

    a0 = ledger.new_address("SEEDA")
    a1 = ledger.new_address("SEEDA")
    b0 = ledger.new_address("SEEDB")

    assert len({a0, a1, b0}) == 3
    ledger.close()


def test_ledger_fetch_errors(tmp_path):
    ledger = SQLiteLedger(str(tmp_path / "errors.db"))

    with pytest.raises(IncorrectTransactionHashError):
        ledger.fetch_record_payload("not-a-hash")
    with pytest.raises(IncorrectTransactionHashError):
        ledger.fetch_record_payload("a" * 64)

    ledger.close()


def test_ledger_rejects_oversized_message_and_interrupted_pow(tmp_path):
    pow_engine = HashcashPoW()
    ledger = SQLiteLedger(
        str(tmp_path / "limits.db"),
        pow_engine=pow_engine,
        min_weight_magnitude=4,
        message_length=16,
    )

    with pytest.raises(LedgerError):
        ledger.send("SEED", ledger.new_address("SEED"), "x" * 17, "TAG")

    pow_engine.interrupt()
    with pytest.raises(PoWInterruptedError):
        ledger.send("SEED", ledger.new_address("SEED"), "short", "TAG")

    assert ledger.count_records() == 0
    ledger.close()


def test_ledger_concurrent_sends(tmp_path):
    ledger = SQLiteLedger(str(tmp_path / "threads.db"), min_weight_magnitude=4)
    hashes = []
    lock = threading.Lock()

    def worker(n):
        result = ledger.send("SEED", ledger.new_address("SEED"), f"msg-{n}", "TAG")
        with lock:
            hashes.append(result["hash"])

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(set(hashes)) == 8
    assert ledger.count_records() == 8
    ledger.close()


# ---------------------------------------------------------------------------


def test_default_config_derivations():
    config = load_config(None)

    assert config.chunking.chunk_content_length == 2187 - 19
    assert config.chunking.table_hash_amount == (2187 - 19) // 109 - 1
    assert config.retry.max_attempts == 10
    assert config.payload.datatype == "file"
    assert config.ledger.seed and len(config.ledger.seed) == 81


def test_load_config_from_yaml(tmp_path):
    config_path = tmp_path / "stash.yml"
    config_path.write_text(
        """
ledger:
  db_path: custom.db
  seed: MYSEED
  min_weight_magnitude: 2
chunking:
  message_length: 500
retry:
  max_attempts: null
  max_workers: 2
payload:
  datatype: string
"""
    )

    config = load_config(str(config_path))

    assert config.ledger.db_path == "custom.db"
    assert config.ledger.seed == "MYSEED"
    assert config.ledger.min_weight_magnitude == 2
    assert config.chunking.message_length == 500
    assert config.chunking.padding_length == 19
    assert config.retry.max_attempts is None
    assert config.retry.max_workers == 2
    assert config.payload.datatype == "string"


def test_invalid_capacities_rejected():
    config = StashConfig(chunking=ChunkingConfig(message_length=19, padding_length=19))
    with pytest.raises(ValueError):
        validate_config(config)

    config = StashConfig(chunking=ChunkingConfig(message_length=100))
    with pytest.raises(ValueError):
        validate_config(config)
