import json
import math

import pytest

from ledgerstash.bundle import ChunkBundle
from ledgerstash.chunk_table import (
    ChunkTableFragment,
    build_chunk_table,
    chop_chunk_table,
    link_fragment,
    merge_fragments,
)
from ledgerstash.errors import ChunkTableError
from ledgerstash.protocol import (
    FIRST_FRAGMENT_KEYWORD,
    make_content_msg,
    parse_content_msg,
    parse_fragment_msg,
)


def _hash(i):
    return f"{i:064x}"


def test_content_msg_uses_short_key():
    msg = make_content_msg("SGVsbG8=")
    assert json.loads(msg) == {"CC": "SGVsbG8="}
    assert parse_content_msg(msg) == "SGVsbG8="


def test_fragment_msg_wire_shape():
    fragment = link_fragment({0: "h0", 1: "h1", 2: "h2"}, FIRST_FRAGMENT_KEYWORD, 3)
    msg = json.loads(fragment.to_message())
    assert msg == {"0": "h0", "1": "h1", "2": "h2", "PCTFH": "1st", "TC": 3}

    parsed = parse_fragment_msg(fragment.to_message())
    assert parsed["entries"] == {0: "h0", 1: "h1", 2: "h2"}
    assert parsed["previous_hash"] == "1st"
    assert parsed["total_chunks"] == 3


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"0": "h0", "TC": 1}',
        '{"0": "h0", "PCTFH": "1st"}',
        '{"x": "h0", "PCTFH": "1st", "TC": 1}',
        '{"0": 5, "PCTFH": "1st", "TC": 1}',
        '{"\u00b2": "h0", "PCTFH": "1st", "TC": 1}',
    ],
)
def test_malformed_fragments_are_rejected(raw):
    with pytest.raises(ChunkTableError):
        ChunkTableFragment.from_message(raw)


def test_build_chunk_table_requires_all_persisted():
    bundle = ChunkBundle.from_contents(["a", "b"])
    bundle[0].hash = "h0"
    bundle[0].persisted = True

    with pytest.raises(ChunkTableError):
        build_chunk_table(bundle)

    bundle[1].hash = "h1"
    bundle[1].persisted = True
    assert build_chunk_table(bundle) == ["h0", "h1"]


def test_worked_example_fits_one_fragment():
    table = [_hash(0), _hash(1), _hash(2)]
    fragments = chop_chunk_table(table, 3, message_length=2187, hash_length=64, max_entries=18)
    assert fragments == [{0: _hash(0), 1: _hash(1), 2: _hash(2)}]


@pytest.mark.parametrize("size,max_entries", [(1, 18), (18, 18), (19, 18), (100, 18), (37, 5)])
def test_fragment_count_is_ceil_of_capacity(size, max_entries):
    table = [_hash(i) for i in range(size)]
    fragments = chop_chunk_table(table, size, message_length=2187, hash_length=64, max_entries=max_entries)

    assert len(fragments) == math.ceil(size / max_entries)
    flattened = [i for f in fragments for i in f]
    assert flattened == list(range(size))


def test_fragments_respect_message_length():
    size = 50
    table = [_hash(i) for i in range(size)]
    message_length = 400

    fragments = chop_chunk_table(table, size, message_length=message_length, hash_length=64, max_entries=1000)

    assert len(fragments) > 1
    for entries in fragments:
        msg = link_fragment(entries, "f" * 64, size).to_message()
        assert len(msg) <= message_length


def test_entry_too_large_for_record():
    with pytest.raises(ValueError):
        chop_chunk_table([_hash(0)], 1, message_length=60, hash_length=64, max_entries=5)


def test_empty_table_yields_single_empty_fragment():
    assert chop_chunk_table([], 0, message_length=2187, hash_length=64, max_entries=18) == [{}]


def test_merge_fragments_in_chain_order():
    first = link_fragment({0: "h0", 1: "h1"}, FIRST_FRAGMENT_KEYWORD, 3)
    second = link_fragment({2: "h2"}, "hash-of-first", 3)

    table, total = merge_fragments([first, second])
    assert total == 3
    assert table == ["h0", "h1", "h2"]


def test_merge_detects_gaps_duplicates_and_bad_order():
    first = link_fragment({0: "h0"}, FIRST_FRAGMENT_KEYWORD, 3)
    second = link_fragment({2: "h2"}, "prev", 3)
    with pytest.raises(ChunkTableError):
        merge_fragments([first, second])

    dup = link_fragment({0: "hx", 1: "h1", 2: "h2"}, "prev", 3)
    with pytest.raises(ChunkTableError):
        merge_fragments([first, dup])

    with pytest.raises(ChunkTableError):
        merge_fragments([second, first])

    inconsistent = link_fragment({1: "h1", 2: "h2"}, "prev", 4)
    with pytest.raises(ChunkTableError):
        merge_fragments([first, inconsistent])

    with pytest.raises(ChunkTableError):
        merge_fragments([])
