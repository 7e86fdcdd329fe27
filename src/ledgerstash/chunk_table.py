"""
Chunk table construction, fragmentation and reassembly.

The chunk table maps each chunk index to the hash of the record holding
that chunk. It is split into fragments that each fit one record; every
fragment names the hash of the fragment persisted before it, and the first
one names the "1st" keyword instead.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

from .bundle import ChunkBundle
from .errors import ChunkTableError
from .protocol import (
    FIRST_FRAGMENT_KEYWORD,
    make_fragment_msg,
    parse_fragment_msg,
)


@dataclass
class ChunkTableFragment:
    entries: Dict[int, str] = field(default_factory=dict)
    previous_hash: str = FIRST_FRAGMENT_KEYWORD
    total_chunks: int = 0

    @property
    def is_first(self) -> bool:
        return self.previous_hash == FIRST_FRAGMENT_KEYWORD

    def to_message(self) -> str:
        return make_fragment_msg(self.entries, self.previous_hash, self.total_chunks)

    @classmethod
    def from_message(cls, raw: str) -> "ChunkTableFragment":
        parsed = parse_fragment_msg(raw)
        return cls(
            entries=parsed["entries"],
            previous_hash=parsed["previous_hash"],
            total_chunks=parsed["total_chunks"],
        )


def build_chunk_table(bundle: ChunkBundle) -> List[str]:
    """Dense index -> hash table; every chunk must already be persisted."""
    missing = [c.index for c in bundle if not c.persisted or not c.hash]
    if missing:
        raise ChunkTableError(f"Chunks not persisted yet: {missing}")
    return [c.hash for c in bundle]


def _entry_length(index: int, record_hash: str) -> int:
    # '"<index>":"<hash>",'
    return len(str(index)) + len(record_hash) + 6


def chop_chunk_table(
    table: Sequence[str],
    total_chunks: int,
    message_length: int,
    hash_length: int,
    max_entries: int,
) -> List[Dict[int, str]]:
    """
    Split the table into fragment entry maps.

    Entries are taken in index order until the next one would push the
    serialized fragment past message_length (with a previous-hash
    placeholder of hash_length characters) or the fragment already holds
    max_entries entries. An empty table still yields one empty fragment.
    """
    if max_entries <= 0:
        raise ValueError(f"max_entries must be positive, got {max_entries}")

    placeholder = "9" * hash_length
    base_length = len(make_fragment_msg({}, placeholder, total_chunks))

    fragments: List[Dict[int, str]] = []
    current: Dict[int, str] = {}
    current_length = base_length

    for index, record_hash in enumerate(table):
        added = _entry_length(index, record_hash)
        if base_length + added > message_length:
            raise ValueError(
                f"Chunk table entry {index} does not fit a record of {message_length} characters"
            )
        if current and (len(current) >= max_entries or current_length + added > message_length):
            fragments.append(current)
            current = {}
            current_length = base_length
        current[index] = record_hash
        current_length += added

    if current or not fragments:
        fragments.append(current)
    return fragments


def link_fragment(entries: Dict[int, str], previous_hash: str, total_chunks: int) -> ChunkTableFragment:
    return ChunkTableFragment(
        entries=dict(entries),
        previous_hash=previous_hash,
        total_chunks=total_chunks,
    )


def merge_fragments(fragments: Sequence[ChunkTableFragment]) -> Tuple[List[str], int]:
    """
    Merge fragments (in forward chain order) into a dense table.
    Returns (table, total_chunks).
    """
    if not fragments:
        raise ChunkTableError("No chunk table fragments to merge")
    if not fragments[0].is_first:
        raise ChunkTableError("Fragment chain does not start at the first fragment")

    total_chunks = fragments[0].total_chunks
    merged: Dict[int, str] = {}
    for fragment in fragments:
        if fragment.total_chunks != total_chunks:
            raise ChunkTableError(
                f"Inconsistent total chunk count: {fragment.total_chunks} != {total_chunks}"
            )
        for index, record_hash in fragment.entries.items():
            if index in merged:
                raise ChunkTableError(f"Chunk {index} appears in more than one fragment")
            merged[index] = record_hash

    expected = set(range(total_chunks))
    if set(merged) != expected:
        missing = sorted(expected - set(merged))
        extra = sorted(set(merged) - expected)
        raise ChunkTableError(
            f"Chunk table incomplete: missing={missing[:10]} unexpected={extra[:10]}"
        )

    return [merged[i] for i in range(total_chunks)], total_chunks
