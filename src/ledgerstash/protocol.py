"""
Protocol helpers for ledgerstash.

These functions build and parse the short-keyed JSON messages that are
embedded in each ledger record:

  content chunk:        {"CC": "<chunk content>"}
  chunk table fragment: {"<index>": "<hash>", ..., "PCTFH": "<prev>", "TC": <total>}
"""

import json
from typing import Dict, Any

from .errors import ChunkTableError

CHUNK_CONTENT_KEY = "CC"
TOTAL_CHUNK_AMOUNT_KEY = "TC"
PREVIOUS_HASH_KEY = "PCTFH"
FIRST_FRAGMENT_KEYWORD = "1st"

_SEPARATORS = (",", ":")


def _dumps(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, separators=_SEPARATORS)


def make_content_msg(content: str) -> str:
    return _dumps({CHUNK_CONTENT_KEY: content})


def make_fragment_msg(
    entries: Dict[int, str],
    previous_hash: str,
    total_chunks: int,
) -> str:
    msg: Dict[str, Any] = {str(int(i)): str(h) for i, h in sorted(entries.items())}
    msg[PREVIOUS_HASH_KEY] = str(previous_hash)
    msg[TOTAL_CHUNK_AMOUNT_KEY] = int(total_chunks)
    return _dumps(msg)


def _loads_object(raw: str) -> Dict[str, Any]:
    try:
        obj = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ChunkTableError(f"Record does not carry JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ChunkTableError("Record JSON is not an object")
    return obj


def parse_content_msg(raw: str) -> str:
    obj = _loads_object(raw)
    content = obj.get(CHUNK_CONTENT_KEY)
    if not isinstance(content, str):
        raise ChunkTableError("Record carries no chunk content")
    return content


def parse_fragment_msg(raw: str) -> Dict[str, Any]:
    """
    Parse a chunk table fragment into
    {"entries": {index: hash}, "previous_hash": str, "total_chunks": int}.
    """
    obj = _loads_object(raw)

    previous_hash = obj.pop(PREVIOUS_HASH_KEY, None)
    total_chunks = obj.pop(TOTAL_CHUNK_AMOUNT_KEY, None)
    if not isinstance(previous_hash, str) or not previous_hash:
        raise ChunkTableError("Fragment is missing its previous fragment hash")
    if not isinstance(total_chunks, int) or isinstance(total_chunks, bool) or total_chunks < 0:
        raise ChunkTableError("Fragment is missing a valid total chunk count")

    entries: Dict[int, str] = {}
    for key, value in obj.items():
        if not (key.isascii() and key.isdigit()) or not isinstance(value, str) or not value:
            raise ChunkTableError(f"Malformed chunk table entry {key!r}")
        entries[int(key)] = value

    return {
        "entries": entries,
        "previous_hash": previous_hash,
        "total_chunks": total_chunks,
    }
