import base64
import math

import pytest

from ledgerstash.codec import (
    SEED_ALPHABET,
    chop_into_chunks,
    decode_data,
    encode_data,
    generate_seed,
)
from ledgerstash.errors import IncorrectDatatypeError, IncorrectPasswordError


def test_chop_worked_example():
    """
    'HELLO_WORLD' with a chunk length of 5 gives three chunks, the last
    one holding the remainder.
    """
    chunks = chop_into_chunks("HELLO_WORLD", 5)
    assert chunks == ["HELLO", "_WORL", "D"]


@pytest.mark.parametrize("length,chunk_length", [(0, 3), (1, 3), (9, 3), (10, 3), (2168, 2168), (2169, 2168)])
def test_chop_count_and_remainder(length, chunk_length):
    datastring = "A" * length
    chunks = chop_into_chunks(datastring, chunk_length)

    assert len(chunks) == math.ceil(length / chunk_length)
    assert "".join(chunks) == datastring
    assert all(len(c) <= chunk_length for c in chunks)
    if chunks:
        remainder = length % chunk_length
        assert len(chunks[-1]) == (remainder or chunk_length)


def test_chop_rejects_non_positive_length():
    with pytest.raises(ValueError):
        chop_into_chunks("abc", 0)


def test_encode_string_without_secret_is_plain_base64():
    datastring = encode_data("HELLO_WORLD", "string")
    assert datastring == base64.b64encode(b"HELLO_WORLD").decode("ascii")
    assert decode_data(datastring, "string") == "HELLO_WORLD"


def test_encode_file_and_bytes(tmp_path):
    content = bytes(range(256)) * 4
    file_path = tmp_path / "payload.bin"
    file_path.write_bytes(content)

    from_file = encode_data(str(file_path), "file")
    from_bytes = encode_data(content, "bytes")

    assert from_file == from_bytes
    assert decode_data(from_file, "file") == content
    assert decode_data(from_bytes, "bytes") == content


def test_secret_roundtrip_and_wrong_secret():
    datastring = encode_data("top secret ledger text", "string", secret="hunter2")

    assert ":" in datastring
    assert decode_data(datastring, "string", secret="hunter2") == "top secret ledger text"

    with pytest.raises(IncorrectPasswordError):
        decode_data(datastring, "string", secret="hunter3")


def test_secret_on_unencrypted_data_is_incorrect_password():
    datastring = encode_data("plain", "string")
    with pytest.raises(IncorrectPasswordError):
        decode_data(datastring, "string", secret="anything")


def test_encrypted_output_differs_per_call():
    first = encode_data("same", "string", secret="s")
    second = encode_data("same", "string", secret="s")
    assert first != second


def test_invalid_datatype_and_mismatched_payload():
    with pytest.raises(IncorrectDatatypeError):
        encode_data("x", "image")
    with pytest.raises(IncorrectDatatypeError):
        encode_data(b"x", "string")
    with pytest.raises(IncorrectDatatypeError):
        decode_data("eA==", "image")


def test_decode_rejects_non_base64_and_non_utf8():
    with pytest.raises(IncorrectDatatypeError):
        decode_data("not base64 !!", "bytes")

    latin = base64.b64encode(b"\xff\xfe\xfd").decode("ascii")
    with pytest.raises(IncorrectDatatypeError):
        decode_data(latin, "string")


def test_generate_seed_shape():
    seed = generate_seed()
    assert len(seed) == 81
    assert set(seed) <= set(SEED_ALPHABET)
    assert generate_seed() != seed
