"""
Payload codec and splitter.

encode_data/decode_data turn a file, a string or raw bytes into the single
base64 datastring that gets chunked, optionally encrypted with a secret.
The encrypted form is "<salt>:<fernet token>", both halves urlsafe base64,
so it embeds in a JSON record without escaping.
"""

import base64
import binascii
import os
import secrets
from typing import List, Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import IncorrectDatatypeError, IncorrectPasswordError

DATATYPES = ("file", "string", "bytes")

SEED_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ9"
SEED_LENGTH = 81

SALT_BYTES = 16
KDF_ITERATIONS = 100_000
SALT_SEPARATOR = ":"


def generate_seed() -> str:
    """Random 81-character wallet seed over A-Z and 9."""
    return "".join(secrets.choice(SEED_ALPHABET) for _ in range(SEED_LENGTH))


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=KDF_ITERATIONS,
    )
    return base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))


def encrypt(plaintext: str, secret: str) -> str:
    salt = os.urandom(SALT_BYTES)
    token = Fernet(_derive_key(secret, salt)).encrypt(plaintext.encode("ascii"))
    return (
        base64.urlsafe_b64encode(salt).decode("ascii")
        + SALT_SEPARATOR
        + token.decode("ascii")
    )


def decrypt(ciphertext: str, secret: str) -> str:
    """Inverse of encrypt(); any failure means the secret was wrong."""
    salt_part, sep, token = ciphertext.partition(SALT_SEPARATOR)
    if not sep or not token:
        raise IncorrectPasswordError("Provided secret incorrect")
    try:
        salt = base64.urlsafe_b64decode(salt_part.encode("ascii"))
        plaintext = Fernet(_derive_key(secret, salt)).decrypt(token.encode("ascii"))
        return plaintext.decode("ascii")
    except (InvalidToken, binascii.Error, ValueError) as e:
        raise IncorrectPasswordError("Provided secret incorrect") from e


def _to_bytes(data: Union[str, bytes, os.PathLike], datatype: str) -> bytes:
    if datatype == "file":
        if not isinstance(data, (str, os.PathLike)):
            raise IncorrectDatatypeError("datatype 'file' expects a file path")
        with open(data, "rb") as f:
            return f.read()
    if datatype == "string":
        if not isinstance(data, str):
            raise IncorrectDatatypeError("datatype 'string' expects str")
        return data.encode("utf-8")
    if datatype == "bytes":
        if not isinstance(data, (bytes, bytearray)):
            raise IncorrectDatatypeError("datatype 'bytes' expects bytes")
        return bytes(data)
    raise IncorrectDatatypeError(f'No valid "datatype" was passed: {datatype!r}')


def encode_data(
    data: Union[str, bytes, os.PathLike],
    datatype: str,
    secret: Optional[str] = None,
) -> str:
    """Encode data into a base64 datastring, encrypted when secret is set."""
    raw = _to_bytes(data, datatype)
    datastring = base64.b64encode(raw).decode("ascii")
    if secret:
        datastring = encrypt(datastring, secret)
    return datastring


def decode_data(
    datastring: str,
    datatype: str,
    secret: Optional[str] = None,
) -> Union[str, bytes]:
    """Decode a datastring back to bytes ('file', 'bytes') or str ('string')."""
    if datatype not in DATATYPES:
        raise IncorrectDatatypeError(f'No valid "datatype" was passed: {datatype!r}')

    base64_text = decrypt(datastring, secret) if secret else datastring

    try:
        raw = base64.b64decode(base64_text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise IncorrectDatatypeError("Stored data is not valid base64") from e

    if datatype == "string":
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise IncorrectDatatypeError("Stored data is not UTF-8 text") from e
    return raw


def chop_into_chunks(datastring: str, chunk_length: int) -> List[str]:
    """Cut datastring into pieces of at most chunk_length characters."""
    if chunk_length <= 0:
        raise ValueError(f"chunk_length must be positive, got {chunk_length}")
    return [
        datastring[start : start + chunk_length]
        for start in range(0, len(datastring), chunk_length)
    ]
