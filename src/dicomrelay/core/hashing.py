""" Utility for file digest operations. """

import hashlib
import hmac
from pathlib import Path
from typing import BinaryIO, Optional

from .exceptions import IntegrityError


CHUNK_SIZE = 65536  # 64KB
DIGEST_SIZE = 64  # SHA-512, bytes


def digest_stream(src: BinaryIO, sink: Optional[BinaryIO] = None) -> bytes:
    """Return the SHA-512 digest of everything readable from ``src``.

    When ``sink`` is given every chunk is also written to it, so one pass both
    relays the bytes and produces the checksum.
    """
    sha512 = hashlib.sha512()
    while True:
        data = src.read(CHUNK_SIZE)
        if not data:
            break
        sha512.update(data)
        if sink is not None:
            sink.write(data)
    return sha512.digest()


def calculate_sha512(file_path: Path) -> bytes:

    # Calculates the SHA-512 digest of a file.

    with open(file_path, 'rb') as f:
        return digest_stream(f)


def calculate_sha512_bytes(data: bytes) -> bytes:
    return hashlib.sha512(data).digest()


def verify_digest(expected: bytes, actual: bytes) -> bool:
    # constant time with respect to the digest values
    return hmac.compare_digest(expected, actual)


def require_digest(expected: bytes, actual: bytes, context: str = "data") -> None:
    """Raise IntegrityError unless ``actual`` matches ``expected``."""
    if not verify_digest(expected, actual):
        raise IntegrityError(f"message digest mismatch for {context}")
