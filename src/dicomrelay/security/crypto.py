"""Streaming AES-256-CTR file encryption with an IV prefix.

Layout of an encrypted stream:
- 16 bytes: raw IV (initial counter block)
- N bytes: ciphertext, same length as the plaintext

CTR mode turns AES into a keystream generator, so encryption and decryption
are the same transform and no padding is involved. Integrity is not provided
here; callers digest the ciphertext separately (see dicomrelay.core.hashing).
"""
import os
from typing import BinaryIO, Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from dicomrelay.core.exceptions import InvalidKeyError, TruncatedInputError


KEY_SIZE = 32  # 256 bits
IV_SIZE = 16  # 128 bits
CHUNK_SIZE = 64 * 1024


def generate_key() -> bytes:
    return os.urandom(KEY_SIZE)


def _read_exact(src: BinaryIO, size: int) -> bytes:
    # read() on pipes and sockets may return short; keep going until EOF
    buf = bytearray()
    while len(buf) < size:
        chunk = src.read(size - len(buf))
        if not chunk:
            break
        buf += chunk
    return bytes(buf)


class StreamCipher:
    """AES-256-CTR cipher owning one symmetric key.

    If no key is supplied a fresh random one is generated. The key never
    leaves this object except through :meth:`encoded_key`, which exists so the
    key wrapper can protect it for each recipient.
    """

    def __init__(self, key: Optional[bytes] = None, chunk_size: int = CHUNK_SIZE):
        if key is None:
            key = generate_key()
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
            raise InvalidKeyError("wrong keysize: AES-256 requires a 32 byte key")
        self._key = bytes(key)
        self.chunk_size = chunk_size

    def encoded_key(self) -> bytes:
        return self._key

    def _transform(self, iv: bytes, src: BinaryIO, dst: BinaryIO, encrypt: bool) -> int:
        cipher = Cipher(algorithms.AES(self._key), modes.CTR(iv))
        ctx = cipher.encryptor() if encrypt else cipher.decryptor()
        total = 0
        while True:
            chunk = src.read(self.chunk_size)
            if not chunk:
                break
            dst.write(ctx.update(chunk))
            total += len(chunk)
        tail = ctx.finalize()
        if tail:
            dst.write(tail)
        return total

    def encrypt(self, src: BinaryIO, dst: BinaryIO) -> int:
        """Write ``IV || AES-CTR(src)`` to ``dst``; returns plaintext length."""
        iv = os.urandom(IV_SIZE)
        dst.write(iv)
        return self._transform(iv, src, dst, encrypt=True)

    def decrypt(self, src: BinaryIO, dst: BinaryIO) -> int:
        """Read the IV prefix from ``src`` and write the plaintext to ``dst``."""
        iv = _read_exact(src, IV_SIZE)
        if len(iv) != IV_SIZE:
            raise TruncatedInputError(
                f"ciphertext too short to contain a {IV_SIZE} byte IV (got {len(iv)})"
            )
        return self._transform(iv, src, dst, encrypt=False)


def encrypt_file(in_path: str, out_path: str, key: Optional[bytes] = None) -> StreamCipher:
    """Encrypt ``in_path`` into ``out_path`` and return the cipher holding the key."""
    cipher = StreamCipher(key)
    with open(in_path, "rb") as inf, open(out_path, "wb") as outf:
        cipher.encrypt(inf, outf)
    return cipher


def decrypt_file(in_path: str, out_path: str, key: bytes) -> None:
    cipher = StreamCipher(key)
    with open(in_path, "rb") as inf, open(out_path, "wb") as outf:
        cipher.decrypt(inf, outf)
