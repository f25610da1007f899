import io
import os

import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from dicomrelay.core.exceptions import InvalidKeyError, TruncatedInputError
from dicomrelay.security.crypto import (
    IV_SIZE,
    KEY_SIZE,
    StreamCipher,
    decrypt_file,
    encrypt_file,
    generate_key,
)


def _encrypt(cipher: StreamCipher, data: bytes) -> bytes:
    out = io.BytesIO()
    cipher.encrypt(io.BytesIO(data), out)
    return out.getvalue()


def _decrypt(cipher: StreamCipher, blob: bytes) -> bytes:
    out = io.BytesIO()
    cipher.decrypt(io.BytesIO(blob), out)
    return out.getvalue()


@pytest.mark.parametrize("size", [0, 1, 15, 16, 17, 1000, 64 * 1024, 64 * 1024 + 1, 250_000])
def test_encrypt_decrypt_roundtrip(size):
    data = os.urandom(size)
    key = generate_key()

    blob = _encrypt(StreamCipher(key), data)

    assert len(blob) == IV_SIZE + size
    assert _decrypt(StreamCipher(key), blob) == data


def test_generated_key_when_none_given():
    cipher = StreamCipher()
    assert len(cipher.encoded_key()) == KEY_SIZE
    assert StreamCipher().encoded_key() != cipher.encoded_key()


def test_fresh_iv_per_call():
    cipher = StreamCipher()
    a = _encrypt(cipher, b"same plaintext")
    b = _encrypt(cipher, b"same plaintext")
    assert a[:IV_SIZE] != b[:IV_SIZE]
    assert a != b


def test_output_is_plain_aes_ctr_with_iv_prefix():
    """The stream is IV || AES-256-CTR(key, IV, plaintext) with no framing."""
    key = generate_key()
    data = b"interoperable with any AES/CTR/NoPadding peer" * 10

    blob = _encrypt(StreamCipher(key), data)
    iv, body = blob[:IV_SIZE], blob[IV_SIZE:]
    dec = Cipher(algorithms.AES(key), modes.CTR(iv)).decryptor()

    assert dec.update(body) + dec.finalize() == data


@pytest.mark.parametrize("bad", [b"", b"\x00" * 16, b"\x00" * 24, b"\x00" * 33])
def test_wrong_key_size_rejected(bad):
    with pytest.raises(InvalidKeyError):
        StreamCipher(bad)


@pytest.mark.parametrize("size", [0, 1, IV_SIZE - 1])
def test_decrypt_truncated_iv(size):
    with pytest.raises(TruncatedInputError):
        _decrypt(StreamCipher(), b"\x01" * size)


def test_decrypt_iv_only_gives_empty_plaintext():
    assert _decrypt(StreamCipher(), b"\x01" * IV_SIZE) == b""


def test_iv_read_tolerates_short_reads():
    """Streams that return fewer bytes than requested still yield the full IV."""
    key = generate_key()
    blob = _encrypt(StreamCipher(key), b"short reads")

    class Dribble(io.BytesIO):
        def read(self, size=-1):
            return super().read(min(size, 3) if size and size > 0 else size)

    out = io.BytesIO()
    StreamCipher(key).decrypt(Dribble(blob), out)
    assert out.getvalue() == b"short reads"


def test_reads_are_bounded_by_chunk_size():
    sizes = []

    class Recording(io.BytesIO):
        def read(self, size=-1):
            sizes.append(size)
            return super().read(size)

    StreamCipher(chunk_size=7).encrypt(Recording(b"a" * 100), io.BytesIO())

    assert all(0 < s <= 7 for s in sizes)


def test_wrong_key_gives_garbage_not_plaintext():
    data = b"patient data" * 50
    blob = _encrypt(StreamCipher(generate_key()), data)
    assert _decrypt(StreamCipher(generate_key()), blob) != data


def test_file_helpers_roundtrip(tmp_path):
    data = os.urandom(100_000)
    in_file = tmp_path / "input.bin"
    enc_file = tmp_path / "input.enc"
    dec_file = tmp_path / "input.dec"
    in_file.write_bytes(data)

    cipher = encrypt_file(str(in_file), str(enc_file))
    decrypt_file(str(enc_file), str(dec_file), cipher.encoded_key())

    assert enc_file.stat().st_size == len(data) + IV_SIZE
    assert dec_file.read_bytes() == data
