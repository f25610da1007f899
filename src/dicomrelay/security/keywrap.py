"""RSA-OAEP wrapping of the one-time content key, plus PEM key file helpers.

Padding is OAEP with MGF1(SHA-1) and a SHA-1 label hash, which is what peers
using ``RSA/ECB/OAEPWithSHA-1AndMGF1Padding`` produce and expect.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from dicomrelay.core.exceptions import InvalidKeyError, UnwrapError

logger = logging.getLogger(__name__)

DEFAULT_KEY_BITS = 4096


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA1()),
        algorithm=hashes.SHA1(),
        label=None,
    )


def _require_public(key) -> rsa.RSAPublicKey:
    if not isinstance(key, rsa.RSAPublicKey):
        raise InvalidKeyError(f"expected an RSA public key, got {type(key).__name__}")
    return key


def _require_private(key) -> rsa.RSAPrivateKey:
    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidKeyError(f"expected an RSA private key, got {type(key).__name__}")
    return key


def wrap_key(key_bytes: bytes, public_key: rsa.RSAPublicKey) -> bytes:
    """Encrypt ``key_bytes`` for the holder of ``public_key``."""
    public_key = _require_public(public_key)
    try:
        return public_key.encrypt(key_bytes, _oaep())
    except ValueError as e:
        # modulus too small to carry the key under OAEP
        raise InvalidKeyError(f"public key cannot wrap a {len(key_bytes)} byte key: {e}") from e


def wrap_for_recipients(key_bytes: bytes, public_keys: Iterable[rsa.RSAPublicKey]) -> List[bytes]:
    """Wrap the same key once per recipient; each blob is independent."""
    return [wrap_key(key_bytes, pub) for pub in public_keys]


def unwrap_key(wrapped: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
    """Recover a wrapped key.

    Every decryption failure surfaces as the same UnwrapError with the same
    message, so callers cannot tell which padding check rejected the blob.
    """
    private_key = _require_private(private_key)
    try:
        return private_key.decrypt(wrapped, _oaep())
    except ValueError:
        raise UnwrapError("could not unwrap secret key") from None


# ----------------------------------------------------------------------
# PEM key files
# ----------------------------------------------------------------------

def load_public_key(path: str | Path) -> rsa.RSAPublicKey:
    """Read an RSA public key (SubjectPublicKeyInfo PEM) from ``path``."""
    data = Path(path).read_bytes()
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise InvalidKeyError(f"parsing public key file '{path}' failed: {e}") from e
    return _require_public(key)


def load_private_key(path: str | Path, password: Optional[bytes] = None) -> rsa.RSAPrivateKey:
    """Read an RSA private key (PKCS#8 or traditional PEM) from ``path``."""
    data = Path(path).read_bytes()
    try:
        key = serialization.load_pem_private_key(data, password=password)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        # TypeError: passphrase missing for an encrypted key, or given for a plain one
        raise InvalidKeyError(f"parsing private key file '{path}' failed: {e}") from e
    return _require_private(key)


def generate_keypair(
    private_path: str | Path,
    public_path: str | Path,
    bits: int = DEFAULT_KEY_BITS,
    password: Optional[bytes] = None,
) -> rsa.RSAPrivateKey:
    """Generate an RSA key pair and write it as PEM files.

    The private key is written PKCS#8 with mode 0600, encrypted when a
    ``password`` is given.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
    if password:
        encryption = serialization.BestAvailableEncryption(password)
    else:
        encryption = serialization.NoEncryption()

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    fd = os.open(str(private_path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(private_pem)
    Path(public_path).write_bytes(public_pem)
    logger.info("Wrote %d bit RSA key pair to %s / %s", bits, private_path, public_path)
    return private_key
