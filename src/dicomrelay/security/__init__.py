"""Security helpers: streaming content encryption and per-recipient key wrapping.

This package provides:
- AES-256-CTR streaming encryption with a random IV prefix
- RSA-OAEP wrapping of the one-time content key for each recipient
- PEM key file loading and key pair generation
- optional OS keystore storage for transfer point passwords
"""

from .crypto import StreamCipher, generate_key, encrypt_file, decrypt_file
from .keywrap import (
    wrap_key,
    unwrap_key,
    wrap_for_recipients,
    load_public_key,
    load_private_key,
    generate_keypair,
)
from .keystore import save_password, load_password, delete_password

__all__ = [
    "StreamCipher",
    "generate_key",
    "encrypt_file",
    "decrypt_file",
    "wrap_key",
    "unwrap_key",
    "wrap_for_recipients",
    "load_public_key",
    "load_private_key",
    "generate_keypair",
    "save_password",
    "load_password",
    "delete_password",
]
