"""OS keystore integration for transfer-point passwords.

A tiny wrapper around `keyring` so the FTP password does not have to appear
on the command line. Entries live under a service/account pair where the
account is the FTP user name. Do not assume keyring provides hardware-backed
security on all platforms.
"""
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from dicomrelay.core.exceptions import ConfigError

DEFAULT_SERVICE = "dicomrelay"


def save_password(service: str, account: str, password: str) -> None:
    """Persist ``password`` in the OS keystore under (service, account)."""
    try:
        keyring.set_password(service, account, password)
    except KeyringError as e:
        raise ConfigError(f"could not store password in keystore: {e}") from e


def load_password(service: str, account: str) -> Optional[str]:
    """Return the stored password or None when there is no entry."""
    try:
        return keyring.get_password(service, account)
    except KeyringError as e:
        raise ConfigError(f"could not read password from keystore: {e}") from e


def delete_password(service: str, account: str) -> None:
    """Remove the entry; a missing entry is not an error."""
    try:
        keyring.delete_password(service, account)
    except PasswordDeleteError:
        pass


# backend class name fragments
_WEAK_BACKENDS = ("Plaintext", "Uncrypted", "Simple", "File", "Fail", "Null")
_PLATFORM_BACKENDS = ("Win", "Keychain", "SecretService", "KWallet")


def assess_keyring_backend() -> tuple[bool, str]:
    """Return (is_secure, message) for the keyring backend a stored FTP password would land in.

    Only class names and the backend priority are looked at, so the answer is
    a hint for the ``store-password`` command, not a guarantee.
    """
    try:
        backend = keyring.get_keyring()
    except Exception as e:
        return False, f"no keyring backend usable for FTP passwords: {e}"

    name = type(backend).__name__
    priority = getattr(backend, "priority", None)

    if any(fragment in name for fragment in _WEAK_BACKENDS):
        return False, f"keyring backend {name} would store the FTP password insecurely"
    if priority is not None and priority <= 0:
        return False, f"keyring backend {name} is not usable (priority={priority})"
    if any(fragment in name for fragment in _PLATFORM_BACKENDS):
        return True, f"keyring backend {name} looks acceptable (priority={priority})"
    return True, f"keyring backend {name} is not a known platform store (priority={priority})"
