"""Small helper to turn parsed command line arguments into a TransferConfig."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Tuple

from dicomrelay.anonymizer.whitelist import load_whitelist
from dicomrelay.core.exceptions import ConfigError
from dicomrelay.core.models import Mode, RemoteEndpoint, TransferConfig
from dicomrelay.security.keystore import load_password
from dicomrelay.security.keywrap import load_private_key, load_public_key

logger = logging.getLogger(__name__)

PASSWORD_ENV = "DICOMRELAY_FTP_PASSWORD"
PASSPHRASE_ENV = "DICOMRELAY_KEY_PASSPHRASE"


def check_file(path: str | Path) -> Path:
    """Return ``path`` if it is an existing, readable regular file."""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f'file "{path}" does not exist')
    if not path.is_file():
        raise ConfigError(f'file "{path}" is not a file')
    if not os.access(path, os.R_OK):
        raise ConfigError(f'file "{path}" is not readable')
    return path


def check_dir(path: str | Path) -> Path:
    path = Path(path)
    if not path.is_dir():
        raise ConfigError(f'directory "{path}" does not exist')
    return path


def _check_files(paths: Optional[Iterable[str]]) -> Tuple[Path, ...]:
    return tuple(check_file(p) for p in (paths or ()))


def resolve_ftp_password(args: argparse.Namespace) -> str:
    """Password from --ftp-password, the environment, or the OS keystore.

    The first one set wins, in that order.
    """
    if args.ftp_password:
        return args.ftp_password
    from_env = os.getenv(PASSWORD_ENV)
    if from_env:
        return from_env
    if args.ftp_password_keyring:
        stored = load_password(args.ftp_password_keyring, args.ftp_user)
        if stored is None:
            raise ConfigError(
                f"no password stored in keystore for service "
                f"'{args.ftp_password_keyring}' and user '{args.ftp_user}'"
            )
        return stored
    raise ConfigError(
        "no password for the FTP server given. use --ftp-password, "
        f"${PASSWORD_ENV} or --ftp-password-keyring"
    )


def build_send_config(args: argparse.Namespace) -> TransferConfig:
    if not args.ftp_user:
        raise ConfigError("no username for the FTP server given")
    endpoint = RemoteEndpoint(
        host=args.ftp_server,
        port=args.ftp_port,
        user=args.ftp_user,
        password=resolve_ftp_password(args),
    )
    whitelist = load_whitelist(check_file(args.whitelist))
    public_keys = tuple(load_public_key(p) for p in _check_files(args.enc_key))
    config = TransferConfig(
        mode=Mode.SEND,
        inputs=_check_files(args.input),
        whitelist=whitelist,
        public_keys=public_keys,
        endpoint=endpoint,
        ftp_active=args.ftp_active,
        anonymize_filenames=args.anonymize_filenames,
        keep_temp=args.debug,
        output_dir=check_dir(args.output_dir),
        work_dir=check_dir(args.work_dir),
    )
    logger.debug("Send configuration: %s", config)
    return config.validate()


def build_receive_config(args: argparse.Namespace) -> TransferConfig:
    passphrase = os.getenv(PASSPHRASE_ENV)
    private_key = load_private_key(
        check_file(args.dec_key), passphrase.encode("utf-8") if passphrase else None
    )
    config = TransferConfig(
        mode=Mode.RECEIVE,
        descriptors=_check_files(args.conf),
        private_key=private_key,
        ftp_active=args.ftp_active,
        keep_temp=args.debug,
        output_dir=check_dir(args.output_dir),
        work_dir=check_dir(args.work_dir),
    )
    logger.debug("Receive configuration: %s", config)
    return config.validate()


def build_config(args: argparse.Namespace) -> TransferConfig:
    if args.command == Mode.SEND.value:
        return build_send_config(args)
    if args.command == Mode.RECEIVE.value:
        return build_receive_config(args)
    raise ConfigError(f"no mode of operation for command {args.command!r}")
