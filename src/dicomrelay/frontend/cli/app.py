"""
dicomrelay command line.

Usage:
  dicomrelay send --input scan.dcm [--input ...] --enc-key alice.pub [--enc-key ...] \\
      --whitelist tags.txt --ftp-server ftp.example.org --ftp-user up [--ftp-password pwd]
  dicomrelay receive --conf scan_0.rconf [--conf ...] --dec-key alice.pem
  dicomrelay keygen --private alice.pem --public alice.pub
  dicomrelay store-password --ftp-user up

Exit status is 0 when every item went through and 1 otherwise.
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import List, Optional

from dicomrelay.core.descriptor import parse_port
from dicomrelay.core.exceptions import DicomRelayError, FormatError
from dicomrelay.core.models import DEFAULT_FTP_PORT
from dicomrelay.core.orchestrator import TransferOrchestrator
from dicomrelay.security.keystore import DEFAULT_SERVICE, assess_keyring_backend, save_password
from dicomrelay.security.keywrap import DEFAULT_KEY_BITS, generate_keypair

from .context import PASSPHRASE_ENV, build_config
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

NAME = "dicomrelay"
VERSION = "1.0.0"

EXIT_SUCCESS = 0
EXIT_ERROR = 1


class _Parser(argparse.ArgumentParser):
    # usage errors are fatal conditions like any other: exit 1, not argparse's 2
    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(EXIT_ERROR, f"{self.prog}: error: {message}\n")


def _port(text: str) -> int:
    try:
        return parse_port(text)
    except FormatError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--debug", action="store_true",
                   help="verbose logging; do not delete temporary files")
    p.add_argument("--quiet", action="store_true", help="only log warnings and errors")
    p.add_argument("--ftp-active", action="store_true",
                   help="use active FTP mode (default is passive)")
    p.add_argument("--output-dir", default=".",
                   help="where descriptors (send) or decrypted files (receive) go")
    p.add_argument("--work-dir", default=".", help="where temporary files are written")


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog=NAME, description="Anonymize, encrypt and relay DICOM files via FTP")
    parser.add_argument("--version", action="version", version=f"{NAME} version {VERSION}")
    sub = parser.add_subparsers(dest="command", required=True, parser_class=_Parser)

    send = sub.add_parser("send", help="anonymize, encrypt and upload")
    _add_common(send)
    send.add_argument("--input", action="append", required=True, metavar="PATH",
                      help="dicom file to process (can be used multiple times)")
    send.add_argument("--enc-key", action="append", required=True, metavar="PATH",
                      help="file with public key for encryption (can be used multiple times)")
    send.add_argument("--whitelist", required=True, metavar="PATH",
                      help="file with dicom-tag-whitelist for anonymization")
    send.add_argument("--ftp-server", required=True, metavar="ADDRESS")
    send.add_argument("--ftp-port", type=_port, default=DEFAULT_FTP_PORT, metavar="PORTNUMBER")
    send.add_argument("--ftp-user", required=True, metavar="USERNAME")
    send.add_argument("--ftp-password", default=None, metavar="PASSWORD")
    send.add_argument("--ftp-password-keyring", default=None, metavar="SERVICE",
                      help="read the FTP password from the OS keystore")
    send.add_argument("--anonymize-filenames", action="store_true",
                      help="do not send the original filename to the receiver")

    receive = sub.add_parser("receive", help="download, verify and decrypt")
    _add_common(receive)
    receive.add_argument("--conf", action="append", required=True, metavar="PATH",
                         help="receiver configuration file (can be used multiple times)")
    receive.add_argument("--dec-key", required=True, metavar="PATH",
                         help="file with private key for decryption")

    keygen = sub.add_parser("keygen", help="generate an RSA key pair")
    keygen.add_argument("--private", required=True, metavar="PATH")
    keygen.add_argument("--public", required=True, metavar="PATH")
    keygen.add_argument("--bits", type=int, default=DEFAULT_KEY_BITS)
    keygen.add_argument("--passphrase", action="store_true",
                        help="prompt for a passphrase protecting the private key")

    store = sub.add_parser("store-password", help="save an FTP password in the OS keystore")
    store.add_argument("--ftp-user", required=True, metavar="USERNAME")
    store.add_argument("--service", default=DEFAULT_SERVICE)
    return parser


def _run_transfer(args: argparse.Namespace) -> int:
    config = build_config(args)
    results = TransferOrchestrator(config).run()
    failed = [r for r in results if not r.ok]
    for result in failed:
        print(f"error: {result.item}: {result.state.value}: {result.error}", file=sys.stderr)
    return EXIT_ERROR if failed else EXIT_SUCCESS


def _run_keygen(args: argparse.Namespace) -> int:
    password = None
    if args.passphrase:
        password = getpass.getpass("Private key passphrase: ").encode("utf-8")
        print(f"Set ${PASSPHRASE_ENV} when receiving with this key.")
    generate_keypair(args.private, args.public, bits=args.bits, password=password)
    return EXIT_SUCCESS


def _run_store_password(args: argparse.Namespace) -> int:
    secure, msg = assess_keyring_backend()
    if not secure:
        logger.warning("%s", msg)
    password = getpass.getpass(f"FTP password for {args.ftp_user}: ")
    save_password(args.service, args.ftp_user, password)
    print(f"Stored password for '{args.ftp_user}' under service '{args.service}'.")
    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.INFO
    if getattr(args, "debug", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.WARNING
    configure_logging(level)

    try:
        if args.command == "keygen":
            return _run_keygen(args)
        if args.command == "store-password":
            return _run_store_password(args)
        return _run_transfer(args)
    except DicomRelayError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except OSError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
