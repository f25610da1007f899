"""Logging setup for the dicomrelay command line."""

import logging
import sys

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

# chatty libraries that only matter when debugging a transfer
_NOISY_LOGGERS = ("pydicom", "keyring")


def configure_logging(level: int = logging.INFO) -> None:
    # stdout is left to command output; every main() call reconfigures
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)
