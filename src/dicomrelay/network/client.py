"""
FTP client for the intermediate transfer point.

Uploads go to the next free purely numeric filename on the server, so the
remote name carries nothing about the record:

  - the lowest unused number below the current minimum is taken first
  - otherwise one above the current maximum
  - "0" when there are no numeric names yet

Transfers are always binary. Passive mode is the default; active mode is a
flag passed straight through to ftplib.

Usage:
    with FtpTransport("ftp.example.org", 21, "user", "pwd") as ftp:
        name = ftp.upload(open("encrypted.bin", "rb"))
"""
from __future__ import annotations

import ftplib
import logging
from typing import BinaryIO, Callable, Iterable, List, Optional

from dicomrelay.core.exceptions import TransportError
from dicomrelay.core.models import DEFAULT_FTP_PORT, RemoteEndpoint

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0  # seconds, per blocking socket operation
BLOCK_SIZE = 64 * 1024
MAX_FILENUMBER = 2**63 - 1


def next_numeric_filename(names: Iterable[str]) -> Optional[str]:
    """Pick the next unused numeric filename, or None when none is left.

    Non-numeric names are ignored.
    """
    numbers = [int(n) for n in names if n.isascii() and n.isdigit()]
    if not numbers:
        return "0"
    lowest, highest = min(numbers), max(numbers)
    # first fill small numbers
    if lowest > 0:
        return str(lowest - 1)
    # then fill big numbers
    if highest < MAX_FILENUMBER:
        return str(highest + 1)
    return None


class FtpTransport:
    """Connection to one FTP endpoint. Not thread-safe; one per item."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_FTP_PORT,
        user: str = "",
        password: str = "",
        active: bool = False,
        timeout: float = DEFAULT_TIMEOUT,
        ftp_factory: Callable[[], ftplib.FTP] = ftplib.FTP,
    ):
        self.host = host
        self.port = port
        self.user = user
        self._password = password
        self.active = active
        self.timeout = timeout
        self._ftp_factory = ftp_factory
        self._ftp: Optional[ftplib.FTP] = None

    @classmethod
    def from_endpoint(cls, endpoint: RemoteEndpoint, active: bool = False) -> "FtpTransport":
        return cls(endpoint.host, endpoint.port, endpoint.user, endpoint.password, active=active)

    @property
    def connected(self) -> bool:
        return self._ftp is not None

    def connect(self) -> None:
        ftp = self._ftp_factory()
        logger.debug("Connecting to %s:%s ...", self.host, self.port)
        try:
            ftp.connect(self.host, self.port, timeout=self.timeout)
        except ftplib.all_errors + (OverflowError,) as e:
            # OverflowError: port outside 0..65535
            ftp.close()
            raise TransportError(f"could not connect to {self.host}:{self.port}: {e}") from e
        try:
            ftp.login(self.user, self._password)
        except ftplib.error_perm as e:
            ftp.close()
            raise TransportError(f"FTP server did not accept credentials: {e}") from e
        except ftplib.all_errors as e:
            ftp.close()
            raise TransportError(f"login to {self.host}:{self.port} failed: {e}") from e
        ftp.set_pasv(not self.active)
        self._ftp = ftp
        logger.info("Connected to %s:%s as %s (%s mode)", self.host, self.port, self.user,
                    "active" if self.active else "passive")

    def disconnect(self) -> None:
        """Log out; a broken control channel is reported as TransportError."""
        ftp, self._ftp = self._ftp, None
        if ftp is None:
            return
        try:
            # check that the control connection is still working
            ftp.voidcmd("NOOP")
            ftp.quit()
        except ftplib.all_errors as e:
            raise TransportError(f"could not logout cleanly: {e}") from e
        finally:
            ftp.close()

    def __enter__(self) -> "FtpTransport":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.disconnect()
            return
        # already failing; don't mask the original error
        try:
            self.disconnect()
        except TransportError as e:
            logger.warning("Disconnect after failure also failed: %s", e)

    def _require(self) -> ftplib.FTP:
        if self._ftp is None:
            raise TransportError("not connected")
        return self._ftp

    def list_names(self) -> List[str]:
        ftp = self._require()
        try:
            names = ftp.nlst()
        except ftplib.error_perm as e:
            # some servers answer an empty directory with 550
            if str(e).startswith("550"):
                return []
            raise TransportError(f"listing remote directory failed: {e}") from e
        except ftplib.all_errors as e:
            raise TransportError(f"listing remote directory failed: {e}") from e
        return [name.rsplit("/", 1)[-1] for name in names]

    def put(self, stream: BinaryIO, remote_name: str) -> None:
        ftp = self._require()
        try:
            ftp.voidcmd("NOOP")
            ftp.storbinary(f"STOR {remote_name}", stream, blocksize=BLOCK_SIZE)
        except ftplib.all_errors as e:
            raise TransportError(f"upload of {remote_name} failed: {e}") from e

    def upload(self, stream: BinaryIO) -> str:
        """Store ``stream`` under the next free numeric name and return it."""
        remote_name = next_numeric_filename(self.list_names())
        if remote_name is None:
            raise TransportError("no free filenames available")
        self.put(stream, remote_name)
        logger.info("Uploaded to %s:%s as %s", self.host, self.port, remote_name)
        return remote_name

    def download(self, remote_name: str, sink: BinaryIO) -> None:
        ftp = self._require()
        try:
            ftp.voidcmd("NOOP")
            ftp.retrbinary(f"RETR {remote_name}", sink.write, blocksize=BLOCK_SIZE)
        except ftplib.all_errors as e:
            raise TransportError(f"download of {remote_name} failed: {e}") from e
        logger.info("Downloaded %s from %s:%s", remote_name, self.host, self.port)
