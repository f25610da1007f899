"""
Base data models for a transfer run: endpoint, run configuration and per-item
results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Tuple

from .exceptions import ConfigError

DEFAULT_FTP_PORT = 21
MAX_PORT = 65535


class Mode(Enum):
    # mode of operation
    SEND = "send"
    RECEIVE = "receive"


class SendState(Enum):
    # forward-only stages of the send path
    IDLE = "idle"
    REDACTING = "redacting"
    ENCRYPTING = "encrypting"
    DIGESTING = "digesting"
    WRAPPING = "wrapping"
    UPLOADING = "uploading"
    DESCRIPTOR_WRITTEN = "descriptor_written"


class ReceiveState(Enum):
    # forward-only stages of the receive path
    IDLE = "idle"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    UNWRAPPING = "unwrapping"
    DECRYPTING = "decrypting"
    DONE = "done"


@dataclass(frozen=True)
class RemoteEndpoint:
    """Address and credentials of the intermediate transfer point."""

    host: str
    port: int = DEFAULT_FTP_PORT
    user: str = ""
    password: str = field(default="", repr=False)

    def __post_init__(self):
        if not self.host:
            raise ConfigError("remote host must not be empty")
        port = self.port
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= MAX_PORT:
            raise ConfigError(f"remote port must be an integer between 1 and {MAX_PORT}, got {port!r}")


@dataclass(frozen=True)
class TransferConfig:
    """Everything one run needs, built once from the command line.

    Send mode uses ``inputs``, ``whitelist``, ``public_keys`` and ``endpoint``;
    receive mode uses ``descriptors`` and ``private_key``.
    """

    mode: Mode
    inputs: Tuple[Path, ...] = ()
    whitelist: Any = None
    public_keys: Tuple[Any, ...] = ()
    endpoint: Optional[RemoteEndpoint] = None
    descriptors: Tuple[Path, ...] = ()
    private_key: Any = field(default=None, repr=False)
    ftp_active: bool = False
    anonymize_filenames: bool = False
    keep_temp: bool = False
    output_dir: Path = Path(".")
    work_dir: Path = Path(".")

    def validate(self) -> "TransferConfig":
        """Raise ConfigError when a setting the mode needs is missing."""
        if self.mode is Mode.SEND:
            if not self.inputs:
                raise ConfigError("no input files given")
            if not self.public_keys:
                raise ConfigError("no encryption key given")
            if self.whitelist is None:
                raise ConfigError("no whitelist given")
            if self.endpoint is None:
                raise ConfigError("no remote endpoint given")
            if not self.endpoint.user:
                raise ConfigError("no username for the remote endpoint given")
            if not self.endpoint.password:
                raise ConfigError("no password for the remote endpoint given")
        else:
            if self.private_key is None:
                raise ConfigError("no decryption key given")
            if not self.descriptors:
                raise ConfigError("no transfer descriptors given")
        return self


@dataclass(frozen=True)
class UploadResult:
    """What the sender knows about one uploaded ciphertext."""

    remote_filename: str
    data_filename: str
    endpoint: RemoteEndpoint


@dataclass
class ItemResult:
    """Outcome of processing one input file or descriptor."""

    item: str
    state: Enum
    error: Optional[BaseException] = None
    outputs: Tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None
