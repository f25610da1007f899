"""
Transfer descriptors: the receiver configuration file written per recipient.

A descriptor holds everything a receiver needs to fetch and decrypt one
transferred file: the wrapped content key, the SHA-512 digest of the
ciphertext, where the ciphertext lives on the transfer point and what to call
the decrypted file. It is a flat ``key=value`` text file::

    #dicomrelay receiver configuration file
    #2026-10-19T12:00:00+00:00
    xskey=<base64 RSA-OAEP wrapped key>
    digest=<base64 SHA-512>
    filename=scan.dcm
    ftpfilename=17
    ftpserver=ftp.example.org
    ftpport=21
    ftpuser=upload
    ftppwd=secret

Key names and escaping follow java.util.Properties, so files written by
existing Java senders load unchanged.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .exceptions import FormatError, IncompleteDescriptorError, ParseError
from .hashing import DIGEST_SIZE
from .models import MAX_PORT, RemoteEndpoint, UploadResult

logger = logging.getLogger(__name__)

COMMENT = "dicomrelay receiver configuration file"
SUFFIX = ".rconf"
ANONYMOUS_DATA_SUFFIX = "_dataXchanger_dicomfile"

KEY = "xskey"
DIGEST = "digest"
DATA_FILENAME = "filename"
REMOTE_FILENAME = "ftpfilename"
REMOTE_HOST = "ftpserver"
REMOTE_PORT = "ftpport"
REMOTE_USER = "ftpuser"
REMOTE_PASSWORD = "ftppwd"

REQUIRED_KEYS = (
    KEY,
    DIGEST,
    DATA_FILENAME,
    REMOTE_FILENAME,
    REMOTE_HOST,
    REMOTE_PORT,
    REMOTE_USER,
    REMOTE_PASSWORD,
)

_INDEX_RE = re.compile(r"_(\d+)" + re.escape(SUFFIX) + r"$")
_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_REVERSE_ESCAPES = {v: "\\" + k for k, v in _ESCAPES.items()}


@dataclass(frozen=True)
class TransferDescriptor:
    """One (transfer, recipient) pair. Immutable once built or loaded."""

    wrapped_key: bytes = field(repr=False)
    digest: bytes
    data_filename: str
    remote_filename: str
    endpoint: RemoteEndpoint
    recipient_index: Optional[int] = None

    def __post_init__(self):
        missing = [
            name
            for name in ("wrapped_key", "digest", "data_filename", "remote_filename")
            if not getattr(self, name)
        ]
        if missing:
            raise IncompleteDescriptorError(f"descriptor is missing {', '.join(missing)}")
        if len(self.digest) != DIGEST_SIZE:
            raise FormatError(f"digest must be {DIGEST_SIZE} bytes, got {len(self.digest)}")

    def to_properties(self) -> Dict[str, str]:
        return {
            KEY: base64.b64encode(self.wrapped_key).decode("ascii"),
            DIGEST: base64.b64encode(self.digest).decode("ascii"),
            DATA_FILENAME: self.data_filename,
            REMOTE_FILENAME: self.remote_filename,
            REMOTE_HOST: self.endpoint.host,
            REMOTE_PORT: str(self.endpoint.port),
            REMOTE_USER: self.endpoint.user,
            REMOTE_PASSWORD: self.endpoint.password,
        }


# ----------------------------------------------------------------------
# Fan-out
# ----------------------------------------------------------------------

def build_descriptors(
    upload: UploadResult, digest: bytes, wrapped_keys: Sequence[bytes]
) -> List[TransferDescriptor]:
    """One descriptor per wrapped key, all pointing at the same ciphertext."""
    return [
        TransferDescriptor(
            wrapped_key=wrapped,
            digest=digest,
            data_filename=upload.data_filename,
            remote_filename=upload.remote_filename,
            endpoint=upload.endpoint,
            recipient_index=index,
        )
        for index, wrapped in enumerate(wrapped_keys)
    ]


def anonymous_data_filename(remote_filename: str) -> str:
    return remote_filename + ANONYMOUS_DATA_SUFFIX


def descriptor_filename(input_name: str, index: int, attempt: int = 0) -> str:
    """``scan.dcm`` and recipient 0 -> ``scan_0.rconf``.

    A non-zero ``attempt`` gives the alternative ``scan-<attempt>_0.rconf``,
    used when another input with the same name already took the first one.
    """
    name = Path(input_name).name
    stem = name.rsplit(".", 1)[0] if "." in name.lstrip(".") else name
    if attempt:
        stem = f"{stem}-{attempt}"
    return f"{stem}_{index}{SUFFIX}"


def recipient_index_from_path(path: str | Path) -> Optional[int]:
    match = _INDEX_RE.search(Path(path).name)
    return int(match.group(1)) if match else None


# ----------------------------------------------------------------------
# Properties text format
# ----------------------------------------------------------------------

def _escape(text: str) -> str:
    out = []
    for i, ch in enumerate(text):
        if ch == "\\":
            out.append("\\\\")
        elif ch in _REVERSE_ESCAPES:
            out.append(_REVERSE_ESCAPES[ch])
        elif ch in "=:#!" or (ch == " " and i == 0):
            out.append("\\" + ch)
        else:
            out.append(ch)
    return "".join(out)


def _unescape(text: str, line_number: int) -> str:
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        if i + 1 >= len(text):
            raise ParseError("line continuation is not supported", line_number)
        nxt = text[i + 1]
        if nxt == "u":
            code = text[i + 2:i + 6]
            if len(code) != 4 or any(c not in "0123456789abcdefABCDEF" for c in code):
                raise ParseError(f"malformed \\u escape {code!r}", line_number)
            out.append(chr(int(code, 16)))
            i += 6
            continue
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _split_pair(line: str, line_number: int) -> tuple[str, str]:
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch in "=:":
            key = _unescape(line[:i].strip(), line_number)
            value = _unescape(line[i + 1:].lstrip(), line_number)
            return key, value
        i += 1
    raise ParseError(f"expected key=value, got {line!r}", line_number)


def parse_properties(lines: Iterable[str]) -> Dict[str, str]:
    props: Dict[str, str] = {}
    for line_number, raw in enumerate(lines, start=1):
        line = raw.rstrip("\r\n").lstrip()
        if not line or line[0] in "#!":
            continue
        key, value = _split_pair(line, line_number)
        props[key] = value
    return props


def dumps(descriptor: TransferDescriptor, comment: str = COMMENT) -> str:
    stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
    lines = [f"#{comment}", f"#{stamp}"]
    for key, value in descriptor.to_properties().items():
        lines.append(f"{key}={_escape(value)}")
    return "\n".join(lines) + "\n"


_PORT_RE = re.compile(r"[0-9]+")


def parse_port(text: str) -> int:
    """Plain decimal digits in 1..65535, nothing else."""
    text = text.strip()
    if not _PORT_RE.fullmatch(text):
        raise FormatError(f"{REMOTE_PORT} is not a valid integer: {text!r}")
    port = int(text)
    if not 1 <= port <= MAX_PORT:
        raise FormatError(f"{REMOTE_PORT} must be between 1 and {MAX_PORT}, got {port}")
    return port


def _decode_b64(props: Dict[str, str], key: str) -> bytes:
    try:
        return base64.b64decode(props[key], validate=True)
    except (binascii.Error, ValueError):
        raise FormatError(f"{key} is not valid base64") from None


def from_properties(props: Dict[str, str], recipient_index: Optional[int] = None) -> TransferDescriptor:
    """Validate a loaded key/value mapping and turn it into a descriptor."""
    missing = [key for key in REQUIRED_KEYS if key not in props]
    if missing:
        raise IncompleteDescriptorError(
            f"not all necessary elements could be loaded, missing: {', '.join(missing)}"
        )
    port = parse_port(props[REMOTE_PORT])

    endpoint = RemoteEndpoint(
        host=props[REMOTE_HOST],
        port=port,
        user=props[REMOTE_USER],
        password=props[REMOTE_PASSWORD],
    )
    return TransferDescriptor(
        wrapped_key=_decode_b64(props, KEY),
        digest=_decode_b64(props, DIGEST),
        data_filename=props[DATA_FILENAME],
        remote_filename=props[REMOTE_FILENAME],
        endpoint=endpoint,
        recipient_index=recipient_index,
    )


def loads(text: str, recipient_index: Optional[int] = None) -> TransferDescriptor:
    return from_properties(parse_properties(text.splitlines()), recipient_index)


def save_descriptor(descriptor: TransferDescriptor, path: str | Path) -> Path:
    """Create ``path`` and write ``descriptor`` to it.

    The file is created with mode 0600 since it holds the transfer point
    password. An existing file is never replaced: FileExistsError is raised.
    """
    path = Path(path)
    fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(dumps(descriptor))
    logger.info("Wrote transfer descriptor %s", path)
    return path


def load_descriptor(path: str | Path) -> TransferDescriptor:
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            props = parse_properties(f)
    except UnicodeDecodeError as e:
        raise ParseError(f"descriptor {path} is not valid UTF-8: {e}") from None
    descriptor = from_properties(props, recipient_index_from_path(path))
    logger.debug("Loaded transfer descriptor %s (remote file %s)", path, descriptor.remote_filename)
    return descriptor
