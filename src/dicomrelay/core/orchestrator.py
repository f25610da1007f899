"""
Send / receive pipelines.

Send, per input file::

    REDACTING -> ENCRYPTING -> DIGESTING -> WRAPPING -> UPLOADING -> DESCRIPTOR_WRITTEN

Receive, per descriptor::

    DOWNLOADING -> VERIFYING -> UNWRAPPING -> DECRYPTING -> DONE

Stages only move forward. A failure stops the current item, is recorded with
the stage it happened in, and the batch carries on with the next item.
Intermediate files (redacted copy, ciphertext) live in the work directory and
are removed whether the item succeeds or fails, unless ``keep_temp`` is set.

On the receive side the digest is checked before the key is unwrapped, so
tampered or corrupted ciphertext is never decrypted.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..anonymizer.engine import redact_file
from ..network.client import FtpTransport
from ..security.crypto import StreamCipher, encrypt_file
from ..security.keywrap import unwrap_key, wrap_for_recipients
from .descriptor import (
    TransferDescriptor,
    anonymous_data_filename,
    build_descriptors,
    descriptor_filename,
    load_descriptor,
    save_descriptor,
)
from .exceptions import ConfigError, DicomRelayError, FormatError
from .hashing import calculate_sha512, require_digest
from .models import (
    ItemResult,
    Mode,
    ReceiveState,
    RemoteEndpoint,
    SendState,
    TransferConfig,
    UploadResult,
)

logger = logging.getLogger(__name__)

TransportFactory = Callable[..., FtpTransport]

REDACTED_PREFIX = "anonymized_"
ENCRYPTED_PREFIX = "encrypted_"
PARTIAL_SUFFIX = ".part"
MAX_NAME_ATTEMPTS = 1000


class _Progress:
    """Tracks the current stage and refuses to skip or go back."""

    def __init__(self, states: type[Enum]):
        self._order = list(states)
        self.state = self._order[0]

    def enter(self, state: Enum) -> None:
        current = self._order.index(self.state)
        if self._order.index(state) != current + 1:
            raise RuntimeError(f"illegal transition {self.state.name} -> {state.name}")
        self.state = state
        logger.debug("-> %s", state.name)


def safe_data_filename(name: str) -> str:
    """Strip directories so a descriptor cannot write outside the output dir."""
    base = Path(name.replace("\\", "/")).name
    if base in ("", ".", ".."):
        raise FormatError(f"unusable data filename {name!r}")
    return base


class TransferOrchestrator:
    """Runs the send or receive pipeline over every item of a TransferConfig."""

    def __init__(self, config: TransferConfig, transport_factory: Optional[TransportFactory] = None):
        self.config = config
        self.transport_factory = transport_factory or FtpTransport.from_endpoint

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transport(self, endpoint: RemoteEndpoint) -> FtpTransport:
        return self.transport_factory(endpoint, active=self.config.ftp_active)

    def _cleanup(self, paths: Sequence[Path]) -> None:
        existing = [p for p in paths if p.exists()]
        if not existing:
            return
        if self.config.keep_temp:
            logger.info("Keeping temporary files: %s", ", ".join(str(p) for p in existing))
            return
        for path in existing:
            try:
                path.unlink()
            except OSError as e:
                # best effort, never fatal
                logger.warning("can not delete temporary file %s: %s", path, e)

    def _write_descriptors(
        self, name: str, descriptors: Sequence[TransferDescriptor], written: List[Path]
    ) -> None:
        """Create one descriptor file per recipient, appending each to ``written``.

        Files are created exclusively. When a name is already taken, for
        instance by an earlier input with the same file name, the files of
        this attempt are removed and the next alternative name is tried.
        """
        out_dir = Path(self.config.output_dir)
        for attempt in range(MAX_NAME_ATTEMPTS):
            start = len(written)
            try:
                for descriptor in descriptors:
                    target = out_dir / descriptor_filename(name, descriptor.recipient_index, attempt)
                    written.append(save_descriptor(descriptor, target))
                return
            except FileExistsError as e:
                logger.debug("descriptor name taken (%s), trying another", e.filename)
                for p in written[start:]:
                    p.unlink(missing_ok=True)
                del written[start:]
        raise ConfigError(f"no free descriptor filename for {name} in {out_dir}")

    @staticmethod
    def _fail(item: str, state: Enum, error: BaseException) -> ItemResult:
        if isinstance(error, (DicomRelayError, OSError)):
            logger.error("%s failed while %s: %s", item, state.value, error)
        else:
            logger.exception("%s failed unexpectedly while %s", item, state.value)
        return ItemResult(item=item, state=state, error=error)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    def send_file(self, path: Path) -> ItemResult:
        """Redact, encrypt, digest, wrap, upload and write descriptors for one file."""
        cfg = self.config
        path = Path(path)
        name = path.name
        work_dir = Path(cfg.work_dir)
        redacted_path = work_dir / f"{REDACTED_PREFIX}{name}"
        encrypted_path = work_dir / f"{ENCRYPTED_PREFIX}{REDACTED_PREFIX}{name}"
        written: List[Path] = []
        progress = _Progress(SendState)
        cipher: Optional[StreamCipher] = None

        try:
            progress.enter(SendState.REDACTING)
            redact_file(cfg.whitelist, path, redacted_path)

            progress.enter(SendState.ENCRYPTING)
            cipher = encrypt_file(str(redacted_path), str(encrypted_path))

            progress.enter(SendState.DIGESTING)
            digest = calculate_sha512(encrypted_path)

            progress.enter(SendState.WRAPPING)
            wrapped_keys = wrap_for_recipients(cipher.encoded_key(), cfg.public_keys)
            # the content key is not needed past this point
            cipher = None

            progress.enter(SendState.UPLOADING)
            with self._transport(cfg.endpoint) as transport, open(encrypted_path, "rb") as f:
                remote_name = transport.upload(f)

            data_filename = anonymous_data_filename(remote_name) if cfg.anonymize_filenames else name
            upload = UploadResult(remote_name, data_filename, cfg.endpoint)
            descriptors = build_descriptors(upload, digest, wrapped_keys)
            self._write_descriptors(name, descriptors, written)
            progress.enter(SendState.DESCRIPTOR_WRITTEN)
        except Exception as e:
            # a partial fan-out is worse than none; only files this item created
            for p in written:
                p.unlink(missing_ok=True)
            return self._fail(name, progress.state, e)
        finally:
            self._cleanup([redacted_path, encrypted_path])

        logger.info("Sent %s as remote file %s for %d recipient(s)", name, remote_name, len(written))
        return ItemResult(item=name, state=progress.state, outputs=tuple(written))

    def send_all(self) -> List[ItemResult]:
        return [self.send_file(path) for path in self.config.inputs]

    # ------------------------------------------------------------------
    # Receive
    # ------------------------------------------------------------------

    def receive_descriptor(self, descriptor: TransferDescriptor, item: Optional[str] = None) -> ItemResult:
        """Download, verify, unwrap and decrypt the file one descriptor points at."""
        cfg = self.config
        item = item or descriptor.remote_filename
        progress = _Progress(ReceiveState)
        encrypted_path: Optional[Path] = None
        partial_path: Optional[Path] = None

        try:
            data_name = safe_data_filename(descriptor.data_filename)
            encrypted_path = Path(cfg.work_dir) / f"{ENCRYPTED_PREFIX}{data_name}"
            output_path = Path(cfg.output_dir) / data_name
            partial_path = output_path.with_name(output_path.name + PARTIAL_SUFFIX)

            progress.enter(ReceiveState.DOWNLOADING)
            with self._transport(descriptor.endpoint) as transport, open(encrypted_path, "wb") as sink:
                transport.download(descriptor.remote_filename, sink)

            progress.enter(ReceiveState.VERIFYING)
            require_digest(descriptor.digest, calculate_sha512(encrypted_path), context=item)

            progress.enter(ReceiveState.UNWRAPPING)
            cipher = StreamCipher(unwrap_key(descriptor.wrapped_key, cfg.private_key))

            progress.enter(ReceiveState.DECRYPTING)
            with open(encrypted_path, "rb") as src, open(partial_path, "wb") as dst:
                cipher.decrypt(src, dst)
            cipher = None
            os.replace(partial_path, output_path)
            progress.enter(ReceiveState.DONE)
        except Exception as e:
            if partial_path is not None:
                partial_path.unlink(missing_ok=True)
            return self._fail(item, progress.state, e)
        finally:
            if encrypted_path is not None:
                self._cleanup([encrypted_path])

        logger.info("Received %s into %s", item, output_path)
        return ItemResult(item=item, state=progress.state, outputs=(output_path,))

    def receive_file(self, descriptor_path: Path) -> ItemResult:
        descriptor_path = Path(descriptor_path)
        try:
            descriptor = load_descriptor(descriptor_path)
        except Exception as e:
            return self._fail(descriptor_path.name, ReceiveState.IDLE, e)
        return self.receive_descriptor(descriptor, item=descriptor_path.name)

    def receive_all(self) -> List[ItemResult]:
        return [self.receive_file(path) for path in self.config.descriptors]

    # ------------------------------------------------------------------

    def run(self) -> List[ItemResult]:
        """Process every item of the configured mode; never raises per item."""
        results = self.send_all() if self.config.mode is Mode.SEND else self.receive_all()
        failed = [r for r in results if not r.ok]
        logger.info("%s finished: %d ok, %d failed",
                    self.config.mode.value, len(results) - len(failed), len(failed))
        return results
