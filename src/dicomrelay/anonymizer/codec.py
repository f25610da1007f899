"""Thin adapter over pydicom: the record codec used by the redaction engine."""

from __future__ import annotations

from pathlib import Path
from typing import Any, BinaryIO, Iterator, Tuple, Union

import pydicom
from pydicom.dataset import Dataset
from pydicom.errors import InvalidDicomError

from dicomrelay.core.exceptions import ConfigError, ParseError

PathOrStream = Union[str, Path, BinaryIO]

PREAMBLE = b"\x00" * 128


def decode(src: PathOrStream) -> Dataset:
    """Read a DICOM Part 10 file (path or binary stream) into a Dataset."""
    try:
        return pydicom.dcmread(src)
    except InvalidDicomError as e:
        raise ParseError(f"not a DICOM file: {e}") from e


def encode(dataset: Dataset, dst: PathOrStream) -> None:
    """Write ``dataset`` as a DICOM file.

    The encoding comes from the file meta Transfer Syntax UID, so the dataset
    must carry one.
    """
    file_meta = getattr(dataset, "file_meta", None)
    if file_meta is None or "TransferSyntaxUID" not in file_meta:
        raise ConfigError("record has no (0002,0010) Transfer Syntax UID, cannot encode it")
    if getattr(dataset, "preamble", None) is None:
        dataset.preamble = PREAMBLE
    pydicom.dcmwrite(dst, dataset, enforce_file_format=False)


def iter_fields(dataset: Dataset) -> Iterator[Tuple[int, str, Any]]:
    """Yield (tag, VR, value) for the file meta group, then the main dataset."""
    file_meta = getattr(dataset, "file_meta", None)
    if file_meta is not None:
        for elem in file_meta:
            yield int(elem.tag), elem.VR, elem.value
    for elem in dataset:
        yield int(elem.tag), elem.VR, elem.value
