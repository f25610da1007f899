"""
Whitelist anonymizer: builds a new record holding only whitelisted elements.

Elements whose tag is not in the table are dropped, pass-through rules copy
the element, replacement rules substitute the rule's value. The file meta
group goes through the same table as the main dataset, which is why the
transfer syntax has to be whitelisted.
"""

from __future__ import annotations

import copy
import logging

from pydicom.dataset import Dataset, FileMetaDataset

from .codec import PREAMBLE, PathOrStream, decode, encode
from .whitelist import RedactionTable

logger = logging.getLogger(__name__)


def _filter_into(table: RedactionTable, source: Dataset, target: Dataset) -> int:
    dropped = 0
    for elem in source:
        tag = int(elem.tag)
        if tag not in table:
            dropped += 1
            continue
        rule = table[tag]
        if rule.has_value:
            target.add(rule.make_element())
        else:
            target.add(copy.deepcopy(elem))
    return dropped


def apply_whitelist(table: RedactionTable, dataset: Dataset) -> Dataset:
    """Return a redacted copy of ``dataset``; the input is left untouched.

    Only elements present in the input are emitted, in the input's order.
    """
    redacted = Dataset()
    dropped = 0

    file_meta = getattr(dataset, "file_meta", None)
    if file_meta is not None:
        redacted.file_meta = FileMetaDataset()
        dropped += _filter_into(table, file_meta, redacted.file_meta)

    dropped += _filter_into(table, dataset, redacted)
    redacted.preamble = getattr(dataset, "preamble", None) or PREAMBLE

    logger.debug("Whitelist kept %d elements, dropped %d", len(redacted), dropped)
    return redacted


def redact_file(table: RedactionTable, src: PathOrStream, dst: PathOrStream) -> Dataset:
    """Decode ``src``, apply the whitelist and encode the result to ``dst``."""
    redacted = apply_whitelist(table, decode(src))
    encode(redacted, dst)
    return redacted
