"""DICOM whitelist anonymization: rule parsing and record filtering."""

from .whitelist import (
    TRANSFER_SYNTAX_UID,
    Disposition,
    FieldRule,
    RedactionTable,
    format_tag,
    load_whitelist,
    parse_rule,
    parse_whitelist,
)
from .engine import apply_whitelist, redact_file
from .codec import decode, encode, iter_fields

__all__ = [
    "TRANSFER_SYNTAX_UID",
    "Disposition",
    "FieldRule",
    "RedactionTable",
    "format_tag",
    "load_whitelist",
    "parse_rule",
    "parse_whitelist",
    "apply_whitelist",
    "redact_file",
    "decode",
    "encode",
    "iter_fields",
]
