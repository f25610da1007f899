"""
DICOM tag whitelist: the redaction table applied before a record leaves the
sender.

Whitelist file format, one rule per line::

    # comment
    (0002,0010)             keep the original value
    (0010,0010)=ANON        replace with a constant, typed by the tag's VR
    (0010,0030)=            keep the element but force an empty value
    (0008,10x0)             'x' is a wildcard for any hex digit

Parentheses are optional, so ``0008,0020`` is the same rule as
``(0008,0020)``. Halves shorter than four digits are left-padded with zeros.
Lines are read top to bottom; a later rule for the same tag replaces an
earlier one. Blank lines and lines starting with ``#`` are skipped.

The Transfer Syntax UID (0002,0010) must be whitelisted, otherwise the
redacted record cannot be written back to a file.
"""

from __future__ import annotations

import itertools
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from pydicom import config
from pydicom.datadict import dictionary_VR
from pydicom.dataelem import DataElement
from pydicom.tag import Tag

from dicomrelay.core.exceptions import ConfigError, ParseError

logger = logging.getLogger(__name__)

TRANSFER_SYNTAX_UID = 0x00020010
COMMENT_MARKER = "#"
WILDCARD = "x"
HEX_DIGITS = "0123456789abcdef"

# VRs whose replacement text has to be converted to numbers
_INT_VRS = {"US", "UL", "SS", "SL", "SV", "UV"}
_FLOAT_VRS = {"FL", "FD"}
_BYTE_VRS = {"OB", "OW", "OD", "OF", "OL", "OV", "UN"}

_DECIMAL_RE = re.compile(r"[+-]?[0-9]+")
_HEX_RE = re.compile(r"[0-9A-Fa-f]{1,8}")


class Disposition(Enum):
    # what happens to an element whose tag is whitelisted
    PASS_THROUGH = "pass"
    REPLACE_WITH_VALUE = "replace"
    REPLACE_WITH_NULL = "null"


@dataclass(frozen=True)
class FieldRule:
    """One whitelist entry for a single concrete tag."""

    tag: int
    disposition: Disposition = Disposition.PASS_THROUGH
    vr: Optional[str] = None
    value: Any = None

    @property
    def group(self) -> int:
        return self.tag >> 16

    @property
    def element(self) -> int:
        return self.tag & 0xFFFF

    @property
    def has_value(self) -> bool:
        return self.disposition is not Disposition.PASS_THROUGH

    def make_element(self) -> DataElement:
        """Build a fresh replacement element for this rule."""
        if not self.has_value:
            raise ValueError(f"{format_tag(self.tag)} is a pass-through rule")
        value = None if self.disposition is Disposition.REPLACE_WITH_NULL else self.value
        return DataElement(self.tag, self.vr, value)


class RedactionTable(Mapping):
    """Read-only mapping of tag -> FieldRule."""

    def __init__(self, rules: Mapping[int, FieldRule], source: Optional[str] = None):
        self._rules = MappingProxyType(dict(rules))
        self.source = source

    def __getitem__(self, tag: int) -> FieldRule:
        return self._rules[int(tag)]

    def __contains__(self, tag: object) -> bool:
        try:
            return int(tag) in self._rules  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return False

    def __iter__(self) -> Iterator[int]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RedactionTable(rules={len(self)}, source={self.source!r})"

    def has_value(self, tag: int) -> bool:
        if tag not in self:
            raise KeyError(format_tag(tag))
        return self[tag].has_value


def format_tag(tag: int) -> str:
    return f"({tag >> 16:04X},{tag & 0xFFFF:04X})"


def _tag_vr(tag: int) -> str:
    try:
        vr = dictionary_VR(Tag(tag))
    except KeyError:
        # private or unknown tag
        return "UN"
    # ambiguous entries such as 'US or SS' / 'OB or OW'
    return vr.split(" or ")[0]


def _bad_value(text: str, vr: str, tag: int, line_number: Optional[int], reason: str = "") -> ParseError:
    detail = f": {reason}" if reason else ""
    return ParseError(f"value {text!r} is not valid for {format_tag(tag)} with VR {vr}{detail}", line_number)


def _convert_value(text: str, vr: str, tag: int, line_number: Optional[int]) -> Any:
    if vr in _BYTE_VRS:
        return text.encode("latin-1")
    if vr not in _INT_VRS and vr not in _FLOAT_VRS and vr != "AT":
        return text
    parts = [p.strip() for p in text.split("\\")]
    values: List[Any] = []
    for part in parts:
        if vr == "AT":
            # tags are written as eight hex digits, e.g. 00181063
            if not _HEX_RE.fullmatch(part):
                raise _bad_value(text, vr, tag, line_number)
            values.append(int(part, 16))
        elif vr in _INT_VRS:
            if not _DECIMAL_RE.fullmatch(part):
                raise _bad_value(text, vr, tag, line_number)
            values.append(int(part, 10))
        else:
            try:
                values.append(float(part))
            except ValueError:
                raise _bad_value(text, vr, tag, line_number) from None
    return values[0] if len(values) == 1 else values


def _check_value(rule: FieldRule, text: str, line_number: Optional[int]) -> None:
    """Build the replacement element once with strict validation."""
    try:
        DataElement(rule.tag, rule.vr, rule.value, validation_mode=config.RAISE)
    except (ValueError, TypeError, OverflowError) as e:
        raise _bad_value(text, rule.vr, rule.tag, line_number, str(e)) from None


def _parse_half(text: str, what: str, line_number: Optional[int]) -> str:
    half = text.strip().lower()
    if not half or len(half) > 4:
        raise ParseError(f"{what} must have one to four hex digits, got {text!r}", line_number)
    for ch in half:
        if ch not in HEX_DIGITS and ch != WILDCARD:
            raise ParseError(f"invalid character {ch!r} in {what} {text!r}", line_number)
    return half.rjust(4, "0")


def _split_rule(line: str, line_number: Optional[int]) -> Tuple[str, str, str]:
    """Split a rule into (group, element, rest) where rest starts with '=' or is empty."""
    if line.startswith("("):
        close = line.find(")")
        if close == -1:
            raise ParseError("missing closing ')'", line_number)
        ident, rest = line[1:close], line[close + 1:]
    else:
        eq = line.find("=")
        ident, rest = (line, "") if eq == -1 else (line[:eq], line[eq:])
        if ")" in ident:
            raise ParseError("unbalanced ')' in tag", line_number)
    if "," not in ident:
        raise ParseError(f"missing ',' between group and element in {ident!r}", line_number)
    group, element = ident.split(",", 1)
    return group, element, rest


def parse_rule(line: str, line_number: Optional[int] = None) -> Dict[int, FieldRule]:
    """Parse one rule line into its concrete FieldRules, expanding wildcards."""
    line = line.strip()
    group_text, element_text, rest = _split_rule(line, line_number)
    digits = _parse_half(group_text, "group", line_number) + _parse_half(
        element_text, "element", line_number
    )

    rest = rest.strip()
    if rest and not rest.startswith("="):
        raise ParseError(f"separator must be '=', got {rest[0]!r}", line_number)
    value_text = rest[1:] if rest else None

    wildcard_positions = [i for i, ch in enumerate(digits) if ch == WILDCARD]
    rules: Dict[int, FieldRule] = {}
    for combo in itertools.product(HEX_DIGITS, repeat=len(wildcard_positions)):
        concrete = list(digits)
        for pos, digit in zip(wildcard_positions, combo):
            concrete[pos] = digit
        tag = int("".join(concrete), 16)

        if value_text is None:
            rules[tag] = FieldRule(tag)
            continue
        vr = _tag_vr(tag)
        if value_text == "":
            rules[tag] = FieldRule(tag, Disposition.REPLACE_WITH_NULL, vr)
        else:
            value = _convert_value(value_text, vr, tag, line_number)
            rule = FieldRule(tag, Disposition.REPLACE_WITH_VALUE, vr, value)
            _check_value(rule, value_text, line_number)
            rules[tag] = rule
    return rules


def _is_skippable(line: str) -> bool:
    # blank lines and comment lines; anything else has to parse as a rule
    stripped = line.strip()
    return not stripped or stripped.startswith(COMMENT_MARKER)


def check_mandatory(rules: Mapping[int, FieldRule]) -> None:
    if TRANSFER_SYNTAX_UID not in rules:
        raise ConfigError("0002,0010 Transfer Syntax UID missing in whitelist")


def parse_whitelist(lines: Iterable[str], source: Optional[str] = None) -> RedactionTable:
    """Build a RedactionTable from whitelist lines."""
    rules: Dict[int, FieldRule] = {}
    for line_number, line in enumerate(lines, start=1):
        if _is_skippable(line):
            continue
        rules.update(parse_rule(line, line_number))
    check_mandatory(rules)
    table = RedactionTable(rules, source=source)
    logger.debug("Parsed whitelist %s: %d concrete tags", source or "<memory>", len(table))
    return table


def load_whitelist(path: str | Path) -> RedactionTable:
    """Read and parse a whitelist file."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return parse_whitelist(f, source=str(path))
    except UnicodeDecodeError as e:
        raise ParseError(f"whitelist {path} is not valid UTF-8: {e}") from None
