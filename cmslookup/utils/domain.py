"""Domain name syntax checks.

The lookup endpoint interpolates the caller's domain into a subprocess
argument and into a result file path, so this module is the whole injection
defense: anything accepted here contains only ASCII letters, digits, ``-``
and ``.``, is at most 255 bytes long and has well-formed labels.

The grammar is the historical RFC 1035/952 hostname label syntax used for
cookie domains. Violations are returned as :class:`DomainViolation` values;
nothing in this module raises for bad input or logs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union

from ..exceptions import InvalidDomainError

MAX_DOMAIN_LENGTH = 255
MAX_LABEL_LENGTH = 63

_PERIOD = ord(".")
_HYPHEN = ord("-")


class ViolationKind(enum.Enum):
    LENGTH_EXCEEDED = "length_exceeded"
    EMPTY_LABEL = "empty_label"
    LABEL_TOO_LONG = "label_too_long"
    LABEL_LEADING_HYPHEN = "label_leading_hyphen"
    LABEL_TRAILING_HYPHEN = "label_trailing_hyphen"
    MISSING_TOP_LEVEL_LABEL = "missing_top_level_label"
    TOP_LEVEL_LABEL_LEADING_DIGIT = "top_level_label_leading_digit"
    INVALID_CHARACTER = "invalid_character"
    INVALID_BYTE_SEQUENCE = "invalid_byte_sequence"


@dataclass(frozen=True)
class DomainViolation:
    """First rule broken by a rejected domain name.

    ``offset`` is a byte offset into the UTF-8 encoded name. ``label`` holds
    the offending label for label rules, ``char`` the decoded character for
    ``INVALID_CHARACTER`` and ``length`` the measured byte length for the
    length rules. ``top_level`` is set when the rule fired on the final label.
    """

    kind: ViolationKind
    offset: int
    label: Optional[str] = None
    char: Optional[str] = None
    length: Optional[int] = None
    top_level: bool = False

    @property
    def message(self) -> str:
        """Human readable description, for logs only."""
        kind = self.kind
        what = "top level domain" if self.top_level else "label"
        if kind is ViolationKind.LENGTH_EXCEEDED:
            return f"cookie domain: name length is {self.length}, can't exceed {MAX_DOMAIN_LENGTH}"
        if kind is ViolationKind.EMPTY_LABEL:
            return f"cookie domain: invalid character '.' at offset {self.offset}: label can't begin with a period"
        if kind is ViolationKind.LABEL_TOO_LONG:
            return (
                f"cookie domain: byte length of {what} '{self.label}' is {self.length}, "
                f"can't exceed {MAX_LABEL_LENGTH}"
            )
        if kind is ViolationKind.LABEL_LEADING_HYPHEN:
            return f"cookie domain: {what} '{self.label}' at offset {self.offset} begins with a hyphen"
        if kind is ViolationKind.LABEL_TRAILING_HYPHEN:
            return f"cookie domain: {what} '{self.label}' at offset {self.offset} ends with a hyphen"
        if kind is ViolationKind.MISSING_TOP_LEVEL_LABEL:
            return "cookie domain: missing top level domain, domain can't end with a period"
        if kind is ViolationKind.TOP_LEVEL_LABEL_LEADING_DIGIT:
            return f"cookie domain: top level domain '{self.label}' at offset {self.offset} begins with a digit"
        if kind is ViolationKind.INVALID_CHARACTER:
            return f"cookie domain: invalid character '{self.char}' at offset {self.offset}"
        return f"cookie domain: invalid rune at offset {self.offset}"

    def to_dict(self) -> dict:
        out = {"kind": self.kind.value, "offset": self.offset}
        if self.top_level:
            out["top_level"] = True
        return out


def _as_bytes(name: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(name, str):
        # lone surrogates survive encoding and are reported as invalid bytes
        return name.encode("utf-8", "surrogatepass")
    return bytes(name)


def _is_label_byte(b: int) -> bool:
    # ordered by how often each class shows up in real hostnames
    return 0x61 <= b <= 0x7A or 0x30 <= b <= 0x39 or b == _HYPHEN or 0x41 <= b <= 0x5A


def _decode_char_at(data: bytes, i: int) -> Optional[str]:
    """Decode the single UTF-8 character starting at ``data[i]``.

    Returns None for a truncated or malformed sequence. UTF-8 is prefix free,
    so the shortest prefix that decodes strictly is the character itself.
    U+FFFD counts as malformed too: it is what upstream decoders leave behind
    in place of bytes they could not decode.
    """
    for width in range(1, 5):
        chunk = data[i : i + width]
        if len(chunk) < width:
            break
        try:
            char = chunk.decode("utf-8")
        except UnicodeDecodeError:
            continue
        return None if char == "\ufffd" else char
    return None


def _check_label(data: bytes, start: int, end: int, top_level: bool) -> Optional[DomainViolation]:
    size = end - start
    if size > MAX_LABEL_LENGTH:
        return DomainViolation(
            ViolationKind.LABEL_TOO_LONG,
            start,
            label=data[start:end].decode("ascii"),
            length=size,
            top_level=top_level,
        )
    if data[start] == _HYPHEN:
        return DomainViolation(
            ViolationKind.LABEL_LEADING_HYPHEN, start, label=data[start:end].decode("ascii"), top_level=top_level
        )
    if data[end - 1] == _HYPHEN:
        return DomainViolation(
            ViolationKind.LABEL_TRAILING_HYPHEN, start, label=data[start:end].decode("ascii"), top_level=top_level
        )
    return None


def check_domain(name: Union[str, bytes, bytearray]) -> Optional[DomainViolation]:
    """Return the first rule ``name`` violates, or None when it is acceptable.

    Single left-to-right pass over the bytes. Each ``.`` closes the current
    label, which must be non-empty, at most 63 bytes and must neither start
    nor end with a hyphen. Every other byte must be an ASCII letter, digit or
    hyphen. The trailing label is the top level domain: it must exist and,
    in addition to the label rules, must not start with a digit.
    """
    data = _as_bytes(name)
    n = len(data)
    if n == 0:
        # an empty domain means a cookie without a domain restriction
        return None
    if n > MAX_DOMAIN_LENGTH:
        return DomainViolation(ViolationKind.LENGTH_EXCEEDED, 0, length=n)

    start = 0
    for i in range(n):
        b = data[i]
        if b == _PERIOD:
            if i == start:
                return DomainViolation(ViolationKind.EMPTY_LABEL, i)
            violation = _check_label(data, start, i, top_level=False)
            if violation is not None:
                return violation
            start = i + 1
            continue
        if not _is_label_byte(b):
            char = _decode_char_at(data, i)
            if char is None:
                return DomainViolation(ViolationKind.INVALID_BYTE_SEQUENCE, i)
            return DomainViolation(ViolationKind.INVALID_CHARACTER, i, char=char)

    if start == n:
        return DomainViolation(ViolationKind.MISSING_TOP_LEVEL_LABEL, start, top_level=True)
    violation = _check_label(data, start, n, top_level=True)
    if violation is not None:
        return violation
    if 0x30 <= data[start] <= 0x39:
        return DomainViolation(
            ViolationKind.TOP_LEVEL_LABEL_LEADING_DIGIT,
            start,
            label=data[start:].decode("ascii"),
            top_level=True,
        )
    return None


def is_valid_domain(name: Union[str, bytes, bytearray]) -> bool:
    return check_domain(name) is None


def validate_domain(raw: Union[str, bytes, bytearray]) -> str:
    """Return the checked domain as text or raise InvalidDomainError.

    ``str`` input comes back unchanged. Raw bytes are only decoded once they
    have passed, at which point they are plain ASCII.

    The empty string passes the syntax check, but there is nothing to scan,
    so callers that need a host should test for it separately.
    """
    violation = check_domain(raw)
    if isinstance(raw, str):
        text = raw
    else:
        text = bytes(raw).decode("utf-8", "replace")
    if violation is not None:
        raise InvalidDomainError(text, violation)
    return text
