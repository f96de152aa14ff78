"""Field extraction for ``key: value`` control-plane responses.

The CLI's ``show -f <field>`` prints one ``field: value`` line. Reads are
tolerant: nothing here raises on bad input. Every read produces a
:class:`FieldValue` whose status tells convergence policies whether a
concrete value was seen, and tells diagnostics *why* it was not.

Usage:
    value = extract_field("state: running\\n", "state")
    value.is_present            # True
    value.as_str()              # "running"

    extract_field("storage-size-gib: 128.0", "storage-size-gib").as_number()
    # Decimal('128.0'), equal to Decimal('128')
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

# Field names read by the harness
STATE = "state"
VERSION = "version"
VM_SIZE = "vm-size"
STORAGE_SIZE_GIB = "storage-size-gib"
CONNECTION_STRING = "connection-string"
EARLIEST_RESTORE_TIME = "earliest-restore-time"
FIREWALL_RULES = "firewall-rules"

_NULL_LITERALS = ("null", "none", "nil")

# Indented "N: <rule-id> <cidr> ..." lines of the firewall-rules block
_FIREWALL_RULE_LINE = re.compile(r"^\s+\d+:\s+(\S+)")


class FieldStatus(Enum):
    """Why a field read did or did not produce a value."""

    PRESENT = "present"
    ABSENT = "absent"  # empty, null or missing from the response
    MALFORMED = "malformed"  # response text could not be parsed
    UNAVAILABLE = "unavailable"  # the read itself failed (transport error)


@dataclass(frozen=True)
class FieldValue:
    """Latest read of one named resource attribute.

    Only ``PRESENT`` values carry a usable ``raw``. The other statuses all
    read as absent to convergence predicates; ``detail`` keeps the
    diagnostic (parse problem or transport error text) for logging.
    """

    name: str
    raw: Optional[str] = None
    status: FieldStatus = FieldStatus.ABSENT
    detail: Optional[str] = None

    @classmethod
    def of(cls, name: str, raw: str) -> "FieldValue":
        return cls(name=name, raw=raw, status=FieldStatus.PRESENT)

    @classmethod
    def absent(cls, name: str, detail: Optional[str] = None) -> "FieldValue":
        return cls(name=name, status=FieldStatus.ABSENT, detail=detail)

    @classmethod
    def malformed(cls, name: str, raw: str, detail: str) -> "FieldValue":
        # Keep the garbled text for diagnostics; policies never look at it.
        return cls(name=name, raw=raw, status=FieldStatus.MALFORMED, detail=detail)

    @classmethod
    def unavailable(cls, name: str, detail: str) -> "FieldValue":
        return cls(name=name, status=FieldStatus.UNAVAILABLE, detail=detail)

    @property
    def is_present(self) -> bool:
        return self.status is FieldStatus.PRESENT

    def parse_as(self, parser: Callable[[str], T]) -> Optional[T]:
        """Parse the raw value with ``parser``; ``None`` if absent or unparseable."""
        if not self.is_present:
            return None
        try:
            return parser(self.raw)
        except (ValueError, TypeError, ArithmeticError):
            return None

    def as_str(self) -> Optional[str]:
        return self.raw if self.is_present else None

    def as_number(self) -> Optional[Decimal]:
        return self.parse_as(parse_number)

    def as_timestamp(self) -> Optional[datetime]:
        return self.parse_as(parse_timestamp)

    def as_connection_descriptor(self) -> Optional[str]:
        return self.parse_as(parse_connection_descriptor)

    def describe(self) -> str:
        """Short human-readable form for progress logging."""
        if self.is_present:
            return self.raw
        if self.detail:
            return f"<{self.status.value}: {self.detail}>"
        return f"<{self.status.value}>"


def parse_number(raw: str) -> Decimal:
    """Parse a numeric field so that ``"128"`` and ``"128.0"`` compare equal."""
    try:
        number = Decimal(raw.strip())
    except InvalidOperation:
        raise ValueError(f"Not a number: {raw!r}")
    if not number.is_finite():
        raise ValueError(f"Not a finite number: {raw!r}")
    return number


def parse_timestamp(raw: str) -> datetime:
    """Parse ISO-8601 timestamps as printed by the control plane."""
    text = raw.strip()
    if text.endswith(" UTC"):
        text = text[:-4] + "+00:00"
    elif text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_connection_descriptor(raw: str) -> str:
    """Strip query parameters from a connection string."""
    descriptor = raw.strip().split("?", 1)[0]
    if "://" not in descriptor:
        raise ValueError(f"Not a connection URI: {raw!r}")
    return descriptor


def parse_field_line(line: str) -> Optional[Tuple[str, str]]:
    """Split one ``key: value`` line on its first colon.

    Returns ``None`` for lines without a colon or with an empty key.
    """
    key, sep, value = line.partition(":")
    key = key.strip()
    if not sep or not key:
        return None
    return key, value.strip()


def extract_field(
    output: Optional[str], field_name: str, ignore_case: bool = False
) -> FieldValue:
    """Find ``field_name`` in ``key: value`` formatted output.

    Args:
        output: Raw CLI output (may be ``None`` or empty).
        field_name: Field to look for.
        ignore_case: Match the key case-insensitively.

    Returns:
        A present value, an absent value (empty output, missing field, empty
        or ``null`` value) or a malformed value (non-empty output with no
        parseable ``key: value`` line at all).
    """
    if output is None or not output.strip():
        return FieldValue.absent(field_name)

    wanted = field_name.lower() if ignore_case else field_name
    parsed_any = False
    for line in output.splitlines():
        if not line.strip():
            continue
        pair = parse_field_line(line)
        if pair is None:
            continue
        parsed_any = True
        key, value = pair
        if (key.lower() if ignore_case else key) != wanted:
            continue
        if not value or value.lower() in _NULL_LITERALS:
            return FieldValue.absent(field_name)
        return FieldValue.of(field_name, value)

    if not parsed_any:
        return FieldValue.malformed(
            field_name, output.strip(), "no 'key: value' line in response"
        )
    return FieldValue.absent(field_name, "field not in response")


def parse_firewall_rule_ids(output: Optional[str]) -> List[str]:
    """Extract rule ids from a ``firewall-rules`` listing."""
    if not output:
        return []
    ids = []
    for line in output.splitlines():
        match = _FIREWALL_RULE_LINE.match(line)
        if match:
            ids.append(match.group(1))
    return ids


def normalize_target(target) -> Tuple[Optional[Decimal], str]:
    """Return (numeric form or None, string form) of a convergence target."""
    text = str(target).strip()
    try:
        return parse_number(text), text
    except ValueError:
        return None, text


__all__ = [
    "STATE",
    "VERSION",
    "VM_SIZE",
    "STORAGE_SIZE_GIB",
    "CONNECTION_STRING",
    "EARLIEST_RESTORE_TIME",
    "FIREWALL_RULES",
    "FieldStatus",
    "FieldValue",
    "extract_field",
    "parse_field_line",
    "parse_firewall_rule_ids",
    "parse_number",
    "parse_timestamp",
    "parse_connection_descriptor",
    "normalize_target",
]
