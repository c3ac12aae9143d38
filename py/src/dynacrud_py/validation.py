from __future__ import annotations

import re
from collections.abc import Sequence

from .errors import ValidationError

MaxFieldNameLength = 255
MaxNestedDepth = 32

_FIELD_PART = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*$")
_LIST_INDEX = re.compile(r"^(?P<name>[^\[\]]+)(?P<indexes>(\[[0-9]+\])+)$")
_TABLE_NAME = re.compile(r"^[a-zA-Z0-9_.-]+$")

_DANGEROUS_PATTERNS = (
    "'",
    '"',
    ";",
    "--",
    "/*",
    "*/",
    "<script",
    "eval(",
)


class SecurityValidationError(ValidationError):
    def __init__(self, *, type: str, detail: str) -> None:
        super().__init__(f"security validation failed: {type}: {detail}")
        self.type = type
        self.detail = detail


def validate_field_name(field: str) -> None:
    """Check a dotted attribute path such as ``profile.tags[0].name``.

    Every segment must be a plain identifier (hyphens allowed after the first
    character), optionally followed by one or more numeric list indexes.
    """
    if not field:
        raise SecurityValidationError(type="InvalidField", detail="field name cannot be empty")
    if len(field) > MaxFieldNameLength:
        raise SecurityValidationError(type="InvalidField", detail="field name exceeds maximum length")
    if _contains_any_substring(field.lower(), _DANGEROUS_PATTERNS):
        raise SecurityValidationError(type="InjectionAttempt", detail="field name contains dangerous pattern")
    if _contains_control_characters(field):
        raise SecurityValidationError(type="InvalidField", detail="field name contains control characters")

    parts = field.split(".")
    if len(parts) > MaxNestedDepth:
        raise SecurityValidationError(type="InvalidField", detail="nested field depth exceeds maximum")
    for part in parts:
        _validate_field_part(part)


def split_list_index(part: str) -> tuple[str, str]:
    """Split ``tags[0]`` into ``("tags", "[0]")``; plain parts get an empty suffix."""
    m = _LIST_INDEX.match(part)
    if m is None:
        return part, ""
    return m.group("name"), m.group("indexes")


def _validate_field_part(part: str) -> None:
    if not part:
        raise SecurityValidationError(type="InvalidField", detail="field part cannot be empty")

    name, _ = split_list_index(part)
    if ("[" in name or "]" in name) or _FIELD_PART.match(name) is None:
        raise SecurityValidationError(
            type="InvalidField",
            detail=f"invalid field part {part!r}",
        )


def validate_table_name(name: str) -> None:
    if len(name) < 3 or len(name) > 255:
        raise SecurityValidationError(type="InvalidTableName", detail="table name length invalid")
    if _TABLE_NAME.match(name) is None:
        raise SecurityValidationError(type="InvalidTableName", detail="table name contains invalid characters")


def validate_index_name(name: str | None) -> None:
    if not name:
        return
    if len(name) < 3 or len(name) > 255:
        raise SecurityValidationError(type="InvalidIndexName", detail="index name length invalid")
    if _TABLE_NAME.match(name) is None:
        raise SecurityValidationError(type="InvalidIndexName", detail="index name contains invalid characters")


def _contains_control_characters(value: str) -> bool:
    return any(ord(ch) <= 0x1F or ord(ch) == 0x7F for ch in value)


def _contains_any_substring(haystack: str, needles: Sequence[str]) -> bool:
    return any(n in haystack for n in needles)
