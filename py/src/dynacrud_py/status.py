from __future__ import annotations

from enum import IntEnum

from .errors import StatusInvalidError


class CrudStatus(IntEnum):
    NONE = 0
    DRAFT = 1
    ENABLED = 2
    DISABLED = 3
    DELETED = 4
    BLOCKED = 5
    ERROR = 99


_STATUS_KEYS: dict[CrudStatus, str] = {
    CrudStatus.DRAFT: "draft",
    CrudStatus.ENABLED: "enable",
    CrudStatus.DISABLED: "disable",
    CrudStatus.DELETED: "delete",
    CrudStatus.BLOCKED: "block",
}

# one timestamp per status that has a key; exactly one is present on a record
LIFECYCLE_FIELDS: tuple[str, ...] = tuple(_STATUS_KEYS.values())


def status_key(status: int | CrudStatus) -> str:
    """Name of the lifecycle timestamp attribute for ``status``."""
    try:
        key = _STATUS_KEYS.get(CrudStatus(status))
    except ValueError:
        key = None
    if key is None:
        raise StatusInvalidError(f"status {status!r} has no lifecycle key")
    return key


def parse_status(value: int | CrudStatus) -> CrudStatus:
    """Accept a storable status (one with a lifecycle key)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise StatusInvalidError(f"invalid status {value!r}")
    status_key(value)
    return CrudStatus(value)
