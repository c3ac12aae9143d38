from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final, NotRequired, TypedDict

type Record = dict[str, Any]


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


# marks a field as "leave untouched"; None means "remove"
UNSET: Final = _Unset()

STATUS_KEYS = ("draft", "enable", "disable", "delete", "block")


class CrudRecord(TypedDict):
    id: str
    status: int
    userId: NotRequired[str]
    ver: NotRequired[int]
    create: NotRequired[int]
    createBy: NotRequired[str]
    update: NotRequired[int]
    updateBy: NotRequired[str]
    draft: NotRequired[int]
    enable: NotRequired[int]
    disable: NotRequired[int]
    delete: NotRequired[int]
    block: NotRequired[int]
    statusReason: NotRequired[str]
    log: NotRequired[str]


@dataclass(frozen=True)
class Projection:
    type: str
    fields: tuple[str, ...] = ()

    @staticmethod
    def all() -> Projection:
        return Projection(type="ALL")

    @staticmethod
    def keys_only() -> Projection:
        return Projection(type="KEYS_ONLY")

    @staticmethod
    def include(*fields: str) -> Projection:
        return Projection(type="INCLUDE", fields=tuple(fields))


@dataclass(frozen=True)
class IndexSpec:
    name: str
    partition: str
    sort: str | None = None
    projection: Projection = field(default_factory=Projection.all)


def gsi(name: str, *, partition: str, sort: str | None = None, projection: Projection | None = None) -> IndexSpec:
    return IndexSpec(name=name, partition=partition, sort=sort, projection=projection or Projection.all())


USER_INDEX = "userId"


def owner_status_index(status_key: str) -> str:
    return f"{USER_INDEX}-{status_key}"


def crud_indexes() -> tuple[IndexSpec, ...]:
    """Secondary indexes the CRUD queries rely on.

    ``userId`` lists one owner's records, ``userId-{key}`` ranges them by a
    lifecycle timestamp and ``{key}`` ranges every record of a status.
    """
    out = [gsi(USER_INDEX, partition="userId")]
    out.extend(gsi(owner_status_index(k), partition="userId", sort=k) for k in STATUS_KEYS)
    out.extend(gsi(k, partition="status", sort=k) for k in STATUS_KEYS)
    return tuple(out)


# attribute types of every key used by the table and its indexes
CRUD_KEY_TYPES: dict[str, str] = {
    "id": "S",
    "userId": "S",
    "status": "N",
    **{k: "N" for k in STATUS_KEYS},
}
