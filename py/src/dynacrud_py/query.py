from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Literal


@dataclass(frozen=True)
class SortFilter:
    """Range restriction on an index sort key.

    ``from_`` and ``to`` are inclusive bounds; leaving both unset still
    produces a ``>= 0`` clause so numeric timestamp keys only match items
    that carry the attribute.
    """

    name: str
    from_: Any = None
    to: Any = None


@dataclass(frozen=True)
class Page[T]:
    items: list[T]
    next_cursor: str | None = None


type LogicalOp = Literal["AND", "OR"]


@dataclass(frozen=True)
class Condition:
    field: str
    op: str
    values: tuple[Any, ...] = ()

    @staticmethod
    def eq(field: str, value: Any) -> Condition:
        return Condition(field=field, op="=", values=(value,))

    @staticmethod
    def ne(field: str, value: Any) -> Condition:
        return Condition(field=field, op="<>", values=(value,))

    @staticmethod
    def lt(field: str, value: Any) -> Condition:
        return Condition(field=field, op="<", values=(value,))

    @staticmethod
    def lte(field: str, value: Any) -> Condition:
        return Condition(field=field, op="<=", values=(value,))

    @staticmethod
    def gt(field: str, value: Any) -> Condition:
        return Condition(field=field, op=">", values=(value,))

    @staticmethod
    def gte(field: str, value: Any) -> Condition:
        return Condition(field=field, op=">=", values=(value,))

    @staticmethod
    def between(field: str, low: Any, high: Any) -> Condition:
        return Condition(field=field, op="between", values=(low, high))

    @staticmethod
    def in_(field: str, values: list[Any]) -> Condition:
        return Condition(field=field, op="in", values=tuple(values))

    @staticmethod
    def begins_with(field: str, prefix: Any) -> Condition:
        return Condition(field=field, op="begins_with", values=(prefix,))

    @staticmethod
    def contains(field: str, value: Any) -> Condition:
        return Condition(field=field, op="contains", values=(value,))

    @staticmethod
    def exists(field: str) -> Condition:
        return Condition(field=field, op="exists")

    @staticmethod
    def not_exists(field: str) -> Condition:
        return Condition(field=field, op="not_exists")


@dataclass(frozen=True)
class ConditionGroup:
    op: LogicalOp
    conditions: tuple[ConditionExpression, ...]
    negate: bool = False

    @staticmethod
    def and_(*conditions: ConditionExpression) -> ConditionGroup:
        return ConditionGroup(op="AND", conditions=tuple(conditions))

    @staticmethod
    def or_(*conditions: ConditionExpression) -> ConditionGroup:
        return ConditionGroup(op="OR", conditions=tuple(conditions))

    @staticmethod
    def not_(condition: ConditionExpression) -> ConditionGroup:
        return ConditionGroup(op="AND", conditions=(condition,), negate=True)


type ConditionExpression = Condition | ConditionGroup


def all_of(*conditions: ConditionExpression | None) -> ConditionExpression | None:
    present = tuple(c for c in conditions if c is not None)
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return ConditionGroup(op="AND", conditions=present)


@dataclass(frozen=True)
class Cursor:
    last_key: dict[str, Any]
    index: str | None = None
    sort: str | None = None


_SCALAR_KINDS = {"S": str, "N": str, "BOOL": bool}
_STRING_SET_KINDS = {"SS", "NS"}


def _single_entry(value: Any) -> tuple[str, Any]:
    if not isinstance(value, dict) or len(value) != 1:
        raise ValueError("attribute value must be a single-key map")
    (kind, inner), *_ = value.items()
    return str(kind), inner


def _convert_av(av: Any, *, encode: bool) -> dict[str, Any]:
    kind, value = _single_entry(av)

    if kind in _SCALAR_KINDS:
        if not isinstance(value, _SCALAR_KINDS[kind]):
            raise ValueError(f"{kind} value has the wrong type")
        return {kind: value}

    if kind == "NULL":
        if value is not True:
            raise ValueError("NULL value must be true")
        return {"NULL": True}

    if kind in _STRING_SET_KINDS:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ValueError(f"{kind} value must be a list of strings")
        return {kind: list(value)}

    if kind == "B":
        return {"B": _convert_bytes(value, encode=encode)}

    if kind == "BS":
        if not isinstance(value, list):
            raise ValueError("BS value must be a list")
        return {"BS": [_convert_bytes(v, encode=encode) for v in value]}

    if kind == "L":
        if not isinstance(value, list):
            raise ValueError("L value must be a list")
        return {"L": [_convert_av(v, encode=encode) for v in value]}

    if kind == "M":
        if not isinstance(value, dict):
            raise ValueError("M value must be a map")
        return {"M": {str(k): _convert_av(value[k], encode=encode) for k in sorted(value)}}

    raise ValueError(f"unsupported attribute value type: {kind}")


def _convert_bytes(value: Any, *, encode: bool) -> Any:
    if encode:
        if not isinstance(value, (bytes, bytearray)):
            raise ValueError("binary value must be bytes")
        return base64.b64encode(bytes(value)).decode("ascii")
    if not isinstance(value, str):
        raise ValueError("binary value must be a base64 string")
    return base64.b64decode(value)


def encode_cursor(last_key: Any, *, index: str | None = None, sort: str | None = None) -> str:
    if not last_key:
        return ""
    if not isinstance(last_key, dict):
        raise ValueError("last_key must be a map")

    payload: dict[str, Any] = {
        "lastKey": {str(k): _convert_av(last_key[k], encode=True) for k in sorted(last_key)}
    }
    if index is not None:
        payload["index"] = index
    if sort is not None:
        payload["sort"] = sort

    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    parsed = json.loads(base64.urlsafe_b64decode(raw + padding).decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    last_key_raw = parsed.get("lastKey")
    if not isinstance(last_key_raw, dict) or not last_key_raw:
        raise ValueError("cursor lastKey is invalid")

    index = parsed.get("index")
    sort = parsed.get("sort")
    return Cursor(
        last_key={str(k): _convert_av(last_key_raw[k], encode=False) for k in sorted(last_key_raw)},
        index=index if isinstance(index, str) else None,
        sort=sort if sort in {"ASC", "DESC"} else None,
    )
