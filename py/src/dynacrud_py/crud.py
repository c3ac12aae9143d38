from __future__ import annotations

import base64
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Literal

from .config import ServiceConfig
from .data import DataAccessService
from .errors import (
    ConditionFailedError,
    DataEmptyError,
    EnabledRequiredError,
    ForbiddenError,
    IdExistsError,
    ValidationError,
)
from .model import UNSET, USER_INDEX, Record, owner_status_index
from .observability import EventSink
from .query import Condition, ConditionExpression, ConditionGroup, Page, SortFilter, all_of
from .record_schema import JsonSchemaValidator, SchemaViolation, Validator, with_crud_properties
from .status import LIFECYCLE_FIELDS, CrudStatus, parse_status, status_key

_LENGTH_KEYWORDS = frozenset({"minLength", "maxLength"})
_DATE_FORMATS = frozenset({"date-time", "date", "time", "duration"})
_NUMERIC_TYPES = frozenset({"number", "integer"})

# attributes a caller can never change through an update
_NEVER_CREATED = frozenset({"update", "updateBy", "statusReason"})
_NEVER_UPDATED = frozenset({"id", "create", "createBy", "userId", "status", "ver", *LIFECYCLE_FIELDS})


def encode_id(value: str) -> str:
    """Base64 of the utf-8 bytes of ``value`` without ``=`` padding."""
    return base64.b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


def _now_millis() -> int:
    return int(time.time() * 1000)


def _is_dated_number(violation: SchemaViolation) -> bool:
    schema = violation.schema or {}
    declared = schema.get("type")
    types = set(declared) if isinstance(declared, list) else {declared}
    return (
        violation.keyword in {"type", "format"}
        and bool(types & _NUMERIC_TYPES)
        and schema.get("format") in _DATE_FORMATS
        and isinstance(violation.value, str)
    )


@dataclass(frozen=True)
class _Transition:
    target: CrudStatus
    sources: tuple[CrudStatus, ...]
    exclude_sources: bool = False
    reason: Literal["set", "clear", "keep"] = "keep"


_BLOCK = _Transition(CrudStatus.BLOCKED, (CrudStatus.BLOCKED,), exclude_sources=True, reason="set")
_UNBLOCK = _Transition(CrudStatus.ENABLED, (CrudStatus.BLOCKED,), reason="clear")
_DISABLE = _Transition(CrudStatus.DISABLED, (CrudStatus.ENABLED,))
_ENABLE = _Transition(CrudStatus.ENABLED, (CrudStatus.DRAFT, CrudStatus.DISABLED), reason="clear")
_ARCHIVE = _Transition(CrudStatus.DELETED, (CrudStatus.DRAFT, CrudStatus.ENABLED, CrudStatus.DISABLED))
_RESTORE = _Transition(CrudStatus.DRAFT, (CrudStatus.DELETED,), reason="clear")


class CrudService:
    """Owner-scoped CRUD with a status lifecycle on top of ``DataAccessService``.

    Records start as drafts and move between statuses through conditional
    updates; every mutation is gated on the caller owning the record.
    Expected races (a failed condition) come back as ``False``/``None``.
    """

    def __init__(
        self,
        service_id: str,
        *,
        schema: Mapping[str, Any],
        data: DataAccessService | None = None,
        validator: Validator | None = None,
        config: ServiceConfig | None = None,
        client: Any | None = None,
        sink: EventSink | None = None,
        now: Callable[[], int] | None = None,
    ) -> None:
        if data is not None and (config is not None or client is not None or sink is not None):
            raise ValueError("CrudService: pass either data or config/client/sink, not both")
        self.data = data or DataAccessService(service_id, config=config, client=client, sink=sink)
        self.schema = with_crud_properties(schema)
        self._validator: Validator = validator or JsonSchemaValidator()
        self._now = now or _now_millis
        self.log = self.data.log

    # validation and stamping

    def validate(self, model: Mapping[str, Any] | None, required: bool = True, lenient: bool = False) -> None:
        if not model:
            raise DataEmptyError()

        schema = dict(self.schema)
        if not required:
            schema.pop("required", None)

        def on_error(violation: SchemaViolation) -> bool:
            if lenient and violation.keyword in _LENGTH_KEYWORDS:
                return False
            if lenient and _is_dated_number(violation):
                return False
            return True

        present = {k: v for k, v in model.items() if v is not None and v is not UNSET}
        self._validator.validate(present, schema, on_error)

    def set_new_model(self, model: Mapping[str, Any], user_id: str | None = None) -> Record:
        stamp = model.get("create") or self._now()
        status = parse_status(model.get("status") or CrudStatus.DRAFT)

        res = {k: v for k, v in model.items() if k not in LIFECYCLE_FIELDS and k not in _NEVER_CREATED}
        res.update(status=int(status), create=stamp, ver=0)
        res[status_key(status)] = stamp
        if user_id:
            res["userId"] = user_id
            res["createBy"] = user_id
        return res

    def set_upd_model(self, model: Mapping[str, Any], user_id: str | None = None) -> Record:
        stamp = model.get("update") or self._now()

        res = {k: v for k, v in model.items() if k not in _NEVER_UPDATED}
        res["update"] = stamp
        if user_id:
            res["updateBy"] = user_id
        return res

    # single records

    def create(self, id: str, model: Mapping[str, Any], user_id: str | None = None) -> Record:
        self.validate(model, lenient=True)
        res = self.set_new_model(model, user_id)
        try:
            return self.data.create_item(id, res)
        except ConditionFailedError as err:
            self.log.debug("create conflict", {"id": id})
            raise IdExistsError() from err

    def put_by_id(self, id: str, model: Mapping[str, Any], user_id: str | None = None) -> Record:
        self.validate(model)
        return self.data.put_item(id, self.set_new_model(model, user_id))

    def get_by_id(self, id: str, user_id: str | None, fields: Sequence[str] | None = None) -> Record | None:
        wanted = list(fields) if fields else None
        if wanted and "userId" not in wanted:
            wanted.append("userId")

        record = self.data.get_by_id(id, fields=wanted)
        if record is None:
            return None
        if record.get("userId") != user_id:
            raise ForbiddenError()

        if fields and "userId" not in fields:
            record.pop("userId", None)
        return record

    def exists_by_id(self, id: str, user_id: str | None) -> bool:
        record = self.data.get_by_id(id, fields=["userId"])
        if record is None:
            return False
        if record.get("userId") != user_id:
            raise ForbiddenError()
        return True

    def upd_by_id(self, id: str, model: Mapping[str, Any], user_id: str | None, inc: int = 1) -> Record | None:
        """Strictly validated update of an owned record; ``None`` if it is gone or not owned."""
        self.validate(model)
        try:
            return self.data.update_item(
                id,
                self.set_upd_model(model, user_id),
                condition=Condition.eq("userId", user_id),
                increments={"ver": inc},
                return_values="ALL_NEW",
            )
        except ConditionFailedError:
            self.log.debug("update rejected", {"id": id}, user_id)
            return None

    def set_by_id(self, id: str, model: Mapping[str, Any], user_id: str | None, inc: int = 1) -> bool:
        self.validate(model, required=False, lenient=True)
        try:
            self.data.update_item(
                id,
                self.set_upd_model(model, user_id),
                condition=Condition.eq("userId", user_id),
                increments={"ver": inc},
            )
        except ConditionFailedError:
            self.log.debug("set rejected", {"id": id}, user_id)
            return False
        return True

    def del_by_id(self, id: str, user_id: str | None) -> bool:
        try:
            self.data.delete_item(id, Condition.eq("userId", user_id))
        except ConditionFailedError:
            self.log.debug("delete rejected", {"id": id}, user_id)
            return False
        return True

    # status transitions

    def block_by_id(self, id: str, user_id: str | None, reason: str | None = None) -> bool:
        return self._transition(id, user_id, _BLOCK, reason)

    def unblock_by_id(self, id: str, user_id: str | None) -> bool:
        return self._transition(id, user_id, _UNBLOCK)

    def disable_by_id(self, id: str, user_id: str | None) -> bool:
        return self._transition(id, user_id, _DISABLE)

    def enable_by_id(self, id: str, user_id: str | None) -> bool:
        return self._transition(id, user_id, _ENABLE)

    def archive_by_id(self, id: str, user_id: str | None) -> bool:
        return self._transition(id, user_id, _ARCHIVE)

    def restore_by_id(self, id: str, user_id: str | None) -> bool:
        return self._transition(id, user_id, _RESTORE)

    def _transition(self, id: str, user_id: str | None, t: _Transition, reason: str | None = None) -> bool:
        stamp = self._now()
        target_key = status_key(t.target)

        model: dict[str, Any] = {k: None for k in LIFECYCLE_FIELDS}
        model[target_key] = stamp
        model["status"] = int(t.target)
        model["update"] = stamp
        if user_id:
            model["updateBy"] = user_id
        if t.reason == "set":
            model["statusReason"] = reason
        elif t.reason == "clear":
            model["statusReason"] = None

        try:
            self.data.update_item(
                id,
                model,
                condition=all_of(Condition.eq("userId", user_id), _source_condition(t)),
                increments={"ver": 1},
            )
        except ConditionFailedError:
            self.log.info(f"{t.target.name.lower()} rejected", {"id": id}, user_id)
            return False
        return True

    def move_by_id(self, new_id: str, old_id: str, user_id: str | None) -> Record:
        """Copy an enabled record under ``new_id`` and archive the original.

        The two writes are not atomic: if archiving fails the copy remains.
        """
        current = self.data.get_by_id(old_id)
        if current is None or current.get("userId") != user_id:
            raise ForbiddenError()
        if current.get("status") != CrudStatus.ENABLED:
            raise EnabledRequiredError()

        model = {**current, "id": new_id}
        try:
            self.data.create_item(new_id, model)
        except ConditionFailedError as err:
            raise IdExistsError() from err

        if not self.archive_by_id(old_id, user_id):
            self.log.warning("moved record was not archived", {"from": old_id, "to": new_id}, user_id)
        return model

    def create_by_batch(self, items: Iterable[Mapping[str, Any]], user_id: str | None = None) -> list[bool]:
        ops = []
        for item in items:
            item_id = item.get("id")
            if not item_id:
                raise ValidationError("every batch item needs an id")
            self.validate(item, lenient=True)
            ops.append(self.data.create_op(str(item_id), self.set_new_model(item, user_id)))
        return self.data.transact_write(ops)

    # queries

    def page_by_status(
        self,
        user_id: str,
        status: CrudStatus = CrudStatus.ENABLED,
        *,
        from_: Any = None,
        to: Any = None,
        asc: bool = False,
        limit: int | None = None,
        cursor: str | None = None,
        fields: Sequence[str] | None = None,
    ) -> Page[Record]:
        key = status_key(status)
        return self.data.page_by_index(
            owner_status_index(key),
            {"userId": user_id},
            sort=SortFilter(key, from_, to),
            asc=asc,
            limit=limit,
            cursor=cursor,
            fields=fields,
        )

    def count_by_status(
        self,
        user_id: str,
        status: CrudStatus = CrudStatus.ENABLED,
        *,
        from_: Any = 0,
        to: Any = None,
    ) -> int:
        key = status_key(status)
        return self.data.count(owner_status_index(key), {"userId": user_id}, sort=SortFilter(key, from_, to))

    def list_by_status(
        self,
        user_id: str,
        status: CrudStatus = CrudStatus.ENABLED,
        *,
        from_: Any = None,
        to: Any = None,
        asc: bool = False,
        fields: Sequence[str] | None = None,
    ) -> list[Record]:
        key = status_key(status)
        return self.data.list_items(
            owner_status_index(key),
            {"userId": user_id},
            sort=SortFilter(key, from_, to),
            asc=asc,
            fields=fields,
        )

    def page_all_by_status(
        self,
        status: CrudStatus = CrudStatus.ENABLED,
        *,
        from_: Any = None,
        to: Any = None,
        asc: bool = False,
        limit: int | None = None,
        cursor: str | None = None,
        fields: Sequence[str] | None = None,
    ) -> Page[Record]:
        key = status_key(status)
        return self.data.page_by_index(
            key,
            {"status": int(status)},
            sort=SortFilter(key, from_, to),
            asc=asc,
            limit=limit,
            cursor=cursor,
            fields=fields,
        )

    def list_all_by_status(
        self,
        status: CrudStatus = CrudStatus.ENABLED,
        *,
        from_: Any = None,
        to: Any = None,
        asc: bool = False,
        fields: Sequence[str] | None = None,
    ) -> list[Record]:
        key = status_key(status)
        return self.data.list_items(
            key, {"status": int(status)}, sort=SortFilter(key, from_, to), asc=asc, fields=fields
        )

    def page_by_user(
        self,
        user_id: str,
        *,
        asc: bool = False,
        limit: int | None = None,
        cursor: str | None = None,
        fields: Sequence[str] | None = None,
    ) -> Page[Record]:
        return self.data.page_by_index(
            USER_INDEX, {"userId": user_id}, asc=asc, limit=limit, cursor=cursor, fields=fields
        )

    def count_by_user(self, user_id: str) -> int:
        return self.data.count(USER_INDEX, {"userId": user_id})

    def list_by_user(self, user_id: str, fields: Sequence[str] | None = None) -> list[Record]:
        return self.data.list_items(USER_INDEX, {"userId": user_id}, fields=fields)

    def page_all(
        self,
        *,
        limit: int | None = None,
        cursor: str | None = None,
        fields: Sequence[str] | None = None,
    ) -> Page[Record]:
        return self.data.scan_all(limit=limit, cursor=cursor, fields=fields)

    def list_all(self, fields: Sequence[str] | None = None) -> list[Record]:
        return self.data.list_all(fields=fields)

    def list_by_ids(self, ids: Iterable[str], fields: Sequence[str] | None = None) -> list[Record]:
        return self.data.list_by_ids(ids, fields)


def _source_condition(t: _Transition) -> ConditionExpression:
    if t.exclude_sources:
        excluded = [Condition.ne("status", int(s)) for s in t.sources]
        return excluded[0] if len(excluded) == 1 else ConditionGroup.and_(*excluded)
    if len(t.sources) == 1:
        return Condition.eq("status", int(t.sources[0]))
    return ConditionGroup.or_(*(Condition.eq("status", int(s)) for s in t.sources))
