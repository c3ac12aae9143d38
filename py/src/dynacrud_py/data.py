from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from .cache import MemoryQueryCache, NoopQueryCache, QueryCache, cache_key
from .config import ServiceConfig
from .errors import AlreadyExistsError, ConditionFailedError, TransactionCanceledError, ValidationError
from .expressions import (
    ExpressionContext,
    build_key_condition,
    build_projection,
    build_update,
    item_condition,
    render_condition,
)
from .gateway import BatchGetLimit, StorageGateway, TransactLimit, chunked
from .model import UNSET, Record
from .observability import EventSink, ServiceLog
from .query import ConditionExpression, Page, SortFilter, decode_cursor, encode_cursor
from .runtime import get_dynamodb_client
from .transaction import (
    TransactConditionCheck,
    TransactDelete,
    TransactGet,
    TransactPut,
    TransactUpdate,
    TransactWriteAction,
)
from .validation import validate_index_name, validate_table_name

type Key = Mapping[str, Any]


def _names(ctx: ExpressionContext) -> dict[str, str] | None:
    return ctx.names or None


def _values(ctx: ExpressionContext) -> dict[str, Any] | None:
    return ctx.values or None


def _stored(item: Mapping[str, Any]) -> Record:
    return {k: v for k, v in item.items() if v is not None and v is not UNSET}


class DataAccessService:
    """Record access for one ``{app}.{service_id}`` table keyed by ``id``.

    Builds every expression through an ``ExpressionContext`` and talks to
    DynamoDB through a ``StorageGateway``. Queries page with opaque cursors;
    transactional writes are chunked and report a per-item outcome.
    """

    def __init__(
        self,
        service_id: str,
        *,
        config: ServiceConfig | None = None,
        client: Any | None = None,
        gateway: StorageGateway | None = None,
        cache: QueryCache | None = None,
        sink: EventSink | None = None,
        max_workers: int | None = None,
        sleep: Callable[[float], None] | None = time.sleep,
    ) -> None:
        if not service_id:
            raise ValidationError("service_id is required")

        self.config = config or ServiceConfig.from_env()
        self.service_id = service_id
        self.table_name = self.config.table_name(service_id)
        validate_table_name(self.table_name)

        if gateway is None:
            gateway = StorageGateway(self.table_name, client=client or get_dynamodb_client(self.config))
        self._gateway = gateway
        if cache is None:
            cache = MemoryQueryCache() if self.config.debug else NoopQueryCache()
        self._cache = cache
        self._max_workers = max_workers
        self._sleep = sleep
        self.log = ServiceLog(service_id, sink=sink)

    # reads

    def page_by_index(
        self,
        index: str | None,
        key: Key,
        *,
        sort: SortFilter | None = None,
        asc: bool = False,
        limit: int | None = None,
        cursor: str | None = None,
        fields: Sequence[str] | None = None,
        filter: ConditionExpression | None = None,
    ) -> Page[Record]:
        """One page of an index query; ``next_cursor`` resumes after its last item."""
        validate_index_name(index)
        if limit is not None:
            if limit < 0:
                raise ValidationError("limit must be >= 0")
            if limit == 0:
                return Page(items=[])

        direction = "ASC" if asc else "DESC"
        start_key = self._resume(cursor, index=index, direction=direction)

        ctx = ExpressionContext()
        key_condition = build_key_condition(key, sort, ctx)
        projection = build_projection(fields, ctx)
        filter_expr = render_condition(filter, ctx, "f") if filter is not None else None

        res = self._gateway.query(
            index=index,
            key_condition=key_condition,
            names=_names(ctx),
            values=_values(ctx),
            filter=filter_expr,
            projection=projection,
            limit=limit,
            exclusive_start_key=start_key,
            scan_forward=asc,
        )
        next_cursor = encode_cursor(res.last_key, index=index, sort=direction) if res.last_key else None
        return Page(items=res.items, next_cursor=next_cursor)

    def scan_all(
        self,
        *,
        index: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        fields: Sequence[str] | None = None,
        filter: ConditionExpression | None = None,
    ) -> Page[Record]:
        validate_index_name(index)
        if limit is not None:
            if limit < 0:
                raise ValidationError("limit must be >= 0")
            if limit == 0:
                return Page(items=[])

        start_key = self._resume(cursor, index=index, direction=None)

        ctx = ExpressionContext()
        projection = build_projection(fields, ctx)
        filter_expr = render_condition(filter, ctx, "f") if filter is not None else None

        res = self._gateway.scan(
            index=index,
            names=_names(ctx),
            values=_values(ctx),
            filter=filter_expr,
            projection=projection,
            limit=limit,
            exclusive_start_key=start_key,
        )
        next_cursor = encode_cursor(res.last_key, index=index) if res.last_key else None
        return Page(items=res.items, next_cursor=next_cursor)

    def _resume(self, cursor: str | None, *, index: str | None, direction: str | None) -> dict[str, Any] | None:
        if not cursor:
            return None
        try:
            decoded = decode_cursor(cursor)
        except ValueError as err:
            raise ValidationError(f"invalid cursor: {err}") from err
        if decoded.index != index:
            raise ValidationError(f"cursor was issued for index {decoded.index!r}, not {index!r}")
        if decoded.sort != direction:
            raise ValidationError(f"cursor was issued for sort {decoded.sort!r}, not {direction!r}")
        return decoded.last_key

    def count(
        self,
        index: str | None,
        key: Key,
        *,
        sort: SortFilter | None = None,
        filter: ConditionExpression | None = None,
    ) -> int:
        validate_index_name(index)
        ctx = ExpressionContext()
        key_condition = build_key_condition(key, sort, ctx)
        filter_expr = render_condition(filter, ctx, "f") if filter is not None else None

        total = 0
        start_key: Mapping[str, Any] | None = None
        while True:
            res = self._gateway.query(
                index=index,
                key_condition=key_condition,
                names=_names(ctx),
                values=_values(ctx),
                filter=filter_expr,
                exclusive_start_key=start_key,
                select="COUNT",
            )
            total += res.count
            if not res.last_key:
                return total
            start_key = res.last_key

    def get_by_id(self, id: str, fields: Sequence[str] | None = None) -> Record | None:
        ctx = ExpressionContext()
        projection = build_projection(fields, ctx)
        return self._gateway.get_item({"id": id}, projection=projection, names=_names(ctx))

    def exists_by_id(self, id: str) -> bool:
        return self.get_by_id(id, fields=["id"]) is not None

    def list_by_ids(self, ids: Iterable[str], fields: Sequence[str] | None = None) -> list[Record]:
        """Batch-read ``ids`` and return matches in first-occurrence order.

        Duplicates are read once; ids with no record are left out.
        """
        unique = list(dict.fromkeys(ids))
        if not unique:
            return []

        ctx = ExpressionContext()
        if fields and "id" not in fields:
            fields = [*fields, "id"]
        projection = build_projection(fields, ctx)

        found: dict[str, Record] = {}
        for chunk in chunked(unique, BatchGetLimit):
            items = self._gateway.batch_get(
                [{"id": i} for i in chunk],
                projection=projection,
                names=_names(ctx),
                sleep=self._sleep,
            )
            for item in items:
                found[str(item.get("id"))] = item

        return [found[i] for i in unique if i in found]

    def list_all(
        self,
        index: str | None = None,
        fields: Sequence[str] | None = None,
        filter: ConditionExpression | None = None,
    ) -> list[Record]:
        out: list[Record] = []
        cursor: str | None = None
        while True:
            page = self.scan_all(index=index, cursor=cursor, fields=fields, filter=filter)
            out.extend(page.items)
            if page.next_cursor is None:
                return out
            cursor = page.next_cursor

    def get_item(
        self,
        index: str | None,
        key: Key,
        *,
        sort: SortFilter | None = None,
        asc: bool = False,
        fields: Sequence[str] | None = None,
        filter: ConditionExpression | None = None,
    ) -> Record | None:
        items = self._drain(index, key, sort=sort, asc=asc, limit=1, fields=fields, filter=filter)
        return items[0] if items else None

    def list_items(
        self,
        index: str | None,
        key: Key,
        *,
        sort: SortFilter | None = None,
        asc: bool = False,
        limit: int | None = None,
        fields: Sequence[str] | None = None,
        filter: ConditionExpression | None = None,
    ) -> list[Record]:
        """Every match of an index query, up to ``limit`` items."""
        ck = cache_key(
            self.table_name,
            "list_items",
            index=index,
            key=dict(key),
            sort=sort,
            asc=asc,
            limit=limit,
            fields=list(fields or []),
            filter=filter,
        )
        cached = self._cache.get(ck)
        if cached is not None:
            return cached

        items = self._drain(index, key, sort=sort, asc=asc, limit=limit, fields=fields, filter=filter)
        self._cache.put(ck, items)
        return items

    def _drain(
        self,
        index: str | None,
        key: Key,
        *,
        sort: SortFilter | None,
        asc: bool,
        limit: int | None,
        fields: Sequence[str] | None,
        filter: ConditionExpression | None,
    ) -> list[Record]:
        out: list[Record] = []
        cursor: str | None = None
        while True:
            remaining = None if limit is None else limit - len(out)
            page = self.page_by_index(
                index, key, sort=sort, asc=asc, limit=remaining, cursor=cursor, fields=fields, filter=filter
            )
            out.extend(page.items)
            if page.next_cursor is None or (limit is not None and len(out) >= limit):
                return out if limit is None else out[:limit]
            cursor = page.next_cursor

    def exists_items(self, index: str | None, key: Key, *, sort: SortFilter | None = None) -> bool:
        return self.count(index, key, sort=sort) > 0

    # single-item writes

    def create_item(
        self,
        id: str,
        model: Mapping[str, Any],
        condition: ConditionExpression | None = None,
    ) -> Record:
        item = {**model, "id": id}
        ctx = ExpressionContext()
        guard = item_condition(ctx, must_exist=False, condition=condition)
        try:
            self._gateway.put_item(item, condition=guard, names=_names(ctx), values=_values(ctx))
        except ConditionFailedError as err:
            raise AlreadyExistsError(f"item {id!r} already exists or failed its condition") from err
        return _stored(item)

    def put_item(self, id: str, model: Mapping[str, Any]) -> Record:
        item = {**model, "id": id}
        self._gateway.put_item(item)
        return _stored(item)

    def update_item(
        self,
        id: str,
        model: Mapping[str, Any],
        *,
        condition: ConditionExpression | None = None,
        increments: Mapping[str, Any] | None = None,
        removes: Sequence[str] = (),
        return_values: str | None = None,
    ) -> Record | None:
        """Apply a partial update to an existing item.

        Raises ``ConditionFailedError`` when the item is absent or the
        condition does not hold. Returns the item only when ``return_values``
        asks DynamoDB for it.
        """
        ctx = ExpressionContext()
        update = build_update(model, ctx, increments, removes)
        guard = item_condition(ctx, must_exist=True, condition=condition)
        return self._gateway.update_item(
            {"id": id},
            update=update,
            condition=guard,
            names=_names(ctx),
            values=_values(ctx),
            return_values=return_values,
        )

    def delete_item(self, id: str, condition: ConditionExpression | None = None) -> None:
        ctx = ExpressionContext()
        guard = item_condition(ctx, must_exist=True, condition=condition)
        self._gateway.delete_item({"id": id}, condition=guard, names=_names(ctx), values=_values(ctx))

    def delete_by_ids(self, ids: Iterable[str]) -> list[bool]:
        return self.transact_write([self.delete_op(i) for i in ids])

    # transactions

    def transact_write(self, ops: Sequence[TransactWriteAction]) -> list[bool]:
        """Run ``ops`` in sequential chunks of 25 and report each item's outcome.

        A chunk cancelled by condition failures or conflicts ends the call:
        its items are True where their cancellation reason is ``"None"`` and
        False otherwise, and items of chunks never attempted are False. True
        inside a cancelled chunk only means the item did not cause the
        cancellation. Any other error propagates.
        """
        results: list[bool] = []
        chunks = chunked(ops, TransactLimit)
        for n, chunk in enumerate(chunks):
            actions = [self._write_action(op) for op in chunk]
            try:
                self._gateway.transact_write_items(actions)
            except TransactionCanceledError as err:
                if not err.is_conditional:
                    raise
                if len(err.reason_codes) != len(chunk):
                    raise
                outcomes = [code == "None" for code in err.reason_codes]
                self.log.warning(
                    "transaction chunk cancelled",
                    {"table": self.table_name, "chunk": n, "failed": outcomes.count(False)},
                )
                results.extend(outcomes)
                break
            results.extend([True] * len(chunk))
        results.extend([False] * (len(ops) - len(results)))
        return results

    def _write_action(self, op: TransactWriteAction) -> dict[str, Any]:
        ctx = ExpressionContext()

        if isinstance(op, TransactPut):
            if op.create:
                guard = item_condition(ctx, must_exist=False, condition=op.condition)
            else:
                guard = render_condition(op.condition, ctx, "c") if op.condition is not None else None
            return self._gateway.write_action(
                "Put", item={**op.item, "id": op.id}, condition=guard, names=_names(ctx), values=_values(ctx)
            )

        if isinstance(op, TransactUpdate):
            update = build_update(op.updates, ctx, op.increments, op.removes)
            guard = item_condition(ctx, must_exist=True, condition=op.condition)
            return self._gateway.write_action(
                "Update",
                key={"id": op.id},
                update=update,
                condition=guard,
                names=_names(ctx),
                values=_values(ctx),
            )

        if isinstance(op, TransactDelete):
            guard = item_condition(ctx, must_exist=True, condition=op.condition)
            return self._gateway.write_action(
                "Delete", key={"id": op.id}, condition=guard, names=_names(ctx), values=_values(ctx)
            )

        if isinstance(op, TransactConditionCheck):
            guard = render_condition(op.condition, ctx, "c")
            return self._gateway.write_action(
                "ConditionCheck", key={"id": op.id}, condition=guard, names=_names(ctx), values=_values(ctx)
            )

        raise ValidationError(f"unsupported transaction action: {type(op).__name__}")

    def transact_read(self, ops: Sequence[TransactGet]) -> list[Record]:
        """Read ``ops`` in chunks of 25 fetched concurrently; absent items are skipped."""
        chunks = chunked(ops, TransactLimit)
        if not chunks:
            return []

        def read(chunk: Sequence[TransactGet]) -> list[Record | None]:
            keys = [{"id": op.id} for op in chunk]
            projections = []
            for op in chunk:
                ctx = ExpressionContext()
                projections.append((build_projection(op.fields, ctx), _names(ctx)))
            return self._gateway.transact_get_items(keys, projections=projections)

        with ThreadPoolExecutor(max_workers=self._max_workers) as ex:
            futures = [ex.submit(read, chunk) for chunk in chunks]
            results = [fut.result() for fut in futures]

        return [item for chunk_items in results for item in chunk_items if item is not None]

    # operation builders

    def create_op(self, id: str, model: Mapping[str, Any], condition: ConditionExpression | None = None) -> TransactPut:
        return TransactPut(id=id, item=dict(model), condition=condition, create=True)

    def put_op(self, id: str, model: Mapping[str, Any], condition: ConditionExpression | None = None) -> TransactPut:
        return TransactPut(id=id, item=dict(model), condition=condition)

    def update_op(
        self,
        id: str,
        model: Mapping[str, Any],
        *,
        condition: ConditionExpression | None = None,
        increments: Mapping[str, Any] | None = None,
        removes: Sequence[str] = (),
    ) -> TransactUpdate:
        return TransactUpdate(
            id=id,
            updates=dict(model),
            condition=condition,
            increments=dict(increments or {}),
            removes=tuple(removes),
        )

    def delete_op(self, id: str, condition: ConditionExpression | None = None) -> TransactDelete:
        return TransactDelete(id=id, condition=condition)

    def check_op(self, id: str, condition: ConditionExpression) -> TransactConditionCheck:
        return TransactConditionCheck(id=id, condition=condition)

    def get_op(self, id: str, fields: Sequence[str] | None = None) -> TransactGet:
        return TransactGet(id=id, fields=fields)
