from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from .aws_errors import map_client_error as _map_client_error
from .aws_errors import map_transaction_error as _map_transaction_error
from .errors import BatchRetryExceededError, ValidationError
from .model import UNSET, Record

logger = logging.getLogger(__name__)

BatchGetLimit = 100
TransactLimit = 25

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _backoff_seconds(attempt: int) -> float:
    return min(0.05 * (2.0 ** (attempt - 1)), 1.0)


def chunked[T](items: Sequence[T], size: int) -> list[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


def _to_native(value: Any) -> Any:
    if value is UNSET:
        raise ValidationError("UNSET cannot be stored")
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {str(k): _to_native(v) for k, v in value.items() if v is not UNSET}
    if isinstance(value, (list, tuple)):
        return [_to_native(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_to_native(v) for v in value}
    return value


def marshal_value(value: Any) -> dict[str, Any]:
    return _serializer.serialize(_to_native(value))


def marshal_item(item: Mapping[str, Any]) -> dict[str, Any]:
    """Serialize a record for a put: UNSET, ``None`` and empty sets are not written."""
    out: dict[str, Any] = {}
    for k, v in item.items():
        if v is UNSET or v is None:
            continue
        if isinstance(v, (set, frozenset)) and not v:
            continue
        out[k] = marshal_value(v)
    return out


def _from_native(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_native(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_native(v) for v in value]
    if isinstance(value, set):
        return {_from_native(v) for v in value}
    return value


def unmarshal_item(item: Mapping[str, Any]) -> Record:
    return {k: _from_native(_deserializer.deserialize(v)) for k, v in item.items()}


@dataclass(frozen=True)
class QueryResult:
    items: list[Record]
    last_key: dict[str, Any] | None
    count: int


class StorageGateway:
    """Thin DynamoDB adapter bound to one table.

    Accepts plain Python values (keys, items, expression values) and handles
    marshalling, error mapping and the retry of unprocessed batch keys.
    """

    def __init__(self, table_name: str, *, client: Any | None = None) -> None:
        if not table_name:
            raise ValueError("table_name is required")
        self._table_name = table_name
        self._client: Any = client or boto3.client("dynamodb")

    @property
    def table_name(self) -> str:
        return self._table_name

    def _request(
        self,
        *,
        key: Mapping[str, Any] | None = None,
        item: Mapping[str, Any] | None = None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
        **parts: Any,
    ) -> dict[str, Any]:
        req: dict[str, Any] = {"TableName": self._table_name}
        if key is not None:
            req["Key"] = marshal_item(key)
        if item is not None:
            req["Item"] = marshal_item(item)
        if names:
            req["ExpressionAttributeNames"] = dict(names)
        if values:
            req["ExpressionAttributeValues"] = {k: marshal_value(v) for k, v in values.items()}
        req.update({k: v for k, v in parts.items() if v is not None})
        return req

    def get_item(
        self,
        key: Mapping[str, Any],
        *,
        projection: str | None = None,
        names: Mapping[str, str] | None = None,
        consistent_read: bool = False,
    ) -> Record | None:
        req = self._request(
            key=key,
            names=names,
            ProjectionExpression=projection,
            ConsistentRead=consistent_read or None,
        )
        try:
            resp = self._client.get_item(**req)
        except ClientError as err:
            raise _map_client_error(err) from err

        raw = resp.get("Item")
        return unmarshal_item(raw) if raw else None

    def put_item(
        self,
        item: Mapping[str, Any],
        *,
        condition: str | None = None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> None:
        req = self._request(item=item, names=names, values=values, ConditionExpression=condition)
        try:
            self._client.put_item(**req)
        except ClientError as err:
            raise _map_client_error(err) from err

    def update_item(
        self,
        key: Mapping[str, Any],
        *,
        update: str,
        condition: str | None = None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
        return_values: str | None = None,
    ) -> Record | None:
        req = self._request(
            key=key,
            names=names,
            values=values,
            UpdateExpression=update,
            ConditionExpression=condition,
            ReturnValues=return_values,
        )
        try:
            resp = self._client.update_item(**req)
        except ClientError as err:
            raise _map_client_error(err) from err

        attributes = resp.get("Attributes")
        return unmarshal_item(attributes) if attributes else None

    def delete_item(
        self,
        key: Mapping[str, Any],
        *,
        condition: str | None = None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> None:
        req = self._request(key=key, names=names, values=values, ConditionExpression=condition)
        try:
            self._client.delete_item(**req)
        except ClientError as err:
            raise _map_client_error(err) from err

    def query(
        self,
        *,
        key_condition: str,
        index: str | None = None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
        filter: str | None = None,
        projection: str | None = None,
        limit: int | None = None,
        exclusive_start_key: Mapping[str, Any] | None = None,
        scan_forward: bool = True,
        select: str | None = None,
    ) -> QueryResult:
        req = self._request(
            names=names,
            values=values,
            IndexName=index,
            KeyConditionExpression=key_condition,
            FilterExpression=filter,
            ProjectionExpression=projection,
            Limit=limit,
            ExclusiveStartKey=dict(exclusive_start_key) if exclusive_start_key else None,
            ScanIndexForward=scan_forward,
            Select=select,
        )
        try:
            resp = self._client.query(**req)
        except ClientError as err:
            raise _map_client_error(err) from err
        return self._result(resp)

    def scan(
        self,
        *,
        index: str | None = None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
        filter: str | None = None,
        projection: str | None = None,
        limit: int | None = None,
        exclusive_start_key: Mapping[str, Any] | None = None,
        select: str | None = None,
    ) -> QueryResult:
        req = self._request(
            names=names,
            values=values,
            IndexName=index,
            FilterExpression=filter,
            ProjectionExpression=projection,
            Limit=limit,
            ExclusiveStartKey=dict(exclusive_start_key) if exclusive_start_key else None,
            Select=select,
        )
        try:
            resp = self._client.scan(**req)
        except ClientError as err:
            raise _map_client_error(err) from err
        return self._result(resp)

    @staticmethod
    def _result(resp: Mapping[str, Any]) -> QueryResult:
        items = [unmarshal_item(raw) for raw in resp.get("Items", []) or []]
        last_key = resp.get("LastEvaluatedKey") or None
        return QueryResult(items=items, last_key=last_key, count=int(resp.get("Count", len(items)) or 0))

    def batch_get(
        self,
        keys: Sequence[Mapping[str, Any]],
        *,
        projection: str | None = None,
        names: Mapping[str, str] | None = None,
        max_retries: int = 5,
        sleep: Callable[[float], None] | None = time.sleep,
    ) -> list[Record]:
        """Fetch up to 100 keys, re-requesting unprocessed keys with backoff.

        Results come back in whatever order the backend returns them.
        """
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0")
        if len(keys) > BatchGetLimit:
            raise ValidationError(f"batch_get supports at most {BatchGetLimit} keys")
        if not keys:
            return []

        base: dict[str, Any] = {}
        if projection:
            base["ProjectionExpression"] = projection
            base["ExpressionAttributeNames"] = dict(names or {})

        out: list[Record] = []
        pending: list[Any] = [marshal_item(k) for k in keys]
        attempts = 0
        while pending:
            try:
                resp = self._client.batch_get_item(RequestItems={self._table_name: dict(base, Keys=pending)})
            except ClientError as err:
                raise _map_client_error(err) from err

            out.extend(unmarshal_item(raw) for raw in resp.get("Responses", {}).get(self._table_name, []))

            pending = resp.get("UnprocessedKeys", {}).get(self._table_name, {}).get("Keys") or []
            if pending:
                if attempts >= max_retries:
                    raise BatchRetryExceededError(operation="batch_get", unprocessed_count=len(pending))
                attempts += 1
                logger.debug("batch_get: retrying %d unprocessed keys (attempt %d)", len(pending), attempts)
                if sleep is not None:
                    sleep(_backoff_seconds(attempts))

        return out

    def write_action(
        self,
        kind: str,
        *,
        key: Mapping[str, Any] | None = None,
        item: Mapping[str, Any] | None = None,
        update: str | None = None,
        condition: str | None = None,
        names: Mapping[str, str] | None = None,
        values: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """One TransactItems entry (``Put``, ``Update``, ``Delete`` or ``ConditionCheck``)."""
        if kind not in {"Put", "Update", "Delete", "ConditionCheck"}:
            raise ValidationError(f"unsupported transaction action: {kind}")
        req = self._request(
            key=key,
            item=item,
            names=names,
            values=values,
            UpdateExpression=update,
            ConditionExpression=condition,
        )
        return {kind: req}

    def transact_write_items(self, actions: Sequence[Mapping[str, Any]]) -> None:
        if not actions:
            raise ValidationError("actions is required")
        if len(actions) > TransactLimit:
            raise ValidationError(f"a transaction chunk supports at most {TransactLimit} actions")
        try:
            self._client.transact_write_items(TransactItems=list(actions))
        except ClientError as err:
            raise _map_transaction_error(err) from err

    def transact_get_items(
        self,
        keys: Sequence[Mapping[str, Any]],
        *,
        projections: Sequence[tuple[str | None, Mapping[str, str] | None]] | None = None,
    ) -> list[Record | None]:
        """Read up to 25 keys in one call; absent items come back as ``None``."""
        if len(keys) > TransactLimit:
            raise ValidationError(f"a transaction chunk supports at most {TransactLimit} reads")
        if not keys:
            return []

        items: list[dict[str, Any]] = []
        for i, key in enumerate(keys):
            projection, names = projections[i] if projections else (None, None)
            items.append({"Get": self._request(key=key, names=names, ProjectionExpression=projection)})

        try:
            resp = self._client.transact_get_items(TransactItems=items)
        except ClientError as err:
            raise _map_transaction_error(err) from err

        out: list[Record | None] = []
        for entry in resp.get("Responses", []) or []:
            raw = (entry or {}).get("Item")
            out.append(unmarshal_item(raw) if raw else None)
        return out
