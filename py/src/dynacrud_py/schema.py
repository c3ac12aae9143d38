from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import boto3
from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .errors import ValidationError
from .model import CRUD_KEY_TYPES, IndexSpec, crud_indexes
from .validation import validate_index_name, validate_table_name

logger = logging.getLogger(__name__)

BillingMode = str  # "PAY_PER_REQUEST" | "PROVISIONED"


def build_crud_table_request(
    table_name: str,
    *,
    indexes: Sequence[IndexSpec] | None = None,
    key_types: Mapping[str, str] | None = None,
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: dict[str, int] | None = None,
) -> dict[str, Any]:
    """CreateTable request for a table keyed by ``id`` with the CRUD indexes.

    Every index key attribute needs a scalar type in ``key_types``; the
    defaults cover the standard CRUD indexes.
    """
    validate_table_name(table_name)
    resolved_indexes = crud_indexes() if indexes is None else tuple(indexes)
    types = dict(CRUD_KEY_TYPES)
    types.update(key_types or {})

    billing_mode = (billing_mode or "PAY_PER_REQUEST").strip() or "PAY_PER_REQUEST"
    if billing_mode not in {"PAY_PER_REQUEST", "PROVISIONED"}:
        raise ValidationError(f"unsupported billing_mode: {billing_mode}")
    if billing_mode == "PROVISIONED" and provisioned_throughput is None:
        raise ValidationError("provisioned_throughput is required when billing_mode=PROVISIONED")

    used = {"id"}
    gsis: list[dict[str, Any]] = []
    for idx in resolved_indexes:
        validate_index_name(idx.name)
        key_schema = [{"AttributeName": idx.partition, "KeyType": "HASH"}]
        used.add(idx.partition)
        if idx.sort is not None:
            key_schema.append({"AttributeName": idx.sort, "KeyType": "RANGE"})
            used.add(idx.sort)

        projection: dict[str, Any] = {"ProjectionType": idx.projection.type}
        if idx.projection.type == "INCLUDE" and idx.projection.fields:
            projection["NonKeyAttributes"] = list(idx.projection.fields)

        entry: dict[str, Any] = {"IndexName": idx.name, "KeySchema": key_schema, "Projection": projection}
        if provisioned_throughput is not None and billing_mode == "PROVISIONED":
            entry["ProvisionedThroughput"] = dict(provisioned_throughput)
        gsis.append(entry)

    missing = sorted(name for name in used if name not in types)
    if missing:
        raise ValidationError(f"no key type for index attributes: {missing}")

    req: dict[str, Any] = {
        "TableName": table_name,
        "BillingMode": billing_mode,
        "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": n, "AttributeType": types[n]} for n in sorted(used)],
    }
    if billing_mode == "PROVISIONED" and provisioned_throughput is not None:
        req["ProvisionedThroughput"] = dict(provisioned_throughput)
    if gsis:
        req["GlobalSecondaryIndexes"] = gsis
    return req


def create_table(
    table_name: str,
    *,
    client: Any | None = None,
    indexes: Sequence[IndexSpec] | None = None,
    billing_mode: BillingMode = "PAY_PER_REQUEST",
    provisioned_throughput: dict[str, int] | None = None,
    wait_for_active: bool = True,
    wait_timeout_seconds: float = 300.0,
    poll_interval_seconds: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    client = client or boto3.client("dynamodb")
    req = build_crud_table_request(
        table_name,
        indexes=indexes,
        billing_mode=billing_mode,
        provisioned_throughput=provisioned_throughput,
    )

    try:
        client.create_table(**req)
        logger.info("created table %s", table_name)
    except ClientError as err:
        if _error_code(err) != "ResourceInUseException":
            raise map_client_error(err) from err

    if wait_for_active:
        _wait_for(client, table_name, want_deleted=False, timeout=wait_timeout_seconds,
                  poll=poll_interval_seconds, sleep=sleep)


def ensure_table(
    table_name: str,
    *,
    client: Any | None = None,
    indexes: Sequence[IndexSpec] | None = None,
    wait_for_active: bool = True,
    wait_timeout_seconds: float = 300.0,
    poll_interval_seconds: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    client = client or boto3.client("dynamodb")
    try:
        client.describe_table(TableName=table_name)
    except ClientError as err:
        if _error_code(err) != "ResourceNotFoundException":
            raise map_client_error(err) from err
        create_table(
            table_name,
            client=client,
            indexes=indexes,
            wait_for_active=wait_for_active,
            wait_timeout_seconds=wait_timeout_seconds,
            poll_interval_seconds=poll_interval_seconds,
            sleep=sleep,
        )
        return

    if wait_for_active:
        _wait_for(client, table_name, want_deleted=False, timeout=wait_timeout_seconds,
                  poll=poll_interval_seconds, sleep=sleep)


def delete_table(
    table_name: str,
    *,
    client: Any | None = None,
    wait_for_delete: bool = True,
    ignore_missing: bool = False,
    wait_timeout_seconds: float = 300.0,
    poll_interval_seconds: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    client = client or boto3.client("dynamodb")
    try:
        client.delete_table(TableName=table_name)
    except ClientError as err:
        if ignore_missing and _error_code(err) == "ResourceNotFoundException":
            return
        raise map_client_error(err) from err

    if wait_for_delete:
        _wait_for(client, table_name, want_deleted=True, timeout=wait_timeout_seconds,
                  poll=poll_interval_seconds, sleep=sleep)


def _wait_for(
    client: Any,
    table_name: str,
    *,
    want_deleted: bool,
    timeout: float,
    poll: float,
    sleep: Callable[[float], None],
) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            resp = client.describe_table(TableName=table_name)
        except ClientError as err:
            if _error_code(err) != "ResourceNotFoundException":
                raise map_client_error(err) from err
            if want_deleted:
                return
            resp = {}

        if not want_deleted and str(resp.get("Table", {}).get("TableStatus", "")) == "ACTIVE":
            return
        sleep(poll)

    state = "deletion" if want_deleted else "ACTIVE"
    raise ValidationError(f"timed out waiting for table {state}: {table_name}")


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))
