from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .errors import (
    AlreadyExistsError,
    AwsError,
    BatchRetryExceededError,
    ConditionFailedError,
    DataEmptyError,
    DynacrudError,
    EnabledRequiredError,
    EnvRequiredError,
    ErrorKind,
    ForbiddenError,
    IdExistsError,
    NotFoundError,
    SchemaValidationError,
    StatusInvalidError,
    TransactionCanceledError,
    ValidationError,
)
from .model import UNSET, CrudRecord, IndexSpec, Projection, Record, crud_indexes, gsi
from .query import Condition, ConditionGroup, Page, SortFilter
from .status import CrudStatus, status_key
from .transaction import (
    TransactConditionCheck,
    TransactDelete,
    TransactGet,
    TransactPut,
    TransactUpdate,
    TransactWriteAction,
)

if TYPE_CHECKING:
    from .cache import MemoryQueryCache, NoopQueryCache, QueryCache
    from .config import ServiceConfig
    from .crud import CrudService, encode_id
    from .data import DataAccessService
    from .gateway import StorageGateway
    from .observability import EventBus, EventSink, NullEventSink, ServiceLog
    from .record_schema import JsonSchemaValidator, SchemaViolation, Validator, load_schema_document
    from .runtime import AwsCallMetric, create_boto3_config, get_dynamodb_client, instrument_boto3_client
    from .schema import build_crud_table_request, create_table, delete_table, ensure_table


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)

_LAZY: dict[str, str] = {
    "MemoryQueryCache": "cache",
    "NoopQueryCache": "cache",
    "QueryCache": "cache",
    "ServiceConfig": "config",
    "CrudService": "crud",
    "encode_id": "crud",
    "DataAccessService": "data",
    "StorageGateway": "gateway",
    "EventBus": "observability",
    "EventSink": "observability",
    "NullEventSink": "observability",
    "ServiceLog": "observability",
    "JsonSchemaValidator": "record_schema",
    "SchemaViolation": "record_schema",
    "Validator": "record_schema",
    "load_schema_document": "record_schema",
    "AwsCallMetric": "runtime",
    "create_boto3_config": "runtime",
    "get_dynamodb_client": "runtime",
    "instrument_boto3_client": "runtime",
    "build_crud_table_request": "schema",
    "create_table": "schema",
    "delete_table": "schema",
    "ensure_table": "schema",
}


def __getattr__(name: str) -> Any:
    module = _LAZY.get(name)
    if module is None:
        raise AttributeError(name)

    from importlib import import_module

    return getattr(import_module(f".{module}", __name__), name)


__all__ = [
    "AlreadyExistsError",
    "AwsCallMetric",
    "AwsError",
    "BatchRetryExceededError",
    "Condition",
    "ConditionFailedError",
    "ConditionGroup",
    "CrudRecord",
    "CrudService",
    "CrudStatus",
    "DataAccessService",
    "DataEmptyError",
    "DynacrudError",
    "EnabledRequiredError",
    "EnvRequiredError",
    "ErrorKind",
    "EventBus",
    "EventSink",
    "ForbiddenError",
    "IdExistsError",
    "IndexSpec",
    "JsonSchemaValidator",
    "MemoryQueryCache",
    "NoopQueryCache",
    "NotFoundError",
    "NullEventSink",
    "Page",
    "Projection",
    "QueryCache",
    "Record",
    "SchemaValidationError",
    "SchemaViolation",
    "ServiceConfig",
    "ServiceLog",
    "SortFilter",
    "StatusInvalidError",
    "StorageGateway",
    "TransactConditionCheck",
    "TransactDelete",
    "TransactGet",
    "TransactPut",
    "TransactUpdate",
    "TransactWriteAction",
    "TransactionCanceledError",
    "UNSET",
    "ValidationError",
    "Validator",
    "build_crud_table_request",
    "create_boto3_config",
    "create_table",
    "crud_indexes",
    "delete_table",
    "encode_id",
    "ensure_table",
    "get_dynamodb_client",
    "gsi",
    "instrument_boto3_client",
    "load_schema_document",
    "status_key",
]
