from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import boto3
import pytest
from moto import mock_aws

from dynacrud_py import CrudService, ServiceConfig
from dynacrud_py.runtime import _reset_clients_for_tests
from dynacrud_py.schema import create_table
from dynacrud_py.testkit import fixed_now, no_sleep

NOTE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["title"],
    "properties": {
        "title": {"type": "string", "minLength": 1, "maxLength": 40},
        "body": {"type": "string"},
        "due": {"type": "integer", "format": "date-time"},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
}


@pytest.fixture(autouse=True)
def _isolated_aws_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("DYNAMODB_ENDPOINT", raising=False)
    _reset_clients_for_tests()
    yield
    _reset_clients_for_tests()


@pytest.fixture
def config() -> ServiceConfig:
    return ServiceConfig(app="test", region="us-east-1")


@pytest.fixture
def dynamodb_client() -> Iterator[Any]:
    """In-process DynamoDB holding an empty ``test.notes`` table with the CRUD indexes."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="us-east-1")
        create_table("test.notes", client=client, sleep=no_sleep)
        yield client


@pytest.fixture
def notes(dynamodb_client: Any, config: ServiceConfig) -> CrudService:
    return CrudService(
        "notes",
        schema=NOTE_SCHEMA,
        config=config,
        client=dynamodb_client,
        now=fixed_now(step=1),
    )


@pytest.fixture
def note_schema() -> dict[str, Any]:
    return NOTE_SCHEMA
