from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from typing import Any

import boto3
import pytest

from dynacrud_py import ServiceConfig
from dynacrud_py.schema import create_table, delete_table


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if os.environ.get("DYNAMODB_ENDPOINT"):
        return
    skip = pytest.mark.skip(reason="DYNAMODB_ENDPOINT is not set")
    for item in items:
        if "integration" in item.path.parts:
            item.add_marker(skip)


@pytest.fixture
def local_client() -> Any:
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ["DYNAMODB_ENDPOINT"],
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


@pytest.fixture
def local_config() -> ServiceConfig:
    return ServiceConfig(
        app=f"it{uuid.uuid4().hex[:10]}",
        region=os.environ.get("AWS_REGION", "us-east-1"),
        endpoint_url=os.environ["DYNAMODB_ENDPOINT"],
    )


@pytest.fixture
def notes_table(local_client: Any, local_config: ServiceConfig) -> Iterator[str]:
    table_name = local_config.table_name("notes")
    create_table(table_name, client=local_client)
    try:
        yield table_name
    finally:
        delete_table(table_name, client=local_client, ignore_missing=True)
