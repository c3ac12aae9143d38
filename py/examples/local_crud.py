from __future__ import annotations

import logging
import os
import uuid

import boto3

from dynacrud_py import CrudService, CrudStatus, EventBus, ServiceConfig
from dynacrud_py.observability import LOG_TOPIC
from dynacrud_py.schema import create_table, delete_table

NOTE_SCHEMA = {
    "type": "object",
    "required": ["title"],
    "properties": {
        "title": {"type": "string", "minLength": 1, "maxLength": 80},
        "body": {"type": "string"},
    },
}


def _client():
    return boto3.client(
        "dynamodb",
        endpoint_url=os.environ.get("DYNAMODB_ENDPOINT", "http://localhost:8000"),
        region_name=os.environ.get("AWS_REGION", "us-east-1"),
        aws_access_key_id=os.environ.get("AWS_ACCESS_KEY_ID", "dummy"),
        aws_secret_access_key=os.environ.get("AWS_SECRET_ACCESS_KEY", "dummy"),
    )


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    client = _client()
    config = ServiceConfig(app=f"example{uuid.uuid4().hex[:8]}", region="us-east-1")
    table_name = config.table_name("notes")
    create_table(table_name, client=client)

    bus = EventBus()
    bus.subscribe(LOG_TOPIC, lambda event: print("event:", event))

    try:
        notes = CrudService("notes", schema=NOTE_SCHEMA, config=config, client=client, sink=bus)

        notes.create("n1", {"title": "first"}, "alice")
        notes.create("n2", {"title": "second", "body": "hello"}, "alice")
        notes.enable_by_id("n1", "alice")
        notes.enable_by_id("n2", "alice")
        notes.disable_by_id("n1", "bob")

        print("get:", notes.get_by_id("n2", "alice", fields=["title", "body"]))

        page = notes.page_by_status("alice", CrudStatus.ENABLED, limit=1)
        print("first page:", page.items)
        page = notes.page_by_status("alice", CrudStatus.ENABLED, limit=1, cursor=page.next_cursor)
        print("second page:", page.items)

        print("batch:", notes.create_by_batch([{"id": "n2", "title": "dup"}, {"id": "n3", "title": "new"}], "alice"))
    finally:
        delete_table(table_name, client=client)


if __name__ == "__main__":
    main()
