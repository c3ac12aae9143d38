from __future__ import annotations

import threading
from collections.abc import Callable, Mapping
from typing import Any

import pytest

from dynacrud_py import (
    AlreadyExistsError,
    AwsError,
    Condition,
    DataAccessService,
    ErrorKind,
    MemoryQueryCache,
    ServiceConfig,
    SortFilter,
    TransactionCanceledError,
    ValidationError,
)
from dynacrud_py.query import decode_cursor
from dynacrud_py.testkit import ANY, FakeDynamoDBClient, cancellation_error, client_error, no_sleep
from dynacrud_py.validation import SecurityValidationError

CONFIG = ServiceConfig(app="app")


def _service(client: Any, **kwargs: Any) -> DataAccessService:
    return DataAccessService("notes", config=CONFIG, client=client, sleep=no_sleep, **kwargs)


def test_table_name_is_app_dot_service() -> None:
    assert _service(FakeDynamoDBClient()).table_name == "app.notes"
    with pytest.raises(SecurityValidationError):
        DataAccessService("bad name", config=CONFIG, client=FakeDynamoDBClient())


def test_limit_zero_short_circuits_without_a_call() -> None:
    client = FakeDynamoDBClient()
    page = _service(client).page_by_index("userId", {"userId": "u1"}, limit=0)

    assert page.items == []
    assert page.next_cursor is None
    assert client.calls == []


def test_negative_limit_is_rejected() -> None:
    with pytest.raises(ValidationError):
        _service(FakeDynamoDBClient()).page_by_index("userId", {"userId": "u1"}, limit=-1)


def test_page_by_index_builds_query_and_resumes_from_cursor() -> None:
    last_key = {"id": {"S": "n2"}, "userId": {"S": "u1"}, "enable": {"N": "2"}}
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {
            "TableName": "app.notes",
            "IndexName": "userId-enable",
            "KeyConditionExpression": "#k0 = :k0 AND #kr >= :krv",
            "ExpressionAttributeNames": {"#k0": "userId", "#kr": "enable", "#p0x0": "title"},
            "ExpressionAttributeValues": {":k0": {"S": "u1"}, ":krv": {"N": "0"}},
            "ProjectionExpression": "#p0x0",
            "ScanIndexForward": False,
            "Limit": 2,
        },
        response={"Items": [{"id": {"S": "n1"}}, {"id": {"S": "n2"}}], "Count": 2, "LastEvaluatedKey": last_key},
    )
    client.expect("query", {"ExclusiveStartKey": last_key}, response={"Items": [], "Count": 0})

    svc = _service(client)
    first = svc.page_by_index(
        "userId-enable", {"userId": "u1"}, sort=SortFilter("enable"), limit=2, fields=["title"]
    )
    assert [i["id"] for i in first.items] == ["n1", "n2"]
    assert first.next_cursor is not None
    decoded = decode_cursor(first.next_cursor)
    assert (decoded.index, decoded.sort, decoded.last_key) == ("userId-enable", "DESC", last_key)

    second = svc.page_by_index(
        "userId-enable",
        {"userId": "u1"},
        sort=SortFilter("enable"),
        limit=2,
        fields=["title"],
        cursor=first.next_cursor,
    )
    assert second.items == []
    assert second.next_cursor is None
    client.assert_no_pending()


def test_cursor_replayed_against_other_index_or_direction_is_rejected() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query", response={"Items": [], "LastEvaluatedKey": {"id": {"S": "n1"}, "userId": {"S": "u1"}}}
    )
    svc = _service(client)
    cursor = svc.page_by_index("userId", {"userId": "u1"}, limit=1).next_cursor
    assert cursor is not None

    with pytest.raises(ValidationError, match="index"):
        svc.page_by_index("userId-enable", {"userId": "u1"}, cursor=cursor)
    with pytest.raises(ValidationError, match="sort"):
        svc.page_by_index("userId", {"userId": "u1"}, asc=True, cursor=cursor)
    with pytest.raises(ValidationError, match="invalid cursor"):
        svc.page_by_index("userId", {"userId": "u1"}, cursor="%%%")


def test_count_follows_continuation_tokens() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"Select": "COUNT", "IndexName": "enable"},
        response={"Count": 3, "LastEvaluatedKey": {"id": {"S": "x"}}},
    )
    client.expect("query", {"Select": "COUNT", "ExclusiveStartKey": {"id": {"S": "x"}}}, response={"Count": 2})

    assert _service(client).count("enable", {"status": 2}, sort=SortFilter("enable")) == 5
    client.assert_no_pending()


class _BatchClient:
    def __init__(self, existing: set[str]) -> None:
        self.existing = existing
        self.requested: list[list[str]] = []

    def batch_get_item(self, *, RequestItems):  # noqa: N803
        keys = [k["id"]["S"] for k in RequestItems["app.notes"]["Keys"]]
        self.requested.append(keys)
        found = [{"id": {"S": k}} for k in reversed(keys) if k in self.existing]
        return {"Responses": {"app.notes": found}}


def test_list_by_ids_dedups_chunks_and_keeps_request_order() -> None:
    ids = [f"n{i}" for i in range(150)]
    client = _BatchClient(existing={i for i in ids if i != "n7"})

    out = _service(client).list_by_ids([*ids, "n3", "n0"])

    assert [len(chunk) for chunk in client.requested] == [100, 50]
    assert [r["id"] for r in out] == [i for i in ids if i != "n7"]


def test_list_by_ids_adds_id_to_projection() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "batch_get_item",
        {
            "RequestItems": {
                "app.notes": {
                    "ProjectionExpression": "#p0x0, #p1x0",
                    "ExpressionAttributeNames": {"#p0x0": "title", "#p1x0": "id"},
                    "Keys": ANY,
                }
            }
        },
        response={"Responses": {"app.notes": [{"id": {"S": "a"}, "title": {"S": "t"}}]}},
    )
    assert _service(client).list_by_ids(["a"], fields=["title"]) == [{"id": "a", "title": "t"}]


def test_create_item_conflict_is_already_exists() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "put_item",
        {"ConditionExpression": "attribute_not_exists(#id)", "ExpressionAttributeNames": {"#id": "id"}},
        error=client_error("ConditionalCheckFailedException"),
    )
    with pytest.raises(AlreadyExistsError) as exc:
        _service(client).create_item("a", {"title": "t"})
    assert exc.value.kind is ErrorKind.ALREADY_EXISTS


def test_update_item_renders_condition_increments_and_removals() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "update_item",
        {
            "Key": {"id": {"S": "a"}},
            "UpdateExpression": "SET #u0 = :u0, #u2 = #u2 + :u1 REMOVE #u1",
            "ConditionExpression": "attribute_exists(#id) AND (#c0 = :c0)",
            "ExpressionAttributeNames": {"#u0": "title", "#u1": "body", "#u2": "ver", "#id": "id", "#c0": "userId"},
            "ExpressionAttributeValues": {":u0": {"S": "t"}, ":u1": {"N": "1"}, ":c0": {"S": "u1"}},
        },
        response={},
    )

    out = _service(client).update_item(
        "a",
        {"title": "t", "body": None},
        condition=Condition.eq("userId", "u1"),
        increments={"ver": 1},
    )
    assert out is None
    client.assert_no_pending()


def _chunk_of(size: int) -> Callable[[Mapping[str, Any]], None]:
    def check(req: Mapping[str, Any]) -> None:
        assert len(req["TransactItems"]) == size

    return check


def test_transact_write_reports_failed_item_in_last_chunk() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", _chunk_of(25), response={})
    client.expect(
        "transact_write_items",
        _chunk_of(5),
        error=cancellation_error("None", "None", "ConditionalCheckFailed", "None", "None"),
    )

    svc = _service(client)
    results = svc.transact_write([svc.create_op(f"n{i}", {"n": i}) for i in range(30)])

    assert results == [True] * 27 + [False] + [True] * 2
    client.assert_no_pending()


def test_transact_write_stops_after_a_cancelled_chunk() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        _chunk_of(25),
        error=cancellation_error("ConditionalCheckFailed", *["None"] * 24),
    )

    svc = _service(client)
    results = svc.transact_write([svc.create_op(f"n{i}", {"n": i}) for i in range(60)])

    assert results == [False] + [True] * 24 + [False] * 35
    assert [name for name, _ in client.calls] == ["transact_write_items"]
    client.assert_no_pending()


def test_transact_write_reads_reasons_from_message_when_list_is_missing() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled, please refer cancellation reasons for specific reasons "
            "[ConditionalCheckFailed, None]",
        ),
    )
    svc = _service(client)
    assert svc.transact_write([svc.delete_op("a"), svc.delete_op("b")]) == [False, True]


def test_transact_write_propagates_non_conditional_errors() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", response={})
    client.expect("transact_write_items", error=client_error("InternalServerError", "boom"))

    svc = _service(client)
    with pytest.raises(AwsError) as exc:
        svc.transact_write([svc.put_op(f"n{i}", {"n": i}) for i in range(30)])
    assert exc.value.kind is ErrorKind.FATAL
    assert exc.value.aws_code == "InternalServerError"


def test_transact_write_propagates_cancellations_without_condition_reasons() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", error=cancellation_error("ValidationError", "None"))

    svc = _service(client)
    with pytest.raises(TransactionCanceledError):
        svc.transact_write([svc.delete_op("a"), svc.delete_op("b")])


def test_transact_write_action_shapes() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {
            "TransactItems": [
                {
                    "Put": {
                        "Item": {"id": {"S": "a"}, "n": {"N": "1"}},
                        "ConditionExpression": "attribute_not_exists(#id)",
                    }
                },
                {"Update": {"Key": {"id": {"S": "b"}}, "UpdateExpression": "SET #u0 = :u0"}},
                {"Delete": {"Key": {"id": {"S": "c"}}, "ConditionExpression": "attribute_exists(#id)"}},
                {"ConditionCheck": {"Key": {"id": {"S": "d"}}, "ConditionExpression": "#c0 = :c0"}},
            ]
        },
        response={},
    )
    svc = _service(client)
    ops = [
        svc.create_op("a", {"n": 1}),
        svc.update_op("b", {"n": 2}),
        svc.delete_op("c"),
        svc.check_op("d", Condition.eq("status", 2)),
    ]
    assert svc.transact_write(ops) == [True] * 4
    client.assert_no_pending()


class _TransactGetClient:
    def __init__(self, missing: set[str]) -> None:
        self.missing = missing
        self.lock = threading.Lock()
        self.chunk_sizes: list[int] = []

    def transact_get_items(self, *, TransactItems):  # noqa: N803
        with self.lock:
            self.chunk_sizes.append(len(TransactItems))
        out = []
        for entry in TransactItems:
            item_id = entry["Get"]["Key"]["id"]["S"]
            out.append({} if item_id in self.missing else {"Item": {"id": {"S": item_id}}})
        return {"Responses": out}


def test_transact_read_joins_chunks_in_order_and_skips_missing() -> None:
    client = _TransactGetClient(missing={"n3", "n40"})
    svc = _service(client, max_workers=4)

    out = svc.transact_read([svc.get_op(f"n{i}") for i in range(60)])

    assert [r["id"] for r in out] == [f"n{i}" for i in range(60) if i not in {3, 40}]
    assert sorted(client.chunk_sizes) == [10, 25, 25]


def test_list_items_uses_injected_cache() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", response={"Items": [{"id": {"S": "a"}}], "Count": 1})
    cache = MemoryQueryCache()
    svc = _service(client, cache=cache)

    first = svc.list_items("userId", {"userId": "u1"})
    second = svc.list_items("userId", {"userId": "u1"})

    assert first == second == [{"id": "a"}]
    assert len(client.calls) == 1
    assert len(cache) == 1


def test_list_items_truncates_at_limit_across_pages() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"Limit": 3},
        response={"Items": [{"id": {"S": "a"}}, {"id": {"S": "b"}}], "LastEvaluatedKey": {"id": {"S": "b"}}},
    )
    client.expect(
        "query",
        {"Limit": 1},
        response={"Items": [{"id": {"S": "c"}}], "LastEvaluatedKey": {"id": {"S": "c"}}},
    )

    out = _service(client).list_items("userId", {"userId": "u1"}, limit=3)
    assert [r["id"] for r in out] == ["a", "b", "c"]
    client.assert_no_pending()


def test_list_all_drains_scan_pages() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan", response={"Items": [{"id": {"S": "a"}}], "LastEvaluatedKey": {"id": {"S": "a"}}})
    client.expect("scan", {"ExclusiveStartKey": {"id": {"S": "a"}}}, response={"Items": [{"id": {"S": "b"}}]})

    assert [r["id"] for r in _service(client).list_all()] == ["a", "b"]
    client.assert_no_pending()


def test_get_by_id_and_exists_by_id() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", {"Key": {"id": {"S": "a"}}}, response={"Item": {"id": {"S": "a"}, "n": {"N": "1"}}})
    client.expect(
        "get_item",
        {"ProjectionExpression": "#p0x0", "ExpressionAttributeNames": {"#p0x0": "id"}},
        response={},
    )
    svc = _service(client)

    assert svc.get_by_id("a") == {"id": "a", "n": 1}
    assert svc.exists_by_id("b") is False


def test_get_item_returns_first_match_or_none() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"IndexName": "userId-enable", "Limit": 1, "ScanIndexForward": True},
        response={"Items": [{"id": {"S": "oldest"}}], "LastEvaluatedKey": {"id": {"S": "oldest"}}},
    )
    client.expect("query", response={"Items": []})
    svc = _service(client)

    assert svc.get_item("userId-enable", {"userId": "u1"}, sort=SortFilter("enable"), asc=True) == {"id": "oldest"}
    assert svc.get_item("userId", {"userId": "nobody"}) is None
    client.assert_no_pending()


def test_exists_items_counts_matches() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", {"Select": "COUNT"}, response={"Count": 0})
    assert _service(client).exists_items("userId", {"userId": "u1"}) is False


def test_delete_by_ids_is_transactional() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {"TransactItems": [{"Delete": {"Key": {"id": {"S": "a"}}}}, {"Delete": {"Key": {"id": {"S": "b"}}}}]},
        response={},
    )
    assert _service(client).delete_by_ids(["a", "b"]) == [True, True]


def test_scan_cursor_cannot_resume_a_query() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "scan",
        {"Limit": 1},
        response={"Items": [{"id": {"S": "a"}}], "LastEvaluatedKey": {"id": {"S": "a"}}},
    )
    svc = _service(client)

    cursor = svc.scan_all(limit=1).next_cursor
    assert cursor is not None
    with pytest.raises(ValidationError):
        svc.page_by_index(None, {"userId": "u1"}, cursor=cursor)
