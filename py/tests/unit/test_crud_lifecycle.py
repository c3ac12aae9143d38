from __future__ import annotations

from collections.abc import Callable

import pytest

from dynacrud_py import (
    CrudService,
    CrudStatus,
    EnabledRequiredError,
    ForbiddenError,
    IdExistsError,
    SchemaValidationError,
)

START = 1_700_000_000_000


def test_create_stamps_draft_defaults(notes: CrudService) -> None:
    created = notes.create("n1", {"title": "hello"}, "u1")

    assert created == {
        "id": "n1",
        "title": "hello",
        "status": int(CrudStatus.DRAFT),
        "create": START,
        "draft": START,
        "ver": 0,
        "userId": "u1",
        "createBy": "u1",
    }
    assert notes.get_by_id("n1", "u1") == created


def test_create_rejects_existing_id(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello"}, "u1")
    with pytest.raises(IdExistsError) as exc:
        notes.create("n1", {"title": "again"}, "u1")
    assert exc.value.code == "ID_EXISTS"


def test_create_is_lenient_where_put_is_strict(notes: CrudService) -> None:
    long_title = "x" * 60
    created = notes.create("n1", {"title": long_title, "due": "2024-01-01T00:00:00Z"}, "u1")
    assert created["title"] == long_title

    with pytest.raises(SchemaValidationError) as exc:
        notes.put_by_id("n2", {"title": long_title}, "u1")
    assert exc.value.field == "$.title"


def test_get_by_id_distinguishes_absent_from_foreign(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello"}, "u1")

    assert notes.get_by_id("missing", "u1") is None
    assert notes.exists_by_id("missing", "u1") is False
    assert notes.exists_by_id("n1", "u1") is True
    with pytest.raises(ForbiddenError) as exc:
        notes.get_by_id("n1", "u2")
    assert exc.value.code == "USER_FORBIDDEN"
    with pytest.raises(ForbiddenError):
        notes.exists_by_id("n1", "u2")


def test_get_by_id_projection_hides_owner_unless_requested(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello", "body": "text"}, "u1")

    assert notes.get_by_id("n1", "u1", fields=["title"]) == {"title": "hello"}
    assert notes.get_by_id("n1", "u1", fields=["title", "userId"]) == {"title": "hello", "userId": "u1"}


def test_repeated_reads_are_identical(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello", "tags": ["a", "b"]}, "u1")
    assert notes.get_by_id("n1", "u1") == notes.get_by_id("n1", "u1")


def test_upd_by_id_returns_new_image_and_bumps_version(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello", "body": "old"}, "u1")

    updated = notes.upd_by_id("n1", {"title": "renamed", "body": None}, "u1")

    assert updated is not None
    assert updated["title"] == "renamed"
    assert "body" not in updated
    assert updated["ver"] == 1
    assert updated["updateBy"] == "u1"
    assert notes.upd_by_id("n1", {"title": "stolen"}, "u2") is None
    assert notes.upd_by_id("missing", {"title": "x"}, "u1") is None


def test_set_by_id_cannot_touch_lifecycle_attributes(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello"}, "u1")

    assert notes.set_by_id("n1", {"body": "b", "status": int(CrudStatus.ENABLED), "userId": "u2"}, "u1") is True
    record = notes.get_by_id("n1", "u1")
    assert record is not None
    assert record["body"] == "b"
    assert record["status"] == int(CrudStatus.DRAFT)
    assert record["ver"] == 1
    assert notes.set_by_id("n1", {"body": "c"}, "u2") is False


def test_del_by_id_is_owner_gated(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello"}, "u1")

    assert notes.del_by_id("n1", "u2") is False
    assert notes.del_by_id("n1", "u1") is True
    assert notes.get_by_id("n1", "u1") is None
    assert notes.del_by_id("n1", "u1") is False


def test_status_lifecycle(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello"}, "u1")

    def current() -> dict:
        record = notes.get_by_id("n1", "u1")
        assert record is not None
        return record

    def rejected(transition: Callable[[], bool]) -> None:
        before = current()
        assert transition() is False
        assert current() == before

    rejected(lambda: notes.disable_by_id("n1", "u1"))
    rejected(lambda: notes.unblock_by_id("n1", "u1"))
    rejected(lambda: notes.restore_by_id("n1", "u1"))

    assert notes.enable_by_id("n1", "u1") is True
    record = current()
    assert record["status"] == int(CrudStatus.ENABLED)
    assert "enable" in record
    assert "draft" not in record
    assert record["ver"] == 1

    rejected(lambda: notes.enable_by_id("n1", "u2"))
    assert notes.block_by_id("n1", "u1", reason="spam") is True
    record = current()
    assert (record["status"], record["statusReason"]) == (int(CrudStatus.BLOCKED), "spam")
    assert "enable" not in record

    rejected(lambda: notes.block_by_id("n1", "u1", reason="again"))
    rejected(lambda: notes.archive_by_id("n1", "u1"))
    assert notes.unblock_by_id("n1", "u1") is True
    record = current()
    assert record["status"] == int(CrudStatus.ENABLED)
    assert "statusReason" not in record

    assert notes.disable_by_id("n1", "u1") is True
    assert notes.archive_by_id("n1", "u1") is True
    assert current()["status"] == int(CrudStatus.DELETED)
    assert notes.restore_by_id("n1", "u1") is True

    record = current()
    assert record["status"] == int(CrudStatus.DRAFT)
    assert [k for k in ("draft", "enable", "disable", "delete", "block") if k in record] == ["draft"]
    assert record["ver"] == 6


def test_rejected_transition_leaves_stamps_untouched(notes: CrudService) -> None:
    created = notes.create("n1", {"title": "hello"}, "u1")

    assert notes.disable_by_id("n1", "u1") is False
    assert notes.archive_by_id("n1", "u2") is False

    record = notes.get_by_id("n1", "u1")
    assert record == created
    assert record is not None
    assert record["ver"] == 0
    assert "update" not in record
    assert "updateBy" not in record


def test_move_by_id_copies_and_archives(notes: CrudService) -> None:
    notes.create("n1", {"title": "hello"}, "u1")
    with pytest.raises(EnabledRequiredError):
        notes.move_by_id("n2", "n1", "u1")

    notes.enable_by_id("n1", "u1")
    with pytest.raises(ForbiddenError):
        notes.move_by_id("n2", "n1", "u2")

    moved = notes.move_by_id("n2", "n1", "u1")
    assert moved["id"] == "n2"

    copy = notes.get_by_id("n2", "u1")
    old = notes.get_by_id("n1", "u1")
    assert copy is not None and old is not None
    assert copy["status"] == int(CrudStatus.ENABLED)
    assert copy["title"] == "hello"
    assert old["status"] == int(CrudStatus.DELETED)


def test_move_by_id_refuses_to_overwrite(notes: CrudService) -> None:
    notes.create("n1", {"title": "a"}, "u1")
    notes.create("n2", {"title": "b"}, "u1")
    notes.enable_by_id("n1", "u1")

    with pytest.raises(IdExistsError):
        notes.move_by_id("n2", "n1", "u1")
    record = notes.get_by_id("n1", "u1")
    assert record is not None
    assert record["status"] == int(CrudStatus.ENABLED)


def test_create_by_batch_reports_conflicts(notes: CrudService) -> None:
    assert notes.create_by_batch([{"id": "b1", "title": "a"}, {"id": "b2", "title": "b"}], "u1") == [True, True]

    result = notes.create_by_batch([{"id": "b2", "title": "dup"}, {"id": "b3", "title": "c"}], "u1")

    assert result == [False, True]
    assert notes.list_by_ids(["b1", "b2", "b3"], fields=["title"]) == [
        {"title": "a", "id": "b1"},
        {"title": "b", "id": "b2"},
    ]


def _enabled_notes(notes: CrudService, count: int) -> list[str]:
    ids = [f"n{i:02d}" for i in range(count)]
    for note_id in ids:
        notes.create(note_id, {"title": note_id}, "u1")
        notes.enable_by_id(note_id, "u1")
    notes.create("other", {"title": "other"}, "u2")
    notes.enable_by_id("other", "u2")
    return ids


@pytest.mark.parametrize("limit", [1, 2, 3, 7])
def test_page_by_status_round_trips_cursors(notes: CrudService, limit: int) -> None:
    ids = _enabled_notes(notes, 7)

    seen: list[str] = []
    cursor: str | None = None
    for _ in range(20):
        page = notes.page_by_status("u1", limit=limit, cursor=cursor, fields=["title"])
        assert len(page.items) <= limit
        seen.extend(item["title"] for item in page.items)
        cursor = page.next_cursor
        if cursor is None:
            break

    assert seen == list(reversed(ids))


def test_status_queries_and_counts(notes: CrudService) -> None:
    ids = _enabled_notes(notes, 3)
    notes.create("draft", {"title": "draft"}, "u1")

    assert notes.count_by_status("u1") == 3
    assert notes.count_by_status("u1", CrudStatus.DRAFT) == 1
    assert [r["id"] for r in notes.list_by_status("u1", asc=True)] == ids
    assert {r["id"] for r in notes.list_all_by_status()} == {*ids, "other"}

    first = notes.page_all_by_status(limit=2, asc=True)
    assert [r["id"] for r in first.items] == ids[:2]
    assert first.next_cursor is not None


def test_owner_and_table_wide_listings(notes: CrudService) -> None:
    ids = _enabled_notes(notes, 3)

    assert notes.count_by_user("u1") == 3
    assert {r["id"] for r in notes.list_by_user("u1")} == set(ids)
    assert {r["id"] for r in notes.page_by_user("u2").items} == {"other"}
    assert {r["id"] for r in notes.list_all()} == {*ids, "other"}

    seen: list[str] = []
    cursor: str | None = None
    while True:
        page = notes.page_all(limit=2, cursor=cursor, fields=["id"])
        seen.extend(r["id"] for r in page.items)
        cursor = page.next_cursor
        if cursor is None:
            break
    assert sorted(seen) == sorted([*ids, "other"])
