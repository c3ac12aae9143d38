from __future__ import annotations

import json
import logging
from typing import Any, Protocol

from .model import Record

logger = logging.getLogger(__name__)


class QueryCache(Protocol):
    def get(self, key: str) -> list[Record] | None: ...

    def put(self, key: str, items: list[Record]) -> None: ...


class NoopQueryCache:
    def get(self, key: str) -> list[Record] | None:
        return None

    def put(self, key: str, items: list[Record]) -> None:
        return None


class MemoryQueryCache:
    """Process-local cache for drained query results.

    Unbounded and never invalidated, so only suitable for debugging sessions
    where the table is not written concurrently.
    """

    def __init__(self) -> None:
        self._entries: dict[str, list[Record]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> list[Record] | None:
        hit = self._entries.get(key)
        if hit is not None:
            logger.debug("query cache hit: %s", key)
            return [dict(item) for item in hit]
        return None

    def put(self, key: str, items: list[Record]) -> None:
        self._entries[key] = [dict(item) for item in items]

    def clear(self) -> None:
        self._entries.clear()


def cache_key(table_name: str, operation: str, **params: Any) -> str:
    return json.dumps(
        {"table": table_name, "op": operation, **params},
        sort_keys=True,
        separators=(",", ":"),
        default=repr,
    )
