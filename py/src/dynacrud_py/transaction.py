from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .query import ConditionExpression


@dataclass(frozen=True)
class TransactPut:
    """Put ``item`` under ``id``; ``create`` adds ``attribute_not_exists(id)``."""

    id: str
    item: Mapping[str, Any]
    condition: ConditionExpression | None = None
    create: bool = False


@dataclass(frozen=True)
class TransactUpdate:
    id: str
    updates: Mapping[str, Any]
    condition: ConditionExpression | None = None
    increments: Mapping[str, Any] = field(default_factory=dict)
    removes: tuple[str, ...] = ()


@dataclass(frozen=True)
class TransactDelete:
    id: str
    condition: ConditionExpression | None = None


@dataclass(frozen=True)
class TransactConditionCheck:
    id: str
    condition: ConditionExpression


@dataclass(frozen=True)
class TransactGet:
    id: str
    fields: Sequence[str] | None = None


type TransactWriteAction = TransactPut | TransactUpdate | TransactDelete | TransactConditionCheck
