from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import yaml
from jsonschema import Draft202012Validator, FormatChecker
from jsonschema.exceptions import SchemaError

from .errors import SchemaValidationError, ValidationError
from .status import CrudStatus

type JsonSchema = dict[str, Any]


@dataclass(frozen=True)
class SchemaViolation:
    field: str
    message: str
    keyword: str
    value: Any = None
    schema: Mapping[str, Any] | None = None


type ViolationHandler = Callable[[SchemaViolation], bool]


class Validator(Protocol):
    def validate(
        self,
        json: Mapping[str, Any],
        schema: Mapping[str, Any],
        on_error: ViolationHandler | None = None,
    ) -> None: ...


def _field_path(parts: Iterable[Any]) -> str:
    out = "$"
    for part in parts:
        out += f"[{part}]" if isinstance(part, int) else f".{part}"
    return out


class JsonSchemaValidator:
    """``Validator`` backed by the jsonschema library (draft 2020-12).

    Violations are visited in document order; the first one the handler does
    not downgrade (by returning False) is raised as ``SchemaValidationError``.
    """

    def __init__(self, *, check_formats: bool = True) -> None:
        self._format_checker = FormatChecker() if check_formats else None

    def validate(
        self,
        json: Mapping[str, Any],
        schema: Mapping[str, Any],
        on_error: ViolationHandler | None = None,
    ) -> None:
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as err:
            raise ValidationError(f"invalid schema: {err.message}") from err

        validator = Draft202012Validator(schema, format_checker=self._format_checker)
        errors = sorted(
            validator.iter_errors(json),
            key=lambda e: (_field_path(e.absolute_path), str(e.validator)),
        )
        for err in errors:
            violation = SchemaViolation(
                field=_field_path(err.absolute_path),
                message=err.message,
                keyword=str(err.validator),
                value=err.instance,
                schema=err.schema if isinstance(err.schema, Mapping) else None,
            )
            if on_error is not None and not on_error(violation):
                continue
            raise SchemaValidationError(field=violation.field, message=violation.message)


CRUD_PROPERTIES: dict[str, JsonSchema] = {
    "id": {"type": "string"},
    "status": {"type": "integer", "enum": [int(s) for s in CrudStatus]},
    "create": {"type": "integer"},
    "createBy": {"type": "string"},
    "update": {"type": "integer"},
    "updateBy": {"type": "string"},
    "draft": {"type": "integer"},
    "enable": {"type": "integer"},
    "disable": {"type": "integer"},
    "delete": {"type": "integer"},
    "block": {"type": "integer"},
    "userId": {"type": "string"},
    "statusReason": {"type": "string"},
    "log": {"type": "string"},
    "ver": {"type": "integer", "minimum": 0},
}


def with_crud_properties(schema: Mapping[str, Any]) -> JsonSchema:
    """Copy of ``schema`` with the standard CRUD attributes merged under its own."""
    merged = copy.deepcopy(dict(schema))
    merged.setdefault("type", "object")
    merged["properties"] = {**copy.deepcopy(CRUD_PROPERTIES), **dict(merged.get("properties") or {})}
    return merged


def load_schema_document(raw: str | bytes) -> JsonSchema:
    """Parse a YAML (or JSON) schema document into a mapping."""
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as err:
        raise ValidationError(f"schema document is not valid YAML: {err}") from err
    if not isinstance(parsed, dict):
        raise ValidationError("schema document must be a mapping")
    return parsed


def load_schema_file(path: str | Path) -> JsonSchema:
    return load_schema_document(Path(path).read_text(encoding="utf-8"))
