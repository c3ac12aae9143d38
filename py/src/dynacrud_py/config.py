from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import EnvRequiredError, ValidationError


@dataclass(frozen=True)
class ServiceConfig:
    app: str
    debug: bool = False
    region: str | None = None
    endpoint_url: str | None = None
    connect_timeout: float = 1.0
    read_timeout: float = 3.0
    max_attempts: int = 3

    def __post_init__(self) -> None:
        if not self.app:
            raise EnvRequiredError("APP")
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be >= 1")

    def table_name(self, service_id: str) -> str:
        return f"{self.app}.{service_id}"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> ServiceConfig:
        app = (environ.get("APP") or "").strip()
        if not app:
            raise EnvRequiredError("APP")

        return cls(
            app=app,
            debug=(environ.get("DEBUG") or "").strip().lower() == "true",
            region=environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or None,
            endpoint_url=(environ.get("DYNAMODB_ENDPOINT") or "").strip() or None,
            connect_timeout=_float(environ, "DYNAMODB_CONNECT_TIMEOUT", 1.0),
            read_timeout=_float(environ, "DYNAMODB_READ_TIMEOUT", 3.0),
            max_attempts=_int(environ, "DYNAMODB_MAX_ATTEMPTS", 3),
        )


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as err:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from err


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as err:
        raise ValidationError(f"{name} must be an integer, got {raw!r}") from err
