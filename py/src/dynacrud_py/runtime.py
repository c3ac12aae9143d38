from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

from .config import ServiceConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AwsCallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


class _InstrumentedClient:
    def __init__(self, client: Any, service: str, on_call: Callable[[AwsCallMetric], None]) -> None:
        self._client = client
        self._service = service
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            ok = False
            try:
                out = attr(*args, **kwargs)
                ok = True
                return out
            finally:
                self._on_call(
                    AwsCallMetric(
                        service=self._service,
                        operation=name,
                        seconds=time.monotonic() - start,
                        ok=ok,
                    )
                )

        return wrapped


def instrument_boto3_client(
    client: Any,
    *,
    service: str,
    on_call: Callable[[AwsCallMetric], None],
) -> Any:
    return _InstrumentedClient(client, service, on_call)


def log_aws_call(metric: AwsCallMetric) -> None:
    logger.debug(
        "%s.%s ok=%s %.1fms", metric.service, metric.operation, metric.ok, metric.seconds * 1000.0
    )


_clients: dict[tuple[str | None, str | None], Any] = {}


def get_dynamodb_client(
    config: ServiceConfig,
    *,
    session: Any | None = None,
    metrics: Callable[[AwsCallMetric], None] | None = None,
) -> Any:
    """Build (once per region and endpoint) a DynamoDB client for ``config``.

    With ``config.debug`` set and no ``metrics`` callback, every call is
    logged at DEBUG level with its latency.
    """
    key = (config.region, config.endpoint_url)
    existing = _clients.get(key)
    if existing is not None:
        return existing

    sess = session or boto3.session.Session(region_name=config.region)
    client = cast(Any, sess).client(
        "dynamodb",
        region_name=config.region,
        endpoint_url=config.endpoint_url,
        config=create_boto3_config(
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            max_attempts=config.max_attempts,
        ),
    )
    if metrics is None and config.debug:
        metrics = log_aws_call
    if metrics is not None:
        client = instrument_boto3_client(client, service="dynamodb", on_call=metrics)

    _clients[key] = client
    return client


def _reset_clients_for_tests() -> None:
    _clients.clear()
