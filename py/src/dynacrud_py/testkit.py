from __future__ import annotations

from collections.abc import Callable

from .mocks import ANY, FakeDynamoDBClient, cancellation_error, client_error


def no_sleep(_: float) -> None:
    return None


def fixed_now(start: int = 1_700_000_000_000, step: int = 0) -> Callable[[], int]:
    """Clock returning ``start`` and advancing by ``step`` milliseconds per call."""
    if step < 0:
        raise ValueError("step must be >= 0")
    current = start - step

    def now() -> int:
        nonlocal current
        current += step
        return current

    return now


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "cancellation_error",
    "client_error",
    "fixed_now",
    "no_sleep",
]
