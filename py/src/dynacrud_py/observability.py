from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

LOG_TOPIC = "log"


@dataclass(frozen=True)
class LogEvent:
    level: str
    service: str
    message: str
    data: Any = None
    user_id: str | None = None
    time: int = field(default_factory=lambda: int(time.time() * 1000))


class EventSink(Protocol):
    def publish(self, topic: str, event: Any) -> None: ...


class NullEventSink:
    def publish(self, topic: str, event: Any) -> None:
        return None


type Listener = Callable[[Any], None]


class EventBus:
    """In-process pub/sub. A failing listener is logged and skipped."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, topic: str, listener: Listener) -> Callable[[], None]:
        self._listeners[topic].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[topic]:
                self._listeners[topic].remove(listener)

        return unsubscribe

    def publish(self, topic: str, event: Any) -> None:
        for listener in list(self._listeners.get(topic, ())):
            try:
                listener(event)
            except Exception:
                logger.exception("event listener failed (topic=%s)", topic)


class ServiceLog:
    """Per-service logger that mirrors info and above to an event sink."""

    def __init__(self, service: str, *, sink: EventSink | None = None) -> None:
        self.service = service
        self._logger = logging.getLogger(f"dynacrud_py.{service}")
        self._sink: EventSink = sink or NullEventSink()

    def debug(self, message: str, data: Any = None, user_id: str | None = None) -> None:
        self._logger.debug("%s %s", message, "" if data is None else data)

    def info(self, message: str, data: Any = None, user_id: str | None = None) -> None:
        self._emit(logging.INFO, "info", message, data, user_id)

    def warning(self, message: str, data: Any = None, user_id: str | None = None) -> None:
        self._emit(logging.WARNING, "warning", message, data, user_id)

    def error(self, message: str, data: Any = None, user_id: str | None = None) -> None:
        self._emit(logging.ERROR, "error", message, data, user_id)

    def _emit(self, level: int, name: str, message: str, data: Any, user_id: str | None) -> None:
        self._logger.log(level, "%s user=%s data=%s", message, user_id, data)
        try:
            self._sink.publish(
                LOG_TOPIC,
                LogEvent(level=name, service=self.service, message=message, data=data, user_id=user_id),
            )
        except Exception:
            logger.exception("event sink failed for %s", self.service)
