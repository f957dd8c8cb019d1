"""Telemetry messages and sinks.

A telemetry sink accepts three message kinds:

- ``Span``: a named unit of work with structured attributes
- ``Breadcrumb``: a lightweight annotation with a category, level and data
- ``LogRecord``: a structured log entry (level, event name, fields)

Emission is fire-and-forget from the point of view of the form logic: the
form session hands messages to ``emit_all``, which isolates sink failures, and
``AsyncDispatchSink`` moves delivery off the caller's control flow entirely.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union
import json

from dateutil.parser import isoparse
from typing_extensions import Protocol, runtime_checkable

from formpulse.clock import system_clock
from formpulse.observability import get_logger
from formpulse.types import MessageKind, TelemetryLevel

logger = get_logger(__name__)

Scalar = Union[str, int, float, bool, None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Optional[str]) -> datetime:
    return isoparse(value) if value else _utcnow()


@dataclass(frozen=True)
class Span:
    """A named, timed unit of work.

    Attributes:
        name: Span name (e.g. "signup.field.dwell.email")
        op: Operation category (e.g. "ui.field.dwell")
        attributes: Flat map of scalar attributes
        ts: UTC time the span was recorded
    """
    name: str
    op: str
    attributes: Dict[str, Scalar] = field(default_factory=dict)
    ts: datetime = field(default_factory=_utcnow)

    kind = MessageKind.SPAN

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "kind": self.kind.value,
            "name": self.name,
            "op": self.op,
            "attributes": dict(self.attributes),
            "ts": self.ts.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Span":
        """Create Span from dict."""
        return cls(
            name=data["name"],
            op=data["op"],
            attributes=dict(data.get("attributes") or {}),
            ts=_parse_ts(data.get("ts")),
        )


@dataclass(frozen=True)
class Breadcrumb:
    """A lightweight annotation attached to the current observability context.

    Attributes:
        category: Dotted category (e.g. "signup.field.focus")
        message: Human-readable description
        level: Severity
        data: Arbitrary structured payload
        ts: UTC time the breadcrumb was recorded
    """
    category: str
    message: str
    level: TelemetryLevel = TelemetryLevel.INFO
    data: Dict[str, Any] = field(default_factory=dict)
    ts: datetime = field(default_factory=_utcnow)

    kind = MessageKind.BREADCRUMB

    def __post_init__(self):
        if isinstance(self.level, str) and not isinstance(self.level, TelemetryLevel):
            object.__setattr__(self, "level", TelemetryLevel(self.level))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "kind": self.kind.value,
            "category": self.category,
            "message": self.message,
            "level": self.level.value,
            "data": dict(self.data),
            "ts": self.ts.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Breadcrumb":
        """Create Breadcrumb from dict."""
        return cls(
            category=data["category"],
            message=data["message"],
            level=TelemetryLevel(data.get("level", "info")),
            data=dict(data.get("data") or {}),
            ts=_parse_ts(data.get("ts")),
        )


@dataclass(frozen=True)
class LogRecord:
    """A structured log entry.

    Attributes:
        level: Severity
        event: Event name (e.g. "signup.field_paste")
        fields: Flat map of scalar fields
        ts: UTC time the record was produced
    """
    level: TelemetryLevel
    event: str
    fields: Dict[str, Scalar] = field(default_factory=dict)
    ts: datetime = field(default_factory=_utcnow)

    kind = MessageKind.LOG

    def __post_init__(self):
        if isinstance(self.level, str) and not isinstance(self.level, TelemetryLevel):
            object.__setattr__(self, "level", TelemetryLevel(self.level))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "kind": self.kind.value,
            "level": self.level.value,
            "event": self.event,
            "fields": dict(self.fields),
            "ts": self.ts.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogRecord":
        """Create LogRecord from dict."""
        return cls(
            level=TelemetryLevel(data["level"]),
            event=data["event"],
            fields=dict(data.get("fields") or {}),
            ts=_parse_ts(data.get("ts")),
        )


TelemetryMessage = Union[Span, Breadcrumb, LogRecord]

_MESSAGE_TYPES = {
    MessageKind.SPAN.value: Span,
    MessageKind.BREADCRUMB.value: Breadcrumb,
    MessageKind.LOG.value: LogRecord,
}


def message_from_dict(data: Dict[str, Any]) -> TelemetryMessage:
    """Rebuild a telemetry message from its ``to_dict`` form."""
    try:
        message_type = _MESSAGE_TYPES[data["kind"]]
    except KeyError:
        raise ValueError(f"Unknown telemetry message kind: {data.get('kind')!r}") from None
    return message_type.from_dict(data)


def to_jsonl(message: TelemetryMessage) -> str:
    """Serialize a message to a single compact JSON line."""
    return json.dumps(message.to_dict(), separators=(",", ":"), default=str)


@runtime_checkable
class TelemetrySink(Protocol):
    """Anything that accepts telemetry messages."""

    def emit(self, message: TelemetryMessage) -> None:
        ...


def emit_all(sink: TelemetrySink, messages: Iterable[TelemetryMessage]) -> None:
    """Hand messages to a sink, logging and discarding any sink failure."""
    for message in messages:
        try:
            sink.emit(message)
        except Exception:
            logger.exception("telemetry_sink_failed", kind=message.kind.value)


class RecordingSink:
    """Sink that keeps every message in memory, in emission order.

    Examples:
        >>> sink = RecordingSink()
        >>> sink.emit(Breadcrumb(category="signup.lifecycle", message="started"))
        >>> [b.category for b in sink.breadcrumbs()]
        ['signup.lifecycle']
    """

    def __init__(self) -> None:
        self.messages: List[TelemetryMessage] = []

    def emit(self, message: TelemetryMessage) -> None:
        self.messages.append(message)

    def spans(self, op: Optional[str] = None) -> List[Span]:
        return [m for m in self.messages if isinstance(m, Span) and (op is None or m.op == op)]

    def breadcrumbs(self, category: Optional[str] = None) -> List[Breadcrumb]:
        return [
            m for m in self.messages
            if isinstance(m, Breadcrumb) and (category is None or m.category == category)
        ]

    def logs(self, event: Optional[str] = None) -> List[LogRecord]:
        return [
            m for m in self.messages
            if isinstance(m, LogRecord) and (event is None or m.event == event)
        ]

    def clear(self) -> None:
        self.messages.clear()

    def __len__(self) -> int:
        return len(self.messages)


class StructlogSink:
    """Sink that renders every message as a structlog event.

    Spans are logged at info level under their name; breadcrumbs and log
    records keep their own level.
    """

    def __init__(self, name: str = "formpulse.telemetry") -> None:
        self._logger = get_logger(name)

    def emit(self, message: TelemetryMessage) -> None:
        if isinstance(message, Span):
            self._logger.info(message.name, kind="span", op=message.op, **message.attributes)
        elif isinstance(message, Breadcrumb):
            log = getattr(self._logger, message.level.value)
            log(
                message.message,
                kind="breadcrumb",
                category=message.category,
                data=message.data,
            )
        else:
            log = getattr(self._logger, message.level.value)
            log(message.event, kind="log", **message.fields)


MessageListener = Callable[[TelemetryMessage], None]


class FanoutSink:
    """Sink dispatching messages to listeners registered per message kind.

    Listeners are called synchronously in registration order: kind-specific
    listeners first, then wildcard listeners. A failing listener is logged
    and does not affect the others.

    Examples:
        >>> fanout = FanoutSink()
        >>> seen = []
        >>> fanout.on(MessageKind.SPAN, seen.append)
        >>> fanout.emit(Span(name="signup.validate", op="ui.validate"))
        >>> len(seen)
        1
    """

    def __init__(self) -> None:
        self._listeners: Dict[MessageKind, List[MessageListener]] = {}
        self._any_listeners: List[MessageListener] = []

    def on(self, kind: MessageKind, listener: MessageListener) -> None:
        self._listeners.setdefault(kind, []).append(listener)

    def on_any(self, listener: MessageListener) -> None:
        self._any_listeners.append(listener)

    def off(self, kind: MessageKind, listener: MessageListener) -> None:
        listeners = self._listeners.get(kind, [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: MessageListener) -> None:
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, message: TelemetryMessage) -> None:
        for listener in [*self._listeners.get(message.kind, []), *self._any_listeners]:
            try:
                listener(message)
            except Exception:
                logger.exception("telemetry_listener_failed", kind=message.kind.value)

    def listener_count(self, kind: Optional[MessageKind] = None) -> int:
        """Count listeners for one kind, or all listeners (wildcards included)."""
        if kind is not None:
            return len(self._listeners.get(kind, []))
        return len(self._any_listeners) + sum(len(v) for v in self._listeners.values())


_STOP = object()


class AsyncDispatchSink:
    """Sink that queues messages and delivers them from a background task.

    ``emit`` never blocks and never raises: when the queue is full the message
    is dropped and counted. Call ``start()`` from a running event loop (or use
    ``async with``) and ``aclose()`` to flush the queue and stop the worker.
    """

    def __init__(self, downstream: TelemetrySink, maxsize: int = 1000) -> None:
        self.downstream = downstream
        self.dropped = 0
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional["asyncio.Task[None]"] = None

    def start(self) -> None:
        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    def emit(self, message: TelemetryMessage) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("telemetry_dropped", kind=message.kind.value, dropped=self.dropped)

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                emit_all(self.downstream, [item])
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued message has been delivered."""
        if self._worker is not None:
            await self._queue.join()

    async def aclose(self) -> None:
        """Deliver queued messages and stop the worker."""
        if self._worker is None:
            return
        await self._queue.put(_STOP)
        await self._worker
        self._worker = None

    async def __aenter__(self) -> "AsyncDispatchSink":
        self.start()
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()


class SpanScope:
    """Context manager measuring a block of work and emitting it as a Span.

    The span is emitted when the block exits, with ``duration_ms`` added to
    its attributes. If the block raises, ``span.status`` is set to "error"
    and the exception propagates.

    Examples:
        >>> sink = RecordingSink()
        >>> with start_span(sink, "signup.api_call", "http.client") as span:
        ...     span.set_attribute("http.status_code", 201)
        >>> sink.spans()[0].attributes["http.status_code"]
        201
    """

    def __init__(
        self,
        sink: Optional[TelemetrySink],
        name: str,
        op: str,
        attributes: Optional[Mapping[str, Scalar]] = None,
        clock: Callable[[], int] = system_clock,
    ) -> None:
        self.name = name
        self.op = op
        self.attributes: Dict[str, Scalar] = dict(attributes or {})
        self._sink = sink
        self._clock = clock
        self._started: Optional[int] = None

    def set_attribute(self, key: str, value: Scalar) -> None:
        self.attributes[key] = value

    def __enter__(self) -> "SpanScope":
        self._started = self._clock()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        started = self._started if self._started is not None else self._clock()
        self.attributes["duration_ms"] = self._clock() - started
        if exc_type is not None:
            self.attributes["span.status"] = "error"
        if self._sink is not None:
            emit_all(self._sink, [Span(name=self.name, op=self.op, attributes=self.attributes)])


def start_span(
    sink: Optional[TelemetrySink],
    name: str,
    op: str,
    attributes: Optional[Mapping[str, Scalar]] = None,
    clock: Callable[[], int] = system_clock,
) -> SpanScope:
    """Open a measured span that is emitted to ``sink`` when the block exits."""
    return SpanScope(sink, name, op, attributes, clock)


__all__ = [
    "Scalar",
    "Span",
    "Breadcrumb",
    "LogRecord",
    "TelemetryMessage",
    "message_from_dict",
    "to_jsonl",
    "TelemetrySink",
    "emit_all",
    "RecordingSink",
    "StructlogSink",
    "MessageListener",
    "FanoutSink",
    "AsyncDispatchSink",
    "SpanScope",
    "start_span",
]
