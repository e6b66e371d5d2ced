"""
Telemetry spans for airoute.

Wraps dispatches and provider attempts with start/stop/exception events.
Events go to attached handlers; the core never consumes them itself.
"""

import logging
import threading
import time
import traceback
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from airoute.providers.models import DispatchResult, TokenUsage

logger = logging.getLogger(__name__)

# Option keys copied into span metadata so callers can correlate events.
CORRELATION_KEYS = (
    "command_session_id",
    "command_workflow_id",
    "command_user_id",
    "correlation_id",
    "request_id",
)


class SpanPhase(str, Enum):
    """Lifecycle phase of a span event."""

    START = "start"
    STOP = "stop"
    EXCEPTION = "exception"


@dataclass
class SpanEvent:
    """Single telemetry event.

    Attributes:
        phase: Start, stop or exception.
        operation: Operation name, e.g. ``generate`` or ``dispatch``.
        provider_id: Provider the span covers, if any.
        duration: Seconds elapsed (stop/exception only).
        metadata: Caller metadata plus result/error details.
        measurements: ``system_time`` on start, ``duration`` otherwise.
    """

    phase: SpanPhase
    operation: str
    provider_id: str | None = None
    duration: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    measurements: dict[str, float] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """Channel name, e.g. ``ai.generate.stop``."""
        return f"ai.{self.operation}.{self.phase.value}"


EventHandler = Callable[[SpanEvent], None]


def correlation_metadata(options: Mapping[str, Any] | None) -> dict[str, Any]:
    """Pick the correlation ids present in call options."""
    if not options:
        return {}
    return {key: options[key] for key in CORRELATION_KEYS if options.get(key) is not None}


def result_metadata(result: Any) -> dict[str, Any]:
    """
    Extract stop metadata from a span result.

    Args:
        result: Value returned by the wrapped function.

    Returns:
        ``status`` plus ``model``, ``tokens`` and ``attempt_count`` when present.
    """
    metadata: dict[str, Any] = {"status": "ok"}

    if isinstance(result, DispatchResult):
        metadata["attempt_count"] = result.attempt_count
        metadata["winner"] = result.provider_id
        result = result.value

    model = getattr(result, "model", None)
    if model:
        metadata["model"] = model

    usage = getattr(result, "usage", None)
    if isinstance(result, Mapping):
        usage = result.get("usage") or result.get("tokens")
        if result.get("model"):
            metadata["model"] = result["model"]
    if isinstance(usage, TokenUsage):
        metadata["tokens"] = usage.to_dict()
    elif isinstance(usage, Mapping):
        metadata["tokens"] = TokenUsage.from_mapping(usage).to_dict()

    return metadata


class Telemetry:
    """
    Event emitter for span events.

    Handlers are attached under an id and may subscribe to specific event
    names. A handler that raises is logged and detached.
    """

    def __init__(self) -> None:
        """Initialize telemetry with no handlers."""
        self._handlers: dict[str, tuple[EventHandler, frozenset[str] | None]] = {}
        self._lock = threading.Lock()

    def attach(
        self,
        handler_id: str,
        handler: EventHandler,
        events: Iterable[str] | None = None,
    ) -> None:
        """Attach a handler.

        Args:
            handler_id: Unique id used to detach later
            handler: Callable receiving each SpanEvent
            events: Event names to receive (all events if None)

        Raises:
            ValueError: If a handler with this id is already attached
        """
        with self._lock:
            if handler_id in self._handlers:
                raise ValueError(f"Handler '{handler_id}' is already attached")
            names = frozenset(events) if events is not None else None
            self._handlers[handler_id] = (handler, names)

    def detach(self, handler_id: str) -> bool:
        """Detach a handler. Returns False if it was not attached."""
        with self._lock:
            return self._handlers.pop(handler_id, None) is not None

    def handler_ids(self) -> list[str]:
        with self._lock:
            return list(self._handlers)

    def emit(self, event: SpanEvent) -> None:
        """Deliver an event to every subscribed handler."""
        with self._lock:
            handlers = list(self._handlers.items())

        for handler_id, (handler, names) in handlers:
            if names is not None and event.name not in names:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"Telemetry handler '{handler_id}' failed, detaching: {e}")
                self.detach(handler_id)

    async def span(
        self,
        operation: str,
        metadata: Mapping[str, Any],
        fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Run ``fn`` inside a span.

        Emits start before calling ``fn``, then stop with the duration and
        result metadata, or exception with the error before re-raising.

        Args:
            operation: Operation name used in the event channel.
            metadata: Base metadata (provider, operation, correlation ids).
            fn: Zero-argument coroutine function to run.

        Returns:
            Whatever ``fn`` returns.
        """
        base = dict(metadata)
        provider_id = base.get("provider")

        self.emit(
            SpanEvent(
                phase=SpanPhase.START,
                operation=operation,
                provider_id=provider_id,
                metadata=dict(base),
                measurements={"system_time": time.time()},
            )
        )

        started = time.perf_counter()
        try:
            result = await fn()
        except BaseException as e:
            duration = time.perf_counter() - started
            error = getattr(e, "error", None)
            self.emit(
                SpanEvent(
                    phase=SpanPhase.EXCEPTION,
                    operation=operation,
                    provider_id=provider_id,
                    duration=duration,
                    metadata={
                        **base,
                        "status": "error",
                        "kind": type(e).__name__,
                        "error": str(error) if error is not None else str(e),
                        "stacktrace": traceback.format_exception(type(e), e, e.__traceback__),
                    },
                    measurements={"duration": duration},
                )
            )
            raise

        duration = time.perf_counter() - started
        self.emit(
            SpanEvent(
                phase=SpanPhase.STOP,
                operation=operation,
                provider_id=provider_id,
                duration=duration,
                metadata={**base, **result_metadata(result)},
                measurements={"duration": duration},
            )
        )
        return result

    def attach_logger(self, handler_id: str = "logger", level: int = logging.DEBUG) -> None:
        """Attach a handler that logs every event."""

        def _log(event: SpanEvent) -> None:
            if event.phase is SpanPhase.START:
                logger.log(level, f"{event.name} provider={event.provider_id}")
            else:
                logger.log(
                    level,
                    f"{event.name} provider={event.provider_id} "
                    f"duration={event.duration:.3f}s status={event.metadata.get('status')}",
                )

        self.attach(handler_id, _log)


# Global telemetry instance
_telemetry: Telemetry | None = None


def get_telemetry() -> Telemetry:
    """Get the global telemetry instance.

    Returns:
        Global Telemetry
    """
    global _telemetry
    if _telemetry is None:
        _telemetry = Telemetry()
    return _telemetry


def reset_telemetry() -> None:
    """Reset the global telemetry instance."""
    global _telemetry
    _telemetry = None
