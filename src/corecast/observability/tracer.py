"""
Tracing seam for stream sessions.

A StreamSession never talks to OpenTelemetry directly; it receives a Tracer
and wraps each connection attempt in ``tracer.span(...)``. Three tracers
are provided:

- OpenTelemetryTracer: client spans through the global tracer provider
- NullTracer: tracing disabled
- RecordingTracer: keeps every span in memory, for tests

Example:
    >>> tracer = RecordingTracer()
    >>> session = StreamSession(transport, endpoint, params, tracer=tracer)
    >>> await session.run()
    >>> [span.name for span in tracer.spans]
    ['corecast.session.open']
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import AbstractContextManager, contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace

Attributes = Mapping[str, Any]


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a span around a block of code."""

    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> AbstractContextManager[Any]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Tracer used when tracing is switched off; spans yield None."""

    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> AbstractContextManager[None]:
        return nullcontext()

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Opens CLIENT spans through the global OpenTelemetry tracer provider.

    With only opentelemetry-api installed the spans are non-recording; the
    host process decides whether to export them by configuring an SDK.
    """

    def __init__(self, instrumentation_name: str) -> None:
        self._tracer = trace.get_tracer(instrumentation_name)

    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> AbstractContextManager[trace.Span]:
        # start_as_current_span records the exception and sets ERROR status
        return self._tracer.start_as_current_span(
            name,
            kind=trace.SpanKind.CLIENT,
            attributes=dict(attributes or {}),
        )

    @property
    def enabled(self) -> bool:
        return True


@dataclass
class RecordedSpan:
    """A span captured by RecordingTracer."""

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None
    finished: bool = False


class RecordingTracer:
    """In-memory tracer for tests; spans are kept in order of opening."""

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @contextmanager
    def span(
        self,
        name: str,
        attributes: Attributes | None = None,
    ) -> Iterator[RecordedSpan]:
        recorded = RecordedSpan(name, dict(attributes or {}))
        self.spans.append(recorded)
        try:
            yield recorded
        except BaseException as e:
            recorded.error = e
            raise
        finally:
            recorded.finished = True

    @property
    def enabled(self) -> bool:
        return True

    def named(self, name: str) -> list[RecordedSpan]:
        """Spans with the given name."""
        return [span for span in self.spans if span.name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """OpenTelemetryTracer when tracing is enabled, NullTracer otherwise."""
    return OpenTelemetryTracer(name) if enable_tracing else NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "RecordingTracer",
    "create_tracer",
]
