"""
Tracing for corecast sessions, plus the span attribute names they set.
"""

from corecast.observability.tracer import (
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    RecordingTracer,
    Tracer,
    create_tracer,
)

# Span attribute names
ATTR_ENDPOINT = "corecast.endpoint"
ATTR_STREAM_KIND = "corecast.stream.kind"
ATTR_ATTEMPT = "corecast.session.attempt"
ATTR_SESSION_NAME = "corecast.session.name"

__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "RecordingTracer",
    "create_tracer",
    "ATTR_ENDPOINT",
    "ATTR_STREAM_KIND",
    "ATTR_ATTEMPT",
    "ATTR_SESSION_NAME",
]
