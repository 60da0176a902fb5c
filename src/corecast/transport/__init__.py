"""
Transports that open streaming subscriptions.

- GrpcTransport: CoreCast over grpc.aio
- InMemoryTransport: scripted outcomes for tests and demos
"""

from corecast.transport.grpc import (
    DEFAULT_CHANNEL_OPTIONS,
    SERVICE_NAME,
    STREAM_METHODS,
    GrpcStreamCall,
    GrpcTransport,
    json_request_serializer,
    method_path,
    raw_response_deserializer,
)
from corecast.transport.memory import (
    InMemoryStreamCall,
    InMemoryTransport,
    OpenRecord,
    ScriptedStream,
)

__all__ = [
    "GrpcTransport",
    "GrpcStreamCall",
    "SERVICE_NAME",
    "STREAM_METHODS",
    "DEFAULT_CHANNEL_OPTIONS",
    "json_request_serializer",
    "raw_response_deserializer",
    "method_path",
    "InMemoryTransport",
    "InMemoryStreamCall",
    "ScriptedStream",
    "OpenRecord",
]
