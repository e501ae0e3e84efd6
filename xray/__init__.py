"""X-Ray: decision telemetry for multi-step LLM pipelines."""

from xray.tracing import (
    CollectorExporter,
    SessionContext,
    finish_session,
    init_instrumentation,
    instrument_client,
    traced_session,
)

__version__ = "0.1.0"

__all__ = [
    "SessionContext",
    "CollectorExporter",
    "finish_session",
    "traced_session",
    "init_instrumentation",
    "instrument_client",
]
