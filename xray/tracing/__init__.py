"""
X-Ray tracing: decision telemetry for multi-step LLM pipelines.

Provides the session/step data model, automatic instrumentation of
language-model clients, the span projector that turns model calls into
steps, and the collector exporter and query API.

Usage:
    from xray.tracing import SessionContext, CollectorExporter, instrument_client, init_instrumentation

    context = SessionContext()
    exporter = CollectorExporter()
    handles = init_instrumentation("decision-agent", context, exporter=exporter)
    co = instrument_client(cohere.AsyncClient(api_key), tracer_provider=handles.tracer_provider)

    # Record manual steps in any component
    step = context.start_step("route_action", "decision")
    step.add_observation(id="slack_dm", type="agent", label="Slack DM", result="selected")
    step.end()

    # Finish and persist
    result = await finish_session(context, exporter=exporter)
"""

from xray.tracing.context import (
    Event,
    Observation,
    Session,
    SessionContext,
    Step,
    finish_session,
    traced_session,
)
from xray.tracing.decision import ParsedDecision, parse_decision
from xray.tracing.errors import ExportError, NoActiveSessionError, XRayError
from xray.tracing.exporter import CollectorExporter, export_current_session, write_session_file
from xray.tracing.grammar import FieldMarker, extract_fields
from xray.tracing.instrumentation import (
    InstrumentedClient,
    instrument_client,
    instrument_cohere,
    split_reasoning,
)
from xray.tracing.projector import InstrumentationHandles, SpanProjector, init_instrumentation
from xray.tracing.query import CollectorQuery, SessionSummary
from xray.tracing.summary import (
    format_compact_summary,
    format_verbose_summary,
    print_session,
    write_summary_file,
)

__all__ = [
    "SessionContext",
    "Session",
    "Step",
    "Observation",
    "Event",
    "finish_session",
    "traced_session",
    "ParsedDecision",
    "parse_decision",
    "FieldMarker",
    "extract_fields",
    "InstrumentedClient",
    "instrument_client",
    "instrument_cohere",
    "split_reasoning",
    "SpanProjector",
    "InstrumentationHandles",
    "init_instrumentation",
    "CollectorExporter",
    "export_current_session",
    "write_session_file",
    "CollectorQuery",
    "SessionSummary",
    "format_compact_summary",
    "format_verbose_summary",
    "print_session",
    "write_summary_file",
    "XRayError",
    "NoActiveSessionError",
    "ExportError",
]
