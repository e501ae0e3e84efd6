"""
Span projector: turns each finished LLM span into a Step.

Registered as an OpenTelemetry span processor. For every span the SDK
reports as ended, the projector builds an ``auto_instrumented`` Step on the
current session, parses the response text into a ParsedDecision, records an
``llm_decision`` observation and hands the step to the exporter.

Usage:
    from xray.tracing import SessionContext, init_instrumentation, instrument_client

    context = SessionContext()
    handles = init_instrumentation("competitor-selection", context, exporter=CollectorExporter())
    co = instrument_client(cohere.AsyncClient(api_key), tracer_provider=handles.tracer_provider)
    ...
    handles.shutdown()
"""

import atexit
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, Span, SpanProcessor, TracerProvider
from opentelemetry.trace import StatusCode, format_span_id, format_trace_id

from xray.tracing.context import SessionContext, Step, _NoOpSession
from xray.tracing.decision import ParsedDecision, parse_decision
from xray.tracing.instrumentation import (
    GEN_AI_REQUEST_MESSAGE,
    GEN_AI_REQUEST_MODEL,
    GEN_AI_RESPONSE_REASONING,
    GEN_AI_RESPONSE_TEXT,
)
from xray.utils.logger import get_logger

if TYPE_CHECKING:
    from xray.tracing.exporter import CollectorExporter

logger = get_logger(__name__)

AUTO_STEP_TYPE = "auto_instrumented"
DECISION_OBSERVATION_TYPE = "llm_decision"


def _decision_result(decision: ParsedDecision) -> Optional[str]:
    if decision.agent:
        return decision.agent
    if decision.yes_no is not None:
        return "yes" if decision.yes_no else "no"
    return None


def _status_name(span: ReadableSpan) -> str:
    return span.status.status_code.name if span.status is not None else StatusCode.UNSET.name


class SpanProjector(SpanProcessor):
    """
    Span processor that projects finished spans onto the current session.

    on_end() runs synchronously on whichever thread ended the span. It only
    requires that a session be current at that moment; with no session, or
    the no-op session of a disabled context, the span is dropped.
    """

    def __init__(
        self,
        context: SessionContext,
        exporter: Optional["CollectorExporter"] = None,
    ) -> None:
        self.context = context
        self.exporter = exporter

    def on_start(self, span: Span, parent_context: Optional[Context] = None) -> None:
        pass

    def on_end(self, span: ReadableSpan) -> None:
        session = self.context.current()
        if session is None:
            logger.debug(f"No current session, dropping span: {span.name}")
            return
        if isinstance(session, _NoOpSession):
            return

        step = project_span(span)
        session.add_step(step)
        step.end(span.end_time)

        if self.exporter is not None:
            self.exporter.submit_observation(session, step)

    def shutdown(self) -> None:
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True


def project_span(span: ReadableSpan) -> Step:
    """
    Build a Step from a finished span (not yet ended or attached).

    Timing comes from the span's recorded nanosecond times, never
    re-measured here.
    """
    attributes: Dict[str, Any] = dict(span.attributes or {})
    prompt = attributes.get(GEN_AI_REQUEST_MESSAGE)
    response = attributes.get(GEN_AI_RESPONSE_TEXT)
    model = attributes.get(GEN_AI_REQUEST_MODEL)
    span_reasoning = attributes.get(GEN_AI_RESPONSE_REASONING)

    step = Step(
        session_id="",
        name=span.name,
        type=AUTO_STEP_TYPE,
        _start_ns=span.start_time,
    )

    decision = parse_decision(response)

    step.set_input({
        "prompt": prompt,
        "model": model,
        "rawAttributes": attributes,
    })
    step.set_output({
        "response": response,
        "parsedDecision": decision.to_dict(),
    })

    reasoning = decision.reasoning or span_reasoning or decision.summary()
    if reasoning:
        step.set_reasoning(reasoning)

    span_context = span.get_span_context()
    status = _status_name(span)
    data: Dict[str, Any] = {
        "traceId": format_trace_id(span_context.trace_id),
        "spanId": format_span_id(span_context.span_id),
    }
    if span.parent is not None:
        data["parentSpanId"] = format_span_id(span.parent.span_id)
    data.update({
        "prompt": prompt,
        "response": response,
        "parsedDecision": decision.to_dict(),
        "status": status,
    })

    step.add_observation(
        id=data["spanId"],
        type=DECISION_OBSERVATION_TYPE,
        label=f"LLM decision: {decision.agent}" if decision.agent else f"LLM call: {span.name}",
        data=data,
        result=_decision_result(decision),
        reason=reasoning,
        score=decision.confidence,
    )

    if model:
        step.log_info(f"Model: {model}")
    if decision.agent:
        step.log_decision(
            f"Selected agent: {decision.agent}",
            {"agent": decision.agent, "confidence": decision.confidence},
        )
    if status == StatusCode.ERROR.name:
        step.log_error(span.status.description or "LLM call failed")

    return step


@dataclass
class InstrumentationHandles:
    """Runtime handles returned by init_instrumentation()."""
    context: SessionContext
    tracer_provider: TracerProvider
    projector: SpanProjector
    _shut_down: bool = field(default=False, repr=False)

    def shutdown(self) -> None:
        """End a still-running session and stop the tracer provider. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        session = self.context.current()
        if session is not None and session.status == "running":
            self.context.end_session("completed")
        self.tracer_provider.shutdown()


def init_instrumentation(
    service_name: str,
    context: SessionContext,
    exporter: Optional["CollectorExporter"] = None,
    metadata: Optional[Dict[str, Any]] = None,
    set_global: bool = True,
    end_on_exit: bool = True,
) -> InstrumentationHandles:
    """
    Wire the span projector into a fresh TracerProvider.

    Starts a session named after the service when none is current, so spans
    have somewhere to land.

    Args:
        service_name: Resource service.name and implicit session name.
        context: Session holder the projector writes into.
        exporter: Receives each projected step (fire-and-forget).
        metadata: Metadata for the implicitly created session.
        set_global: Install the provider as the global OpenTelemetry provider.
        end_on_exit: End the session and flush the provider at interpreter exit.
    """
    resource = Resource.create({"service.name": service_name})
    tracer_provider = TracerProvider(resource=resource)
    projector = SpanProjector(context, exporter=exporter)
    tracer_provider.add_span_processor(projector)

    if set_global:
        trace.set_tracer_provider(tracer_provider)

    if context.current() is None:
        context.start_session(service_name, metadata)

    handles = InstrumentationHandles(
        context=context,
        tracer_provider=tracer_provider,
        projector=projector,
    )
    if end_on_exit:
        atexit.register(handles.shutdown)

    logger.info(f"Instrumentation initialised: {service_name}")
    return handles
