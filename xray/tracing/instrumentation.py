"""
Automatic instrumentation for language-model clients.

Wraps a client so each chat call:
  1. records the caller's original prompt on a CLIENT span,
  2. appends a directive asking the model to end with a ``REASON:`` line,
  3. strips that reasoning back out of the returned text.

The caller sees only the clean answer. The span carries the clean answer
and the extracted reasoning, which the span projector turns into a Step.

Usage:
    import cohere
    from xray.tracing import instrument_client

    co = instrument_client(cohere.AsyncClient(api_key), system="cohere")
    result = await co.chat(model="command-r7b-12-2024", message="Is X a competitor of Y?")
    result.text  # reasoning already removed
"""

import dataclasses
import inspect
import re
from typing import Any, Dict, Mapping, MutableMapping, Optional, Tuple

from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, TracerProvider

from xray.utils.logger import get_logger

logger = get_logger(__name__)

TRACER_NAME = "xray.instrumentation"

# Span attribute schema (read back by the span projector).
GEN_AI_SYSTEM = "gen_ai.system"
GEN_AI_REQUEST_MODEL = "gen_ai.request.model"
GEN_AI_REQUEST_MESSAGE = "gen_ai.request.message"
GEN_AI_REQUEST_TEMPERATURE = "gen_ai.request.temperature"
GEN_AI_RESPONSE_TEXT = "gen_ai.response.text"
GEN_AI_RESPONSE_FINISH_REASON = "gen_ai.response.finish_reason"
GEN_AI_RESPONSE_REASONING = "gen_ai.response.reasoning"
ERROR_TYPE_ATTR = "error.type"

REASONING_DIRECTIVE = (
    "\n\nIMPORTANT: After your response, please explain your reasoning. "
    'Start the explanation on a new line with "REASON: ".'
)

# Optional line start, optional markdown emphasis, REASON, optional emphasis
# close, colon or whitespace, then everything to the end of the text.
_REASON_PATTERN = re.compile(
    r"(?:^|\n)[ \t]*(?:\*{1,2}|_{1,2})?REASON(?:\*{1,2}|_{1,2})?(?::(?:\*{1,2}|_{1,2})?|\s)\s*([\s\S]*)\Z",
    re.IGNORECASE,
)


def split_reasoning(text: Optional[str]) -> Tuple[str, str]:
    """
    Split a raw model answer into (clean_text, reasoning).

    Reasoning is empty when the model did not emit a REASON line.
    """
    if not text:
        return "", ""
    match = _REASON_PATTERN.search(text)
    if not match:
        return text.strip(), ""
    return text[:match.start()].strip(), match.group(1).strip()


def _result_field(result: Any, name: str) -> Any:
    if isinstance(result, Mapping):
        return result.get(name)
    return getattr(result, name, None)


def _replace_text(result: Any, clean_text: str) -> Any:
    """Return the result with its text swapped for the clean version."""
    if isinstance(result, MutableMapping):
        result["text"] = clean_text
        return result
    try:
        setattr(result, "text", clean_text)
        return result
    except (AttributeError, TypeError, ValueError):
        # Frozen dataclasses and frozen pydantic models
        if dataclasses.is_dataclass(result):
            return dataclasses.replace(result, text=clean_text)
        model_copy = getattr(result, "model_copy", None)
        if model_copy is None:
            raise
        return model_copy(update={"text": clean_text})


def _annotate_exception(span: Span, exc: BaseException) -> None:
    span.record_exception(exc)
    span.set_attribute(ERROR_TYPE_ATTR, exc.__class__.__name__)
    span.set_status(Status(StatusCode.ERROR, str(exc)))


class InstrumentedClient:
    """
    Wrapper exposing the same surface as the wrapped client.

    Only ``method`` is intercepted; every other attribute is looked up on
    the underlying client unchanged. Coroutine and plain methods are both
    supported. Arguments are expected as keywords (``message=...``).
    """

    def __init__(
        self,
        client: Any,
        system: str = "cohere",
        method: str = "chat",
        message_param: str = "message",
        tracer_provider: Optional[TracerProvider] = None,
    ) -> None:
        target = getattr(client, method)
        self._client = client
        self._system = system
        self._method = method
        self._message_param = message_param
        self._span_name = f"{system}.{method}"
        self._tracer = trace.get_tracer(TRACER_NAME, tracer_provider=tracer_provider)
        self._wrapped = self._call_async if inspect.iscoroutinefunction(target) else self._call_sync

    def __getattr__(self, name: str) -> Any:
        state = self.__dict__
        if "_client" not in state:
            raise AttributeError(name)
        if name == state["_method"]:
            return state["_wrapped"]
        return getattr(state["_client"], name)

    def __repr__(self) -> str:
        return f"InstrumentedClient({self._client!r}, method={self._method!r})"

    @property
    def wrapped_client(self) -> Any:
        return self._client

    # --- Call path ---

    def _request_attributes(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        original = params.get(self._message_param)
        attributes = {
            GEN_AI_SYSTEM: self._system,
            GEN_AI_REQUEST_MODEL: params.get("model"),
            GEN_AI_REQUEST_MESSAGE: original if original is None or isinstance(original, str) else str(original),
            GEN_AI_REQUEST_TEMPERATURE: params.get("temperature"),
        }
        return {k: v for k, v in attributes.items() if v is not None}

    def _inject(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Copy of the call kwargs with the reasoning directive appended."""
        outgoing = dict(params)
        message = outgoing.get(self._message_param)
        if isinstance(message, str):
            outgoing[self._message_param] = message + REASONING_DIRECTIVE
        return outgoing

    def _finish(self, span: Span, result: Any) -> Any:
        text = _result_field(result, "text") or ""
        clean_text, reasoning = split_reasoning(text)

        span.set_attribute(GEN_AI_RESPONSE_TEXT, clean_text)
        if reasoning:
            span.set_attribute(GEN_AI_RESPONSE_REASONING, reasoning)
        finish_reason = _result_field(result, "finish_reason")
        if finish_reason is not None:
            span.set_attribute(GEN_AI_RESPONSE_FINISH_REASON, str(finish_reason))
        span.set_status(Status(StatusCode.OK))

        if text:
            result = _replace_text(result, clean_text)
        return result

    def _start_span(self, kwargs: Mapping[str, Any]):
        return self._tracer.start_as_current_span(
            self._span_name,
            kind=SpanKind.CLIENT,
            attributes=self._request_attributes(kwargs),
            record_exception=False,
            set_status_on_exception=False,
        )

    async def _call_async(self, *args: Any, **kwargs: Any) -> Any:
        with self._start_span(kwargs) as span:
            outgoing = self._inject(kwargs)
            try:
                result = await getattr(self._client, self._method)(*args, **outgoing)
            except Exception as exc:
                _annotate_exception(span, exc)
                logger.debug(f"{self._span_name} failed: {exc}")
                raise
            return self._finish(span, result)

    def _call_sync(self, *args: Any, **kwargs: Any) -> Any:
        with self._start_span(kwargs) as span:
            outgoing = self._inject(kwargs)
            try:
                result = getattr(self._client, self._method)(*args, **outgoing)
            except Exception as exc:
                _annotate_exception(span, exc)
                logger.debug(f"{self._span_name} failed: {exc}")
                raise
            return self._finish(span, result)


def instrument_client(
    client: Any,
    system: str = "cohere",
    method: str = "chat",
    message_param: str = "message",
    tracer_provider: Optional[TracerProvider] = None,
) -> InstrumentedClient:
    """
    Wrap a language-model client so its chat call is traced and reasoning-stripped.

    Args:
        client: Any object with a single-message chat method.
        system: Value for gen_ai.system and the span name prefix.
        method: Name of the method to intercept.
        message_param: Keyword argument holding the prompt text.
        tracer_provider: Provider to trace with (defaults to the global one).
    """
    return InstrumentedClient(
        client,
        system=system,
        method=method,
        message_param=message_param,
        tracer_provider=tracer_provider,
    )


def instrument_cohere(client: Any, tracer_provider: Optional[TracerProvider] = None) -> InstrumentedClient:
    """Shortcut for a Cohere client (``client.chat(message=..., model=...)``)."""
    return instrument_client(client, system="cohere", tracer_provider=tracer_provider)
