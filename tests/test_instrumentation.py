"""
Tests for xray/tracing/instrumentation.py: the reasoning-stripping client wrapper.
"""

from dataclasses import dataclass

import pytest
from opentelemetry.trace import SpanKind, StatusCode
from pydantic import BaseModel, ConfigDict

from xray.tracing.instrumentation import (
    GEN_AI_REQUEST_MESSAGE,
    GEN_AI_REQUEST_MODEL,
    GEN_AI_REQUEST_TEMPERATURE,
    GEN_AI_RESPONSE_FINISH_REASON,
    GEN_AI_RESPONSE_REASONING,
    GEN_AI_RESPONSE_TEXT,
    GEN_AI_SYSTEM,
    REASONING_DIRECTIVE,
    InstrumentedClient,
    instrument_client,
    instrument_cohere,
    split_reasoning,
)


# ============================================================================
# Helpers
# ============================================================================

class FakeResponse:
    def __init__(self, text, finish_reason="COMPLETE"):
        self.text = text
        self.finish_reason = finish_reason


@dataclass(frozen=True)
class FrozenResponse:
    text: str


class PydanticResponse(BaseModel):
    model_config = ConfigDict(frozen=True)
    text: str
    finish_reason: str = "COMPLETE"


class FakeAsyncClient:
    """Stands in for cohere.AsyncClient."""

    def __init__(self, reply="Hello there\nREASON: Testing", error=None, response_type=FakeResponse):
        self.reply = reply
        self.error = error
        self.response_type = response_type
        self.calls = []
        self.api_key = "test-key"

    async def chat(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response_type(text=self.reply)

    async def embed(self, texts):
        return [len(t) for t in texts]


class FakeSyncClient:
    """Stands in for cohere.Client."""

    def __init__(self, reply="Hello there\nREASON: Testing"):
        self.reply = reply
        self.calls = []

    def chat(self, **kwargs):
        self.calls.append(kwargs)
        return {"text": self.reply, "finish_reason": "COMPLETE"}


# ============================================================================
# TestSplitReasoning
# ============================================================================

class TestSplitReasoning:
    def test_basic(self):
        assert split_reasoning("Hello there\nREASON: Testing") == ("Hello there", "Testing")

    def test_no_reason(self):
        assert split_reasoning("Just an answer.") == ("Just an answer.", "")

    @pytest.mark.parametrize("text", [None, ""])
    def test_empty(self, text):
        assert split_reasoning(text) == ("", "")

    def test_multiline_reasoning(self):
        clean, reasoning = split_reasoning("YES\n\nREASON: same category\nsame price band")
        assert clean == "YES"
        assert reasoning == "same category\nsame price band"

    @pytest.mark.parametrize("text", [
        "Answer\n**REASON:** because",
        "Answer\nReason: because",
        "Answer\n  REASON: because",
        "Answer\n**Reason**: because",
    ])
    def test_marker_variants(self, text):
        assert split_reasoning(text) == ("Answer", "because")

    def test_reason_only(self):
        assert split_reasoning("REASON: only reasoning") == ("", "only reasoning")

    def test_reason_mid_line_not_split(self):
        text = "The REASON: field is optional"
        assert split_reasoning(text) == (text, "")


# ============================================================================
# TestInstrumentedClientAsync
# ============================================================================

class TestInstrumentedClientAsync:
    @pytest.mark.asyncio
    async def test_round_trip(self, tracer_provider, span_exporter):
        client = FakeAsyncClient()
        co = instrument_client(client, tracer_provider=tracer_provider)

        result = await co.chat(model="command-r7b-12-2024", message="Say hello", temperature=0.3)

        assert result.text == "Hello there"
        assert REASONING_DIRECTIVE not in result.text
        assert client.calls[0]["message"] == "Say hello" + REASONING_DIRECTIVE
        assert client.calls[0]["model"] == "command-r7b-12-2024"

        [span] = span_exporter.get_finished_spans()
        assert span.name == "cohere.chat"
        assert span.kind == SpanKind.CLIENT
        assert span.status.status_code == StatusCode.OK
        assert span.attributes[GEN_AI_SYSTEM] == "cohere"
        assert span.attributes[GEN_AI_REQUEST_MODEL] == "command-r7b-12-2024"
        assert span.attributes[GEN_AI_REQUEST_MESSAGE] == "Say hello"
        assert span.attributes[GEN_AI_REQUEST_TEMPERATURE] == 0.3
        assert span.attributes[GEN_AI_RESPONSE_TEXT] == "Hello there"
        assert span.attributes[GEN_AI_RESPONSE_REASONING] == "Testing"
        assert span.attributes[GEN_AI_RESPONSE_FINISH_REASON] == "COMPLETE"

    @pytest.mark.asyncio
    async def test_caller_kwargs_not_mutated(self, tracer_provider):
        client = FakeAsyncClient()
        co = instrument_client(client, tracer_provider=tracer_provider)
        params = {"model": "m", "message": "Hi"}
        await co.chat(**params)
        assert params["message"] == "Hi"

    @pytest.mark.asyncio
    async def test_no_reason_line(self, tracer_provider, span_exporter):
        client = FakeAsyncClient(reply="AGENT: calendar\nCONFIDENCE: 0.9")
        co = instrument_client(client, tracer_provider=tracer_provider)
        result = await co.chat(message="route this")
        assert result.text == "AGENT: calendar\nCONFIDENCE: 0.9"
        [span] = span_exporter.get_finished_spans()
        assert GEN_AI_RESPONSE_REASONING not in span.attributes
        assert GEN_AI_REQUEST_MODEL not in span.attributes

    @pytest.mark.asyncio
    async def test_error_recorded_and_reraised(self, tracer_provider, span_exporter):
        error = ConnectionError("upstream down")
        co = instrument_client(FakeAsyncClient(error=error), tracer_provider=tracer_provider)

        with pytest.raises(ConnectionError) as exc_info:
            await co.chat(model="m", message="Hi")

        assert exc_info.value is error
        [span] = span_exporter.get_finished_spans()
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == "upstream down"
        assert span.attributes["error.type"] == "ConnectionError"
        assert any(e.name == "exception" for e in span.events)
        assert GEN_AI_RESPONSE_TEXT not in span.attributes

    @pytest.mark.asyncio
    async def test_other_methods_delegate(self, tracer_provider, span_exporter):
        client = FakeAsyncClient()
        co = instrument_client(client, tracer_provider=tracer_provider)
        assert co.api_key == "test-key"
        assert await co.embed(["ab", "abc"]) == [2, 3]
        assert co.wrapped_client is client
        assert span_exporter.get_finished_spans() == ()

    @pytest.mark.asyncio
    async def test_frozen_dataclass_result(self, tracer_provider):
        co = instrument_client(FakeAsyncClient(response_type=FrozenResponse), tracer_provider=tracer_provider)
        result = await co.chat(message="Hi")
        assert isinstance(result, FrozenResponse)
        assert result.text == "Hello there"

    @pytest.mark.asyncio
    async def test_frozen_pydantic_result(self, tracer_provider):
        co = instrument_client(FakeAsyncClient(response_type=PydanticResponse), tracer_provider=tracer_provider)
        result = await co.chat(message="Hi")
        assert isinstance(result, PydanticResponse)
        assert result.text == "Hello there"
        assert result.finish_reason == "COMPLETE"

    @pytest.mark.asyncio
    async def test_instrument_cohere(self, tracer_provider, span_exporter):
        co = instrument_cohere(FakeAsyncClient(), tracer_provider=tracer_provider)
        assert isinstance(co, InstrumentedClient)
        await co.chat(message="Hi")
        assert span_exporter.get_finished_spans()[0].attributes[GEN_AI_SYSTEM] == "cohere"


# ============================================================================
# TestInstrumentedClientSync
# ============================================================================

class TestInstrumentedClientSync:
    def test_sync_client_mapping_result(self, tracer_provider, span_exporter):
        client = FakeSyncClient()
        co = instrument_client(client, system="local", tracer_provider=tracer_provider)

        result = co.chat(model="m", message="Hi")

        assert result["text"] == "Hello there"
        assert client.calls[0]["message"].endswith(REASONING_DIRECTIVE)
        [span] = span_exporter.get_finished_spans()
        assert span.name == "local.chat"
        assert span.attributes[GEN_AI_RESPONSE_REASONING] == "Testing"

    def test_custom_method_and_param(self, tracer_provider, span_exporter):
        class Completer:
            def __init__(self):
                self.prompts = []

            def complete(self, prompt):
                self.prompts.append(prompt)
                return {"text": "42\nREASON: arithmetic"}

        completer = Completer()
        co = instrument_client(
            completer, system="local", method="complete", message_param="prompt",
            tracer_provider=tracer_provider,
        )
        assert co.complete(prompt="6 * 7?") == {"text": "42"}
        assert completer.prompts[0] == "6 * 7?" + REASONING_DIRECTIVE
        [span] = span_exporter.get_finished_spans()
        assert span.name == "local.complete"
        assert span.attributes[GEN_AI_REQUEST_MESSAGE] == "6 * 7?"
