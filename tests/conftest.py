"""
Shared fixtures for the X-Ray test suite.
"""

from unittest.mock import patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from xray.tracing.context import SessionContext


@pytest.fixture(autouse=True)
def traces_dir(tmp_path):
    """Keep session and summary files out of the working directory."""
    directory = tmp_path / "xray_traces"
    with patch("xray.tracing.exporter.TRACES_DIR", directory), \
            patch("xray.tracing.summary.TRACES_DIR", directory):
        yield directory


@pytest.fixture
def context():
    return SessionContext(enabled=True)


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter):
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider
    provider.shutdown()
