"""
Tests for xray/tracing/exporter.py: session file + collector HTTP export.

HTTP is exercised with httpx.MockTransport; no collector needs to run.
"""

import json

import httpx
import pytest

from xray.tracing.context import Session
from xray.tracing.errors import ExportError
from xray.tracing.exporter import (
    CollectorExporter,
    export_current_session,
    write_session_file,
)


BASE_URL = "http://collector.test/api"


# ============================================================================
# Helpers
# ============================================================================

class Recorder:
    """MockTransport handler that records requests and replies with a fixed status."""

    def __init__(self, status_code=201, error=None):
        self.status_code = status_code
        self.error = error
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"message": "Saved"})

    def body(self, index=0):
        return json.loads(self.requests[index].content)


def _make_exporter(recorder):
    return CollectorExporter(BASE_URL, timeout=2, transport=httpx.MockTransport(recorder))


def _make_session():
    session = Session(name="competitor-selection", metadata={"reference": "B0XYZ"})
    step = session.start_step("filter_candidates", "filter")
    step.add_observation(id="asin_1", type="candidate", label="Bottle", result="pass", score=0.9)
    step.end()
    session.end("completed")
    return session


# ============================================================================
# TestWriteSessionFile
# ============================================================================

class TestWriteSessionFile:
    def test_writes_json(self, tmp_path):
        session = _make_session()
        path = write_session_file(session, tmp_path)
        assert path == tmp_path / f"{session.session_id}.json"
        data = json.loads(path.read_text())
        assert data["sessionId"] == session.session_id
        assert data["status"] == "completed"
        assert data["steps"][0]["observations"][0]["id"] == "asin_1"

    def test_default_directory(self, traces_dir):
        session = _make_session()
        path = write_session_file(session)
        assert path.parent == traces_dir
        assert path.exists()

    def test_non_json_values_stringified(self, tmp_path):
        session = Session(name="run", metadata={"path": tmp_path})
        data = json.loads(write_session_file(session, tmp_path).read_text())
        assert data["metadata"]["path"] == str(tmp_path)


# ============================================================================
# TestExportSession
# ============================================================================

class TestExportSession:
    @pytest.mark.asyncio
    async def test_posts_full_session(self):
        recorder = Recorder()
        session = _make_session()

        assert await _make_exporter(recorder).export_session(session) is True

        [request] = recorder.requests
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/sessions"
        assert recorder.body() == json.loads(json.dumps(session.to_dict()))

    @pytest.mark.asyncio
    async def test_export_after_double_end_has_one_status(self):
        recorder = Recorder()
        session = _make_session()
        session.end("failed")
        await _make_exporter(recorder).export_session(session)
        body = recorder.body()
        assert body["status"] == "completed"
        assert body["endedAt"] == session.ended_at

    @pytest.mark.asyncio
    async def test_http_error_logged_not_raised(self):
        recorder = Recorder(status_code=400)
        assert await _make_exporter(recorder).export_session(_make_session()) is False

    @pytest.mark.asyncio
    async def test_network_error_logged_not_raised(self):
        recorder = Recorder(error=httpx.ConnectError("connection refused"))
        assert await _make_exporter(recorder).export_session(_make_session()) is False

    def test_base_url_trailing_slash(self):
        exporter = CollectorExporter(BASE_URL + "/")
        assert exporter.sessions_url == f"{BASE_URL}/sessions"
        assert exporter.observations_url == f"{BASE_URL}/observations"

    def test_defaults_from_settings(self):
        exporter = CollectorExporter()
        assert exporter.base_url == "http://localhost:3001/api"
        assert exporter.timeout == 10.0


# ============================================================================
# TestObservations
# ============================================================================

class TestObservations:
    def test_send_observation_payload(self):
        recorder = Recorder()
        session = _make_session()
        step = session.steps[0]

        assert _make_exporter(recorder).send_observation(session, step) is True

        [request] = recorder.requests
        assert str(request.url) == f"{BASE_URL}/observations"
        body = recorder.body()
        assert body["sessionId"] == session.session_id
        assert body["sessionName"] == "competitor-selection"
        assert body["step"]["stepId"] == step.step_id

    def test_send_observation_failure(self):
        recorder = Recorder(status_code=500)
        session = _make_session()
        assert _make_exporter(recorder).send_observation(session, session.steps[0]) is False

    def test_submit_observation_runs_in_background(self):
        recorder = Recorder()
        exporter = _make_exporter(recorder)
        session = _make_session()

        future = exporter.submit_observation(session, session.steps[0])

        assert future.result(timeout=5) is True
        assert len(recorder.requests) == 1
        exporter.shutdown()

    def test_submit_observation_failure_resolves_false(self):
        recorder = Recorder(error=httpx.ConnectError("connection refused"))
        exporter = _make_exporter(recorder)
        session = _make_session()
        assert exporter.submit_observation(session, session.steps[0]).result(timeout=5) is False
        exporter.shutdown()


# ============================================================================
# TestExportCurrentSession
# ============================================================================

class TestExportCurrentSession:
    @pytest.mark.asyncio
    async def test_no_session(self, context):
        recorder = Recorder()
        assert await export_current_session(context, _make_exporter(recorder)) is False
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_exports_current(self, context):
        recorder = Recorder()
        session = context.start_session("run")
        assert await export_current_session(context, _make_exporter(recorder)) is True
        assert recorder.body()["sessionId"] == session.session_id


# ============================================================================
# TestExportError
# ============================================================================

class TestExportError:
    def test_message_and_fields(self):
        err = ExportError("http://c/api/sessions", "Bad Request", status_code=400)
        assert err.status_code == 400
        assert err.endpoint == "http://c/api/sessions"
        assert "Bad Request" in str(err)
