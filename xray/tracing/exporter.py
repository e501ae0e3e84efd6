"""
Session persistence: writes sessions to files and ships them to the collector.

Three write paths:
1. write_session_file: Full session JSON to {traces_dir}/{session_id}.json
2. export_session: POST {collector}/sessions with the full session (awaited at end of run)
3. submit_observation: POST {collector}/observations with one step (fire-and-forget)

Export failures are logged and dropped. Nothing here raises into the pipeline.
"""

import json
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from xray.config import COLLECTOR_URL, TRACES_DIR, get_settings
from xray.tracing.context import Session, SessionContext, Step
from xray.tracing.errors import ExportError
from xray.utils.logger import get_logger

logger = get_logger(__name__)


def write_session_file(session: Session, directory: Optional[Path] = None) -> Path:
    """
    Write full session JSON to {traces_dir}/{session_id}.json.

    Args:
        session: The (usually ended) Session
        directory: Override for the traces directory

    Returns:
        Path to the written file
    """
    traces_dir = Path(directory) if directory is not None else TRACES_DIR
    traces_dir.mkdir(parents=True, exist_ok=True)

    file_path = traces_dir / f"{session.session_id}.json"
    with open(file_path, "w") as f:
        json.dump(session.to_dict(), f, indent=2, default=str)

    logger.info(f"Session file written: {file_path}")
    return file_path


def _json_safe(payload: Dict[str, Any]) -> Any:
    # Attribute values and caller data may hold non-JSON types (tuples, datetimes)
    return json.loads(json.dumps(payload, default=str))


class CollectorExporter:
    """
    HTTP client for the collector's write endpoints.

    Usage:
        exporter = CollectorExporter()                      # XRAY_COLLECTOR_URL
        exporter = CollectorExporter("http://collector:3001/api", timeout=5)

        await exporter.export_session(session)              # end of run
        exporter.submit_observation(session, step)          # per step, non-blocking
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[Any] = None,
        max_workers: int = 4,
    ) -> None:
        self.base_url = (base_url or COLLECTOR_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else get_settings().export_timeout
        self._transport = transport
        self._executor: Optional[ThreadPoolExecutor] = None
        self._max_workers = max_workers

    @property
    def sessions_url(self) -> str:
        return f"{self.base_url}/sessions"

    @property
    def observations_url(self) -> str:
        return f"{self.base_url}/observations"

    # --- HTTP ---

    def _check(self, url: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        raise ExportError(url, response.text[:200] or response.reason_phrase, status_code=response.status_code)

    def _post(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, json=_json_safe(payload))
        except httpx.HTTPError as e:
            raise ExportError(url, str(e)) from e
        self._check(url, response)

    async def _apost(self, url: str, payload: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=_json_safe(payload))
        except httpx.HTTPError as e:
            raise ExportError(url, str(e)) from e
        self._check(url, response)

    # --- Public export calls ---

    async def export_session(self, session: Session) -> bool:
        """
        POST the full session to the collector.

        Returns True on a 2xx response. Failures are logged, never raised.
        """
        try:
            await self._apost(self.sessions_url, session.to_dict())
        except ExportError as e:
            logger.error(f"Failed to export session {session.session_id}: {e}")
            return False
        logger.info(f"Session exported: {session.session_id} ({len(session.steps)} steps)")
        return True

    def send_observation(self, session: Session, step: Step) -> bool:
        """
        POST one step to the collector as {sessionId, sessionName, step}.

        Blocking; use submit_observation() from hot paths.
        """
        payload = {
            "sessionId": session.session_id,
            "sessionName": session.name,
            "step": step.to_dict(),
        }
        try:
            self._post(self.observations_url, payload)
        except ExportError as e:
            logger.error(f"Failed to send observation for step {step.name}: {e}")
            return False
        logger.debug(f"Observation sent: {step.name} ({session.session_id})")
        return True

    def submit_observation(self, session: Session, step: Step) -> "Future[bool]":
        """Dispatch send_observation() on a worker thread and return immediately."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="xray-export",
            )
        return self._executor.submit(self.send_observation, session, step)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the worker pool, optionally waiting for in-flight observations."""
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None


async def export_current_session(context: SessionContext, exporter: CollectorExporter) -> bool:
    """Export whatever session is current. No current session is a logged no-op."""
    session = context.current()
    if session is None:
        logger.warning("No session to export")
        return False
    return await exporter.export_session(session)
