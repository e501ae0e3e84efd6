"""
CollectorQuery API: read and delete sessions stored by the collector.

Usage:
    from xray.tracing import CollectorQuery

    query = CollectorQuery()                       # XRAY_COLLECTOR_URL

    # Newest first
    sessions = await query.list_sessions()

    # Full session body, or None if the collector does not know the id
    session = await query.get_session(sessions[0].session_id)

    await query.delete_session(session["sessionId"])
"""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from xray.config import COLLECTOR_URL, get_settings
from xray.utils.logger import get_logger

logger = get_logger(__name__)


class SessionSummary(BaseModel):
    """One row of GET /sessions."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    name: str
    started_at: str = Field(alias="startedAt")
    ended_at: Optional[str] = Field(default=None, alias="endedAt")
    status: str = "running"
    step_count: int = Field(default=0, alias="stepCount")
    duration_ms: Optional[float] = Field(default=None, alias="durationMs")


class CollectorQuery:
    """
    Async client for the collector's read/delete endpoints.

    Network failures, non-2xx responses and unreadable bodies are logged;
    each method then returns its empty value (``[]``, ``None`` or ``False``).
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self.base_url = (base_url or COLLECTOR_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else get_settings().export_timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def _request(self, method: str, path: str) -> Optional[httpx.Response]:
        try:
            async with self._client() as client:
                return await client.request(method, path)
        except httpx.HTTPError as e:
            logger.error(f"Collector request failed: {method} {path}: {e}")
            return None

    async def list_sessions(self) -> List[SessionSummary]:
        """All session summaries, newest first."""
        response = await self._request("GET", "/sessions")
        if response is None or not response.is_success:
            return []
        try:
            summaries = [SessionSummary.model_validate(row) for row in response.json()]
        except (ValueError, TypeError, ValidationError) as e:
            logger.error(f"Unreadable session list from collector: {e}")
            return []
        summaries.sort(key=lambda s: s.started_at, reverse=True)
        return summaries

    async def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Full session body, or None when unknown (404) or unreachable."""
        response = await self._request("GET", f"/sessions/{session_id}")
        if response is None:
            return None
        if response.status_code == 404:
            logger.debug(f"Session not found: {session_id}")
            return None
        if not response.is_success:
            logger.error(f"Failed to get session {session_id}: HTTP {response.status_code}")
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"Unreadable session body for {session_id}: {e}")
            return None

    async def delete_session(self, session_id: str) -> bool:
        response = await self._request("DELETE", f"/sessions/{session_id}")
        if response is None or not response.is_success:
            return False
        logger.info(f"Session deleted: {session_id}")
        return True

    async def delete_all_sessions(self) -> bool:
        response = await self._request("DELETE", "/sessions")
        if response is None or not response.is_success:
            return False
        logger.info("All sessions deleted")
        return True

    async def health(self) -> bool:
        """True when the collector answers GET /health with status ok."""
        response = await self._request("GET", "/health")
        if response is None or not response.is_success:
            return False
        try:
            body = response.json()
        except ValueError as e:
            logger.error(f"Unreadable health response: {e}")
            return False
        return isinstance(body, dict) and body.get("status") == "ok"
