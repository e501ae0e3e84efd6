"""
Session context and data model for pipeline decision telemetry.

Usage:
    from xray.tracing import SessionContext

    # Start a session at the beginning of a pipeline run
    context = SessionContext()
    session = context.start_session("competitor-selection", {"reference": "B0XYZ"})

    # Inside any component, open a step on the same context:
    step = context.start_step("filter_candidates", "filter")
    step.set_input({"candidates": 12})
    step.add_observation(
        id="asin_123",
        type="candidate",
        label="Steel bottle 32oz",
        result="pass",
        reason="price within range",
        score=0.92,
    )
    step.add_metric("passed", 7)
    step.log_decision("Kept 7 of 12 candidates")
    step.end()

    # End the session and persist it
    context.end_session("completed")
    result = await finish_session(context, exporter=CollectorExporter())

Each recording call is a single atomic mutation guarded by the session lock.
Calls never compose into a larger atomic unit.
"""

import threading
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence, Union

from xray.config import get_settings
from xray.tracing.errors import NoActiveSessionError
from xray.utils.logger import get_logger

if TYPE_CHECKING:
    from xray.tracing.exporter import CollectorExporter

logger = get_logger(__name__)

TERMINAL_STATUSES = ("completed", "failed")
EVENT_TYPES = ("info", "warning", "error", "decision")


def _now_ns() -> int:
    return time.time_ns()


def _ns_to_iso(ns: int) -> str:
    return datetime.fromtimestamp(ns / 1e9, tz=timezone.utc).isoformat()


def _iso_to_ms(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    return datetime.fromisoformat(value).timestamp() * 1000.0


@dataclass
class Observation:
    """Something a step examined or decided. Children form a tree."""
    id: str
    type: str
    label: str
    data: Any = field(default_factory=dict)
    result: Optional[str] = None    # pass|fail|selected|...
    reason: Optional[str] = None
    score: Optional[float] = None
    children: Optional[List["Observation"]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Observation":
        children = data.get("children")
        return cls(
            id=data["id"],
            type=data["type"],
            label=data["label"],
            data=data.get("data") if data.get("data") is not None else {},
            result=data.get("result"),
            reason=data.get("reason"),
            score=data.get("score"),
            children=[_as_observation(c) for c in children] if children is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "data": self.data,
            "result": self.result,
            "reason": self.reason,
            "score": self.score,
            "children": [c.to_dict() for c in self.children] if self.children is not None else None,
        }


def _as_observation(value: Union[Observation, Mapping[str, Any]]) -> Observation:
    if isinstance(value, Observation):
        return value
    return Observation.from_dict(value)


@dataclass
class Event:
    """A timestamped note attached to a step."""
    type: str               # info|warning|error|decision
    message: str
    data: Any = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "type": self.type,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class Step:
    """
    One traced unit of pipeline work.

    Created by Session.start_step() or by the span projector, mutated by
    recording calls, ended exactly once.
    """
    session_id: str
    name: str
    type: str = "custom"
    step_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    duration_ms: Optional[float] = None
    input: Any = field(default_factory=dict)
    output: Any = field(default_factory=dict)
    reasoning: Optional[str] = None
    observations: List[Observation] = field(default_factory=list)
    events: List[Event] = field(default_factory=list)
    metrics: Dict[str, float] = field(default_factory=dict)

    # Internal (not serialized)
    _start_ns: int = field(default=0, repr=False)
    _lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self._start_ns:
            self._start_ns = _now_ns()
        if self.started_at is None:
            self.started_at = _ns_to_iso(self._start_ns)

    # --- Recording Methods ---

    def end(self, end_ns: Optional[int] = None) -> bool:
        """
        Freeze the step's end time and duration.

        Args:
            end_ns: Wall-clock end in epoch nanoseconds (defaults to now).

        Returns False (and changes nothing) if the step already ended.
        """
        with self._lock:
            if self.ended_at is not None:
                logger.warning(f"end() called twice for step: {self.name}")
                return False
            end_ns = _now_ns() if end_ns is None else end_ns
            self.ended_at = _ns_to_iso(end_ns)
            self.duration_ms = (end_ns - self._start_ns) / 1_000_000
            return True

    @property
    def is_ended(self) -> bool:
        return self.ended_at is not None

    def set_input(self, value: Any) -> None:
        with self._lock:
            self.input = value

    def set_output(self, value: Any) -> None:
        with self._lock:
            self.output = value

    def set_reasoning(self, reasoning: str) -> None:
        """Record why the step did what it did."""
        with self._lock:
            self.reasoning = reasoning

    def add_observation(
        self,
        id: str,
        type: str,
        label: str,
        data: Any = None,
        result: Optional[str] = None,
        reason: Optional[str] = None,
        score: Optional[float] = None,
        children: Optional[Sequence[Union[Observation, Mapping[str, Any]]]] = None,
    ) -> Observation:
        """
        Append an observation. Identifiers are not deduplicated: two calls with
        the same id produce two entries.
        """
        observation = Observation(
            id=id,
            type=type,
            label=label,
            data=data if data is not None else {},
            result=result,
            reason=reason,
            score=float(score) if score is not None else None,
            children=[_as_observation(c) for c in children] if children is not None else None,
        )
        with self._lock:
            self.observations.append(observation)
        return observation

    def add_event(self, type: str, message: str, data: Any = None) -> Event:
        """Append a timestamped event. Type must be one of EVENT_TYPES."""
        if type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type '{type}' (expected one of {', '.join(EVENT_TYPES)})")
        event = Event(type=type, message=message, data=data)
        with self._lock:
            self.events.append(event)
        return event

    def log_info(self, message: str, data: Any = None) -> Event:
        return self.add_event("info", message, data)

    def log_warning(self, message: str, data: Any = None) -> Event:
        return self.add_event("warning", message, data)

    def log_error(self, message: str, data: Any = None) -> Event:
        return self.add_event("error", message, data)

    def log_decision(self, message: str, data: Any = None) -> Event:
        return self.add_event("decision", message, data)

    def add_metric(self, name: str, value: float) -> None:
        """Set a numeric metric (last write wins)."""
        with self._lock:
            self.metrics[name] = float(value)

    # --- Serialization ---

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "stepId": self.step_id,
                "sessionId": self.session_id,
                "name": self.name,
                "type": self.type,
                "startedAt": self.started_at,
                "endedAt": self.ended_at,
                "durationMs": self.duration_ms,
                "input": self.input,
                "output": self.output,
                "reasoning": self.reasoning,
                "observations": [o.to_dict() for o in self.observations],
                "events": [e.to_dict() for e in self.events],
                "metrics": dict(self.metrics),
            }


@dataclass
class Session:
    """
    One telemetry run grouping every step of a pipeline execution.

    Created by SessionContext.start_session(), populated during the run,
    persisted by finish_session().
    """
    name: str
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    ended_at: Optional[str] = None
    status: str = "running"  # running|completed|failed
    metadata: Dict[str, Any] = field(default_factory=dict)
    steps: List[Step] = field(default_factory=list)

    # Internal (not serialized)
    _lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)

    def start_step(self, name: str, type: str = "custom") -> Step:
        """Create a step owned by this session and append it in creation order."""
        step = Step(session_id=self.session_id, name=name, type=type, _lock=self._lock)
        self.add_step(step)
        return step

    def add_step(self, step: Step) -> None:
        """Append an externally built step (used by the span projector)."""
        with self._lock:
            step.session_id = self.session_id
            step._lock = self._lock
            self.steps.append(step)

    def end(self, status: str = "completed") -> bool:
        """
        Mark the session as ended. Only the first call has any effect.

        Returns True if this call ended the session.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Invalid terminal status '{status}' (expected completed or failed)")
        with self._lock:
            if self.ended_at is not None:
                logger.warning(f"Session already ended: {self.name} ({self.status})")
                return False
            self.ended_at = datetime.now(timezone.utc).isoformat()
            self.status = status
        logger.info(f"Session ended: {self.name} ({status})")
        return True

    @property
    def duration_ms(self) -> Optional[float]:
        start = _iso_to_ms(self.started_at)
        end = _iso_to_ms(self.ended_at)
        if start is None or end is None:
            return None
        return end - start

    # --- Serialization ---

    def to_dict(self) -> Dict[str, Any]:
        """Serialize in the collector's wire shape."""
        with self._lock:
            return {
                "sessionId": self.session_id,
                "name": self.name,
                "startedAt": self.started_at,
                "endedAt": self.ended_at,
                "status": self.status,
                "metadata": self.metadata,
                "steps": [s.to_dict() for s in self.steps],
            }


class SessionContext:
    """
    Single-slot holder for the current session.

    Construct one per pipeline and pass it to whatever needs it (the span
    projector included). Only one session is current at a time; starting a
    new one replaces the previous reference. One writer is expected to own
    the session lifecycle.
    """

    def __init__(self, enabled: Optional[bool] = None) -> None:
        self.enabled = get_settings().enabled if enabled is None else enabled
        self._session: Optional[Session] = None
        self._lock = threading.Lock()

    def start_session(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> Session:
        """
        Start a new session and make it current.

        If the context is disabled, returns a _NoOpSession that silently
        ignores all recording calls.
        """
        if not self.enabled:
            session: Session = _NoOpSession()
            self.set(session)
            return session

        session = Session(name=name, metadata=dict(metadata or {}))
        with self._lock:
            previous = self._session
            self._session = session
        if previous is not None and previous.status == "running":
            logger.warning(f"Replacing running session: {previous.name} ({previous.session_id})")
        logger.info(f"Session started: {name} ({session.session_id})")
        return session

    def current(self) -> Optional[Session]:
        """Return the current session, or None."""
        return self._session

    def set(self, session: Optional[Session]) -> None:
        with self._lock:
            self._session = session

    def clear(self) -> None:
        self.set(None)

    def end_session(self, status: str = "completed") -> bool:
        """End the current session. No current session is a logged no-op."""
        session = self._session
        if session is None:
            logger.warning("No session to end")
            return False
        return session.end(status)

    def start_step(self, name: str, type: str = "custom") -> Step:
        """
        Start a step on the current session.

        Raises:
            NoActiveSessionError: If no session is current.
        """
        session = self._session
        if session is None:
            raise NoActiveSessionError()
        return session.start_step(name, type)


class _NoOpStep(Step):
    """Step that does nothing. Handed out when tracing is disabled."""

    def __init__(self, name: str = "noop", type: str = "custom") -> None:
        super().__init__(session_id="noop", name=name, type=type)

    def end(self, end_ns: Optional[int] = None) -> bool:
        return False

    def set_input(self, value: Any) -> None:
        pass

    def set_output(self, value: Any) -> None:
        pass

    def set_reasoning(self, reasoning: str) -> None:
        pass

    def add_observation(self, id: str, type: str, label: str, data: Any = None,
                        result: Optional[str] = None, reason: Optional[str] = None,
                        score: Optional[float] = None, children=None) -> Observation:
        return Observation(id=id, type=type, label=label)

    def add_event(self, type: str, message: str, data: Any = None) -> Event:
        return Event(type=type, message=message, data=data)

    def add_metric(self, name: str, value: float) -> None:
        pass


class _NoOpSession(Session):
    """Session that does nothing. Used when tracing is disabled."""

    def __init__(self) -> None:
        super().__init__(name="noop", session_id="noop", status="disabled")

    def start_step(self, name: str, type: str = "custom") -> Step:
        return _NoOpStep(name, type)

    def add_step(self, step: Step) -> None:
        pass

    def end(self, status: str = "completed") -> bool:
        return False


async def finish_session(
    context: SessionContext,
    exporter: Optional["CollectorExporter"] = None,
    status: Optional[str] = None,
    verbose: bool = False,
    write_file: bool = True,
) -> Dict[str, Any]:
    """
    Finish the current session: end it, write the JSON file, export it,
    print the summary, then clear the context.

    Every stage is isolated: a failure is logged and reported in the
    result dict, never raised into the pipeline.

    Args:
        context: The context holding the session.
        exporter: Collector exporter; skipped when None.
        status: Terminal status for a still-running session (default "completed").
        verbose: Print the full step-by-step breakdown instead of the compact one.
        write_file: Write {traces_dir}/{session_id}.json.

    Returns dict with session_id, status, file_path (or file_error) and
    exported (plus export_error when the exporter raised).
    """
    session = context.current()
    if session is None:
        logger.warning("No session to finish")
        return {"saved": False, "reason": "no_session"}

    if isinstance(session, _NoOpSession):
        context.clear()
        return {"saved": False, "reason": "tracing_disabled"}

    if session.status == "running":
        session.end(status or "completed")

    result: Dict[str, Any] = {"session_id": session.session_id, "status": session.status}

    if write_file:
        try:
            from xray.tracing.exporter import write_session_file
            file_path = write_session_file(session)
            result["file_path"] = str(file_path)
        except Exception as e:
            logger.error(f"Failed to write session file: {e}")
            result["file_error"] = str(e)

    if exporter is not None:
        try:
            result["exported"] = await exporter.export_session(session)
        except Exception as e:
            logger.error(f"Failed to export session: {e}")
            result["exported"] = False
            result["export_error"] = str(e)

    try:
        from xray.tracing.summary import format_compact_summary, format_verbose_summary
        if verbose:
            print(format_verbose_summary(session))
        else:
            print(format_compact_summary(session))
    except Exception as e:
        logger.error(f"Failed to print session summary: {e}")

    context.clear()
    logger.info(f"Session finished: {session.session_id} (status={session.status})")
    return result


@asynccontextmanager
async def traced_session(
    context: SessionContext,
    name: str,
    metadata: Optional[Dict[str, Any]] = None,
    exporter: Optional["CollectorExporter"] = None,
    verbose: bool = False,
    write_file: bool = True,
):
    """
    Async context manager wrapping a pipeline run in a session.

    Usage:
        async with traced_session(context, "decision-agent", exporter=exporter) as session:
            step = context.start_step("classify_intent", "llm")
            ...

    Completes the session on normal exit, fails it on exception (then
    re-raises), and always calls finish_session().
    """
    session = context.start_session(name, metadata)
    try:
        yield session
        if session.status == "running":
            session.end("completed")
    except Exception:
        if session.status == "running":
            session.end("failed")
        raise
    finally:
        await finish_session(context, exporter=exporter, verbose=verbose, write_file=write_file)
