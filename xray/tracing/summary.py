"""
Post-run session summary: compact terminal scorecard + detailed markdown file.

Three outputs:
1. format_compact_summary(session) → 5-6 line terminal scorecard (default)
2. format_verbose_summary(session) → full step-by-step terminal output
3. write_summary_file(session) → detailed markdown to {traces_dir}/{session_id}_summary.md

print_session(context) prints whichever view for the current session.
"""

from pathlib import Path
from typing import List, Optional

from xray.config import TRACES_DIR
from xray.tracing.context import Observation, Session, SessionContext
from xray.utils.logger import get_logger

logger = get_logger(__name__)


def _fmt_duration(ms: Optional[float]) -> str:
    """Format milliseconds into human-readable duration."""
    if ms is None:
        return "—"
    if ms < 1000:
        return f"{ms:.1f}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.0f}s"


def _fmt_score(score: Optional[float]) -> str:
    if score is None:
        return "—"
    return f"{score:.2f}"


def _count_observations(observations: Optional[List[Observation]]) -> int:
    if not observations:
        return 0
    return sum(1 + _count_observations(o.children) for o in observations)


def _observation_lines(observations: List[Observation], depth: int = 0) -> List[str]:
    """Render an observation tree, one line per node, indented by depth."""
    lines = []
    indent = "    " + "  " * depth
    for obs in observations:
        result = f" [{obs.result}]" if obs.result else ""
        score = f" score={_fmt_score(obs.score)}" if obs.score is not None else ""
        lines.append(f"{indent}- {obs.type}:{obs.id} {obs.label}{result}{score}")
        if obs.reason:
            lines.append(f"{indent}  reason: {obs.reason[:100]}")
        if obs.children:
            lines.extend(_observation_lines(obs.children, depth + 1))
    return lines


def format_compact_summary(session: Session) -> str:
    """
    Format a 5-6 line compact scorecard for terminal output.

    Example:
        ── Session Summary ────────────────────────
        competitor-selection  COMPLETED   Duration: 2.3s
        Steps: 4   Observations: 37   Errors: 0
        Decisions: Selected agent: slack_dm
        Session: 6f1c2b7e-...
        ────────────────────────────────────────────
    """
    lines = ["── Session Summary ────────────────────────"]

    lines.append(f"{session.name}  {session.status.upper():<11} Duration: {_fmt_duration(session.duration_ms)}")

    observation_count = sum(_count_observations(s.observations) for s in session.steps)
    error_count = sum(1 for s in session.steps for e in s.events if e.type == "error")
    lines.append(f"Steps: {len(session.steps):<4}Observations: {observation_count:<4}Errors: {error_count}")

    decisions = [e.message for s in session.steps for e in s.events if e.type == "decision"]
    if decisions:
        lines.append(f"Decisions: {'; '.join(decisions[:3])}")

    lines.append(f"Session: {session.session_id}")
    lines.append("────────────────────────────────────────────")

    return "\n".join(lines)


def format_verbose_summary(session: Session) -> str:
    """
    Format full step-by-step breakdown for terminal output.

    Includes per-step timings, reasoning, metrics and the observation tree.
    """
    lines = ["══ Session Detail ═════════════════════════════"]
    lines.append(f"Session:   {session.session_id}")
    lines.append(f"Name:      {session.name}")
    lines.append(f"Status:    {session.status}    Duration: {_fmt_duration(session.duration_ms)}")
    if session.metadata:
        meta = ", ".join(f"{k}={v}" for k, v in session.metadata.items())
        lines.append(f"Metadata:  {meta}")
    lines.append("")

    lines.append("── Steps ──────────────────────────────────────")
    for step in session.steps:
        dur = _fmt_duration(step.duration_ms)
        lines.append(
            f"  {step.name:<24} {step.type:<18} {dur:>8}  "
            f"({_count_observations(step.observations)} observations, {len(step.events)} events)"
        )
        if step.reasoning:
            lines.append(f"    reasoning: {step.reasoning[:120]}")
        if step.metrics:
            metrics = ", ".join(f"{k}={v:g}" for k, v in step.metrics.items())
            lines.append(f"    metrics: {metrics}")
        lines.extend(_observation_lines(step.observations))
        for event in step.events:
            if event.type in ("warning", "error"):
                lines.append(f"    {event.type.upper()}: {event.message}")

    lines.append("")
    lines.append("═══════════════════════════════════════════════")
    return "\n".join(lines)


def print_session(context: SessionContext, verbose: bool = False) -> bool:
    """Print the current session. No current session is a logged no-op."""
    session = context.current()
    if session is None:
        logger.warning("No session to print")
        return False
    print(format_verbose_summary(session) if verbose else format_compact_summary(session))
    return True


def write_summary_file(session: Session, directory: Optional[Path] = None) -> Optional[Path]:
    """
    Write detailed markdown summary to {traces_dir}/{session_id}_summary.md.

    Returns the file path, or None if writing fails.
    """
    try:
        traces_dir = Path(directory) if directory is not None else TRACES_DIR
        traces_dir.mkdir(parents=True, exist_ok=True)

        file_path = traces_dir / f"{session.session_id}_summary.md"

        md = []
        md.append(f"# Session Summary: {session.name}")
        md.append("")
        md.append(f"**Session ID:** {session.session_id}")
        md.append(f"**Status:** {session.status}")
        md.append(f"**Started:** {session.started_at or '—'}")
        md.append(f"**Ended:** {session.ended_at or '—'}")
        md.append(f"**Duration:** {_fmt_duration(session.duration_ms)}")
        md.append("")

        if session.metadata:
            md.append("## Metadata")
            md.append("")
            for key, val in session.metadata.items():
                md.append(f"- **{key}:** {val}")
            md.append("")

        md.append("## Step Breakdown")
        md.append("")
        md.append("| Step | Type | Duration | Observations | Events |")
        md.append("|------|------|----------|--------------|--------|")
        for step in session.steps:
            md.append(
                f"| {step.name} | {step.type} | {_fmt_duration(step.duration_ms)} "
                f"| {_count_observations(step.observations)} | {len(step.events)} |"
            )
        md.append("")

        md.append("## Decision Log")
        md.append("")
        for step in session.steps:
            if not (step.reasoning or step.observations or step.events):
                continue
            md.append(f"### {step.name}")
            md.append("")
            if step.reasoning:
                md.append(f"**Reasoning:** {step.reasoning}")
                md.append("")
            for obs in step.observations:
                result = f" → {obs.result}" if obs.result else ""
                md.append(f"- **{obs.label}**{result}")
                if obs.reason:
                    md.append(f"  - Why: {obs.reason}")
                if obs.score is not None:
                    md.append(f"  - Score: {_fmt_score(obs.score)}")
            for event in step.events:
                md.append(f"- _{event.type}_: {event.message}")
            md.append("")

        metric_steps = [s for s in session.steps if s.metrics]
        if metric_steps:
            md.append("## Metrics")
            md.append("")
            for step in metric_steps:
                for name, value in step.metrics.items():
                    md.append(f"- **{step.name}.{name}:** {value:g}")
            md.append("")

        md.append("---")
        md.append(f"*Generated from session {session.session_id}*")

        file_path.write_text("\n".join(md))
        logger.info(f"Session summary written: {file_path}")
        return file_path

    except Exception as e:
        logger.error(f"Failed to write session summary file: {e}")
        return None
