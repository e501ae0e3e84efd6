"""
Decision parser: turns a model response into a ParsedDecision.

Runs the field grammar over a fixed marker table (AGENT, CONFIDENCE,
REASONING|REASON, RECIPIENT, MESSAGE, TITLE, DATETIME, URGENCY, ATTENDEES),
then falls back to a YES/NO heuristic for unmarked answers.

Usage:
    from xray.tracing.decision import parse_decision

    decision = parse_decision("AGENT: slack_dm\\nCONFIDENCE: 0.8\\nREASON: matched keywords")
    decision.agent        # "slack_dm"
    decision.confidence   # 0.8
    decision.raw_fields   # {"agent": "slack_dm", "confidence": "0.8", "reasoning": "matched keywords"}
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from xray.tracing.grammar import FieldMarker, apply_transforms, extract_fields

_NUMBER = re.compile(r"\s*([-+]?(?:\d+(?:\.\d*)?|\.\d+))\s*(%?)")
_YES = re.compile(r"\bYES\b", re.IGNORECASE)
_NO = re.compile(r"\bNO\b", re.IGNORECASE)


def parse_confidence(raw: str) -> float:
    """Leading number of a confidence field; ``85%`` becomes 0.85."""
    match = _NUMBER.match(raw)
    if not match:
        raise ValueError(f"not a number: {raw!r}")
    value = float(match.group(1))
    if match.group(2):
        value /= 100.0
    return value


def parse_attendees(raw: str) -> List[str]:
    """Comma separated names, trimmed, empties dropped."""
    return [name.strip() for name in raw.split(",") if name.strip()]


DECISION_MARKERS: List[FieldMarker] = [
    FieldMarker("agent", ("AGENT",)),
    FieldMarker("confidence", ("CONFIDENCE",), parse_confidence),
    FieldMarker("reasoning", ("REASONING", "REASON")),
    FieldMarker("recipient", ("RECIPIENT",)),
    FieldMarker("message", ("MESSAGE",)),
    FieldMarker("title", ("TITLE",)),
    FieldMarker("datetime", ("DATETIME",)),
    FieldMarker("urgency", ("URGENCY",)),
    FieldMarker("attendees", ("ATTENDEES",), parse_attendees),
]


@dataclass
class ParsedDecision:
    """Structured view of one model response. Every field is optional."""
    agent: Optional[str] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    recipient: Optional[str] = None
    message: Optional[str] = None
    title: Optional[str] = None
    attendees: Optional[List[str]] = None
    datetime: Optional[str] = None
    urgency: Optional[str] = None
    yes_no: Optional[bool] = None
    raw_fields: Dict[str, str] = field(default_factory=dict)

    def summary(self) -> Optional[str]:
        """Synthesised reasoning from agent/confidence, or None if neither was parsed."""
        parts = []
        if self.agent:
            parts.append(f"Selected agent: {self.agent}")
        if self.confidence is not None:
            parts.append(f"Confidence: {self.confidence * 100:.0f}%")
        return " | ".join(parts) if parts else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": self.agent,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "recipient": self.recipient,
            "message": self.message,
            "title": self.title,
            "attendees": list(self.attendees) if self.attendees is not None else None,
            "datetime": self.datetime,
            "urgency": self.urgency,
            "yesNo": self.yes_no,
            "rawFields": dict(self.raw_fields),
        }


def _apply_yes_no_fallback(text: str, decision: ParsedDecision) -> None:
    """First non-blank line decides YES/NO; the rest becomes reasoning."""
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return

    first = lines[0]
    if _YES.search(first):
        decision.yes_no = True
        decision.raw_fields["decision"] = "YES"
    elif _NO.search(first):
        decision.yes_no = False
        decision.raw_fields["decision"] = "NO"
    else:
        return

    if len(lines) > 1 and decision.reasoning is None:
        decision.reasoning = " ".join(lines[1:])


def parse_decision(text: Optional[str]) -> ParsedDecision:
    """
    Parse a model response into a ParsedDecision.

    Never raises: missing or malformed fields are left as None. Every captured
    substring, including markers this parser does not model (e.g. DURATION),
    is kept in ``raw_fields``.

    When no reasoning marker is present, the first non-blank line is read as
    a YES/NO answer. YES and NO must appear as whole words, so "Nothing" or
    "YESSIR" do not count.
    """
    decision = ParsedDecision()
    if not text:
        return decision

    raw = extract_fields(text, DECISION_MARKERS, capture_unrecognized=True)
    decision.raw_fields = dict(raw)

    values = apply_transforms(raw, DECISION_MARKERS)
    decision.agent = values.get("agent")
    decision.confidence = values.get("confidence")
    decision.reasoning = values.get("reasoning")
    decision.recipient = values.get("recipient")
    decision.message = values.get("message")
    decision.title = values.get("title")
    decision.attendees = values.get("attendees")
    decision.datetime = values.get("datetime")
    decision.urgency = values.get("urgency")

    if decision.reasoning is None:
        _apply_yes_no_fallback(text, decision)

    return decision
