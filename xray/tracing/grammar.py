"""
Field extraction grammar for free-form model output.

A small table-driven parser: each FieldMarker names a field and the marker
tokens that introduce it. A value runs from ``MARKER:`` to the next
marker-shaped line or the end of the text.

Usage:
    from xray.tracing.grammar import FieldMarker, extract_fields

    markers = [
        FieldMarker("agent", ("AGENT",)),
        FieldMarker("reasoning", ("REASONING", "REASON")),
    ]
    extract_fields("AGENT: calendar\\nREASON: mentions a meeting", markers)
    # {"agent": "calendar", "reasoning": "mentions a meeting"}

Known limitation: a multi-line value whose later line itself looks like a
marker (``NOTE: ...``) is cut at that line.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from xray.utils.logger import get_logger

logger = get_logger(__name__)

_EMPHASIS = r"(?:\*{1,2}|_{1,2})?"

# Any UPPERCASE_WORD: at the start of a line (case-sensitive on purpose).
_GENERIC_MARKER = re.compile(
    rf"^[ \t]*{_EMPHASIS}([A-Z][A-Z0-9_]*){_EMPHASIS}[ \t]*:",
    re.MULTILINE,
)

# One layer of wrapping punctuation, longest first.
_WRAPPERS: Tuple[Tuple[str, str], ...] = (
    ("**", "**"),
    ("__", "__"),
    ('"', '"'),
    ("'", "'"),
    ("`", "`"),
    ("“", "”"),
    ("*", "*"),
    ("_", "_"),
)


@dataclass(frozen=True)
class FieldMarker:
    """One row of the marker table."""
    name: str
    keywords: Tuple[str, ...]
    transform: Optional[Callable[[str], Any]] = None

    def patterns(self) -> List[re.Pattern]:
        """Compiled line-start patterns, one per keyword, in priority order."""
        return [_keyword_pattern(k) for k in self.keywords]


def _keyword_pattern(keyword: str) -> re.Pattern:
    return re.compile(
        rf"^[ \t]*{_EMPHASIS}{re.escape(keyword)}{_EMPHASIS}[ \t]*:{_EMPHASIS}",
        re.IGNORECASE | re.MULTILINE,
    )


def _clean(value: str) -> str:
    """Trim whitespace and a single layer of quote/emphasis punctuation."""
    value = value.strip()
    for opener, closer in _WRAPPERS:
        if len(value) >= len(opener) + len(closer) and value.startswith(opener) and value.endswith(closer):
            return value[len(opener):len(value) - len(closer)].strip()
    return value


def _boundaries(text: str, markers: Sequence[FieldMarker]) -> List[int]:
    """Start offsets of every marker-shaped line in the text."""
    starts = {m.start() for m in _GENERIC_MARKER.finditer(text)}
    for marker in markers:
        for pattern in marker.patterns():
            starts.update(m.start() for m in pattern.finditer(text))
    return sorted(starts)


def _capture(text: str, value_start: int, line_start: int, boundaries: Iterable[int]) -> str:
    end = next((b for b in boundaries if b > line_start), len(text))
    return _clean(text[value_start:end])


def _first_value(text: str, marker: FieldMarker, boundaries: Sequence[int]) -> str:
    for pattern in marker.patterns():
        for match in pattern.finditer(text):
            value = _capture(text, match.end(), match.start(), boundaries)
            if value:
                return value
    return ""


def extract_fields(
    text: str,
    markers: Sequence[FieldMarker],
    capture_unrecognized: bool = False,
) -> Dict[str, str]:
    """
    Map field name -> raw captured string for every marker found in text.

    Args:
        text: Free-form text (usually a model response).
        markers: Ordered marker table. Within one FieldMarker the first
            keyword that occurs with a non-empty value wins.
        capture_unrecognized: Also capture any other ``UPPERCASE_WORD:`` field
            under its lower-cased name.

    Returns:
        Dict of captured values. Absent or empty fields are simply missing.
    """
    if not text:
        return {}

    boundaries = _boundaries(text, markers)
    fields: Dict[str, str] = {}

    for marker in markers:
        value = _first_value(text, marker, boundaries)
        if value:
            fields[marker.name] = value

    if capture_unrecognized:
        known = {k.upper() for marker in markers for k in marker.keywords}
        for match in _GENERIC_MARKER.finditer(text):
            token = match.group(1).strip("_")
            key = token.lower()
            if not token or token in known or key in fields:
                continue
            value = _capture(text, match.end(), match.start(), boundaries)
            if value:
                fields[key] = value

    return fields


def apply_transforms(fields: Dict[str, str], markers: Sequence[FieldMarker]) -> Dict[str, Any]:
    """
    Run each marker's transform over its captured value.

    Fields without a transform pass through unchanged. A transform that
    fails drops the field instead of raising.
    """
    transforms = {m.name: m.transform for m in markers if m.transform is not None}
    result: Dict[str, Any] = {}
    for name, raw in fields.items():
        transform = transforms.get(name)
        if transform is None:
            result[name] = raw
            continue
        try:
            result[name] = transform(raw)
        except (ValueError, TypeError) as e:
            logger.debug(f"Dropping field '{name}': could not transform {raw!r} ({e})")
    return result
