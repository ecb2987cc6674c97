"""Line reassembly and result extraction for the agent's event stream."""

import json
import logging
import re
from typing import Any, Dict, List

from lineu_worker.agent.errors import AnalysisParseError
from lineu_worker.agent.events import AgentEvent, ResultEvent, decode_event

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("category", "summary")

FENCED_JSON_RE = re.compile(r"```json\s*(.*?)```", re.DOTALL)
ANALYSIS_START_RE = re.compile(r'\{\s*"category"')


class LineBuffer:
    """Reassembles newline-delimited lines from arbitrarily split chunks."""

    def __init__(self) -> None:
        self._pending: List[str] = []

    def feed(self, chunk: str) -> List[str]:
        self._pending.append(chunk)
        if "\n" not in chunk:
            return []

        parts = "".join(self._pending).split("\n")
        # The last fragment is carried over whether or not it ended with a terminator
        self._pending = [parts.pop()]
        return [line for line in (part.rstrip("\r") for part in parts) if line.strip()]

    def flush(self) -> List[str]:
        residual = "".join(self._pending).rstrip("\r")
        self._pending = []
        return [residual] if residual.strip() else []


class StreamParser:
    """Decodes stream-json lines into events, remembering the latest result."""

    def __init__(self) -> None:
        self._lines = LineBuffer()
        self.last_result: ResultEvent | None = None

    def feed(self, chunk: str) -> List[AgentEvent]:
        return self._decode(self._lines.feed(chunk))

    def close(self) -> List[AgentEvent]:
        return self._decode(self._lines.flush())

    def _decode(self, lines: List[str]) -> List[AgentEvent]:
        events: List[AgentEvent] = []
        for line in lines:
            try:
                raw = json.loads(line)
            except ValueError:
                # Progress text is interleaved with structured events
                continue
            for event in decode_event(raw):
                if isinstance(event, ResultEvent):
                    self.last_result = event
                events.append(event)
        return events


def _has_required_fields(candidate: Any) -> bool:
    return isinstance(candidate, dict) and all(candidate.get(field) for field in REQUIRED_FIELDS)


def extract_fenced_json(text: str) -> Dict[str, Any] | None:
    """Return the last ```json block that parses and has both required fields."""
    for block in reversed(FENCED_JSON_RE.findall(text)):
        try:
            parsed = json.loads(block.strip())
        except ValueError:
            continue
        if _has_required_fields(parsed):
            return parsed
    return None


def _balanced_object(text: str, start: int) -> str | None:
    depth = 0
    in_string = False
    escaped = False

    for index in range(start, len(text)):
        char = text[index]
        if escaped:
            escaped = False
            continue
        if char == "\\" and in_string:
            escaped = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]

    return None


def extract_balanced_json(text: str) -> Dict[str, Any] | None:
    """Return the first brace-balanced object that starts with a ``category`` key.

    Only requires the object to parse; ``summary`` may be missing.
    """
    for match in ANALYSIS_START_RE.finditer(text):
        candidate = _balanced_object(text, match.start())
        if candidate is None:
            continue
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def extract_analysis(output: str, result: ResultEvent | None) -> Dict[str, Any]:
    """Pull the analysis object out of a finished run.

    Tried in order: the result payload as an object, fenced json blocks in the result
    text, then a brace-balanced scan of the result text and finally of the whole output.
    """
    payload = result.result if result is not None else None

    if _has_required_fields(payload):
        return payload

    if isinstance(payload, str):
        analysis = extract_fenced_json(payload)
        if analysis is not None:
            return analysis
        analysis = extract_balanced_json(payload)
        if analysis is not None:
            return analysis

    analysis = extract_balanced_json(output)
    if analysis is not None:
        logger.debug("Analysis recovered from raw output")
        return analysis

    raise AnalysisParseError("No valid JSON analysis found in output")
