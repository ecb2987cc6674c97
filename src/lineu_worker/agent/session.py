"""Per-run transcript and structured session log."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import aiofiles.os

from lineu_worker.agent.events import AgentEvent, ErrorEvent, ResultEvent, TextEvent, ToolResultEvent, ToolUseEvent

logger = logging.getLogger(__name__)

TOOL_OUTPUT_LIMIT = 1000


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def transcript_path(log_dir: Path, run_id: str) -> Path:
    return log_dir / f"agent-{run_id}.log"


def session_log_path(log_dir: Path, run_id: str) -> Path:
    return log_dir / f"agent-{run_id}.jsonl"


class SessionLog:
    """Writes the raw transcript (``.log``) and structured events (``.jsonl``) of one run."""

    def __init__(self, log_dir: Path, run_id: str) -> None:
        self.log_dir = log_dir
        self.transcript_path = transcript_path(log_dir, run_id)
        self.events_path = session_log_path(log_dir, run_id)
        self._tools: Dict[str, str] = {}
        self._transcript: Any = None
        self._events: Any = None

    async def __aenter__(self) -> "SessionLog":
        await aiofiles.os.makedirs(self.log_dir, exist_ok=True)
        self._transcript = await aiofiles.open(self.transcript_path, "a", encoding="utf-8")
        self._events = await aiofiles.open(self.events_path, "w", encoding="utf-8")
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self._transcript.close()
        await self._events.close()

    async def write(self, text: str) -> None:
        await self._transcript.write(text)
        await self._transcript.flush()

    async def write_stderr(self, text: str) -> None:
        await self.write(f"[STDERR] {text}")

    async def _log(self, entry: Dict[str, Any]) -> None:
        await self._events.write(json.dumps({"ts": _ts(), **entry}, ensure_ascii=False, default=str) + "\n")
        await self._events.flush()

    async def record(self, event: AgentEvent) -> None:
        if isinstance(event, TextEvent):
            await self._log({"type": "text", "content": event.text})
        elif isinstance(event, ToolUseEvent):
            if event.tool_use_id:
                self._tools[event.tool_use_id] = event.name
            await self._log({"type": "tool_use", "tool": event.name, "input": event.input})
        elif isinstance(event, ToolResultEvent):
            await self._log(
                {
                    "type": "tool_result",
                    "tool": self._tools.get(event.tool_use_id or ""),
                    "output": event.output[:TOOL_OUTPUT_LIMIT],
                    "lines": len(event.output.split("\n")),
                }
            )
        elif isinstance(event, ErrorEvent):
            await self.record_error(event.message)
        elif isinstance(event, ResultEvent):
            # The closing result entry is written by record_finished
            return

    async def record_error(self, message: str) -> None:
        await self._log({"type": "error", "message": message})

    async def record_finished(self, duration_ms: int) -> None:
        await self._log({"type": "result", "duration_ms": duration_ms})


async def read_session_log(log_dir: Path, run_id: str) -> List[Dict[str, Any]]:
    """Load the structured events of a run, skipping unreadable lines."""
    path = session_log_path(log_dir, run_id)
    if not await aiofiles.os.path.exists(path):
        return []

    entries: List[Dict[str, Any]] = []
    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        async for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = json.loads(line)
            except ValueError:
                logger.debug(f"Skipping malformed session log line in {path}")
                continue
            if isinstance(entry, dict):
                entries.append(entry)
    return entries
