"""Subprocess orchestration for the analysis agent."""

import asyncio
import codecs
import logging
import shlex
import sys
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Sequence

from lineu_core.config.settings import Settings
from lineu_worker.agent.errors import AgentCancelledError, AgentError, AgentExecutionError, AgentTimeoutError
from lineu_worker.agent.events import ResultEvent
from lineu_worker.agent.prompt import DEFAULT_MAX_ACTIONS, build_prompt, screen_payload
from lineu_worker.agent.session import SessionLog
from lineu_worker.agent.stream import StreamParser, extract_analysis
from lineu_worker.routing import RoutingRegistry

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
TERMINATE_GRACE = 5.0
DEFAULT_ALLOWED_TOOLS = ("Read", "Glob", "Grep", "LS")


class RunState(str, Enum):
    PENDING = "pending"
    SPAWNED = "spawned"
    STREAMING = "streaming"
    EXITED = "exited"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class AgentRun:
    """One supervised agent process.

    The stream, the deadline and the cancellation signal are raced against each
    other; whichever finishes first decides the final state.
    """

    def __init__(
        self,
        args: Sequence[str],
        cwd: Path,
        timeout: float,
        session: SessionLog,
        mirror_output: bool = False,
    ) -> None:
        self.args = list(args)
        self.cwd = cwd
        self.timeout = timeout
        self.session = session
        self.mirror_output = mirror_output
        self.state = RunState.PENDING
        self.parser = StreamParser()
        self.proc: asyncio.subprocess.Process | None = None
        self._chunks: List[str] = []
        self._cancelled = asyncio.Event()

    @property
    def output(self) -> str:
        return "".join(self._chunks)

    @property
    def last_result(self) -> ResultEvent | None:
        return self.parser.last_result

    def cancel(self) -> None:
        self._cancelled.set()

    async def execute(self) -> int:
        """Run the process to completion and return its exit code."""
        try:
            self.proc = await asyncio.create_subprocess_exec(
                *self.args,
                cwd=str(self.cwd),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AgentExecutionError(f"Failed to spawn {self.args[0]}: {e}") from e

        self.state = RunState.SPAWNED
        logger.info(f"Agent started with PID {self.proc.pid}")

        stream_task = asyncio.create_task(self._stream())
        cancel_task = asyncio.create_task(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {stream_task, cancel_task},
                timeout=self.timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if stream_task in done:
                returncode = stream_task.result()
                self.state = RunState.EXITED
                return returncode

            if cancel_task in done:
                self.state = RunState.CANCELLED
                raise AgentCancelledError("Agent run was cancelled")

            self.state = RunState.TIMED_OUT
            raise AgentTimeoutError(f"Agent timed out after {self.timeout:g}s")
        except asyncio.CancelledError:
            self.state = RunState.CANCELLED
            raise
        finally:
            cancel_task.cancel()
            await self._terminate()
            if not stream_task.done():
                stream_task.cancel()
            await asyncio.gather(stream_task, cancel_task, return_exceptions=True)

    async def _stream(self) -> int:
        assert self.proc is not None
        self.state = RunState.STREAMING
        await asyncio.gather(self._read_stdout(), self._read_stderr())
        return await self.proc.wait()

    async def _handle_stdout(self, text: str) -> None:
        if not text:
            return
        self._chunks.append(text)
        await self.session.write(text)
        if self.mirror_output:
            sys.stdout.write(text)
            sys.stdout.flush()
        for event in self.parser.feed(text):
            await self.session.record(event)

    async def _read_stdout(self) -> None:
        assert self.proc is not None and self.proc.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await self.proc.stdout.read(CHUNK_SIZE)
            if not data:
                break
            await self._handle_stdout(decoder.decode(data))

        await self._handle_stdout(decoder.decode(b"", final=True))
        for event in self.parser.close():
            await self.session.record(event)

    async def _read_stderr(self) -> None:
        assert self.proc is not None and self.proc.stderr is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await self.proc.stderr.read(CHUNK_SIZE)
            if not data:
                break
            text = decoder.decode(data)
            if text:
                await self.session.write_stderr(text)
                if self.mirror_output:
                    sys.stderr.write(text)
                    sys.stderr.flush()

    async def _terminate(self) -> None:
        if self.proc is None or self.proc.returncode is not None:
            return

        logger.info(f"Terminating agent process {self.proc.pid}")
        try:
            self.proc.terminate()
            await asyncio.wait_for(self.proc.wait(), timeout=TERMINATE_GRACE)
        except asyncio.TimeoutError:
            logger.warning(f"Force killing agent process {self.proc.pid}")
            try:
                self.proc.kill()
                await self.proc.wait()
            except ProcessLookupError:
                pass  # Process already gone
        except ProcessLookupError:
            pass  # Process already gone


class AgentRunner:
    """Runs the analysis agent against a checkout and returns its analysis."""

    def __init__(
        self,
        command: Sequence[str] | str = "claude",
        log_dir: Path | str = Path.home() / ".lineu" / "logs",
        max_turns: int = 10,
        timeout: float = 120.0,
        max_actions: int = DEFAULT_MAX_ACTIONS,
        allowed_tools: Sequence[str] = DEFAULT_ALLOWED_TOOLS,
        mirror_output: bool = False,
    ) -> None:
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.log_dir = Path(log_dir)
        self.max_turns = max_turns
        self.timeout = timeout
        self.max_actions = max_actions
        self.allowed_tools = list(allowed_tools)
        self.mirror_output = mirror_output
        self.active_run: AgentRun | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "AgentRunner":
        return cls(
            command=settings.agent_command,
            log_dir=settings.log_path,
            max_turns=settings.agent_max_turns,
            timeout=settings.agent_timeout,
            max_actions=settings.agent_max_actions,
            allowed_tools=settings.allowed_tools,
            mirror_output=settings.agent_mirror_output,
        )

    def build_args(self, prompt: str) -> List[str]:
        return [
            *self.command,
            "-p",
            prompt,
            "--output-format",
            "stream-json",
            "--max-turns",
            str(self.max_turns),
            "--verbose",
            "--allowedTools",
            ",".join(self.allowed_tools),
        ]

    def cancel_active(self) -> bool:
        if self.active_run is None:
            return False
        self.active_run.cancel()
        return True

    async def analyze(
        self,
        repo_path: Path | str,
        payload: Dict[str, Any],
        job_id: int | None = None,
        routing: RoutingRegistry | None = None,
    ) -> Dict[str, Any]:
        screen_payload(payload)

        prompt = build_prompt(payload, routing=routing, max_actions=self.max_actions)
        run_id = str(job_id) if job_id is not None else str(int(time.time() * 1000))

        async with SessionLog(self.log_dir, run_id) as session:
            logger.info(f"Starting analysis, log: {session.transcript_path}")
            await session.write(f"=== Agent analysis started at {datetime.now(timezone.utc).isoformat()} ===\n")
            await session.write(f"Repo: {repo_path}\n")
            await session.write(f"Prompt:\n{prompt}\n\n")

            run = AgentRun(
                self.build_args(prompt),
                cwd=Path(repo_path),
                timeout=self.timeout,
                session=session,
                mirror_output=self.mirror_output,
            )
            self.active_run = run
            started = time.monotonic()
            try:
                returncode = await run.execute()
            except AgentTimeoutError:
                await session.record_error(f"Timeout after {self.timeout:g}s")
                await session.write(f"\n=== TIMEOUT after {self.timeout:g}s ===\n")
                raise
            except AgentError as e:
                await session.record_error(str(e))
                await session.write(f"\n=== ERROR: {e} ===\n")
                raise
            finally:
                self.active_run = None

            await session.record_finished(int((time.monotonic() - started) * 1000))
            await session.write(f"\n=== Agent exited with code {returncode} ===\n")

        output = run.output
        if returncode != 0:
            raise AgentExecutionError(f"Agent exited with code {returncode}", output=output)

        return extract_analysis(output, run.last_result)
