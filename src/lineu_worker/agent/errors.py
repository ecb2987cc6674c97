"""Errors raised while running the analysis agent."""


class AgentError(Exception):
    """Base class for analysis agent failures."""


class PromptInjectionError(AgentError):
    """Payload matched a known instruction-override pattern; no process was spawned."""


class AgentExecutionError(AgentError):
    """The agent could not be spawned or exited with a non-zero code."""

    def __init__(self, message: str, output: str | None = None) -> None:
        super().__init__(message)
        self.output = output


class AgentTimeoutError(AgentError):
    """The agent exceeded its wall-clock deadline and was terminated."""


class AgentCancelledError(AgentError):
    """The agent run was cancelled and the child process terminated."""


class AnalysisParseError(AgentError):
    """No analysis could be extracted from the agent output."""
