from lineu_worker.agent.errors import (
    AgentCancelledError,
    AgentError,
    AgentExecutionError,
    AgentTimeoutError,
    AnalysisParseError,
    PromptInjectionError,
)
from lineu_worker.agent.process import AgentRun, AgentRunner, RunState
from lineu_worker.agent.schemas import Analysis

__all__ = [
    "AgentCancelledError",
    "AgentError",
    "AgentExecutionError",
    "AgentRun",
    "AgentRunner",
    "AgentTimeoutError",
    "Analysis",
    "AnalysisParseError",
    "PromptInjectionError",
    "RunState",
]
